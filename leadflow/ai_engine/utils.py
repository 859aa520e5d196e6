"""
leadflow/ai_engine/utils.py — Shared AI helper utilities.

Provides:
  - build_openrouter_llm()  : factory for the LangChain-compatible OpenRouter LLM
  - invoke_prompt()         : run prompt | llm and map failures to service errors
  - parse_json_safely()     : robust JSON extraction from messy LLM text
  - extract_section()       : pull one headed section out of a free-text report
  - truncate_for_context()  : safely trim long strings to fit LLM context window
"""

import json
import logging
import re
from typing import Any, Optional

from langchain_core.prompts import ChatPromptTemplate
from langchain_openai import ChatOpenAI

from leadflow.config import settings
from leadflow.errors import classify_service_error

logger = logging.getLogger(__name__)

# OpenRouter's base URL (drop-in OpenAI-compatible API)
OPENROUTER_BASE_URL = "https://openrouter.ai/api/v1"


def build_openrouter_llm(temperature: float = 0.3, model: Optional[str] = None) -> ChatOpenAI:
    """
    Build a LangChain ChatOpenAI client pointed at OpenRouter.

    Args:
        temperature: 0.0 = deterministic, 1.0 = creative.
                     Use low temp (0.1–0.3) for structured JSON outputs,
                     higher (0.6–0.8) for creative email drafting.
        model:       OpenRouter model id; defaults to settings.openrouter_model.

    Returns:
        A LangChain-compatible LLM instance.
    """
    return ChatOpenAI(
        model=model or settings.openrouter_model,
        api_key=settings.openrouter_api_key,
        base_url=OPENROUTER_BASE_URL,
        temperature=temperature,
        timeout=settings.llm_timeout_seconds,
        # Retries happen on the next sweep, not inside one call
        max_retries=1,
        default_headers={
            "HTTP-Referer": "https://github.com/leadflow/leadflow",
            "X-Title": "Leadflow",
        },
    )


def invoke_prompt(
    prompt: ChatPromptTemplate,
    llm: ChatOpenAI,
    inputs: dict[str, Any],
    collaborator: str,
) -> str:
    """
    Run `prompt | llm` and return the response text.

    Raises:
        TransientServiceError / PermanentServiceError for any provider failure.
    """
    chain = prompt | llm
    try:
        response = chain.invoke(inputs)
    except Exception as exc:
        raise classify_service_error(collaborator, exc) from exc
    return response.content if hasattr(response, "content") else str(response)


def parse_json_safely(text: str) -> dict[str, Any] | list[Any] | None:
    """
    Robustly extract and parse a JSON object or array from LLM output.

    Handles cases where the LLM wraps JSON in markdown code fences like:
        ```json
        { ... }
        ```

    Returns the parsed Python object, or None if parsing fails.
    """
    if not text:
        return None

    cleaned = re.sub(r"```(?:json)?\s*([\s\S]*?)```", r"\1", text.strip())
    cleaned = cleaned.strip()

    try:
        return json.loads(cleaned)
    except json.JSONDecodeError:
        pass

    for pattern in (r"\{[\s\S]*\}", r"\[[\s\S]*\]"):
        match = re.search(pattern, cleaned)
        if match:
            try:
                return json.loads(match.group())
            except json.JSONDecodeError:
                continue

    logger.warning("Could not parse JSON from LLM output: %s", text[:200])
    return None


def extract_section(
    text: str,
    start_marker: str,
    end_markers: tuple[str, ...] = (),
    max_chars: int = 500,
) -> str:
    """
    Return the text between a heading and the next known heading.

    Headings are matched case-insensitively at the start of a line, allowing
    markdown or list prefixes such as "## ", "**" or "2. ". Leading colons
    and emphasis after the heading are stripped. Returns "" when the heading
    is absent.
    """
    if not text:
        return ""
    match = _heading_pattern(start_marker).search(text)
    if not match:
        return ""
    start = match.end()

    end = len(text)
    for marker in end_markers:
        found = _heading_pattern(marker).search(text, start)
        if found:
            end = min(end, found.start())

    section = re.sub(r"^[\s:*#]+", "", text[start:end])
    return section.strip()[:max_chars]


def _heading_pattern(marker: str) -> re.Pattern:
    return re.compile(r"^[ \t#*\d.)-]*" + re.escape(marker), re.IGNORECASE | re.MULTILINE)


def truncate_for_context(text: str, max_chars: int = 2000) -> str:
    """
    Trim a string to max_chars to avoid exceeding LLM context window.
    Appends '...' if truncated.
    """
    if not text or len(text) <= max_chars:
        return text or ""
    return text[:max_chars] + "..."
