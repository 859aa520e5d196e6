"""
leadflow/ai_engine/processor.py — LangChain chain implementations for the AI engine.

Four public functions:
  research_lead(lead)                          → ResearchResult
  draft_email(lead, research)                  → EmailDraft
  classify_reply_llm(reply_text, subject)      → dict | None
  draft_reply(company, reply, ...)             → EmailDraft

Provider failures surface as TransientServiceError / PermanentServiceError.
Unparseable output never raises: each function degrades to a flagged default.
"""

import logging
import re
from dataclasses import dataclass
from typing import Any, Optional

from leadflow.ai_engine.prompt_templates import (
    EMAIL_DRAFT_PROMPT,
    LEAD_RESEARCH_PROMPT,
    REPLY_CLASSIFICATION_PROMPT,
    REPLY_RESPONSE_PROMPT,
)
from leadflow.ai_engine.utils import (
    build_openrouter_llm,
    extract_section,
    invoke_prompt,
    parse_json_safely,
    truncate_for_context,
)
from leadflow.config import settings
from leadflow.db.models import Lead

logger = logging.getLogger(__name__)

ENRICHMENT = "enrichment"

_EMAIL_RE = re.compile(r"[A-Za-z0-9._%+-]+@[A-Za-z0-9.-]+\.[A-Za-z]{2,}")

# Report headings, in the order the research prompt asks for them
_SECTIONS = [
    ("company_background", "COMPANY BACKGROUND"),
    ("decision_maker", "DECISION MAKER"),
    ("pain_points", "PAIN POINTS"),
    ("personalization_hooks", "PERSONALIZATION HOOKS"),
    ("recommended_approach", "RECOMMENDED APPROACH"),
    ("contact_email", "CONTACT EMAIL"),
]


# ── Output dataclasses ────────────────────────────────────────────────────────

@dataclass
class ResearchResult:
    company_background: str
    decision_maker: str
    pain_points: str
    personalization_hooks: str
    recommended_approach: str
    discovered_email: Optional[str] = None
    low_confidence: bool = False
    raw_response: str = ""

    def as_dict(self) -> dict[str, Any]:
        return {
            "company_background": self.company_background,
            "decision_maker": self.decision_maker,
            "pain_points": self.pain_points,
            "personalization_hooks": self.personalization_hooks,
            "recommended_approach": self.recommended_approach,
            "discovered_email": self.discovered_email,
            "low_confidence": self.low_confidence,
            "raw_response": truncate_for_context(self.raw_response, max_chars=4000),
        }


@dataclass
class EmailDraft:
    subject: str
    body: str
    raw_response: str               # original LLM text (for debugging)
    is_fallback: bool = False


# ── Helpers ───────────────────────────────────────────────────────────────────

def _signal_summary(lead: Lead) -> str:
    payload = lead.signal_payload or {}
    parts = []
    for key in ("title", "pain_point", "business_area", "content_preview", "source_feed"):
        value = payload.get(key)
        if value:
            parts.append(f"{key.replace('_', ' ')}: {value}")
    return truncate_for_context("; ".join(parts) or "No context captured", max_chars=800)


def fallback_research(lead: Lead, raw_response: str = "") -> ResearchResult:
    """Placeholder research used when the research call fails or yields nothing usable."""
    payload = lead.signal_payload or {}
    return ResearchResult(
        company_background=f"{lead.company_name} - details pending research",
        decision_maker=lead.contact_name or "Unknown",
        pain_points=str(payload.get("pain_point") or "General business growth challenges"),
        personalization_hooks=f"Active in {payload.get('business_area') or 'their market'}",
        recommended_approach="Lead with a concrete, low-effort way to win more clients",
        discovered_email=None,
        low_confidence=True,
        raw_response=raw_response,
    )


def parse_research_report(lead: Lead, raw_text: str) -> ResearchResult:
    """
    Split a research report into named sections.

    Best effort: when fewer than two sections can be found the fallback
    research is returned, flagged low-confidence, with the raw text kept.
    """
    headings = [heading for _, heading in _SECTIONS]
    sections = {}
    for i, (name, heading) in enumerate(_SECTIONS):
        sections[name] = extract_section(raw_text, heading, tuple(headings[i + 1:]))

    found = sum(1 for name, _ in _SECTIONS[:-1] if sections[name])
    if found < 2:
        logger.warning("Research for %s had %d usable sections; using fallback", lead.company_name, found)
        return fallback_research(lead, raw_response=raw_text)

    match = _EMAIL_RE.search(sections["contact_email"])
    fallback = fallback_research(lead)
    return ResearchResult(
        company_background=sections["company_background"] or fallback.company_background,
        decision_maker=sections["decision_maker"] or fallback.decision_maker,
        pain_points=sections["pain_points"] or fallback.pain_points,
        personalization_hooks=sections["personalization_hooks"] or fallback.personalization_hooks,
        recommended_approach=sections["recommended_approach"] or fallback.recommended_approach,
        discovered_email=match.group().lower() if match else None,
        low_confidence=found < len(_SECTIONS) - 1,
        raw_response=raw_text,
    )


# ── 1. Research ───────────────────────────────────────────────────────────────

def research_lead(lead: Lead) -> ResearchResult:
    """
    One consolidated research call for a lead.

    Raises:
        TransientServiceError: Rate limit / timeout; the caller retries later.
        PermanentServiceError: Auth or request failure; the caller stores fallback research.
    """
    llm = build_openrouter_llm(temperature=0.2, model=settings.research_model)
    logger.info("Researching lead %d: %s", lead.id, lead.company_name)

    raw_text = invoke_prompt(
        LEAD_RESEARCH_PROMPT,
        llm,
        {
            "product_description": settings.product_description,
            "company_name": lead.company_name,
            "company_domain": lead.company_domain or "unknown",
            "contact_name": lead.contact_name or "unknown",
            "signal_summary": _signal_summary(lead),
        },
        ENRICHMENT,
    )
    return parse_research_report(lead, raw_text)


# ── 2. Email Draft ────────────────────────────────────────────────────────────

def fallback_outreach_draft(lead: Lead, raw_response: str = "") -> EmailDraft:
    """Template email used when the drafting model returns nothing usable."""
    greeting = f"Hi {lead.contact_name.split()[0]}," if lead.contact_name else "Hi,"
    return EmailDraft(
        subject=f"Automating client acquisition for {lead.company_name}",
        body=(
            f"{greeting}\n\n"
            f"I came across {lead.company_name} and noticed you're working on growing your client base.\n\n"
            "We help businesses like yours find and reach the right prospects without adding "
            "more manual work to your week.\n\n"
            "Worth a quick call to see if it fits?\n\nBest"
        ),
        raw_response=raw_response,
        is_fallback=True,
    )


def draft_email(lead: Lead, research: Optional[dict[str, Any]] = None) -> EmailDraft:
    """
    Generate a personalized first outreach email for a researched lead.

    Returns the template fallback (is_fallback=True) if the model output
    cannot be parsed.
    """
    research = research or {}
    llm = build_openrouter_llm(temperature=0.7)  # higher temp for natural-sounding copy

    logger.info("Drafting email for lead %d: %s", lead.id, lead.company_name)

    raw_text = invoke_prompt(
        EMAIL_DRAFT_PROMPT,
        llm,
        {
            "product_description": settings.product_description,
            "company_name": lead.company_name,
            "contact_name": lead.contact_name or "not known",
            "company_background": research.get("company_background", ""),
            "pain_points": research.get("pain_points", ""),
            "personalization_hooks": research.get("personalization_hooks", ""),
            "recommended_approach": research.get("recommended_approach", ""),
            "score_reasoning": lead.score_reasoning or "",
            "suggested_approach": lead.suggested_approach or "Standard outreach",
        },
        "drafting",
    )

    parsed = parse_json_safely(raw_text)
    if not isinstance(parsed, dict) or not parsed.get("subject") or not parsed.get("body"):
        logger.error("Email draft returned invalid structure for %s: %s", lead.company_name, raw_text[:200])
        return fallback_outreach_draft(lead, raw_response=raw_text)

    return EmailDraft(
        subject=str(parsed["subject"]),
        body=str(parsed["body"]),
        raw_response=raw_text,
    )


# ── 3. Reply Classification ───────────────────────────────────────────────────

def classify_reply_llm(reply_text: str, original_subject: str = "") -> Optional[dict[str, Any]]:
    """
    Ask the model to classify a reply. Returns the parsed JSON object, or
    None if the output could not be parsed.
    """
    llm = build_openrouter_llm(temperature=0.1)  # low temp for consistent labels
    raw_text = invoke_prompt(
        REPLY_CLASSIFICATION_PROMPT,
        llm,
        {
            "original_subject": original_subject or "(unknown)",
            "reply_text": truncate_for_context(reply_text, max_chars=3000),
        },
        "classification",
    )
    parsed = parse_json_safely(raw_text)
    if not isinstance(parsed, dict):
        logger.error("Reply classification returned non-dict: %s", raw_text[:200])
        return None
    parsed["_raw"] = raw_text
    return parsed


# ── 4. Reply Response ─────────────────────────────────────────────────────────

def draft_reply(
    company_name: str,
    reply_text: str,
    intent: str,
    questions: list[str],
    objections: list[str],
    original_subject: str = "",
    booking_link: str = "",
) -> EmailDraft:
    """Draft a follow-up to an inbound reply; falls back to a short template on bad output."""
    llm = build_openrouter_llm(temperature=0.5)
    raw_text = invoke_prompt(
        REPLY_RESPONSE_PROMPT,
        llm,
        {
            "product_description": settings.product_description,
            "company_name": company_name,
            "reply_text": truncate_for_context(reply_text, max_chars=3000),
            "intent": intent,
            "questions": "; ".join(questions) or "none",
            "objections": "; ".join(objections) or "none",
            "booking_link": booking_link,
        },
        "drafting",
    )

    subject = f"Re: {original_subject}" if original_subject else "Re: our conversation"
    parsed = parse_json_safely(raw_text)
    if not isinstance(parsed, dict) or not parsed.get("body"):
        logger.error("Reply draft returned invalid structure for %s: %s", company_name, raw_text[:200])
        body = "Thanks for getting back to me."
        if booking_link:
            body += f"\n\nYou can pick a time that suits you here: {booking_link}"
        return EmailDraft(subject=subject, body=body + "\n\nBest", raw_response=raw_text, is_fallback=True)

    return EmailDraft(
        subject=str(parsed.get("subject") or subject),
        body=str(parsed["body"]),
        raw_response=raw_text,
    )
