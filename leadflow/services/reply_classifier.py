"""
leadflow/services/reply_classifier.py — Intent classification for inbound replies.

Unsubscribe requests and auto-replies are caught by deterministic phrase
rules first; everything else goes to the LLM. Output the model cannot be
parsed into a known intent becomes UNCLEAR and is flagged for review.
"""

import enum
import logging
from dataclasses import dataclass, field
from typing import Any, Optional

from leadflow.ai_engine.processor import classify_reply_llm
from leadflow.services.keyword_config import KeywordConfig, get_keyword_config

logger = logging.getLogger(__name__)


class ReplyIntent(str, enum.Enum):
    INTERESTED = "INTERESTED"
    READY_TO_BOOK = "READY_TO_BOOK"
    NOT_INTERESTED = "NOT_INTERESTED"
    OBJECTION = "OBJECTION"
    OUT_OF_OFFICE = "OUT_OF_OFFICE"
    UNSUBSCRIBE = "UNSUBSCRIBE"
    UNCLEAR = "UNCLEAR"


# Intents that never get a generated response
NO_RESPONSE_INTENTS = frozenset({ReplyIntent.OUT_OF_OFFICE, ReplyIntent.UNSUBSCRIBE, ReplyIntent.UNCLEAR})

NEXT_ACTIONS: dict[ReplyIntent, str] = {
    ReplyIntent.INTERESTED: "send_response_and_monitor",
    ReplyIntent.READY_TO_BOOK: "send_calendar_link",
    ReplyIntent.NOT_INTERESTED: "mark_closed",
    ReplyIntent.OBJECTION: "send_response_and_nurture",
    ReplyIntent.OUT_OF_OFFICE: "wait_and_retry",
    ReplyIntent.UNSUBSCRIBE: "remove_from_list",
    ReplyIntent.UNCLEAR: "flag_for_human_review",
}

_SENTIMENTS = {"positive", "neutral", "negative"}
_URGENCIES = {"high", "medium", "low"}


@dataclass
class ReplyClassification:
    intent: ReplyIntent
    sentiment: str = "neutral"
    questions: list[str] = field(default_factory=list)
    objections: list[str] = field(default_factory=list)
    urgency: str = "low"
    reasoning: str = ""
    source: str = "llm"            # "rules" | "llm" | "fallback"
    needs_review: bool = False

    @property
    def next_action(self) -> str:
        return NEXT_ACTIONS[self.intent]

    @property
    def wants_response(self) -> bool:
        return self.intent not in NO_RESPONSE_INTENTS

    def as_dict(self) -> dict[str, Any]:
        return {
            "intent": self.intent.value,
            "sentiment": self.sentiment,
            "questions": list(self.questions),
            "objections": list(self.objections),
            "urgency": self.urgency,
            "reasoning": self.reasoning,
            "source": self.source,
            "needs_review": self.needs_review,
            "next_action": self.next_action,
        }


def _str_list(value: Any) -> list[str]:
    if isinstance(value, list):
        return [str(v) for v in value if v]
    if isinstance(value, str) and value:
        return [value]
    return []


def classify_by_rules(text: str, config: Optional[KeywordConfig] = None) -> Optional[ReplyClassification]:
    """Match unsubscribe and out-of-office phrases. Returns None when no rule fires."""
    config = config or get_keyword_config()
    lowered = (text or "").lower()

    # Unsubscribe wins over an auto-reply that happens to include both
    for phrase in config.replies.unsubscribe:
        if phrase in lowered:
            return ReplyClassification(
                intent=ReplyIntent.UNSUBSCRIBE,
                sentiment="negative",
                reasoning=f"Matched unsubscribe phrase '{phrase}'",
                source="rules",
            )
    for phrase in config.replies.out_of_office:
        if phrase in lowered:
            return ReplyClassification(
                intent=ReplyIntent.OUT_OF_OFFICE,
                reasoning=f"Matched out-of-office phrase '{phrase}'",
                source="rules",
            )
    return None


def from_llm_payload(payload: Optional[dict[str, Any]]) -> ReplyClassification:
    """Coerce the model's JSON into a ReplyClassification; anything off-contract is UNCLEAR."""
    if not payload:
        return ReplyClassification(
            intent=ReplyIntent.UNCLEAR,
            reasoning="Classifier output could not be parsed",
            source="fallback",
            needs_review=True,
        )

    raw_intent = str(payload.get("intent", "")).strip().upper().replace(" ", "_")
    try:
        intent = ReplyIntent(raw_intent)
    except ValueError:
        logger.warning("Unknown reply intent from model: %r", raw_intent)
        intent = ReplyIntent.UNCLEAR

    sentiment = str(payload.get("sentiment", "neutral")).lower()
    urgency = str(payload.get("urgency", "low")).lower()

    return ReplyClassification(
        intent=intent,
        sentiment=sentiment if sentiment in _SENTIMENTS else "neutral",
        questions=_str_list(payload.get("questions")),
        objections=_str_list(payload.get("objections")),
        urgency=urgency if urgency in _URGENCIES else "low",
        reasoning=str(payload.get("reasoning", "")),
        source="llm",
        needs_review=intent is ReplyIntent.UNCLEAR,
    )


def classify_reply(
    text: str,
    original_subject: str = "",
    config: Optional[KeywordConfig] = None,
) -> ReplyClassification:
    """
    Classify an inbound reply.

    Raises:
        TransientServiceError / PermanentServiceError from the LLM call; the
        caller leaves the message unprocessed or flags it accordingly.
    """
    ruled = classify_by_rules(text, config)
    if ruled is not None:
        logger.info("Reply classified by rules: %s", ruled.intent.value)
        return ruled

    classification = from_llm_payload(classify_reply_llm(text, original_subject))
    logger.info(
        "Reply classified: %s (sentiment=%s, urgency=%s)",
        classification.intent.value, classification.sentiment, classification.urgency,
    )
    return classification
