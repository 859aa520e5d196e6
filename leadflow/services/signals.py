"""
leadflow/services/signals.py — Keyword signal detection over a lead's text.

Pure and deterministic: the same lead and the same keyword config always
produce the same signal map. No tokenizing or stemming, just lowercase
substring containment.
"""

from typing import Any, Iterable, Optional

from leadflow.db.models import Lead
from leadflow.services.keyword_config import KeywordConfig, get_keyword_config


def _flatten(value: Any) -> Iterable[str]:
    """Yield every scalar value inside a nested dict/list payload as text."""
    if value is None:
        return
    if isinstance(value, dict):
        for item in value.values():
            yield from _flatten(item)
    elif isinstance(value, (list, tuple, set)):
        for item in value:
            yield from _flatten(item)
    elif isinstance(value, bool):
        return
    else:
        yield str(value)


def build_corpus(lead: Lead) -> str:
    """
    Combine the lead's textual fields and signal payload into one lowercase string.

    Only values are included. Payload keys and flags are structure, not content.
    """
    parts = [
        lead.company_name,
        lead.company_domain,
        lead.contact_name,
        lead.contact_email,
        *_flatten(lead.signal_payload or {}),
    ]
    return " ".join(p for p in parts if p).lower()


def contains_any(text: str, keywords: Iterable[str]) -> bool:
    return any(keyword in text for keyword in keywords)


def count_matches(text: str, keywords: Iterable[str]) -> int:
    return sum(1 for keyword in keywords if keyword in text)


def detect_signals(lead: Lead, config: Optional[KeywordConfig] = None) -> dict[str, bool]:
    """
    Map every configured signal name to whether the lead's corpus matches it.

    Two field-derived signals are added:
      has_contact_info     → domain, email, or the outreach routing flag is set
      has_opportunity_data → the signal payload carries at least one entry
    """
    config = config or get_keyword_config()
    corpus = build_corpus(lead)

    signals = {
        name: contains_any(corpus, keywords)
        for name, keywords in config.signals.items()
    }
    signals["has_contact_info"] = bool(
        lead.company_domain or lead.contact_email or lead.route_to_outreach
    )
    signals["has_opportunity_data"] = bool(lead.signal_payload)
    return signals
