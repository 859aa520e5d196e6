"""
leadflow/ingestion/normalizer.py — Cleans and standardizes raw feed items.

Takes parsed feed dicts from fetcher.py and returns clean, typed Pydantic
models ready for relevance filtering and storage.
"""

import logging
import re
from datetime import datetime, timezone
from email.utils import parsedate_to_datetime
from typing import Any
from urllib.parse import urlparse

from bs4 import BeautifulSoup
from pydantic import BaseModel

from leadflow.ingestion.fetcher import FeedConfig

logger = logging.getLogger(__name__)

_INLINE_DOMAIN_RE = re.compile(r"(?:https?://)?(?:www\.)?([a-z0-9-]+(?:\.[a-z0-9-]+)*\.[a-z]{2,})\b", re.IGNORECASE)


# ── Output schema ────────────────────────────────────────────────────────────

class NormalizedCandidate(BaseModel):
    """Clean feed item ready for filtering and DB storage."""

    source_feed: str
    feed_type: str
    title: str
    company_name: str
    link: str | None = None
    company_domain: str | None = None       # mentioned in the post itself, if any
    link_domain: str | None = None          # host of the item link
    author: str | None = None
    content: str = ""                       # plain text, stripped of HTML
    published_at: datetime | None = None

    @property
    def text(self) -> str:
        """Lowercase title + content used for keyword matching."""
        return f"{self.title} {self.content}".lower()


# ── Helpers ──────────────────────────────────────────────────────────────────

def _strip_html(raw: str) -> str:
    """Remove all HTML tags and decode HTML entities."""
    if not raw:
        return ""
    soup = BeautifulSoup(raw, "lxml")
    text = soup.get_text(separator=" ")
    return re.sub(r"\s+", " ", text).strip()


def _extract_domain(url: str | None) -> str | None:
    """Extract bare domain from a URL, e.g. 'https://www.acme.com/about' → 'acme.com'."""
    if not url:
        return None
    domain = urlparse(url).netloc.lower()
    if domain.startswith("www."):
        domain = domain[4:]
    return domain or None


def _parse_date(value: Any) -> datetime | None:
    """Parse an RFC 822 (RSS) or ISO 8601 (Atom) date into naive UTC."""
    if not value:
        return None
    text = str(value).strip()
    try:
        parsed = parsedate_to_datetime(text)
    except (TypeError, ValueError):
        try:
            parsed = datetime.fromisoformat(text.replace("Z", "+00:00"))
        except ValueError:
            return None
    if parsed.tzinfo is not None:
        parsed = parsed.astimezone(timezone.utc).replace(tzinfo=None)
    return parsed


def _company_name_from_title(title: str) -> str:
    """Product posts are usually 'Name - tagline' or 'Name: tagline'."""
    for separator in (" - ", " – ", " — ", ": ", " | "):
        if separator in title:
            head = title.split(separator, 1)[0].strip()
            if head:
                return head[:100]
    return title[:100]


# ── Main function ────────────────────────────────────────────────────────────

def normalize_item(raw: dict[str, Any], feed: FeedConfig) -> NormalizedCandidate | None:
    """
    Normalize a single parsed feed item.

    Returns None if the item has no title.
    """
    title = re.sub(r"\s+", " ", (raw.get("title") or "")).strip()
    if not title:
        logger.debug("Skipping item from %s: missing title.", feed.name)
        return None

    content = _strip_html(raw.get("content") or "")[:4000]  # cap to avoid LLM context issues

    mentioned = None
    if feed.is_business_owner:
        match = _INLINE_DOMAIN_RE.search(f"{title} {content}")
        if match:
            mentioned = match.group(1).lower()

    return NormalizedCandidate(
        source_feed=feed.name,
        feed_type=feed.kind,
        title=title,
        company_name=_company_name_from_title(title) if feed.is_business_owner else title[:255],
        link=raw.get("link"),
        company_domain=mentioned,
        link_domain=_extract_domain(raw.get("link")),
        author=raw.get("author"),
        content=content,
        published_at=_parse_date(raw.get("published")),
    )


def normalize_items(raw_items: list[dict[str, Any]], feed: FeedConfig) -> list[NormalizedCandidate]:
    """Normalize a feed's items. Skips invalid entries."""
    results = []
    for raw in raw_items:
        candidate = normalize_item(raw, feed)
        if candidate:
            results.append(candidate)

    logger.info("Normalized %d / %d items from %s.", len(results), len(raw_items), feed.name)
    return results
