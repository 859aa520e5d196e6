"""
leadflow/ingestion/fetcher.py — Fetches raw items from RSS / Atom feeds.

Feeds come from settings.rss_feeds as 'type|name|url' entries, where type is
'business_owners' (communities where founders post their own products) or
'content' (blogs, scanned for pain-point discussion).

Also resolves a product's real website from its platform page, since a
Product Hunt or Indie Hackers link says nothing about the company's domain.
"""

import logging
from dataclasses import dataclass
from typing import Any, Optional
from urllib.parse import urlparse

import requests
from bs4 import BeautifulSoup
from tenacity import retry, retry_if_exception_type, stop_after_attempt, wait_exponential

from leadflow.config import settings
from leadflow.errors import ConfigError

logger = logging.getLogger(__name__)

FEED_TYPES = ("business_owners", "content")

HEADERS = {
    "User-Agent": "Mozilla/5.0 (compatible; LeadflowBot/1.0)",
    "Accept": "application/rss+xml, application/atom+xml, application/xml, text/xml, */*",
}

# Hosts that are sources, not company websites
PLATFORM_DOMAINS = frozenset({
    "producthunt.com", "indiehackers.com", "reddit.com", "twitter.com", "x.com",
    "linkedin.com", "facebook.com", "instagram.com", "youtube.com", "medium.com",
    "substack.com", "github.com", "news.ycombinator.com", "techcrunch.com", "entrepreneur.com",
})

_WEBSITE_LINK_WORDS = ("visit", "website", "get it", "homepage")


@dataclass(frozen=True)
class FeedConfig:
    kind: str
    name: str
    url: str

    @property
    def is_business_owner(self) -> bool:
        return self.kind == "business_owners"


def parse_feed_configs(entries: Optional[list[str]] = None) -> list[FeedConfig]:
    """
    Parse 'type|name|url' entries.

    Raises:
        ConfigError: On a malformed entry or unknown feed type.
    """
    feeds = []
    for entry in entries if entries is not None else settings.rss_feeds:
        parts = [p.strip() for p in entry.split("|")]
        if len(parts) != 3 or not all(parts):
            raise ConfigError(f"Feed entry must be 'type|name|url', got: {entry!r}")
        kind, name, url = parts
        if kind not in FEED_TYPES:
            raise ConfigError(f"Unknown feed type {kind!r} in {entry!r}; expected one of {FEED_TYPES}")
        feeds.append(FeedConfig(kind=kind, name=name, url=url))
    return feeds


def is_platform_domain(domain: Optional[str]) -> bool:
    if not domain:
        return True
    return any(domain == p or domain.endswith("." + p) for p in PLATFORM_DOMAINS)


@retry(
    retry=retry_if_exception_type(requests.RequestException),
    stop=stop_after_attempt(3),
    wait=wait_exponential(multiplier=1, min=2, max=10),
    reraise=True,
)
def _fetch_text(url: str) -> str:
    """
    Internal: GET a URL and return its body.
    Retries up to 3 times on transient network errors.
    """
    response = requests.get(url, headers=HEADERS, timeout=settings.http_timeout_seconds)
    response.raise_for_status()
    return response.text


def _text(node) -> Optional[str]:
    if node is None:
        return None
    value = node.get_text(strip=True)
    return value or None


def parse_feed(xml_text: str) -> list[dict[str, Any]]:
    """Parse RSS 2.0 <item> or Atom <entry> elements into plain dicts."""
    soup = BeautifulSoup(xml_text, "xml")
    items = []
    for node in soup.find_all(["item", "entry"]):
        link_node = node.find("link")
        link = None
        if link_node is not None:
            link = link_node.get("href") or _text(link_node)

        content = node.find("encoded") or node.find("content") or node.find("description") or node.find("summary")
        author = node.find("creator") or node.find("author")
        if author is not None and author.find("name") is not None:
            author = author.find("name")

        items.append({
            "title": _text(node.find("title")),
            "link": link,
            "content": content.get_text() if content is not None else "",
            "published": _text(node.find("pubDate")) or _text(node.find("published")) or _text(node.find("updated")),
            "author": _text(author),
        })
    return items


def fetch_feed(feed: FeedConfig, limit: Optional[int] = None) -> list[dict[str, Any]]:
    """
    Fetch and parse one feed, newest items first as published.

    Returns [] when the feed cannot be fetched; one broken feed never stops
    the others.
    """
    if limit is None:
        limit = settings.max_items_per_feed

    logger.info("📡 Fetching %s...", feed.name)
    try:
        xml_text = _fetch_text(feed.url)
    except requests.RequestException as e:
        logger.error("Failed to fetch feed %s after retries: %s", feed.name, e)
        return []

    items = parse_feed(xml_text)[:limit]
    logger.info("Fetched %d items from %s.", len(items), feed.name)
    return items


def extract_company_domain(page_url: str) -> Optional[str]:
    """
    Find the product's own website on a platform page.

    Looks for a "visit"/"website" style link pointing off-platform, then falls
    back to the first off-platform absolute link. Returns None when nothing
    usable is found or the page cannot be fetched.
    """
    try:
        html = _fetch_text(page_url)
    except requests.RequestException as e:
        logger.debug("Domain extraction skipped for %s: %s", page_url, e)
        return None

    soup = BeautifulSoup(html, "lxml")
    fallback = None
    for anchor in soup.find_all("a", href=True):
        href = anchor["href"]
        if not href.startswith("http"):
            continue
        domain = urlparse(href).netloc.lower().removeprefix("www.")
        if is_platform_domain(domain):
            continue
        label = anchor.get_text(" ", strip=True).lower()
        if any(word in label for word in _WEBSITE_LINK_WORDS):
            return domain
        fallback = fallback or domain
    return fallback
