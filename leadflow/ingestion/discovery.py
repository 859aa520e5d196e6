"""
leadflow/ingestion/discovery.py — Discovery sweep: feeds → candidates → NEW leads.

fetch → normalize → relevance filter → resolve domain → dedup → save
"""

import logging
import threading
from typing import Callable, Optional

from sqlalchemy.orm import Session

from leadflow.db import repository
from leadflow.ingestion.fetcher import (
    FeedConfig,
    extract_company_domain,
    fetch_feed,
    is_platform_domain,
    parse_feed_configs,
)
from leadflow.ingestion.filters import DiscoveryAssessment, filter_relevant
from leadflow.ingestion.normalizer import NormalizedCandidate, normalize_items
from leadflow.services.keyword_config import KeywordConfig, get_keyword_config
from leadflow.services.results import SweepResult, stop_requested

logger = logging.getLogger(__name__)


def resolve_domain(
    candidate: NormalizedCandidate,
    extractor: Callable[[str], Optional[str]] = extract_company_domain,
) -> tuple[Optional[str], bool]:
    """
    Best domain for a candidate and whether it is a real company domain.

    Business-owner posts try the domain mentioned in the post, then the
    product's website from its platform page, then the link host.
    """
    if candidate.feed_type == "business_owners":
        if candidate.company_domain and not is_platform_domain(candidate.company_domain):
            return candidate.company_domain, True
        if candidate.link:
            extracted = extractor(candidate.link)
            if extracted:
                return extracted, True
    domain = candidate.company_domain or candidate.link_domain
    return domain, not is_platform_domain(domain)


def build_signal_payload(candidate: NormalizedCandidate, assessment: DiscoveryAssessment, real_domain: bool) -> dict:
    return {
        "title": candidate.title,
        "source_feed": candidate.source_feed,
        "url": candidate.link,
        "published": candidate.published_at.isoformat() if candidate.published_at else None,
        "author": candidate.author,
        "pain_point": assessment.pain_point,
        "business_area": assessment.business_area,
        "content_preview": candidate.content[:500],
        "has_real_domain": real_domain,
        "needs_email_lookup": True,
    }


def save_candidate(
    db: Session,
    candidate: NormalizedCandidate,
    assessment: DiscoveryAssessment,
    extractor: Callable[[str], Optional[str]] = extract_company_domain,
) -> bool:
    """Store one candidate as a NEW lead. Returns False for a duplicate."""
    if candidate.link and repository.lead_exists(db, candidate.link, None, candidate.company_name):
        return False

    domain, real_domain = resolve_domain(candidate, extractor)
    if repository.lead_exists(db, candidate.link, domain, candidate.company_name):
        return False

    repository.create_lead(
        db,
        company_name=candidate.company_name,
        source=f"rss:{candidate.feed_type}",
        source_url=candidate.link,
        company_domain=domain,
        contact_name=candidate.author if candidate.feed_type == "business_owners" else None,
        signal_payload=build_signal_payload(candidate, assessment, real_domain),
        discovery_score=assessment.discovery_score,
        route_to_outreach=assessment.route_to_outreach,
    )
    db.commit()
    return True


def run_discovery(
    db: Session,
    feeds: Optional[list[FeedConfig]] = None,
    stop_event: Optional[threading.Event] = None,
    config: Optional[KeywordConfig] = None,
    fetch: Callable[[FeedConfig], list[dict]] = fetch_feed,
    extractor: Callable[[str], Optional[str]] = extract_company_domain,
) -> SweepResult:
    """
    Scan every configured feed and store new, relevant candidates as leads.

    Re-running over the same items adds nothing: candidates are deduplicated
    on source URL and on (domain, company name).
    """
    config = config or get_keyword_config()
    feeds = feeds if feeds is not None else parse_feed_configs()
    result = SweepResult(name="discovery")

    logger.info("🔍 Scanning %d feeds for opportunities...", len(feeds))

    for feed in feeds:
        if stop_requested(stop_event):
            result.stopped_early = True
            break

        candidates = normalize_items(fetch(feed), feed)
        relevant = filter_relevant(candidates, config)
        result.bump("irrelevant", len(candidates) - len(relevant))

        for candidate, assessment in relevant:
            result.processed += 1
            try:
                saved = save_candidate(db, candidate, assessment, extractor)
            except Exception as exc:
                db.rollback()
                logger.error("Failed to save candidate %r: %s", candidate.title, exc)
                result.record_error(candidate.link or candidate.title, "unexpected", str(exc))
                continue
            if saved:
                result.succeeded += 1
                icon = "🎯" if candidate.feed_type == "business_owners" else "✅"
                logger.info("   %s Saved: %s", icon, candidate.company_name[:50])
            else:
                result.skipped += 1
                result.bump("duplicates")

    logger.info("Discovery done: %d new leads, %d duplicates", result.succeeded, result.meta.get("duplicates", 0))
    return result
