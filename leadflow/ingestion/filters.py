"""
leadflow/ingestion/filters.py — Relevance pre-filter and discovery scoring for feed items.

Business-owner feeds (founders posting their own products) are always kept
with a high fixed score. Content feeds must show enough pain / business /
action vocabulary to be worth storing:

    relevant  ⇔  total_hits ≥ min_total_hits  or  business_hits ≥ min_business_hits
    fit       =  min(10, ceil(total_hits / 2) + 3)
"""

import logging
import math
from dataclasses import dataclass
from typing import Optional

from leadflow.ingestion.normalizer import NormalizedCandidate
from leadflow.services.keyword_config import KeywordConfig, get_keyword_config
from leadflow.services.signals import count_matches

logger = logging.getLogger(__name__)

BUSINESS_OWNER_SCORE = 70
BUSINESS_OWNER_FIT = 8
ROUTE_FIT_THRESHOLD = 7

# First match wins
_OWNER_PAIN_POINTS = [
    (("struggling", "hard time"), "Facing growth challenges"),
    (("need help", "looking for advice"), "Seeking expertise"),
    (("customer", "acquisition"), "Customer acquisition challenges"),
    (("marketing", "traffic"), "Marketing/visibility challenges"),
    (("sales", "convert"), "Sales conversion challenges"),
    (("scale", "grow"), "Scaling challenges"),
    (("launched", "new"), "Early stage - needs traction"),
]
_CONTENT_PAIN_POINTS = [
    (("struggling",), "Facing operational challenges"),
    (("need help",), "Seeking assistance"),
    (("looking for",), "Actively searching for solutions"),
    (("how to",), "Knowledge gap"),
]
_BUSINESS_AREAS = [
    (("marketing", "customer acquisition"), "marketing"),
    (("sales", "revenue"), "sales"),
    (("product", "development"), "product"),
    (("operations", "workflow"), "operations"),
    (("growth", "scale"), "growth"),
]


@dataclass
class DiscoveryAssessment:
    relevant: bool
    pain_hits: int
    business_hits: int
    action_hits: int
    fit_score: int
    discovery_score: int
    route_to_outreach: bool
    pain_point: str
    business_area: str

    @property
    def total_hits(self) -> int:
        return self.pain_hits + self.business_hits + self.action_hits


def _first_match(text: str, rules, default: str) -> str:
    for keywords, label in rules:
        if any(k in text for k in keywords):
            return label
    return default


def detect_business_area(text: str) -> str:
    return _first_match(text, _BUSINESS_AREAS, "general")


def extract_pain_point(text: str, business_owner: bool) -> str:
    if business_owner:
        return _first_match(text, _OWNER_PAIN_POINTS, "Building/growing a business")
    return _first_match(text, _CONTENT_PAIN_POINTS, "General business challenge")


def fit_score(total_hits: int) -> int:
    return min(10, math.ceil(total_hits / 2) + 3)


def assess_candidate(candidate: NormalizedCandidate, config: Optional[KeywordConfig] = None) -> DiscoveryAssessment:
    """Count keyword hits and derive relevance, fit and routing for one item."""
    rules = (config or get_keyword_config()).discovery
    text = candidate.text
    business_owner = candidate.feed_type == "business_owners"

    pain = count_matches(text, rules.pain)
    business = count_matches(text, rules.business)
    action = count_matches(text, rules.action)
    total = pain + business + action

    if business_owner:
        fit = BUSINESS_OWNER_FIT
        relevant = True
        score = BUSINESS_OWNER_SCORE
        route = True
    else:
        fit = fit_score(total)
        relevant = total >= rules.min_total_hits or business >= rules.min_business_hits
        score = fit * 10
        route = fit >= ROUTE_FIT_THRESHOLD

    return DiscoveryAssessment(
        relevant=relevant,
        pain_hits=pain,
        business_hits=business,
        action_hits=action,
        fit_score=fit,
        discovery_score=score,
        route_to_outreach=route,
        pain_point=extract_pain_point(text, business_owner),
        business_area=detect_business_area(text),
    )


def filter_relevant(
    candidates: list[NormalizedCandidate],
    config: Optional[KeywordConfig] = None,
) -> list[tuple[NormalizedCandidate, DiscoveryAssessment]]:
    """Keep only relevant candidates, paired with their assessment."""
    passed = []
    for candidate in candidates:
        assessment = assess_candidate(candidate, config)
        if assessment.relevant:
            passed.append((candidate, assessment))

    logger.info("Relevance filter: %d / %d items passed.", len(passed), len(candidates))
    return passed
