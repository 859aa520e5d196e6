"""
leadflow/services/qualification.py — Boolean gate deciding whether a lead proceeds to scoring.

A lead qualifies when at least `min_criteria` of four criteria hold, or when
discovery already vouched for it (routing flag or a high discovery score).

The override path can qualify a lead with zero keyword matches. It stays
until product confirms it; `QualificationResult.overridden` marks those leads.
"""

import logging
from dataclasses import dataclass, field
from typing import Optional

from leadflow.db.models import Lead
from leadflow.services.keyword_config import KeywordConfig, get_keyword_config
from leadflow.services.signals import detect_signals

logger = logging.getLogger(__name__)

QUALIFIED_REASON = "Meets qualification criteria"


@dataclass
class QualificationResult:
    qualified: bool
    criteria: dict[str, bool]
    signals: dict[str, bool]
    reason: str
    overridden: bool = False              # qualified only via routing flag / high score
    unmet: list[str] = field(default_factory=list)

    @property
    def met_count(self) -> int:
        return sum(1 for v in self.criteria.values() if v)


def pre_qualify(lead: Lead, config: Optional[KeywordConfig] = None) -> QualificationResult:
    """
    Evaluate the four qualification criteria for a lead.

    Args:
        lead:   The lead to evaluate (need not be persisted).
        config: Keyword config; defaults to the process-wide one.

    Returns:
        QualificationResult with the per-criterion map and a readable reason.
    """
    config = config or get_keyword_config()
    rules = config.qualification
    signals = detect_signals(lead, config)

    high_score = (lead.discovery_score or 0) >= rules.high_score_override
    routed = bool(lead.route_to_outreach)

    criteria = {
        "looking_for_solutions": (
            signals["needs_help"] or signals["hiring"] or signals["sourcing_solutions"] or high_score
        ),
        "has_budget": (
            signals["funding_mentioned"] or signals["paying_for_tools"]
            or signals["budget_signals"] or high_score
        ),
        "relevant_pain_point": signals["pain_point_detected"] or high_score,
        "reachable": signals["has_contact_info"] or routed,
    }

    met = sum(1 for v in criteria.values() if v)
    by_criteria = met >= rules.min_criteria
    qualified = by_criteria or routed or high_score
    unmet = [name for name, ok in criteria.items() if not ok]

    result = QualificationResult(
        qualified=qualified,
        criteria=criteria,
        signals=signals,
        reason=QUALIFIED_REASON if qualified else f"Missing: {', '.join(unmet)}",
        overridden=qualified and not by_criteria,
        unmet=unmet,
    )

    if result.overridden:
        logger.debug(
            "Lead %s qualified by override (routed=%s, discovery_score=%s, criteria=%d/4)",
            lead.id, routed, lead.discovery_score, met,
        )
    return result
