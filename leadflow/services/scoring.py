"""
leadflow/services/scoring.py — Rule-based 0–40 scoring of qualified leads.

Four sub-scores, each clamped to [0, 10]:
  pain_severity      → points per severity keyword present
  budget_likelihood  → funding / paying-for-tools / budget signals
  urgency            → high / medium / needs-help-or-hiring / default
  service_fit        → client-acquisition fit, needs help, hiring or sourcing

No API calls. Weights and tier boundaries come from the keyword config.
"""

import logging
import math
from dataclasses import dataclass, field
from typing import Optional

from leadflow.db.models import Lead, Recommendation
from leadflow.errors import NotQualifiedError
from leadflow.services.keyword_config import KeywordConfig, ScoringWeights, get_keyword_config
from leadflow.services.qualification import QualificationResult, pre_qualify
from leadflow.services.signals import build_corpus, count_matches

logger = logging.getLogger(__name__)


@dataclass
class ScoreBreakdown:
    pain_severity: int
    budget_likelihood: int
    urgency: int
    service_fit: int
    total: int
    recommendation: Recommendation
    reasoning: str
    key_insights: list[str] = field(default_factory=list)
    suggested_approach: str = "Standard outreach"


def _round_half_up(value: float) -> int:
    # round() is banker's rounding; 2.5 must become 3
    return int(math.floor(value + 0.5))


def _clamp(value: int, upper: int) -> int:
    return max(0, min(upper, value))


def recommendation_for(total: int, weights: ScoringWeights) -> Recommendation:
    tiers = weights.tiers
    if total >= tiers.priority:
        return Recommendation.PRIORITY
    if total >= tiers.qualified:
        return Recommendation.QUALIFIED
    if total >= tiers.maybe:
        return Recommendation.MAYBE
    return Recommendation.SKIP


def score_qualified_lead(
    lead: Lead,
    qualification: QualificationResult,
    config: Optional[KeywordConfig] = None,
) -> ScoreBreakdown:
    """
    Compute the score breakdown for a lead that passed qualification.

    Raises:
        NotQualifiedError: If qualification.qualified is False. Unqualified
            leads never carry a score.
    """
    if not qualification.qualified:
        raise NotQualifiedError(f"Lead {lead.id} is not qualified: {qualification.reason}")

    config = config or get_keyword_config()
    weights = config.scoring
    cap = weights.sub_score_max
    signals = qualification.signals
    corpus = build_corpus(lead)

    # 1. Pain severity
    hits = count_matches(corpus, config.severity_keywords)
    pain_severity = _clamp(_round_half_up(hits * weights.pain_keyword_points), cap)

    # 2. Budget likelihood
    budget = 0
    if signals.get("funding_mentioned"):
        budget += weights.budget.funding_mentioned
    if signals.get("paying_for_tools"):
        budget += weights.budget.paying_for_tools
    if signals.get("budget_signals"):
        budget += weights.budget.budget_signals
    budget_likelihood = _clamp(budget, cap)

    # 3. Urgency
    if signals.get("urgency_high"):
        urgency = weights.urgency.high
    elif signals.get("urgency_medium"):
        urgency = weights.urgency.medium
    elif signals.get("needs_help") or signals.get("hiring"):
        urgency = weights.urgency.needs_help_or_hiring
    else:
        urgency = weights.urgency.default
    urgency = _clamp(urgency, cap)

    # 4. Service fit
    fit = 0
    if signals.get("client_acquisition_fit"):
        fit += weights.service_fit.client_acquisition_fit
    if signals.get("needs_help"):
        fit += weights.service_fit.needs_help
    if signals.get("hiring") or signals.get("sourcing_solutions"):
        fit += weights.service_fit.hiring_or_sourcing
    service_fit = _clamp(fit, cap)

    total = pain_severity + budget_likelihood + urgency + service_fit
    recommendation = recommendation_for(total, weights)

    insights = []
    if pain_severity >= weights.insight_threshold:
        insights.append("High pain point severity detected")
    if budget_likelihood >= weights.insight_threshold:
        insights.append("Strong budget indicators")
    if urgency >= weights.urgency_insight_threshold:
        insights.append("High urgency - act quickly")
    if service_fit >= weights.insight_threshold:
        insights.append("Excellent fit for our services")

    if recommendation is Recommendation.PRIORITY:
        approach = "Priority contact - personalized approach, reference specific pain points"
    elif recommendation is Recommendation.QUALIFIED:
        approach = "Qualified lead - personalized outreach with value proposition"
    else:
        approach = "Standard outreach"

    breakdown = ScoreBreakdown(
        pain_severity=pain_severity,
        budget_likelihood=budget_likelihood,
        urgency=urgency,
        service_fit=service_fit,
        total=total,
        recommendation=recommendation,
        reasoning=(
            f"Score {total}/{cap * 4}: Pain={pain_severity}, Budget={budget_likelihood}, "
            f"Urgency={urgency}, Fit={service_fit}"
        ),
        key_insights=insights,
        suggested_approach=approach,
    )
    logger.debug("Lead %s scored: %s", lead.id, breakdown.reasoning)
    return breakdown


def process_lead(
    lead: Lead,
    config: Optional[KeywordConfig] = None,
) -> tuple[QualificationResult, Optional[ScoreBreakdown]]:
    """Qualify a lead and, only if it passes, score it."""
    config = config or get_keyword_config()
    qualification = pre_qualify(lead, config)
    if not qualification.qualified:
        return qualification, None
    return qualification, score_qualified_lead(lead, qualification, config)
