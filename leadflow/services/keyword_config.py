"""
leadflow/services/keyword_config.py — Versioned keyword/weight configuration.

Loads keywords.yaml (or the file named by KEYWORD_CONFIG_PATH) into typed
pydantic models, cached for the lifetime of the process. Tuning a keyword
list or a scoring weight is a YAML edit, not a code change.
"""

import logging
from functools import lru_cache
from pathlib import Path

import yaml
from pydantic import BaseModel, Field, ValidationError, field_validator

from leadflow.config import settings
from leadflow.errors import ConfigError

logger = logging.getLogger(__name__)

BUNDLED_CONFIG_PATH = Path(__file__).with_name("keywords.yaml")

# Signals every config must define; the detector and the scorer depend on them.
REQUIRED_SIGNALS = (
    "needs_help",
    "hiring",
    "sourcing_solutions",
    "funding_mentioned",
    "paying_for_tools",
    "budget_signals",
    "pain_point_detected",
    "urgency_high",
    "urgency_medium",
    "client_acquisition_fit",
)


# ── Schema ────────────────────────────────────────────────────────────────────

class BudgetWeights(BaseModel):
    funding_mentioned: int = 4
    paying_for_tools: int = 3
    budget_signals: int = 3


class UrgencyLevels(BaseModel):
    high: int = 9
    medium: int = 7
    needs_help_or_hiring: int = 6
    default: int = 5


class ServiceFitWeights(BaseModel):
    client_acquisition_fit: int = 5
    needs_help: int = 2
    hiring_or_sourcing: int = 3


class TierThresholds(BaseModel):
    priority: int = 30
    qualified: int = 25
    maybe: int = 20


class ScoringWeights(BaseModel):
    pain_keyword_points: float = 0.8
    sub_score_max: int = 10
    budget: BudgetWeights = Field(default_factory=BudgetWeights)
    urgency: UrgencyLevels = Field(default_factory=UrgencyLevels)
    service_fit: ServiceFitWeights = Field(default_factory=ServiceFitWeights)
    tiers: TierThresholds = Field(default_factory=TierThresholds)
    insight_threshold: int = 7
    urgency_insight_threshold: int = 8


class QualificationRules(BaseModel):
    high_score_override: int = 70
    min_criteria: int = Field(default=3, ge=1, le=4)


class DiscoveryKeywords(BaseModel):
    min_total_hits: int = 3
    min_business_hits: int = 2
    pain: list[str] = Field(default_factory=list)
    business: list[str] = Field(default_factory=list)
    action: list[str] = Field(default_factory=list)
    owner: list[str] = Field(default_factory=list)


class ReplyRules(BaseModel):
    unsubscribe: list[str] = Field(default_factory=list)
    out_of_office: list[str] = Field(default_factory=list)


class KeywordConfig(BaseModel):
    version: str
    signals: dict[str, list[str]]
    severity_keywords: list[str]
    scoring: ScoringWeights = Field(default_factory=ScoringWeights)
    qualification: QualificationRules = Field(default_factory=QualificationRules)
    discovery: DiscoveryKeywords = Field(default_factory=DiscoveryKeywords)
    replies: ReplyRules = Field(default_factory=ReplyRules)

    @field_validator("signals")
    @classmethod
    def _lowercase_signals(cls, value: dict[str, list[str]]) -> dict[str, list[str]]:
        missing = [name for name in REQUIRED_SIGNALS if name not in value]
        if missing:
            raise ValueError(f"missing signal lists: {', '.join(missing)}")
        return {name: [str(k).lower() for k in keywords] for name, keywords in value.items()}

    @field_validator("severity_keywords")
    @classmethod
    def _lowercase_severity(cls, value: list[str]) -> list[str]:
        return [str(k).lower() for k in value]


# ── Loading ───────────────────────────────────────────────────────────────────

def load_keyword_config(path: str | Path) -> KeywordConfig:
    """
    Parse and validate a keyword YAML file.

    Raises:
        ConfigError: If the file is missing, not valid YAML, or fails validation.
    """
    path = Path(path)
    try:
        with path.open("r", encoding="utf-8") as f:
            raw = yaml.safe_load(f)
    except FileNotFoundError as exc:
        raise ConfigError(f"Keyword config not found: {path}") from exc
    except yaml.YAMLError as exc:
        raise ConfigError(f"Keyword config {path} is not valid YAML: {exc}") from exc

    if not isinstance(raw, dict):
        raise ConfigError(f"Keyword config {path} must be a mapping")

    try:
        config = KeywordConfig.model_validate(raw)
    except ValidationError as exc:
        raise ConfigError(f"Keyword config {path} is invalid: {exc}") from exc

    logger.info(
        "Keyword config loaded from %s (version=%s, %d signals)",
        path.name, config.version, len(config.signals),
    )
    return config


@lru_cache(maxsize=1)
def get_keyword_config() -> KeywordConfig:
    """Return the active keyword config, loaded once per process."""
    return load_keyword_config(settings.keyword_config_path or BUNDLED_CONFIG_PATH)
