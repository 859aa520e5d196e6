"""
leadflow/config.py — Central configuration loaded from environment variables.
All modules import settings from here; never read os.environ directly elsewhere.

Runtime toggles that operators flip while the system runs (auto-send, approval
gates) are NOT here — they live in the system_settings table and are read per
sweep by leadflow.services.runtime_settings.
"""

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    # ── LLM ──────────────────────────────────────────────────────────────────
    openrouter_api_key: str = Field(..., description="OpenRouter API key")
    openrouter_model: str = Field(
        default="openrouter/trinity-large-preview:free",
        description="OpenRouter model used for drafting and reply classification",
    )
    research_model: str = Field(
        default="perplexity/sonar",
        description="OpenRouter model used for web-grounded lead research",
    )
    llm_timeout_seconds: float = Field(default=60.0, gt=0)

    # ── Database ──────────────────────────────────────────────────────────────
    database_url: str = Field(..., description="PostgreSQL connection URI")

    # ── Email ─────────────────────────────────────────────────────────────────
    gmail_user: str = Field(..., description="Gmail sender address")
    gmail_app_password: str = Field(..., description="Gmail App Password (16 chars)")
    sender_name: str = Field(default="", description="Sign-off name; defaults to the mailbox name")
    smtp_timeout_seconds: float = Field(default=30.0, gt=0)

    # ── Product Context ───────────────────────────────────────────────────────
    product_description: str = Field(
        ...,
        description="Description of the service the pipeline is generating leads for",
    )

    # ── Outreach ──────────────────────────────────────────────────────────────
    mailer_dry_run: bool = Field(
        default=True,
        description="If True, print emails to stdout instead of actually sending",
    )

    # ── Booking (Calendly) ────────────────────────────────────────────────────
    calendly_api_key: str = Field(default="", description="Calendly personal access token")
    calendly_event_type_url: str = Field(
        default="",
        description="Public scheduling link, e.g. https://calendly.com/you/30min",
    )
    calendly_organization_uri: str = Field(default="")
    http_timeout_seconds: float = Field(default=15.0, gt=0)

    # ── Batching / inventory ──────────────────────────────────────────────────
    batch_size: int = Field(default=100, gt=0)
    inventory_target: int = Field(default=10_000, gt=0)
    replenish_floor: int = Field(default=1_000, ge=0)
    min_batch_score: int = Field(
        default=25,
        ge=0,
        le=40,
        description="Minimum total score (0–40) for a lead to count as inventory",
    )

    # ── Signals / scoring ─────────────────────────────────────────────────────
    keyword_config_path: str = Field(
        default="",
        description="Path to an alternative keywords YAML; empty uses the bundled file",
    )

    # ── Discovery ─────────────────────────────────────────────────────────────
    rss_feeds: list[str] = Field(
        default=[
            "business_owners|Indie Hackers|https://www.indiehackers.com/feed.xml",
            "business_owners|Product Hunt|https://www.producthunt.com/feed",
            "content|Entrepreneur|https://feeds.feedburner.com/entrepreneur/latest",
            "content|Smart Passive Income|https://www.smartpassiveincome.com/feed/",
            "content|Copyblogger|https://copyblogger.com/feed/",
            "content|Neil Patel|https://neilpatel.com/feed/",
        ],
        description="Feeds as 'type|name|url' entries",
    )
    max_items_per_feed: int = Field(default=15, gt=0)

    # ── Workers ───────────────────────────────────────────────────────────────
    max_leads_per_sweep: int = Field(default=100, gt=0)
    discovery_interval_seconds: float = Field(default=3600.0, gt=0)
    qualification_interval_seconds: float = Field(default=300.0, gt=0)
    batch_interval_seconds: float = Field(default=600.0, gt=0)
    research_interval_seconds: float = Field(default=300.0, gt=0)
    outreach_interval_seconds: float = Field(default=300.0, gt=0)
    reply_interval_seconds: float = Field(default=120.0, gt=0)
    start_workers_on_boot: bool = Field(default=False, description="Start all workers when the API starts")
    worker_max_retries: int = Field(default=3, ge=1)
    worker_backoff_max_seconds: float = Field(default=300.0, gt=0)

    # Minimum delay between consecutive calls to each external collaborator
    enrichment_min_delay_seconds: float = Field(default=3.0, ge=0)
    email_min_delay_seconds: float = Field(default=3.0, ge=0)
    calendar_min_delay_seconds: float = Field(default=5.0, ge=0)

    # Ledger claims older than this with no campaign marked sent are reported
    stale_claim_minutes: int = Field(default=30, gt=0)

    # ── Logging ───────────────────────────────────────────────────────────────
    log_level: str = Field(default="INFO")
    log_format: str = Field(default="text", description="'text' or 'json'")


# Singleton — import this everywhere
settings = Settings()
