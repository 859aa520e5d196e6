"""
tests/conftest.py — Shared pytest configuration and fixtures.

Sets dummy environment variables BEFORE any leadflow module is imported,
so that pydantic-settings doesn't fail on missing required fields.
"""

import os

import pytest

# ── Set dummy env vars before any leadflow module is imported ─────────────────
# This runs at collection time, before tests execute.
os.environ.setdefault("OPENROUTER_API_KEY", "test-key")
os.environ.setdefault("OPENROUTER_MODEL", "test-model")
os.environ.setdefault("DATABASE_URL", "sqlite:///:memory:")
os.environ.setdefault("GMAIL_USER", "test@example.com")
os.environ.setdefault("GMAIL_APP_PASSWORD", "test-password")
os.environ.setdefault("PRODUCT_DESCRIPTION", "Done-for-you client acquisition for small B2B teams.")
os.environ.setdefault("SENDER_NAME", "Sam")
os.environ.setdefault("MAILER_DRY_RUN", "true")
# No real collaborator is ever called, so there is nothing to space out
os.environ.setdefault("ENRICHMENT_MIN_DELAY_SECONDS", "0")
os.environ.setdefault("EMAIL_MIN_DELAY_SECONDS", "0")
os.environ.setdefault("CALENDAR_MIN_DELAY_SECONDS", "0")

from sqlalchemy import create_engine  # noqa: E402
from sqlalchemy.orm import sessionmaker  # noqa: E402
from sqlalchemy.pool import StaticPool  # noqa: E402

from leadflow.db.models import Base  # noqa: E402
from leadflow.services.runtime_settings import seed_default_settings  # noqa: E402


# ── In-memory DB Fixture ──────────────────────────────────────────────────────

@pytest.fixture
def db():
    """
    Provide a fresh in-memory SQLite session with the default toggles seeded.

    StaticPool keeps the single in-memory connection alive across commits.
    """
    engine = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    Base.metadata.create_all(engine)
    Session = sessionmaker(bind=engine, autoflush=False, expire_on_commit=False)
    session = Session()
    seed_default_settings(session)
    session.commit()

    try:
        yield session
    finally:
        session.close()
        Base.metadata.drop_all(engine)
        engine.dispose()
