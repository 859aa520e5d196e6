"""
leadflow/services/status.py — One-call operational overview.
"""

import logging
from datetime import timedelta
from typing import Any, Optional

from sqlalchemy.orm import Session

from leadflow.config import settings
from leadflow.db import repository
from leadflow.db.models import utcnow
from leadflow.outreach.booking import get_booking_stats
from leadflow.services.batching import get_inventory_status
from leadflow.services.runtime_settings import load_snapshot

logger = logging.getLogger(__name__)


def get_stale_claims(db: Session) -> list[dict[str, Any]]:
    """Send-ledger claims older than stale_claim_minutes whose campaign never got marked sent."""
    cutoff = utcnow() - timedelta(minutes=settings.stale_claim_minutes)
    claims = repository.get_stale_send_claims(db, cutoff)
    if claims:
        logger.warning("%d stale send claims need review", len(claims))
    return [
        {"email": c.email, "campaign_id": c.campaign_id, "claimed_at": c.claimed_at}
        for c in claims
    ]


def get_system_status(db: Session, workers: Optional[list[dict[str, Any]]] = None) -> dict[str, Any]:
    return {
        "inventory": get_inventory_status(db).as_dict(),
        "leads_by_status": repository.count_leads_by_status(db),
        "campaigns_by_status": {
            k: v for k, v in repository.count_campaigns_by_status(db).items() if v
        },
        "pending_approvals": repository.count_pending_approvals(db),
        "undelivered_responses": len(repository.get_undelivered_responses(db, limit=1000)),
        "stale_send_claims": get_stale_claims(db),
        "booking": get_booking_stats(db),
        "settings": load_snapshot(db).as_dict(),
        "mailer_dry_run": settings.mailer_dry_run,
        "workers": workers or [],
    }
