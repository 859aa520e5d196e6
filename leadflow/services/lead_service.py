"""
leadflow/services/lead_service.py — Qualification and scoring sweep.

This is the "glue" layer that coordinates:
  - Fetching leads that have not been qualified yet
  - Running the keyword qualification gate on each
  - Scoring the ones that pass
  - Persisting the outcome, one commit per lead
"""

import logging
import threading
from typing import Optional

from sqlalchemy.orm import Session

from leadflow.config import settings
from leadflow.db import repository
from leadflow.services.keyword_config import KeywordConfig, get_keyword_config
from leadflow.services.results import SweepResult, stop_requested
from leadflow.services.scoring import process_lead

logger = logging.getLogger(__name__)


def process_new_leads(
    db: Session,
    limit: Optional[int] = None,
    config: Optional[KeywordConfig] = None,
    stop_event: Optional[threading.Event] = None,
) -> SweepResult:
    """
    Qualify and score up to `limit` NEW leads.

    Args:
        db:          Active session; committed after every lead.
        limit:       Max leads per call. Defaults to settings.max_leads_per_sweep.
        config:      Keyword config; defaults to the process-wide one.
        stop_event:  Checked between leads for a clean shutdown.

    Returns:
        SweepResult with meta counts qualified / rejected / tier_<recommendation>.
    """
    config = config or get_keyword_config()
    result = SweepResult(name="qualification")
    leads = repository.get_unprocessed_leads(db, limit=limit or settings.max_leads_per_sweep)

    if not leads:
        logger.info("No unqualified leads found.")
        return result

    logger.info("Qualifying %d leads (keywords v%s)...", len(leads), config.version)

    for lead in leads:
        if stop_requested(stop_event):
            result.stopped_early = True
            break
        result.processed += 1
        try:
            qualification, breakdown = process_lead(lead, config)
            repository.save_qualification(db, lead, qualification, breakdown)
            db.commit()
        except Exception as exc:
            db.rollback()
            logger.error("Error qualifying lead %d (%s): %s", lead.id, lead.company_name, exc)
            result.record_error(lead.id, "unexpected", str(exc))
            continue

        result.succeeded += 1
        if breakdown is None:
            result.bump("rejected")
            logger.info("❌ Rejected: %s — %s", lead.company_name, qualification.reason)
        else:
            result.bump("qualified")
            result.bump(f"tier_{breakdown.recommendation.value.lower()}")
            logger.info(
                "✅ Qualified: %s (score=%d/40, %s)",
                lead.company_name, breakdown.total, breakdown.recommendation.value,
            )

    logger.info("Qualification done: %s", result.meta)
    return result
