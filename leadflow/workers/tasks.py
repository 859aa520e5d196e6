"""
leadflow/workers/tasks.py — The pipeline's polling tasks.

Each task opens its own session, takes a fresh settings snapshot where it
needs one, runs one sweep and returns its SweepResult. Tasks coordinate
only through the database.
"""

import logging
import threading

from leadflow.config import settings
from leadflow.db import repository
from leadflow.db.session import get_session
from leadflow.errors import InsufficientInventoryError
from leadflow.ingestion.discovery import run_discovery
from leadflow.outreach.booking import sync_scheduled_meetings
from leadflow.outreach.dispatcher import run_outreach_sweep, run_research_sweep
from leadflow.outreach.replies import deliver_pending_responses, process_pending_replies
from leadflow.services.batching import create_batch
from leadflow.services.lead_service import process_new_leads
from leadflow.services.results import SweepResult
from leadflow.services.runtime_settings import load_snapshot
from leadflow.workers.supervisor import PollingWorker

logger = logging.getLogger(__name__)


def discovery_task(stop_event: threading.Event) -> SweepResult:
    with get_session() as db:
        return run_discovery(db, stop_event=stop_event)


def qualification_task(stop_event: threading.Event) -> SweepResult:
    with get_session() as db:
        return process_new_leads(db, stop_event=stop_event)


def batch_admission_task(stop_event: threading.Event) -> SweepResult:
    """Admit a new batch, but only while no other batch is in flight."""
    result = SweepResult(name="batch_admission")
    with get_session() as db:
        open_batches = repository.get_open_batches(db)
        if open_batches:
            result.skipped = 1
            result.meta["open_batch"] = open_batches[0].batch_number
            return result
        try:
            batch = create_batch(db)
        except InsufficientInventoryError as exc:
            result.skipped = 1
            result.meta["awaiting_replenishment"] = exc.available
            return result
        result.processed = result.succeeded = 1
        result.meta["batch_number"] = batch.batch_number
    return result


def research_task(stop_event: threading.Event) -> SweepResult:
    with get_session() as db:
        return run_research_sweep(db, stop_event=stop_event)


def outreach_task(stop_event: threading.Event) -> SweepResult:
    with get_session() as db:
        return run_outreach_sweep(db, snapshot=load_snapshot(db), stop_event=stop_event)


def reply_task(stop_event: threading.Event) -> SweepResult:
    """Classify replies, deliver approved follow-ups, then sync calendar bookings."""
    with get_session() as db:
        snapshot = load_snapshot(db)
        result = process_pending_replies(db, snapshot=snapshot, stop_event=stop_event)
        delivered = deliver_pending_responses(db, snapshot=snapshot, stop_event=stop_event)
        synced = sync_scheduled_meetings(db)

    result.meta["delivered"] = delivered.succeeded
    result.meta["meetings_synced"] = synced.succeeded
    result.errors.extend(delivered.errors + synced.errors)
    result.failed += delivered.failed + synced.failed
    return result


def build_default_workers() -> list[PollingWorker]:
    return [
        PollingWorker("discovery", discovery_task, settings.discovery_interval_seconds),
        PollingWorker("qualification", qualification_task, settings.qualification_interval_seconds),
        PollingWorker("batch_admission", batch_admission_task, settings.batch_interval_seconds),
        PollingWorker("research", research_task, settings.research_interval_seconds),
        PollingWorker("outreach", outreach_task, settings.outreach_interval_seconds),
        PollingWorker("replies", reply_task, settings.reply_interval_seconds),
    ]
