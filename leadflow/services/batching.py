"""
leadflow/services/batching.py — Inventory-gated batch admission.

Qualified, scored leads accumulate as inventory. A batch of exactly
`batch_size` leads is released only when inventory can fill it, and the
claim is a conditional UPDATE inside one transaction: if fewer rows than
selected were still unassigned, the whole admission rolls back.

Batch lifecycle: created → researching → ready_to_send → sending → complete.
"""

import logging
from dataclasses import dataclass, field
from typing import Any, Optional

from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from leadflow.config import settings
from leadflow.db import repository
from leadflow.db.models import Batch, BatchStatus, Lead, utcnow
from leadflow.errors import (
    BatchClaimConflictError,
    BatchNotFinishedError,
    InsufficientInventoryError,
    InvalidTransitionError,
    NotFoundError,
)
from leadflow.outreach.state_machine import BATCH_TERMINAL, RELEASABLE

logger = logging.getLogger(__name__)

_BATCH_ORDER = [
    BatchStatus.CREATED,
    BatchStatus.RESEARCHING,
    BatchStatus.READY_TO_SEND,
    BatchStatus.SENDING,
    BatchStatus.COMPLETE,
]


@dataclass
class InventoryStatus:
    available: int
    target: int
    batch_size: int
    min_score: int
    replenish_floor: int
    open_batches: list[dict[str, Any]] = field(default_factory=list)

    @property
    def needs_replenishment(self) -> bool:
        return self.available < self.replenish_floor

    @property
    def can_create_batch(self) -> bool:
        return self.available >= self.batch_size

    @property
    def fill_percentage(self) -> float:
        return round(100.0 * self.available / self.target, 1) if self.target else 0.0

    def as_dict(self) -> dict[str, Any]:
        return {
            "available": self.available,
            "target": self.target,
            "batch_size": self.batch_size,
            "min_score": self.min_score,
            "fill_percentage": self.fill_percentage,
            "needs_replenishment": self.needs_replenishment,
            "can_create_batch": self.can_create_batch,
            "open_batches": self.open_batches,
        }


def get_inventory_status(db: Session) -> InventoryStatus:
    """Report available inventory, the replenishment flag and open batches."""
    available = repository.count_available_inventory(db, settings.min_batch_score)
    open_batches = [
        {
            "id": b.id,
            "batch_number": b.batch_number,
            "status": b.status.value,
            "size": b.size,
        }
        for b in repository.get_open_batches(db)
    ]
    status = InventoryStatus(
        available=available,
        target=settings.inventory_target,
        batch_size=settings.batch_size,
        min_score=settings.min_batch_score,
        replenish_floor=settings.replenish_floor,
        open_batches=open_batches,
    )
    if status.needs_replenishment:
        logger.debug("Inventory low: %d available (floor %d)", available, settings.replenish_floor)
    return status


def create_batch(db: Session, batch_size: Optional[int] = None) -> Batch:
    """
    Admit the top `batch_size` available leads into a new batch and commit.

    Raises:
        InsufficientInventoryError: Fewer than batch_size leads available.
            Nothing is written.
        BatchClaimConflictError: A concurrent admission claimed some of the
            selected leads first. The transaction is rolled back.
    """
    size = batch_size or settings.batch_size
    min_score = settings.min_batch_score

    available = repository.count_available_inventory(db, min_score)
    if available < size:
        logger.info("Cannot create batch: %d available, %d required", available, size)
        raise InsufficientInventoryError(available, size)

    try:
        lead_ids = repository.select_top_available_ids(db, min_score, size)
        if len(lead_ids) < size:
            # Locked rows were skipped by a concurrent admission
            db.rollback()
            raise InsufficientInventoryError(len(lead_ids), size)

        batch = repository.create_batch_row(db, size)
        claimed = repository.claim_leads_for_batch(db, batch.id, lead_ids)
        if claimed != size:
            db.rollback()
            raise BatchClaimConflictError(
                f"Claimed {claimed} of {size} selected leads; admission rolled back"
            )
        db.commit()
    except IntegrityError as exc:
        # Duplicate batch_number from a concurrent admission
        db.rollback()
        raise BatchClaimConflictError(f"Concurrent batch creation: {exc.orig}") from exc

    logger.info("📦 Batch #%d created with %d leads", batch.batch_number, size)
    return batch


def advance_batch(db: Session, batch: Batch, target: BatchStatus) -> None:
    """Move a batch forward through its lifecycle; moving backwards is rejected."""
    current = _BATCH_ORDER.index(batch.status)
    wanted = _BATCH_ORDER.index(target)
    if wanted < current:
        raise InvalidTransitionError(batch.status.value, target.value)
    if wanted == current:
        return

    now = utcnow()
    batch.status = target
    if target is BatchStatus.RESEARCHING:
        batch.research_started_at = now
    elif target is BatchStatus.SENDING:
        batch.sending_started_at = now
    elif target is BatchStatus.COMPLETE:
        batch.completed_at = now
    db.flush()
    logger.info("Batch #%d → %s", batch.batch_number, target.value)


def pending_members(db: Session, batch_id: int) -> list[Lead]:
    """Members that still hold the batch open (no terminal outreach status)."""
    return [
        lead for lead in repository.get_batch_leads(db, batch_id)
        if lead.outreach_status not in BATCH_TERMINAL
    ]


def complete_batch(db: Session, batch_id: int) -> Optional[Batch]:
    """
    Mark a finished batch complete and try to open the next one.

    Returns:
        The newly created batch, or None when inventory is short
        ("awaiting replenishment"), another batch is already open, or a
        concurrent admission claimed the leads first.

    Raises:
        NotFoundError:         Unknown batch id.
        BatchNotFinishedError: Some members have no terminal outreach status.
    """
    batch = repository.get_batch(db, batch_id)
    if batch is None:
        raise NotFoundError(f"Batch {batch_id} not found")

    if batch.status is not BatchStatus.COMPLETE:
        pending = pending_members(db, batch_id)
        if pending:
            raise BatchNotFinishedError(batch_id, len(pending))
        advance_batch(db, batch, BatchStatus.COMPLETE)
        db.commit()
        logger.info("✅ Batch #%d complete", batch.batch_number)

    if repository.get_open_batches(db):
        logger.info("Another batch is already open; not creating the next one")
        return None

    try:
        return create_batch(db)
    except InsufficientInventoryError as exc:
        logger.info("Awaiting replenishment: %s", exc)
        return None
    except BatchClaimConflictError as exc:
        logger.warning("Next batch not admitted, a concurrent admission won: %s", exc)
        return None


def get_batch_stats(db: Session, batch_id: int) -> dict[str, Any]:
    """Member count, status breakdown, and sent/opened/replied/converted counts with rates."""
    batch = repository.get_batch(db, batch_id)
    if batch is None:
        raise NotFoundError(f"Batch {batch_id} not found")

    members = repository.get_batch_leads(db, batch_id)
    engagement = repository.batch_engagement_counts(db, batch_id)
    sent = engagement["sent"]

    def rate(n: int) -> float:
        return round(100.0 * n / sent, 1) if sent else 0.0

    return {
        "batch_id": batch.id,
        "batch_number": batch.batch_number,
        "status": batch.status.value,
        "size": batch.size,
        "members": len(members),
        "pending": sum(1 for lead in members if lead.outreach_status not in BATCH_TERMINAL),
        "campaigns_by_status": {
            k: v for k, v in repository.count_campaigns_by_status(db, batch_id).items() if v
        },
        **engagement,
        "open_rate": rate(engagement["opened"]),
        "reply_rate": rate(engagement["replied"]),
        "conversion_rate": rate(engagement["converted"]),
        "created_at": batch.created_at,
        "completed_at": batch.completed_at,
    }


def release_lead(db: Session, lead_id: int) -> Lead:
    """
    Return a failed lead to inventory so a later batch can pick it up.

    Only allowed once the lead's batch is complete and its outreach ended in
    send_failed or error. Batch membership is otherwise set once.
    """
    lead = repository.get_lead(db, lead_id)
    if lead is None:
        raise NotFoundError(f"Lead {lead_id} not found")
    if lead.batch_id is None:
        raise InvalidTransitionError("unbatched", "released")

    batch = repository.get_batch(db, lead.batch_id)
    if batch.status is not BatchStatus.COMPLETE:
        raise InvalidTransitionError(f"batch {batch.status.value}", "released")
    if lead.outreach_status not in RELEASABLE:
        current = lead.outreach_status.value if lead.outreach_status else "none"
        raise InvalidTransitionError(current, "released")

    repository.release_lead_from_batch(db, lead)
    db.commit()
    logger.info("Lead %d released from batch #%d", lead.id, batch.batch_number)
    return lead
