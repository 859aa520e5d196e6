"""
api/endpoints/pipeline_routes.py — Manual triggers for each pipeline stage.

POST /pipeline/discovery               — Scan feeds for new leads
POST /pipeline/qualify                 — Qualify + score NEW leads
GET  /pipeline/inventory               — Inventory level and open batches
GET  /pipeline/batches                 — List batches
POST /pipeline/batches                 — Admit a new batch
GET  /pipeline/batches/{id}            — Batch stats
POST /pipeline/batches/{id}/complete   — Close a finished batch, admit the next
POST /pipeline/research                — Research + draft for open batches
POST /pipeline/outreach                — Dispatch drafts for ready batches

Every trigger is safe to call repeatedly: each run only picks up work that
is still pending.
"""

import logging
from typing import Optional

from fastapi import APIRouter, Depends, Query
from sqlalchemy.orm import Session

from api.schemas import BatchCompleteOut, BatchCreateRequest, BatchOut, SweepResultOut
from leadflow.db import repository
from leadflow.db.session import get_db
from leadflow.ingestion.discovery import run_discovery
from leadflow.outreach.dispatcher import run_outreach_sweep, run_research_sweep
from leadflow.services import batching
from leadflow.services.lead_service import process_new_leads

logger = logging.getLogger(__name__)
router = APIRouter()


@router.post("/discovery", response_model=SweepResultOut, summary="Run discovery")
def trigger_discovery(db: Session = Depends(get_db)):
    return run_discovery(db).as_dict()


@router.post("/qualify", response_model=SweepResultOut, summary="Qualify and score new leads")
def trigger_qualification(
    limit: Optional[int] = Query(default=None, ge=1, le=1000),
    db: Session = Depends(get_db),
):
    return process_new_leads(db, limit=limit).as_dict()


@router.get("/inventory", summary="Inventory status")
def inventory(db: Session = Depends(get_db)):
    return batching.get_inventory_status(db).as_dict()


@router.get("/batches", response_model=list[BatchOut], summary="List batches")
def list_batches(limit: int = Query(default=20, ge=1, le=100), db: Session = Depends(get_db)):
    return repository.list_batches(db, limit=limit)


@router.post("/batches", response_model=BatchOut, status_code=201, summary="Create a batch")
def create_batch(payload: Optional[BatchCreateRequest] = None, db: Session = Depends(get_db)):
    """Admit the top-scoring available leads. 409 when inventory cannot fill the batch."""
    return batching.create_batch(db, batch_size=payload.batch_size if payload else None)


@router.get("/batches/{batch_id}", summary="Batch stats")
def batch_stats(batch_id: int, db: Session = Depends(get_db)):
    return batching.get_batch_stats(db, batch_id)


@router.post("/batches/{batch_id}/complete", response_model=BatchCompleteOut, summary="Complete a batch")
def complete_batch(batch_id: int, db: Session = Depends(get_db)):
    next_batch = batching.complete_batch(db, batch_id)
    completed = repository.get_batch(db, batch_id)
    if next_batch is None:
        message = f"Batch #{completed.batch_number} complete. Awaiting replenishment or an open batch."
    else:
        message = f"Batch #{completed.batch_number} complete. Batch #{next_batch.batch_number} created."
    return BatchCompleteOut(
        completed=BatchOut.model_validate(completed),
        next_batch=BatchOut.model_validate(next_batch) if next_batch else None,
        message=message,
    )


@router.post("/research", response_model=SweepResultOut, summary="Research open batches")
def trigger_research(
    limit: Optional[int] = Query(default=None, ge=1, le=1000),
    db: Session = Depends(get_db),
):
    return run_research_sweep(db, limit=limit).as_dict()


@router.post("/outreach", response_model=SweepResultOut, summary="Dispatch ready batches")
def trigger_outreach(
    limit: Optional[int] = Query(default=None, ge=1, le=1000),
    db: Session = Depends(get_db),
):
    return run_outreach_sweep(db, limit=limit).as_dict()
