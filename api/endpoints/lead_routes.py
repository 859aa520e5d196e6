"""
api/endpoints/lead_routes.py — Routes for leads.

GET    /leads                 — List leads (filterable by status)
POST   /leads                 — Add a lead by hand (NEW status)
GET    /leads/stats           — Aggregate counts by status
GET    /leads/{id}            — Get a single lead with full detail
POST   /leads/{id}/release    — Return a failed lead to inventory
"""

import logging
from typing import Optional

from fastapi import APIRouter, Depends, HTTPException, Query
from sqlalchemy.orm import Session

from api.schemas import LeadCreate, LeadDetailOut, LeadOut
from leadflow.db import repository
from leadflow.db.models import LeadStatus
from leadflow.db.session import get_db
from leadflow.services.batching import release_lead

logger = logging.getLogger(__name__)
router = APIRouter()


@router.get("/", response_model=list[LeadOut], summary="List leads")
def list_leads(
    status: Optional[LeadStatus] = Query(
        default=None,
        description="Filter by status. Omit to return all leads.",
    ),
    limit: int = Query(default=50, ge=1, le=200),
    db: Session = Depends(get_db),
):
    """Return the most recent leads, optionally filtered by status."""
    return repository.list_leads(db, status=status, limit=limit)


@router.post("/", response_model=LeadOut, status_code=201, summary="Add a lead")
def create_lead(payload: LeadCreate, db: Session = Depends(get_db)):
    """Store a hand-entered lead. It is qualified on the next qualification sweep."""
    if repository.lead_exists(db, payload.source_url, payload.company_domain, payload.company_name):
        raise HTTPException(status_code=409, detail="Lead already exists.")
    lead = repository.create_lead(
        db,
        company_name=payload.company_name,
        source="manual",
        source_url=payload.source_url,
        company_domain=payload.company_domain,
        contact_email=payload.contact_email,
        contact_name=payload.contact_name,
        signal_payload=payload.signal_payload,
    )
    db.commit()
    logger.info("Lead %d created via API.", lead.id)
    return lead


@router.get("/stats", summary="Lead counts by status")
def lead_stats(db: Session = Depends(get_db)):
    """Return aggregate lead counts grouped by status."""
    stats = repository.count_leads_by_status(db)
    stats["total"] = sum(stats.values())
    return stats


@router.get("/{lead_id}", response_model=LeadDetailOut, summary="Get lead by ID")
def get_lead(lead_id: int, db: Session = Depends(get_db)):
    lead = repository.get_lead(db, lead_id)
    if not lead:
        raise HTTPException(status_code=404, detail=f"Lead {lead_id} not found.")
    return lead


@router.post("/{lead_id}/release", response_model=LeadOut, summary="Release a failed lead")
def release(lead_id: int, db: Session = Depends(get_db)):
    """
    Clear batch membership for a send_failed / error lead whose batch is
    complete, so a later batch can admit it again.
    """
    return release_lead(db, lead_id)
