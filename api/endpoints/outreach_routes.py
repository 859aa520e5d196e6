"""
api/endpoints/outreach_routes.py — Campaigns, approvals, follow-ups and the block list.

GET  /outreach/campaigns                    — List campaigns (filterable by status)
GET  /outreach/campaigns/{id}               — Campaign with its conversation
POST /outreach/campaigns/{id}/approve       — Approve a draft for sending
POST /outreach/responses/{id}/approve       — Approve a generated follow-up
POST /outreach/responses/deliver            — Send approved follow-ups now
POST /outreach/replies/process              — Classify pending replies now
GET  /outreach/block-list                   — Suppressed addresses
POST /outreach/block-list                   — Suppress an address
"""

import logging
from typing import Optional

from fastapi import APIRouter, Depends, HTTPException, Query
from sqlalchemy.orm import Session

from api.schemas import (
    ApprovalRequest,
    BlockListEntryOut,
    BlockListRequest,
    CampaignDetailOut,
    CampaignOut,
    MessageOut,
    SweepResultOut,
)
from leadflow.db import repository
from leadflow.db.models import CampaignStatus
from leadflow.db.session import get_db
from leadflow.outreach.dispatcher import approve_campaign
from leadflow.outreach.replies import approve_response, deliver_pending_responses, process_pending_replies

logger = logging.getLogger(__name__)
router = APIRouter()


@router.get("/campaigns", response_model=list[CampaignOut], summary="List campaigns")
def list_campaigns(
    status: Optional[CampaignStatus] = Query(default=None),
    limit: int = Query(default=50, ge=1, le=200),
    db: Session = Depends(get_db),
):
    return repository.list_campaigns(db, status=status, limit=limit)


@router.get("/campaigns/{campaign_id}", response_model=CampaignDetailOut, summary="Campaign detail")
def get_campaign(campaign_id: int, db: Session = Depends(get_db)):
    campaign = repository.get_campaign(db, campaign_id)
    if not campaign:
        raise HTTPException(status_code=404, detail=f"Campaign {campaign_id} not found.")
    detail = CampaignDetailOut.model_validate(campaign)
    detail.messages = [MessageOut.model_validate(m) for m in repository.get_conversation(db, campaign_id)]
    return detail


@router.post("/campaigns/{campaign_id}/approve", response_model=CampaignOut, summary="Approve a draft")
def approve(campaign_id: int, payload: Optional[ApprovalRequest] = None, db: Session = Depends(get_db)):
    """Mark a draft as approved; it is sent on the next outreach sweep."""
    approved_by = payload.approved_by if payload else "operator"
    return approve_campaign(db, campaign_id, approved_by=approved_by)


@router.post("/responses/{message_id}/approve", response_model=MessageOut, summary="Approve a follow-up")
def approve_follow_up(message_id: int, db: Session = Depends(get_db)):
    return approve_response(db, message_id)


@router.post("/responses/deliver", response_model=SweepResultOut, summary="Deliver follow-ups")
def deliver(db: Session = Depends(get_db)):
    return deliver_pending_responses(db).as_dict()


@router.post("/replies/process", response_model=SweepResultOut, summary="Process pending replies")
def process_replies(db: Session = Depends(get_db)):
    return process_pending_replies(db).as_dict()


@router.get("/block-list", response_model=list[BlockListEntryOut], summary="Block list")
def block_list(limit: int = Query(default=200, ge=1, le=1000), db: Session = Depends(get_db)):
    return repository.list_block_list(db, limit=limit)


@router.post("/block-list", response_model=BlockListEntryOut, status_code=201, summary="Block an address")
def add_block(payload: BlockListRequest, db: Session = Depends(get_db)):
    entry = repository.add_to_block_list(db, payload.email, payload.reason)
    db.commit()
    return entry
