"""
api/endpoints/webhook_routes.py — Inbound events from mail and calendar collaborators.

POST /webhooks/reply                          — Inbound email reply
POST /webhooks/open/{campaign_id}             — Open-tracking ping
POST /webhooks/meeting                        — Calendar booking confirmation
POST /webhooks/meetings/{campaign_id}/cancel  — Meeting cancelled
POST /webhooks/meetings/{campaign_id}/complete — Meeting held
POST /webhooks/calendar/sync                  — Pull bookings from Calendly now
"""

import logging
from datetime import datetime, timezone
from typing import Optional

from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session

from api.schemas import CampaignOut, InboundReply, MeetingConfirmation, MeetingNote, MessageOut, OKResponse, SweepResultOut
from leadflow.db.session import get_db
from leadflow.outreach.booking import cancel_meeting, complete_meeting, record_scheduled_meeting, sync_scheduled_meetings
from leadflow.outreach.replies import ingest_reply, record_open

logger = logging.getLogger(__name__)
router = APIRouter()


def _naive_utc(value: Optional[datetime]) -> Optional[datetime]:
    if value is None or value.tzinfo is None:
        return value
    return value.astimezone(timezone.utc).replace(tzinfo=None)


@router.post("/reply", response_model=MessageOut, status_code=202, summary="Inbound reply")
def inbound_reply(payload: InboundReply, db: Session = Depends(get_db)):
    """Store the reply; classification happens on the next reply sweep."""
    return ingest_reply(
        db,
        from_email=payload.from_email,
        body=payload.body,
        subject=payload.subject,
        received_at=_naive_utc(payload.received_at),
    )


@router.post("/open/{campaign_id}", response_model=CampaignOut, summary="Email opened")
def email_opened(campaign_id: int, db: Session = Depends(get_db)):
    return record_open(db, campaign_id)


@router.post("/meeting", summary="Meeting booked")
def meeting_booked(payload: MeetingConfirmation, db: Session = Depends(get_db)):
    campaign = record_scheduled_meeting(
        db,
        email=payload.email,
        scheduled_at=_naive_utc(payload.scheduled_at),
        event_uri=payload.event_uri,
        notes=payload.notes,
    )
    if campaign is None:
        return OKResponse(status="unmatched", message=f"No bookable campaign for {payload.email}.")
    return CampaignOut.model_validate(campaign)


@router.post("/meetings/{campaign_id}/cancel", response_model=CampaignOut, summary="Meeting cancelled")
def meeting_cancelled(campaign_id: int, payload: Optional[MeetingNote] = None, db: Session = Depends(get_db)):
    return cancel_meeting(db, campaign_id, reason=payload.notes if payload else None)


@router.post("/meetings/{campaign_id}/complete", response_model=CampaignOut, summary="Meeting completed")
def meeting_completed(campaign_id: int, payload: Optional[MeetingNote] = None, db: Session = Depends(get_db)):
    return complete_meeting(db, campaign_id, notes=payload.notes if payload else None)


@router.post("/calendar/sync", response_model=SweepResultOut, summary="Sync Calendly bookings")
def calendar_sync(db: Session = Depends(get_db)):
    return sync_scheduled_meetings(db).as_dict()
