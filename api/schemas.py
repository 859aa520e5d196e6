"""
api/schemas.py — Pydantic request/response models for all API endpoints.

These are the API contract — separate from DB ORM models so we can
control exactly what data is exposed over HTTP.
"""

from datetime import datetime
from typing import Any, Optional

from pydantic import BaseModel, Field

from leadflow.db.models import (
    BatchStatus,
    CampaignStatus,
    LeadStatus,
    MessageDirection,
    Recommendation,
)


# ── Shared ────────────────────────────────────────────────────────────────────

class OKResponse(BaseModel):
    """Generic success acknowledgement."""
    status: str = "ok"
    message: str


class ItemErrorOut(BaseModel):
    item_id: Any
    kind: str
    message: str


class SweepResultOut(BaseModel):
    name: str
    processed: int
    succeeded: int
    skipped: int
    failed: int
    errors: list[ItemErrorOut] = Field(default_factory=list)
    meta: dict[str, Any] = Field(default_factory=dict)
    stopped_early: bool = False


# ── Lead ─────────────────────────────────────────────────────────────────────

class LeadCreate(BaseModel):
    company_name: str = Field(..., min_length=1, max_length=255)
    company_domain: Optional[str] = None
    contact_email: Optional[str] = None
    contact_name: Optional[str] = None
    source_url: Optional[str] = None
    signal_payload: dict[str, Any] = Field(default_factory=dict)


class LeadOut(BaseModel):
    id: int
    company_name: str
    company_domain: Optional[str] = None
    contact_email: Optional[str] = None
    contact_name: Optional[str] = None
    source: str
    source_url: Optional[str] = None
    discovery_score: Optional[int] = None
    route_to_outreach: bool
    status: LeadStatus
    qualification_criteria: Optional[dict[str, bool]] = None
    qualification_reason: Optional[str] = None
    pain_severity: Optional[int] = None
    budget_likelihood: Optional[int] = None
    urgency: Optional[int] = None
    service_fit: Optional[int] = None
    total_score: Optional[int] = None
    recommendation: Optional[Recommendation] = None
    score_reasoning: Optional[str] = None
    key_insights: Optional[list[str]] = None
    suggested_approach: Optional[str] = None
    batch_id: Optional[int] = None
    outreach_status: Optional[CampaignStatus] = None
    research_low_confidence: bool
    created_at: Optional[datetime] = None

    model_config = {"from_attributes": True}


class LeadDetailOut(LeadOut):
    signal_payload: dict[str, Any] = Field(default_factory=dict)
    research: Optional[dict[str, Any]] = None
    last_error: Optional[str] = None


# ── Batch ────────────────────────────────────────────────────────────────────

class BatchOut(BaseModel):
    id: int
    batch_number: int
    size: int
    status: BatchStatus
    created_at: Optional[datetime] = None
    research_started_at: Optional[datetime] = None
    sending_started_at: Optional[datetime] = None
    completed_at: Optional[datetime] = None

    model_config = {"from_attributes": True}


class BatchCreateRequest(BaseModel):
    batch_size: Optional[int] = Field(default=None, ge=1, description="Defaults to BATCH_SIZE")


class BatchCompleteOut(BaseModel):
    completed: BatchOut
    next_batch: Optional[BatchOut] = None
    message: str


# ── Campaign / conversation ──────────────────────────────────────────────────

class CampaignOut(BaseModel):
    id: int
    lead_id: int
    recipient_email: Optional[str] = None
    subject: Optional[str] = None
    body: Optional[str] = None
    is_fallback_draft: bool
    status: CampaignStatus
    approved_for_sending: bool
    approved_by: Optional[str] = None
    delivery_id: Optional[str] = None
    error_message: Optional[str] = None
    last_intent: Optional[str] = None
    sentiment: Optional[str] = None
    needs_review: bool
    booking_link: Optional[str] = None
    meeting_scheduled_at: Optional[datetime] = None
    created_at: Optional[datetime] = None
    sent_at: Optional[datetime] = None
    opened_at: Optional[datetime] = None
    replied_at: Optional[datetime] = None
    converted_at: Optional[datetime] = None

    model_config = {"from_attributes": True}


class MessageOut(BaseModel):
    id: int
    campaign_id: Optional[int] = None
    direction: MessageDirection
    from_email: str
    to_email: Optional[str] = None
    subject: Optional[str] = None
    body: str
    processed: bool
    intent: Optional[str] = None
    sentiment: Optional[str] = None
    classification: Optional[dict[str, Any]] = None
    approved_for_delivery: bool
    sent_at: Optional[datetime] = None
    error_message: Optional[str] = None
    created_at: Optional[datetime] = None

    model_config = {"from_attributes": True}


class CampaignDetailOut(CampaignOut):
    reply_text: Optional[str] = None
    meeting_notes: Optional[str] = None
    messages: list[MessageOut] = Field(default_factory=list)


class ApprovalRequest(BaseModel):
    approved_by: str = Field(default="operator", max_length=255)


class BlockListRequest(BaseModel):
    email: str = Field(..., min_length=3)
    reason: str = Field(default="manual")


class BlockListEntryOut(BaseModel):
    email: str
    reason: Optional[str] = None
    added_at: Optional[datetime] = None

    model_config = {"from_attributes": True}


# ── Webhooks ─────────────────────────────────────────────────────────────────

class InboundReply(BaseModel):
    from_email: str = Field(..., min_length=3)
    body: str
    subject: Optional[str] = None
    received_at: Optional[datetime] = None


class MeetingConfirmation(BaseModel):
    email: str = Field(..., min_length=3)
    scheduled_at: datetime
    event_uri: Optional[str] = None
    notes: Optional[str] = None


class MeetingNote(BaseModel):
    notes: Optional[str] = None


# ── System ───────────────────────────────────────────────────────────────────

class SettingUpdate(BaseModel):
    value: bool
