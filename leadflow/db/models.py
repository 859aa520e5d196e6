"""
leadflow/db/models.py — SQLAlchemy ORM models for the lead pipeline.

Tables:
  - Lead                → a candidate business discovered from a content source
  - Batch               → a fixed-size cohort of leads released together for outreach
  - Campaign            → one outreach attempt to one recipient for one lead
  - ConversationMessage → incoming replies and outgoing follow-ups for a campaign
  - BlockListEntry      → permanently suppressed email addresses
  - SystemSetting       → operator toggles (auto-send, approval gates)
  - SendLedger          → one row per recipient address ever claimed for sending
"""

import enum
from datetime import datetime, timezone

from sqlalchemy import (
    Boolean,
    Column,
    DateTime,
    Enum,
    ForeignKey,
    Integer,
    JSON,
    String,
    Text,
    func,
)
from sqlalchemy.orm import DeclarativeBase, relationship


def utcnow() -> datetime:
    """Naive UTC timestamp, matching the server_default=now() columns."""
    return datetime.now(timezone.utc).replace(tzinfo=None)


# ── Base ─────────────────────────────────────────────────────────────────────

class Base(DeclarativeBase):
    pass


# ── Enums ────────────────────────────────────────────────────────────────────

class LeadStatus(str, enum.Enum):
    NEW = "new"
    QUALIFIED = "qualified"
    REJECTED = "rejected"


class Recommendation(str, enum.Enum):
    PRIORITY = "PRIORITY"
    QUALIFIED = "QUALIFIED"
    MAYBE = "MAYBE"
    SKIP = "SKIP"


class BatchStatus(str, enum.Enum):
    CREATED = "created"
    RESEARCHING = "researching"
    READY_TO_SEND = "ready_to_send"
    SENDING = "sending"
    COMPLETE = "complete"


class CampaignStatus(str, enum.Enum):
    DRAFT = "draft"
    SENT = "sent"
    OPENED = "opened"
    REPLIED = "replied"
    INTERESTED = "interested"
    BOOKING = "booking"
    NURTURING = "nurturing"
    CLOSED_LOST = "closed_lost"
    MEETING_SCHEDULED = "meeting_scheduled"
    COMPLETED = "completed"
    MEETING_CANCELLED = "meeting_cancelled"
    ALREADY_SENT = "already_sent"
    SEND_FAILED = "send_failed"
    ERROR = "error"
    SKIPPED = "skipped"


class MessageDirection(str, enum.Enum):
    INCOMING = "incoming"
    OUTGOING = "outgoing"


# ── Models ───────────────────────────────────────────────────────────────────

class Lead(Base):
    __tablename__ = "leads"

    id = Column(Integer, primary_key=True, autoincrement=True)
    company_name = Column(String(255), nullable=False)
    company_domain = Column(String(255), nullable=True, index=True)
    contact_email = Column(String(255), nullable=True)
    contact_name = Column(String(255), nullable=True)

    source = Column(String(100), nullable=False, default="manual")
    source_url = Column(String(1024), nullable=True, unique=True)
    signal_payload = Column(JSON, nullable=False, default=dict)
    discovery_score = Column(Integer, nullable=True)          # 0 – 100
    route_to_outreach = Column(Boolean, default=False, nullable=False)

    # Qualification
    status = Column(Enum(LeadStatus), default=LeadStatus.NEW, nullable=False)
    qualified = Column(Boolean, nullable=True)
    qualification_criteria = Column(JSON(none_as_null=True), nullable=True)
    qualification_reason = Column(Text, nullable=True)
    qualified_at = Column(DateTime, nullable=True)

    # Scoring (only ever set on qualified leads)
    pain_severity = Column(Integer, nullable=True)
    budget_likelihood = Column(Integer, nullable=True)
    urgency = Column(Integer, nullable=True)
    service_fit = Column(Integer, nullable=True)
    total_score = Column(Integer, nullable=True, index=True)  # 0 – 40
    recommendation = Column(Enum(Recommendation), nullable=True)
    score_reasoning = Column(Text, nullable=True)
    key_insights = Column(JSON(none_as_null=True), nullable=True)
    suggested_approach = Column(Text, nullable=True)

    # Batch + outreach
    batch_id = Column(Integer, ForeignKey("batches.id", ondelete="SET NULL"), nullable=True, index=True)
    outreach_status = Column(Enum(CampaignStatus), nullable=True)
    research = Column(JSON(none_as_null=True), nullable=True)
    research_low_confidence = Column(Boolean, default=False, nullable=False)
    researched_at = Column(DateTime, nullable=True)
    last_error = Column(Text, nullable=True)

    created_at = Column(DateTime, server_default=func.now(), nullable=False)
    updated_at = Column(DateTime, server_default=func.now(), onupdate=func.now(), nullable=False)

    # Relationships
    batch = relationship("Batch", back_populates="leads")
    campaigns = relationship("Campaign", back_populates="lead", cascade="all, delete-orphan")

    def __repr__(self) -> str:
        return f"<Lead id={self.id} company={self.company_name!r} score={self.total_score}>"


class Batch(Base):
    __tablename__ = "batches"

    id = Column(Integer, primary_key=True, autoincrement=True)
    batch_number = Column(Integer, nullable=False, unique=True)
    size = Column(Integer, nullable=False)
    status = Column(Enum(BatchStatus), default=BatchStatus.CREATED, nullable=False)
    created_at = Column(DateTime, server_default=func.now(), nullable=False)
    research_started_at = Column(DateTime, nullable=True)
    sending_started_at = Column(DateTime, nullable=True)
    completed_at = Column(DateTime, nullable=True)

    leads = relationship("Lead", back_populates="batch")

    def __repr__(self) -> str:
        return f"<Batch id={self.id} number={self.batch_number} status={self.status}>"


class Campaign(Base):
    __tablename__ = "outreach_campaigns"

    id = Column(Integer, primary_key=True, autoincrement=True)
    lead_id = Column(Integer, ForeignKey("leads.id", ondelete="CASCADE"), nullable=False, index=True)
    recipient_email = Column(String(255), nullable=True, index=True)
    subject = Column(String(512), nullable=True)
    body = Column(Text, nullable=True)
    is_fallback_draft = Column(Boolean, default=False, nullable=False)
    status = Column(Enum(CampaignStatus), default=CampaignStatus.DRAFT, nullable=False)

    # Approval gate
    approved_for_sending = Column(Boolean, default=False, nullable=False)
    approved_by = Column(String(255), nullable=True)
    approved_at = Column(DateTime, nullable=True)

    # Delivery
    delivery_id = Column(String(255), nullable=True)
    error_message = Column(Text, nullable=True)

    # Reply tracking
    reply_text = Column(Text, nullable=True)
    last_intent = Column(String(50), nullable=True)
    sentiment = Column(String(50), nullable=True)
    needs_review = Column(Boolean, default=False, nullable=False)

    # Booking
    booking_link = Column(String(1024), nullable=True)
    meeting_scheduled_at = Column(DateTime, nullable=True)
    meeting_event_uri = Column(String(1024), nullable=True)
    meeting_notes = Column(Text, nullable=True)

    created_at = Column(DateTime, server_default=func.now(), nullable=False)
    sent_at = Column(DateTime, nullable=True)
    opened_at = Column(DateTime, nullable=True)
    replied_at = Column(DateTime, nullable=True)
    converted_at = Column(DateTime, nullable=True)
    updated_at = Column(DateTime, server_default=func.now(), onupdate=func.now(), nullable=False)

    lead = relationship("Lead", back_populates="campaigns")
    messages = relationship("ConversationMessage", back_populates="campaign")

    def __repr__(self) -> str:
        return f"<Campaign id={self.id} lead_id={self.lead_id} status={self.status}>"


class ConversationMessage(Base):
    __tablename__ = "email_conversations"

    id = Column(Integer, primary_key=True, autoincrement=True)
    campaign_id = Column(Integer, ForeignKey("outreach_campaigns.id", ondelete="SET NULL"), nullable=True)
    direction = Column(Enum(MessageDirection), nullable=False)
    from_email = Column(String(255), nullable=False, index=True)
    to_email = Column(String(255), nullable=True)
    subject = Column(String(512), nullable=True)
    body = Column(Text, nullable=False)

    # Classification (incoming)
    processed = Column(Boolean, default=False, nullable=False)
    intent = Column(String(50), nullable=True)
    sentiment = Column(String(50), nullable=True)
    classification = Column(JSON(none_as_null=True), nullable=True)

    # Delivery (outgoing)
    approved_for_delivery = Column(Boolean, default=False, nullable=False)
    sent_at = Column(DateTime, nullable=True)
    error_message = Column(Text, nullable=True)

    created_at = Column(DateTime, server_default=func.now(), nullable=False)

    campaign = relationship("Campaign", back_populates="messages")

    def __repr__(self) -> str:
        return f"<ConversationMessage id={self.id} direction={self.direction} from={self.from_email!r}>"


class BlockListEntry(Base):
    __tablename__ = "block_list"

    id = Column(Integer, primary_key=True, autoincrement=True)
    email = Column(String(255), nullable=False, unique=True)
    reason = Column(String(255), nullable=True)
    added_at = Column(DateTime, server_default=func.now(), nullable=False)

    def __repr__(self) -> str:
        return f"<BlockListEntry email={self.email!r}>"


class SystemSetting(Base):
    __tablename__ = "system_settings"

    id = Column(Integer, primary_key=True, autoincrement=True)
    key = Column(String(100), nullable=False, unique=True)
    value = Column(JSON, nullable=False)
    description = Column(Text, nullable=True)
    updated_at = Column(DateTime, server_default=func.now(), onupdate=func.now(), nullable=False)

    def __repr__(self) -> str:
        return f"<SystemSetting {self.key}={self.value!r}>"


class SendLedger(Base):
    __tablename__ = "send_ledger"

    id = Column(Integer, primary_key=True, autoincrement=True)
    email = Column(String(255), nullable=False, unique=True)
    campaign_id = Column(Integer, ForeignKey("outreach_campaigns.id", ondelete="SET NULL"), nullable=True)
    claimed_at = Column(DateTime, server_default=func.now(), nullable=False)

    def __repr__(self) -> str:
        return f"<SendLedger email={self.email!r} campaign_id={self.campaign_id}>"
