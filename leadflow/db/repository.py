"""
leadflow/db/repository.py — All database read/write operations.

Business logic should never write raw SQL or ORM queries directly —
everything goes through this module. This keeps DB logic centralized
and easy to test/mock.

Functions flush but never commit; the caller owns the transaction.
"""

import logging
from datetime import datetime
from typing import Any, Iterable, Optional

from sqlalchemy import func
from sqlalchemy.orm import Session

from leadflow.db.models import (
    Batch,
    BatchStatus,
    BlockListEntry,
    Campaign,
    CampaignStatus,
    ConversationMessage,
    Lead,
    LeadStatus,
    MessageDirection,
    SendLedger,
    SystemSetting,
    utcnow,
)

logger = logging.getLogger(__name__)


def normalize_email(email: Optional[str]) -> Optional[str]:
    """Lowercase and trim an address; empty strings become None."""
    if not email:
        return None
    cleaned = email.strip().lower()
    return cleaned or None


# ── Lead ─────────────────────────────────────────────────────────────────────

def lead_exists(db: Session, source_url: Optional[str], company_domain: Optional[str], company_name: str) -> bool:
    """Dedup check: same source URL, or same (domain, company name) pair."""
    if source_url and db.query(Lead.id).filter(Lead.source_url == source_url).first():
        return True
    if company_domain:
        match = (
            db.query(Lead.id)
            .filter(Lead.company_domain == company_domain, Lead.company_name == company_name)
            .first()
        )
        return match is not None
    return False


def create_lead(
    db: Session,
    company_name: str,
    source: str = "manual",
    source_url: Optional[str] = None,
    company_domain: Optional[str] = None,
    contact_email: Optional[str] = None,
    contact_name: Optional[str] = None,
    signal_payload: Optional[dict[str, Any]] = None,
    discovery_score: Optional[int] = None,
    route_to_outreach: bool = False,
) -> Lead:
    """Persist a newly discovered lead in NEW status."""
    lead = Lead(
        company_name=company_name,
        source=source,
        source_url=source_url,
        company_domain=company_domain,
        contact_email=normalize_email(contact_email),
        contact_name=contact_name,
        signal_payload=signal_payload or {},
        discovery_score=discovery_score,
        route_to_outreach=route_to_outreach,
        status=LeadStatus.NEW,
    )
    db.add(lead)
    db.flush()
    logger.debug("Created lead %d: %s", lead.id, company_name)
    return lead


def get_lead(db: Session, lead_id: int) -> Optional[Lead]:
    return db.query(Lead).filter(Lead.id == lead_id).first()


def get_leads_by_status(db: Session, status: LeadStatus, limit: int = 50) -> list[Lead]:
    """Fetch leads filtered by status, oldest first."""
    return (
        db.query(Lead)
        .filter(Lead.status == status)
        .order_by(Lead.created_at.asc(), Lead.id.asc())
        .limit(limit)
        .all()
    )


def get_unprocessed_leads(db: Session, limit: int = 100) -> list[Lead]:
    """Leads that have not been through qualification yet."""
    return get_leads_by_status(db, LeadStatus.NEW, limit=limit)


def list_leads(db: Session, status: Optional[LeadStatus] = None, limit: int = 50) -> list[Lead]:
    query = db.query(Lead)
    if status:
        query = query.filter(Lead.status == status)
    return query.order_by(Lead.created_at.desc(), Lead.id.desc()).limit(limit).all()


def count_leads_by_status(db: Session) -> dict[str, int]:
    rows = db.query(Lead.status, func.count(Lead.id)).group_by(Lead.status).all()
    counts = {status.value: 0 for status in LeadStatus}
    for status, count in rows:
        counts[status.value] = count
    return counts


def save_qualification(db: Session, lead: Lead, qualification, breakdown=None) -> None:
    """
    Record a qualification outcome and, for qualified leads, the score breakdown.

    Rejected leads have their score columns cleared.
    """
    lead.qualified = qualification.qualified
    lead.qualification_criteria = dict(qualification.criteria)
    lead.qualification_reason = qualification.reason
    lead.qualified_at = utcnow()
    lead.status = LeadStatus.QUALIFIED if qualification.qualified else LeadStatus.REJECTED

    if qualification.qualified and breakdown is not None:
        lead.pain_severity = breakdown.pain_severity
        lead.budget_likelihood = breakdown.budget_likelihood
        lead.urgency = breakdown.urgency
        lead.service_fit = breakdown.service_fit
        lead.total_score = breakdown.total
        lead.recommendation = breakdown.recommendation
        lead.score_reasoning = breakdown.reasoning
        lead.key_insights = list(breakdown.key_insights)
        lead.suggested_approach = breakdown.suggested_approach
    else:
        lead.pain_severity = lead.budget_likelihood = lead.urgency = lead.service_fit = None
        lead.total_score = None
        lead.recommendation = None
        lead.score_reasoning = None
        lead.key_insights = None
        lead.suggested_approach = None
    db.flush()


# ── Inventory / batch claims ─────────────────────────────────────────────────

def _available_filter(query, min_score: int):
    return query.filter(
        Lead.status == LeadStatus.QUALIFIED,
        Lead.total_score.isnot(None),
        Lead.total_score >= min_score,
        Lead.batch_id.is_(None),
    )


def count_available_inventory(db: Session, min_score: int) -> int:
    """Qualified, scored at or above min_score, not in any batch."""
    return _available_filter(db.query(func.count(Lead.id)), min_score).scalar() or 0


def select_top_available_ids(db: Session, min_score: int, limit: int) -> list[int]:
    """
    Ids of the best available leads: score descending, then arrival order.

    Rows are locked on databases that support it (SKIP LOCKED), so two
    admissions running at once never select the same lead.
    """
    rows = (
        _available_filter(db.query(Lead.id), min_score)
        .order_by(Lead.total_score.desc(), Lead.created_at.asc(), Lead.id.asc())
        .limit(limit)
        .with_for_update(skip_locked=True)
        .all()
    )
    return [row[0] for row in rows]


def claim_leads_for_batch(db: Session, batch_id: int, lead_ids: list[int]) -> int:
    """
    Conditionally assign leads to a batch. Only rows still unassigned are touched.

    Returns the number of rows actually claimed.
    """
    if not lead_ids:
        return 0
    return (
        db.query(Lead)
        .filter(Lead.id.in_(lead_ids), Lead.batch_id.is_(None))
        .update({"batch_id": batch_id, "outreach_status": None})
    )


def get_batch_leads(db: Session, batch_id: int) -> list[Lead]:
    return (
        db.query(Lead)
        .filter(Lead.batch_id == batch_id)
        .order_by(Lead.total_score.desc(), Lead.id.asc())
        .all()
    )


def get_leads_needing_research(db: Session, batch_id: int, limit: int) -> list[Lead]:
    """Batch members with no research and no outreach outcome yet."""
    return (
        db.query(Lead)
        .filter(
            Lead.batch_id == batch_id,
            Lead.research.is_(None),
            Lead.outreach_status.is_(None),
        )
        .order_by(Lead.total_score.desc(), Lead.id.asc())
        .limit(limit)
        .all()
    )


def get_leads_needing_draft(db: Session, batch_id: int, limit: int) -> list[Lead]:
    """
    Researched batch members with no outreach status in this batch.

    Admission clears outreach_status, so a lead released from an earlier batch
    is drafted again even though its old campaign still exists.
    """
    return (
        db.query(Lead)
        .filter(
            Lead.batch_id == batch_id,
            Lead.research.isnot(None),
            Lead.outreach_status.is_(None),
        )
        .order_by(Lead.total_score.desc(), Lead.id.asc())
        .limit(limit)
        .all()
    )


def release_lead_from_batch(db: Session, lead: Lead) -> None:
    lead.batch_id = None
    lead.outreach_status = None
    db.flush()


# ── Batch ────────────────────────────────────────────────────────────────────

def next_batch_number(db: Session) -> int:
    current = db.query(func.max(Batch.batch_number)).scalar()
    return (current or 0) + 1


def create_batch_row(db: Session, size: int) -> Batch:
    batch = Batch(batch_number=next_batch_number(db), size=size, status=BatchStatus.CREATED)
    db.add(batch)
    db.flush()
    return batch


def get_batch(db: Session, batch_id: int) -> Optional[Batch]:
    return db.query(Batch).filter(Batch.id == batch_id).first()


def get_open_batches(db: Session, statuses: Optional[Iterable[BatchStatus]] = None) -> list[Batch]:
    """Batches that are not complete, oldest first."""
    query = db.query(Batch)
    if statuses is not None:
        query = query.filter(Batch.status.in_(list(statuses)))
    else:
        query = query.filter(Batch.status != BatchStatus.COMPLETE)
    return query.order_by(Batch.batch_number.asc()).all()


def list_batches(db: Session, limit: int = 20) -> list[Batch]:
    return db.query(Batch).order_by(Batch.batch_number.desc()).limit(limit).all()


# ── Campaign ─────────────────────────────────────────────────────────────────

def create_campaign(
    db: Session,
    lead_id: int,
    recipient_email: Optional[str],
    subject: Optional[str],
    body: Optional[str],
    status: CampaignStatus = CampaignStatus.DRAFT,
    is_fallback_draft: bool = False,
) -> Campaign:
    campaign = Campaign(
        lead_id=lead_id,
        recipient_email=normalize_email(recipient_email),
        subject=subject,
        body=body,
        status=status,
        is_fallback_draft=is_fallback_draft,
    )
    db.add(campaign)
    db.flush()
    return campaign


def get_campaign(db: Session, campaign_id: int) -> Optional[Campaign]:
    return db.query(Campaign).filter(Campaign.id == campaign_id).first()


def get_latest_campaign_for_lead(db: Session, lead_id: int) -> Optional[Campaign]:
    return (
        db.query(Campaign)
        .filter(Campaign.lead_id == lead_id)
        .order_by(Campaign.created_at.desc(), Campaign.id.desc())
        .first()
    )


def has_sent_campaign(db: Session, email: str, exclude_campaign_id: Optional[int] = None) -> bool:
    """True if any campaign to this address has ever been sent."""
    query = db.query(Campaign.id).filter(
        Campaign.recipient_email == normalize_email(email),
        Campaign.sent_at.isnot(None),
    )
    if exclude_campaign_id is not None:
        query = query.filter(Campaign.id != exclude_campaign_id)
    return query.first() is not None


def get_draft_campaigns_for_batch(db: Session, batch_id: int) -> list[Campaign]:
    return (
        db.query(Campaign)
        .join(Lead, Campaign.lead_id == Lead.id)
        .filter(Lead.batch_id == batch_id, Campaign.status == CampaignStatus.DRAFT)
        .order_by(Lead.total_score.desc(), Campaign.id.asc())
        .all()
    )


def find_latest_campaign_for_email(
    db: Session,
    email: str,
    statuses: Iterable[CampaignStatus],
) -> Optional[Campaign]:
    """Most recently created campaign to this address in one of the given statuses."""
    return (
        db.query(Campaign)
        .filter(
            Campaign.recipient_email == normalize_email(email),
            Campaign.status.in_(list(statuses)),
        )
        .order_by(Campaign.created_at.desc(), Campaign.id.desc())
        .first()
    )


def list_campaigns(db: Session, status: Optional[CampaignStatus] = None, limit: int = 50) -> list[Campaign]:
    query = db.query(Campaign)
    if status:
        query = query.filter(Campaign.status == status)
    return query.order_by(Campaign.id.desc()).limit(limit).all()


def count_campaigns_by_status(db: Session, batch_id: Optional[int] = None) -> dict[str, int]:
    query = db.query(Campaign.status, func.count(Campaign.id))
    if batch_id is not None:
        query = query.join(Lead, Campaign.lead_id == Lead.id).filter(Lead.batch_id == batch_id)
    counts = {status.value: 0 for status in CampaignStatus}
    for status, count in query.group_by(Campaign.status).all():
        counts[status.value] = count
    return counts


def count_pending_approvals(db: Session) -> int:
    return (
        db.query(func.count(Campaign.id))
        .filter(
            Campaign.status == CampaignStatus.DRAFT,
            Campaign.approved_for_sending == False,  # noqa: E712
        )
        .scalar()
        or 0
    )


def count_sent_campaigns(db: Session) -> int:
    return db.query(func.count(Campaign.id)).filter(Campaign.sent_at.isnot(None)).scalar() or 0


def batch_engagement_counts(db: Session, batch_id: int) -> dict[str, int]:
    """Counts of sent / opened / replied / converted campaigns for one batch."""
    base = db.query(func.count(Campaign.id)).join(Lead, Campaign.lead_id == Lead.id).filter(
        Lead.batch_id == batch_id
    )
    return {
        "sent": base.filter(Campaign.sent_at.isnot(None)).scalar() or 0,
        "opened": base.filter(Campaign.opened_at.isnot(None)).scalar() or 0,
        "replied": base.filter(Campaign.replied_at.isnot(None)).scalar() or 0,
        "converted": base.filter(Campaign.converted_at.isnot(None)).scalar() or 0,
    }


# ── Block list ───────────────────────────────────────────────────────────────

def is_blocked(db: Session, email: Optional[str]) -> bool:
    address = normalize_email(email)
    if not address:
        return False
    return db.query(BlockListEntry.id).filter(BlockListEntry.email == address).first() is not None


def add_to_block_list(db: Session, email: str, reason: str) -> BlockListEntry:
    """Idempotently suppress an address."""
    address = normalize_email(email)
    entry = db.query(BlockListEntry).filter(BlockListEntry.email == address).first()
    if entry:
        return entry
    entry = BlockListEntry(email=address, reason=reason)
    db.add(entry)
    db.flush()
    logger.info("Block-listed %s (%s)", address, reason)
    return entry


def list_block_list(db: Session, limit: int = 200) -> list[BlockListEntry]:
    return db.query(BlockListEntry).order_by(BlockListEntry.added_at.desc()).limit(limit).all()


# ── Send ledger ──────────────────────────────────────────────────────────────

def has_send_claim(db: Session, email: str) -> bool:
    return db.query(SendLedger.id).filter(SendLedger.email == normalize_email(email)).first() is not None


def add_send_claim(db: Session, email: str, campaign_id: int) -> SendLedger:
    """
    Insert the per-recipient claim. The unique constraint on email makes a
    second concurrent claim fail with IntegrityError at flush.
    """
    claim = SendLedger(email=normalize_email(email), campaign_id=campaign_id)
    db.add(claim)
    db.flush()
    return claim


def release_send_claim(db: Session, email: str) -> None:
    db.query(SendLedger).filter(SendLedger.email == normalize_email(email)).delete(
        synchronize_session=False
    )


def get_stale_send_claims(db: Session, older_than: datetime) -> list[SendLedger]:
    """Claims whose campaign never reached a sent timestamp."""
    return (
        db.query(SendLedger)
        .outerjoin(Campaign, SendLedger.campaign_id == Campaign.id)
        .filter(SendLedger.claimed_at < older_than, Campaign.sent_at.is_(None))
        .all()
    )


# ── Conversation messages ────────────────────────────────────────────────────

def create_message(
    db: Session,
    direction: MessageDirection,
    from_email: str,
    body: str,
    to_email: Optional[str] = None,
    subject: Optional[str] = None,
    campaign_id: Optional[int] = None,
    processed: bool = False,
) -> ConversationMessage:
    message = ConversationMessage(
        direction=direction,
        from_email=normalize_email(from_email),
        to_email=normalize_email(to_email),
        subject=subject,
        body=body,
        campaign_id=campaign_id,
        processed=processed,
    )
    db.add(message)
    db.flush()
    return message


def get_message(db: Session, message_id: int) -> Optional[ConversationMessage]:
    return db.query(ConversationMessage).filter(ConversationMessage.id == message_id).first()


def get_unprocessed_replies(db: Session, limit: int = 50) -> list[ConversationMessage]:
    return (
        db.query(ConversationMessage)
        .filter(
            ConversationMessage.direction == MessageDirection.INCOMING,
            ConversationMessage.processed == False,  # noqa: E712
        )
        .order_by(ConversationMessage.created_at.asc(), ConversationMessage.id.asc())
        .limit(limit)
        .all()
    )


def get_undelivered_responses(db: Session, limit: int = 50) -> list[ConversationMessage]:
    return (
        db.query(ConversationMessage)
        .filter(
            ConversationMessage.direction == MessageDirection.OUTGOING,
            ConversationMessage.sent_at.is_(None),
            ConversationMessage.error_message.is_(None),
        )
        .order_by(ConversationMessage.created_at.asc(), ConversationMessage.id.asc())
        .limit(limit)
        .all()
    )


def get_conversation(db: Session, campaign_id: int) -> list[ConversationMessage]:
    return (
        db.query(ConversationMessage)
        .filter(ConversationMessage.campaign_id == campaign_id)
        .order_by(ConversationMessage.created_at.asc(), ConversationMessage.id.asc())
        .all()
    )


# ── System settings ──────────────────────────────────────────────────────────

def get_settings_map(db: Session) -> dict[str, Any]:
    return {row.key: row.value for row in db.query(SystemSetting).all()}


def upsert_setting(db: Session, key: str, value: Any, description: Optional[str] = None) -> SystemSetting:
    row = db.query(SystemSetting).filter(SystemSetting.key == key).first()
    if row is None:
        row = SystemSetting(key=key, value=value, description=description)
        db.add(row)
    else:
        row.value = value
        if description is not None:
            row.description = description
    db.flush()
    return row


def insert_setting_if_missing(db: Session, key: str, value: Any, description: str) -> bool:
    if db.query(SystemSetting.id).filter(SystemSetting.key == key).first():
        return False
    db.add(SystemSetting(key=key, value=value, description=description))
    db.flush()
    return True
