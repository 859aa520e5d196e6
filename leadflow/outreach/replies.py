"""
leadflow/outreach/replies.py — Inbound replies and the follow-ups they trigger.

  ingest_reply()                → log an incoming email against its campaign
  process_pending_replies()     → classify, advance the campaign, draft a follow-up
  deliver_pending_responses()   → send approved (or auto-delivered) follow-ups
  approve_response()            → operator approval for one follow-up
  record_open()                 → open-tracking hook (sent → opened)

OUT_OF_OFFICE and UNSUBSCRIBE never move the campaign and never get a
follow-up. UNSUBSCRIBE also puts the sender on the block list, after which
later replies from that address are recorded but never move the campaign
or draft a follow-up.
"""

import logging
import threading
from datetime import datetime
from typing import Optional

from sqlalchemy.orm import Session

from leadflow.ai_engine.processor import draft_reply
from leadflow.config import settings
from leadflow.db import repository
from leadflow.db.models import Campaign, CampaignStatus, ConversationMessage, MessageDirection, utcnow
from leadflow.errors import (
    InvalidTransitionError,
    NotFoundError,
    PermanentServiceError,
    TransientServiceError,
)
from leadflow.outreach.booking import generate_booking_link
from leadflow.outreach.mailer import SmtpMailer
from leadflow.outreach.state_machine import REPLYABLE, apply_reply_intent, transition
from leadflow.outreach.templates import render_booking_email, render_email
from leadflow.services.reply_classifier import ReplyClassification, ReplyIntent, classify_reply
from leadflow.services.results import SweepResult, stop_requested
from leadflow.services.runtime_settings import SettingsSnapshot, load_snapshot
from leadflow.services.throttle import EMAIL, get_throttle

logger = logging.getLogger(__name__)


# ── Ingestion ────────────────────────────────────────────────────────────────

def ingest_reply(
    db: Session,
    from_email: str,
    body: str,
    subject: Optional[str] = None,
    received_at: Optional[datetime] = None,
) -> ConversationMessage:
    """
    Store an inbound email, linked to the most recent open campaign for the sender.

    Replies that match no campaign are still stored (campaign_id null) so an
    unsubscribe from an unknown thread is not lost.
    """
    campaign = repository.find_latest_campaign_for_email(db, from_email, REPLYABLE)
    message = repository.create_message(
        db,
        MessageDirection.INCOMING,
        from_email=from_email,
        to_email=settings.gmail_user,
        subject=subject,
        body=body,
        campaign_id=campaign.id if campaign else None,
    )
    if received_at is not None:
        message.created_at = received_at
    db.commit()

    if campaign is None:
        logger.warning("Reply from %s matches no open campaign (message %d)", from_email, message.id)
    else:
        logger.info("📥 Reply from %s logged against campaign %d", from_email, campaign.id)
    return message


# ── Processing ───────────────────────────────────────────────────────────────

def _draft_follow_up(
    db: Session,
    campaign: Campaign,
    message: ConversationMessage,
    classification: ReplyClassification,
    snapshot: SettingsSnapshot,
) -> Optional[ConversationMessage]:
    lead = campaign.lead
    booking_link = None
    if classification.intent is ReplyIntent.READY_TO_BOOK:
        booking_link = generate_booking_link(lead, campaign.recipient_email)
        campaign.booking_link = booking_link

    if booking_link:
        rendered = render_booking_email(lead.company_name, lead.contact_name, booking_link, campaign.subject)
        subject, body = rendered.subject, rendered.plain_body
    else:
        try:
            draft = draft_reply(
                company_name=lead.company_name,
                reply_text=message.body,
                intent=classification.intent.value,
                questions=classification.questions,
                objections=classification.objections,
                original_subject=campaign.subject or "",
                booking_link=booking_link or "",
            )
        except PermanentServiceError as exc:
            logger.error("Follow-up draft for campaign %d failed: %s", campaign.id, exc)
            campaign.needs_review = True
            return None
        subject, body = draft.subject, draft.body

    response = repository.create_message(
        db,
        MessageDirection.OUTGOING,
        from_email=settings.gmail_user,
        to_email=campaign.recipient_email,
        subject=subject,
        body=body,
        campaign_id=campaign.id,
        processed=True,
    )
    response.intent = classification.intent.value
    response.approved_for_delivery = snapshot.auto_deliver
    return response


def process_reply(
    db: Session,
    message: ConversationMessage,
    snapshot: Optional[SettingsSnapshot] = None,
) -> ReplyClassification:
    """
    Classify one stored reply and apply its outcome, committing at the end.

    Raises:
        TransientServiceError: Classification or drafting hit a retryable
            failure. Nothing is committed and the reply stays unprocessed.
    """
    snapshot = snapshot or load_snapshot(db)
    campaign = message.campaign

    try:
        classification = classify_reply(message.body, original_subject=campaign.subject if campaign else "")
    except PermanentServiceError as exc:
        logger.error("Classification of message %d failed permanently: %s", message.id, exc)
        classification = ReplyClassification(
            intent=ReplyIntent.UNCLEAR,
            reasoning=f"Classifier unavailable: {exc}",
            source="fallback",
            needs_review=True,
        )

    message.intent = classification.intent.value
    message.sentiment = classification.sentiment
    message.classification = classification.as_dict()
    message.processed = True

    if classification.intent is ReplyIntent.UNSUBSCRIBE:
        repository.add_to_block_list(db, message.from_email, reason="unsubscribe")

    if campaign is None:
        db.commit()
        return classification

    campaign.reply_text = message.body
    campaign.last_intent = classification.intent.value
    campaign.sentiment = classification.sentiment
    campaign.needs_review = classification.needs_review

    if campaign.status not in REPLYABLE:
        logger.info(
            "Campaign %d is %s; reply recorded without a status change",
            campaign.id, campaign.status.value,
        )
    elif repository.is_blocked(db, campaign.recipient_email):
        logger.info(
            "Campaign %d recipient %s is on the block list; reply recorded without a status change",
            campaign.id, campaign.recipient_email,
        )
    else:
        new_status = apply_reply_intent(campaign, classification.intent)
        if new_status is not None and classification.wants_response:
            _draft_follow_up(db, campaign, message, classification, snapshot)

    db.commit()
    logger.info(
        "💬 Campaign %d reply: %s → %s (%s)",
        campaign.id, classification.intent.value, campaign.status.value, classification.next_action,
    )
    return classification


def process_pending_replies(
    db: Session,
    snapshot: Optional[SettingsSnapshot] = None,
    limit: int = 50,
    stop_event: Optional[threading.Event] = None,
) -> SweepResult:
    """Classify every unprocessed inbound reply."""
    snapshot = snapshot or load_snapshot(db)
    result = SweepResult(name="replies")

    for message in repository.get_unprocessed_replies(db, limit=limit):
        if stop_requested(stop_event):
            result.stopped_early = True
            break
        result.processed += 1
        message_id = message.id
        try:
            classification = process_reply(db, message, snapshot)
        except TransientServiceError as exc:
            db.rollback()
            logger.warning("Reply %d deferred: %s", message_id, exc)
            result.record_error(message_id, "transient", str(exc))
            continue
        except Exception as exc:
            db.rollback()
            logger.exception("Unexpected error processing reply %d", message_id)
            result.record_error(message_id, "unexpected", str(exc))
            continue
        result.succeeded += 1
        result.bump(classification.intent.value.lower())
        if classification.needs_review:
            result.bump("needs_review")

    logger.info("Reply sweep done: %s", result.meta or "nothing to do")
    return result


# ── Delivery ─────────────────────────────────────────────────────────────────

def deliver_pending_responses(
    db: Session,
    snapshot: Optional[SettingsSnapshot] = None,
    limit: int = 50,
    stop_event: Optional[threading.Event] = None,
    mailer: Optional[SmtpMailer] = None,
) -> SweepResult:
    """Send follow-ups that are approved, or all of them when auto-delivery is on."""
    snapshot = snapshot or load_snapshot(db)
    mailer = mailer or SmtpMailer()
    result = SweepResult(name="delivery")
    throttle = get_throttle(EMAIL)

    for message in repository.get_undelivered_responses(db, limit=limit):
        if stop_requested(stop_event):
            result.stopped_early = True
            break
        result.processed += 1

        if not (message.approved_for_delivery or snapshot.auto_deliver):
            result.skipped += 1
            result.bump("held")
            continue
        if not message.to_email or repository.is_blocked(db, message.to_email):
            message.error_message = "Recipient is on the block list" if message.to_email else "No recipient"
            db.commit()
            result.skipped += 1
            result.bump("blocked")
            continue

        in_reply_to = message.campaign.delivery_id if message.campaign else None
        throttle.wait(stop_event)
        delivery = mailer.send(message.to_email, render_email(message.subject or "", message.body, in_reply_to=in_reply_to))

        if delivery.success:
            message.sent_at = utcnow()
            db.commit()
            result.succeeded += 1
            logger.info("📨 Follow-up %d sent to %s", message.id, message.to_email)
        elif delivery.retryable:
            result.record_error(message.id, "transient", delivery.error or "delivery deferred")
        else:
            message.error_message = delivery.error
            db.commit()
            result.record_error(message.id, "permanent", delivery.error or "delivery failed")

    logger.info("Delivery sweep done: %d sent, %d held, %d failed", result.succeeded, result.skipped, result.failed)
    return result


def approve_response(db: Session, message_id: int) -> ConversationMessage:
    """
    Approve a generated follow-up for delivery.

    Raises:
        NotFoundError:          Unknown message.
        InvalidTransitionError: Not an outgoing follow-up, or already sent.
    """
    message = repository.get_message(db, message_id)
    if message is None:
        raise NotFoundError(f"Message {message_id} not found")
    if message.direction is not MessageDirection.OUTGOING or message.sent_at is not None:
        raise InvalidTransitionError("delivered" if message.sent_at else message.direction.value, "approved")

    message.approved_for_delivery = True
    db.commit()
    logger.info("👍 Follow-up %d approved for delivery", message.id)
    return message


# ── Open tracking ────────────────────────────────────────────────────────────

def record_open(db: Session, campaign_id: int) -> Campaign:
    """
    Record that a sent email was opened. Repeated opens are no-ops; opens
    reported after a reply only stamp opened_at.
    """
    campaign = repository.get_campaign(db, campaign_id)
    if campaign is None:
        raise NotFoundError(f"Campaign {campaign_id} not found")
    if campaign.sent_at is None:
        raise InvalidTransitionError(campaign.status.value, CampaignStatus.OPENED.value)

    if campaign.status is CampaignStatus.SENT:
        transition(campaign, CampaignStatus.OPENED)
    elif campaign.opened_at is None:
        campaign.opened_at = utcnow()
    db.commit()
    return campaign
