"""
leadflow/outreach/dispatcher.py — Research, drafting and first-touch sending for open batches.

Two sweeps, each safe to run from its own worker:

  run_research_sweep()  created/researching batches → research + draft per lead
                        → batch ready_to_send once every member has a draft
  run_outreach_sweep()  ready_to_send/sending batches → dispatch drafts
                        → complete the batch (and admit the next) when no
                          member is left in draft

Every item is committed on its own, so a failure on one lead never undoes
the work done on the others.
"""

import logging
import threading
from typing import Optional

from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from leadflow.ai_engine.processor import (
    draft_email,
    fallback_outreach_draft,
    fallback_research,
    research_lead,
)
from leadflow.config import settings
from leadflow.db import repository
from leadflow.db.models import Batch, BatchStatus, Campaign, CampaignStatus, Lead, MessageDirection, utcnow
from leadflow.errors import (
    InvalidTransitionError,
    NotFoundError,
    PermanentServiceError,
    TransientServiceError,
)
from leadflow.outreach.mailer import SmtpMailer
from leadflow.outreach.state_machine import SendDecision, decide_send, transition
from leadflow.outreach.templates import render_email
from leadflow.services import batching
from leadflow.services.results import SweepResult, stop_requested
from leadflow.services.runtime_settings import SettingsSnapshot, load_snapshot
from leadflow.services.throttle import EMAIL, ENRICHMENT, get_throttle

logger = logging.getLogger(__name__)


# ── Research + drafting ──────────────────────────────────────────────────────

def screen_recipient(db: Session, lead: Lead) -> Optional[CampaignStatus]:
    """
    Close out a lead whose recipient must not be contacted, before any research
    or drafting is spent on it. No campaign row is created.

    Returns the terminal status set on the lead (skipped / already_sent), or
    None when the lead should go on to research and drafting.
    """
    recipient = lead.contact_email or (lead.research or {}).get("discovered_email")
    if not recipient:
        return None
    if repository.is_blocked(db, recipient):
        status = CampaignStatus.SKIPPED
    elif repository.has_sent_campaign(db, recipient):
        status = CampaignStatus.ALREADY_SENT
    else:
        return None

    lead.outreach_status = status
    db.commit()
    logger.info("⏭️  Lead %d not drafted: %s is %s", lead.id, recipient, status.value)
    return status


def research_one(db: Session, lead: Lead, stop_event: Optional[threading.Event] = None) -> bool:
    """
    Research a single lead and store the result.

    Returns False when the call failed transiently; the lead is left
    unresearched so the next sweep picks it up again.
    """
    throttle = get_throttle(ENRICHMENT)
    throttle.wait(stop_event)
    try:
        research = research_lead(lead)
    except TransientServiceError as exc:
        if exc.retry_after:
            throttle.defer(exc.retry_after)
        logger.warning("Research for lead %d deferred: %s", lead.id, exc)
        return False
    except PermanentServiceError as exc:
        logger.error("Research for lead %d failed permanently, storing fallback: %s", lead.id, exc)
        research = fallback_research(lead)
        lead.last_error = str(exc)

    lead.research = research.as_dict()
    lead.research_low_confidence = research.low_confidence
    lead.researched_at = utcnow()
    if not lead.contact_email and research.discovered_email:
        lead.contact_email = repository.normalize_email(research.discovered_email)
    db.commit()
    logger.info(
        "🔎 Researched %s%s", lead.company_name, " (low confidence)" if research.low_confidence else "",
    )
    return True


def draft_one(db: Session, lead: Lead) -> Optional[Campaign]:
    """
    Draft the first-touch email for a researched lead and store it as a draft campaign.

    Returns None on a transient drafting failure.
    """
    research = lead.research or {}
    try:
        draft = draft_email(lead, research)
    except TransientServiceError as exc:
        logger.warning("Drafting for lead %d deferred: %s", lead.id, exc)
        return None
    except PermanentServiceError as exc:
        logger.error("Drafting for lead %d failed permanently, using template: %s", lead.id, exc)
        draft = fallback_outreach_draft(lead)

    recipient = lead.contact_email or research.get("discovered_email")
    campaign = repository.create_campaign(
        db,
        lead_id=lead.id,
        recipient_email=recipient,
        subject=draft.subject,
        body=draft.body,
        is_fallback_draft=draft.is_fallback,
    )
    lead.outreach_status = CampaignStatus.DRAFT
    db.commit()
    logger.info("✉️  Draft ready for %s (campaign %d)", lead.company_name, campaign.id)
    return campaign


def _research_batch(
    db: Session,
    batch: Batch,
    result: SweepResult,
    budget: int,
    stop_event: Optional[threading.Event],
) -> int:
    """Research then draft members of one batch. Returns the budget left."""
    if batch.status is BatchStatus.CREATED:
        batching.advance_batch(db, batch, BatchStatus.RESEARCHING)
        db.commit()

    for lead in repository.get_leads_needing_research(db, batch.id, budget):
        if stop_requested(stop_event):
            result.stopped_early = True
            return 0
        budget -= 1
        result.processed += 1
        try:
            screened = screen_recipient(db, lead)
            if screened is not None:
                result.skipped += 1
                result.bump(screened.value)
            elif research_one(db, lead, stop_event):
                result.succeeded += 1
                result.bump("researched")
                if lead.research_low_confidence:
                    result.bump("low_confidence")
            else:
                result.record_error(lead.id, "transient", "research deferred")
        except Exception as exc:
            db.rollback()
            logger.exception("Unexpected error researching lead %d", lead.id)
            result.record_error(lead.id, "unexpected", str(exc))

    for lead in repository.get_leads_needing_draft(db, batch.id, settings.max_leads_per_sweep):
        if stop_requested(stop_event):
            result.stopped_early = True
            return 0
        try:
            screened = screen_recipient(db, lead)
            if screened is not None:
                result.bump(screened.value)
                continue
            campaign = draft_one(db, lead)
        except Exception as exc:
            db.rollback()
            logger.exception("Unexpected error drafting for lead %d", lead.id)
            result.record_error(lead.id, "unexpected", str(exc))
            continue
        if campaign is None:
            result.record_error(lead.id, "transient", "drafting deferred")
        else:
            result.bump("drafted")
            if campaign.is_fallback_draft:
                result.bump("fallback_drafts")

    remaining_research = repository.get_leads_needing_research(db, batch.id, 1)
    remaining_drafts = repository.get_leads_needing_draft(db, batch.id, 1)
    if not remaining_research and not remaining_drafts:
        batching.advance_batch(db, batch, BatchStatus.READY_TO_SEND)
        db.commit()
        result.bump("batches_ready")
    return budget


def run_research_sweep(
    db: Session,
    limit: Optional[int] = None,
    stop_event: Optional[threading.Event] = None,
) -> SweepResult:
    """Research and draft up to `limit` leads across all batches awaiting research."""
    result = SweepResult(name="research")
    budget = limit or settings.max_leads_per_sweep
    batches = repository.get_open_batches(db, statuses=[BatchStatus.CREATED, BatchStatus.RESEARCHING])

    if not batches:
        logger.info("No batches awaiting research.")
        return result

    for batch in batches:
        if budget <= 0 or result.stopped_early:
            break
        logger.info("Researching batch #%d", batch.batch_number)
        budget = _research_batch(db, batch, result, budget, stop_event)

    logger.info(
        "Research sweep done: %d processed, %d succeeded, %d failed, meta=%s",
        result.processed, result.succeeded, result.failed, result.meta,
    )
    return result


# ── Sending ──────────────────────────────────────────────────────────────────

def dispatch_campaign(
    db: Session,
    campaign: Campaign,
    snapshot: SettingsSnapshot,
    mailer: SmtpMailer,
    stop_event: Optional[threading.Event] = None,
) -> str:
    """
    Try to send one draft campaign.

    The prior-send and block-list checks run immediately before the send
    claim. Returns one of: "sent", "held", "skipped", "already_sent",
    "send_failed", "deferred", "claimed_elsewhere".
    """
    lead = campaign.lead
    recipient = campaign.recipient_email

    if recipient and repository.has_send_claim(db, recipient) and not repository.has_sent_campaign(db, recipient):
        # Another send to this address is in flight (or a stale claim is awaiting review)
        logger.warning("Campaign %d: send claim for %s already held", campaign.id, recipient)
        return "claimed_elsewhere"

    check = decide_send(
        recipient=recipient,
        approved=campaign.approved_for_sending,
        auto_send=snapshot.auto_send,
        blocked=repository.is_blocked(db, recipient),
        previously_sent=bool(recipient) and repository.has_sent_campaign(db, recipient, exclude_campaign_id=campaign.id),
    )

    if check.decision is SendDecision.HOLD:
        return "held"
    if check.decision is SendDecision.SKIP:
        transition(campaign, CampaignStatus.SKIPPED, lead)
        campaign.error_message = check.reason
        db.commit()
        logger.info("⏭️  Skipped campaign %d: %s", campaign.id, check.reason)
        return "skipped"
    if check.decision is SendDecision.ALREADY_SENT:
        transition(campaign, CampaignStatus.ALREADY_SENT, lead)
        db.commit()
        logger.info("Campaign %d: %s already contacted", campaign.id, recipient)
        return "already_sent"

    try:
        repository.add_send_claim(db, recipient, campaign.id)
        db.commit()
    except IntegrityError:
        db.rollback()
        logger.warning("Campaign %d: lost the send claim race for %s", campaign.id, recipient)
        return "claimed_elsewhere"

    throttle = get_throttle(EMAIL)
    throttle.wait(stop_event)
    delivery = mailer.send(recipient, render_email(campaign.subject, campaign.body))

    if delivery.success:
        campaign.delivery_id = delivery.delivery_id
        campaign.error_message = None
        transition(campaign, CampaignStatus.SENT, lead)
        message = repository.create_message(
            db,
            MessageDirection.OUTGOING,
            from_email=settings.gmail_user,
            to_email=recipient,
            subject=campaign.subject,
            body=campaign.body,
            campaign_id=campaign.id,
            processed=True,
        )
        message.sent_at = campaign.sent_at
        db.commit()
        logger.info("📨 Sent campaign %d to %s", campaign.id, recipient)
        return "sent"

    repository.release_send_claim(db, recipient)
    if delivery.retryable:
        db.commit()
        return "deferred"

    campaign.error_message = delivery.error
    transition(campaign, CampaignStatus.SEND_FAILED, lead)
    if lead is not None:
        lead.last_error = delivery.error
    db.commit()
    logger.error("❌ Campaign %d to %s failed: %s", campaign.id, recipient, delivery.error)
    return "send_failed"


def _mark_error(db: Session, campaign_id: int, error: str) -> None:
    campaign = repository.get_campaign(db, campaign_id)
    if campaign is None or campaign.status is not CampaignStatus.DRAFT:
        return
    if campaign.recipient_email and not repository.has_sent_campaign(db, campaign.recipient_email):
        repository.release_send_claim(db, campaign.recipient_email)
    campaign.error_message = error
    transition(campaign, CampaignStatus.ERROR)
    db.commit()


def _finish_batch_if_done(db: Session, batch: Batch, result: SweepResult) -> None:
    if batching.pending_members(db, batch.id):
        return
    next_batch = batching.complete_batch(db, batch.id)
    result.bump("batches_completed")
    if next_batch is not None:
        result.meta["next_batch"] = next_batch.batch_number


def run_outreach_sweep(
    db: Session,
    snapshot: Optional[SettingsSnapshot] = None,
    limit: Optional[int] = None,
    stop_event: Optional[threading.Event] = None,
    mailer: Optional[SmtpMailer] = None,
) -> SweepResult:
    """
    Dispatch draft campaigns for every batch that is ready to send.

    Drafts that are neither approved nor covered by auto-send stay drafts
    (counted as skipped with meta "held").
    """
    snapshot = snapshot or load_snapshot(db)
    mailer = mailer or SmtpMailer()
    budget = limit or settings.max_leads_per_sweep
    result = SweepResult(name="outreach")
    batches = repository.get_open_batches(db, statuses=[BatchStatus.READY_TO_SEND, BatchStatus.SENDING])

    if not batches:
        logger.info("No batches ready to send.")
        return result

    logger.info("Outreach sweep: auto_send=%s, dry_run=%s", snapshot.auto_send, mailer.dry_run)

    for batch in batches:
        if batch.status is BatchStatus.READY_TO_SEND:
            batching.advance_batch(db, batch, BatchStatus.SENDING)
            db.commit()

        for campaign in repository.get_draft_campaigns_for_batch(db, batch.id):
            if stop_requested(stop_event):
                result.stopped_early = True
                break
            if budget <= 0:
                break
            budget -= 1
            result.processed += 1
            campaign_id = campaign.id
            try:
                outcome = dispatch_campaign(db, campaign, snapshot, mailer, stop_event)
            except Exception as exc:
                db.rollback()
                logger.exception("Unexpected error dispatching campaign %d", campaign_id)
                _mark_error(db, campaign_id, str(exc))
                result.record_error(campaign_id, "unexpected", str(exc))
                continue

            result.bump(outcome)
            if outcome == "sent":
                result.succeeded += 1
            elif outcome in ("held", "skipped", "already_sent"):
                result.skipped += 1
            elif outcome == "deferred":
                result.record_error(campaign_id, "transient", "delivery deferred")
            elif outcome == "claimed_elsewhere":
                result.record_error(campaign_id, "consistency", "send claim already held")
            else:
                result.record_error(campaign_id, "permanent", campaign.error_message or outcome)

        if result.stopped_early:
            break
        _finish_batch_if_done(db, batch, result)

    logger.info(
        "Outreach sweep done: %d sent, %d skipped/held, %d failed, meta=%s",
        result.succeeded, result.skipped, result.failed, result.meta,
    )
    return result


# ── Approval ─────────────────────────────────────────────────────────────────

def approve_campaign(db: Session, campaign_id: int, approved_by: str = "operator") -> Campaign:
    """
    Approve a draft for sending. The send itself happens on the next outreach sweep.

    Raises:
        NotFoundError:          Unknown campaign.
        InvalidTransitionError: The campaign is no longer a draft.
    """
    campaign = repository.get_campaign(db, campaign_id)
    if campaign is None:
        raise NotFoundError(f"Campaign {campaign_id} not found")
    if campaign.status is not CampaignStatus.DRAFT:
        raise InvalidTransitionError(campaign.status.value, "approved")

    campaign.approved_for_sending = True
    campaign.approved_by = approved_by
    campaign.approved_at = utcnow()
    db.commit()
    logger.info("👍 Campaign %d approved by %s", campaign.id, approved_by)
    return campaign
