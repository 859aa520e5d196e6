"""
leadflow/outreach/state_machine.py — Outreach campaign lifecycle.

  draft ──send──▶ sent ──▶ opened ──▶ replied ──▶ interested / booking / nurturing / closed_lost
                                                     │
                            interested / booking ────┴──▶ meeting_scheduled ──▶ completed
                                                                         └────▶ meeting_cancelled

Side exits from draft: already_sent, send_failed, error, skipped.

Every status change goes through transition(), which rejects anything not in
ALLOWED_TRANSITIONS and mirrors the new status onto the lead.
"""

import enum
import logging
from dataclasses import dataclass
from typing import Optional

from leadflow.db.models import Campaign, CampaignStatus, Lead, utcnow
from leadflow.errors import InvalidTransitionError
from leadflow.services.reply_classifier import ReplyIntent

logger = logging.getLogger(__name__)

S = CampaignStatus

# Statuses from which an inbound reply is expected and accepted
REPLYABLE = frozenset({
    S.SENT, S.OPENED, S.REPLIED, S.INTERESTED, S.BOOKING, S.NURTURING,
})

ALLOWED_TRANSITIONS: dict[CampaignStatus, frozenset[CampaignStatus]] = {
    S.DRAFT: frozenset({S.SENT, S.ALREADY_SENT, S.SEND_FAILED, S.ERROR, S.SKIPPED}),
    S.SENT: frozenset({S.OPENED, S.REPLIED}),
    S.OPENED: frozenset({S.REPLIED}),
    S.REPLIED: frozenset({S.INTERESTED, S.BOOKING, S.NURTURING, S.CLOSED_LOST}),
    S.INTERESTED: frozenset({S.BOOKING, S.NURTURING, S.CLOSED_LOST, S.MEETING_SCHEDULED}),
    S.BOOKING: frozenset({S.INTERESTED, S.NURTURING, S.CLOSED_LOST, S.MEETING_SCHEDULED}),
    S.NURTURING: frozenset({S.INTERESTED, S.BOOKING, S.CLOSED_LOST}),
    S.MEETING_SCHEDULED: frozenset({S.COMPLETED, S.MEETING_CANCELLED}),
    S.MEETING_CANCELLED: frozenset({S.MEETING_SCHEDULED}),
    S.CLOSED_LOST: frozenset(),
    S.COMPLETED: frozenset(),
    S.ALREADY_SENT: frozenset(),
    S.SEND_FAILED: frozenset(),
    S.ERROR: frozenset(),
    S.SKIPPED: frozenset(),
}

# Statuses after which a lead no longer holds its batch open
BATCH_TERMINAL = frozenset(s for s in CampaignStatus if s is not S.DRAFT)

# Lead statuses that allow re-admission into a later batch
RELEASABLE = frozenset({S.SEND_FAILED, S.ERROR})


def can_transition(current: CampaignStatus, target: CampaignStatus) -> bool:
    return target in ALLOWED_TRANSITIONS.get(current, frozenset())


def transition(campaign: Campaign, target: CampaignStatus, lead: Optional[Lead] = None) -> None:
    """
    Move a campaign to `target`, stamping the matching timestamp.

    Raises:
        InvalidTransitionError: If the move is not in ALLOWED_TRANSITIONS.
    """
    current = campaign.status
    if not can_transition(current, target):
        raise InvalidTransitionError(current.value, target.value)

    now = utcnow()
    campaign.status = target
    if target is S.SENT:
        campaign.sent_at = now
    elif target is S.OPENED and campaign.opened_at is None:
        campaign.opened_at = now
    elif target is S.MEETING_SCHEDULED:
        campaign.converted_at = campaign.converted_at or now

    lead = lead or campaign.lead
    if lead is not None:
        lead.outreach_status = target
    logger.debug("Campaign %s: %s → %s", campaign.id, current.value, target.value)


# ── Send decision ─────────────────────────────────────────────────────────────

class SendDecision(str, enum.Enum):
    SEND = "send"
    HOLD = "hold"                 # stays draft, awaiting approval or auto-send
    SKIP = "skip"                 # no deliverable recipient, or block-listed
    ALREADY_SENT = "already_sent"


@dataclass(frozen=True)
class SendCheck:
    decision: SendDecision
    reason: str


def decide_send(
    recipient: Optional[str],
    approved: bool,
    auto_send: bool,
    blocked: bool,
    previously_sent: bool,
) -> SendCheck:
    """
    Pure guard for draft → sent. Checked in this order: recipient, block list,
    prior send, authorization.
    """
    if not recipient:
        return SendCheck(SendDecision.SKIP, "No deliverable recipient address")
    if blocked:
        return SendCheck(SendDecision.SKIP, "Recipient is on the block list")
    if previously_sent:
        return SendCheck(SendDecision.ALREADY_SENT, "Recipient was already contacted")
    if not (approved or auto_send):
        return SendCheck(SendDecision.HOLD, "Awaiting approval")
    return SendCheck(SendDecision.SEND, "Authorized")


# ── Reply outcomes ────────────────────────────────────────────────────────────

INTENT_STATUS: dict[ReplyIntent, Optional[CampaignStatus]] = {
    ReplyIntent.INTERESTED: S.INTERESTED,
    ReplyIntent.READY_TO_BOOK: S.BOOKING,
    ReplyIntent.NOT_INTERESTED: S.CLOSED_LOST,
    ReplyIntent.OBJECTION: S.NURTURING,
    ReplyIntent.UNCLEAR: S.REPLIED,
    # No status movement; handled outside the lifecycle
    ReplyIntent.OUT_OF_OFFICE: None,
    ReplyIntent.UNSUBSCRIBE: None,
}


def apply_reply_intent(
    campaign: Campaign,
    intent: ReplyIntent,
    lead: Optional[Lead] = None,
) -> Optional[CampaignStatus]:
    """
    Advance a campaign for a classified reply.

    sent/opened pass through `replied` first. UNCLEAR stops at `replied` and
    never moves a later status backwards. Returns the campaign's status
    afterwards, or None when the intent does not touch the lifecycle.
    """
    target = INTENT_STATUS[intent]
    if target is None:
        return None

    if campaign.status in (S.SENT, S.OPENED):
        transition(campaign, S.REPLIED, lead)
    if target is not S.REPLIED and campaign.status is not target:
        transition(campaign, target, lead)
    campaign.replied_at = utcnow()
    return campaign.status
