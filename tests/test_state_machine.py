"""
tests/test_state_machine.py — Outreach lifecycle transitions and send guard.
"""

import pytest

from leadflow.db.models import Campaign, CampaignStatus, Lead
from leadflow.errors import InvalidTransitionError
from leadflow.outreach.state_machine import (
    ALLOWED_TRANSITIONS,
    BATCH_TERMINAL,
    SendDecision,
    apply_reply_intent,
    can_transition,
    decide_send,
    transition,
)
from leadflow.services.reply_classifier import ReplyIntent

S = CampaignStatus


def _make_campaign(status: CampaignStatus) -> tuple[Campaign, Lead]:
    lead = Lead(id=1, company_name="Acme", outreach_status=status)
    campaign = Campaign(id=1, lead_id=1, status=status)
    return campaign, lead


class TestTransition:
    def test_every_status_has_an_entry(self):
        assert set(ALLOWED_TRANSITIONS) == set(CampaignStatus)

    def test_send_stamps_sent_at_and_mirrors_lead(self):
        campaign, lead = _make_campaign(S.DRAFT)
        transition(campaign, S.SENT, lead)
        assert campaign.status is S.SENT
        assert campaign.sent_at is not None
        assert lead.outreach_status is S.SENT

    def test_open_stamps_opened_at(self):
        campaign, lead = _make_campaign(S.SENT)
        transition(campaign, S.OPENED, lead)
        assert campaign.opened_at is not None

    def test_meeting_stamps_converted_at(self):
        campaign, lead = _make_campaign(S.INTERESTED)
        transition(campaign, S.MEETING_SCHEDULED, lead)
        assert campaign.converted_at is not None

    @pytest.mark.parametrize("current, target", [
        (S.DRAFT, S.OPENED),
        (S.SENT, S.DRAFT),
        (S.CLOSED_LOST, S.INTERESTED),
        (S.COMPLETED, S.MEETING_SCHEDULED),
        (S.NURTURING, S.MEETING_SCHEDULED),
        (S.SENT, S.SENT),
    ])
    def test_illegal_moves_rejected(self, current, target):
        campaign, lead = _make_campaign(current)
        with pytest.raises(InvalidTransitionError):
            transition(campaign, target, lead)
        assert campaign.status is current
        assert lead.outreach_status is current

    def test_cancelled_meeting_can_be_rebooked(self):
        assert can_transition(S.MEETING_CANCELLED, S.MEETING_SCHEDULED) is True

    def test_terminal_statuses_have_no_exits(self):
        for status in (S.CLOSED_LOST, S.COMPLETED, S.ALREADY_SENT, S.SEND_FAILED, S.ERROR, S.SKIPPED):
            assert ALLOWED_TRANSITIONS[status] == frozenset()

    def test_only_draft_holds_a_batch_open(self):
        assert S.DRAFT not in BATCH_TERMINAL
        assert S.SKIPPED in BATCH_TERMINAL
        assert S.SENT in BATCH_TERMINAL


class TestDecideSend:
    def test_authorized_by_approval(self):
        check = decide_send("jo@acme.io", approved=True, auto_send=False, blocked=False, previously_sent=False)
        assert check.decision is SendDecision.SEND

    def test_authorized_by_auto_send(self):
        check = decide_send("jo@acme.io", approved=False, auto_send=True, blocked=False, previously_sent=False)
        assert check.decision is SendDecision.SEND

    def test_held_without_authorization(self):
        check = decide_send("jo@acme.io", approved=False, auto_send=False, blocked=False, previously_sent=False)
        assert check.decision is SendDecision.HOLD

    def test_no_recipient_skips(self):
        check = decide_send(None, approved=True, auto_send=True, blocked=False, previously_sent=False)
        assert check.decision is SendDecision.SKIP

    def test_block_list_beats_approval(self):
        check = decide_send("jo@acme.io", approved=True, auto_send=True, blocked=True, previously_sent=True)
        assert check.decision is SendDecision.SKIP
        assert "block list" in check.reason

    def test_prior_send_beats_approval(self):
        check = decide_send("jo@acme.io", approved=True, auto_send=False, blocked=False, previously_sent=True)
        assert check.decision is SendDecision.ALREADY_SENT


class TestApplyReplyIntent:
    @pytest.mark.parametrize("intent, expected", [
        (ReplyIntent.INTERESTED, S.INTERESTED),
        (ReplyIntent.READY_TO_BOOK, S.BOOKING),
        (ReplyIntent.NOT_INTERESTED, S.CLOSED_LOST),
        (ReplyIntent.OBJECTION, S.NURTURING),
        (ReplyIntent.UNCLEAR, S.REPLIED),
    ])
    def test_from_sent(self, intent, expected):
        campaign, lead = _make_campaign(S.SENT)
        assert apply_reply_intent(campaign, intent, lead) is expected
        assert campaign.status is expected
        assert lead.outreach_status is expected
        assert campaign.replied_at is not None

    def test_from_opened_passes_through_replied(self):
        campaign, lead = _make_campaign(S.OPENED)
        assert apply_reply_intent(campaign, ReplyIntent.INTERESTED, lead) is S.INTERESTED

    @pytest.mark.parametrize("intent", [ReplyIntent.OUT_OF_OFFICE, ReplyIntent.UNSUBSCRIBE])
    def test_no_status_change(self, intent):
        campaign, lead = _make_campaign(S.SENT)
        assert apply_reply_intent(campaign, intent, lead) is None
        assert campaign.status is S.SENT
        assert campaign.replied_at is None

    def test_unclear_never_moves_backwards(self):
        campaign, lead = _make_campaign(S.INTERESTED)
        assert apply_reply_intent(campaign, ReplyIntent.UNCLEAR, lead) is S.INTERESTED

    def test_repeat_intent_is_a_no_op(self):
        campaign, lead = _make_campaign(S.NURTURING)
        assert apply_reply_intent(campaign, ReplyIntent.OBJECTION, lead) is S.NURTURING

    def test_nurturing_lead_can_become_interested(self):
        campaign, lead = _make_campaign(S.NURTURING)
        assert apply_reply_intent(campaign, ReplyIntent.INTERESTED, lead) is S.INTERESTED
