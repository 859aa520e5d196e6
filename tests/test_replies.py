"""
tests/test_replies.py — Reply ingestion, classification outcomes, follow-up delivery and opens.

classify_reply / draft_reply are patched; no LLM calls are made.
"""

from datetime import datetime
from unittest.mock import MagicMock, patch

import pytest

from leadflow.ai_engine.processor import EmailDraft
from leadflow.config import settings
from leadflow.db import repository
from leadflow.db.models import CampaignStatus, ConversationMessage, MessageDirection, utcnow
from leadflow.errors import (
    InvalidTransitionError,
    NotFoundError,
    PermanentServiceError,
    TransientServiceError,
)
from leadflow.outreach.mailer import DeliveryResult
from leadflow.outreach.replies import (
    approve_response,
    deliver_pending_responses,
    ingest_reply,
    process_pending_replies,
    record_open,
)
from leadflow.services.reply_classifier import ReplyClassification, ReplyIntent
from leadflow.services.runtime_settings import SettingsSnapshot

AUTO_DELIVER = SettingsSnapshot(auto_delivery_enabled=True, require_approval_for_delivery=False)
FOLLOW_UP = EmailDraft(subject="Re: Quick idea", body="Happy to help", raw_response="{}")


def _sent_campaign(db, email="jo@acme.io", status=CampaignStatus.SENT):
    lead = repository.create_lead(
        db, company_name="Acme", contact_name="Jo Smith", contact_email=email,
        signal_payload={"business_area": "SaaS"},
    )
    campaign = repository.create_campaign(db, lead.id, email, "Quick idea", "Hi Jo", status=status)
    campaign.sent_at = utcnow()
    campaign.delivery_id = "<first@example.com>"
    lead.outreach_status = status
    db.commit()
    return campaign


def _classified(intent, **fields) -> ReplyClassification:
    return ReplyClassification(intent=intent, **fields)


def _outgoing(db, campaign, approved=False):
    message = repository.create_message(
        db,
        MessageDirection.OUTGOING,
        from_email=settings.gmail_user,
        body="Happy to help",
        to_email=campaign.recipient_email,
        subject="Re: Quick idea",
        campaign_id=campaign.id,
        processed=True,
    )
    message.approved_for_delivery = approved
    db.commit()
    return message


def _responses(db, campaign):
    return [
        m for m in repository.get_conversation(db, campaign.id)
        if m.direction is MessageDirection.OUTGOING
    ]


# ── Ingestion ─────────────────────────────────────────────────────────────────

class TestIngestReply:
    def test_links_to_open_campaign(self, db):
        campaign = _sent_campaign(db)
        message = ingest_reply(db, "Jo@Acme.io", "Tell me more", subject="Re: Quick idea")
        assert message.campaign_id == campaign.id
        assert message.direction is MessageDirection.INCOMING
        assert message.from_email == "jo@acme.io"
        assert message.to_email == settings.gmail_user
        assert message.processed is False

    def test_unmatched_reply_is_still_stored(self, db):
        message = ingest_reply(db, "stranger@nowhere.io", "Who is this?")
        assert message.id is not None
        assert message.campaign_id is None

    def test_closed_campaign_is_not_matched(self, db):
        _sent_campaign(db, status=CampaignStatus.CLOSED_LOST)
        assert ingest_reply(db, "jo@acme.io", "Again?").campaign_id is None

    def test_received_at_is_kept(self, db):
        received = datetime(2024, 5, 1, 9, 30)
        assert ingest_reply(db, "jo@acme.io", "Hi", received_at=received).created_at == received


# ── Processing ────────────────────────────────────────────────────────────────

@patch("leadflow.outreach.replies.draft_reply")
@patch("leadflow.outreach.replies.classify_reply")
class TestProcessPendingReplies:
    def test_interested_reply_drafts_held_follow_up(self, mock_classify, mock_draft, db):
        mock_classify.return_value = _classified(ReplyIntent.INTERESTED, sentiment="positive", questions=["Price?"])
        mock_draft.return_value = FOLLOW_UP
        campaign = _sent_campaign(db)
        message = ingest_reply(db, "jo@acme.io", "What does it cost?")

        result = process_pending_replies(db, snapshot=SettingsSnapshot())

        assert result.succeeded == 1
        assert result.meta == {"interested": 1}
        assert message.processed is True
        assert message.intent == "INTERESTED"
        assert message.classification["next_action"] == "send_response_and_monitor"
        assert campaign.status is CampaignStatus.INTERESTED
        assert campaign.lead.outreach_status is CampaignStatus.INTERESTED
        assert campaign.reply_text == "What does it cost?"
        assert campaign.replied_at is not None
        assert mock_draft.call_args.kwargs["questions"] == ["Price?"]

        responses = _responses(db, campaign)
        assert len(responses) == 1
        assert responses[0].body == "Happy to help"
        assert responses[0].approved_for_delivery is False

    def test_auto_delivery_pre_approves_follow_up(self, mock_classify, mock_draft, db):
        mock_classify.return_value = _classified(ReplyIntent.OBJECTION, objections=["Too pricey"])
        mock_draft.return_value = FOLLOW_UP
        campaign = _sent_campaign(db)
        ingest_reply(db, "jo@acme.io", "Sounds expensive")

        process_pending_replies(db, snapshot=AUTO_DELIVER)

        assert campaign.status is CampaignStatus.NURTURING
        assert _responses(db, campaign)[0].approved_for_delivery is True

    def test_ready_to_book_sends_booking_link(self, mock_classify, mock_draft, db, monkeypatch):
        monkeypatch.setattr(settings, "calendly_event_type_url", "https://calendly.com/sam/30min")
        mock_classify.return_value = _classified(ReplyIntent.READY_TO_BOOK)
        campaign = _sent_campaign(db)
        ingest_reply(db, "jo@acme.io", "Let's talk Thursday")

        process_pending_replies(db, snapshot=SettingsSnapshot())

        mock_draft.assert_not_called()
        assert campaign.status is CampaignStatus.BOOKING
        assert campaign.booking_link.startswith("https://calendly.com/sam/30min?")
        response = _responses(db, campaign)[0]
        assert campaign.booking_link in response.body
        assert response.subject == "Re: Quick idea"

    def test_ready_to_book_without_calendar_uses_llm(self, mock_classify, mock_draft, db, monkeypatch):
        monkeypatch.setattr(settings, "calendly_event_type_url", "")
        mock_classify.return_value = _classified(ReplyIntent.READY_TO_BOOK)
        mock_draft.return_value = FOLLOW_UP
        campaign = _sent_campaign(db)
        ingest_reply(db, "jo@acme.io", "Let's talk")

        process_pending_replies(db, snapshot=SettingsSnapshot())

        assert mock_draft.call_args.kwargs["booking_link"] == ""
        assert campaign.booking_link is None
        assert len(_responses(db, campaign)) == 1

    def test_unsubscribe_blocks_without_status_change(self, mock_classify, mock_draft, db):
        mock_classify.return_value = _classified(ReplyIntent.UNSUBSCRIBE, source="rules")
        campaign = _sent_campaign(db)
        ingest_reply(db, "jo@acme.io", "Unsubscribe me")

        result = process_pending_replies(db, snapshot=SettingsSnapshot())

        assert result.meta == {"unsubscribe": 1}
        assert repository.is_blocked(db, "jo@acme.io") is True
        assert campaign.status is CampaignStatus.SENT
        assert campaign.last_intent == "UNSUBSCRIBE"
        assert _responses(db, campaign) == []
        mock_draft.assert_not_called()

    def test_reply_after_unsubscribe_changes_nothing(self, mock_classify, mock_draft, db):
        mock_classify.side_effect = [
            _classified(ReplyIntent.UNSUBSCRIBE, source="rules"),
            _classified(ReplyIntent.INTERESTED),
        ]
        mock_draft.return_value = FOLLOW_UP
        campaign = _sent_campaign(db)
        ingest_reply(db, "jo@acme.io", "Unsubscribe me")
        later = ingest_reply(db, "jo@acme.io", "Actually, tell me more")

        result = process_pending_replies(db, snapshot=AUTO_DELIVER)

        assert result.meta == {"unsubscribe": 1, "interested": 1}
        assert later.campaign_id == campaign.id
        assert later.processed is True
        assert campaign.status is CampaignStatus.SENT
        assert campaign.lead.outreach_status is CampaignStatus.SENT
        assert campaign.last_intent == "INTERESTED"
        assert campaign.replied_at is None
        assert _responses(db, campaign) == []
        mock_draft.assert_not_called()

    def test_block_listed_sender_reply_is_only_recorded(self, mock_classify, mock_draft, db):
        mock_classify.return_value = _classified(ReplyIntent.READY_TO_BOOK)
        campaign = _sent_campaign(db)
        repository.add_to_block_list(db, "Jo@Acme.io", reason="manual")
        db.commit()
        ingest_reply(db, "jo@acme.io", "Let's talk Thursday")

        process_pending_replies(db, snapshot=SettingsSnapshot())

        assert campaign.status is CampaignStatus.SENT
        assert campaign.reply_text == "Let's talk Thursday"
        assert campaign.booking_link is None
        assert _responses(db, campaign) == []

    def test_out_of_office_is_ignored(self, mock_classify, mock_draft, db):
        mock_classify.return_value = _classified(ReplyIntent.OUT_OF_OFFICE, source="rules")
        campaign = _sent_campaign(db)
        ingest_reply(db, "jo@acme.io", "I am out of the office")

        process_pending_replies(db, snapshot=SettingsSnapshot())

        assert campaign.status is CampaignStatus.SENT
        assert campaign.replied_at is None
        assert repository.is_blocked(db, "jo@acme.io") is False
        mock_draft.assert_not_called()

    def test_unclear_reply_is_flagged(self, mock_classify, mock_draft, db):
        mock_classify.return_value = _classified(ReplyIntent.UNCLEAR, needs_review=True)
        campaign = _sent_campaign(db)
        ingest_reply(db, "jo@acme.io", "??")

        result = process_pending_replies(db, snapshot=SettingsSnapshot())

        assert result.meta == {"unclear": 1, "needs_review": 1}
        assert campaign.status is CampaignStatus.REPLIED
        assert campaign.needs_review is True
        mock_draft.assert_not_called()

    def test_unmatched_unsubscribe_still_blocks(self, mock_classify, mock_draft, db):
        mock_classify.return_value = _classified(ReplyIntent.UNSUBSCRIBE, source="rules")
        message = ingest_reply(db, "stranger@nowhere.io", "Remove me")

        process_pending_replies(db, snapshot=SettingsSnapshot())

        assert message.processed is True
        assert repository.is_blocked(db, "stranger@nowhere.io") is True

    def test_late_reply_to_closed_campaign_only_recorded(self, mock_classify, mock_draft, db):
        mock_classify.side_effect = [
            _classified(ReplyIntent.NOT_INTERESTED),
            _classified(ReplyIntent.INTERESTED),
        ]
        mock_draft.return_value = FOLLOW_UP
        campaign = _sent_campaign(db)
        ingest_reply(db, "jo@acme.io", "No thanks")
        ingest_reply(db, "jo@acme.io", "Actually, maybe")

        result = process_pending_replies(db, snapshot=SettingsSnapshot())

        assert result.succeeded == 2
        assert campaign.status is CampaignStatus.CLOSED_LOST
        assert campaign.last_intent == "INTERESTED"

    def test_transient_failure_leaves_reply_unprocessed(self, mock_classify, mock_draft, db):
        mock_classify.side_effect = TransientServiceError("classification", "rate limited")
        campaign = _sent_campaign(db)
        message = ingest_reply(db, "jo@acme.io", "Tell me more")

        result = process_pending_replies(db, snapshot=SettingsSnapshot())

        assert result.errors[0].kind == "transient"
        db.refresh(message)
        assert message.processed is False
        assert campaign.status is CampaignStatus.SENT

    def test_transient_drafting_failure_rolls_back_classification(self, mock_classify, mock_draft, db):
        mock_classify.return_value = _classified(ReplyIntent.INTERESTED)
        mock_draft.side_effect = TransientServiceError("drafting", "timeout")
        campaign = _sent_campaign(db)
        message = ingest_reply(db, "jo@acme.io", "Tell me more")

        process_pending_replies(db, snapshot=SettingsSnapshot())

        db.refresh(message)
        db.refresh(campaign)
        assert message.processed is False
        assert campaign.status is CampaignStatus.SENT

    def test_permanent_classifier_failure_is_flagged(self, mock_classify, mock_draft, db):
        mock_classify.side_effect = PermanentServiceError("classification", "bad request")
        campaign = _sent_campaign(db)
        message = ingest_reply(db, "jo@acme.io", "Tell me more")

        result = process_pending_replies(db, snapshot=SettingsSnapshot())

        assert result.meta["needs_review"] == 1
        assert message.processed is True
        assert message.intent == "UNCLEAR"
        assert campaign.status is CampaignStatus.REPLIED

    def test_permanent_drafting_failure_flags_campaign(self, mock_classify, mock_draft, db):
        mock_classify.return_value = _classified(ReplyIntent.INTERESTED)
        mock_draft.side_effect = PermanentServiceError("drafting", "bad request")
        campaign = _sent_campaign(db)
        ingest_reply(db, "jo@acme.io", "Tell me more")

        process_pending_replies(db, snapshot=SettingsSnapshot())

        assert campaign.status is CampaignStatus.INTERESTED
        assert campaign.needs_review is True
        assert _responses(db, campaign) == []


# ── Delivery ──────────────────────────────────────────────────────────────────

def _mailer(**result) -> MagicMock:
    mailer = MagicMock()
    mailer.send.return_value = DeliveryResult(**result)
    return mailer


class TestDeliverPendingResponses:
    def test_unapproved_follow_up_is_held(self, db):
        _outgoing(db, _sent_campaign(db))
        mailer = _mailer(success=True)

        result = deliver_pending_responses(db, snapshot=SettingsSnapshot(), mailer=mailer)

        assert result.meta == {"held": 1}
        mailer.send.assert_not_called()

    def test_approved_follow_up_is_threaded(self, db):
        message = _outgoing(db, _sent_campaign(db), approved=True)
        mailer = _mailer(success=True, delivery_id="<second@example.com>")

        result = deliver_pending_responses(db, snapshot=SettingsSnapshot(), mailer=mailer)

        assert result.succeeded == 1
        assert message.sent_at is not None
        to_address, email = mailer.send.call_args[0]
        assert to_address == "jo@acme.io"
        assert email.in_reply_to == "<first@example.com>"

    def test_auto_delivery_sends_unapproved(self, db):
        _outgoing(db, _sent_campaign(db))
        result = deliver_pending_responses(db, snapshot=AUTO_DELIVER, mailer=_mailer(success=True))
        assert result.succeeded == 1

    def test_blocked_recipient(self, db):
        message = _outgoing(db, _sent_campaign(db), approved=True)
        repository.add_to_block_list(db, "jo@acme.io", "unsubscribe")
        db.commit()
        mailer = _mailer(success=True)

        result = deliver_pending_responses(db, snapshot=SettingsSnapshot(), mailer=mailer)

        assert result.meta == {"blocked": 1}
        assert message.error_message == "Recipient is on the block list"
        mailer.send.assert_not_called()
        assert deliver_pending_responses(db, snapshot=SettingsSnapshot(), mailer=mailer).processed == 0

    def test_transient_failure_retries_next_sweep(self, db):
        message = _outgoing(db, _sent_campaign(db), approved=True)
        result = deliver_pending_responses(
            db, snapshot=SettingsSnapshot(), mailer=_mailer(success=False, error="busy", retryable=True),
        )
        assert result.errors[0].kind == "transient"
        assert message.sent_at is None
        assert message.error_message is None

    def test_permanent_failure_is_recorded(self, db):
        message = _outgoing(db, _sent_campaign(db), approved=True)
        result = deliver_pending_responses(
            db, snapshot=SettingsSnapshot(), mailer=_mailer(success=False, error="refused"),
        )
        assert result.errors[0].kind == "permanent"
        assert message.error_message == "refused"


class TestApproveResponse:
    def test_approves(self, db):
        message = _outgoing(db, _sent_campaign(db))
        assert approve_response(db, message.id).approved_for_delivery is True

    def test_unknown_message(self, db):
        with pytest.raises(NotFoundError):
            approve_response(db, 999)

    def test_incoming_message_cannot_be_approved(self, db):
        _sent_campaign(db)
        message = ingest_reply(db, "jo@acme.io", "Hi")
        with pytest.raises(InvalidTransitionError):
            approve_response(db, message.id)

    def test_sent_follow_up_cannot_be_approved(self, db):
        message = _outgoing(db, _sent_campaign(db), approved=True)
        message.sent_at = utcnow()
        db.commit()
        with pytest.raises(InvalidTransitionError):
            approve_response(db, message.id)


# ── Opens ─────────────────────────────────────────────────────────────────────

class TestRecordOpen:
    def test_sent_becomes_opened(self, db):
        campaign = _sent_campaign(db)
        record_open(db, campaign.id)
        assert campaign.status is CampaignStatus.OPENED
        assert campaign.opened_at is not None
        assert campaign.lead.outreach_status is CampaignStatus.OPENED

    def test_repeat_open_keeps_first_timestamp(self, db):
        campaign = _sent_campaign(db)
        first = record_open(db, campaign.id).opened_at
        assert record_open(db, campaign.id).opened_at == first

    def test_open_after_reply_only_stamps(self, db):
        campaign = _sent_campaign(db, status=CampaignStatus.INTERESTED)
        record_open(db, campaign.id)
        assert campaign.status is CampaignStatus.INTERESTED
        assert campaign.opened_at is not None

    def test_unsent_campaign(self, db):
        lead = repository.create_lead(db, company_name="Acme")
        campaign = repository.create_campaign(db, lead.id, "jo@acme.io", "s", "b")
        db.commit()
        with pytest.raises(InvalidTransitionError):
            record_open(db, campaign.id)

    def test_unknown_campaign(self, db):
        with pytest.raises(NotFoundError):
            record_open(db, 999)
