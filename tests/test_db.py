"""
tests/test_db.py — Unit tests for the repository and runtime settings.

Uses an in-memory SQLite database (see conftest.db) so no real Postgres
connection is required. Tests run fast and fully in isolation.
"""

import logging
from datetime import timedelta

import pytest
from sqlalchemy.exc import IntegrityError

from leadflow.db import repository
from leadflow.db.models import CampaignStatus, LeadStatus, SystemSetting, utcnow
from leadflow.services import runtime_settings
from leadflow.services.runtime_settings import SettingsSnapshot, load_snapshot, set_setting


# ── Helpers ───────────────────────────────────────────────────────────────────

def make_scored_lead(db, name="Acme", score=30, domain=None, email=None):
    lead = repository.create_lead(db, company_name=name, company_domain=domain, contact_email=email)
    lead.status = LeadStatus.QUALIFIED
    lead.qualified = True
    lead.total_score = score
    db.flush()
    return lead


def make_campaign(db, email="jo@acme.io", status=CampaignStatus.DRAFT, sent=False, name="Acme"):
    lead = repository.create_lead(db, company_name=name)
    campaign = repository.create_campaign(db, lead.id, email, "Hello", "Body", status=status)
    if sent:
        campaign.sent_at = utcnow()
    db.flush()
    return campaign


# ── Leads ─────────────────────────────────────────────────────────────────────

class TestLeads:
    def test_create_lead_defaults(self, db):
        lead = repository.create_lead(db, company_name="Acme", contact_email="  Jo@Acme.IO ")
        db.commit()
        assert lead.id is not None
        assert lead.status is LeadStatus.NEW
        assert lead.contact_email == "jo@acme.io"
        assert lead.signal_payload == {}
        assert lead.batch_id is None

    def test_lead_exists_by_source_url(self, db):
        repository.create_lead(db, company_name="Acme", source_url="https://ih.com/p/1")
        assert repository.lead_exists(db, "https://ih.com/p/1", None, "Other") is True
        assert repository.lead_exists(db, "https://ih.com/p/2", None, "Other") is False

    def test_lead_exists_by_domain_and_name(self, db):
        repository.create_lead(db, company_name="Acme", company_domain="acme.io")
        assert repository.lead_exists(db, None, "acme.io", "Acme") is True
        assert repository.lead_exists(db, None, "acme.io", "Acme Labs") is False

    def test_unprocessed_leads_respect_limit(self, db):
        for i in range(5):
            repository.create_lead(db, company_name=f"Co {i}")
        assert len(repository.get_unprocessed_leads(db, limit=3)) == 3

    def test_count_leads_by_status_includes_zeroes(self, db):
        repository.create_lead(db, company_name="Acme")
        counts = repository.count_leads_by_status(db)
        assert counts == {"new": 1, "qualified": 0, "rejected": 0}


# ── Inventory ─────────────────────────────────────────────────────────────────

class TestInventory:
    def test_available_requires_qualified_scored_unbatched(self, db):
        make_scored_lead(db, "A", score=30)
        make_scored_lead(db, "B", score=24)             # below min score
        unscored = make_scored_lead(db, "C", score=30)
        unscored.total_score = None
        repository.create_lead(db, company_name="D")    # still NEW
        db.flush()
        assert repository.count_available_inventory(db, min_score=25) == 1

    def test_top_available_ordered_by_score(self, db):
        low = make_scored_lead(db, "Low", score=26)
        high = make_scored_lead(db, "High", score=35)
        mid = make_scored_lead(db, "Mid", score=30)
        ids = repository.select_top_available_ids(db, min_score=25, limit=2)
        assert ids == [high.id, mid.id]
        assert low.id not in ids

    def test_claim_only_touches_unassigned_rows(self, db):
        a = make_scored_lead(db, "A")
        b = make_scored_lead(db, "B")
        first = repository.create_batch_row(db, size=1)
        assert repository.claim_leads_for_batch(db, first.id, [a.id]) == 1
        second = repository.create_batch_row(db, size=2)
        assert repository.claim_leads_for_batch(db, second.id, [a.id, b.id]) == 1

    def test_batch_numbers_increment(self, db):
        assert repository.create_batch_row(db, size=1).batch_number == 1
        assert repository.create_batch_row(db, size=1).batch_number == 2


# ── Campaigns / ledger / block list ───────────────────────────────────────────

class TestCampaigns:
    def test_has_sent_campaign_ignores_unsent(self, db):
        make_campaign(db, email="jo@acme.io")
        assert repository.has_sent_campaign(db, "jo@acme.io") is False

    def test_has_sent_campaign_normalizes_and_excludes(self, db):
        sent = make_campaign(db, email="jo@acme.io", status=CampaignStatus.SENT, sent=True)
        assert repository.has_sent_campaign(db, "JO@acme.io") is True
        assert repository.has_sent_campaign(db, "jo@acme.io", exclude_campaign_id=sent.id) is False

    def test_find_latest_campaign_for_email(self, db):
        make_campaign(db, status=CampaignStatus.SENT, sent=True, name="Old")
        newer = make_campaign(db, status=CampaignStatus.SENT, sent=True, name="New")
        make_campaign(db, status=CampaignStatus.CLOSED_LOST, name="Closed")
        found = repository.find_latest_campaign_for_email(db, "jo@acme.io", [CampaignStatus.SENT])
        assert found.id == newer.id

    def test_send_claim_is_unique_per_address(self, db):
        campaign = make_campaign(db)
        repository.add_send_claim(db, "jo@acme.io", campaign.id)
        db.commit()
        with pytest.raises(IntegrityError):
            repository.add_send_claim(db, "JO@acme.io", campaign.id)
        db.rollback()
        assert repository.has_send_claim(db, "jo@acme.io") is True

    def test_release_send_claim(self, db):
        campaign = make_campaign(db)
        repository.add_send_claim(db, "jo@acme.io", campaign.id)
        repository.release_send_claim(db, "jo@acme.io")
        assert repository.has_send_claim(db, "jo@acme.io") is False

    def test_stale_claims_exclude_sent_campaigns(self, db):
        unsent = make_campaign(db, email="a@x.io")
        sent = make_campaign(db, email="b@x.io", status=CampaignStatus.SENT, sent=True)
        repository.add_send_claim(db, "a@x.io", unsent.id)
        repository.add_send_claim(db, "b@x.io", sent.id)
        db.commit()
        stale = repository.get_stale_send_claims(db, older_than=utcnow() + timedelta(minutes=1))
        assert [c.email for c in stale] == ["a@x.io"]

    def test_block_list_is_idempotent_and_normalized(self, db):
        first = repository.add_to_block_list(db, "Jo@Acme.io", "unsubscribe")
        second = repository.add_to_block_list(db, "jo@acme.io", "manual")
        assert first.id == second.id
        assert repository.is_blocked(db, " JO@ACME.IO ") is True
        assert repository.is_blocked(db, None) is False

    def test_pending_approvals(self, db):
        make_campaign(db, email="a@x.io")
        approved = make_campaign(db, email="b@x.io")
        approved.approved_for_sending = True
        db.flush()
        assert repository.count_pending_approvals(db) == 1


# ── Runtime settings ──────────────────────────────────────────────────────────

class TestRuntimeSettings:
    def test_seeded_defaults_fail_closed(self, db):
        snapshot = load_snapshot(db)
        assert snapshot == SettingsSnapshot()
        assert snapshot.auto_send is False
        assert snapshot.auto_deliver is False

    def test_seeding_twice_adds_nothing(self, db):
        assert runtime_settings.seed_default_settings(db) == 0

    def test_auto_send_needs_both_toggles(self, db):
        set_setting(db, runtime_settings.AUTO_OUTREACH_ENABLED, True)
        assert load_snapshot(db).auto_send is False
        set_setting(db, runtime_settings.REQUIRE_APPROVAL_FOR_OUTREACH, False)
        assert load_snapshot(db).auto_send is True

    def test_held_auto_toggle_is_reported(self, db, caplog):
        with caplog.at_level(logging.WARNING, logger="leadflow.services.runtime_settings"):
            snapshot = set_setting(db, runtime_settings.AUTO_DELIVERY_ENABLED, True)

        assert snapshot.auto_deliver is False
        assert snapshot.held_by_approval() == [runtime_settings.AUTO_DELIVERY_ENABLED]
        assert "auto_delivery_enabled is on but has no effect" in caplog.text
        assert "require_approval_for_delivery" in runtime_settings.DEFAULT_SETTINGS[
            runtime_settings.AUTO_DELIVERY_ENABLED
        ][1]

    def test_releasing_approval_clears_held_toggle(self, db, caplog):
        set_setting(db, runtime_settings.AUTO_DELIVERY_ENABLED, True)
        caplog.clear()
        with caplog.at_level(logging.WARNING, logger="leadflow.services.runtime_settings"):
            snapshot = set_setting(db, runtime_settings.REQUIRE_APPROVAL_FOR_DELIVERY, False)

        assert snapshot.auto_deliver is True
        assert snapshot.as_dict()["held_by_approval"] == []
        assert "has no effect" not in caplog.text

    def test_unknown_setting_rejected(self, db):
        with pytest.raises(KeyError):
            set_setting(db, "send_everything", True)

    def test_unreadable_value_falls_back_to_default(self, db):
        row = db.query(SystemSetting).filter_by(key=runtime_settings.REQUIRE_APPROVAL_FOR_OUTREACH).one()
        row.value = "maybe"
        db.flush()
        assert load_snapshot(db).require_approval_for_outreach is True

    def test_string_values_are_parsed(self, db):
        row = db.query(SystemSetting).filter_by(key=runtime_settings.AUTO_OUTREACH_ENABLED).one()
        row.value = "yes"
        db.flush()
        assert load_snapshot(db).auto_outreach_enabled is True

    def test_missing_rows_use_defaults(self, db):
        db.query(SystemSetting).delete()
        db.flush()
        assert load_snapshot(db) == SettingsSnapshot()

    def test_snapshot_is_immutable(self, db):
        snapshot = load_snapshot(db)
        with pytest.raises(AttributeError):
            snapshot.auto_outreach_enabled = True
