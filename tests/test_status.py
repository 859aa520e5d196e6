"""
tests/test_status.py — Operational status and stale send-claim detection.
"""

from datetime import timedelta

from leadflow.db import repository
from leadflow.db.models import CampaignStatus, utcnow
from leadflow.services.status import get_stale_claims, get_system_status


def _claimed_campaign(db, email="jo@acme.io", age=timedelta(hours=2), sent=False):
    lead = repository.create_lead(db, company_name="Acme", contact_email=email)
    campaign = repository.create_campaign(db, lead.id, email, "Quick idea", "Hi")
    claim = repository.add_send_claim(db, email, campaign.id)
    claim.claimed_at = utcnow() - age
    if sent:
        campaign.status = CampaignStatus.SENT
        campaign.sent_at = utcnow()
    db.commit()
    return campaign


class TestStaleClaims:
    def test_old_unsent_claim_is_stale(self, db):
        campaign = _claimed_campaign(db)
        stale = get_stale_claims(db)
        assert len(stale) == 1
        assert stale[0]["email"] == "jo@acme.io"
        assert stale[0]["campaign_id"] == campaign.id

    def test_recent_claim_is_not_stale(self, db):
        _claimed_campaign(db, age=timedelta(minutes=1))
        assert get_stale_claims(db) == []

    def test_sent_campaign_claim_is_not_stale(self, db):
        _claimed_campaign(db, sent=True)
        assert get_stale_claims(db) == []


class TestSystemStatus:
    def test_overview(self, db):
        _claimed_campaign(db)
        workers = [{"name": "outreach", "running": False}]

        status = get_system_status(db, workers=workers)

        assert set(status) == {
            "inventory", "leads_by_status", "campaigns_by_status", "pending_approvals",
            "undelivered_responses", "stale_send_claims", "booking", "settings",
            "mailer_dry_run", "workers",
        }
        assert status["campaigns_by_status"] == {"draft": 1}
        assert status["pending_approvals"] == 1
        assert len(status["stale_send_claims"]) == 1
        assert status["mailer_dry_run"] is True
        assert status["settings"]["auto_send"] is False
        assert status["settings"]["held_by_approval"] == []
        assert status["workers"] == workers

    def test_empty_database(self, db):
        status = get_system_status(db)
        assert status["campaigns_by_status"] == {}
        assert status["inventory"]["available"] == 0
        assert status["workers"] == []
