"""
leadflow/outreach/booking.py — Meeting booking: links, confirmations, Calendly sync.

Calendar confirmations are matched to campaigns by the invitee's email;
when several campaigns to that address are open, the most recently
created one wins.
"""

import logging
from datetime import datetime, timedelta, timezone
from typing import Any, Optional
from urllib.parse import urlencode

import requests
from sqlalchemy.orm import Session
from tenacity import retry, retry_if_exception_type, stop_after_attempt, wait_exponential

from leadflow.config import settings
from leadflow.db import repository
from leadflow.db.models import Campaign, CampaignStatus, Lead, utcnow
from leadflow.errors import NotFoundError, TransientServiceError, classify_service_error
from leadflow.outreach.state_machine import transition
from leadflow.services.results import SweepResult
from leadflow.services.throttle import CALENDAR, get_throttle

logger = logging.getLogger(__name__)

CALENDLY_API_URL = "https://api.calendly.com"

# Campaign statuses a confirmation can attach to
BOOKABLE = (CampaignStatus.INTERESTED, CampaignStatus.BOOKING, CampaignStatus.MEETING_CANCELLED)


# ── Links ────────────────────────────────────────────────────────────────────

def generate_booking_link(lead: Lead, email: Optional[str] = None) -> Optional[str]:
    """
    Event-type URL with the invitee's details pre-filled.

    Returns None when no event type is configured.
    """
    if not settings.calendly_event_type_url:
        return None
    payload = lead.signal_payload or {}
    params = {
        "name": lead.contact_name or "",
        "email": email or lead.contact_email or "",
        "a1": lead.company_name,
        "a2": payload.get("business_area") or "",
    }
    return f"{settings.calendly_event_type_url}?{urlencode(params)}"


# ── Meeting lifecycle ────────────────────────────────────────────────────────

def record_scheduled_meeting(
    db: Session,
    email: str,
    scheduled_at: datetime,
    event_uri: Optional[str] = None,
    notes: Optional[str] = None,
) -> Optional[Campaign]:
    """
    Apply a calendar confirmation to the matching campaign.

    Returns the campaign, or None when no interested/booking campaign exists
    for the address. Replaying the same event is a no-op.
    """
    if event_uri:
        existing = repository.find_latest_campaign_for_email(db, email, [CampaignStatus.MEETING_SCHEDULED])
        if existing is not None and existing.meeting_event_uri == event_uri:
            return existing

    campaign = repository.find_latest_campaign_for_email(db, email, BOOKABLE)
    if campaign is None:
        logger.warning("Meeting for %s matches no bookable campaign", email)
        return None

    transition(campaign, CampaignStatus.MEETING_SCHEDULED)
    campaign.meeting_scheduled_at = scheduled_at
    campaign.meeting_event_uri = event_uri
    if notes:
        campaign.meeting_notes = notes
    db.commit()
    logger.info("📅 Meeting scheduled with %s at %s (campaign %d)", email, scheduled_at, campaign.id)
    return campaign


def _get_campaign(db: Session, campaign_id: int) -> Campaign:
    campaign = repository.get_campaign(db, campaign_id)
    if campaign is None:
        raise NotFoundError(f"Campaign {campaign_id} not found")
    return campaign


def cancel_meeting(db: Session, campaign_id: int, reason: Optional[str] = None) -> Campaign:
    campaign = _get_campaign(db, campaign_id)
    transition(campaign, CampaignStatus.MEETING_CANCELLED)
    if reason:
        campaign.meeting_notes = reason
    db.commit()
    logger.info("Meeting for campaign %d cancelled", campaign.id)
    return campaign


def complete_meeting(db: Session, campaign_id: int, notes: Optional[str] = None) -> Campaign:
    campaign = _get_campaign(db, campaign_id)
    transition(campaign, CampaignStatus.COMPLETED)
    if notes:
        campaign.meeting_notes = notes
    db.commit()
    logger.info("✅ Meeting for campaign %d completed", campaign.id)
    return campaign


def get_booking_stats(db: Session) -> dict[str, Any]:
    counts = repository.count_campaigns_by_status(db)
    sent = repository.count_sent_campaigns(db)
    scheduled = counts[CampaignStatus.MEETING_SCHEDULED.value] + counts[CampaignStatus.COMPLETED.value]
    return {
        "booking_links_sent": counts[CampaignStatus.BOOKING.value],
        "meetings_scheduled": counts[CampaignStatus.MEETING_SCHEDULED.value],
        "meetings_completed": counts[CampaignStatus.COMPLETED.value],
        "meetings_cancelled": counts[CampaignStatus.MEETING_CANCELLED.value],
        "conversion_rate": round(100.0 * scheduled / sent, 1) if sent else 0.0,
    }


# ── Calendly ─────────────────────────────────────────────────────────────────

def _parse_time(value: str) -> datetime:
    """Calendly ISO timestamp → naive UTC datetime."""
    parsed = datetime.fromisoformat(value.replace("Z", "+00:00"))
    if parsed.tzinfo is not None:
        parsed = parsed.astimezone(timezone.utc).replace(tzinfo=None)
    return parsed


class CalendlyClient:
    """Minimal read-only client for scheduled events and their invitees."""

    def __init__(self, api_key: Optional[str] = None, session: Optional[requests.Session] = None):
        self.api_key = api_key or settings.calendly_api_key
        self.session = session or requests.Session()
        self.session.headers.update({
            "Authorization": f"Bearer {self.api_key}",
            "Content-Type": "application/json",
        })

    @retry(
        retry=retry_if_exception_type(TransientServiceError),
        stop=stop_after_attempt(3),
        wait=wait_exponential(multiplier=1, min=2, max=10),
        reraise=True,
    )
    def _get(self, url: str, params: Optional[dict[str, Any]] = None) -> dict[str, Any]:
        get_throttle(CALENDAR).wait()
        try:
            response = self.session.get(url, params=params, timeout=settings.http_timeout_seconds)
            response.raise_for_status()
        except requests.RequestException as exc:
            raise classify_service_error(CALENDAR, exc) from exc
        return response.json()

    def _paginate(self, url: str, params: Optional[dict[str, Any]] = None) -> list[dict[str, Any]]:
        items: list[dict[str, Any]] = []
        while url:
            data = self._get(url, params)
            items.extend(data.get("collection", []))
            url = (data.get("pagination") or {}).get("next_page")
            params = None  # next_page already carries the query
        return items

    def list_scheduled_events(self, min_start_time: datetime) -> list[dict[str, Any]]:
        params = {
            "organization": settings.calendly_organization_uri,
            "status": "active",
            "min_start_time": min_start_time.strftime("%Y-%m-%dT%H:%M:%SZ"),
            "count": 100,
        }
        return self._paginate(f"{CALENDLY_API_URL}/scheduled_events", params)

    def list_invitees(self, event_uri: str) -> list[dict[str, Any]]:
        return self._paginate(f"{event_uri}/invitees", {"count": 100})


def sync_scheduled_meetings(
    db: Session,
    client: Optional[CalendlyClient] = None,
    since: Optional[datetime] = None,
) -> SweepResult:
    """
    Pull active Calendly events and mark matching campaigns as meeting_scheduled.

    A transient Calendly failure ends the sweep early; matched events already
    committed stay applied and the rest are picked up next time.
    """
    result = SweepResult(name="calendar_sync")
    if client is None and not settings.calendly_api_key:
        result.meta["disabled"] = True
        return result

    client = client or CalendlyClient()
    since = since or utcnow() - timedelta(days=1)

    try:
        events = client.list_scheduled_events(since)
    except TransientServiceError as exc:
        result.record_error("scheduled_events", "transient", str(exc))
        return result

    for event in events:
        event_uri = event.get("uri")
        result.processed += 1
        try:
            invitees = client.list_invitees(event_uri)
        except TransientServiceError as exc:
            result.record_error(event_uri, "transient", str(exc))
            break

        matched = False
        for invitee in invitees:
            email = invitee.get("email")
            if not email:
                continue
            campaign = record_scheduled_meeting(
                db, email, _parse_time(event["start_time"]), event_uri=event_uri, notes=event.get("name"),
            )
            matched = matched or campaign is not None
        if matched:
            result.succeeded += 1
        else:
            result.skipped += 1

    logger.info("Calendar sync: %d events, %d matched", result.processed, result.succeeded)
    return result
