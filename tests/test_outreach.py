"""
tests/test_outreach.py — Email rendering, the SMTP mailer and service error classification.

SMTP is patched; no emails are sent.
"""

import smtplib
from unittest.mock import patch

import httpx
import openai
import pytest
import requests

from leadflow.errors import (
    PermanentServiceError,
    TransientServiceError,
    classify_service_error,
)
from leadflow.outreach.mailer import SmtpMailer
from leadflow.outreach.templates import render_booking_email, render_email

_REQUEST = httpx.Request("POST", "https://openrouter.ai/api/v1/chat/completions")


def _http_error(status: int, retry_after: str = None) -> requests.HTTPError:
    response = requests.Response()
    response.status_code = status
    if retry_after:
        response.headers["Retry-After"] = retry_after
    return requests.HTTPError(f"{status} error", response=response)


# ── Templates ─────────────────────────────────────────────────────────────────

class TestRenderEmail:
    def test_html_and_plain_parts(self):
        email = render_email("Quick idea", "Hi Jo,\n\nWorth a call?", sender_name="Sam")
        assert email.html_body.startswith("<!DOCTYPE html>")
        assert "<p>Hi Jo,</p>" in email.html_body
        assert "<br>" in email.html_body
        assert email.plain_body == "Hi Jo,\n\nWorth a call?\n\nSam"

    def test_body_is_escaped(self):
        email = render_email("<b>Hi</b>", "Tom & Jerry <script>", sender_name="")
        assert "Tom &amp; Jerry &lt;script&gt;" in email.html_body
        assert "<title>&lt;b&gt;Hi&lt;/b&gt;</title>" in email.html_body

    def test_empty_sender_name_omits_signature(self):
        email = render_email("Hi", "Body", sender_name="")
        assert email.plain_body == "Body"
        assert 'class="signature"><strong>' not in email.html_body

    def test_default_sender_from_settings(self):
        assert render_email("Hi", "Body").plain_body.endswith("\n\nSam")

    def test_in_reply_to_carried(self):
        assert render_email("Re: Hi", "Body", in_reply_to="<abc@x>").in_reply_to == "<abc@x>"


class TestRenderBookingEmail:
    def test_reply_subject_and_link(self):
        email = render_booking_email("Acme", "Jo Smith", "https://cal.example/x", "Quick idea", "<abc@x>")
        assert email.subject == "Re: Quick idea"
        assert email.plain_body.startswith("Hi Jo,")
        assert "https://cal.example/x" in email.plain_body
        assert email.in_reply_to == "<abc@x>"

    def test_without_original_subject(self):
        email = render_booking_email("Acme", None, "https://cal.example/x")
        assert email.subject == "Scheduling a call with Acme"
        assert email.plain_body.startswith("Hi,")


# ── Mailer ────────────────────────────────────────────────────────────────────

class TestSmtpMailer:
    @patch("leadflow.outreach.mailer.smtplib.SMTP_SSL")
    def test_dry_run_never_connects(self, mock_smtp):
        result = SmtpMailer(dry_run=True).send("jo@acme.io", render_email("Hi", "Body"))
        assert result.success is True
        assert result.delivery_id == "dry-run"
        mock_smtp.assert_not_called()

    def test_dry_run_defaults_to_settings(self):
        assert SmtpMailer().dry_run is True

    @patch("leadflow.outreach.mailer.smtplib.SMTP_SSL")
    def test_real_send(self, mock_smtp):
        server = mock_smtp.return_value.__enter__.return_value
        result = SmtpMailer(dry_run=False).send("jo@acme.io", render_email("Hi", "Body", in_reply_to="<abc@x>"))

        assert result.success is True
        assert result.delivery_id.endswith("@example.com>")
        server.login.assert_called_once_with("test@example.com", "test-password")
        sender, recipient, raw = server.sendmail.call_args[0]
        assert recipient == "jo@acme.io"
        assert "In-Reply-To: <abc@x>" in raw
        assert "Subject: Hi" in raw

    @patch("leadflow.outreach.mailer.smtplib.SMTP_SSL")
    def test_disconnect_is_retryable(self, mock_smtp):
        mock_smtp.side_effect = smtplib.SMTPServerDisconnected("gone")
        result = SmtpMailer(dry_run=False).send("jo@acme.io", render_email("Hi", "Body"))
        assert result.success is False
        assert result.retryable is True

    @patch("leadflow.outreach.mailer.smtplib.SMTP_SSL")
    def test_auth_failure_is_permanent(self, mock_smtp):
        server = mock_smtp.return_value.__enter__.return_value
        server.login.side_effect = smtplib.SMTPAuthenticationError(535, b"bad credentials")
        result = SmtpMailer(dry_run=False).send("jo@acme.io", render_email("Hi", "Body"))
        assert result.success is False
        assert result.retryable is False
        assert "bad credentials" in result.error


# ── classify_service_error ────────────────────────────────────────────────────

class TestClassifyServiceError:
    def test_openai_rate_limit_carries_retry_after(self):
        response = httpx.Response(429, headers={"Retry-After": "12"}, request=_REQUEST)
        exc = openai.RateLimitError("slow down", response=response, body=None)
        error = classify_service_error("enrichment", exc)
        assert isinstance(error, TransientServiceError)
        assert error.retry_after == 12.0

    def test_openai_timeout(self):
        error = classify_service_error("drafting", openai.APITimeoutError(request=_REQUEST))
        assert isinstance(error, TransientServiceError)

    def test_openai_auth_is_permanent(self):
        response = httpx.Response(401, request=_REQUEST)
        exc = openai.AuthenticationError("bad key", response=response, body=None)
        assert isinstance(classify_service_error("drafting", exc), PermanentServiceError)

    @pytest.mark.parametrize("status", [429, 500, 503])
    def test_http_retryable_statuses(self, status):
        assert isinstance(classify_service_error("calendar", _http_error(status)), TransientServiceError)

    def test_http_retry_after(self):
        assert classify_service_error("calendar", _http_error(503, "5")).retry_after == 5.0

    @pytest.mark.parametrize("status", [400, 401, 404])
    def test_http_client_errors_are_permanent(self, status):
        assert isinstance(classify_service_error("calendar", _http_error(status)), PermanentServiceError)

    @pytest.mark.parametrize("exc", [requests.Timeout("slow"), requests.ConnectionError("down")])
    def test_requests_network_errors(self, exc):
        assert isinstance(classify_service_error("discovery", exc), TransientServiceError)

    def test_smtp_4xx_is_transient(self):
        exc = smtplib.SMTPResponseException(421, b"try later")
        assert isinstance(classify_service_error("email", exc), TransientServiceError)

    def test_smtp_refused_recipient_is_permanent(self):
        exc = smtplib.SMTPRecipientsRefused({"jo@acme.io": (550, b"no such user")})
        assert isinstance(classify_service_error("email", exc), PermanentServiceError)

    def test_unknown_is_permanent(self):
        error = classify_service_error("email", ValueError("odd"))
        assert isinstance(error, PermanentServiceError)
        assert error.collaborator == "email"

    def test_already_classified_passes_through(self):
        original = TransientServiceError("email", "busy", retry_after=3)
        assert classify_service_error("drafting", original) is original
