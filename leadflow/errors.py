"""
leadflow/errors.py — Exception hierarchy shared across the pipeline.

Sweeps distinguish three failure families:
  - transient service errors  → leave the item untouched, retry next sweep
  - permanent service errors  → record on the item, move on
  - consistency errors        → block the action and surface to the caller
"""

import smtplib
import socket
from typing import Optional

import openai
import requests


class LeadflowError(Exception):
    """Base class for all domain errors."""


class ConfigError(LeadflowError):
    """Invalid or missing configuration. Raised at startup, never swallowed."""


# ── External collaborators ────────────────────────────────────────────────────

class ExternalServiceError(LeadflowError):
    def __init__(self, collaborator: str, message: str, retry_after: Optional[float] = None):
        super().__init__(f"{collaborator}: {message}")
        self.collaborator = collaborator
        self.retry_after = retry_after


class TransientServiceError(ExternalServiceError):
    """Timeout, rate limit or 5xx. The item stays in its pre-call state."""


class PermanentServiceError(ExternalServiceError):
    """Auth failure, bad request, rejected recipient. Retrying will not help."""


# ── Consistency ───────────────────────────────────────────────────────────────

class InsufficientInventoryError(LeadflowError):
    def __init__(self, available: int, required: int):
        super().__init__(
            f"Insufficient inventory: {available} leads available, {required} required"
        )
        self.available = available
        self.required = required


class BatchClaimConflictError(LeadflowError):
    """The conditional batch claim updated fewer rows than selected."""


class BatchNotFinishedError(LeadflowError):
    def __init__(self, batch_id: int, pending: int):
        super().__init__(f"Batch {batch_id} still has {pending} leads without a terminal outreach status")
        self.batch_id = batch_id
        self.pending = pending


class InvalidTransitionError(LeadflowError):
    def __init__(self, current: str, target: str):
        super().__init__(f"Illegal outreach transition {current} → {target}")
        self.current = current
        self.target = target


class NotQualifiedError(LeadflowError):
    """Scoring was requested for a lead that did not pass qualification."""


class NotFoundError(LeadflowError):
    """A referenced lead, batch or campaign does not exist."""


# ── Classification ────────────────────────────────────────────────────────────

_TRANSIENT_OPENAI = (
    openai.RateLimitError,
    openai.APITimeoutError,
    openai.APIConnectionError,
    openai.InternalServerError,
)

_TRANSIENT_SMTP = (
    smtplib.SMTPServerDisconnected,
    smtplib.SMTPConnectError,
)


def _retry_after(response) -> Optional[float]:
    if response is None:
        return None
    value = response.headers.get("Retry-After")
    try:
        return float(value) if value else None
    except ValueError:
        return None


def classify_service_error(collaborator: str, exc: BaseException) -> ExternalServiceError:
    """
    Map a raw library exception to TransientServiceError or PermanentServiceError.

    Already-classified errors pass through unchanged. Anything unrecognised is
    treated as permanent so it is surfaced rather than retried forever.
    """
    if isinstance(exc, ExternalServiceError):
        return exc

    message = str(exc) or exc.__class__.__name__

    if isinstance(exc, _TRANSIENT_OPENAI):
        response = getattr(exc, "response", None)
        return TransientServiceError(collaborator, message, _retry_after(response))
    if isinstance(exc, openai.APIStatusError):
        return PermanentServiceError(collaborator, message)

    if isinstance(exc, requests.HTTPError):
        response = exc.response
        status = response.status_code if response is not None else None
        if status == 429 or (status is not None and status >= 500):
            return TransientServiceError(collaborator, message, _retry_after(response))
        return PermanentServiceError(collaborator, message)
    if isinstance(exc, (requests.Timeout, requests.ConnectionError)):
        return TransientServiceError(collaborator, message)

    if isinstance(exc, _TRANSIENT_SMTP):
        return TransientServiceError(collaborator, message)
    if isinstance(exc, smtplib.SMTPResponseException):
        # 4xx replies are temporary per RFC 5321
        if 400 <= exc.smtp_code < 500:
            return TransientServiceError(collaborator, message)
        return PermanentServiceError(collaborator, message)
    if isinstance(exc, smtplib.SMTPRecipientsRefused):
        return PermanentServiceError(collaborator, message)

    if isinstance(exc, (TimeoutError, socket.timeout, ConnectionError)):
        return TransientServiceError(collaborator, message)

    return PermanentServiceError(collaborator, message)
