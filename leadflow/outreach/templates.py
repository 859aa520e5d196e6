"""
leadflow/outreach/templates.py — Email rendering.

Wraps drafted plain-text bodies (first-touch emails, reply responses and
booking invitations) in a minimal HTML structure with a plain-text part.
"""

import html
from dataclasses import dataclass
from typing import Optional

from leadflow.config import settings


@dataclass
class RenderedEmail:
    """Final email ready to be sent: subject, HTML body, plain-text body."""
    subject: str
    html_body: str
    plain_body: str
    in_reply_to: Optional[str] = None


_HTML_SHELL = """<!DOCTYPE html>
<html lang="en">
<head>
  <meta charset="UTF-8">
  <title>{title}</title>
  <style>
    body {{ font-family: -apple-system, 'Segoe UI', sans-serif; font-size: 15px; line-height: 1.6; color: #1a1a1a; }}
    .container {{ max-width: 600px; margin: 32px auto; padding: 0 24px; }}
    p {{ margin: 0 0 12px 0; }}
    .signature {{ margin-top: 28px; color: #555; font-size: 14px; }}
  </style>
</head>
<body>
  <div class="container">
    {content}
    {signature}
  </div>
</body>
</html>"""


def _to_html(plain_body: str) -> str:
    return "\n".join(
        f"<p>{html.escape(line)}</p>" if line.strip() else "<br>"
        for line in plain_body.strip().splitlines()
    )


def render_email(
    subject: str,
    plain_body: str,
    sender_name: Optional[str] = None,
    in_reply_to: Optional[str] = None,
) -> RenderedEmail:
    """
    Wrap a plain-text email in the HTML template.

    Args:
        subject:     Subject line.
        plain_body:  Plain-text body as drafted.
        sender_name: Sign-off name; defaults to settings.sender_name. Omitted when empty.
        in_reply_to: Message-ID of the email being answered, for threading.
    """
    sender_name = settings.sender_name if sender_name is None else sender_name
    signature = f'<div class="signature"><strong>{html.escape(sender_name)}</strong></div>' if sender_name else ""

    html_body = _HTML_SHELL.format(
        title=html.escape(subject),
        content=_to_html(plain_body),
        signature=signature,
    )
    plain = plain_body.strip()
    if sender_name:
        plain = f"{plain}\n\n{sender_name}"

    return RenderedEmail(subject=subject, html_body=html_body, plain_body=plain, in_reply_to=in_reply_to)


def render_booking_email(
    company_name: str,
    contact_name: Optional[str],
    booking_link: str,
    original_subject: Optional[str] = None,
    in_reply_to: Optional[str] = None,
) -> RenderedEmail:
    """Short invitation carrying the prefilled scheduling link."""
    greeting = f"Hi {contact_name.split()[0]}," if contact_name else "Hi,"
    body = (
        f"{greeting}\n\n"
        f"Great to hear from you. Here's a link to grab a time that works for the {company_name} team:\n\n"
        f"{booking_link}\n\n"
        "Your details are already filled in, so it only takes a click.\n\n"
        "Looking forward to it."
    )
    subject = f"Re: {original_subject}" if original_subject else f"Scheduling a call with {company_name}"
    return render_email(subject, body, in_reply_to=in_reply_to)
