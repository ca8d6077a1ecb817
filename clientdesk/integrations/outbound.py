from __future__ import annotations

import json
import logging
import os

import requests

from ..models.import_result import ImportResult

"""Outbound e-mail via SendGrid.

Fire-and-forget from the caller's point of view: failures are logged and
reported as ``False``, never raised. Without ``SENDGRID_API_KEY`` the payload
is only logged.
"""

__all__ = [
    "SENDGRID_URL",
    "send_email",
    "import_summary_email",
]

logger = logging.getLogger(__name__)

SENDGRID_URL = "https://api.sendgrid.com/v3/mail/send"
REQUEST_TIMEOUT = 10


def _sendgrid_key() -> str | None:
    return os.getenv("SENDGRID_API_KEY") or None


def _from_email() -> str:
    return os.getenv("FROM_EMAIL") or "no-reply@clientdesk.local"


def send_email(to: str, subject: str, body: str) -> bool:
    payload = {
        "personalizations": [{"to": [{"email": to}]}],
        "from": {"email": _from_email()},
        "subject": subject,
        "content": [{"type": "text/plain", "value": body}],
    }
    api_key = _sendgrid_key()
    if not api_key:
        logger.info("SendGrid disabled; email payload: %s", json.dumps(payload, ensure_ascii=False))
        return False
    try:
        resp = requests.post(
            SENDGRID_URL,
            headers={"Authorization": f"Bearer {api_key}", "Content-Type": "application/json"},
            json=payload,
            timeout=REQUEST_TIMEOUT,
        )
    except requests.RequestException as exc:
        logger.warning("SendGrid request failed: %s", exc)
        return False
    if resp.status_code >= 300:
        logger.warning("SendGrid send failed: %s %s", resp.status_code, resp.text)
        return False
    logger.info("Email sent to %s: %s", to, subject)
    return True


def import_summary_email(source: str, result: ImportResult) -> tuple[str, str]:
    """Subject and plain-text body summarising an import."""
    subject = f"Client import finished: {result.created} created, {result.failed} failed"
    lines = [
        f"File: {source}",
        f"Rows: {result.total_rows}",
        f"Created: {result.created}",
        f"Failed: {result.failed}",
        f"Batches: {result.batches} ({result.fallback_batches} fell back to per-row creation)",
    ]
    if result.errors:
        lines.append("")
        lines.append("Errors:")
        lines.extend(f"  {e.display()}" for e in result.errors[:50])
        if len(result.errors) > 50:
            lines.append(f"  ... and {len(result.errors) - 50} more")
    return subject, "\n".join(lines)
