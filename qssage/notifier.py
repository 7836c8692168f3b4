"""
Outbound notifications: chat webhook on new reports, e-mail on dispatch.

Configuration (environment):
    WEBHOOK_URL              Discord-style webhook, skipped when unset
    ADMIN_EMAIL, ADMIN_PASS  SMTP account, also the recipient
    SMTP_HOST, SMTP_PORT     defaults to Gmail over SSL
"""

import logging
import os
import smtplib
from email.message import EmailMessage
from typing import Any, Dict, Iterable, List, Optional

import requests

from qssage.errors import NotificationError

logger = logging.getLogger("notifier")

REQUEST_TIMEOUT = 5  # seconds
SMTP_HOST = os.getenv("SMTP_HOST", "smtp.gmail.com")
SMTP_PORT = int(os.getenv("SMTP_PORT", "465"))


def _report_lines(report: Dict[str, Any]) -> str:
    return (
        f"URL: {report.get('url')}\n"
        f"Location: {report.get('location') or 'unknown'}\n"
        f"Detected at: {report.get('detected_at') or '-'}"
    )


def send_webhook(report: Dict[str, Any], webhook_url: Optional[str] = None) -> bool:
    """Post a new report to the chat webhook. Returns False when skipped or failed."""
    url = webhook_url or os.getenv("WEBHOOK_URL")
    if not url:
        logger.warning("WEBHOOK_URL not set, skipping webhook for %s", report.get("url"))
        return False
    payload = {"content": "**Phishing URL reported**\n" + _report_lines(report)}
    try:
        resp = requests.post(url, json=payload, timeout=REQUEST_TIMEOUT)
        resp.raise_for_status()
    except requests.RequestException as e:
        logger.error("Webhook delivery failed for %s: %s", report.get("url"), e)
        return False
    logger.info("Webhook sent for %s", report.get("url"))
    return True


def send_mail(subject: str, body: str, to: Optional[str] = None,
              attachments: Iterable[str] = ()) -> None:
    user = os.getenv("ADMIN_EMAIL")
    password = os.getenv("ADMIN_PASS")
    if not user or not password:
        raise NotificationError("ADMIN_EMAIL / ADMIN_PASS are not configured")

    msg = EmailMessage()
    msg["From"] = user
    msg["To"] = to or user
    msg["Subject"] = subject
    msg.set_content(body)
    for path in attachments:
        with open(path, "rb") as fh:
            msg.add_attachment(fh.read(), maintype="application", subtype="octet-stream",
                               filename=os.path.basename(path))
    try:
        with smtplib.SMTP_SSL(SMTP_HOST, SMTP_PORT, timeout=REQUEST_TIMEOUT * 2) as smtp:
            smtp.login(user, password)
            smtp.send_message(msg)
    except (smtplib.SMTPException, OSError) as e:
        raise NotificationError(f"mail delivery failed: {e}") from e
    logger.info("Mail sent to %s: %s", msg["To"], subject)


def dispatch_reports(reports: List[Dict[str, Any]]) -> int:
    """E-mail the given reports to the administrator. Raises NotificationError."""
    if not reports:
        return 0
    body = "Reported URLs:\n\n" + "\n\n".join(_report_lines(r) for r in reports)
    send_mail(f"[QSSAGE] {len(reports)} report(s) dispatched", body)
    return len(reports)
