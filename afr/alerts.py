from __future__ import annotations

import smtplib
from email.mime.text import MIMEText

from . import db
from .settings import settings


def _smtp_configured() -> bool:
    return all(
        [
            settings.smtp_host,
            settings.smtp_port,
            settings.smtp_user,
            settings.smtp_password,
            settings.email_from,
            settings.email_to,
        ]
    )


def fleet_alert(fleet: str, ok: bool, detail: str) -> tuple[str, str]:
    """Build (subject, body) for a fleet state change."""
    state = "RECOVERED" if ok else "FAILING"
    subject = f"[afr] {state}: {fleet}"
    body = f"Fleet: {fleet}\nState: {state}\nDetail: {detail}"
    return subject, body


def send_fleet_alert(fleet: str, ok: bool, detail: str) -> bool:
    """Email a fleet state change if AFR_ENABLE_EMAIL and SMTP settings are set.

    Environment variables:
      - AFR_ENABLE_EMAIL=true
      - AFR_SMTP_HOST / AFR_SMTP_PORT
      - AFR_SMTP_USER / AFR_SMTP_PASSWORD
      - AFR_EMAIL_FROM / AFR_EMAIL_TO
    """
    if not settings.enable_email or not _smtp_configured():
        return False

    subject, body = fleet_alert(fleet, ok, detail)
    msg = MIMEText(body, "plain")
    msg["From"] = settings.email_from
    msg["To"] = settings.email_to
    msg["Subject"] = subject

    try:
        with smtplib.SMTP(settings.smtp_host, settings.smtp_port) as server:
            server.starttls()
            server.login(settings.smtp_user, settings.smtp_password)
            server.sendmail(settings.email_from, [settings.email_to], msg.as_string())
    except (smtplib.SMTPException, OSError) as e:
        db.log_event("WARN", f"Alert email failed: {type(e).__name__}: {e}", fleet=fleet)
        return False
    return True
