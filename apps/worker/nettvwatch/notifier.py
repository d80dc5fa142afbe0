"""
Notification dispatch.

RULES:
1. One email per run: the success report or the failure report.
2. Delivery failures are logged, never raised, never retried. The run has
   already finished by the time we notify.

SMTP target: NETTV_MAIL_SERVICE (well-known provider) or NETTV_SMTP_HOST/PORT.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from email.message import EmailMessage

import aiosmtplib

from nettvwatch.config import settings

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class SMTPTarget:
    host: str
    port: int
    implicit_tls: bool = False  # SMTPS on connect (465)
    starttls: bool = False


_WELL_KNOWN_SERVICES = {
    "qq": SMTPTarget("smtp.qq.com", 465, implicit_tls=True),
    "163": SMTPTarget("smtp.163.com", 465, implicit_tls=True),
    "126": SMTPTarget("smtp.126.com", 465, implicit_tls=True),
    "gmail": SMTPTarget("smtp.gmail.com", 587, starttls=True),
    "outlook": SMTPTarget("smtp-mail.outlook.com", 587, starttls=True),
}


def resolve_smtp_target() -> SMTPTarget | None:
    """SMTP endpoint from settings, or None when mail is not configured."""
    service = settings.mail_service.strip().lower()
    if service:
        target = _WELL_KNOWN_SERVICES.get(service)
        if target is None:
            logger.warning("Unknown mail service %r, falling back to SMTP host", service)
        else:
            return target
    if not settings.smtp_host:
        return None
    implicit_tls = settings.smtp_use_tls and settings.smtp_port == 465
    return SMTPTarget(
        settings.smtp_host,
        settings.smtp_port,
        implicit_tls=implicit_tls,
        starttls=settings.smtp_use_tls and not implicit_tls,
    )


def _recipients() -> list[str]:
    return [r.strip() for r in settings.mail_receiver.split(",") if r.strip()]


async def send_mail(subject: str, body: str) -> bool:
    """
    Send a plain-text report email.

    Returns True on success, False on failure or when mail is disabled.
    """
    if not settings.notification_enabled:
        logger.info("Notifications disabled, not sending %r", subject)
        return False

    recipients = _recipients()
    target = resolve_smtp_target()
    if not recipients or target is None:
        logger.warning("Mail not configured, not sending %r", subject)
        return False

    try:
        msg = EmailMessage()
        msg["Subject"] = subject
        msg["From"] = settings.mail_sender or settings.smtp_username
        msg["To"] = ", ".join(recipients)
        msg.set_content(body)

        smtp = aiosmtplib.SMTP(
            hostname=target.host,
            port=target.port,
            use_tls=target.implicit_tls,
            start_tls=False,
        )
        await smtp.connect()
        if target.starttls:
            await smtp.starttls()
        if settings.smtp_username:
            await smtp.login(settings.smtp_username, settings.smtp_password)
        await smtp.send_message(msg)
        await smtp.quit()

        logger.info("Email %r sent to %s", subject, recipients)
        return True

    except Exception:
        logger.error("Email %r failed", subject, exc_info=True)
        return False
