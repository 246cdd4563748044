"""SMTP delivery of relayed requests."""

from __future__ import annotations

import logging
import re
import smtplib
import ssl
from email.headerregistry import Address
from email.message import EmailMessage
from email.utils import formataddr, formatdate, make_msgid
from typing import Iterable

from .config import RelaySettings
from .errors import MailSendError
from .forms import RelayAttachment

logger = logging.getLogger(__name__)

_EMAIL_RE = re.compile(r"^[^@\s]+@[^@\s]+\.[^@\s]+$")


def is_valid_email(value: str) -> bool:
    return bool(value and _EMAIL_RE.match(value))


def build_message(
    settings: RelaySettings,
    subject: str,
    text: str,
    html: str,
    attachments: Iterable[RelayAttachment] = (),
) -> EmailMessage:
    if not is_valid_email(settings.admin_email):
        raise MailSendError(f"Adresse destinataire invalide: {settings.admin_email!r}")
    if not is_valid_email(settings.from_email):
        raise MailSendError(f"Adresse expéditeur invalide: {settings.from_email!r}")

    msg = EmailMessage()
    msg["Subject"] = subject
    msg["From"] = formataddr((settings.from_name, settings.from_email))
    msg["To"] = settings.admin_email
    msg["Reply-To"] = settings.from_email
    msg["Date"] = formatdate(localtime=True)
    msg["Message-ID"] = make_msgid(domain=Address(addr_spec=settings.from_email).domain)

    msg.set_content(text)
    msg.add_alternative(html, subtype="html")

    for attachment in attachments:
        maintype, _, subtype = attachment.mime_type.partition("/")
        msg.add_attachment(
            attachment.content,
            maintype=maintype or "application",
            subtype=subtype or "octet-stream",
            filename=attachment.filename,
        )
    return msg


def send_message(settings: RelaySettings, msg: EmailMessage) -> None:
    """SSL on 465, STARTTLS on 587, plain otherwise; login when a user is configured."""
    try:
        if settings.smtp_port == 465:
            context = ssl.create_default_context()
            with smtplib.SMTP_SSL(
                settings.smtp_host, settings.smtp_port, timeout=settings.smtp_timeout, context=context
            ) as server:
                if settings.smtp_user:
                    server.login(settings.smtp_user, settings.smtp_password)
                server.send_message(msg)
        else:
            with smtplib.SMTP(settings.smtp_host, settings.smtp_port, timeout=settings.smtp_timeout) as server:
                if settings.smtp_port == 587:
                    server.starttls(context=ssl.create_default_context())
                if settings.smtp_user:
                    server.login(settings.smtp_user, settings.smtp_password)
                server.send_message(msg)
    except (smtplib.SMTPException, OSError) as exc:
        logger.error("Email to %s failed: %s", msg["To"], exc)
        raise MailSendError(f"Échec de l'envoi de l'email: {exc}") from exc

    logger.info("Email sent to %s (%s)", msg["To"], msg["Subject"])
