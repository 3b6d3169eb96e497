import json
import logging
import smtplib
import sys
from email.message import EmailMessage
from typing import Sequence

from .shared.mail_utils import normalize_recipients

logger = logging.getLogger("cprportal.mailer")
if not logger.handlers:
    handler = logging.StreamHandler(sys.stdout)
    logger.addHandler(handler)
logger.setLevel(logging.INFO)

SMTP_TIMEOUT = 30


def _log_outcome(tag: str, mode: str, header: str, envelope: Sequence[str], subject: str, host, result) -> None:
    logger.info(
        "[MAIL-OUT] kind=%s mode=%s to_header=%s envelope=%s subject=\"%s\" host=%s result=%s",
        tag,
        mode,
        header,
        json.dumps(list(envelope)),
        subject,
        host,
        result,
    )


def _open_connection(host: str, port: int) -> smtplib.SMTP:
    if port == 465:
        return smtplib.SMTP_SSL(host, port, timeout=SMTP_TIMEOUT)
    server = smtplib.SMTP(host, port, timeout=SMTP_TIMEOUT)
    if port == 587:
        server.starttls()
    return server


def _build_message(settings: dict, header: str, subject: str, body: str, company: str, reply_to) -> EmailMessage:
    from_addr = settings["from_address"]
    msg = EmailMessage()
    msg["Subject"] = subject
    msg["To"] = header
    msg["From"] = f"{company} <{from_addr}>" if company else from_addr
    if reply_to:
        msg["Reply-To"] = reply_to
    msg.set_content(body)
    return msg


def send(
    recipients: Sequence[str] | str | None,
    subject: str,
    body: str,
    tag: str = "generic",
) -> dict:
    """Send a plain-text message; returns ``{"ok": bool, "detail": str}``.

    Missing host, port or sender puts the mailer in stub mode: nothing is
    sent and the attempt is only logged.
    """
    from .services.system_config import get_config, smtp_settings

    settings = smtp_settings()
    host = settings["host"]
    envelope, header = normalize_recipients(recipients)

    if not host or not settings["port"] or not settings["from_address"]:
        _log_outcome(tag, "stub", header, envelope, subject, host, "stub")
        return {"ok": False, "detail": "stub: missing config"}
    if not envelope:
        logger.warning(
            "[MAIL-NO-RECIPIENTS] kind=%s subject=\"%s\" host=%s", tag, subject, host
        )
        return {"ok": False, "detail": "no valid recipients"}

    msg = _build_message(
        settings,
        header,
        subject,
        body,
        get_config("company_name") or "",
        get_config("support_email"),
    )
    try:
        with _open_connection(host, int(settings["port"])) as server:
            if settings["user"] and settings["password"]:
                server.login(settings["user"], settings["password"])
            server.sendmail(settings["from_address"], envelope, msg.as_string())
    except (OSError, smtplib.SMTPException, ValueError) as e:
        _log_outcome(tag, "real", header, envelope, subject, host, e)
        return {"ok": False, "detail": str(e)}
    _log_outcome(tag, "real", header, envelope, subject, host, "sent")
    return {"ok": True, "detail": "sent"}
