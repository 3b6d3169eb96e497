"""Address validation and recipient list cleanup for outgoing mail."""

from __future__ import annotations

import logging
import re
from collections.abc import Iterable, Sequence

from email_validator import EmailNotValidError, validate_email

logger = logging.getLogger("cprportal.mailer")

_SPLIT_RE = re.compile(r"[;,]")


def _iter_tokens(recipients: Sequence[str] | str | None) -> Iterable[str]:
    if recipients is None:
        return []
    if isinstance(recipients, str):
        return (part for part in _SPLIT_RE.split(recipients))
    return (str(value) for value in recipients if value)


def normalize_email(value: str | None) -> str | None:
    """Return the normalized address or None when it is not a valid email."""
    candidate = (value or "").strip()
    if not candidate:
        return None
    try:
        result = validate_email(candidate, check_deliverability=False)
    except EmailNotValidError:
        return None
    return result.normalized.lower()


def normalize_recipients(recipients: Sequence[str] | str | None) -> tuple[list[str], str]:
    """Return ``(envelope, header)`` with invalid and repeated addresses dropped.

    Addresses are compared case-insensitively; the envelope carries the
    normalized form and the header keeps what the caller supplied.
    """
    accepted: dict[str, str] = {}
    for token in _iter_tokens(recipients):
        supplied = (token or "").strip()
        if not supplied:
            continue
        address = normalize_email(supplied)
        if address is None:
            logger.warning("[MAIL-INVALID-RECIPIENT] token=%s", supplied)
            continue
        accepted.setdefault(address, supplied)
    return list(accepted), ", ".join(accepted.values())
