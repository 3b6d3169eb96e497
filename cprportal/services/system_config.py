"""Runtime settings stored in ``system_configurations``.

Values are read through a small per-app cache kept in ``app.extensions`` and
dropped whenever a value is written. The SMTP keys may be overridden by
environment variables so deployments can keep credentials out of the table.
"""

from __future__ import annotations

import os
from datetime import timedelta
from decimal import Decimal, InvalidOperation

from flask import current_app

from ..app import db
from ..constants import CONFIG_CATEGORIES
from ..models import SystemConfiguration, User
from ..shared.errors import PortalNotFoundError, PortalValidationError

DEFAULT_CONFIGURATIONS = [
    ("invoice_due_days", "30", "Number of days until invoice is due", "billing"),
    (
        "invoice_late_fee_percent",
        "1.5",
        "Late fee percentage applied to overdue invoices",
        "billing",
    ),
    ("invoice_tax_percent", "13", "Sales tax (HST) percentage on invoices", "billing"),
    ("email_smtp_host", "", "SMTP server hostname", "email"),
    ("email_smtp_port", "587", "SMTP server port", "email"),
    ("email_smtp_user", "", "SMTP username", "email"),
    ("email_smtp_pass", "", "SMTP password", "email"),
    (
        "email_from_address",
        "noreply@cprtraining.com",
        "Default sender email address",
        "email",
    ),
    ("company_name", "CPR Training System", "Company name for branding", "general"),
    ("support_email", "support@cprtraining.com", "Support contact email", "general"),
    (
        "session_timeout_minutes",
        "60",
        "Session timeout in minutes",
        "security",
    ),
    (
        "instructor_hourly_rate",
        "25.00",
        "Hourly rate paid to instructors for approved timesheet hours",
        "payroll",
    ),
    (
        "instructor_course_bonus",
        "50.00",
        "Bonus paid per course taught in an approved timesheet week",
        "payroll",
    ),
]

DEFAULTS = {key: value for key, value, _desc, _cat in DEFAULT_CONFIGURATIONS}

ENV_OVERRIDES = {
    "email_smtp_host": "SMTP_HOST",
    "email_smtp_port": "SMTP_PORT",
    "email_smtp_user": "SMTP_USER",
    "email_smtp_pass": "SMTP_PASS",
    "email_from_address": "EMAIL_FROM",
}

NUMERIC_KEYS = {
    "invoice_due_days",
    "invoice_late_fee_percent",
    "invoice_tax_percent",
    "email_smtp_port",
    "session_timeout_minutes",
    "instructor_hourly_rate",
    "instructor_course_bonus",
}

SECRET_KEYS = {"email_smtp_pass"}

_CACHE_KEY = "cprportal_config_cache"


def _cache() -> dict:
    return current_app.extensions.setdefault(_CACHE_KEY, {})


def clear_cache() -> None:
    current_app.extensions.pop(_CACHE_KEY, None)


def apply_session_lifetime(app=None) -> None:
    """Copy ``session_timeout_minutes`` onto the app's permanent session lifetime."""
    app = app or current_app
    app.permanent_session_lifetime = timedelta(
        minutes=get_int("session_timeout_minutes", 60)
    )


def seed_default_configurations() -> int:
    """Insert any missing default rows; returns how many were added."""
    existing = {
        key for (key,) in db.session.query(SystemConfiguration.config_key).all()
    }
    added = 0
    for key, value, description, category in DEFAULT_CONFIGURATIONS:
        if key in existing:
            continue
        db.session.add(
            SystemConfiguration(
                config_key=key,
                config_value=value,
                description=description,
                category=category,
            )
        )
        added += 1
    if added:
        db.session.commit()
        clear_cache()
    return added


def get_config(key: str, default: str | None = None) -> str | None:
    env_name = ENV_OVERRIDES.get(key)
    if env_name and os.getenv(env_name):
        return os.getenv(env_name)
    cache = _cache()
    if key in cache:
        value = cache[key]
    else:
        row = (
            db.session.query(SystemConfiguration)
            .filter_by(config_key=key)
            .one_or_none()
        )
        value = row.config_value if row else None
        cache[key] = value
    if value is None:
        return default if default is not None else DEFAULTS.get(key)
    return value


def get_int(key: str, default: int) -> int:
    try:
        return int(Decimal(str(get_config(key, str(default)))))
    except (InvalidOperation, ValueError):
        return default


def get_decimal(key: str, default: str) -> Decimal:
    try:
        return Decimal(str(get_config(key, default)))
    except (InvalidOperation, ValueError):
        return Decimal(default)


def _display_value(row: SystemConfiguration) -> str:
    value = get_config(row.config_key, row.config_value) or ""
    if row.config_key in SECRET_KEYS and value:
        return "********"
    return value


def config_to_dict(row: SystemConfiguration) -> dict:
    data = row.to_dict()
    data["config_value"] = _display_value(row)
    data["env_override"] = bool(
        ENV_OVERRIDES.get(row.config_key) and os.getenv(ENV_OVERRIDES[row.config_key])
    )
    return data


def list_grouped() -> dict[str, list[dict]]:
    rows = (
        db.session.query(SystemConfiguration)
        .order_by(SystemConfiguration.category, SystemConfiguration.config_key)
        .all()
    )
    grouped: dict[str, list[dict]] = {}
    for row in rows:
        grouped.setdefault(row.category, []).append(config_to_dict(row))
    return grouped


def list_categories() -> list[str]:
    rows = db.session.query(SystemConfiguration.category).distinct().all()
    found = {category for (category,) in rows}
    return [c for c in CONFIG_CATEGORIES if c in found] + sorted(
        found - set(CONFIG_CATEGORIES)
    )


def list_category(category: str) -> list[dict]:
    rows = (
        db.session.query(SystemConfiguration)
        .filter_by(category=category)
        .order_by(SystemConfiguration.config_key)
        .all()
    )
    return [config_to_dict(row) for row in rows]


def get_entry(key: str) -> SystemConfiguration:
    row = db.session.query(SystemConfiguration).filter_by(config_key=key).one_or_none()
    if not row:
        raise PortalNotFoundError("Configuration not found")
    return row


def set_config(key: str, value, user: User | None = None) -> SystemConfiguration:
    if value is None:
        raise PortalValidationError("Configuration value is required")
    row = get_entry(key)
    text = str(value).strip()
    if key in NUMERIC_KEYS:
        try:
            number = Decimal(text)
        except InvalidOperation:
            raise PortalValidationError(f"{key} must be a number")
        if not number.is_finite() or number < 0:
            raise PortalValidationError(f"{key} must be zero or greater")
    row.config_value = text
    row.updated_by = user.id if user else None
    db.session.commit()
    clear_cache()
    if key == "session_timeout_minutes":
        apply_session_lifetime()
    current_app.logger.info(
        f"[CONFIG-UPDATE] key={key} user={user.id if user else None}"
    )
    return row


def smtp_settings() -> dict:
    return {
        "host": get_config("email_smtp_host") or "",
        "port": get_config("email_smtp_port") or "",
        "user": get_config("email_smtp_user") or "",
        "password": get_config("email_smtp_pass") or "",
        "from_address": get_config("email_from_address") or "",
    }


def validate_smtp() -> list[str]:
    """Return a list of problems with the effective SMTP settings."""
    settings = smtp_settings()
    issues = []
    if not settings["host"]:
        issues.append("SMTP host is not configured")
    if not settings["port"]:
        issues.append("SMTP port is not configured")
    else:
        try:
            port = int(settings["port"])
        except ValueError:
            issues.append("SMTP port must be numeric")
        else:
            if not 0 < port < 65536:
                issues.append("SMTP port must be between 1 and 65535")
    if not settings["from_address"]:
        issues.append("From address is not configured")
    if settings["user"] and not settings["password"]:
        issues.append("SMTP password is missing for the configured user")
    return issues
