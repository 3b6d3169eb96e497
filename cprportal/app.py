import logging
import os
import sqlite3
from datetime import timedelta

from flask import Flask, jsonify
from flask_sqlalchemy import SQLAlchemy
from sqlalchemy import event, inspect
from sqlalchemy.engine import Engine

db = SQLAlchemy()


@event.listens_for(Engine, "connect")
def _enable_sqlite_foreign_keys(dbapi_connection, connection_record):
    # SQLite ships with foreign key enforcement off per connection
    if isinstance(dbapi_connection, sqlite3.Connection):
        cursor = dbapi_connection.cursor()
        cursor.execute("PRAGMA foreign_keys=ON")
        cursor.close()


from .models import User  # noqa: E402
from .shared.errors import register_error_handlers  # noqa: E402


def create_app():
    app = Flask(__name__)
    app.secret_key = os.getenv("SECRET_KEY", "dev")
    app.config["PREFERRED_URL_SCHEME"] = "https"

    DB_USER = os.getenv("DB_USER", "cpr")
    DB_PASSWORD = os.getenv("POSTGRES_PASSWORD", "postgres")
    DB_HOST = os.getenv("DB_HOST", "db")
    DB_NAME = os.getenv("DB_NAME", "cpr")
    DATABASE_URL = os.getenv(
        "DATABASE_URL",
        f"postgresql+psycopg2://{DB_USER}:{DB_PASSWORD}@{DB_HOST}/{DB_NAME}",
    )

    app.config["SQLALCHEMY_DATABASE_URI"] = DATABASE_URL
    app.config["SQLALCHEMY_TRACK_MODIFICATIONS"] = False
    # vendor PDFs are capped at 5 MB per file; leave room for form fields
    app.config["MAX_CONTENT_LENGTH"] = 6 * 1024 * 1024
    app.config["UPLOAD_ROOT"] = os.getenv("UPLOAD_ROOT", "/srv/uploads")
    app.config["PAYMENT_REVERSAL_HOURS"] = int(
        os.getenv("PAYMENT_REVERSAL_HOURS", "48")
    )
    app.config["SESSION_COOKIE_SAMESITE"] = "Lax"
    app.permanent_session_lifetime = timedelta(minutes=60)

    db.init_app(app)
    register_error_handlers(app)

    @app.get("/health")
    def health():  # pragma: no cover - simple healthcheck
        return "OK", 200

    @app.get("/api/v1/health")
    def api_health():
        return jsonify({"ok": True, "status": "healthy"})

    from .routes.auth import bp as auth_bp
    from .routes.catalog import bp as catalog_bp
    from .routes.sysadmin import bp as sysadmin_bp
    from .routes.organization import bp as organization_bp
    from .routes.courses import bp as courses_bp
    from .routes.instructor import bp as instructor_bp
    from .routes.hr import bp as hr_bp
    from .routes.accounting import bp as accounting_bp
    from .routes.vendor import bp as vendor_bp
    from .routes.vendor_approval import bp as vendor_approval_bp
    from .routes.profile_changes import bp as profile_changes_bp

    app.register_blueprint(auth_bp)
    app.register_blueprint(catalog_bp)
    app.register_blueprint(sysadmin_bp)
    app.register_blueprint(organization_bp)
    app.register_blueprint(courses_bp)
    app.register_blueprint(instructor_bp)
    app.register_blueprint(hr_bp)
    app.register_blueprint(accounting_bp)
    app.register_blueprint(vendor_bp)
    app.register_blueprint(vendor_approval_bp)
    app.register_blueprint(profile_changes_bp)

    with app.app_context():
        if not os.getenv("FLASK_SKIP_SEED"):
            seed_configurations_safely()
            seed_initial_sysadmin_safely()
        load_session_lifetime_safely(app)

    return app


def _table_exists(name: str) -> bool:
    return name in inspect(db.engine).get_table_names()


def seed_configurations_safely() -> None:
    """Insert missing default system configurations when the table exists."""

    from .services.system_config import seed_default_configurations

    try:
        if not _table_exists("system_configurations"):
            logging.info("configuration seed skipped (table missing)")
            return
        added = seed_default_configurations()
        if added:
            logging.info("Seeded %d system configurations.", added)
    except Exception:
        db.session.rollback()
        logging.exception("seed_configurations_safely failed")


def load_session_lifetime_safely(app) -> None:
    """Apply the stored session timeout; keep the default when unreadable."""

    from .services.system_config import apply_session_lifetime

    try:
        if not _table_exists("system_configurations"):
            return
        apply_session_lifetime(app)
    except Exception:
        db.session.rollback()
        logging.exception("load_session_lifetime_safely failed")


def seed_initial_sysadmin_safely() -> None:
    """Create the first sysadmin from env vars if the users table is empty."""

    email = (os.getenv("FIRST_SYSADMIN_EMAIL") or "").strip().lower()
    password = os.getenv("FIRST_SYSADMIN_PASSWORD") or ""
    if not email or not password:
        return
    try:
        if not _table_exists("users"):
            return
        if db.session.query(User).count() > 0:
            return
        username = os.getenv("FIRST_SYSADMIN_USERNAME", "sysadmin")
        admin = User(username=username, email=email, role="sysadmin")
        admin.set_password(password)
        db.session.add(admin)
        db.session.commit()
        logging.info("Seeded sysadmin %s", email)
    except Exception:
        db.session.rollback()
        logging.exception("seed_initial_sysadmin_safely failed")
