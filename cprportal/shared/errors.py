"""Error types shared by services and the JSON error envelope."""

from __future__ import annotations

from flask import current_app, jsonify
from werkzeug.exceptions import HTTPException


class PortalError(Exception):
    status_code = 400

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message


class PortalValidationError(PortalError, ValueError):
    status_code = 400


class PortalForbiddenError(PortalError, PermissionError):
    status_code = 403


class PortalNotFoundError(PortalError, LookupError):
    status_code = 404


class PortalConflictError(PortalError):
    status_code = 409


def json_error(message: str, status: int):
    return jsonify({"ok": False, "error": message}), status


def register_error_handlers(app) -> None:
    from ..app import db

    @app.errorhandler(PortalError)
    def handle_portal_error(exc: PortalError):
        db.session.rollback()
        return json_error(exc.message, exc.status_code)

    @app.errorhandler(HTTPException)
    def handle_http_error(exc: HTTPException):
        return json_error(exc.description or exc.name, exc.code or 500)

    @app.errorhandler(Exception)
    def handle_unexpected(exc: Exception):
        if isinstance(exc, HTTPException):
            return handle_http_error(exc)
        db.session.rollback()
        current_app.logger.exception("[API-ERROR] unhandled %s", type(exc).__name__)
        return json_error("Internal server error", 500)
