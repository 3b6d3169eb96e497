from flask import Blueprint, current_app, jsonify, session as flask_session
from sqlalchemy import func

from ..app import db
from ..constants import API_PREFIX
from ..models import AuditLog, User
from ..services import notifications
from ..shared.errors import json_error
from ..shared.mail_utils import normalize_email
from ..shared.passwords import make_reset_token, password_problem, read_reset_token
from ..shared.payload import clean_str, json_body
from ..shared.rbac import login_required
from ..shared.time import now_utc

bp = Blueprint("auth", __name__, url_prefix=f"{API_PREFIX}/auth")


def _find_login_user(identifier: str) -> User | None:
    ident = identifier.strip().lower()
    return (
        db.session.query(User)
        .filter(
            (func.lower(User.username) == ident) | (func.lower(User.email) == ident)
        )
        .first()
    )


@bp.post("/login")
def login():
    payload = json_body()
    identifier = clean_str(payload.get("username")) or clean_str(payload.get("email"))
    password = payload.get("password") or ""
    if not identifier or not password:
        return json_error("Username and password are required", 400)
    user = _find_login_user(identifier)
    if not user or not user.check_password(password):
        current_app.logger.info(f"[AUTH-FAIL] ident={identifier}")
        return json_error("Invalid credentials", 401)
    if not user.is_active:
        return json_error("Account is inactive", 403)

    flask_session.clear()
    flask_session["user_id"] = user.id
    flask_session["role"] = user.role
    flask_session.permanent = True
    user.last_login = now_utc()
    db.session.commit()
    current_app.logger.info(f"[AUTH-LOGIN] user={user.id} role={user.role}")
    return jsonify({"ok": True, "user": user.to_dict()})


@bp.post("/logout")
def logout():
    flask_session.clear()
    return jsonify({"ok": True})


@bp.get("/me")
@login_required
def me(current_user):
    return jsonify({"ok": True, "user": current_user.to_dict()})


@bp.post("/change-password")
@login_required
def change_password(current_user):
    payload = json_body()
    current_pwd = payload.get("current_password") or ""
    new_pwd = payload.get("new_password") or ""
    if not current_user.check_password(current_pwd):
        return json_error("Current password is incorrect", 400)
    problem = password_problem(new_pwd)
    if problem:
        return json_error(problem, 400)
    current_user.set_password(new_pwd)
    db.session.add(
        AuditLog(
            user_id=current_user.id,
            action="password_change",
            details=f"user_id={current_user.id}",
        )
    )
    db.session.commit()
    return jsonify({"ok": True, "message": "Password updated"})


@bp.post("/forgot-password")
def forgot_password():
    payload = json_body()
    email = normalize_email(payload.get("email"))
    if email:
        target = (
            db.session.query(User).filter(func.lower(User.email) == email).first()
        )
        if target and target.is_active:
            token = make_reset_token(current_app.secret_key, target.email)
            notifications.password_reset(target, token)
            current_app.logger.info(f"[AUTH-RESET-REQUEST] user={target.id}")
    return jsonify(
        {"ok": True, "message": "If we find an account, we'll email a reset link."}
    )


@bp.post("/reset-password")
def reset_password():
    payload = json_body()
    email = read_reset_token(current_app.secret_key, payload.get("token") or "")
    if not email:
        return json_error("Invalid or expired token", 400)
    password = payload.get("password") or ""
    problem = password_problem(password)
    if problem:
        return json_error(problem, 400)
    target = db.session.query(User).filter(func.lower(User.email) == email).first()
    if not target or not target.is_active:
        return json_error("Account not found", 400)
    target.set_password(password)
    db.session.add(
        AuditLog(
            user_id=target.id,
            action="password_reset",
            details=f"user_id={target.id}",
        )
    )
    db.session.commit()
    return jsonify({"ok": True, "message": "Password reset. Please log in."})
