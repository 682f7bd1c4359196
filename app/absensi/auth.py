from __future__ import annotations

import math
import uuid
from collections import defaultdict
from datetime import datetime, timedelta

from flask import Blueprint, current_app, flash, g, redirect, render_template, request, session, url_for
from sqlalchemy import func, or_

from app.absensi.audit import record_event
from app.absensi.db import db_session
from app.absensi.models import User
from app.absensi.security import is_safe_next, verify_password

bp = Blueprint("auth", __name__)
_login_attempts: dict[str, list[datetime]] = defaultdict(list)


def _rate_window_seconds() -> int:
    return int(current_app.config.get("LOGIN_RATE_WINDOW") or 300)


def _check_rate_limit(ip: str) -> bool:
    limit = int(current_app.config.get("LOGIN_RATE_LIMIT") or 5)
    cutoff = datetime.utcnow() - timedelta(seconds=_rate_window_seconds())
    _login_attempts[ip] = [t for t in _login_attempts[ip] if t > cutoff]
    return len(_login_attempts[ip]) >= limit


def _record_attempt(ip: str) -> None:
    _login_attempts[ip].append(datetime.utcnow())


def reset_login_attempts() -> None:
    _login_attempts.clear()


def load_current_user() -> None:
    """
    Loads g.current_user from the signed session cookie.
    Also assigns a simple per-request request_id (for audit/log correlation).
    """
    if not getattr(g, "request_id", None):
        g.request_id = uuid.uuid4().hex
    if request.path.startswith(("/static/", "/health", "/healthz")):
        g.current_user = None
        return

    user_id = session.get("user_id")
    if not user_id:
        g.current_user = None
        return

    try:
        s = db_session()
        user = s.get(User, int(user_id))
        if not user or not user.is_active:
            session.pop("user_id", None)
            g.current_user = None
            return
        g.current_user = user
    except Exception as e:
        current_app.logger.error("load_current_user DB error (clearing session): %s", e)
        session.pop("user_id", None)
        g.current_user = None


def authenticate(s, identifier: str, password: str) -> tuple[User | None, str | None]:
    """(user, None) on success, (None, message) otherwise. Accepts a username or an email."""
    identifier = (identifier or "").strip().lower()
    if not identifier:
        return None, "Username tidak boleh kosong"
    if not password:
        return None, "Password tidak boleh kosong"
    user = (
        s.query(User)
        .filter(or_(func.lower(User.username) == identifier, func.lower(User.email) == identifier))
        .one_or_none()
    )
    if not user or not user.is_active:
        return None, "Username tidak ditemukan"
    if not verify_password(user.password_hash, password):
        return None, "Password salah"
    return user, None


@bp.get("/login")
def login_get():
    nxt = (request.args.get("next") or "").strip()
    return render_template("auth/login.html", next=nxt)


@bp.post("/login")
def login_post():
    identifier = (request.form.get("username") or "").strip().lower()
    password = request.form.get("password") or ""
    nxt = (request.form.get("next") or "").strip()
    ip = request.remote_addr or "unknown"

    if _check_rate_limit(ip):
        minutes = max(1, math.ceil(_rate_window_seconds() / 60))
        flash(f"Terlalu banyak percobaan login. Coba lagi dalam {minutes} menit.", "danger")
        return redirect(url_for("auth.login_get"))

    _record_attempt(ip)

    try:
        s = db_session()
        user, error = authenticate(s, identifier, password)
        if error:
            record_event(
                s,
                actor=None,
                action="auth.login_failed",
                entity_type="User",
                entity_id=identifier or None,
                reason=error,
                metadata={"username": identifier},
            )
            s.commit()
            current_app.logger.info("Login failed for %r: %s (request_id=%s)", identifier, error, getattr(g, "request_id", None))
            flash(error, "danger")
            return redirect(url_for("auth.login_get", next=nxt) if nxt else url_for("auth.login_get"))

        session["user_id"] = user.id
        _login_attempts[ip].clear()
        record_event(s, actor=user, action="auth.login", entity_type="User", entity_id=str(user.id))
        s.commit()
        if is_safe_next(nxt):
            return redirect(nxt)
        return redirect(url_for("admin.index"))
    except Exception:
        current_app.logger.exception("Login POST crashed (username=%s request_id=%s)", identifier, getattr(g, "request_id", None))
        raise


@bp.get("/logout")
def logout():
    s = db_session()
    user = getattr(g, "current_user", None)
    if user:
        record_event(s, actor=user, action="auth.logout", entity_type="User", entity_id=str(user.id))
        s.commit()
    session.pop("user_id", None)
    return redirect(url_for("routes.index"))
