import secrets

from flask import Request, session
from werkzeug.security import check_password_hash, generate_password_hash

MIN_PASSWORD_LENGTH = 6


def ensure_csrf_token() -> str:
    """Ensure a CSRF token exists in the session and return it."""
    token = session.get("csrf_token")
    if not token:
        token = secrets.token_urlsafe(32)
        session["csrf_token"] = token
    return token


def validate_csrf(req: Request) -> bool:
    """Validate CSRF token from form or header."""
    token = req.headers.get("X-CSRF-Token") or req.form.get("csrf_token")
    return bool(token and secrets.compare_digest(token, session.get("csrf_token") or ""))


def hash_password(password: str) -> str:
    return generate_password_hash(password)


def verify_password(password_hash: str, password: str) -> bool:
    if not password_hash:
        return False
    return check_password_hash(password_hash, password)


def password_errors(password: str | None, *, required: bool = True) -> list[str]:
    password = password or ""
    if not password:
        return ["Password harus diisi"] if required else []
    if len(password) < MIN_PASSWORD_LENGTH:
        return [f"Password minimal {MIN_PASSWORD_LENGTH} karakter"]
    return []


def is_safe_next(nxt: str) -> bool:
    """Only local paths are allowed as post-login redirects."""
    return nxt.startswith("/") and not nxt.startswith("//")
