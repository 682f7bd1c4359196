"""
User-facing errors.

Services raise ServiceError subclasses carrying an Indonesian message that can
be flashed as-is. Anything else is turned into a generic "Gagal <aksi>" by
format_error() and logged with its stack trace.
"""
from __future__ import annotations

import logging

from sqlalchemy.exc import IntegrityError

logger = logging.getLogger(__name__)


class ServiceError(ValueError):
    pass


class AccessDenied(ServiceError):
    pass


class NotFound(ServiceError):
    pass


def _is_unique_violation(exc: IntegrityError) -> bool:
    msg = str(getattr(exc, "orig", exc)).lower()
    return "unique" in msg or "duplicate key" in msg


def _is_fk_violation(exc: IntegrityError) -> bool:
    msg = str(getattr(exc, "orig", exc)).lower()
    return "foreign key" in msg


def format_error(exc: BaseException, action: str, fallback: str | None = None) -> str:
    """Turn an exception raised while doing `action` (e.g. "menyimpan siswa") into a flash message."""
    if isinstance(exc, ServiceError):
        return str(exc)
    if isinstance(exc, IntegrityError):
        if _is_unique_violation(exc):
            return "Data sudah ada"
        if _is_fk_violation(exc):
            return "Data masih digunakan"
    logger.exception("Unexpected error while %s: %s", action, fallback or exc)
    return f"Gagal {action}"
