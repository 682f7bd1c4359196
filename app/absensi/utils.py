from __future__ import annotations

from collections.abc import Iterable
from datetime import date, datetime
from zoneinfo import ZoneInfo

from flask import current_app, g

from app.absensi.models import User


def current_user() -> User:
    u = getattr(g, "current_user", None)
    if not u:
        raise RuntimeError("No current user")
    return u


def parse_date(s: str | None) -> date | None:
    """Parse YYYY-MM-DD date string; blank or malformed values become None."""
    s = (s or "").strip()
    if not s:
        return None
    try:
        return date.fromisoformat(s)
    except ValueError:
        return None


def parse_int(s: str | int | None) -> int | None:
    if s is None:
        return None
    if isinstance(s, int):
        return s
    s = s.strip()
    if not s:
        return None
    try:
        return int(s)
    except ValueError:
        return None


def parse_int_between(s: str | int | None, low: int, high: int) -> int | None:
    """parse_int, but values outside low..high (inclusive) become None."""
    value = parse_int(s)
    if value is None or not low <= value <= high:
        return None
    return value


def parse_year(s: str | int | None) -> int | None:
    return parse_int_between(s, 1900, 2100)


def parse_month(s: str | int | None) -> int | None:
    return parse_int_between(s, 1, 12)


def parse_id_list(values: Iterable[str | int | None] | str | None) -> list[int]:
    """Accept ["1", "2"], "1,2" or None; keep order, drop blanks and duplicates."""
    if values is None:
        return []
    if isinstance(values, str):
        values = values.split(",")
    out: list[int] = []
    for v in values:
        i = parse_int(v)
        if i is not None and i not in out:
            out.append(i)
    return out


def percent(part: int | float, whole: int | float) -> int:
    """Whole-number percentage, rounding halves up (0 when whole is 0)."""
    if not whole:
        return 0
    return int(part * 100 / whole + 0.5)


def app_timezone() -> ZoneInfo:
    name = "Asia/Jakarta"
    try:
        name = current_app.config.get("APP_TIMEZONE") or name
    except RuntimeError:
        pass
    return ZoneInfo(name)


def today_local() -> date:
    """Today's date in the organisation's timezone (not the server's)."""
    return datetime.now(app_timezone()).date()
