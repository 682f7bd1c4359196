from __future__ import annotations

from collections.abc import Iterable
from dataclasses import dataclass, field
from datetime import date, timedelta
from typing import TYPE_CHECKING, Any

from app.absensi.access import DataFilter, get_data_filter
from app.absensi.constants import HADIR
from app.absensi.modules.classes.models import Class
from app.absensi.modules.meetings.models import AttendanceLog, Meeting
from app.absensi.modules.organization.models import Desa, Kelompok
from app.absensi.modules.students.models import Student, StudentClass
from app.absensi.utils import parse_date, parse_id_list, parse_int_between, percent, today_local

if TYPE_CHECKING:
    from sqlalchemy.orm import Session
    from app.absensi.models import User

PERIODS = ("today", "week", "month", "custom")
VIEW_MODES = ("separated", "combined")
COMPARISON_LEVELS = ("class", "kelompok", "desa", "daerah")


@dataclass
class DashboardFilters:
    daerah_ids: list[int] = field(default_factory=list)
    desa_ids: list[int] = field(default_factory=list)
    kelompok_ids: list[int] = field(default_factory=list)
    class_ids: list[int] = field(default_factory=list)
    gender: str | None = None
    period: str = "month"
    start_date: date | None = None
    end_date: date | None = None
    specific_date: date | None = None
    week_offset: int = 0
    month: str | None = None  # YYYY-MM
    view_mode: str = "separated"
    comparison_level: str = "kelompok"


def _ids(args: Any, key: str) -> list[int]:
    values = args.getlist(key) if hasattr(args, "getlist") else [args.get(key)]
    out: list[int] = []
    for v in values:
        for i in parse_id_list(v):
            if i not in out:
                out.append(i)
    return out


def parse_dashboard_filters(args: Any) -> DashboardFilters:
    week_offset = parse_int_between(args.get("week_offset"), 0, 520) or 0
    return DashboardFilters(
        daerah_ids=_ids(args, "daerah_id"),
        desa_ids=_ids(args, "desa_id"),
        kelompok_ids=_ids(args, "kelompok_id"),
        class_ids=_ids(args, "class_id"),
        gender=(args.get("gender") or "").strip() or None,
        period=args.get("period") if args.get("period") in PERIODS else "month",
        start_date=parse_date(args.get("start_date")),
        end_date=parse_date(args.get("end_date")),
        specific_date=parse_date(args.get("date")),
        week_offset=week_offset,
        month=(args.get("month") or "").strip() or None,
        view_mode=args.get("view") if args.get("view") in VIEW_MODES else "separated",
        comparison_level=args.get("level") if args.get("level") in COMPARISON_LEVELS else "kelompok",
    )


# ---------- Filter intersection ----------

def intersect_ids(current: set[int] | None, new_ids: Iterable[int]) -> set[int]:
    """None means "not constrained yet"; every later set narrows the result."""
    new_set = set(new_ids)
    if current is None:
        return new_set
    return current & new_set


@dataclass
class FilterConditions:
    class_ids: set[int] = field(default_factory=set)
    student_ids: set[int] = field(default_factory=set)
    has_filters: bool = False

    def allows_class(self, class_id: int) -> bool:
        return not self.has_filters or class_id in self.class_ids

    def allows_student(self, student_id: int) -> bool:
        return not self.has_filters or student_id in self.student_ids


def _class_ids_in(s: "Session", *, kelompok_ids=None, desa_ids=None, daerah_ids=None) -> list[int]:
    q = s.query(Class.id).join(Kelompok, Class.kelompok_id == Kelompok.id)
    if kelompok_ids is not None:
        q = q.filter(Class.kelompok_id.in_(kelompok_ids))
    if desa_ids is not None:
        q = q.filter(Kelompok.desa_id.in_(desa_ids))
    if daerah_ids is not None:
        q = q.join(Desa, Kelompok.desa_id == Desa.id).filter(Desa.daerah_id.in_(daerah_ids))
    return [cid for (cid,) in q.all()]


def _student_ids_where(s: "Session", *criteria) -> list[int]:
    return [sid for (sid,) in s.query(Student.id).filter(Student.deleted_at.is_(None), *criteria).all()]


def build_filter_conditions(s: "Session", f: DashboardFilters, data_filter: DataFilter | None) -> FilterConditions:
    """
    Intersect the UI filters with the user's data filter, separately for
    classes and for students. An empty intersection means "no data", not
    "no filter".
    """
    classes: set[int] | None = None
    students: set[int] | None = None

    if f.class_ids:
        classes = intersect_ids(classes, f.class_ids)
        rows = s.query(StudentClass.student_id).filter(StudentClass.class_id.in_(f.class_ids)).all()
        students = intersect_ids(students, (sid for (sid,) in rows))
    if f.kelompok_ids:
        classes = intersect_ids(classes, _class_ids_in(s, kelompok_ids=f.kelompok_ids))
        students = intersect_ids(students, _student_ids_where(s, Student.kelompok_id.in_(f.kelompok_ids)))
    if f.desa_ids:
        classes = intersect_ids(classes, _class_ids_in(s, desa_ids=f.desa_ids))
        students = intersect_ids(students, _student_ids_where(s, Student.desa_id.in_(f.desa_ids)))
    if f.daerah_ids:
        classes = intersect_ids(classes, _class_ids_in(s, daerah_ids=f.daerah_ids))
        students = intersect_ids(students, _student_ids_where(s, Student.daerah_id.in_(f.daerah_ids)))
    if f.gender:
        students = intersect_ids(students, _student_ids_where(s, Student.gender == f.gender))

    if data_filter is not None:
        if data_filter.kelompok_id:
            classes = intersect_ids(classes, _class_ids_in(s, kelompok_ids=[data_filter.kelompok_id]))
            students = intersect_ids(students, _student_ids_where(s, Student.kelompok_id == data_filter.kelompok_id))
        elif data_filter.desa_id:
            classes = intersect_ids(classes, _class_ids_in(s, desa_ids=[data_filter.desa_id]))
            students = intersect_ids(students, _student_ids_where(s, Student.desa_id == data_filter.desa_id))
        elif data_filter.daerah_id:
            classes = intersect_ids(classes, _class_ids_in(s, daerah_ids=[data_filter.daerah_id]))
            students = intersect_ids(students, _student_ids_where(s, Student.daerah_id == data_filter.daerah_id))

    has_filters = classes is not None or students is not None
    if has_filters:
        if classes is None:
            # Only student-level filters: keep every class those students sit in.
            rows = s.query(StudentClass.class_id).filter(StudentClass.student_id.in_(sorted(students) or [-1])).all()
            classes = {cid for (cid,) in rows}
        if students is None:
            rows = s.query(StudentClass.student_id).filter(StudentClass.class_id.in_(sorted(classes) or [-1])).all()
            students = {sid for (sid,) in rows}
    return FilterConditions(class_ids=classes or set(), student_ids=students or set(), has_filters=has_filters)


# ---------- Headline numbers ----------

def get_dashboard(s: "Session", user: "User", f: DashboardFilters | None = None, today: date | None = None) -> dict:
    f = f or DashboardFilters()
    today = today or today_local()
    week_ago = today - timedelta(days=7)
    month_ago = today - timedelta(days=30)
    cond = build_filter_conditions(s, f, get_data_filter(user))

    out = {
        "siswa": 0,
        "kelas": 0,
        "meetings_today": 0,
        "meetings_weekly": 0,
        "meetings_monthly": 0,
        "kehadiran_hari_ini": 0,
        "kehadiran_mingguan": 0,
        "kehadiran_bulanan": 0,
        "today": today,
    }

    student_q = s.query(Student.id).filter(Student.deleted_at.is_(None))
    class_q = s.query(Class.id)
    if cond.has_filters:
        student_q = student_q.filter(Student.id.in_(sorted(cond.student_ids) or [-1]))
        class_q = class_q.filter(Class.id.in_(sorted(cond.class_ids) or [-1]))
    out["siswa"] = student_q.count()
    out["kelas"] = class_q.count()

    if cond.has_filters and not cond.class_ids:
        return out
    meetings = s.query(Meeting).filter(Meeting.date >= month_ago, Meeting.date <= today).all()
    if cond.has_filters:
        meetings = [m for m in meetings if any(cid in cond.class_ids for cid in m.all_class_ids)]
    out["meetings_today"] = sum(1 for m in meetings if m.date == today)
    out["meetings_weekly"] = sum(1 for m in meetings if m.date >= week_ago)
    out["meetings_monthly"] = len(meetings)

    if cond.has_filters and not cond.student_ids:
        return out
    meeting_ids = [m.id for m in meetings]
    logs = []
    if meeting_ids:
        logs = s.query(AttendanceLog.date, AttendanceLog.status, AttendanceLog.student_id).filter(
            AttendanceLog.meeting_id.in_(sorted(meeting_ids))
        ).all()
    if cond.has_filters:
        logs = [row for row in logs if row.student_id in cond.student_ids]

    def rate(rows):
        rows = list(rows)
        return percent(sum(1 for r in rows if r.status == HADIR), len(rows))

    out["kehadiran_hari_ini"] = rate(r for r in logs if r.date == today)
    out["kehadiran_mingguan"] = rate(r for r in logs if r.date >= week_ago)
    out["kehadiran_bulanan"] = rate(logs)
    return out


def get_today_meetings(s: "Session", user: "User", today: date | None = None) -> list[Meeting]:
    from app.absensi.access import scoped_class_ids

    today = today or today_local()
    allowed = scoped_class_ids(s, user)
    meetings = s.query(Meeting).filter(Meeting.date == today).order_by(Meeting.id.asc()).all()
    if allowed is None:
        return meetings
    wanted = set(allowed)
    return [m for m in meetings if any(cid in wanted for cid in m.all_class_ids)]


# ---------- Periods ----------

def get_date_range_for_period(
    period: str,
    *,
    today: date,
    start_date: date | None = None,
    end_date: date | None = None,
    specific_date: date | None = None,
    week_offset: int = 0,
    month: str | None = None,
) -> tuple[date, date]:
    if period == "custom" and start_date and end_date:
        return min(start_date, end_date), max(start_date, end_date)
    if period == "today":
        d = specific_date or today
        return d, d
    if period == "week":
        target = today - timedelta(days=7 * max(week_offset, 0))
        monday = target - timedelta(days=target.weekday())
        return monday, monday + timedelta(days=6)
    if period == "month" and month:
        year_s, _, month_s = month.partition("-")
        try:
            y, m = int(year_s), int(month_s)
            first = date(y, m, 1)
        except ValueError:
            first = None
        if first is not None:
            nxt = date(y + 1, 1, 1) if m == 12 else date(y, m + 1, 1)
            return first, nxt - timedelta(days=1)
    if period == "month":
        first = today.replace(day=1)
        nxt = date(first.year + 1, 1, 1) if first.month == 12 else date(first.year, first.month + 1, 1)
        return first, nxt - timedelta(days=1)
    return today - timedelta(days=30), today


# ---------- Class monitoring ----------

def get_class_monitoring(s: "Session", user: "User", f: DashboardFilters, today: date | None = None) -> list[dict]:
    """
    Per-class meeting counts and attendance in the selected period.

    Only students enrolled in the class and belonging to the class's own
    kelompok count towards it, so a multi-class (sambung) meeting does not
    credit one class with another class's students.
    """
    today = today or today_local()
    start, end = get_date_range_for_period(
        f.period,
        today=today,
        start_date=f.start_date,
        end_date=f.end_date,
        specific_date=f.specific_date,
        week_offset=f.week_offset,
        month=f.month,
    )
    cond = build_filter_conditions(s, f, get_data_filter(user))
    if cond.has_filters and not cond.class_ids:
        return []

    q = s.query(Class).filter(Class.is_active.is_(True))
    if cond.has_filters:
        q = q.filter(Class.id.in_(sorted(cond.class_ids)))
    classes = q.all()
    if not classes:
        return []
    class_ids = {c.id for c in classes}

    enrolled: dict[int, set[int]] = {}
    rows = (
        s.query(StudentClass.class_id, StudentClass.student_id, Student.kelompok_id)
        .join(Student, StudentClass.student_id == Student.id)
        .filter(StudentClass.class_id.in_(sorted(class_ids)), Student.deleted_at.is_(None))
        .all()
    )
    class_kelompok = {c.id: c.kelompok_id for c in classes}
    for cid, sid, kid in rows:
        if kid == class_kelompok[cid]:
            enrolled.setdefault(cid, set()).add(sid)

    meetings = s.query(Meeting).filter(Meeting.date >= start, Meeting.date <= end).all()
    meetings_by_class: dict[int, list[int]] = {}
    for m in meetings:
        for cid in m.all_class_ids:
            if cid in class_ids:
                meetings_by_class.setdefault(cid, []).append(m.id)

    logs_by_meeting: dict[int, list[tuple[int, str]]] = {}
    meeting_ids = {mid for ids in meetings_by_class.values() for mid in ids}
    if meeting_ids:
        for mid, sid, status in s.query(AttendanceLog.meeting_id, AttendanceLog.student_id, AttendanceLog.status).filter(
            AttendanceLog.meeting_id.in_(sorted(meeting_ids))
        ):
            logs_by_meeting.setdefault(mid, []).append((sid, status))

    def tally(cid: int) -> tuple[int, int]:
        students = enrolled.get(cid, set())
        total = present = 0
        for mid in meetings_by_class.get(cid, []):
            for sid, status in logs_by_meeting.get(mid, []):
                if sid in students:
                    total += 1
                    if status == HADIR:
                        present += 1
        return present, total

    result = []
    for c in classes:
        present, total = tally(c.id)
        kel = c.kelompok
        result.append({
            "class_id": str(c.id),
            "class_name": c.name,
            "kelompok_name": kel.name if kel else None,
            "desa_name": kel.desa.name if kel and kel.desa else None,
            "daerah_name": kel.desa.daerah.name if kel and kel.desa and kel.desa.daerah else None,
            "has_meeting": bool(meetings_by_class.get(c.id)),
            "meeting_count": len(meetings_by_class.get(c.id, [])),
            "attendance_rate": percent(present, total),
            "student_count": len(enrolled.get(c.id, set())),
            "_present": present,
            "_total": total,
            "_meetings": set(meetings_by_class.get(c.id, [])),
        })
    result.sort(key=lambda r: (r["class_name"], r["kelompok_name"] or ""))

    if f.view_mode == "combined":
        combined: dict[str, dict] = {}
        for r in result:
            g = combined.setdefault(r["class_name"], {
                "ids": [], "kelompok": set(), "desa": set(), "daerah": set(),
                "meetings": set(), "present": 0, "total": 0, "students": 0, "has_meeting": False,
            })
            g["ids"].append(r["class_id"])
            for key in ("kelompok", "desa", "daerah"):
                if r[f"{key}_name"]:
                    g[key].add(r[f"{key}_name"])
            g["meetings"] |= r["_meetings"]
            g["present"] += r["_present"]
            g["total"] += r["_total"]
            g["students"] += r["student_count"]
            g["has_meeting"] = g["has_meeting"] or r["has_meeting"]
        result = [
            {
                "class_id": ",".join(g["ids"]),
                "class_name": name,
                "kelompok_name": ", ".join(sorted(g["kelompok"])),
                "desa_name": ", ".join(sorted(g["desa"])),
                "daerah_name": ", ".join(sorted(g["daerah"])),
                "has_meeting": g["has_meeting"],
                "meeting_count": len(g["meetings"]),
                "attendance_rate": percent(g["present"], g["total"]),
                "student_count": g["students"],
            }
            for name, g in sorted(combined.items())
        ]
    else:
        for r in result:
            for key in ("_present", "_total", "_meetings"):
                r.pop(key)

    return [r for r in result if r["student_count"] > 0]


def aggregate_monitoring_data(
    rows: list[dict],
    level: str,
    selected_class_ids: Iterable[int | str] = (),
) -> list[dict]:
    """
    Group monitoring rows by class name, kelompok, desa or daerah. The rate
    is weighted by potential attendance (students x meetings). At class level
    only the selected classes are compared.
    """
    key = {"class": "class_name", "kelompok": "kelompok_name", "desa": "desa_name", "daerah": "daerah_name"}[level]
    selected = {str(i) for i in selected_class_ids}
    if level == "class" and not selected:
        return []

    groups: dict[str, dict] = {}
    for row in rows:
        name = row.get(key)
        if not name:
            continue
        if level == "class" and not any(cid in selected for cid in str(row["class_id"]).split(",")):
            continue
        g = groups.setdefault(name, {"name": name, "present": 0.0, "potential": 0, "meeting_count": 0, "student_count": 0})
        potential = (row.get("student_count") or 0) * row["meeting_count"]
        g["present"] += row["attendance_rate"] / 100 * potential
        g["potential"] += potential
        g["meeting_count"] += row["meeting_count"]
        g["student_count"] += row.get("student_count") or 0

    out = [
        {
            "name": g["name"],
            "attendance_rate": percent(g["present"], g["potential"]),
            "meeting_count": g["meeting_count"],
            "student_count": g["student_count"],
        }
        for g in groups.values()
    ]
    out.sort(key=lambda r: r["attendance_rate"], reverse=True)
    return out
