"""
Attendance reports (laporan).

A report is built from the meetings inside a date range and the attendance
logs recorded for them, narrowed by class, kelompok, gender and meeting type.
The period decides both the date range and how the trend chart is grouped.
"""
from __future__ import annotations

import calendar
import io
from dataclasses import dataclass, field
from datetime import date, timedelta
from typing import TYPE_CHECKING, Any

from openpyxl import Workbook
from openpyxl.styles import Font

from app.absensi.access import is_teacher, meeting_touches_classes, scoped_class_ids
from app.absensi.constants import ALPHA, ATTENDANCE_LABELS, HADIR, IZIN, MONTH_NAMES_SHORT, SAKIT
from app.absensi.modules.meetings.models import AttendanceLog, Meeting
from app.absensi.modules.meetings.utils import get_attendance_grade
from app.absensi.utils import parse_date, parse_id_list, parse_int_between, parse_month, parse_year, percent, today_local

if TYPE_CHECKING:
    from sqlalchemy.orm import Session
    from app.absensi.models import User

PERIODS = ("daily", "weekly", "monthly", "yearly")
VIEW_MODES = ("general", "detailed")


@dataclass
class ReportFilters:
    view_mode: str = "general"
    period: str = "monthly"
    month: int | None = None
    year: int | None = None
    class_ids: list[int] = field(default_factory=list)
    kelompok_ids: list[int] = field(default_factory=list)
    gender: str | None = None
    meeting_types: list[str] = field(default_factory=list)
    # daily
    start_date: date | None = None
    end_date: date | None = None
    # weekly
    week_year: int | None = None
    week_month: int | None = None
    start_week: int | None = None
    end_week: int | None = None
    # monthly
    month_year: int | None = None
    start_month: int | None = None
    end_month: int | None = None
    # yearly
    start_year: int | None = None
    end_year: int | None = None


def _list_arg(args: Any, key: str) -> list[str]:
    values = args.getlist(key) if hasattr(args, "getlist") else [args.get(key)]
    out: list[str] = []
    for v in values:
        for part in (v or "").split(","):
            part = part.strip()
            if part and part not in out:
                out.append(part)
    return out


def parse_report_filters(args: Any) -> ReportFilters:
    """Build filters from query-string args (a MultiDict or a plain dict)."""
    view_mode = args.get("view_mode") if args.get("view_mode") in VIEW_MODES else "general"
    period = args.get("period") if args.get("period") in PERIODS else "monthly"
    return ReportFilters(
        view_mode=view_mode,
        period=period,
        month=parse_month(args.get("month")),
        year=parse_year(args.get("year")),
        class_ids=parse_id_list(_list_arg(args, "class_id")),
        kelompok_ids=parse_id_list(_list_arg(args, "kelompok_id")),
        gender=(args.get("gender") or "").strip() or None,
        meeting_types=_list_arg(args, "meeting_type"),
        start_date=parse_date(args.get("start_date")),
        end_date=parse_date(args.get("end_date")),
        week_year=parse_year(args.get("week_year")),
        week_month=parse_month(args.get("week_month")),
        start_week=parse_int_between(args.get("start_week"), 1, 6),
        end_week=parse_int_between(args.get("end_week"), 1, 6),
        month_year=parse_year(args.get("month_year")),
        start_month=parse_month(args.get("start_month")),
        end_month=parse_month(args.get("end_month")),
        start_year=parse_year(args.get("start_year")),
        end_year=parse_year(args.get("end_year")),
    )


# ---------- Weeks inside a month ----------
# Weeks run Monday..Sunday; week 1 is the partial week ending on the first Sunday.

def _first_week_days(year: int, month: int) -> int:
    return 7 - date(year, month, 1).weekday()


def week_number_in_month(d: date) -> int:
    first = _first_week_days(d.year, d.month)
    if d.day <= first:
        return 1
    return (d.day - first + 6) // 7 + 1


def weeks_in_month(year: int, month: int) -> int:
    return week_number_in_month(date(year, month, calendar.monthrange(year, month)[1]))


def week_start_date(year: int, month: int, week: int) -> date:
    if week <= 1:
        return date(year, month, 1)
    day = _first_week_days(year, month) + (week - 2) * 7 + 1
    return date(year, month, min(day, calendar.monthrange(year, month)[1]))


def week_end_date(year: int, month: int, week: int) -> date:
    last = calendar.monthrange(year, month)[1]
    day = _first_week_days(year, month) + (week - 1) * 7
    return date(year, month, min(day, last))


# ---------- Date range ----------

def _month_range(year: int, month: int) -> tuple[date, date]:
    return date(year, month, 1), date(year, month, calendar.monthrange(year, month)[1])


def resolve_date_range(f: ReportFilters, today: date | None = None) -> tuple[date, date]:
    """Inclusive (start, end) for the filters; incomplete inputs fall back to a recent window."""
    today = today or today_local()
    if f.view_mode == "general":
        if f.month and f.year and 1 <= f.month <= 12:
            return _month_range(f.year, f.month)
        return _month_range(today.year, today.month)

    if f.period == "daily":
        if f.start_date and f.end_date:
            return min(f.start_date, f.end_date), max(f.start_date, f.end_date)
        return today, today
    if f.period == "weekly":
        if f.week_year and f.week_month and f.start_week and f.end_week:
            return (
                week_start_date(f.week_year, f.week_month, f.start_week),
                week_end_date(f.week_year, f.week_month, f.end_week),
            )
        return today - timedelta(days=7), today
    if f.period == "monthly":
        if f.month_year and f.start_month and f.end_month:
            start, _ = _month_range(f.month_year, f.start_month)
            _, end = _month_range(f.month_year, f.end_month)
            return start, end
        return _month_range(today.year, today.month)
    if f.start_year and f.end_year:
        return date(f.start_year, 1, 1), date(f.end_year, 12, 31)
    return today - timedelta(days=365), today


# ---------- Trend grouping ----------

def period_key(f: ReportFilters, d: date) -> tuple[Any, str]:
    """(sort key, label) of the trend bucket a meeting date falls into."""
    if f.view_mode == "general" or f.period == "daily":
        return d.toordinal(), f"{d.day:02d} {MONTH_NAMES_SHORT[d.month - 1]}"
    if f.period == "weekly":
        n = week_number_in_month(d)
        return n, f"Minggu {n}"
    if f.period == "monthly":
        return (d.year, d.month), MONTH_NAMES_SHORT[d.month - 1]
    return d.year, str(d.year)


# ---------- Report ----------

def _meeting_matches(f: ReportFilters, meeting: Meeting, kelompok_by_class: dict[int, int]) -> bool:
    ids = meeting.all_class_ids
    if f.class_ids:
        wanted = set(f.class_ids)
        if f.kelompok_ids:
            kel = set(f.kelompok_ids)
            return any(cid in wanted and kelompok_by_class.get(cid) in kel for cid in ids)
        return any(cid in wanted for cid in ids)
    if f.kelompok_ids:
        kel = set(f.kelompok_ids)
        return any(kelompok_by_class.get(cid) in kel for cid in ids)
    return True


def _student_in_kelompok(student: Any, kelompok_ids: set[int]) -> bool:
    if student.kelompok_id in kelompok_ids:
        return True
    return any(c.kelompok_id in kelompok_ids for c in student.classes)


def _student_class_label(student: Any) -> str:
    classes = list(student.classes)
    if not classes:
        return "-"
    counts: dict[str, int] = {}
    for c in classes:
        counts[c.name] = counts.get(c.name, 0) + 1
    names = []
    for c in classes:
        if counts[c.name] > 1 and c.kelompok is not None:
            names.append(f"{c.name} ({c.kelompok.name})")
        else:
            names.append(c.name)
    return ", ".join(names)


def generate_attendance_report(s: "Session", user: "User", f: ReportFilters, today: date | None = None) -> dict:
    from app.absensi.modules.classes.models import Class

    start, end = resolve_date_range(f, today)

    q = s.query(Meeting).filter(Meeting.date >= start, Meeting.date <= end)
    if f.meeting_types:
        q = q.filter(Meeting.meeting_type_code.in_(f.meeting_types))
    meetings = q.order_by(Meeting.date.asc(), Meeting.id.asc()).all()

    if is_teacher(user):
        allowed = set(user.class_ids)
    else:
        ids = scoped_class_ids(s, user)
        allowed = None if ids is None else set(ids)
    meetings = [m for m in meetings if meeting_touches_classes(m, allowed)]

    kelompok_by_class = {cid: kid for cid, kid in s.query(Class.id, Class.kelompok_id).all()}
    meetings = [m for m in meetings if _meeting_matches(f, m, kelompok_by_class)]
    meeting_map = {m.id: m for m in meetings}

    logs: list[AttendanceLog] = []
    if meeting_map:
        logs = (
            s.query(AttendanceLog)
            .filter(AttendanceLog.meeting_id.in_(list(meeting_map)))
            .order_by(AttendanceLog.meeting_id.asc())
            .all()
        )
    if f.kelompok_ids:
        kel = set(f.kelompok_ids)
        logs = [log for log in logs if _student_in_kelompok(log.student, kel)]
    if f.gender:
        logs = [log for log in logs if log.student.gender == f.gender]

    summary = {"total": len(logs), "hadir": 0, "izin": 0, "sakit": 0, "alpha": 0}
    key_for = {HADIR: "hadir", IZIN: "izin", SAKIT: "sakit", ALPHA: "alpha"}
    for log in logs:
        summary[key_for.get(log.status, "alpha")] += 1

    chart_data = [
        {"name": ATTENDANCE_LABELS[code], "value": summary[key]}
        for code, key in key_for.items()
        if summary[key] > 0
    ]

    logs_by_meeting: dict[int, list[AttendanceLog]] = {}
    for log in logs:
        logs_by_meeting.setdefault(log.meeting_id, []).append(log)

    buckets: dict[Any, dict] = {}
    for m in meetings:
        sort_key, label = period_key(f, m.date)
        b = buckets.setdefault(
            sort_key,
            {"label": label, "present": 0, "absent": 0, "excused": 0, "sick": 0, "total_records": 0, "meetings": 0},
        )
        m_logs = logs_by_meeting.get(m.id, [])
        visible = {log.student_id for log in m_logs}
        b["meetings"] += 1
        b["present"] += sum(1 for log in m_logs if log.status == HADIR)
        b["absent"] += sum(1 for log in m_logs if log.status == ALPHA)
        b["excused"] += sum(1 for log in m_logs if log.status == IZIN)
        b["sick"] += sum(1 for log in m_logs if log.status == SAKIT)
        b["total_records"] += len(visible) if visible else len(m.student_snapshot or [])

    trend_chart_data = [
        {
            "date": b["label"],
            "attendance_percentage": percent(b["present"], b["total_records"]),
            "present_count": b["present"],
            "absent_count": b["absent"],
            "excused_count": b["excused"],
            "sick_count": b["sick"],
            "total_records": b["total_records"],
            "meetings_count": b["meetings"],
        }
        for _, b in sorted(buckets.items(), key=lambda kv: kv[0])
    ]

    per_student: dict[int, dict] = {}
    for log in logs:
        st = log.student
        row = per_student.get(st.id)
        if row is None:
            row = per_student[st.id] = {
                "student_id": st.id,
                "student_name": st.name,
                "student_gender": st.gender,
                "class_name": _student_class_label(st),
                "all_classes": [{"id": c.id, "name": c.name} for c in st.classes],
                "total_days": 0,
                "hadir": 0,
                "izin": 0,
                "sakit": 0,
                "alpha": 0,
                "attendance_rate": 0,
            }
        row["total_days"] += 1
        row[key_for.get(log.status, "alpha")] += 1
    for row in per_student.values():
        row["attendance_rate"] = percent(row["hadir"], row["total_days"])
        row["grade"], row["predikat"] = get_attendance_grade(row["attendance_rate"])
    detailed_records = sorted(per_student.values(), key=lambda r: (r["student_name"].lower(), r["student_id"]))

    return {
        "summary": summary,
        "chart_data": chart_data,
        "trend_chart_data": trend_chart_data,
        "detailed_records": detailed_records,
        "meetings": meetings,
        "period": "general" if f.view_mode == "general" else f.period,
        "date_range": {"start": start, "end": end},
    }


# ---------- Export ----------

def export_report_xlsx(report: dict) -> bytes:
    """Workbook with a Ringkasan (summary + trend) sheet and a per-student Detail sheet."""
    wb = Workbook()
    ws = wb.active
    ws.title = "Ringkasan"
    bold = Font(bold=True)

    rng = report["date_range"]
    ws.append(["Laporan Kehadiran"])
    ws["A1"].font = bold
    ws.append(["Periode", f"{rng['start']:%Y-%m-%d} s/d {rng['end']:%Y-%m-%d}"])
    ws.append([])
    ws.append(["Total", "Hadir", "Izin", "Sakit", "Alpha"])
    summary = report["summary"]
    ws.append([summary["total"], summary["hadir"], summary["izin"], summary["sakit"], summary["alpha"]])
    ws.append([])
    ws.append(["Periode", "Pertemuan", "Hadir", "Izin", "Sakit", "Alpha", "Total", "Kehadiran (%)"])
    for row_idx in (4, 7):
        for cell in ws[row_idx]:
            cell.font = bold
    for t in report["trend_chart_data"]:
        ws.append([
            t["date"],
            t["meetings_count"],
            t["present_count"],
            t["excused_count"],
            t["sick_count"],
            t["absent_count"],
            t["total_records"],
            t["attendance_percentage"],
        ])

    detail = wb.create_sheet("Detail")
    detail.append(["Nama", "Jenis Kelamin", "Kelas", "Total", "Hadir", "Izin", "Sakit", "Alpha", "Kehadiran (%)", "Nilai", "Predikat"])
    for cell in detail[1]:
        cell.font = bold
    for r in report["detailed_records"]:
        detail.append([
            r["student_name"],
            r["student_gender"] or "",
            r["class_name"],
            r["total_days"],
            r["hadir"],
            r["izin"],
            r["sakit"],
            r["alpha"],
            r["attendance_rate"],
            r["grade"],
            r["predikat"],
        ])
    detail.column_dimensions["A"].width = 32
    detail.column_dimensions["C"].width = 32

    buf = io.BytesIO()
    wb.save(buf)
    return buf.getvalue()
