"""
Meeting-type rules and attendance arithmetic shared by meetings, reports and
the dashboard.

Log-like objects only need `meeting_id`, `student_id` and `status`;
meeting-like objects need `class_id` and `class_ids`.
"""
from __future__ import annotations

from collections.abc import Iterable, Mapping
from dataclasses import asdict, dataclass
from typing import Any

from app.absensi.constants import ALPHA, HADIR, IZIN, MEETING_TYPES, ROLE_TEACHER, SAKIT
from app.absensi.modules.classes.utils import is_teacher_class
from app.absensi.utils import percent


# ---------- Meeting types ----------

def get_available_meeting_types(categories: Iterable[Any]) -> dict[str, str]:
    """All types when any selected class's category is sambung-capable, else only Pembinaan."""
    if any(c is not None and c.is_sambung_capable for c in categories):
        return dict(MEETING_TYPES)
    return {"PEMBINAAN": MEETING_TYPES["PEMBINAAN"]}


def get_meeting_type_label(code: str | None) -> str:
    if not code:
        return ""
    return MEETING_TYPES.get(code, code)


def filter_meetings_for_user(meetings: list[Any], user: Any, classes_by_id: Mapping[int, Any]) -> list[Any]:
    """Hide "Pengajar" meetings from teachers who do not teach a Pengajar class themselves."""
    if not user or user.role != ROLE_TEACHER:
        return meetings
    if any(is_teacher_class(c) for c in user.classes):
        return meetings

    out = []
    for m in meetings:
        classes = [classes_by_id.get(cid) for cid in _meeting_class_ids(m)]
        if any(c is not None and is_teacher_class(c) for c in classes):
            continue
        out.append(m)
    return out


# ---------- Strict enrollment filtering ----------

def _meeting_class_ids(meeting: Any) -> list[int]:
    ids = list(getattr(meeting, "class_ids", None) or [])
    if meeting.class_id not in ids:
        ids.insert(0, meeting.class_id)
    return ids


def find_matching_class(meeting: Any, filter_class_ids: Iterable[int]) -> int | None:
    """First class of the meeting (primary first) that is in the filter."""
    wanted = set(filter_class_ids)
    for cid in _meeting_class_ids(meeting):
        if cid in wanted:
            return cid
    return None


def is_student_enrolled(student_id: int, class_id: int, enrollment_map: Mapping[int, set[int]]) -> bool:
    return student_id in enrollment_map.get(class_id, set())


def filter_attendance_by_meeting_class(
    logs: Iterable[Any],
    meeting_map: Mapping[int, Any],
    filter_class_ids: Iterable[int],
    enrollment_map: Mapping[int, set[int]],
) -> list[Any]:
    """
    Keep a log only when its meeting covers one of the filtered classes and
    the student belongs to that class. Multi-class meetings otherwise leak
    students of sibling classes into a class's numbers.
    """
    filter_class_ids = list(filter_class_ids)
    out = []
    for log in logs:
        meeting = meeting_map.get(log.meeting_id)
        if meeting is None:
            continue
        cid = find_matching_class(meeting, filter_class_ids)
        if cid is None:
            continue
        if is_student_enrolled(log.student_id, cid, enrollment_map):
            out.append(log)
    return out


# ---------- Rates ----------

@dataclass
class AttendanceStats:
    total: int = 0
    hadir: int = 0
    izin: int = 0
    sakit: int = 0
    alpha: int = 0
    percentage: int = 0

    def as_dict(self) -> dict[str, int]:
        return asdict(self)


def calculate_attendance_rate(logs: Iterable[Any]) -> int:
    logs = list(logs)
    if not logs:
        return 0
    present = sum(1 for log in logs if log.status == HADIR)
    return percent(present, len(logs))


def calculate_attendance_stats(logs: Iterable[Any]) -> AttendanceStats:
    stats = AttendanceStats()
    for log in logs:
        stats.total += 1
        if log.status == HADIR:
            stats.hadir += 1
        elif log.status == IZIN:
            stats.izin += 1
        elif log.status == SAKIT:
            stats.sakit += 1
        elif log.status == ALPHA:
            stats.alpha += 1
    stats.percentage = percent(stats.hadir, stats.total)
    return stats


def get_status_color(percentage: int | float) -> str:
    """CSS class for an attendance percentage badge."""
    if percentage >= 80:
        return "text-success"
    if percentage >= 60:
        return "text-warning"
    return "text-danger"


def get_attendance_grade(percentage: int | float | None) -> tuple[str, str]:
    """(grade, predikat) for a percentage; ("-", "") when there is no score."""
    if percentage is None or percentage <= 0:
        return ("-", "")
    if percentage >= 90:
        return ("A", "Terlampaui")
    if percentage >= 80:
        return ("B", "Memenuhi")
    if percentage >= 70:
        return ("C", "Cukup Memenuhi")
    return ("D", "Tidak Memenuhi")
