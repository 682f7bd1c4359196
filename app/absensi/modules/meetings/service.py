from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import date, datetime
from typing import TYPE_CHECKING

from sqlalchemy import and_, func, or_

from app.absensi.access import (
    class_in_scope,
    is_admin_daerah,
    is_admin_desa,
    is_admin_kelompok,
    is_superadmin,
    is_teacher,
    meeting_touches_classes,
    scope_class_query,
    scoped_class_ids,
)
from app.absensi.audit import record_event
from app.absensi.constants import ATTENDANCE_STATUSES, DEFAULT_MEETING_TYPE, HADIR, STUDENT_STATUS_ACTIVE
from app.absensi.errors import AccessDenied, NotFound, ServiceError
from app.absensi.modules.classes.models import Class
from app.absensi.modules.classes.utils import is_sambung_desa_eligible
from app.absensi.modules.meetings.models import AttendanceLog, Meeting
from app.absensi.modules.meetings.utils import filter_meetings_for_user, get_available_meeting_types
from app.absensi.modules.students.models import Student, StudentClass
from app.absensi.utils import parse_date, parse_id_list, parse_int, percent

if TYPE_CHECKING:
    from sqlalchemy.orm import Session
    from app.absensi.models import User

logger = logging.getLogger(__name__)


# ---------- Classes available to the user ----------

def list_meeting_classes(s: "Session", user: "User") -> list[Class]:
    """Classes the user may hold meetings for: a teacher's own classes, otherwise the scoped ones."""
    if is_teacher(user):
        return [c for c in user.classes if c.is_active]
    q = scope_class_query(s.query(Class), user).filter(Class.is_active.is_(True))
    return q.order_by(Class.name.asc(), Class.kelompok_id.asc()).all()


def _load_classes(s: "Session", class_ids: list[int], user: "User") -> list[Class]:
    if not class_ids:
        raise ServiceError("Kelas harus dipilih")
    classes = {c.id: c for c in s.query(Class).filter(Class.id.in_(class_ids)).all()}
    if len(classes) != len(class_ids):
        raise NotFound("Kelas tidak ditemukan")
    ordered = [classes[cid] for cid in class_ids]
    if is_teacher(user):
        taught = set(user.class_ids)
        if any(cid not in taught for cid in class_ids):
            raise AccessDenied("Anda hanya dapat membuat pertemuan untuk kelas Anda sendiri")
    elif any(not class_in_scope(user, c) for c in ordered):
        raise AccessDenied("Kelas tidak berada dalam organisasi Anda")
    return ordered


def _eligible_student_ids(s: "Session", class_ids: list[int]) -> list[int]:
    rows = (
        s.query(Student.id)
        .join(StudentClass, StudentClass.student_id == Student.id)
        .filter(
            StudentClass.class_id.in_(class_ids),
            Student.status == STUDENT_STATUS_ACTIVE,
            Student.deleted_at.is_(None),
        )
        .order_by(Student.name.asc())
        .all()
    )
    out: list[int] = []
    for (sid,) in rows:
        if sid not in out:
            out.append(sid)
    return out


# ---------- Create / update / delete ----------

def validate_meeting_payload(payload: dict) -> list[str]:
    errors = []
    if not (payload.get("title") or "").strip():
        errors.append("Judul pertemuan harus diisi")
    if parse_date(payload.get("date")) is None:
        errors.append("Tanggal pertemuan tidak valid")
    if not parse_id_list(payload.get("class_ids")):
        errors.append("Kelas harus dipilih")
    return errors


def create_meeting(s: "Session", payload: dict, user: "User") -> Meeting:
    """
    Create a meeting for one or more classes and freeze its student snapshot.
    The first selected class is the primary class.
    """
    class_ids = parse_id_list(payload.get("class_ids"))
    classes = _load_classes(s, class_ids, user)

    title = (payload.get("title") or "").strip()
    if not title:
        raise ServiceError("Judul pertemuan harus diisi")
    meeting_date = parse_date(payload.get("date"))
    if meeting_date is None:
        raise ServiceError("Tanggal pertemuan tidak valid")

    type_code = (payload.get("meeting_type_code") or "").strip() or DEFAULT_MEETING_TYPE
    if type_code not in get_available_meeting_types(c.category for c in classes):
        raise ServiceError("Tipe pertemuan tidak tersedia untuk kelas yang dipilih")
    if type_code == "SAMBUNG_DESA" and not all(is_sambung_desa_eligible(c) for c in classes):
        raise ServiceError("Kelas caberawit dan pengajar tidak dapat mengikuti sambung desa")

    eligible = _eligible_student_ids(s, class_ids)
    requested = parse_id_list(payload.get("student_ids"))
    snapshot = [sid for sid in eligible if sid in set(requested)] if requested else eligible
    if not snapshot:
        raise ServiceError("Tidak ada siswa di kelas yang dipilih")

    last_number = s.query(func.max(Meeting.meeting_number)).filter(Meeting.class_id == class_ids[0]).scalar()

    now = datetime.utcnow()
    meeting = Meeting(
        class_id=class_ids[0],
        class_ids=class_ids,
        teacher_id=user.id,
        title=title,
        date=meeting_date,
        topic=(payload.get("topic") or "").strip() or None,
        description=(payload.get("description") or "").strip() or None,
        meeting_type_code=type_code,
        meeting_number=(last_number or 0) + 1,
        student_snapshot=snapshot,
        created_at=now,
        updated_at=now,
    )
    s.add(meeting)
    s.flush()

    record_event(
        s,
        actor=user,
        action="meeting.create",
        entity_type="Meeting",
        entity_id=str(meeting.id),
        metadata={"class_ids": class_ids, "date": meeting_date.isoformat(), "students": len(snapshot)},
    )
    return meeting


def can_edit_or_delete_meeting(user: "User", meeting: Meeting) -> bool:
    if is_superadmin(user):
        return True
    if meeting.teacher_id == user.id:
        return True
    cls = meeting.primary_class
    if cls is None or cls.kelompok is None:
        return False
    if is_admin_daerah(user):
        return cls.daerah_id == user.daerah_id
    if is_admin_desa(user):
        return cls.desa_id == user.desa_id
    if is_admin_kelompok(user):
        return cls.kelompok_id == user.kelompok_id
    return False


def update_meeting(s: "Session", meeting: Meeting, payload: dict, user: "User") -> Meeting:
    if not can_edit_or_delete_meeting(user, meeting):
        raise AccessDenied("Anda tidak memiliki izin untuk mengubah pertemuan ini")
    changes = {}

    if "title" in payload:
        title = (payload.get("title") or "").strip()
        if not title:
            raise ServiceError("Judul pertemuan harus diisi")
        if title != meeting.title:
            changes["title"] = {"old": meeting.title, "new": title}
            meeting.title = title

    for fld in ("topic", "description"):
        if fld in payload:
            value = (payload.get(fld) or "").strip() or None
            if value != getattr(meeting, fld):
                changes[fld] = {"old": getattr(meeting, fld), "new": value}
                setattr(meeting, fld, value)

    if payload.get("date"):
        new_date = parse_date(payload.get("date"))
        if new_date is None:
            raise ServiceError("Tanggal pertemuan tidak valid")
        if new_date != meeting.date:
            changes["date"] = {"old": meeting.date.isoformat(), "new": new_date.isoformat()}
            meeting.date = new_date
            # Logs carry the meeting date for date-range reporting.
            for log in meeting.attendance_logs:
                log.date = new_date

    if payload.get("meeting_type_code"):
        code = payload["meeting_type_code"].strip()
        classes = s.query(Class).filter(Class.id.in_(meeting.all_class_ids)).all()
        if code not in get_available_meeting_types(c.category for c in classes):
            raise ServiceError("Tipe pertemuan tidak tersedia untuk kelas yang dipilih")
        if code != meeting.meeting_type_code:
            changes["meeting_type_code"] = {"old": meeting.meeting_type_code, "new": code}
            meeting.meeting_type_code = code

    meeting.updated_at = datetime.utcnow()
    record_event(
        s,
        actor=user,
        action="meeting.edit",
        entity_type="Meeting",
        entity_id=str(meeting.id),
        metadata={"changes": changes},
    )
    return meeting


def delete_meeting(s: "Session", meeting: Meeting, user: "User") -> None:
    if not can_edit_or_delete_meeting(user, meeting):
        raise AccessDenied("Anda tidak memiliki izin untuk menghapus pertemuan ini")
    record_event(
        s,
        actor=user,
        action="meeting.delete",
        entity_type="Meeting",
        entity_id=str(meeting.id),
        metadata={"title": meeting.title, "date": meeting.date.isoformat(), "logs": len(meeting.attendance_logs)},
    )
    s.query(AttendanceLog).filter(AttendanceLog.meeting_id == meeting.id).delete(synchronize_session=False)
    s.expire(meeting, ["attendance_logs"])
    s.delete(meeting)


# ---------- Listing ----------

@dataclass
class MeetingPage:
    meetings: list[Meeting] = field(default_factory=list)
    has_more: bool = False
    next_cursor: str | None = None


def encode_cursor(meeting: Meeting) -> str:
    return f"{meeting.date.isoformat()}:{meeting.id}"


def decode_cursor(raw: str | None) -> tuple[date, int | None] | None:
    """"YYYY-MM-DD:id", or a bare date meaning strictly older than that day."""
    raw = (raw or "").strip()
    if not raw:
        return None
    day, _, mid = raw.partition(":")
    d = parse_date(day)
    if d is None:
        return None
    return d, parse_int(mid)


def list_meetings(
    s: "Session",
    user: "User",
    *,
    class_id: int | None = None,
    limit: int = 10,
    cursor: str | None = None,
) -> MeetingPage:
    """
    Newest meetings first, `limit` at a time. Visibility rules are applied in
    Python because class_ids is a JSON list, so rows are pulled in batches
    until a page (plus one, for has_more) is filled.
    """
    q = s.query(Meeting).order_by(Meeting.date.desc(), Meeting.id.desc())
    pos = decode_cursor(cursor)
    if pos is not None:
        d, mid = pos
        if mid is None:
            q = q.filter(Meeting.date < d)
        else:
            q = q.filter(or_(Meeting.date < d, and_(Meeting.date == d, Meeting.id < mid)))

    if is_teacher(user):
        allowed = set(user.class_ids)
    else:
        ids = scoped_class_ids(s, user)
        allowed = None if ids is None else set(ids)
    if class_id:
        allowed = {class_id} if allowed is None or class_id in allowed else set()

    classes_by_id = {c.id: c for c in s.query(Class).all()} if is_teacher(user) else {}

    found: list[Meeting] = []
    batch = max(limit * 3, 30)
    offset = 0
    while len(found) <= limit:
        rows = q.offset(offset).limit(batch).all()
        if not rows:
            break
        offset += len(rows)
        visible = [m for m in rows if meeting_touches_classes(m, allowed)]
        found.extend(filter_meetings_for_user(visible, user, classes_by_id))

    page = found[:limit]
    has_more = len(found) > limit
    return MeetingPage(
        meetings=page,
        has_more=has_more,
        next_cursor=encode_cursor(page[-1]) if has_more and page else None,
    )


def meeting_stats(meeting: Meeting) -> dict:
    snapshot = set(meeting.student_snapshot or [])
    present = sum(1 for log in meeting.attendance_logs if log.status == HADIR and log.student_id in snapshot)
    total = len(snapshot)
    return {
        "present": present,
        "recorded": len(meeting.attendance_logs),
        "total": total,
        "percentage": percent(present, total),
    }


def get_meetings_with_stats(
    s: "Session",
    user: "User",
    *,
    class_id: int | None = None,
    limit: int = 10,
    cursor: str | None = None,
) -> tuple[list[dict], MeetingPage]:
    page = list_meetings(s, user, class_id=class_id, limit=limit, cursor=cursor)
    rows = [{"meeting": m, **meeting_stats(m)} for m in page.meetings]
    return rows, page


def get_meeting(s: "Session", meeting_id: int, user: "User") -> Meeting:
    meeting = s.get(Meeting, meeting_id)
    if not meeting:
        raise NotFound("Pertemuan tidak ditemukan")
    if is_teacher(user):
        allowed = set(user.class_ids)
    else:
        ids = scoped_class_ids(s, user)
        allowed = None if ids is None else set(ids)
    if not meeting_touches_classes(meeting, allowed) and meeting.teacher_id != user.id:
        raise AccessDenied("Anda tidak memiliki akses ke pertemuan ini")
    return meeting


# ---------- Attendance ----------

def save_attendance_for_meeting(s: "Session", meeting: Meeting, records: list[dict], user: "User") -> int:
    """
    Upsert one log per (student, meeting). Each record is
    {"student_id", "status", "reason"}. Returns the number of rows written.
    """
    teaches_class = is_teacher(user) and bool(set(meeting.all_class_ids) & set(user.class_ids))
    if not (can_edit_or_delete_meeting(user, meeting) or teaches_class):
        raise AccessDenied("Anda tidak memiliki izin untuk mengisi absensi pertemuan ini")

    snapshot = set(meeting.student_snapshot or [])
    existing = {log.student_id: log for log in meeting.attendance_logs}
    now = datetime.utcnow()
    written = 0
    for rec in records:
        sid = parse_int(rec.get("student_id"))
        status = (rec.get("status") or "").strip().upper()
        if status not in ATTENDANCE_STATUSES:
            raise ServiceError("Status absensi tidak valid")
        if sid is None or sid not in snapshot:
            raise ServiceError("Siswa tidak terdaftar pada pertemuan ini")
        reason = (rec.get("reason") or "").strip() or None
        log = existing.get(sid)
        if log is None:
            log = AttendanceLog(
                meeting_id=meeting.id,
                student_id=sid,
                date=meeting.date,
                status=status,
                reason=reason,
                recorded_by_user_id=user.id,
                created_at=now,
                updated_at=now,
            )
            meeting.attendance_logs.append(log)
            existing[sid] = log
        else:
            log.status = status
            log.reason = reason
            log.date = meeting.date
            log.recorded_by_user_id = user.id
            log.updated_at = now
        written += 1
    s.flush()

    record_event(
        s,
        actor=user,
        action="attendance.save",
        entity_type="Meeting",
        entity_id=str(meeting.id),
        metadata={"records": written},
    )
    return written


def get_attendance_by_meeting(s: "Session", meeting: Meeting) -> dict[int, AttendanceLog]:
    return {
        log.student_id: log
        for log in s.query(AttendanceLog).filter(AttendanceLog.meeting_id == meeting.id).all()
    }


def get_snapshot_students(s: "Session", meeting: Meeting) -> list[Student]:
    """Snapshot students in name order; rows deleted since creation are skipped."""
    ids = list(meeting.student_snapshot or [])
    if not ids:
        return []
    return s.query(Student).filter(Student.id.in_(ids)).order_by(Student.name.asc()).all()


def get_attendance_by_date(s: "Session", user: "User", day: date) -> list[AttendanceLog]:
    q = s.query(AttendanceLog).join(Meeting, AttendanceLog.meeting_id == Meeting.id).filter(AttendanceLog.date == day)
    logs = q.all()
    if is_teacher(user):
        allowed = set(user.class_ids)
    else:
        ids = scoped_class_ids(s, user)
        allowed = None if ids is None else set(ids)
    return [log for log in logs if meeting_touches_classes(log.meeting, allowed)]
