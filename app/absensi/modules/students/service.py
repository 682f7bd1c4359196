from __future__ import annotations

import calendar
from datetime import date, datetime
from typing import TYPE_CHECKING

from sqlalchemy import or_

from app.absensi.access import (
    class_in_scope,
    is_superadmin,
    is_teacher,
    kelompok_in_scope,
    scope_student_query,
    student_in_scope,
)
from app.absensi.audit import record_event
from app.absensi.constants import ARCHIVE_STATUSES, GENDERS, STUDENT_STATUS_ACTIVE
from app.absensi.errors import AccessDenied, NotFound, ServiceError
from app.absensi.modules.classes.models import Class
from app.absensi.modules.students.models import Student, StudentClass
from app.absensi.student_permissions import can_archive_student, can_soft_delete_student
from app.absensi.utils import parse_date, parse_id_list, parse_int

if TYPE_CHECKING:
    from sqlalchemy.orm import Session
    from app.absensi.models import User


BIODATA_TEXT_FIELDS = (
    "nomor_induk",
    "tempat_lahir",
    "alamat",
    "nomor_telepon",
    "nama_ayah",
    "nama_ibu",
    "alamat_orangtua",
    "telepon_orangtua",
    "pekerjaan_ayah",
    "pekerjaan_ibu",
    "nama_wali",
    "alamat_wali",
    "pekerjaan_wali",
)


def validate_student_payload(payload: dict, *, require_class: bool = True) -> list[str]:
    """Validate student create/update payload. Returns list of errors."""
    errors = []
    if not (payload.get("name") or "").strip():
        errors.append("Nama siswa wajib diisi")
    gender = (payload.get("gender") or "").strip()
    if gender not in GENDERS:
        errors.append('Jenis kelamin harus "Laki-laki" atau "Perempuan"')
    if require_class and not parse_id_list(payload.get("class_ids")):
        errors.append("Kelas wajib dipilih")
    return errors


def validate_biodata_payload(payload: dict) -> list[str]:
    errors = []
    if "name" in payload and not (payload.get("name") or "").strip():
        errors.append("Nama siswa tidak boleh kosong")
    if payload.get("gender") and payload["gender"] not in GENDERS:
        errors.append('Jenis kelamin harus "Laki-laki" atau "Perempuan"')
    raw_anak_ke = payload.get("anak_ke")
    if raw_anak_ke not in (None, "") and parse_int(raw_anak_ke) is None:
        errors.append("Anak ke- harus berupa angka")
    return errors


# ---------- Access ----------

def can_view_student(user: "User", student: Student) -> bool:
    return student_in_scope(user, student)


def _require_student_access(user: "User", student: Student) -> None:
    if not can_view_student(user, student):
        raise AccessDenied("Anda tidak memiliki akses ke siswa ini")


def get_student(s: "Session", student_id: int, user: "User") -> Student:
    student = s.get(Student, student_id)
    if not student:
        raise NotFound("Siswa tidak ditemukan")
    _require_student_access(user, student)
    return student


def list_students(
    s: "Session",
    user: "User",
    *,
    class_id: int | None = None,
    kelompok_id: int | None = None,
    status: str | None = None,
    search: str | None = None,
    include_deleted: bool = False,
) -> list[Student]:
    q = scope_student_query(s.query(Student), user)
    if not include_deleted:
        q = q.filter(Student.deleted_at.is_(None))
    if class_id:
        q = q.join(StudentClass, StudentClass.student_id == Student.id).filter(StudentClass.class_id == class_id)
    if kelompok_id:
        q = q.filter(Student.kelompok_id == kelompok_id)
    if status:
        q = q.filter(Student.status == status)
    if search:
        like = f"%{search.strip()}%"
        q = q.filter(or_(Student.name.ilike(like), Student.nomor_induk.ilike(like)))
    return q.order_by(Student.name.asc()).all()


# ---------- Create / update ----------

def _resolve_org(s: "Session", payload: dict, user: "User") -> tuple[int, int, int]:
    """(daerah_id, desa_id, kelompok_id) from the chosen kelompok, else from the user's own profile."""
    from app.absensi.modules.organization.models import Kelompok

    kelompok_id = parse_int(payload.get("kelompok_id")) or user.kelompok_id
    if not kelompok_id:
        raise ServiceError("Kelompok harus dipilih")
    kelompok = s.get(Kelompok, kelompok_id)
    if not kelompok:
        raise NotFound("Kelompok tidak ditemukan")
    if not kelompok_in_scope(user, kelompok):
        raise AccessDenied("Kelompok tidak berada dalam organisasi Anda")
    return kelompok.desa.daerah_id, kelompok.desa_id, kelompok.id


def _resolve_classes(s: "Session", class_ids: list[int], user: "User") -> list[Class]:
    classes = s.query(Class).filter(Class.id.in_(class_ids)).all() if class_ids else []
    if len(classes) != len(set(class_ids)):
        raise NotFound("Kelas tidak ditemukan")
    if is_teacher(user):
        taught = set(user.class_ids)
        if any(c.id not in taught for c in classes):
            raise AccessDenied("Anda hanya dapat mengupdate siswa ke kelas yang Anda ajarkan")
    elif any(not class_in_scope(user, c) for c in classes):
        raise AccessDenied("Kelas tidak berada dalam organisasi Anda")
    return classes


def _apply_biodata(student: Student, payload: dict, changes: dict) -> None:
    for field in BIODATA_TEXT_FIELDS:
        if field not in payload:
            continue
        value = (payload.get(field) or "").strip() or None
        if value != getattr(student, field):
            changes[field] = {"old": getattr(student, field), "new": value}
            setattr(student, field, value)
    if "tanggal_lahir" in payload:
        value = parse_date(payload.get("tanggal_lahir"))
        if value != student.tanggal_lahir:
            changes["tanggal_lahir"] = {"old": str(student.tanggal_lahir), "new": str(value)}
            student.tanggal_lahir = value
    if "anak_ke" in payload:
        value = parse_int(payload.get("anak_ke"))
        if value != student.anak_ke:
            changes["anak_ke"] = {"old": student.anak_ke, "new": value}
            student.anak_ke = value


def create_student(s: "Session", payload: dict, user: "User") -> Student:
    daerah_id, desa_id, kelompok_id = _resolve_org(s, payload, user)
    classes = _resolve_classes(s, parse_id_list(payload.get("class_ids")), user)

    now = datetime.utcnow()
    student = Student(
        name=(payload.get("name") or "").strip(),
        gender=(payload.get("gender") or "").strip(),
        status=STUDENT_STATUS_ACTIVE,
        daerah_id=daerah_id,
        desa_id=desa_id,
        kelompok_id=kelompok_id,
        transfer_history=[],
        created_at=now,
        updated_at=now,
    )
    _apply_biodata(student, payload, {})
    student.classes = classes
    s.add(student)
    s.flush()

    record_event(
        s,
        actor=user,
        action="student.create",
        entity_type="Student",
        entity_id=str(student.id),
        metadata={"name": student.name, "kelompok_id": kelompok_id, "class_ids": student.class_ids},
    )
    return student


def update_student(s: "Session", student: Student, payload: dict, user: "User") -> Student:
    _require_student_access(user, student)
    changes: dict = {}

    new_name = (payload.get("name") or "").strip()
    if new_name and new_name != student.name:
        changes["name"] = {"old": student.name, "new": new_name}
        student.name = new_name

    new_gender = (payload.get("gender") or "").strip()
    if new_gender and new_gender != student.gender:
        changes["gender"] = {"old": student.gender, "new": new_gender}
        student.gender = new_gender

    if parse_int(payload.get("kelompok_id")) and parse_int(payload.get("kelompok_id")) != student.kelompok_id:
        daerah_id, desa_id, kelompok_id = _resolve_org(s, payload, user)
        changes["kelompok_id"] = {"old": student.kelompok_id, "new": kelompok_id}
        student.daerah_id, student.desa_id, student.kelompok_id = daerah_id, desa_id, kelompok_id

    if "class_ids" in payload:
        class_ids = parse_id_list(payload.get("class_ids"))
        if set(class_ids) != set(student.class_ids):
            classes = _resolve_classes(s, class_ids, user)
            if is_teacher(user):
                # Teachers may only move students between classes they teach.
                taught = set(user.class_ids)
                if any(cid not in taught for cid in student.class_ids if cid not in class_ids):
                    raise AccessDenied("Anda hanya dapat mengupdate siswa ke kelas yang Anda ajarkan")
            changes["class_ids"] = {"old": student.class_ids, "new": [c.id for c in classes]}
            student.classes = classes

    _apply_biodata(student, payload, changes)
    student.updated_at = datetime.utcnow()

    record_event(
        s,
        actor=user,
        action="student.edit",
        entity_type="Student",
        entity_id=str(student.id),
        metadata={"name": student.name, "changes": changes},
    )
    return student


def update_student_biodata(s: "Session", student: Student, payload: dict, user: "User") -> Student:
    _require_student_access(user, student)
    errors = validate_biodata_payload(payload)
    if errors:
        raise ServiceError(errors[0])
    changes: dict = {}
    if payload.get("name"):
        new_name = payload["name"].strip()
        if new_name != student.name:
            changes["name"] = {"old": student.name, "new": new_name}
            student.name = new_name
    if payload.get("gender") and payload["gender"] != student.gender:
        changes["gender"] = {"old": student.gender, "new": payload["gender"]}
        student.gender = payload["gender"]
    _apply_biodata(student, payload, changes)
    student.updated_at = datetime.utcnow()

    record_event(
        s,
        actor=user,
        action="student.biodata",
        entity_type="Student",
        entity_id=str(student.id),
        metadata={"changes": changes},
    )
    return student


def assign_students_to_class(s: "Session", class_id: int, student_ids: list[int], user: "User") -> int:
    """Add students to a class (existing links are kept). Returns how many links were added."""
    (cls,) = _resolve_classes(s, [class_id], user)
    added = 0
    for student in s.query(Student).filter(Student.id.in_(student_ids)).all():
        _require_student_access(user, student)
        if cls.id not in student.class_ids:
            student.classes.append(cls)
            added += 1
    s.flush()
    record_event(
        s,
        actor=user,
        action="student.assign_class",
        entity_type="Class",
        entity_id=str(cls.id),
        metadata={"student_ids": list(student_ids), "added": added},
    )
    return added


# ---------- Lifecycle ----------

def archive_student(s: "Session", student: Student, status: str, notes: str | None, user: "User") -> Student:
    if not can_archive_student(user, student):
        raise AccessDenied("Tidak memiliki izin untuk mengarsipkan siswa ini")
    if status not in ARCHIVE_STATUSES:
        raise ServiceError("Status tidak valid")
    old = student.status
    now = datetime.utcnow()
    student.status = status
    student.archived_at = now
    student.archived_by_user_id = user.id
    student.archive_notes = (notes or "").strip() or None
    student.updated_at = now
    record_event(
        s,
        actor=user,
        action="student.archive",
        entity_type="Student",
        entity_id=str(student.id),
        reason=student.archive_notes,
        metadata={"changes": {"status": {"old": old, "new": status}}},
    )
    return student


def unarchive_student(s: "Session", student: Student, user: "User") -> Student:
    if not can_archive_student(user, student):
        raise AccessDenied("Tidak memiliki izin untuk mengembalikan siswa ini")
    if student.status == STUDENT_STATUS_ACTIVE:
        raise ServiceError("Siswa sudah dalam status aktif")
    old = student.status
    student.status = STUDENT_STATUS_ACTIVE
    student.archived_at = None
    student.archived_by_user_id = None
    student.archive_notes = None
    student.updated_at = datetime.utcnow()
    record_event(
        s,
        actor=user,
        action="student.unarchive",
        entity_type="Student",
        entity_id=str(student.id),
        metadata={"changes": {"status": {"old": old, "new": STUDENT_STATUS_ACTIVE}}},
    )
    return student


def soft_delete_student(s: "Session", student: Student, user: "User", reason: str | None = None) -> Student:
    if not can_soft_delete_student(user, student):
        raise AccessDenied("Tidak memiliki izin untuk menghapus siswa ini")
    if student.deleted_at is not None:
        raise ServiceError("Siswa sudah dihapus")
    now = datetime.utcnow()
    student.deleted_at = now
    student.deleted_by_user_id = user.id
    student.updated_at = now
    record_event(s, actor=user, action="student.soft_delete", entity_type="Student", entity_id=str(student.id), reason=reason)
    return student


def restore_student(s: "Session", student: Student, user: "User") -> Student:
    if student.deleted_at is None:
        raise ServiceError("Siswa tidak dalam status deleted")
    if not can_soft_delete_student(user, student):
        raise AccessDenied("Tidak memiliki izin untuk restore siswa ini")
    student.deleted_at = None
    student.deleted_by_user_id = None
    student.updated_at = datetime.utcnow()
    record_event(s, actor=user, action="student.restore", entity_type="Student", entity_id=str(student.id))
    return student


def hard_delete_student(s: "Session", student: Student, user: "User") -> None:
    """Permanent removal: superadmin only, and only after a soft delete."""
    from app.absensi.modules.academic_years.models import StudentEnrollment
    from app.absensi.modules.meetings.models import AttendanceLog

    if not is_superadmin(user):
        raise AccessDenied("Hanya superadmin yang dapat menghapus siswa secara permanen")
    if student.deleted_at is None:
        raise ServiceError("Siswa harus di-soft delete terlebih dahulu sebelum hard delete")

    record_event(
        s,
        actor=user,
        action="student.hard_delete",
        entity_type="Student",
        entity_id=str(student.id),
        metadata={"name": student.name, "kelompok_id": student.kelompok_id},
    )
    s.query(AttendanceLog).filter(AttendanceLog.student_id == student.id).delete(synchronize_session=False)
    s.query(StudentEnrollment).filter(StudentEnrollment.student_id == student.id).delete(synchronize_session=False)
    student.classes.clear()
    s.flush()
    s.delete(student)


# ---------- Attendance history ----------

def get_student_attendance_history(s: "Session", student: Student, year: int, month: int) -> dict:
    """A student's attendance logs in one month, newest first, with H/I/S/A totals."""
    from app.absensi.modules.meetings.models import AttendanceLog, Meeting
    from app.absensi.modules.meetings.utils import calculate_attendance_stats

    start = date(year, month, 1)
    end = date(year, month, calendar.monthrange(year, month)[1])
    logs = (
        s.query(AttendanceLog)
        .join(Meeting, AttendanceLog.meeting_id == Meeting.id)
        .filter(
            AttendanceLog.student_id == student.id,
            Meeting.date >= start,
            Meeting.date <= end,
        )
        .order_by(Meeting.date.desc())
        .all()
    )
    return {
        "year": year,
        "month": month,
        "logs": logs,
        "stats": calculate_attendance_stats(logs),
    }
