from __future__ import annotations

from datetime import datetime
from typing import TYPE_CHECKING

from app.absensi.audit import record_event
from app.absensi.constants import ENROLLMENT_STATUSES, SEMESTERS
from app.absensi.errors import AccessDenied, NotFound, ServiceError
from app.absensi.modules.academic_years.models import AcademicYear, StudentEnrollment
from app.absensi.utils import parse_date, parse_int

if TYPE_CHECKING:
    from sqlalchemy.orm import Session
    from app.absensi.models import User


def validate_academic_year_payload(payload: dict) -> list[str]:
    """Validate academic year create/update payload. Returns list of errors."""
    errors = []
    if not (payload.get("name") or "").strip():
        errors.append("Nama tahun ajaran harus diisi")
    start_year = parse_int(payload.get("start_year"))
    end_year = parse_int(payload.get("end_year"))
    if start_year is None or end_year is None:
        errors.append("Tahun awal dan tahun akhir harus diisi")
    elif end_year != start_year + 1:
        errors.append("Tahun akhir harus satu tahun setelah tahun awal")
    start_date = parse_date(payload.get("start_date"))
    end_date = parse_date(payload.get("end_date"))
    if start_date and end_date and start_date >= end_date:
        errors.append("Tanggal mulai harus sebelum tanggal selesai")
    return errors


def list_academic_years(s: "Session") -> list[AcademicYear]:
    return s.query(AcademicYear).order_by(AcademicYear.start_year.desc()).all()


def get_active_academic_year(s: "Session") -> AcademicYear | None:
    return s.query(AcademicYear).filter(AcademicYear.is_active.is_(True)).one_or_none()


def create_academic_year(s: "Session", payload: dict, user: "User") -> AcademicYear:
    now = datetime.utcnow()
    ay = AcademicYear(
        name=(payload.get("name") or "").strip(),
        start_year=parse_int(payload.get("start_year")),
        end_year=parse_int(payload.get("end_year")),
        start_date=parse_date(payload.get("start_date")),
        end_date=parse_date(payload.get("end_date")),
        is_active=False,
        created_at=now,
        updated_at=now,
    )
    s.add(ay)
    s.flush()
    if payload.get("is_active"):
        set_active_academic_year(s, ay, user)

    record_event(
        s,
        actor=user,
        action="academic_year.create",
        entity_type="AcademicYear",
        entity_id=str(ay.id),
        metadata={"name": ay.name, "is_active": ay.is_active},
    )
    return ay


def update_academic_year(s: "Session", ay: AcademicYear, payload: dict, user: "User") -> AcademicYear:
    changes = {}

    new_name = (payload.get("name") or "").strip()
    if new_name and new_name != ay.name:
        changes["name"] = {"old": ay.name, "new": new_name}
        ay.name = new_name

    for field in ("start_year", "end_year"):
        value = parse_int(payload.get(field))
        if value is not None and value != getattr(ay, field):
            changes[field] = {"old": getattr(ay, field), "new": value}
            setattr(ay, field, value)

    # Dates may be cleared.
    for field in ("start_date", "end_date"):
        value = parse_date(payload.get(field))
        if value != getattr(ay, field):
            changes[field] = {"old": str(getattr(ay, field)), "new": str(value)}
            setattr(ay, field, value)

    ay.updated_at = datetime.utcnow()

    record_event(
        s,
        actor=user,
        action="academic_year.edit",
        entity_type="AcademicYear",
        entity_id=str(ay.id),
        metadata={"name": ay.name, "changes": changes},
    )
    return ay


def set_active_academic_year(s: "Session", ay: AcademicYear, user: "User") -> AcademicYear:
    """Activate one year; every other year is deactivated so exactly one stays active."""
    previous = [
        other.id
        for other in s.query(AcademicYear).filter(AcademicYear.is_active.is_(True), AcademicYear.id != ay.id).all()
    ]
    s.query(AcademicYear).filter(AcademicYear.id != ay.id).update({AcademicYear.is_active: False}, synchronize_session="fetch")
    ay.is_active = True
    ay.updated_at = datetime.utcnow()
    s.flush()

    record_event(
        s,
        actor=user,
        action="academic_year.set_active",
        entity_type="AcademicYear",
        entity_id=str(ay.id),
        metadata={"name": ay.name, "deactivated": previous},
    )
    return ay


def delete_academic_year(s: "Session", ay: AcademicYear, user: "User") -> None:
    if ay.is_active:
        raise ServiceError("Tidak dapat menghapus tahun ajaran yang sedang aktif")
    record_event(s, actor=user, action="academic_year.delete", entity_type="AcademicYear", entity_id=str(ay.id), metadata={"name": ay.name})
    s.delete(ay)


# ---------- Enrollments ----------

def enroll_students(
    s: "Session",
    *,
    class_id: int,
    academic_year_id: int,
    semester: int,
    student_ids: list[int],
    user: "User",
) -> list[StudentEnrollment]:
    """
    Enroll students into a class for one year/semester. A student already
    enrolled elsewhere in that year/semester is moved (upsert on the unique key).
    """
    from app.absensi.access import class_in_scope, student_in_scope
    from app.absensi.modules.classes.models import Class
    from app.absensi.modules.students.models import Student

    if semester not in SEMESTERS:
        raise ServiceError("Semester tidak valid")
    if not student_ids:
        raise ServiceError("Pilih minimal satu siswa")
    cls = s.get(Class, class_id)
    if not cls:
        raise NotFound("Kelas tidak ditemukan")
    if not class_in_scope(user, cls):
        raise AccessDenied("Kelas tidak berada dalam organisasi Anda")
    if not s.get(AcademicYear, academic_year_id):
        raise NotFound("Tahun ajaran tidak ditemukan")

    student_ids = list(dict.fromkeys(student_ids))
    students = {st.id: st for st in s.query(Student).filter(Student.id.in_(student_ids), Student.deleted_at.is_(None)).all()}
    for sid in student_ids:
        st = students.get(sid)
        if st is None:
            raise NotFound("Siswa tidak ditemukan")
        if not student_in_scope(user, st):
            raise AccessDenied(f"Siswa {st.name} tidak berada dalam organisasi Anda")

    existing = {
        e.student_id: e
        for e in s.query(StudentEnrollment)
        .filter(
            StudentEnrollment.academic_year_id == academic_year_id,
            StudentEnrollment.semester == semester,
            StudentEnrollment.student_id.in_(student_ids),
        )
        .all()
    }
    now = datetime.utcnow()
    out = []
    for sid in student_ids:
        e = existing.get(sid)
        if e is None:
            e = StudentEnrollment(
                student_id=sid,
                class_id=class_id,
                academic_year_id=academic_year_id,
                semester=semester,
                status="active",
                created_at=now,
            )
            s.add(e)
        else:
            e.class_id = class_id
            e.status = "active"
        e.updated_at = now
        out.append(e)
    s.flush()

    record_event(
        s,
        actor=user,
        action="enrollment.bulk_upsert",
        entity_type="Class",
        entity_id=str(class_id),
        metadata={"academic_year_id": academic_year_id, "semester": semester, "student_ids": list(student_ids)},
    )
    return out


def get_class_enrollments(s: "Session", class_id: int, academic_year_id: int, semester: int | None = None) -> list[StudentEnrollment]:
    """Active enrollments of students that have not been deleted."""
    from app.absensi.modules.students.models import Student

    q = (
        s.query(StudentEnrollment)
        .join(Student, StudentEnrollment.student_id == Student.id)
        .filter(
            StudentEnrollment.class_id == class_id,
            StudentEnrollment.academic_year_id == academic_year_id,
            StudentEnrollment.status == "active",
            Student.deleted_at.is_(None),
        )
    )
    if semester is not None:
        q = q.filter(StudentEnrollment.semester == semester)
    return q.order_by(Student.name.asc()).all()


def _check_enrollment_scope(user: "User", enrollment: StudentEnrollment) -> None:
    from app.absensi.access import class_in_scope

    if not class_in_scope(user, enrollment.class_):
        raise AccessDenied("Pendaftaran tidak berada dalam organisasi Anda")


def update_enrollment_status(s: "Session", enrollment: StudentEnrollment, status: str, user: "User") -> StudentEnrollment:
    _check_enrollment_scope(user, enrollment)
    if status not in ENROLLMENT_STATUSES:
        raise ServiceError("Status tidak valid")
    old = enrollment.status
    enrollment.status = status
    enrollment.updated_at = datetime.utcnow()
    record_event(
        s,
        actor=user,
        action="enrollment.status",
        entity_type="StudentEnrollment",
        entity_id=str(enrollment.id),
        metadata={"changes": {"status": {"old": old, "new": status}}},
    )
    return enrollment


def remove_enrollment(s: "Session", enrollment: StudentEnrollment, user: "User") -> None:
    _check_enrollment_scope(user, enrollment)
    record_event(
        s,
        actor=user,
        action="enrollment.delete",
        entity_type="StudentEnrollment",
        entity_id=str(enrollment.id),
        metadata={"student_id": enrollment.student_id, "class_id": enrollment.class_id},
    )
    s.delete(enrollment)
