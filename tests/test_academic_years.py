from datetime import datetime

import pytest

from app.absensi.db import session_scope
from app.absensi.errors import AccessDenied, NotFound, ServiceError
from app.absensi.models import User
from app.absensi.modules.academic_years.models import AcademicYear, StudentEnrollment
from app.absensi.modules.academic_years.service import (
    create_academic_year,
    delete_academic_year,
    enroll_students,
    get_active_academic_year,
    get_class_enrollments,
    remove_enrollment,
    set_active_academic_year,
    update_academic_year,
    update_enrollment_status,
    validate_academic_year_payload,
)
from app.absensi.modules.students.models import Student


def _year(db, user, name="2025/2026", start=2025, active=False):
    return create_academic_year(
        db,
        {"name": name, "start_year": str(start), "end_year": str(start + 1), "is_active": active},
        user,
    )


def test_validation():
    assert validate_academic_year_payload({"name": "2025/2026", "start_year": "2025", "end_year": "2026"}) == []
    errors = validate_academic_year_payload({"name": "", "start_year": "2025", "end_year": "2027"})
    assert "Nama tahun ajaran harus diisi" in errors
    assert "Tahun akhir harus satu tahun setelah tahun awal" in errors
    errors = validate_academic_year_payload(
        {"name": "X", "start_year": "2025", "end_year": "2026", "start_date": "2026-06-01", "end_date": "2025-07-01"}
    )
    assert errors == ["Tanggal mulai harus sebelum tanggal selesai"]


def test_exactly_one_active_year(db, world):
    su = db.get(User, world.superadmin)
    first = _year(db, su, active=True)
    second = _year(db, su, name="2026/2027", start=2026)
    assert get_active_academic_year(db).id == first.id

    set_active_academic_year(db, second, su)
    db.flush()
    db.refresh(first)
    assert not first.is_active
    assert get_active_academic_year(db).id == second.id
    assert db.query(AcademicYear).filter(AcademicYear.is_active.is_(True)).count() == 1


def test_active_year_cannot_be_deleted(db, world):
    su = db.get(User, world.superadmin)
    ay = _year(db, su, active=True)
    with pytest.raises(ServiceError):
        delete_academic_year(db, ay, su)


def test_update_clears_dates(db, world):
    su = db.get(User, world.superadmin)
    ay = create_academic_year(
        db,
        {"name": "2025/2026", "start_year": "2025", "end_year": "2026", "start_date": "2025-07-01"},
        su,
    )
    update_academic_year(db, ay, {"name": "TA 2025/2026", "start_date": ""}, su)
    assert ay.name == "TA 2025/2026"
    assert ay.start_date is None


def test_enrollment_upsert_moves_student(db, world):
    su = db.get(User, world.superadmin)
    ay = _year(db, su, active=True)
    enroll_students(db, class_id=world.kelas1_a1, academic_year_id=ay.id, semester=1, student_ids=[world.budi, world.siti], user=su)
    enroll_students(db, class_id=world.remaja_a1, academic_year_id=ay.id, semester=1, student_ids=[world.budi], user=su)
    db.flush()

    rows = db.query(StudentEnrollment).filter(StudentEnrollment.student_id == world.budi).all()
    assert len(rows) == 1
    assert rows[0].class_id == world.remaja_a1
    assert [e.student_id for e in get_class_enrollments(db, world.kelas1_a1, ay.id)] == [world.siti]


def test_enrollment_listing_skips_inactive_and_deleted(db, world):
    su = db.get(User, world.superadmin)
    ay = _year(db, su, active=True)
    rows = enroll_students(
        db, class_id=world.kelas1_a1, academic_year_id=ay.id, semester=2, student_ids=[world.budi, world.siti], user=su
    )
    budi_row = next(e for e in rows if e.student_id == world.budi)
    update_enrollment_status(db, budi_row, "dropped", su)
    db.flush()
    assert [e.student_id for e in get_class_enrollments(db, world.kelas1_a1, ay.id, semester=2)] == [world.siti]

    db.get(Student, world.siti).deleted_at = datetime.utcnow()
    db.flush()
    assert get_class_enrollments(db, world.kelas1_a1, ay.id, semester=2) == []

    with pytest.raises(ServiceError):
        update_enrollment_status(db, budi_row, "lulus", su)
    remove_enrollment(db, budi_row, su)
    db.flush()
    assert db.get(StudentEnrollment, budi_row.id) is None


def test_enrollment_guards(db, world):
    su = db.get(User, world.superadmin)
    ay = _year(db, su)
    with pytest.raises(ServiceError, match="Semester"):
        enroll_students(db, class_id=world.kelas1_a1, academic_year_id=ay.id, semester=3, student_ids=[world.budi], user=su)
    with pytest.raises(ServiceError, match="minimal"):
        enroll_students(db, class_id=world.kelas1_a1, academic_year_id=ay.id, semester=1, student_ids=[], user=su)
    with pytest.raises(ServiceError, match="organisasi"):
        enroll_students(
            db,
            class_id=world.kelas1_c1,
            academic_year_id=ay.id,
            semester=1,
            student_ids=[world.eka],
            user=db.get(User, world.admin_desa),
        )


def test_academic_years_page(client, login_as):
    login_as("admin_daerah")
    assert client.get("/admin/tahun-ajaran").status_code == 200


def test_edit_route_renames_year(app, client, login_as):
    with session_scope(app) as s:
        ay_id = _year(s, None, name="2025/2026").id
    token = login_as("superadmin")
    r = client.post(
        f"/admin/tahun-ajaran/{ay_id}/edit",
        data={"csrf_token": token, "name": "TA 2025/2026", "start_year": "2025", "end_year": "2026", "end_date": "2026-06-30"},
    )
    assert r.status_code == 302
    with session_scope(app) as s:
        ay = s.get(AcademicYear, ay_id)
        assert ay.name == "TA 2025/2026"
        assert ay.end_date.isoformat() == "2026-06-30"


def test_enrollment_rejects_students_outside_scope(db, world):
    su = db.get(User, world.superadmin)
    ay = _year(db, su)
    admin = db.get(User, world.admin_kelompok)
    with pytest.raises(AccessDenied, match="Eka"):
        enroll_students(db, class_id=world.kelas1_a1, academic_year_id=ay.id, semester=1, student_ids=[world.eka], user=admin)
    with pytest.raises(NotFound):
        enroll_students(db, class_id=world.kelas1_a1, academic_year_id=ay.id, semester=1, student_ids=[999], user=admin)
    assert db.query(StudentEnrollment).count() == 0


def test_enrollment_changes_are_scoped(db, world):
    su = db.get(User, world.superadmin)
    ay = _year(db, su)
    [row] = enroll_students(db, class_id=world.kelas1_a1, academic_year_id=ay.id, semester=1, student_ids=[world.budi], user=su)
    db.flush()
    outsider = db.get(User, world.admin_c1)
    with pytest.raises(AccessDenied):
        update_enrollment_status(db, row, "dropped", outsider)
    with pytest.raises(AccessDenied):
        remove_enrollment(db, row, outsider)
    assert row.status == "active"


def test_enrollment_routes_block_other_daerah(app, client, login_as, world):
    with session_scope(app) as s:
        ay = _year(s, None)
        su = s.get(User, world.superadmin)
        [row] = enroll_students(s, class_id=world.kelas1_a1, academic_year_id=ay.id, semester=1, student_ids=[world.budi], user=su)
        row_id, class_id, ay_id = row.id, world.kelas1_a1, ay.id

    token = login_as("admin_c1")
    assert client.post(f"/admin/tahun-ajaran/enrollments/{row_id}/delete", data={"csrf_token": token}).status_code == 404
    r = client.post(f"/admin/tahun-ajaran/enrollments/{row_id}/status", data={"csrf_token": token, "status": "dropped"})
    assert r.status_code == 404
    assert client.get(f"/admin/tahun-ajaran/enrollments?class_id={class_id}&academic_year_id={ay_id}").status_code == 404

    with session_scope(app) as s:
        assert s.get(StudentEnrollment, row_id).status == "active"
