from datetime import date

import pytest

from app.absensi.errors import AccessDenied, ServiceError
from app.absensi.models import User
from app.absensi.modules.meetings.models import AttendanceLog, Meeting
from app.absensi.modules.meetings.service import (
    can_edit_or_delete_meeting,
    create_meeting,
    decode_cursor,
    delete_meeting,
    get_attendance_by_date,
    get_attendance_by_meeting,
    get_meeting,
    get_meetings_with_stats,
    get_snapshot_students,
    list_meeting_classes,
    list_meetings,
    meeting_stats,
    save_attendance_for_meeting,
    update_meeting,
    validate_meeting_payload,
)
from app.absensi.modules.students.models import Student


def _meeting(db, user, class_ids, day="2026-10-12", **extra):
    payload = {"class_ids": class_ids, "title": f"Pertemuan {day}", "date": day}
    payload.update(extra)
    return create_meeting(db, payload, user)


def test_validation():
    assert validate_meeting_payload({"title": "A", "date": "2026-10-12", "class_ids": "1"}) == []
    assert validate_meeting_payload({}) == [
        "Judul pertemuan harus diisi",
        "Tanggal pertemuan tidak valid",
        "Kelas harus dipilih",
    ]


def test_teacher_meeting_classes_are_own_active_classes(db, world):
    teacher = db.get(User, world.teacher)
    assert sorted(c.id for c in list_meeting_classes(db, teacher)) == sorted([world.kelas1_a1, world.remaja_a1])
    admin = db.get(User, world.admin_kelompok)
    assert {c.id for c in list_meeting_classes(db, admin)} == {world.kelas1_a1, world.remaja_a1, world.pengajar_a1}


def test_create_meeting_snapshot_and_numbering(db, world):
    teacher = db.get(User, world.teacher)
    first = _meeting(db, teacher, [world.kelas1_a1], topic="Adab")
    assert first.student_snapshot == [world.budi, world.siti]
    assert first.meeting_number == 1
    assert first.teacher_id == world.teacher
    assert first.meeting_type_code == "PEMBINAAN"
    second = _meeting(db, teacher, [world.kelas1_a1], day="2026-10-19")
    assert second.meeting_number == 2


def test_snapshot_excludes_archived_and_deleted_students(db, world):
    teacher = db.get(User, world.teacher)
    db.get(Student, world.siti).status = "graduated"
    db.flush()
    m = _meeting(db, teacher, [world.kelas1_a1])
    assert m.student_snapshot == [world.budi]


def test_student_selection_narrows_snapshot(db, world):
    teacher = db.get(User, world.teacher)
    m = _meeting(db, teacher, [world.kelas1_a1, world.remaja_a1], student_ids=[world.siti, world.andi, world.eka])
    assert m.class_ids == [world.kelas1_a1, world.remaja_a1]
    assert m.class_id == world.kelas1_a1
    assert sorted(m.student_snapshot) == sorted([world.siti, world.andi])


def test_teacher_limited_to_own_classes(db, world):
    teacher = db.get(User, world.teacher)
    with pytest.raises(AccessDenied, match="kelas Anda sendiri"):
        _meeting(db, teacher, [world.pengajar_a1])


def test_meeting_type_rules(db, world):
    admin = db.get(User, world.admin_kelompok)
    with pytest.raises(ServiceError, match="Tipe pertemuan tidak tersedia"):
        _meeting(db, admin, [world.kelas1_a1], meeting_type_code="SAMBUNG_DESA")
    with pytest.raises(ServiceError, match="sambung desa"):
        _meeting(db, admin, [world.remaja_a1, world.kelas1_a1], meeting_type_code="SAMBUNG_DESA")
    m = _meeting(db, admin, [world.remaja_a1], meeting_type_code="SAMBUNG_DESA")
    assert m.meeting_type_code == "SAMBUNG_DESA"
    m = _meeting(db, admin, [world.remaja_a1], meeting_type_code="SAMBUNG_KELOMPOK")
    assert m.meeting_type_code == "SAMBUNG_KELOMPOK"


def test_empty_class_rejected(db, world):
    with pytest.raises(ServiceError, match="Tidak ada siswa"):
        _meeting(db, db.get(User, world.admin_kelompok), [world.pengajar_a1])


def test_edit_and_delete_permissions(db, world):
    teacher = db.get(User, world.teacher)
    m = _meeting(db, teacher, [world.kelas1_a1])
    assert can_edit_or_delete_meeting(teacher, m)
    assert can_edit_or_delete_meeting(db.get(User, world.admin_desa), m)
    assert can_edit_or_delete_meeting(db.get(User, world.admin_daerah), m)
    assert not can_edit_or_delete_meeting(db.get(User, world.admin_c1), m)

    with pytest.raises(AccessDenied):
        update_meeting(db, m, {"title": "X"}, db.get(User, world.admin_c1))
    with pytest.raises(AccessDenied):
        delete_meeting(db, m, db.get(User, world.admin_c1))


def test_update_meeting_moves_log_dates(db, world):
    teacher = db.get(User, world.teacher)
    m = _meeting(db, teacher, [world.kelas1_a1])
    save_attendance_for_meeting(db, m, [{"student_id": world.budi, "status": "H"}], teacher)
    update_meeting(db, m, {"title": "Judul baru", "date": "2026-10-13", "topic": ""}, teacher)
    db.flush()
    assert m.title == "Judul baru"
    assert m.topic is None
    assert {log.date for log in m.attendance_logs} == {date(2026, 10, 13)}
    with pytest.raises(ServiceError):
        update_meeting(db, m, {"title": " "}, teacher)


def test_delete_meeting_removes_logs(db, world):
    teacher = db.get(User, world.teacher)
    m = _meeting(db, teacher, [world.kelas1_a1])
    save_attendance_for_meeting(db, m, [{"student_id": world.budi, "status": "H"}], teacher)
    mid = m.id
    delete_meeting(db, m, teacher)
    db.flush()
    assert db.get(Meeting, mid) is None
    assert db.query(AttendanceLog).filter(AttendanceLog.meeting_id == mid).count() == 0


# ---------- Attendance ----------

def test_save_attendance_upserts(db, world):
    teacher = db.get(User, world.teacher)
    m = _meeting(db, teacher, [world.kelas1_a1])
    n = save_attendance_for_meeting(
        db,
        m,
        [{"student_id": world.budi, "status": "h"}, {"student_id": str(world.siti), "status": "S", "reason": "Demam"}],
        teacher,
    )
    assert n == 2
    save_attendance_for_meeting(db, m, [{"student_id": world.budi, "status": "A"}], teacher)
    db.flush()
    logs = get_attendance_by_meeting(db, m)
    assert len(logs) == 2
    assert logs[world.budi].status == "A"
    assert logs[world.siti].reason == "Demam"
    assert meeting_stats(m) == {"present": 0, "recorded": 2, "total": 2, "percentage": 0}


def test_save_attendance_rejects_bad_input(db, world):
    teacher = db.get(User, world.teacher)
    m = _meeting(db, teacher, [world.kelas1_a1])
    with pytest.raises(ServiceError, match="Status absensi tidak valid"):
        save_attendance_for_meeting(db, m, [{"student_id": world.budi, "status": "X"}], teacher)
    with pytest.raises(ServiceError, match="tidak terdaftar"):
        save_attendance_for_meeting(db, m, [{"student_id": world.andi, "status": "H"}], teacher)
    with pytest.raises(AccessDenied):
        save_attendance_for_meeting(db, m, [{"student_id": world.budi, "status": "H"}], db.get(User, world.admin_c1))


def test_snapshot_students_skip_removed_rows(db, world):
    su = db.get(User, world.superadmin)
    m = _meeting(db, su, [world.kelas1_a1])
    assert [st.name for st in get_snapshot_students(db, m)] == ["Budi", "Siti"]


def test_attendance_by_date_is_scoped(db, world):
    su = db.get(User, world.superadmin)
    m1 = _meeting(db, su, [world.kelas1_a1])
    m2 = _meeting(db, su, [world.kelas1_c1])
    save_attendance_for_meeting(db, m1, [{"student_id": world.budi, "status": "H"}], su)
    save_attendance_for_meeting(db, m2, [{"student_id": world.eka, "status": "H"}], su)
    day = date(2026, 10, 12)
    assert len(get_attendance_by_date(db, su, day)) == 2
    assert [log.student_id for log in get_attendance_by_date(db, db.get(User, world.admin_c1), day)] == [world.eka]


# ---------- Listing ----------

def test_cursor_pagination(db, world):
    teacher = db.get(User, world.teacher)
    made = [_meeting(db, teacher, [world.kelas1_a1], day=f"2026-10-{d:02d}") for d in (1, 2, 3, 4, 5)]
    page = list_meetings(db, teacher, limit=2)
    assert [m.id for m in page.meetings] == [made[4].id, made[3].id]
    assert page.has_more
    assert page.next_cursor == f"2026-10-04:{made[3].id}"

    page2 = list_meetings(db, teacher, limit=2, cursor=page.next_cursor)
    assert [m.id for m in page2.meetings] == [made[2].id, made[1].id]
    page3 = list_meetings(db, teacher, limit=2, cursor=page2.next_cursor)
    assert [m.id for m in page3.meetings] == [made[0].id]
    assert not page3.has_more
    assert page3.next_cursor is None


def test_decode_cursor():
    assert decode_cursor("2026-10-04:7") == (date(2026, 10, 4), 7)
    assert decode_cursor("2026-10-04") == (date(2026, 10, 4), None)
    assert decode_cursor("garbage") is None
    assert decode_cursor("") is None


def test_listing_hides_pengajar_meetings_from_other_teachers(db, world):
    admin = db.get(User, world.admin_kelompok)
    teacher = db.get(User, world.teacher)
    plain = _meeting(db, admin, [world.kelas1_a1])
    _meeting(db, admin, [world.kelas1_a1, world.pengajar_a1], day="2026-10-13")
    assert [x.id for x in list_meetings(db, teacher).meetings] == [plain.id]
    assert len(list_meetings(db, admin).meetings) == 2


def test_listing_scoped_by_org(db, world):
    su = db.get(User, world.superadmin)
    mine = _meeting(db, su, [world.kelas1_a1])
    other = _meeting(db, su, [world.kelas1_c1])
    rows, _ = get_meetings_with_stats(db, db.get(User, world.admin_c1))
    assert [r["meeting"].id for r in rows] == [other.id]
    assert rows[0]["total"] == 1
    rows, _ = get_meetings_with_stats(db, su, class_id=world.kelas1_a1)
    assert [r["meeting"].id for r in rows] == [mine.id]

    with pytest.raises(AccessDenied):
        get_meeting(db, mine.id, db.get(User, world.admin_c1))
    assert get_meeting(db, mine.id, db.get(User, world.admin_desa)).id == mine.id


# ---------- Routes ----------

def test_meeting_routes(client, login_as, world, app):
    token = login_as("guru_a1")
    r = client.post(
        "/admin/absensi/new",
        data={"class_ids": [str(world.kelas1_a1)], "title": "Pertemuan 1", "date": "2026-10-12", "csrf_token": token},
    )
    assert r.status_code == 302

    s = app.extensions["sqlalchemy_sessionmaker"]()
    try:
        meeting = s.query(Meeting).one()
    finally:
        s.close()

    assert client.get(f"/admin/absensi/{meeting.id}").status_code == 200
    r = client.post(
        f"/admin/absensi/{meeting.id}/attendance",
        data={f"status_{world.budi}": "H", f"status_{world.siti}": "I", f"reason_{world.siti}": "Acara keluarga", "csrf_token": token},
    )
    assert r.status_code == 302

    s = app.extensions["sqlalchemy_sessionmaker"]()
    try:
        logs = {log.student_id: log.status for log in s.query(AttendanceLog).all()}
    finally:
        s.close()
    assert logs == {world.budi: "H", world.siti: "I"}

    r = client.get("/admin/absensi")
    assert r.status_code == 200
    assert b"Pertemuan 1" in r.data
