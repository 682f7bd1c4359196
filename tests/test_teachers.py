import pytest

from app.absensi.errors import AccessDenied, ServiceError
from app.absensi.models import User
from app.absensi.modules.teachers.service import (
    create_teacher,
    delete_teacher,
    get_meeting_form_settings,
    list_teachers,
    reset_teacher_password,
    update_meeting_form_settings,
    update_teacher,
    update_teacher_classes,
    update_teacher_permissions,
    validate_teacher_payload,
)
from app.absensi.security import verify_password


def _payload(world, **overrides):
    payload = {
        "username": "guru_baru",
        "full_name": "Guru Baru",
        "email": "guru.baru@absensi.test",
        "password": "rahasia",
        "daerah_id": world.daerah_1,
        "desa_id": world.desa_a,
        "kelompok_id": world.kelompok_a2,
    }
    payload.update(overrides)
    return payload


def test_validation(world):
    assert validate_teacher_payload(_payload(world)) == []
    assert validate_teacher_payload(_payload(world, password="123")) == ["Password minimal 6 karakter"]
    assert validate_teacher_payload(_payload(world, password=""), is_update=True) == []
    assert "Desa harus dipilih untuk guru dengan kelompok" in validate_teacher_payload(_payload(world, desa_id=None))


def test_create_teacher_in_scope(db, world):
    admin = db.get(User, world.admin_desa)
    teacher = create_teacher(db, _payload(world, username="Guru_Baru"), admin)
    assert teacher.username == "guru_baru"
    assert teacher.role == "teacher"
    assert verify_password(teacher.password_hash, "rahasia")

    with pytest.raises(ServiceError, match="Username sudah digunakan"):
        create_teacher(db, _payload(world, email="lain@absensi.test"), admin)


def test_create_teacher_outside_scope_denied(db, world):
    admin = db.get(User, world.admin_kelompok)
    with pytest.raises(AccessDenied):
        create_teacher(db, _payload(world), admin)
    with pytest.raises(ServiceError, match="Kelompok tidak berada"):
        create_teacher(db, _payload(world, kelompok_id=world.kelompok_b1), db.get(User, world.superadmin))


def test_list_teachers_scoped(db, world):
    assert [t.id for t in list_teachers(db, db.get(User, world.admin_desa))] == [world.teacher]
    assert list_teachers(db, db.get(User, world.admin_c1)) == []


def test_update_and_reset_password(db, world):
    admin = db.get(User, world.admin_kelompok)
    teacher = db.get(User, world.teacher)
    update_teacher(
        db,
        teacher,
        _payload(world, username="guru_a1", email="guru_a1@absensi.test", full_name="Guru Satu", kelompok_id=world.kelompok_a1, password=""),
        admin,
    )
    assert teacher.full_name == "Guru Satu"
    with pytest.raises(ServiceError):
        reset_teacher_password(db, teacher, "123", admin)
    reset_teacher_password(db, teacher, "baru12345", admin)
    assert verify_password(teacher.password_hash, "baru12345")


def test_admin_c1_cannot_touch_other_teacher(db, world):
    with pytest.raises(AccessDenied):
        reset_teacher_password(db, db.get(User, world.teacher), "baru12345", db.get(User, world.admin_c1))


def test_admin_kelompok_class_assignment_limited_to_own_kelompok(db, world):
    admin = db.get(User, world.admin_kelompok)
    teacher = db.get(User, world.teacher)
    update_teacher_classes(db, teacher, [world.kelas1_a1, world.pengajar_a1], admin)
    assert sorted(teacher.class_ids) == sorted([world.kelas1_a1, world.pengajar_a1])
    with pytest.raises(AccessDenied):
        update_teacher_classes(db, teacher, [world.kelas1_a2], admin)

    admin_desa = db.get(User, world.admin_desa)
    update_teacher_classes(db, teacher, [world.kelas1_a2], admin_desa)
    assert teacher.class_ids == [world.kelas1_a2]
    with pytest.raises(AccessDenied):
        update_teacher_classes(db, teacher, [world.remaja_b1], admin_desa)


def test_permission_flags(db, world):
    teacher = db.get(User, world.teacher)
    update_teacher_permissions(db, teacher, {"can_archive_students": "1", "unknown": True}, db.get(User, world.admin_desa))
    assert teacher.has_flag("can_archive_students")
    assert not teacher.has_flag("can_hard_delete_students")
    assert "unknown" not in teacher.permissions


def test_meeting_form_settings_default_to_visible(db, world):
    teacher = db.get(User, world.teacher)
    assert all(get_meeting_form_settings(teacher).values())
    new = update_meeting_form_settings(db, teacher, {"showTitle": False, "showTopic": True}, teacher)
    assert new["showTitle"] is False
    assert new["showTopic"] is True
    assert get_meeting_form_settings(teacher)["showTitle"] is False


def test_delete_teacher(db, world):
    teacher = db.get(User, world.teacher)
    delete_teacher(db, teacher, db.get(User, world.admin_kelompok))
    db.flush()
    assert db.get(User, world.teacher) is None


def test_teacher_routes(client, login_as, world):
    token = login_as("admin_desa")
    assert client.get("/admin/guru").status_code == 200
    assert client.get(f"/admin/guru/{world.teacher}").status_code == 200
    r = client.post(
        f"/admin/guru/{world.teacher}/permissions",
        data={"can_transfer_students": "1", "csrf_token": token},
    )
    assert r.status_code == 302
