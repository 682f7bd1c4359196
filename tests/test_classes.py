import pytest

from app.absensi.errors import AccessDenied, NotFound, ServiceError
from app.absensi.models import User
from app.absensi.modules.classes.models import Class, ClassMasterCategory
from app.absensi.modules.classes.service import (
    create_class,
    create_class_master,
    delete_class,
    ensure_default_categories,
    list_classes,
    update_class,
    update_class_master,
    validate_class_master_payload,
    validate_class_payload,
)
from app.absensi.modules.meetings.service import create_meeting


def test_default_categories_are_idempotent(db, world):
    ensure_default_categories(db)
    ensure_default_categories(db)
    codes = sorted(c.code for c in db.query(ClassMasterCategory).all())
    assert codes == ["CABERAWIT", "PAUD", "PENGAJAR", "REMAJA"]


def test_payload_validation():
    assert validate_class_master_payload({"name": ""}) == ["Nama kelas harus diisi"]
    assert validate_class_master_payload({"name": "X", "sort_order": "a"}) == ["Urutan harus berupa angka"]
    assert validate_class_payload({"class_master_id": "1", "kelompok_id": "2"}) == []
    assert validate_class_payload({}) == ["Nama kelas harus diisi", "Kelompok harus dipilih"]


def test_class_masters_are_superadmin_only(db, world):
    with pytest.raises(AccessDenied):
        create_class_master(db, {"name": "Kelas 2"}, db.get(User, world.admin_daerah))

    su = db.get(User, world.superadmin)
    master = create_class_master(db, {"name": "Kelas 2", "sort_order": "4", "category_id": world.category_remaja}, su)
    assert master.sort_order == 4
    with pytest.raises(ServiceError, match="Nama kelas sudah ada"):
        create_class_master(db, {"name": "Kelas 1"}, su)
    with pytest.raises(ServiceError, match="Nama kelas sudah ada"):
        update_class_master(db, master, {"name": "Remaja"}, su)


def test_create_class_from_master_defaults_name(db, world):
    admin = db.get(User, world.admin_kelompok)
    cls = create_class(db, {"kelompok_id": world.kelompok_a1, "class_master_id": world.master_remaja}, admin)
    assert cls.name == "Remaja"
    assert cls.class_master_id == world.master_remaja

    custom = create_class(db, {"kelompok_id": world.kelompok_a1, "name": "Tahfidz"}, admin)
    assert custom.class_master_id is None


def test_create_class_respects_scope(db, world):
    admin = db.get(User, world.admin_kelompok)
    with pytest.raises(AccessDenied):
        create_class(db, {"kelompok_id": world.kelompok_a2, "name": "Tahfidz"}, admin)
    with pytest.raises(NotFound):
        create_class(db, {"kelompok_id": 9999, "name": "Tahfidz"}, admin)
    with pytest.raises(AccessDenied):
        create_class(db, {"kelompok_id": world.kelompok_a1, "name": "Tahfidz"}, db.get(User, world.teacher))


def test_list_classes_scoped_and_active_only(db, world):
    admin = db.get(User, world.admin_desa)
    update_class(db, db.get(Class, world.pengajar_a1), {"is_active": False}, admin)
    db.flush()
    ids = {c.id for c in list_classes(db, admin)}
    assert ids == {world.kelas1_a1, world.kelas1_a2, world.remaja_a1}
    ids = {c.id for c in list_classes(db, admin, include_inactive=True)}
    assert world.pengajar_a1 in ids


def test_delete_class_blocked_when_meetings_exist(db, world):
    admin = db.get(User, world.admin_kelompok)
    create_meeting(
        db,
        {"class_ids": [world.kelas1_a1], "title": "Pertemuan", "date": "2026-10-12"},
        admin,
    )
    with pytest.raises(ServiceError, match="pertemuan"):
        delete_class(db, db.get(Class, world.kelas1_a1), admin)

    spare = create_class(db, {"kelompok_id": world.kelompok_a1, "name": "Cadangan"}, admin)
    delete_class(db, spare, admin)
    db.flush()
    assert db.get(Class, spare.id) is None


def test_classes_page(client, login_as, world):
    login_as("admin_desa")
    r = client.get("/admin/kelas")
    assert r.status_code == 200
    assert b"Kelompok A2" in r.data
    assert client.get("/admin/kelas/master").status_code == 200


def test_delete_class_blocked_by_shared_meeting(db, world):
    admin = db.get(User, world.admin_daerah)
    m = create_meeting(
        db,
        {"class_ids": [world.remaja_a1, world.remaja_b1], "title": "Sambung", "date": "2026-10-12", "meeting_type_code": "SAMBUNG_DESA"},
        admin,
    )
    assert m.class_id == world.remaja_a1
    with pytest.raises(ServiceError, match="pertemuan"):
        delete_class(db, db.get(Class, world.remaja_b1), admin)
    assert db.get(Class, world.remaja_b1) is not None
