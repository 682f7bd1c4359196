import pytest

from app.absensi.errors import AccessDenied, ServiceError
from app.absensi.models import User
from app.absensi.modules.organization.models import Daerah, Desa, Kelompok
from app.absensi.modules.organization.service import (
    create_daerah,
    create_desa,
    create_kelompok,
    delete_daerah,
    delete_desa,
    delete_kelompok,
    get_org_tree,
    list_daerah,
    list_desa,
    list_kelompok,
    update_kelompok,
    validate_org_payload,
)


def test_validate_org_payload():
    assert validate_org_payload({"name": ""}) == ["Nama harus diisi"]
    assert validate_org_payload({"name": "X"}, parent_key="desa_id") == ["Desa harus dipilih"]
    assert validate_org_payload({"name": "X", "daerah_id": "1"}, parent_key="daerah_id") == []


def test_only_superadmin_manages_daerah(db, world):
    with pytest.raises(AccessDenied):
        create_daerah(db, {"name": "Daerah 3"}, db.get(User, world.admin_daerah))
    d = create_daerah(db, {"name": "Daerah 3"}, db.get(User, world.superadmin))
    assert d.id


def test_admin_daerah_creates_desa_in_own_daerah_only(db, world):
    admin = db.get(User, world.admin_daerah)
    desa = create_desa(db, {"name": "Desa Baru", "daerah_id": world.daerah_1}, admin)
    assert desa.daerah_id == world.daerah_1
    with pytest.raises(AccessDenied):
        create_desa(db, {"name": "Desa Lain", "daerah_id": world.daerah_2}, admin)


def test_admin_desa_manages_kelompok_in_own_desa(db, world):
    admin = db.get(User, world.admin_desa)
    k = create_kelompok(db, {"name": "Kelompok A3", "desa_id": world.desa_a}, admin)
    update_kelompok(db, k, {"name": "Kelompok A3 Baru"}, admin)
    assert k.name == "Kelompok A3 Baru"
    with pytest.raises(AccessDenied):
        create_kelompok(db, {"name": "Kelompok B2", "desa_id": world.desa_b}, admin)
    with pytest.raises(AccessDenied):
        create_kelompok(db, {"name": "Kelompok A4", "desa_id": world.desa_a}, db.get(User, world.admin_kelompok))


def test_delete_in_use_units_is_refused(db, world):
    su = db.get(User, world.superadmin)
    with pytest.raises(ServiceError, match="Data masih digunakan"):
        delete_daerah(db, db.get(Daerah, world.daerah_1), su)
    with pytest.raises(ServiceError, match="Data masih digunakan"):
        delete_kelompok(db, db.get(Kelompok, world.kelompok_a1), su)

    empty = create_kelompok(db, {"name": "Kosong", "desa_id": world.desa_b}, su)
    delete_kelompok(db, empty, su)
    db.flush()
    assert db.get(Kelompok, empty.id) is None


def test_listing_is_scoped(db, world):
    admin_desa = db.get(User, world.admin_desa)
    assert [d.name for d in list_daerah(db, admin_desa)] == ["Daerah 1"]
    assert [d.name for d in list_desa(db, admin_desa)] == ["Desa A"]
    assert [k.name for k in list_kelompok(db, admin_desa)] == ["Kelompok A1", "Kelompok A2"]

    admin_daerah = db.get(User, world.admin_daerah)
    assert [d.name for d in list_desa(db, admin_daerah)] == ["Desa A", "Desa B"]

    su = db.get(User, world.superadmin)
    assert len(list_kelompok(db, su)) == 4
    assert [k.name for k in list_kelompok(db, su, desa_id=world.desa_c)] == ["Kelompok C1"]


def test_org_tree(db, world):
    tree = get_org_tree(db, db.get(User, world.admin_daerah))
    assert [d["name"] for d in tree] == ["Daerah 1"]
    desa = {d["name"]: d for d in tree[0]["desa"]}
    assert set(desa) == {"Desa A", "Desa B"}
    assert [k["name"] for k in desa["Desa A"]["kelompok"]] == ["Kelompok A1", "Kelompok A2"]


def test_org_routes(client, login_as, world, app):
    token = login_as("superadmin")
    assert client.get("/admin/organisasi").status_code == 200
    r = client.post("/admin/organisasi/desa/new", data={"name": "Desa D", "daerah_id": world.daerah_2, "csrf_token": token})
    assert r.status_code == 302

    s = app.extensions["sqlalchemy_sessionmaker"]()
    try:
        assert s.query(Desa).filter(Desa.name == "Desa D").one().daerah_id == world.daerah_2
    finally:
        s.close()


def test_units_with_assigned_users_cannot_be_deleted(db, world):
    su = db.get(User, world.superadmin)
    daerah = create_daerah(db, {"name": "Daerah 3"}, su)
    desa = create_desa(db, {"name": "Desa Baru", "daerah_id": daerah.id}, su)
    admin = User(username="admin_baru", email="admin_baru@absensi.test", password_hash="x", daerah_id=daerah.id, desa_id=desa.id)
    db.add(admin)
    db.flush()

    with pytest.raises(ServiceError, match="Data masih digunakan"):
        delete_desa(db, desa, su)
    admin.desa_id = None
    db.flush()
    delete_desa(db, desa, su)
    with pytest.raises(ServiceError, match="Data masih digunakan"):
        delete_daerah(db, daerah, su)
    db.flush()
    assert admin.daerah_id == daerah.id
