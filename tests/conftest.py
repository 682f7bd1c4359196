from datetime import datetime
from types import SimpleNamespace

import pytest

from app.absensi import create_app
from app.absensi.auth import reset_login_attempts
from app.absensi.db import session_scope
from app.absensi.models import Base, User
from app.absensi.modules.classes.models import Class, ClassMaster, ClassMasterCategory
from app.absensi.modules.classes.service import ensure_default_categories
from app.absensi.modules.organization.models import Daerah, Desa, Kelompok
from app.absensi.modules.students.models import Student
from app.absensi.rbac import ensure_roles_and_permissions
from app.absensi.security import hash_password

PASSWORD = "rahasia123"


@pytest.fixture()
def app(tmp_path, monkeypatch):
    monkeypatch.setenv("SECRET_KEY", "test-secret")
    monkeypatch.setenv("DATABASE_URL", f"sqlite:///{tmp_path/'test.db'}")
    monkeypatch.setenv("ENV", "test")

    app = create_app({"TESTING": True})
    engine = app.extensions["sqlalchemy_engine"]
    Base.metadata.create_all(bind=engine)
    reset_login_attempts()
    return app


@pytest.fixture()
def client(app, world):
    return app.test_client()


@pytest.fixture()
def db(app, world):
    """Plain session for service-level tests; nothing is committed."""
    s = app.extensions["sqlalchemy_sessionmaker"]()
    try:
        yield s
    finally:
        s.rollback()
        s.close()


def _user(s, role, username, *, daerah=None, desa=None, kelompok=None, classes=(), permissions=None):
    u = User(
        username=username,
        email=f"{username}@absensi.test",
        full_name=username.replace("_", " ").title(),
        password_hash=hash_password(PASSWORD),
        is_active=True,
        daerah_id=daerah.id if daerah else None,
        desa_id=desa.id if desa else None,
        kelompok_id=kelompok.id if kelompok else None,
        permissions=permissions or {},
    )
    u.roles.append(role)
    u.classes = list(classes)
    s.add(u)
    return u


def _student(s, name, gender, kelompok, classes=()):
    now = datetime.utcnow()
    st = Student(
        name=name,
        gender=gender,
        status="active",
        daerah_id=kelompok.desa.daerah_id,
        desa_id=kelompok.desa_id,
        kelompok_id=kelompok.id,
        transfer_history=[],
        created_at=now,
        updated_at=now,
    )
    st.classes = list(classes)
    s.add(st)
    return st


@pytest.fixture()
def world(app):
    """
    Two daerah with desa/kelompok below them, a few classes and one user per
    scope level. Returns the ids only; tests load rows in their own session.
    """
    with session_scope(app) as s:
        roles = ensure_roles_and_permissions(s)
        categories = {c.code: c for c in ensure_default_categories(s)}

        d1, d2 = Daerah(name="Daerah 1"), Daerah(name="Daerah 2")
        s.add_all([d1, d2])
        s.flush()
        desa_a = Desa(name="Desa A", daerah_id=d1.id)
        desa_b = Desa(name="Desa B", daerah_id=d1.id)
        desa_c = Desa(name="Desa C", daerah_id=d2.id)
        s.add_all([desa_a, desa_b, desa_c])
        s.flush()
        a1 = Kelompok(name="Kelompok A1", desa_id=desa_a.id)
        a2 = Kelompok(name="Kelompok A2", desa_id=desa_a.id)
        b1 = Kelompok(name="Kelompok B1", desa_id=desa_b.id)
        c1 = Kelompok(name="Kelompok C1", desa_id=desa_c.id)
        s.add_all([a1, a2, b1, c1])
        s.flush()
        for k in (a1, a2, b1, c1):
            s.refresh(k)

        m_kelas1 = ClassMaster(name="Kelas 1", sort_order=1, category_id=categories["CABERAWIT"].id)
        m_remaja = ClassMaster(name="Remaja", sort_order=2, category_id=categories["REMAJA"].id)
        m_pengajar = ClassMaster(name="Pengajar", sort_order=3, category_id=categories["PENGAJAR"].id)
        s.add_all([m_kelas1, m_remaja, m_pengajar])
        s.flush()

        def cls(name, master, kelompok):
            c = Class(name=name, kelompok_id=kelompok.id, class_master_id=master.id, is_active=True)
            s.add(c)
            return c

        kelas1_a1 = cls("Kelas 1", m_kelas1, a1)
        kelas1_a2 = cls("Kelas 1", m_kelas1, a2)
        remaja_a1 = cls("Remaja", m_remaja, a1)
        remaja_b1 = cls("Remaja", m_remaja, b1)
        pengajar_a1 = cls("Pengajar", m_pengajar, a1)
        kelas1_c1 = cls("Kelas 1", m_kelas1, c1)
        s.flush()

        superadmin = _user(s, roles["superadmin"], "superadmin")
        admin_daerah = _user(s, roles["admin"], "admin_daerah", daerah=d1)
        admin_desa = _user(s, roles["admin"], "admin_desa", daerah=d1, desa=desa_a)
        admin_kelompok = _user(s, roles["admin"], "admin_kelompok", daerah=d1, desa=desa_a, kelompok=a1)
        admin_c1 = _user(s, roles["admin"], "admin_c1", daerah=d2, desa=desa_c, kelompok=c1)
        teacher = _user(
            s,
            roles["teacher"],
            "guru_a1",
            daerah=d1,
            desa=desa_a,
            kelompok=a1,
            classes=[kelas1_a1, remaja_a1],
        )

        budi = _student(s, "Budi", "Laki-laki", a1, [kelas1_a1])
        siti = _student(s, "Siti", "Perempuan", a1, [kelas1_a1])
        andi = _student(s, "Andi", "Laki-laki", a1, [remaja_a1])
        dewi = _student(s, "Dewi", "Perempuan", a2, [kelas1_a2])
        rudi = _student(s, "Rudi", "Laki-laki", b1, [remaja_b1])
        eka = _student(s, "Eka", "Perempuan", c1, [kelas1_c1])
        s.flush()

        return SimpleNamespace(
            daerah_1=d1.id,
            daerah_2=d2.id,
            desa_a=desa_a.id,
            desa_b=desa_b.id,
            desa_c=desa_c.id,
            kelompok_a1=a1.id,
            kelompok_a2=a2.id,
            kelompok_b1=b1.id,
            kelompok_c1=c1.id,
            master_kelas1=m_kelas1.id,
            master_remaja=m_remaja.id,
            master_pengajar=m_pengajar.id,
            category_remaja=categories["REMAJA"].id,
            kelas1_a1=kelas1_a1.id,
            kelas1_a2=kelas1_a2.id,
            remaja_a1=remaja_a1.id,
            remaja_b1=remaja_b1.id,
            pengajar_a1=pengajar_a1.id,
            kelas1_c1=kelas1_c1.id,
            superadmin=superadmin.id,
            admin_daerah=admin_daerah.id,
            admin_desa=admin_desa.id,
            admin_kelompok=admin_kelompok.id,
            admin_c1=admin_c1.id,
            teacher=teacher.id,
            budi=budi.id,
            siti=siti.id,
            andi=andi.id,
            dewi=dewi.id,
            rudi=rudi.id,
            eka=eka.id,
        )


@pytest.fixture()
def login_as(client):
    """Log the test client in; returns the session's CSRF token for later POSTs."""

    def _login(username: str, password: str = PASSWORD) -> str:
        r = client.post("/auth/login", data={"username": username, "password": password})
        assert r.status_code == 302
        with client.session_transaction() as sess:
            return sess["csrf_token"]

    return _login


@pytest.fixture()
def october(app, world):
    """
    Committed meetings with attendance in October 2026:
    05 Kelas 1 (A1) Budi H, Siti A; 12 Kelas 1 (A1) Budi H, Siti H;
    12 Remaja (A1) Andi I; 12 Kelas 1 (C1) Eka H.
    """
    from app.absensi.modules.meetings.service import create_meeting, save_attendance_for_meeting

    plan = [
        ("2026-10-05", world.kelas1_a1, {world.budi: "H", world.siti: "A"}),
        ("2026-10-12", world.kelas1_a1, {world.budi: "H", world.siti: "H"}),
        ("2026-10-12", world.remaja_a1, {world.andi: "I"}),
        ("2026-10-12", world.kelas1_c1, {world.eka: "H"}),
    ]
    ids = []
    with session_scope(app) as s:
        su = s.get(User, world.superadmin)
        for day, class_id, marks in plan:
            m = create_meeting(s, {"class_ids": [class_id], "title": f"Pertemuan {day}", "date": day}, su)
            save_attendance_for_meeting(s, m, [{"student_id": sid, "status": st} for sid, st in marks.items()], su)
            ids.append(m.id)
    return ids
