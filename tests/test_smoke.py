from datetime import date

from sqlalchemy import text

from app.absensi.audit import action_label, query_events, record_event
from app.absensi.db import find_missing_schema, session_scope
from app.absensi.models import AuditEvent, User


def test_health(client):
    r = client.get("/health")
    assert r.status_code == 200
    assert r.get_json() == {"ok": True, "schema_ok": True, "schema_missing": []}
    assert client.get("/healthz").data == b"ok"


def test_public_index_renders_for_anonymous(client):
    r = client.get("/")
    assert r.status_code == 200


def test_admin_requires_login(client):
    r = client.get("/admin/")
    assert r.status_code == 302
    assert "/auth/login" in r.headers["Location"]
    assert "next=/admin/" in r.headers["Location"]


def test_login_and_admin_shell(client, login_as):
    login_as("superadmin")
    r = client.get("/admin/")
    assert r.status_code == 200
    assert b"Superadmin" in r.data


def test_login_accepts_email(client):
    r = client.post("/auth/login", data={"username": "superadmin@absensi.test", "password": "rahasia123"})
    assert r.status_code == 302
    assert r.headers["Location"].endswith("/admin/")


def test_login_redirects_to_safe_next_only(client):
    r = client.post("/auth/login", data={"username": "superadmin", "password": "rahasia123", "next": "/admin/siswa"})
    assert r.headers["Location"].endswith("/admin/siswa")

    client.get("/auth/logout")
    r = client.post("/auth/login", data={"username": "superadmin", "password": "rahasia123", "next": "//evil.example"})
    assert r.headers["Location"].endswith("/admin/")


def test_failed_login_is_audited(app, client):
    r = client.post("/auth/login", data={"username": "superadmin", "password": "salah"}, follow_redirects=True)
    assert b"Password salah" in r.data
    with session_scope(app) as s:
        ev = s.query(AuditEvent).filter(AuditEvent.action == "auth.login_failed").one()
        assert ev.reason == "Password salah"


def test_unknown_user_message(client):
    r = client.post("/auth/login", data={"username": "nobody", "password": "x"}, follow_redirects=True)
    assert b"Username tidak ditemukan" in r.data


def test_login_rate_limit(app, client):
    app.config["LOGIN_RATE_LIMIT"] = 2
    for _ in range(2):
        client.post("/auth/login", data={"username": "superadmin", "password": "salah"})
    r = client.post("/auth/login", data={"username": "superadmin", "password": "rahasia123"}, follow_redirects=True)
    assert b"Terlalu banyak percobaan login" in r.data
    assert client.get("/admin/").status_code == 302


def test_login_rate_limit_message_uses_configured_window(app, client):
    app.config["LOGIN_RATE_LIMIT"] = 1
    app.config["LOGIN_RATE_WINDOW"] = 900
    client.post("/auth/login", data={"username": "superadmin", "password": "salah"})
    r = client.post("/auth/login", data={"username": "superadmin", "password": "rahasia123"}, follow_redirects=True)
    assert b"Coba lagi dalam 15 menit" in r.data


def test_logout_clears_session(client, login_as):
    login_as("superadmin")
    client.get("/auth/logout")
    assert client.get("/admin/").status_code == 302


def test_post_without_csrf_is_rejected(client, login_as):
    login_as("superadmin")
    r = client.post("/admin/organisasi/daerah/new", data={"name": "Daerah X"})
    assert r.status_code == 400


def test_post_with_csrf_header_is_accepted(client, login_as):
    token = login_as("superadmin")
    r = client.post("/admin/organisasi/daerah/new", data={"name": "Daerah X"}, headers={"X-CSRF-Token": token})
    assert r.status_code == 302


def test_teacher_forbidden_from_admin_only_pages(client, login_as):
    login_as("guru_a1")
    assert client.get("/admin/dashboard").status_code == 403
    assert client.get("/admin/audit").status_code == 403
    assert client.get("/admin/absensi").status_code == 200


def test_me_page(client, login_as):
    login_as("admin_desa")
    r = client.get("/admin/me")
    assert r.status_code == 200
    assert b"Admin Desa" in r.data


def test_schema_check_reports_missing_columns(app):
    engine = app.extensions["sqlalchemy_engine"]
    assert find_missing_schema(engine) == []
    with engine.begin() as conn:
        conn.execute(text("DROP TABLE transfer_requests"))
    assert find_missing_schema(engine) == ["transfer_requests (table)"]
    assert find_missing_schema(engine, {"meetings": ("class_ids", "room")}) == ["meetings.room"]


def test_audit_events_outside_request(db, world):
    su = db.get(User, world.superadmin)
    record_event(db, actor=su, action="student.create", entity_type="Student", entity_id="1", metadata={"when": date(2026, 10, 12)})
    record_event(db, actor=None, action="meeting.delete", reason="salah input")
    db.flush()

    events = query_events(db, action="student")
    assert [e.metadata_json for e in events] == ['{"when": "2026-10-12"}']
    assert events[0].client_ip is None
    assert [e.action for e in query_events(db, actor_username="SUPER")] == ["student.create"]
    assert query_events(db, date_to=date(2000, 1, 1)) == []
    assert action_label("transfer.approve") == "Mutasi"
    assert action_label("custom") == "custom"


def test_audit_page_is_superadmin_only(client, login_as):
    login_as("superadmin")
    r = client.get("/admin/audit?action=auth")
    assert r.status_code == 200
    assert b"auth.login" in r.data
