from __future__ import annotations

from typing import TYPE_CHECKING

from app.absensi.access import get_data_filter, is_admin_daerah, is_admin_desa, is_superadmin, scope_kelompok_query
from app.absensi.audit import record_event
from app.absensi.errors import AccessDenied, NotFound, ServiceError
from app.absensi.modules.organization.models import Daerah, Desa, Kelompok

if TYPE_CHECKING:
    from sqlalchemy.orm import Session
    from app.absensi.models import User


def validate_org_payload(payload: dict, *, parent_key: str | None = None) -> list[str]:
    errors = []
    if not (payload.get("name") or "").strip():
        errors.append("Nama harus diisi")
    if parent_key == "daerah_id" and not payload.get("daerah_id"):
        errors.append("Daerah harus dipilih")
    if parent_key == "desa_id" and not payload.get("desa_id"):
        errors.append("Desa harus dipilih")
    return errors


# ---------- Scope checks ----------

def can_manage_daerah(user: "User") -> bool:
    return is_superadmin(user)


def can_manage_desa_in(user: "User", daerah_id: int) -> bool:
    return is_superadmin(user) or (is_admin_daerah(user) and user.daerah_id == daerah_id)


def can_manage_kelompok_in(user: "User", desa: Desa) -> bool:
    if is_superadmin(user):
        return True
    if is_admin_daerah(user):
        return desa.daerah_id == user.daerah_id
    if is_admin_desa(user):
        return desa.id == user.desa_id
    return False


# ---------- Queries ----------

def list_daerah(s: "Session", user: "User") -> list[Daerah]:
    q = s.query(Daerah)
    if get_data_filter(user) is not None:
        q = q.filter(Daerah.id == user.daerah_id)
    return q.order_by(Daerah.name.asc()).all()


def list_desa(s: "Session", user: "User", daerah_id: int | None = None) -> list[Desa]:
    q = s.query(Desa)
    f = get_data_filter(user)
    if f is not None:
        if f.daerah_id:
            q = q.filter(Desa.daerah_id == f.daerah_id)
        else:
            q = q.filter(Desa.id == user.desa_id)
    if daerah_id:
        q = q.filter(Desa.daerah_id == daerah_id)
    return q.order_by(Desa.name.asc()).all()


def list_kelompok(s: "Session", user: "User", desa_id: int | None = None) -> list[Kelompok]:
    q = scope_kelompok_query(s.query(Kelompok), user)
    if desa_id:
        q = q.filter(Kelompok.desa_id == desa_id)
    return q.order_by(Kelompok.name.asc()).all()


def get_org_tree(s: "Session", user: "User") -> list[dict]:
    """Nested daerah → desa → kelompok options visible to the user (for cascading selects)."""
    kelompok = list_kelompok(s, user)
    desa = list_desa(s, user)
    daerah = list_daerah(s, user)

    kel_by_desa: dict[int, list[dict]] = {}
    for k in kelompok:
        kel_by_desa.setdefault(k.desa_id, []).append({"id": k.id, "name": k.name})
    desa_by_daerah: dict[int, list[dict]] = {}
    for d in desa:
        desa_by_daerah.setdefault(d.daerah_id, []).append(
            {"id": d.id, "name": d.name, "kelompok": kel_by_desa.get(d.id, [])}
        )
    return [{"id": d.id, "name": d.name, "desa": desa_by_daerah.get(d.id, [])} for d in daerah]


# ---------- Daerah ----------

def create_daerah(s: "Session", payload: dict, user: "User") -> Daerah:
    if not can_manage_daerah(user):
        raise AccessDenied("Hanya superadmin yang dapat mengelola daerah")
    daerah = Daerah(name=(payload.get("name") or "").strip())
    s.add(daerah)
    s.flush()
    record_event(s, actor=user, action="daerah.create", entity_type="Daerah", entity_id=str(daerah.id), metadata={"name": daerah.name})
    return daerah


def update_daerah(s: "Session", daerah: Daerah, payload: dict, user: "User") -> Daerah:
    if not can_manage_daerah(user):
        raise AccessDenied("Hanya superadmin yang dapat mengelola daerah")
    old = daerah.name
    daerah.name = (payload.get("name") or "").strip() or daerah.name
    record_event(
        s,
        actor=user,
        action="daerah.edit",
        entity_type="Daerah",
        entity_id=str(daerah.id),
        metadata={"changes": {"name": {"old": old, "new": daerah.name}}},
    )
    return daerah


def delete_daerah(s: "Session", daerah: Daerah, user: "User") -> None:
    from app.absensi.models import User
    from app.absensi.modules.students.models import Student

    if not can_manage_daerah(user):
        raise AccessDenied("Hanya superadmin yang dapat mengelola daerah")
    in_use = (
        s.query(Desa.id).filter(Desa.daerah_id == daerah.id).first()
        or s.query(Student.id).filter(Student.daerah_id == daerah.id).first()
        or s.query(User.id).filter(User.daerah_id == daerah.id).first()
    )
    if in_use:
        raise ServiceError("Data masih digunakan")
    record_event(s, actor=user, action="daerah.delete", entity_type="Daerah", entity_id=str(daerah.id), metadata={"name": daerah.name})
    s.delete(daerah)


# ---------- Desa ----------

def create_desa(s: "Session", payload: dict, user: "User") -> Desa:
    daerah = s.get(Daerah, int(payload["daerah_id"]))
    if not daerah:
        raise NotFound("Daerah tidak ditemukan")
    if not can_manage_desa_in(user, daerah.id):
        raise AccessDenied("Anda tidak memiliki akses ke daerah ini")
    desa = Desa(name=(payload.get("name") or "").strip(), daerah_id=daerah.id)
    s.add(desa)
    s.flush()
    record_event(
        s, actor=user, action="desa.create", entity_type="Desa", entity_id=str(desa.id), metadata={"name": desa.name, "daerah_id": daerah.id}
    )
    return desa


def update_desa(s: "Session", desa: Desa, payload: dict, user: "User") -> Desa:
    if not can_manage_desa_in(user, desa.daerah_id):
        raise AccessDenied("Anda tidak memiliki akses ke desa ini")
    old = desa.name
    desa.name = (payload.get("name") or "").strip() or desa.name
    record_event(
        s,
        actor=user,
        action="desa.edit",
        entity_type="Desa",
        entity_id=str(desa.id),
        metadata={"changes": {"name": {"old": old, "new": desa.name}}},
    )
    return desa


def delete_desa(s: "Session", desa: Desa, user: "User") -> None:
    from app.absensi.models import User
    from app.absensi.modules.students.models import Student

    if not can_manage_desa_in(user, desa.daerah_id):
        raise AccessDenied("Anda tidak memiliki akses ke desa ini")
    in_use = (
        s.query(Kelompok.id).filter(Kelompok.desa_id == desa.id).first()
        or s.query(Student.id).filter(Student.desa_id == desa.id).first()
        or s.query(User.id).filter(User.desa_id == desa.id).first()
    )
    if in_use:
        raise ServiceError("Data masih digunakan")
    record_event(s, actor=user, action="desa.delete", entity_type="Desa", entity_id=str(desa.id), metadata={"name": desa.name})
    s.delete(desa)


# ---------- Kelompok ----------

def create_kelompok(s: "Session", payload: dict, user: "User") -> Kelompok:
    desa = s.get(Desa, int(payload["desa_id"]))
    if not desa:
        raise NotFound("Desa tidak ditemukan")
    if not can_manage_kelompok_in(user, desa):
        raise AccessDenied("Anda tidak memiliki akses ke desa ini")
    kelompok = Kelompok(name=(payload.get("name") or "").strip(), desa_id=desa.id)
    s.add(kelompok)
    s.flush()
    record_event(
        s,
        actor=user,
        action="kelompok.create",
        entity_type="Kelompok",
        entity_id=str(kelompok.id),
        metadata={"name": kelompok.name, "desa_id": desa.id},
    )
    return kelompok


def update_kelompok(s: "Session", kelompok: Kelompok, payload: dict, user: "User") -> Kelompok:
    if not can_manage_kelompok_in(user, kelompok.desa):
        raise AccessDenied("Anda tidak memiliki akses ke kelompok ini")
    old = kelompok.name
    kelompok.name = (payload.get("name") or "").strip() or kelompok.name
    record_event(
        s,
        actor=user,
        action="kelompok.edit",
        entity_type="Kelompok",
        entity_id=str(kelompok.id),
        metadata={"changes": {"name": {"old": old, "new": kelompok.name}}},
    )
    return kelompok


def delete_kelompok(s: "Session", kelompok: Kelompok, user: "User") -> None:
    from app.absensi.models import User
    from app.absensi.modules.classes.models import Class
    from app.absensi.modules.students.models import Student

    if not can_manage_kelompok_in(user, kelompok.desa):
        raise AccessDenied("Anda tidak memiliki akses ke kelompok ini")
    in_use = (
        s.query(Class.id).filter(Class.kelompok_id == kelompok.id).first()
        or s.query(Student.id).filter(Student.kelompok_id == kelompok.id).first()
        or s.query(User.id).filter(User.kelompok_id == kelompok.id).first()
    )
    if in_use:
        raise ServiceError("Data masih digunakan")
    record_event(s, actor=user, action="kelompok.delete", entity_type="Kelompok", entity_id=str(kelompok.id), metadata={"name": kelompok.name})
    s.delete(kelompok)
