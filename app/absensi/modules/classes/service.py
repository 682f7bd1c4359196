from __future__ import annotations

from datetime import datetime
from typing import TYPE_CHECKING

from app.absensi.access import can_access_feature, class_in_scope, is_superadmin, kelompok_in_scope, scope_class_query
from app.absensi.audit import record_event
from app.absensi.errors import AccessDenied, NotFound, ServiceError
from app.absensi.modules.classes.models import Class, ClassMaster, ClassMasterCategory
from app.absensi.utils import parse_int

if TYPE_CHECKING:
    from sqlalchemy.orm import Session
    from app.absensi.models import User


# ---------- Class masters ----------

def _require_master_admin(user: "User") -> None:
    if not is_superadmin(user):
        raise AccessDenied("Hanya superadmin yang dapat mengelola kelas master")


def validate_class_master_payload(payload: dict) -> list[str]:
    errors = []
    if not (payload.get("name") or "").strip():
        errors.append("Nama kelas harus diisi")
    raw_order = payload.get("sort_order")
    if raw_order not in (None, "") and parse_int(raw_order) is None:
        errors.append("Urutan harus berupa angka")
    return errors


def list_class_masters(s: "Session") -> list[ClassMaster]:
    return s.query(ClassMaster).order_by(ClassMaster.sort_order.asc(), ClassMaster.name.asc()).all()


def list_categories(s: "Session") -> list[ClassMasterCategory]:
    return s.query(ClassMasterCategory).order_by(ClassMasterCategory.name.asc()).all()


# code -> (name, is_sambung_capable)
DEFAULT_CATEGORIES: dict[str, tuple[str, bool]] = {
    "CABERAWIT": ("Caberawit", False),
    "PAUD": ("PAUD", False),
    "REMAJA": ("Remaja", True),
    "PENGAJAR": ("Pengajar", True),
}


def ensure_default_categories(s: "Session") -> list[ClassMasterCategory]:
    """Idempotently create the built-in categories; existing rows are left untouched."""
    have = {c.code: c for c in s.query(ClassMasterCategory).all()}
    for code, (name, sambung) in DEFAULT_CATEGORIES.items():
        if code not in have:
            have[code] = ClassMasterCategory(code=code, name=name, is_sambung_capable=sambung)
            s.add(have[code])
    s.flush()
    return list(have.values())


def _ensure_unique_master_name(s: "Session", name: str, exclude_id: int | None = None) -> None:
    q = s.query(ClassMaster.id).filter(ClassMaster.name == name)
    if exclude_id is not None:
        q = q.filter(ClassMaster.id != exclude_id)
    if q.first():
        raise ServiceError("Nama kelas sudah ada")


def create_class_master(s: "Session", payload: dict, user: "User") -> ClassMaster:
    _require_master_admin(user)
    name = (payload.get("name") or "").strip()
    _ensure_unique_master_name(s, name)
    now = datetime.utcnow()
    master = ClassMaster(
        name=name,
        description=(payload.get("description") or "").strip() or None,
        sort_order=parse_int(payload.get("sort_order")) or 0,
        category_id=parse_int(payload.get("category_id")),
        created_at=now,
        updated_at=now,
    )
    s.add(master)
    s.flush()
    record_event(
        s,
        actor=user,
        action="class_master.create",
        entity_type="ClassMaster",
        entity_id=str(master.id),
        metadata={"name": master.name, "category_id": master.category_id},
    )
    return master


def update_class_master(s: "Session", master: ClassMaster, payload: dict, user: "User") -> ClassMaster:
    _require_master_admin(user)
    changes = {}

    new_name = (payload.get("name") or "").strip()
    if new_name and new_name != master.name:
        _ensure_unique_master_name(s, new_name, exclude_id=master.id)
        changes["name"] = {"old": master.name, "new": new_name}
        master.name = new_name

    new_desc = (payload.get("description") or "").strip() or None
    if new_desc != master.description:
        changes["description"] = {"old": master.description, "new": new_desc}
        master.description = new_desc

    new_order = parse_int(payload.get("sort_order"))
    if new_order is not None and new_order != master.sort_order:
        changes["sort_order"] = {"old": master.sort_order, "new": new_order}
        master.sort_order = new_order

    new_cat = parse_int(payload.get("category_id"))
    if new_cat != master.category_id:
        changes["category_id"] = {"old": master.category_id, "new": new_cat}
        master.category_id = new_cat

    master.updated_at = datetime.utcnow()
    record_event(
        s,
        actor=user,
        action="class_master.edit",
        entity_type="ClassMaster",
        entity_id=str(master.id),
        metadata={"name": master.name, "changes": changes},
    )
    return master


def delete_class_master(s: "Session", master: ClassMaster, user: "User") -> None:
    _require_master_admin(user)
    record_event(s, actor=user, action="class_master.delete", entity_type="ClassMaster", entity_id=str(master.id), metadata={"name": master.name})
    s.delete(master)


# ---------- Classes ----------

def _require_manage_classes(user: "User") -> None:
    if not can_access_feature(user, "manage_classes"):
        raise AccessDenied("Tidak memiliki izin untuk mengelola kelas")


def validate_class_payload(payload: dict) -> list[str]:
    errors = []
    if not payload.get("class_master_id") and not (payload.get("name") or "").strip():
        errors.append("Nama kelas harus diisi")
    if not payload.get("kelompok_id"):
        errors.append("Kelompok harus dipilih")
    return errors


def list_classes(s: "Session", user: "User", *, kelompok_id: int | None = None, include_inactive: bool = False) -> list[Class]:
    q = scope_class_query(s.query(Class), user)
    if kelompok_id:
        q = q.filter(Class.kelompok_id == kelompok_id)
    if not include_inactive:
        q = q.filter(Class.is_active.is_(True))
    return q.order_by(Class.name.asc(), Class.kelompok_id.asc()).all()


def create_class(s: "Session", payload: dict, user: "User") -> Class:
    """
    Create a class in a kelompok, either from a class master (the custom name
    is optional and defaults to the master's name) or as a custom class.
    """
    from app.absensi.modules.organization.models import Kelompok

    _require_manage_classes(user)
    kelompok = s.get(Kelompok, parse_int(payload.get("kelompok_id")) or 0)
    if not kelompok:
        raise NotFound("Kelompok tidak ditemukan")
    if not kelompok_in_scope(user, kelompok):
        raise AccessDenied("Kelompok tidak berada dalam organisasi Anda")

    master = None
    master_id = parse_int(payload.get("class_master_id"))
    if master_id:
        master = s.get(ClassMaster, master_id)
        if not master:
            raise NotFound("Kelas master tidak ditemukan")

    name = (payload.get("name") or "").strip() or (master.name if master else "")
    if not name:
        raise ServiceError("Nama kelas harus diisi")

    now = datetime.utcnow()
    cls = Class(
        name=name,
        kelompok_id=kelompok.id,
        class_master_id=master.id if master else None,
        is_active=True,
        created_at=now,
        updated_at=now,
    )
    s.add(cls)
    s.flush()
    record_event(
        s,
        actor=user,
        action="class.create",
        entity_type="Class",
        entity_id=str(cls.id),
        metadata={"name": cls.name, "kelompok_id": cls.kelompok_id, "class_master_id": cls.class_master_id},
    )
    return cls


def update_class(s: "Session", cls: Class, payload: dict, user: "User") -> Class:
    _require_manage_classes(user)
    if not class_in_scope(user, cls):
        raise AccessDenied("Kelas tidak berada dalam organisasi Anda")
    changes = {}

    new_name = (payload.get("name") or "").strip()
    if new_name and new_name != cls.name:
        changes["name"] = {"old": cls.name, "new": new_name}
        cls.name = new_name

    if "class_master_id" in payload:
        new_master = parse_int(payload.get("class_master_id"))
        if new_master != cls.class_master_id:
            changes["class_master_id"] = {"old": cls.class_master_id, "new": new_master}
            cls.class_master_id = new_master

    if "is_active" in payload:
        new_active = bool(payload.get("is_active"))
        if new_active != cls.is_active:
            changes["is_active"] = {"old": cls.is_active, "new": new_active}
            cls.is_active = new_active

    cls.updated_at = datetime.utcnow()
    record_event(
        s,
        actor=user,
        action="class.edit",
        entity_type="Class",
        entity_id=str(cls.id),
        metadata={"name": cls.name, "changes": changes},
    )
    return cls


def delete_class(s: "Session", cls: Class, user: "User") -> None:
    from app.absensi.modules.meetings.models import Meeting

    _require_manage_classes(user)
    if not class_in_scope(user, cls):
        raise AccessDenied("Kelas tidak berada dalam organisasi Anda")
    # class_ids is a JSON list; multi-class meetings are matched in Python.
    has_meetings = s.query(Meeting.id).filter(Meeting.class_id == cls.id).first() is not None or any(
        cls.id in (ids or []) for (ids,) in s.query(Meeting.class_ids)
    )
    if has_meetings:
        raise ServiceError("Kelas masih memiliki pertemuan; nonaktifkan kelas sebagai gantinya")
    record_event(s, actor=user, action="class.delete", entity_type="Class", entity_id=str(cls.id), metadata={"name": cls.name})
    s.delete(cls)
