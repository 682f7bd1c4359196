from __future__ import annotations

from datetime import datetime
from typing import TYPE_CHECKING

from app.absensi.access import (
    can_access_feature,
    is_admin_daerah,
    is_admin_desa,
    is_admin_kelompok,
    org_matches,
    users_in_scope_filter,
)
from app.absensi.audit import record_event
from app.absensi.constants import MEETING_FORM_SETTING_KEYS, ROLE_TEACHER, TEACHER_PERMISSION_FLAGS
from app.absensi.errors import AccessDenied, NotFound, ServiceError
from app.absensi.models import Role, User
from app.absensi.security import hash_password, password_errors
from app.absensi.utils import parse_int

if TYPE_CHECKING:
    from sqlalchemy.orm import Session


def validate_teacher_payload(payload: dict, *, is_update: bool = False) -> list[str]:
    """Validate teacher create/update payload. Returns list of errors (first failure first)."""
    errors = []
    if not (payload.get("username") or "").strip():
        errors.append("Username harus diisi")
    if not (payload.get("full_name") or "").strip():
        errors.append("Nama lengkap harus diisi")
    if not (payload.get("email") or "").strip():
        errors.append("Email harus diisi")
    errors.extend(password_errors(payload.get("password"), required=not is_update))
    if not payload.get("daerah_id"):
        errors.append("Daerah harus dipilih")
    if payload.get("kelompok_id") and not payload.get("desa_id"):
        errors.append("Desa harus dipilih untuk guru dengan kelompok")
    return errors


def _org_ids(payload: dict) -> tuple[int | None, int | None, int | None]:
    return (
        parse_int(payload.get("daerah_id")),
        parse_int(payload.get("desa_id")),
        parse_int(payload.get("kelompok_id")),
    )


def _check_org(s: "Session", user: User, daerah_id: int | None, desa_id: int | None, kelompok_id: int | None) -> None:
    from app.absensi.modules.organization.models import Desa, Kelompok

    if desa_id:
        desa = s.get(Desa, desa_id)
        if not desa or desa.daerah_id != daerah_id:
            raise ServiceError("Desa tidak berada dalam daerah yang dipilih")
    if kelompok_id:
        kelompok = s.get(Kelompok, kelompok_id)
        if not kelompok or kelompok.desa_id != desa_id:
            raise ServiceError("Kelompok tidak berada dalam desa yang dipilih")
    if not org_matches(user, daerah_id, desa_id, kelompok_id):
        raise AccessDenied("Anda tidak memiliki akses ke organisasi ini")


def _ensure_unique(s: "Session", username: str, email: str, exclude_id: int | None = None) -> None:
    q = s.query(User).filter(User.username == username)
    if exclude_id is not None:
        q = q.filter(User.id != exclude_id)
    if q.first():
        raise ServiceError("Username sudah digunakan")
    q = s.query(User).filter(User.email == email)
    if exclude_id is not None:
        q = q.filter(User.id != exclude_id)
    if q.first():
        raise ServiceError("Email sudah digunakan")


def _require_teacher_access(user: User, teacher: User) -> None:
    if teacher.role != ROLE_TEACHER:
        raise NotFound("Guru tidak ditemukan")
    if not org_matches(user, teacher.daerah_id, teacher.desa_id, teacher.kelompok_id):
        raise AccessDenied("Anda tidak memiliki akses ke guru ini")


def list_teachers(s: "Session", user: User) -> list[User]:
    q = s.query(User).join(User.roles).filter(Role.key == ROLE_TEACHER)
    q = users_in_scope_filter(q, user)
    return q.order_by(User.full_name.asc()).all()


def create_teacher(s: "Session", payload: dict, user: User) -> User:
    username = (payload.get("username") or "").strip().lower()
    email = (payload.get("email") or "").strip().lower()
    daerah_id, desa_id, kelompok_id = _org_ids(payload)
    _check_org(s, user, daerah_id, desa_id, kelompok_id)
    _ensure_unique(s, username, email)

    role = s.query(Role).filter(Role.key == ROLE_TEACHER).one_or_none()
    if not role:
        raise ServiceError("Role guru belum disiapkan; jalankan scripts/init_db.py")

    now = datetime.utcnow()
    teacher = User(
        username=username,
        email=email,
        full_name=(payload.get("full_name") or "").strip(),
        password_hash=hash_password(payload.get("password") or ""),
        is_active=True,
        daerah_id=daerah_id,
        desa_id=desa_id,
        kelompok_id=kelompok_id,
        permissions={},
        created_at=now,
        updated_at=now,
    )
    teacher.roles.append(role)
    s.add(teacher)
    s.flush()

    record_event(
        s,
        actor=user,
        action="teacher.create",
        entity_type="User",
        entity_id=str(teacher.id),
        metadata={"username": teacher.username, "daerah_id": daerah_id, "desa_id": desa_id, "kelompok_id": kelompok_id},
    )
    return teacher


def update_teacher(s: "Session", teacher: User, payload: dict, user: User) -> User:
    _require_teacher_access(user, teacher)
    username = (payload.get("username") or "").strip().lower()
    email = (payload.get("email") or "").strip().lower()
    daerah_id, desa_id, kelompok_id = _org_ids(payload)
    _check_org(s, user, daerah_id, desa_id, kelompok_id)
    _ensure_unique(s, username, email, exclude_id=teacher.id)

    changes = {}
    for field, value in (
        ("username", username),
        ("email", email),
        ("full_name", (payload.get("full_name") or "").strip()),
        ("daerah_id", daerah_id),
        ("desa_id", desa_id),
        ("kelompok_id", kelompok_id),
    ):
        if getattr(teacher, field) != value:
            changes[field] = {"old": getattr(teacher, field), "new": value}
            setattr(teacher, field, value)

    if payload.get("password"):
        teacher.password_hash = hash_password(payload["password"])
        changes["password"] = "changed"

    teacher.updated_at = datetime.utcnow()
    record_event(
        s,
        actor=user,
        action="teacher.edit",
        entity_type="User",
        entity_id=str(teacher.id),
        metadata={"username": teacher.username, "changes": changes},
    )
    return teacher


def reset_teacher_password(s: "Session", teacher: User, new_password: str, user: User) -> None:
    _require_teacher_access(user, teacher)
    errors = password_errors(new_password)
    if errors:
        raise ServiceError(errors[0])
    teacher.password_hash = hash_password(new_password)
    teacher.updated_at = datetime.utcnow()
    record_event(s, actor=user, action="teacher.reset_password", entity_type="User", entity_id=str(teacher.id))


def delete_teacher(s: "Session", teacher: User, user: User) -> None:
    """Delete the account; class links go with it and meetings keep a null teacher."""
    _require_teacher_access(user, teacher)
    record_event(
        s,
        actor=user,
        action="teacher.delete",
        entity_type="User",
        entity_id=str(teacher.id),
        metadata={"username": teacher.username, "class_ids": teacher.class_ids},
    )
    teacher.classes.clear()
    teacher.roles.clear()
    s.flush()
    s.delete(teacher)


def update_teacher_classes(s: "Session", teacher: User, class_ids: list[int], user: User) -> User:
    """Replace every class assignment of a teacher, after checking the classes are in the admin's scope."""
    from app.absensi.modules.classes.models import Class

    if not can_access_feature(user, "users"):
        raise AccessDenied("Anda tidak memiliki akses untuk mengubah kelas guru")
    _require_teacher_access(user, teacher)

    classes = s.query(Class).filter(Class.id.in_(class_ids)).all() if class_ids else []
    if len(classes) != len(set(class_ids)):
        raise NotFound("Kelas tidak ditemukan")

    if is_admin_desa(user) and any(c.desa_id != user.desa_id for c in classes):
        raise AccessDenied("Beberapa kelas tidak berada dalam desa Anda")
    if is_admin_daerah(user) and any(c.daerah_id != user.daerah_id for c in classes):
        raise AccessDenied("Beberapa kelas tidak berada dalam daerah Anda")
    if is_admin_kelompok(user):
        removed = [c for c in teacher.classes if c.id not in class_ids]
        if any(c.kelompok_id != user.kelompok_id for c in classes + removed):
            raise AccessDenied("Anda hanya dapat menambahkan atau menghapus kelas dari kelompok Anda sendiri")

    old_ids = teacher.class_ids
    teacher.classes = classes
    teacher.updated_at = datetime.utcnow()
    s.flush()

    record_event(
        s,
        actor=user,
        action="teacher.classes",
        entity_type="User",
        entity_id=str(teacher.id),
        metadata={"old": old_ids, "new": teacher.class_ids},
    )
    return teacher


def update_teacher_permissions(s: "Session", teacher: User, flags: dict, user: User) -> User:
    _require_teacher_access(user, teacher)
    new = {key: bool(flags.get(key)) for key in TEACHER_PERMISSION_FLAGS}
    old = dict(teacher.permissions or {})
    # Reassign so the JSON column is flagged dirty.
    teacher.permissions = new
    teacher.updated_at = datetime.utcnow()
    record_event(
        s,
        actor=user,
        action="teacher.permissions",
        entity_type="User",
        entity_id=str(teacher.id),
        metadata={"old": old, "new": new},
    )
    return teacher


def get_meeting_form_settings(user: User) -> dict[str, bool]:
    saved = user.meeting_form_settings or {}
    return {key: bool(saved.get(key, True)) for key in MEETING_FORM_SETTING_KEYS}


def update_meeting_form_settings(s: "Session", target: User, settings: dict, user: User) -> dict[str, bool]:
    if target.id != user.id:
        _require_teacher_access(user, target)
    new = {key: bool(settings.get(key)) for key in MEETING_FORM_SETTING_KEYS}
    target.meeting_form_settings = new
    target.updated_at = datetime.utcnow()
    record_event(s, actor=user, action="user.meeting_form_settings", entity_type="User", entity_id=str(target.id), metadata=new)
    return new
