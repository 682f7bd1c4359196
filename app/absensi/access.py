"""
Organisational scope and role detection.

A user's scope is defined by role plus the most specific org id on the
profile: admin/teacher with only daerah_id act on the whole daerah, with
desa_id on one desa, with kelompok_id on one kelompok. Superadmins are
unscoped.

The predicates take any object with `role`, `daerah_id`, `desa_id` and
`kelompok_id` attributes so they can be used on User rows and in tests alike.
"""
from __future__ import annotations

from dataclasses import dataclass
from typing import Any

from sqlalchemy import select
from sqlalchemy.orm import Query, Session

from app.absensi.constants import ROLE_ADMIN, ROLE_SUPERADMIN, ROLE_TEACHER


@dataclass(frozen=True)
class DataFilter:
    """The single org constraint applied to every scoped query (only one field is set)."""

    daerah_id: int | None = None
    desa_id: int | None = None
    kelompok_id: int | None = None


def is_superadmin(user: Any) -> bool:
    return getattr(user, "role", None) == ROLE_SUPERADMIN


def is_admin(user: Any) -> bool:
    """Admin at any level, superadmin included."""
    return getattr(user, "role", None) in (ROLE_ADMIN, ROLE_SUPERADMIN)


def is_teacher(user: Any) -> bool:
    return getattr(user, "role", None) == ROLE_TEACHER


def is_admin_daerah(user: Any) -> bool:
    return user.role == ROLE_ADMIN and bool(user.daerah_id) and not user.desa_id


def is_admin_desa(user: Any) -> bool:
    return user.role == ROLE_ADMIN and bool(user.desa_id) and not user.kelompok_id


def is_admin_kelompok(user: Any) -> bool:
    return user.role == ROLE_ADMIN and bool(user.kelompok_id)


def is_teacher_kelompok(user: Any) -> bool:
    return user.role == ROLE_TEACHER and bool(user.kelompok_id)


def is_teacher_desa(user: Any) -> bool:
    return user.role == ROLE_TEACHER and bool(user.desa_id) and not user.kelompok_id


def is_teacher_daerah(user: Any) -> bool:
    return user.role == ROLE_TEACHER and bool(user.daerah_id) and not user.desa_id and not user.kelompok_id


def get_teacher_scope(user: Any) -> str | None:
    if not is_teacher(user):
        return None
    if is_teacher_kelompok(user):
        return "kelompok"
    if is_teacher_desa(user):
        return "desa"
    if is_teacher_daerah(user):
        return "daerah"
    return None


def can_teacher_access_student(user: Any, student: Any) -> bool:
    scope = get_teacher_scope(user)
    if scope == "daerah":
        return student.daerah_id == user.daerah_id
    if scope == "desa":
        return student.desa_id == user.desa_id
    if scope == "kelompok":
        return student.kelompok_id == user.kelompok_id
    return False


def get_user_level_label(user: Any) -> str:
    if is_superadmin(user):
        return "Superadmin"
    if is_admin_kelompok(user):
        return "Admin Kelompok"
    if is_admin_desa(user):
        return "Admin Desa"
    if is_admin_daerah(user):
        return "Admin Daerah"
    scope = get_teacher_scope(user)
    if scope:
        return f"Guru {scope.capitalize()}"
    if is_teacher(user):
        return "Guru"
    return "Pengguna"


# ---------- Feature & form visibility ----------

_ADMIN_FEATURES = frozenset({"dashboard", "organisasi", "users", "manage_classes", "laporan", "absensi"})
_TEACHER_FEATURES = frozenset({"users", "absensi", "laporan"})


def can_access_feature(user: Any, feature: str) -> bool:
    role = getattr(user, "role", None)
    if role == ROLE_SUPERADMIN:
        return True
    if role == ROLE_ADMIN:
        return feature in _ADMIN_FEATURES
    if role == ROLE_TEACHER:
        return feature in _TEACHER_FEATURES
    return False


def should_show_daerah_filter(user: Any) -> bool:
    return is_superadmin(user)


def should_show_desa_filter(user: Any) -> bool:
    return is_superadmin(user) or is_admin_daerah(user)


def should_show_kelompok_filter(user: Any) -> bool:
    return is_superadmin(user) or is_admin_daerah(user) or is_admin_desa(user)


def should_show_kelas_filter(user: Any, has_multiple_classes: bool = False) -> bool:
    if is_teacher(user):
        return has_multiple_classes
    return is_superadmin(user) or is_admin_daerah(user) or is_admin_desa(user) or is_admin_kelompok(user)


def get_required_org_fields(user: Any) -> dict[str, bool]:
    """Which org fields a create form must ask for (the rest are filled from the profile)."""
    if is_admin_daerah(user):
        return {"daerah": False, "desa": True, "kelompok": True}
    if is_admin_desa(user):
        return {"daerah": False, "desa": False, "kelompok": True}
    if is_admin_kelompok(user) or is_teacher(user):
        return {"daerah": False, "desa": False, "kelompok": False}
    return {"daerah": True, "desa": True, "kelompok": True}


def get_auto_filled_org_values(user: Any) -> dict[str, int]:
    out: dict[str, int] = {}
    for key in ("daerah_id", "desa_id", "kelompok_id"):
        value = getattr(user, key, None)
        if value:
            out[key] = value
    return out


# ---------- Data filter ----------

def get_data_filter(user: Any) -> DataFilter | None:
    """
    None means unrestricted (superadmin). Admins and teachers are restricted
    to their most specific org level. Users without a role get an impossible
    filter so scoped queries return nothing.
    """
    role = getattr(user, "role", None)
    if role == ROLE_SUPERADMIN:
        return None
    if role in (ROLE_ADMIN, ROLE_TEACHER):
        if user.kelompok_id:
            return DataFilter(kelompok_id=user.kelompok_id)
        if user.desa_id:
            return DataFilter(desa_id=user.desa_id)
        if user.daerah_id:
            return DataFilter(daerah_id=user.daerah_id)
    return DataFilter(kelompok_id=-1)


def org_matches(user: Any, daerah_id: int | None, desa_id: int | None, kelompok_id: int | None) -> bool:
    f = get_data_filter(user)
    if f is None:
        return True
    if f.kelompok_id:
        return kelompok_id == f.kelompok_id
    if f.desa_id:
        return desa_id == f.desa_id
    return daerah_id == f.daerah_id


def student_in_scope(user: Any, student: Any) -> bool:
    return org_matches(user, student.daerah_id, student.desa_id, student.kelompok_id)


def kelompok_in_scope(user: Any, kelompok: Any) -> bool:
    return org_matches(user, kelompok.desa.daerah_id, kelompok.desa_id, kelompok.id)


def class_in_scope(user: Any, cls: Any) -> bool:
    return kelompok_in_scope(user, cls.kelompok)


def scope_student_query(q: Query, user: Any) -> Query:
    from app.absensi.modules.students.models import Student

    f = get_data_filter(user)
    if f is None:
        return q
    if f.kelompok_id:
        return q.filter(Student.kelompok_id == f.kelompok_id)
    if f.desa_id:
        return q.filter(Student.desa_id == f.desa_id)
    return q.filter(Student.daerah_id == f.daerah_id)


def scope_kelompok_query(q: Query, user: Any) -> Query:
    from app.absensi.modules.organization.models import Desa, Kelompok

    f = get_data_filter(user)
    if f is None:
        return q
    if f.kelompok_id:
        return q.filter(Kelompok.id == f.kelompok_id)
    if f.desa_id:
        return q.filter(Kelompok.desa_id == f.desa_id)
    sub = select(Desa.id).where(Desa.daerah_id == f.daerah_id)
    return q.filter(Kelompok.desa_id.in_(sub))


def scope_class_query(q: Query, user: Any) -> Query:
    from app.absensi.modules.classes.models import Class
    from app.absensi.modules.organization.models import Desa, Kelompok

    f = get_data_filter(user)
    if f is None:
        return q
    if f.kelompok_id:
        return q.filter(Class.kelompok_id == f.kelompok_id)
    if f.desa_id:
        sub = select(Kelompok.id).where(Kelompok.desa_id == f.desa_id)
        return q.filter(Class.kelompok_id.in_(sub))
    sub = select(Kelompok.id).join(Desa, Kelompok.desa_id == Desa.id).where(Desa.daerah_id == f.daerah_id)
    return q.filter(Class.kelompok_id.in_(sub))


def scoped_class_ids(s: Session, user: Any) -> list[int] | None:
    """Ids of classes the user may see; None for unrestricted."""
    from app.absensi.modules.classes.models import Class

    if get_data_filter(user) is None:
        return None
    return [cid for (cid,) in scope_class_query(s.query(Class.id), user).all()]


def meeting_touches_classes(meeting: Any, class_ids: list[int] | set[int] | None) -> bool:
    if class_ids is None:
        return True
    wanted = set(class_ids)
    return any(cid in wanted for cid in meeting.all_class_ids)


def users_in_scope_filter(q: Query, user: Any) -> Query:
    """Restrict a User query to profiles inside the user's org scope."""
    from app.absensi.models import User

    f = get_data_filter(user)
    if f is None:
        return q
    if f.kelompok_id:
        return q.filter(User.kelompok_id == f.kelompok_id)
    if f.desa_id:
        return q.filter(User.desa_id == f.desa_id)
    return q.filter(User.daerah_id == f.daerah_id)
