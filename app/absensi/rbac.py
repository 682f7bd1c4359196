from collections.abc import Callable
from functools import wraps
from typing import Any

from flask import abort, g, redirect, request, url_for
from sqlalchemy.orm import Session

from app.absensi.models import Permission, Role, User

# key -> display name
PERMISSIONS: dict[str, str] = {
    "admin.view": "Admin: view shell",
    "audit.view": "Audit: view",
    "dashboard.view": "Dashboard: view",
    "organisasi.view": "Organisasi: view",
    "organisasi.manage": "Organisasi: manage",
    "academic_years.view": "Tahun ajaran: view",
    "academic_years.manage": "Tahun ajaran: manage",
    "class_masters.manage": "Kelas master: manage",
    "classes.view": "Kelas: view",
    "classes.manage": "Kelas: manage",
    "teachers.view": "Guru: view",
    "teachers.manage": "Guru: manage",
    "students.view": "Siswa: view",
    "students.manage": "Siswa: manage",
    "transfers.view": "Transfer siswa: view",
    "meetings.view": "Absensi: view meetings",
    "meetings.manage": "Absensi: manage meetings",
    "attendance.record": "Absensi: record attendance",
    "reports.view": "Laporan: view",
    "reports.export": "Laporan: export",
}

_ADMIN_PERMISSIONS = (
    "admin.view",
    "dashboard.view",
    "organisasi.view",
    "organisasi.manage",
    "academic_years.view",
    "classes.view",
    "classes.manage",
    "teachers.view",
    "teachers.manage",
    "students.view",
    "students.manage",
    "transfers.view",
    "meetings.view",
    "meetings.manage",
    "attendance.record",
    "reports.view",
    "reports.export",
)

_TEACHER_PERMISSIONS = (
    "admin.view",
    "students.view",
    "students.manage",
    "transfers.view",
    "meetings.view",
    "meetings.manage",
    "attendance.record",
    "reports.view",
    "reports.export",
)

# role key -> (display name, permission keys)
ROLE_PERMISSIONS: dict[str, tuple[str, tuple[str, ...]]] = {
    "superadmin": ("Superadmin", tuple(PERMISSIONS)),
    "admin": ("Admin", _ADMIN_PERMISSIONS),
    "teacher": ("Guru", _TEACHER_PERMISSIONS),
}


def ensure_roles_and_permissions(s: Session) -> dict[str, Role]:
    """
    Idempotently create every permission and the three profile roles.
    Existing roles gain missing permissions; nothing is removed.
    """
    perms: dict[str, Permission] = {p.key: p for p in s.query(Permission).all()}
    for key, name in PERMISSIONS.items():
        if key not in perms:
            perms[key] = Permission(key=key, name=name)
            s.add(perms[key])

    roles: dict[str, Role] = {}
    for role_key, (role_name, perm_keys) in ROLE_PERMISSIONS.items():
        role = s.query(Role).filter(Role.key == role_key).one_or_none()
        if not role:
            role = Role(key=role_key, name=role_name)
            s.add(role)
        have = {p.key for p in role.permissions}
        for key in perm_keys:
            if key not in have:
                role.permissions.append(perms[key])
        roles[role_key] = role
    s.flush()
    return roles


def user_has_permission(user: User | None, permission_key: str) -> bool:
    if not user or not user.is_active:
        return False
    for role in user.roles:
        for perm in role.permissions:
            if perm.key == permission_key:
                return True
    return False


def require_permission(permission_key: str) -> Callable[[Callable[..., Any]], Callable[..., Any]]:
    def decorator(fn: Callable[..., Any]) -> Callable[..., Any]:
        @wraps(fn)
        def wrapped(*args: Any, **kwargs: Any):
            user: User | None = getattr(g, "current_user", None)
            # Unauthenticated → redirect to login.
            if not user or not user.is_active:
                nxt = request.full_path or request.path
                # Avoid trailing '?' from full_path when there is no query string.
                if nxt.endswith("?"):
                    nxt = nxt[:-1]
                return redirect(url_for("auth.login_get", next=nxt))
            # Authenticated but unauthorized → 403
            if not user_has_permission(user, permission_key):
                g.missing_permission = permission_key
                abort(403)
            return fn(*args, **kwargs)

        return wrapped

    return decorator
