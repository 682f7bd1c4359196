"""
Student lifecycle permissions (archive, transfer, soft/hard delete).

Superadmins may do everything. Admins may act on students inside their org
hierarchy. Teachers need an explicit flag on their profile (set by an admin)
and the student must still be inside their hierarchy.
"""
from __future__ import annotations

from typing import Any

from app.absensi.access import is_admin_daerah, is_admin_desa, is_admin_kelompok, is_superadmin, is_teacher
from app.absensi.constants import ROLE_ADMIN


def is_student_in_user_hierarchy(user: Any, student: Any) -> bool:
    if user.daerah_id and user.daerah_id != student.daerah_id:
        return False
    if user.desa_id and user.desa_id != student.desa_id:
        return False
    if user.kelompok_id and user.kelompok_id != student.kelompok_id:
        return False
    return True


def _flag(user: Any, name: str) -> bool:
    return bool((getattr(user, "permissions", None) or {}).get(name))


def _can(user: Any, student: Any, flag: str) -> bool:
    if not user or not student:
        return False
    if is_superadmin(user):
        return True
    if user.role == ROLE_ADMIN:
        return is_student_in_user_hierarchy(user, student)
    if is_teacher(user):
        return _flag(user, flag) and is_student_in_user_hierarchy(user, student)
    return False


def can_archive_student(user: Any, student: Any) -> bool:
    return _can(user, student, "can_archive_students")


def can_transfer_student(user: Any, student: Any) -> bool:
    return _can(user, student, "can_transfer_students")


def can_soft_delete_student(user: Any, student: Any) -> bool:
    return _can(user, student, "can_soft_delete_students")


def can_hard_delete_student(user: Any, student: Any) -> bool:
    """Only superadmins, and only once the student has been soft deleted."""
    if not user or not student:
        return False
    return is_superadmin(user) and student.deleted_at is not None


def can_request_transfer(user: Any, student: Any) -> bool:
    return can_transfer_student(user, student)


def get_transferable_daerah_ids(user: Any, all_daerah_ids: list[int]) -> list[int]:
    if not user:
        return []
    if is_superadmin(user):
        return list(all_daerah_ids)
    if user.role == ROLE_ADMIN and user.daerah_id:
        return [i for i in all_daerah_ids if i == user.daerah_id]
    return []


def get_transferable_desa_ids(user: Any, target_daerah_id: int, all_desa_ids: list[int]) -> list[int]:
    if not user:
        return []
    if is_superadmin(user):
        return list(all_desa_ids)
    if user.role == ROLE_ADMIN and user.daerah_id == target_daerah_id and not user.desa_id:
        return list(all_desa_ids)
    if user.role == ROLE_ADMIN and user.desa_id:
        return [i for i in all_desa_ids if i == user.desa_id]
    return []


def get_transferable_kelompok_ids(user: Any, target_desa_id: int, all_kelompok_ids: list[int]) -> list[int]:
    if not user:
        return []
    if is_superadmin(user):
        return list(all_kelompok_ids)
    if user.role == ROLE_ADMIN and user.daerah_id and not user.desa_id:
        return list(all_kelompok_ids)
    if user.role == ROLE_ADMIN and user.desa_id == target_desa_id and not user.kelompok_id:
        return list(all_kelompok_ids)
    if user.role == ROLE_ADMIN and user.kelompok_id:
        return [i for i in all_kelompok_ids if i == user.kelompok_id]
    return []


def destination_in_scope(user: Any, request: Any) -> bool:
    """Whether the transfer destination lies inside the user's own org scope."""
    if is_superadmin(user):
        return True
    if is_admin_kelompok(user) or (is_teacher(user) and user.kelompok_id):
        return request.to_kelompok_id == user.kelompok_id
    if is_admin_desa(user) or (is_teacher(user) and user.desa_id):
        return request.to_desa_id == user.desa_id
    if is_admin_daerah(user) or (is_teacher(user) and user.daerah_id):
        return request.to_daerah_id == user.daerah_id
    return False


def needs_approval(user: Any, request: Any) -> bool:
    """Transfers leaving the requester's own scope wait for the destination's admin."""
    return not destination_in_scope(user, request)


def can_review_transfer_request(user: Any, request: Any) -> bool:
    if not user or not request:
        return False
    if is_superadmin(user):
        return True
    if user.role != ROLE_ADMIN:
        return False
    return destination_in_scope(user, request)
