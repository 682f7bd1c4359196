from __future__ import annotations

from flask import Blueprint, abort, flash, redirect, render_template, request, url_for

from app.absensi.access import get_auto_filled_org_values, get_required_org_fields
from app.absensi.constants import TEACHER_PERMISSION_FLAGS
from app.absensi.db import db_session
from app.absensi.errors import ServiceError, format_error
from app.absensi.models import User
from app.absensi.modules.classes.service import list_classes
from app.absensi.modules.classes.utils import display_class_names
from app.absensi.modules.organization.service import get_org_tree
from app.absensi.modules.teachers.service import (
    create_teacher,
    delete_teacher,
    get_meeting_form_settings,
    list_teachers,
    reset_teacher_password,
    update_meeting_form_settings,
    update_teacher,
    update_teacher_classes,
    update_teacher_permissions,
    validate_teacher_payload,
)
from app.absensi.rbac import require_permission
from app.absensi.utils import current_user, parse_id_list

bp = Blueprint("teachers", __name__)


def _payload_from_form() -> dict:
    u = current_user()
    auto = get_auto_filled_org_values(u)
    return {
        "username": request.form.get("username"),
        "full_name": request.form.get("full_name"),
        "email": request.form.get("email"),
        "password": request.form.get("password"),
        "daerah_id": request.form.get("daerah_id") or auto.get("daerah_id"),
        "desa_id": request.form.get("desa_id") or auto.get("desa_id"),
        "kelompok_id": request.form.get("kelompok_id") or auto.get("kelompok_id"),
    }


def _get_teacher(teacher_id: int) -> User:
    teacher = db_session().get(User, teacher_id)
    if not teacher or teacher.role != "teacher":
        abort(404)
    return teacher


# ---------- List ----------
@bp.get("/guru")
@require_permission("teachers.view")
def teachers_list():
    s = db_session()
    u = current_user()
    teachers = list_teachers(s, u)
    return render_template("admin/teachers/list.html", teachers=teachers)


# ---------- New ----------
@bp.get("/guru/new")
@require_permission("teachers.manage")
def teacher_new_get():
    s = db_session()
    u = current_user()
    return render_template(
        "admin/teachers/new.html",
        org_tree=get_org_tree(s, u),
        required=get_required_org_fields(u),
        auto=get_auto_filled_org_values(u),
    )


@bp.post("/guru/new")
@require_permission("teachers.manage")
def teacher_new_post():
    s = db_session()
    payload = _payload_from_form()
    errors = validate_teacher_payload(payload)
    if errors:
        for e in errors:
            flash(e, "danger")
        return redirect(url_for("teachers.teacher_new_get"))
    try:
        teacher = create_teacher(s, payload, current_user())
        s.commit()
    except Exception as e:
        s.rollback()
        flash(format_error(e, "menyimpan guru"), "danger")
        return redirect(url_for("teachers.teacher_new_get"))
    flash("Guru ditambahkan.", "success")
    return redirect(url_for("teachers.teacher_detail", teacher_id=teacher.id))


# ---------- Detail / edit ----------
@bp.get("/guru/<int:teacher_id>")
@require_permission("teachers.view")
def teacher_detail(teacher_id: int):
    s = db_session()
    u = current_user()
    teacher = _get_teacher(teacher_id)
    classes = list_classes(s, u)
    return render_template(
        "admin/teachers/detail.html",
        teacher=teacher,
        classes=classes,
        labels=display_class_names(classes),
        org_tree=get_org_tree(s, u),
        permission_flags=TEACHER_PERMISSION_FLAGS,
        form_settings=get_meeting_form_settings(teacher),
    )


@bp.post("/guru/<int:teacher_id>/edit")
@require_permission("teachers.manage")
def teacher_edit_post(teacher_id: int):
    s = db_session()
    teacher = _get_teacher(teacher_id)
    payload = _payload_from_form()
    errors = validate_teacher_payload(payload, is_update=True)
    if errors:
        for e in errors:
            flash(e, "danger")
        return redirect(url_for("teachers.teacher_detail", teacher_id=teacher_id))
    try:
        update_teacher(s, teacher, payload, current_user())
        s.commit()
        flash("Data guru diperbarui.", "success")
    except Exception as e:
        s.rollback()
        flash(format_error(e, "menyimpan guru"), "danger")
    return redirect(url_for("teachers.teacher_detail", teacher_id=teacher_id))


@bp.post("/guru/<int:teacher_id>/reset-password")
@require_permission("teachers.manage")
def teacher_reset_password_post(teacher_id: int):
    s = db_session()
    teacher = _get_teacher(teacher_id)
    try:
        reset_teacher_password(s, teacher, request.form.get("password") or "", current_user())
        s.commit()
        flash("Password guru direset.", "success")
    except ServiceError as e:
        s.rollback()
        flash(str(e), "danger")
    return redirect(url_for("teachers.teacher_detail", teacher_id=teacher_id))


@bp.post("/guru/<int:teacher_id>/delete")
@require_permission("teachers.manage")
def teacher_delete_post(teacher_id: int):
    s = db_session()
    teacher = _get_teacher(teacher_id)
    try:
        delete_teacher(s, teacher, current_user())
        s.commit()
        flash("Guru dihapus.", "success")
    except Exception as e:
        s.rollback()
        flash(format_error(e, "menghapus guru"), "danger")
        return redirect(url_for("teachers.teacher_detail", teacher_id=teacher_id))
    return redirect(url_for("teachers.teachers_list"))


@bp.post("/guru/<int:teacher_id>/kelas")
@require_permission("teachers.manage")
def teacher_classes_post(teacher_id: int):
    s = db_session()
    teacher = _get_teacher(teacher_id)
    try:
        update_teacher_classes(s, teacher, parse_id_list(request.form.getlist("class_ids")), current_user())
        s.commit()
        flash("Kelas guru diperbarui.", "success")
    except Exception as e:
        s.rollback()
        flash(format_error(e, "mengupdate kelas guru"), "danger")
    return redirect(url_for("teachers.teacher_detail", teacher_id=teacher_id))


@bp.post("/guru/<int:teacher_id>/permissions")
@require_permission("teachers.manage")
def teacher_permissions_post(teacher_id: int):
    s = db_session()
    teacher = _get_teacher(teacher_id)
    flags = {key: request.form.get(key) == "1" for key in TEACHER_PERMISSION_FLAGS}
    try:
        update_teacher_permissions(s, teacher, flags, current_user())
        s.commit()
        flash("Hak akses guru disimpan.", "success")
    except ServiceError as e:
        s.rollback()
        flash(str(e), "danger")
    return redirect(url_for("teachers.teacher_detail", teacher_id=teacher_id))


@bp.post("/guru/<int:teacher_id>/form-settings")
@require_permission("teachers.manage")
def teacher_form_settings_post(teacher_id: int):
    s = db_session()
    teacher = _get_teacher(teacher_id)
    try:
        update_meeting_form_settings(s, teacher, {k: v == "1" for k, v in request.form.items()}, current_user())
        s.commit()
        flash("Pengaturan form pertemuan disimpan.", "success")
    except ServiceError as e:
        s.rollback()
        flash(str(e), "danger")
    return redirect(url_for("teachers.teacher_detail", teacher_id=teacher_id))
