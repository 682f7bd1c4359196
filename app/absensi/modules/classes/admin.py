from __future__ import annotations

from flask import Blueprint, abort, flash, redirect, render_template, request, url_for

from app.absensi.access import is_superadmin
from app.absensi.db import db_session
from app.absensi.errors import format_error
from app.absensi.modules.classes.models import Class, ClassMaster
from app.absensi.modules.classes.service import (
    create_class,
    create_class_master,
    delete_class,
    delete_class_master,
    list_categories,
    list_class_masters,
    list_classes,
    update_class,
    update_class_master,
    validate_class_master_payload,
    validate_class_payload,
)
from app.absensi.modules.classes.utils import display_class_names, is_caberawit_class, is_teacher_class
from app.absensi.modules.organization.service import list_kelompok
from app.absensi.rbac import require_permission
from app.absensi.utils import current_user, parse_int

bp = Blueprint("classes", __name__)


# ---------- Classes ----------
@bp.get("/kelas")
@require_permission("classes.view")
def classes_list():
    s = db_session()
    u = current_user()
    kelompok_id = parse_int(request.args.get("kelompok_id"))
    classes = list_classes(s, u, kelompok_id=kelompok_id, include_inactive=request.args.get("all") == "1")
    return render_template(
        "admin/classes/list.html",
        classes=classes,
        labels=display_class_names(classes),
        kelompok=list_kelompok(s, u),
        kelompok_id=kelompok_id,
        masters=list_class_masters(s),
        is_caberawit=is_caberawit_class,
        is_teacher_class=is_teacher_class,
    )


@bp.post("/kelas/new")
@require_permission("classes.manage")
def class_new_post():
    s = db_session()
    payload = {
        "name": request.form.get("name"),
        "kelompok_id": parse_int(request.form.get("kelompok_id")) or parse_int(current_user().kelompok_id),
        "class_master_id": parse_int(request.form.get("class_master_id")),
    }
    errors = validate_class_payload(payload)
    if errors:
        for e in errors:
            flash(e, "danger")
        return redirect(url_for("classes.classes_list"))
    try:
        create_class(s, payload, current_user())
        s.commit()
        flash("Kelas ditambahkan.", "success")
    except Exception as e:
        s.rollback()
        flash(format_error(e, "menyimpan kelas"), "danger")
    return redirect(url_for("classes.classes_list"))


@bp.post("/kelas/<int:class_id>/edit")
@require_permission("classes.manage")
def class_edit_post(class_id: int):
    s = db_session()
    cls = s.get(Class, class_id)
    if not cls:
        abort(404)
    payload = {
        "name": request.form.get("name"),
        "is_active": request.form.get("is_active") == "1",
    }
    try:
        update_class(s, cls, payload, current_user())
        s.commit()
        flash("Kelas diperbarui.", "success")
    except Exception as e:
        s.rollback()
        flash(format_error(e, "menyimpan kelas"), "danger")
    return redirect(url_for("classes.classes_list"))


@bp.post("/kelas/<int:class_id>/delete")
@require_permission("classes.manage")
def class_delete_post(class_id: int):
    s = db_session()
    cls = s.get(Class, class_id)
    if not cls:
        abort(404)
    try:
        delete_class(s, cls, current_user())
        s.commit()
        flash("Kelas dihapus.", "success")
    except Exception as e:
        s.rollback()
        flash(format_error(e, "menghapus kelas"), "danger")
    return redirect(url_for("classes.classes_list"))


# ---------- Class masters ----------
@bp.get("/kelas/master")
@require_permission("classes.view")
def masters_list():
    s = db_session()
    return render_template(
        "admin/classes/masters.html",
        masters=list_class_masters(s),
        categories=list_categories(s),
        can_manage=is_superadmin(current_user()),
    )


def _master_payload() -> dict:
    return {
        "name": request.form.get("name"),
        "description": request.form.get("description"),
        "sort_order": request.form.get("sort_order"),
        "category_id": request.form.get("category_id"),
    }


@bp.post("/kelas/master/new")
@require_permission("class_masters.manage")
def master_new_post():
    s = db_session()
    payload = _master_payload()
    errors = validate_class_master_payload(payload)
    if errors:
        for e in errors:
            flash(e, "danger")
        return redirect(url_for("classes.masters_list"))
    try:
        create_class_master(s, payload, current_user())
        s.commit()
        flash("Kelas master ditambahkan.", "success")
    except Exception as e:
        s.rollback()
        flash(format_error(e, "menyimpan kelas master"), "danger")
    return redirect(url_for("classes.masters_list"))


@bp.post("/kelas/master/<int:master_id>/edit")
@require_permission("class_masters.manage")
def master_edit_post(master_id: int):
    s = db_session()
    master = s.get(ClassMaster, master_id)
    if not master:
        abort(404)
    payload = _master_payload()
    errors = validate_class_master_payload(payload)
    if errors:
        for e in errors:
            flash(e, "danger")
        return redirect(url_for("classes.masters_list"))
    try:
        update_class_master(s, master, payload, current_user())
        s.commit()
        flash("Kelas master diperbarui.", "success")
    except Exception as e:
        s.rollback()
        flash(format_error(e, "menyimpan kelas master"), "danger")
    return redirect(url_for("classes.masters_list"))


@bp.post("/kelas/master/<int:master_id>/delete")
@require_permission("class_masters.manage")
def master_delete_post(master_id: int):
    s = db_session()
    master = s.get(ClassMaster, master_id)
    if not master:
        abort(404)
    delete_class_master(s, master, current_user())
    s.commit()
    flash("Kelas master dihapus.", "success")
    return redirect(url_for("classes.masters_list"))
