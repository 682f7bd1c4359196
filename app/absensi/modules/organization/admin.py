from __future__ import annotations

from flask import Blueprint, abort, flash, redirect, render_template, request, url_for

from app.absensi.access import should_show_daerah_filter, should_show_desa_filter, should_show_kelompok_filter
from app.absensi.db import db_session
from app.absensi.errors import ServiceError, format_error
from app.absensi.modules.organization.models import Daerah, Desa, Kelompok
from app.absensi.modules.organization.service import (
    create_daerah,
    create_desa,
    create_kelompok,
    delete_daerah,
    delete_desa,
    delete_kelompok,
    get_org_tree,
    update_daerah,
    update_desa,
    update_kelompok,
    validate_org_payload,
)
from app.absensi.rbac import require_permission
from app.absensi.utils import current_user, parse_int

bp = Blueprint("organization", __name__)


def _back():
    return redirect(url_for("organization.org_index"))


def _run(fn, *args, success: str, action: str):
    s = db_session()
    try:
        fn(s, *args)
        s.commit()
        flash(success, "success")
    except ServiceError as e:
        s.rollback()
        flash(str(e), "danger")
    except Exception as e:
        s.rollback()
        flash(format_error(e, action), "danger")
    return _back()


@bp.get("/organisasi")
@require_permission("organisasi.view")
def org_index():
    s = db_session()
    u = current_user()
    return render_template(
        "admin/organization/index.html",
        tree=get_org_tree(s, u),
        show_daerah=should_show_daerah_filter(u),
        show_desa=should_show_desa_filter(u),
        show_kelompok=should_show_kelompok_filter(u),
    )


# ---------- Daerah ----------
@bp.post("/organisasi/daerah/new")
@require_permission("organisasi.manage")
def daerah_new_post():
    payload = {"name": request.form.get("name")}
    errors = validate_org_payload(payload)
    if errors:
        for e in errors:
            flash(e, "danger")
        return _back()
    return _run(lambda s: create_daerah(s, payload, current_user()), success="Daerah ditambahkan.", action="menyimpan daerah")


@bp.post("/organisasi/daerah/<int:daerah_id>/edit")
@require_permission("organisasi.manage")
def daerah_edit_post(daerah_id: int):
    daerah = db_session().get(Daerah, daerah_id) or abort(404)
    payload = {"name": request.form.get("name")}
    return _run(lambda s: update_daerah(s, daerah, payload, current_user()), success="Daerah diperbarui.", action="menyimpan daerah")


@bp.post("/organisasi/daerah/<int:daerah_id>/delete")
@require_permission("organisasi.manage")
def daerah_delete_post(daerah_id: int):
    daerah = db_session().get(Daerah, daerah_id) or abort(404)
    return _run(lambda s: delete_daerah(s, daerah, current_user()), success="Daerah dihapus.", action="menghapus daerah")


# ---------- Desa ----------
@bp.post("/organisasi/desa/new")
@require_permission("organisasi.manage")
def desa_new_post():
    payload = {"name": request.form.get("name"), "daerah_id": parse_int(request.form.get("daerah_id"))}
    errors = validate_org_payload(payload, parent_key="daerah_id")
    if errors:
        for e in errors:
            flash(e, "danger")
        return _back()
    return _run(lambda s: create_desa(s, payload, current_user()), success="Desa ditambahkan.", action="menyimpan desa")


@bp.post("/organisasi/desa/<int:desa_id>/edit")
@require_permission("organisasi.manage")
def desa_edit_post(desa_id: int):
    desa = db_session().get(Desa, desa_id) or abort(404)
    payload = {"name": request.form.get("name")}
    return _run(lambda s: update_desa(s, desa, payload, current_user()), success="Desa diperbarui.", action="menyimpan desa")


@bp.post("/organisasi/desa/<int:desa_id>/delete")
@require_permission("organisasi.manage")
def desa_delete_post(desa_id: int):
    desa = db_session().get(Desa, desa_id) or abort(404)
    return _run(lambda s: delete_desa(s, desa, current_user()), success="Desa dihapus.", action="menghapus desa")


# ---------- Kelompok ----------
@bp.post("/organisasi/kelompok/new")
@require_permission("organisasi.manage")
def kelompok_new_post():
    payload = {"name": request.form.get("name"), "desa_id": parse_int(request.form.get("desa_id"))}
    errors = validate_org_payload(payload, parent_key="desa_id")
    if errors:
        for e in errors:
            flash(e, "danger")
        return _back()
    return _run(lambda s: create_kelompok(s, payload, current_user()), success="Kelompok ditambahkan.", action="menyimpan kelompok")


@bp.post("/organisasi/kelompok/<int:kelompok_id>/edit")
@require_permission("organisasi.manage")
def kelompok_edit_post(kelompok_id: int):
    kelompok = db_session().get(Kelompok, kelompok_id) or abort(404)
    payload = {"name": request.form.get("name")}
    return _run(lambda s: update_kelompok(s, kelompok, payload, current_user()), success="Kelompok diperbarui.", action="menyimpan kelompok")


@bp.post("/organisasi/kelompok/<int:kelompok_id>/delete")
@require_permission("organisasi.manage")
def kelompok_delete_post(kelompok_id: int):
    kelompok = db_session().get(Kelompok, kelompok_id) or abort(404)
    return _run(lambda s: delete_kelompok(s, kelompok, current_user()), success="Kelompok dihapus.", action="menghapus kelompok")
