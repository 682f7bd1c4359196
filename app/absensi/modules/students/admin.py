from __future__ import annotations

from flask import Blueprint, abort, flash, redirect, render_template, request, url_for

from app.absensi.access import get_auto_filled_org_values, get_required_org_fields
from app.absensi.constants import ARCHIVE_STATUSES, GENDERS, STUDENT_STATUSES
from app.absensi.db import db_session
from app.absensi.errors import ServiceError, format_error
from app.absensi.modules.classes.service import list_classes
from app.absensi.modules.classes.utils import display_class_names
from app.absensi.modules.organization.service import get_org_tree, list_kelompok
from app.absensi.modules.students.models import Student
from app.absensi.modules.students.service import (
    BIODATA_TEXT_FIELDS,
    archive_student,
    assign_students_to_class,
    create_student,
    get_student,
    get_student_attendance_history,
    hard_delete_student,
    list_students,
    restore_student,
    soft_delete_student,
    unarchive_student,
    update_student,
    update_student_biodata,
    validate_student_payload,
)
from app.absensi.modules.students.transfer import (
    approve_transfer_request,
    cancel_transfer_request,
    create_transfer_request,
    get_pending_transfer_requests,
    get_transfer_request,
    reject_transfer_request,
)
from app.absensi.rbac import require_permission
from app.absensi.student_permissions import (
    can_archive_student,
    can_hard_delete_student,
    can_review_transfer_request,
    can_soft_delete_student,
    can_transfer_student,
)
from app.absensi.utils import current_user, parse_id_list, parse_int, parse_month, parse_year, today_local

bp = Blueprint("students", __name__)


def _payload_from_form() -> dict:
    payload = {
        "name": request.form.get("name"),
        "gender": request.form.get("gender"),
        "kelompok_id": request.form.get("kelompok_id"),
        "class_ids": request.form.getlist("class_ids"),
        "tanggal_lahir": request.form.get("tanggal_lahir"),
        "anak_ke": request.form.get("anak_ke"),
    }
    for field in BIODATA_TEXT_FIELDS:
        payload[field] = request.form.get(field)
    return payload


def _load(student_id: int) -> Student:
    student = db_session().get(Student, student_id)
    if not student:
        abort(404)
    return student


def _mutate(student_id: int, fn, *args, success: str, action: str):
    s = db_session()
    student = _load(student_id)
    try:
        fn(s, student, *args)
        s.commit()
        flash(success, "success")
    except Exception as e:
        s.rollback()
        flash(format_error(e, action), "danger")
    return redirect(url_for("students.student_detail", student_id=student_id))


# ---------- List ----------
@bp.get("/siswa")
@require_permission("students.view")
def students_list():
    s = db_session()
    u = current_user()
    class_id = parse_int(request.args.get("class_id"))
    kelompok_id = parse_int(request.args.get("kelompok_id"))
    status = (request.args.get("status") or "").strip() or None
    search = (request.args.get("q") or "").strip() or None
    include_deleted = request.args.get("deleted") == "1"
    students = list_students(
        s,
        u,
        class_id=class_id,
        kelompok_id=kelompok_id,
        status=status,
        search=search,
        include_deleted=include_deleted,
    )
    classes = list_classes(s, u)
    return render_template(
        "admin/students/list.html",
        students=students,
        classes=classes,
        labels=display_class_names(classes),
        kelompok=list_kelompok(s, u),
        org_tree=get_org_tree(s, u),
        statuses=STUDENT_STATUSES,
        filters={
            "class_id": class_id,
            "kelompok_id": kelompok_id,
            "status": status,
            "q": search or "",
            "deleted": include_deleted,
        },
    )


# ---------- New ----------
@bp.get("/siswa/new")
@require_permission("students.manage")
def student_new_get():
    s = db_session()
    u = current_user()
    classes = list_classes(s, u)
    return render_template(
        "admin/students/new.html",
        classes=classes,
        labels=display_class_names(classes),
        kelompok=list_kelompok(s, u),
        genders=GENDERS,
        required=get_required_org_fields(u),
        auto=get_auto_filled_org_values(u),
    )


@bp.post("/siswa/new")
@require_permission("students.manage")
def student_new_post():
    s = db_session()
    payload = _payload_from_form()
    errors = validate_student_payload(payload)
    if errors:
        for e in errors:
            flash(e, "danger")
        return redirect(url_for("students.student_new_get"))
    try:
        student = create_student(s, payload, current_user())
        s.commit()
    except Exception as e:
        s.rollback()
        flash(format_error(e, "menyimpan siswa"), "danger")
        return redirect(url_for("students.student_new_get"))
    flash("Siswa ditambahkan.", "success")
    return redirect(url_for("students.student_detail", student_id=student.id))


@bp.post("/siswa/assign")
@require_permission("students.manage")
def students_assign_post():
    s = db_session()
    class_id = parse_int(request.form.get("class_id"))
    student_ids = parse_id_list(request.form.getlist("student_ids"))
    if not class_id or not student_ids:
        flash("Pilih kelas dan minimal satu siswa", "danger")
        return redirect(url_for("students.students_list"))
    try:
        added = assign_students_to_class(s, class_id, student_ids, current_user())
        s.commit()
        flash(f"{added} siswa ditambahkan ke kelas.", "success")
    except Exception as e:
        s.rollback()
        flash(format_error(e, "menambahkan siswa ke kelas"), "danger")
    return redirect(url_for("students.students_list", class_id=class_id))


# ---------- Detail ----------
@bp.get("/siswa/<int:student_id>")
@require_permission("students.view")
def student_detail(student_id: int):
    s = db_session()
    u = current_user()
    try:
        student = get_student(s, student_id, u)
    except ServiceError:
        abort(404)
    today = today_local()
    year = parse_year(request.args.get("year")) or today.year
    month = parse_month(request.args.get("month")) or today.month
    classes = list_classes(s, u)
    return render_template(
        "admin/students/detail.html",
        student=student,
        history=get_student_attendance_history(s, student, year, month),
        classes=classes,
        labels=display_class_names(classes),
        kelompok=list_kelompok(s, u),
        org_tree=get_org_tree(s, u),
        genders=GENDERS,
        archive_statuses=ARCHIVE_STATUSES,
        biodata_fields=BIODATA_TEXT_FIELDS,
        can_archive=can_archive_student(u, student),
        can_transfer=can_transfer_student(u, student),
        can_soft_delete=can_soft_delete_student(u, student),
        can_hard_delete=can_hard_delete_student(u, student),
    )


@bp.post("/siswa/<int:student_id>/edit")
@require_permission("students.manage")
def student_edit_post(student_id: int):
    payload = _payload_from_form()
    errors = validate_student_payload(payload)
    if errors:
        for e in errors:
            flash(e, "danger")
        return redirect(url_for("students.student_detail", student_id=student_id))
    return _mutate(student_id, update_student, payload, current_user(), success="Data siswa diperbarui.", action="menyimpan siswa")


@bp.post("/siswa/<int:student_id>/biodata")
@require_permission("students.manage")
def student_biodata_post(student_id: int):
    payload = _payload_from_form()
    payload.pop("class_ids", None)
    payload.pop("kelompok_id", None)
    return _mutate(student_id, update_student_biodata, payload, current_user(), success="Biodata disimpan.", action="menyimpan biodata")


@bp.post("/siswa/<int:student_id>/archive")
@require_permission("students.manage")
def student_archive_post(student_id: int):
    return _mutate(
        student_id,
        archive_student,
        request.form.get("status") or "",
        request.form.get("notes"),
        current_user(),
        success="Siswa diarsipkan.",
        action="mengarsipkan siswa",
    )


@bp.post("/siswa/<int:student_id>/unarchive")
@require_permission("students.manage")
def student_unarchive_post(student_id: int):
    return _mutate(student_id, unarchive_student, current_user(), success="Siswa diaktifkan kembali.", action="mengaktifkan siswa")


@bp.post("/siswa/<int:student_id>/delete")
@require_permission("students.manage")
def student_delete_post(student_id: int):
    return _mutate(
        student_id,
        soft_delete_student,
        current_user(),
        request.form.get("reason"),
        success="Siswa dihapus.",
        action="menghapus siswa",
    )


@bp.post("/siswa/<int:student_id>/restore")
@require_permission("students.manage")
def student_restore_post(student_id: int):
    return _mutate(student_id, restore_student, current_user(), success="Siswa dipulihkan.", action="memulihkan siswa")


@bp.post("/siswa/<int:student_id>/hard-delete")
@require_permission("students.manage")
def student_hard_delete_post(student_id: int):
    s = db_session()
    student = _load(student_id)
    try:
        hard_delete_student(s, student, current_user())
        s.commit()
    except Exception as e:
        s.rollback()
        flash(format_error(e, "menghapus siswa"), "danger")
        return redirect(url_for("students.student_detail", student_id=student_id))
    flash("Siswa dihapus permanen.", "success")
    return redirect(url_for("students.students_list", deleted="1"))


# ---------- Transfers ----------
@bp.post("/siswa/transfer")
@require_permission("students.manage")
def transfer_new_post():
    s = db_session()
    payload = {
        "student_ids": request.form.getlist("student_ids"),
        "to_daerah_id": request.form.get("to_daerah_id"),
        "to_desa_id": request.form.get("to_desa_id"),
        "to_kelompok_id": request.form.get("to_kelompok_id"),
        "to_class_ids": request.form.getlist("to_class_ids"),
        "reason": request.form.get("reason"),
        "notes": request.form.get("notes"),
    }
    try:
        req = create_transfer_request(s, payload, current_user())
        s.commit()
    except Exception as e:
        s.rollback()
        flash(format_error(e, "membuat transfer request"), "danger")
        return redirect(request.referrer or url_for("students.students_list"))
    if req.executed_at:
        flash("Transfer siswa berhasil.", "success")
    else:
        flash("Transfer request dikirim dan menunggu persetujuan.", "success")
    return redirect(url_for("students.transfers_list"))


@bp.get("/siswa/transfer-requests")
@require_permission("transfers.view")
def transfers_list():
    s = db_session()
    u = current_user()
    requests_ = get_pending_transfer_requests(s, u)
    students_by_id = {}
    ids = {sid for r in requests_ for sid in (r.student_ids or [])}
    if ids:
        students_by_id = {st.id: st for st in s.query(Student).filter(Student.id.in_(sorted(ids))).all()}
    return render_template(
        "admin/students/transfers.html",
        requests=requests_,
        students_by_id=students_by_id,
        can_review={r.id: can_review_transfer_request(u, r) for r in requests_},
    )


def _review(request_id: int, fn, success: str, action: str, *args):
    s = db_session()
    try:
        req = get_transfer_request(s, request_id)
        fn(s, req, current_user(), *args)
        s.commit()
        flash(success, "success")
    except Exception as e:
        s.rollback()
        flash(format_error(e, action), "danger")
    return redirect(url_for("students.transfers_list"))


@bp.post("/siswa/transfer-requests/<int:request_id>/approve")
@require_permission("students.manage")
def transfer_approve_post(request_id: int):
    return _review(request_id, approve_transfer_request, "Transfer disetujui.", "menyetujui transfer request", request.form.get("review_notes"))


@bp.post("/siswa/transfer-requests/<int:request_id>/reject")
@require_permission("students.manage")
def transfer_reject_post(request_id: int):
    return _review(request_id, reject_transfer_request, "Transfer ditolak.", "menolak transfer request", request.form.get("review_notes"))


@bp.post("/siswa/transfer-requests/<int:request_id>/cancel")
@require_permission("students.manage")
def transfer_cancel_post(request_id: int):
    return _review(request_id, cancel_transfer_request, "Transfer dibatalkan.", "membatalkan transfer request")
