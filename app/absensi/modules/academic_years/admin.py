from __future__ import annotations

from flask import Blueprint, abort, flash, redirect, render_template, request, url_for

from app.absensi.access import class_in_scope, scope_class_query, scope_student_query
from app.absensi.db import db_session
from app.absensi.errors import ServiceError, format_error
from app.absensi.modules.academic_years.models import AcademicYear, StudentEnrollment
from app.absensi.modules.academic_years.service import (
    create_academic_year,
    delete_academic_year,
    enroll_students,
    get_active_academic_year,
    get_class_enrollments,
    list_academic_years,
    remove_enrollment,
    set_active_academic_year,
    update_academic_year,
    update_enrollment_status,
    validate_academic_year_payload,
)
from app.absensi.modules.classes.models import Class
from app.absensi.modules.students.models import Student
from app.absensi.rbac import require_permission
from app.absensi.utils import current_user, parse_id_list, parse_int

bp = Blueprint("academic_years", __name__)


def _payload_from_form() -> dict:
    return {
        "name": request.form.get("name"),
        "start_year": request.form.get("start_year"),
        "end_year": request.form.get("end_year"),
        "start_date": request.form.get("start_date"),
        "end_date": request.form.get("end_date"),
        "is_active": request.form.get("is_active") == "1",
    }


@bp.get("/tahun-ajaran")
@require_permission("academic_years.view")
def academic_years_list():
    s = db_session()
    return render_template(
        "admin/academic_years/list.html",
        academic_years=list_academic_years(s),
        active=get_active_academic_year(s),
    )


@bp.post("/tahun-ajaran/new")
@require_permission("academic_years.manage")
def academic_year_new_post():
    s = db_session()
    payload = _payload_from_form()
    errors = validate_academic_year_payload(payload)
    if errors:
        for e in errors:
            flash(e, "danger")
        return redirect(url_for("academic_years.academic_years_list"))
    try:
        create_academic_year(s, payload, current_user())
        s.commit()
        flash("Tahun ajaran ditambahkan.", "success")
    except Exception as e:
        s.rollback()
        flash(format_error(e, "menyimpan tahun ajaran"), "danger")
    return redirect(url_for("academic_years.academic_years_list"))


@bp.post("/tahun-ajaran/<int:ay_id>/edit")
@require_permission("academic_years.manage")
def academic_year_edit_post(ay_id: int):
    s = db_session()
    ay = s.get(AcademicYear, ay_id)
    if not ay:
        abort(404)
    payload = _payload_from_form()
    errors = validate_academic_year_payload(payload)
    if errors:
        for e in errors:
            flash(e, "danger")
        return redirect(url_for("academic_years.academic_years_list"))
    try:
        update_academic_year(s, ay, payload, current_user())
        s.commit()
        flash("Tahun ajaran diperbarui.", "success")
    except Exception as e:
        s.rollback()
        flash(format_error(e, "menyimpan tahun ajaran"), "danger")
    return redirect(url_for("academic_years.academic_years_list"))


@bp.post("/tahun-ajaran/<int:ay_id>/activate")
@require_permission("academic_years.manage")
def academic_year_activate_post(ay_id: int):
    s = db_session()
    ay = s.get(AcademicYear, ay_id)
    if not ay:
        abort(404)
    set_active_academic_year(s, ay, current_user())
    s.commit()
    flash(f"Tahun ajaran {ay.name} sekarang aktif.", "success")
    return redirect(url_for("academic_years.academic_years_list"))


@bp.post("/tahun-ajaran/<int:ay_id>/delete")
@require_permission("academic_years.manage")
def academic_year_delete_post(ay_id: int):
    s = db_session()
    ay = s.get(AcademicYear, ay_id)
    if not ay:
        abort(404)
    try:
        delete_academic_year(s, ay, current_user())
        s.commit()
        flash("Tahun ajaran dihapus.", "success")
    except ServiceError as e:
        s.rollback()
        flash(str(e), "danger")
    return redirect(url_for("academic_years.academic_years_list"))


# ---------- Enrollments ----------
@bp.get("/tahun-ajaran/enrollments")
@require_permission("classes.view")
def enrollments_get():
    s = db_session()
    u = current_user()
    active = get_active_academic_year(s)
    ay_id = parse_int(request.args.get("academic_year_id")) or (active.id if active else None)
    class_id = parse_int(request.args.get("class_id"))
    semester = parse_int(request.args.get("semester")) or 1

    classes = scope_class_query(s.query(Class), u).order_by(Class.name.asc()).all()
    enrollments: list[StudentEnrollment] = []
    candidates: list[Student] = []
    if class_id and ay_id:
        cls = s.get(Class, class_id)
        if not cls or not class_in_scope(u, cls):
            abort(404)
        enrollments = get_class_enrollments(s, class_id, ay_id, semester)
        enrolled_ids = {e.student_id for e in enrollments}
        candidates = [
            st
            for st in scope_student_query(s.query(Student), u)
            .filter(Student.deleted_at.is_(None), Student.status == "active")
            .order_by(Student.name.asc())
            .all()
            if st.id not in enrolled_ids
        ]

    return render_template(
        "admin/academic_years/enrollments.html",
        academic_years=list_academic_years(s),
        classes=classes,
        academic_year_id=ay_id,
        class_id=class_id,
        semester=semester,
        enrollments=enrollments,
        candidates=candidates,
    )


@bp.post("/tahun-ajaran/enrollments")
@require_permission("classes.manage")
def enrollments_post():
    s = db_session()
    class_id = parse_int(request.form.get("class_id"))
    ay_id = parse_int(request.form.get("academic_year_id"))
    semester = parse_int(request.form.get("semester")) or 1
    student_ids = parse_id_list(request.form.getlist("student_ids"))
    try:
        enroll_students(
            s,
            class_id=class_id or 0,
            academic_year_id=ay_id or 0,
            semester=semester,
            student_ids=student_ids,
            user=current_user(),
        )
        s.commit()
        flash(f"{len(student_ids)} siswa didaftarkan.", "success")
    except Exception as e:
        s.rollback()
        flash(format_error(e, "mendaftarkan siswa"), "danger")
    return redirect(url_for("academic_years.enrollments_get", class_id=class_id, academic_year_id=ay_id, semester=semester))


@bp.post("/tahun-ajaran/enrollments/<int:enrollment_id>/status")
@require_permission("classes.manage")
def enrollment_status_post(enrollment_id: int):
    s = db_session()
    e = s.get(StudentEnrollment, enrollment_id)
    if not e or not class_in_scope(current_user(), e.class_):
        abort(404)
    try:
        update_enrollment_status(s, e, (request.form.get("status") or "").strip(), current_user())
        s.commit()
        flash("Status pendaftaran diperbarui.", "success")
    except ServiceError as exc:
        s.rollback()
        flash(str(exc), "danger")
    return redirect(url_for("academic_years.enrollments_get", class_id=e.class_id, academic_year_id=e.academic_year_id, semester=e.semester))


@bp.post("/tahun-ajaran/enrollments/<int:enrollment_id>/delete")
@require_permission("classes.manage")
def enrollment_delete_post(enrollment_id: int):
    s = db_session()
    e = s.get(StudentEnrollment, enrollment_id)
    if not e or not class_in_scope(current_user(), e.class_):
        abort(404)
    back = url_for("academic_years.enrollments_get", class_id=e.class_id, academic_year_id=e.academic_year_id, semester=e.semester)
    try:
        remove_enrollment(s, e, current_user())
        s.commit()
        flash("Pendaftaran dihapus.", "success")
    except ServiceError as exc:
        s.rollback()
        flash(str(exc), "danger")
    return redirect(back)
