from __future__ import annotations

from flask import Blueprint, abort, current_app, flash, redirect, render_template, request, url_for

from app.absensi.constants import ATTENDANCE_LABELS, ATTENDANCE_STATUSES, HADIR, STUDENT_STATUS_ACTIVE
from app.absensi.db import db_session
from app.absensi.errors import ServiceError, format_error
from app.absensi.modules.classes.utils import display_class_names
from app.absensi.modules.meetings.models import Meeting
from app.absensi.modules.meetings.service import (
    can_edit_or_delete_meeting,
    create_meeting,
    delete_meeting,
    get_attendance_by_meeting,
    get_meeting,
    get_meetings_with_stats,
    get_snapshot_students,
    list_meeting_classes,
    meeting_stats,
    save_attendance_for_meeting,
    update_meeting,
    validate_meeting_payload,
)
from app.absensi.modules.meetings.utils import (
    get_available_meeting_types,
    get_meeting_type_label,
    get_status_color,
)
from app.absensi.modules.students.service import list_students
from app.absensi.modules.teachers.service import get_meeting_form_settings
from app.absensi.rbac import require_permission
from app.absensi.utils import current_user, parse_int, today_local

bp = Blueprint("meetings", __name__)


def _load(meeting_id: int) -> Meeting:
    try:
        return get_meeting(db_session(), meeting_id, current_user())
    except ServiceError:
        abort(404)


@bp.get("/absensi")
@require_permission("meetings.view")
def meetings_list():
    s = db_session()
    u = current_user()
    class_id = parse_int(request.args.get("class_id"))
    rows, page = get_meetings_with_stats(
        s,
        u,
        class_id=class_id,
        limit=int(current_app.config.get("MEETINGS_PAGE_SIZE") or 10),
        cursor=request.args.get("cursor"),
    )
    classes = list_meeting_classes(s, u)
    form_settings = get_meeting_form_settings(u)
    candidates = list_students(s, u, status=STUDENT_STATUS_ACTIVE) if form_settings["showStudentSelection"] else []
    return render_template(
        "admin/meetings/list.html",
        rows=rows,
        page=page,
        classes=classes,
        labels=display_class_names(classes),
        class_id=class_id,
        meeting_types=get_available_meeting_types(c.category for c in classes),
        form_settings=form_settings,
        candidates=candidates,
        type_label=get_meeting_type_label,
        status_color=get_status_color,
        today=today_local(),
    )


@bp.post("/absensi/new")
@require_permission("meetings.manage")
def meeting_new_post():
    s = db_session()
    payload = {
        "class_ids": request.form.getlist("class_ids"),
        "title": request.form.get("title"),
        "date": request.form.get("date") or today_local().isoformat(),
        "topic": request.form.get("topic"),
        "description": request.form.get("description"),
        "meeting_type_code": request.form.get("meeting_type_code"),
        "student_ids": request.form.getlist("student_ids"),
    }
    errors = validate_meeting_payload(payload)
    if errors:
        for e in errors:
            flash(e, "danger")
        return redirect(url_for("meetings.meetings_list"))
    try:
        meeting = create_meeting(s, payload, current_user())
        s.commit()
    except Exception as e:
        s.rollback()
        flash(format_error(e, "membuat pertemuan"), "danger")
        return redirect(url_for("meetings.meetings_list"))
    flash("Pertemuan dibuat.", "success")
    return redirect(url_for("meetings.meeting_detail", meeting_id=meeting.id))


@bp.get("/absensi/<int:meeting_id>")
@require_permission("meetings.view")
def meeting_detail(meeting_id: int):
    s = db_session()
    u = current_user()
    meeting = _load(meeting_id)
    return render_template(
        "admin/meetings/detail.html",
        meeting=meeting,
        students=get_snapshot_students(s, meeting),
        attendance=get_attendance_by_meeting(s, meeting),
        stats=meeting_stats(meeting),
        statuses=ATTENDANCE_STATUSES,
        status_labels=ATTENDANCE_LABELS,
        default_status=HADIR,
        type_label=get_meeting_type_label,
        can_edit=can_edit_or_delete_meeting(u, meeting),
    )


@bp.post("/absensi/<int:meeting_id>/attendance")
@require_permission("attendance.record")
def meeting_attendance_post(meeting_id: int):
    s = db_session()
    meeting = _load(meeting_id)
    records = []
    for sid in meeting.student_snapshot or []:
        status = request.form.get(f"status_{sid}")
        if not status:
            continue
        records.append({"student_id": sid, "status": status, "reason": request.form.get(f"reason_{sid}")})
    try:
        save_attendance_for_meeting(s, meeting, records, current_user())
        s.commit()
        flash("Absensi disimpan.", "success")
    except Exception as e:
        s.rollback()
        flash(format_error(e, "menyimpan absensi"), "danger")
    return redirect(url_for("meetings.meeting_detail", meeting_id=meeting_id))


@bp.post("/absensi/<int:meeting_id>/edit")
@require_permission("meetings.manage")
def meeting_edit_post(meeting_id: int):
    s = db_session()
    meeting = _load(meeting_id)
    payload = {k: request.form.get(k) for k in ("title", "date", "topic", "description", "meeting_type_code") if k in request.form}
    try:
        update_meeting(s, meeting, payload, current_user())
        s.commit()
        flash("Pertemuan diperbarui.", "success")
    except Exception as e:
        s.rollback()
        flash(format_error(e, "mengubah pertemuan"), "danger")
    return redirect(url_for("meetings.meeting_detail", meeting_id=meeting_id))


@bp.post("/absensi/<int:meeting_id>/delete")
@require_permission("meetings.manage")
def meeting_delete_post(meeting_id: int):
    s = db_session()
    meeting = _load(meeting_id)
    try:
        delete_meeting(s, meeting, current_user())
        s.commit()
    except Exception as e:
        s.rollback()
        flash(format_error(e, "menghapus pertemuan"), "danger")
        return redirect(url_for("meetings.meeting_detail", meeting_id=meeting_id))
    flash("Pertemuan dihapus.", "success")
    return redirect(url_for("meetings.meetings_list"))
