from flask import Blueprint, flash, redirect, render_template, request, url_for
from sqlalchemy import text

from app.absensi.access import get_user_level_label
from app.absensi.audit import action_label, query_events
from app.absensi.constants import MEETING_FORM_SETTING_KEYS, ROLE_LABELS
from app.absensi.db import db_session
from app.absensi.errors import format_error
from app.absensi.modules.teachers.service import get_meeting_form_settings, update_meeting_form_settings
from app.absensi.rbac import require_permission, user_has_permission
from app.absensi.utils import current_user, parse_date

bp = Blueprint("admin", __name__)

# (permission, endpoint, label) shown on the admin home page
NAV_LINKS = (
    ("dashboard.view", "dashboard.dashboard_index", "Dashboard"),
    ("meetings.view", "meetings.meetings_list", "Absensi"),
    ("students.view", "students.students_list", "Siswa"),
    ("teachers.view", "teachers.teachers_list", "Guru"),
    ("classes.view", "classes.classes_list", "Kelas"),
    ("organisasi.view", "organization.org_index", "Organisasi"),
    ("academic_years.view", "academic_years.academic_years_list", "Tahun Ajaran"),
    ("reports.view", "reports.reports_index", "Laporan"),
    ("audit.view", "admin.audit_list", "Audit"),
)


def nav_links(user) -> list[tuple[str, str]]:
    return [(endpoint, label) for key, endpoint, label in NAV_LINKS if user_has_permission(user, key)]


@bp.get("/")
@require_permission("admin.view")
def index():
    s = db_session()
    u = current_user()
    db_ok = True
    try:
        s.execute(text("SELECT 1"))
    except Exception:
        db_ok = False
    return render_template(
        "admin/index.html",
        links=nav_links(u),
        level_label=get_user_level_label(u),
        db_ok=db_ok,
    )


@bp.get("/me")
@require_permission("admin.view")
def me():
    user = current_user()
    perm_keys = sorted({p.key for r in (user.roles or []) for p in (r.permissions or [])})
    return render_template(
        "admin/me.html",
        user=user,
        role_label=ROLE_LABELS.get(user.role or "", "-"),
        level_label=get_user_level_label(user),
        perm_keys=perm_keys,
        form_settings=get_meeting_form_settings(user),
        setting_keys=MEETING_FORM_SETTING_KEYS,
    )


@bp.post("/me/form-settings")
@require_permission("admin.view")
def me_form_settings_post():
    """Update the current user's own meeting form settings."""
    s = db_session()
    user = current_user()
    settings = {key: request.form.get(key) == "1" for key in MEETING_FORM_SETTING_KEYS}
    try:
        update_meeting_form_settings(s, user, settings, user)
        s.commit()
        flash("Pengaturan form pertemuan disimpan", "success")
    except Exception as e:
        s.rollback()
        flash(format_error(e, "menyimpan pengaturan"), "danger")
    return redirect(url_for("admin.me"))


@bp.get("/audit")
@require_permission("audit.view")
def audit_list():
    """
    Audit trail UI (last 200 events) with simple filters:
    - action (contains)
    - actor_username (contains)
    - date range (YYYY-MM-DD)
    """
    s = db_session()
    action = (request.args.get("action") or "").strip()
    actor = (request.args.get("actor_username") or "").strip()
    date_from = parse_date(request.args.get("date_from"))
    date_to = parse_date(request.args.get("date_to"))

    if (request.args.get("date_from") or "").strip() and not date_from:
        flash("date_from harus YYYY-MM-DD", "danger")
    if (request.args.get("date_to") or "").strip() and not date_to:
        flash("date_to harus YYYY-MM-DD", "danger")

    events = query_events(s, action=action, actor_username=actor, date_from=date_from, date_to=date_to)
    return render_template(
        "admin/audit/list.html",
        events=events,
        action=action,
        actor_username=actor,
        date_from=(request.args.get("date_from") or "").strip(),
        date_to=(request.args.get("date_to") or "").strip(),
        action_label=action_label,
    )
