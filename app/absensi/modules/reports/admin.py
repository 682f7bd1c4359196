from __future__ import annotations

import io

from flask import Blueprint, render_template, request, send_file

from app.absensi.access import is_teacher
from app.absensi.audit import record_event
from app.absensi.constants import GENDERS, MEETING_TYPES, MONTH_NAMES
from app.absensi.db import db_session
from app.absensi.modules.classes.service import list_classes
from app.absensi.modules.classes.utils import display_class_names
from app.absensi.modules.meetings.utils import get_status_color
from app.absensi.modules.organization.service import list_kelompok
from app.absensi.modules.reports.service import (
    export_report_xlsx,
    generate_attendance_report,
    parse_report_filters,
    weeks_in_month,
)
from app.absensi.rbac import require_permission
from app.absensi.utils import current_user, today_local

bp = Blueprint("reports", __name__)


@bp.get("/laporan")
@require_permission("reports.view")
def reports_index():
    s = db_session()
    u = current_user()
    filters = parse_report_filters(request.args)
    report = generate_attendance_report(s, u, filters)
    classes = [c for c in u.classes] if is_teacher(u) else list_classes(s, u)
    today = today_local()
    return render_template(
        "admin/reports/index.html",
        report=report,
        filters=filters,
        classes=classes,
        labels=display_class_names(classes),
        kelompok=list_kelompok(s, u),
        genders=GENDERS,
        meeting_types=MEETING_TYPES,
        month_names=MONTH_NAMES,
        weeks=weeks_in_month(filters.week_year or today.year, filters.week_month or today.month),
        today=today,
        status_color=get_status_color,
    )


@bp.get("/laporan/export.xlsx")
@require_permission("reports.export")
def reports_export():
    s = db_session()
    u = current_user()
    filters = parse_report_filters(request.args)
    report = generate_attendance_report(s, u, filters)
    data = export_report_xlsx(report)
    rng = report["date_range"]
    filename = f"laporan_kehadiran_{rng['start']:%Y%m%d}_{rng['end']:%Y%m%d}.xlsx"
    record_event(
        s,
        actor=u,
        action="report.export",
        entity_type="Report",
        entity_id=filename,
        metadata={"period": report["period"], "rows": len(report["detailed_records"])},
    )
    s.commit()
    return send_file(
        io.BytesIO(data),
        mimetype="application/vnd.openxmlformats-officedocument.spreadsheetml.sheet",
        as_attachment=True,
        download_name=filename,
        max_age=0,
    )
