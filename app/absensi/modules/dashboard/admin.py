from __future__ import annotations

from flask import Blueprint, render_template, request

from app.absensi.access import (
    should_show_daerah_filter,
    should_show_desa_filter,
    should_show_kelompok_filter,
)
from app.absensi.constants import GENDERS
from app.absensi.db import db_session
from app.absensi.modules.classes.service import list_classes
from app.absensi.modules.classes.utils import display_class_names
from app.absensi.modules.dashboard.service import (
    aggregate_monitoring_data,
    get_class_monitoring,
    get_dashboard,
    get_today_meetings,
    parse_dashboard_filters,
)
from app.absensi.modules.meetings.utils import get_meeting_type_label, get_status_color
from app.absensi.modules.organization.service import get_org_tree
from app.absensi.rbac import require_permission
from app.absensi.utils import current_user

bp = Blueprint("dashboard", __name__)


@bp.get("/dashboard")
@require_permission("dashboard.view")
def dashboard_index():
    s = db_session()
    u = current_user()
    filters = parse_dashboard_filters(request.args)
    monitoring = get_class_monitoring(s, u, filters)
    classes = list_classes(s, u)
    return render_template(
        "admin/dashboard/index.html",
        stats=get_dashboard(s, u, filters),
        monitoring=monitoring,
        comparison=aggregate_monitoring_data(monitoring, filters.comparison_level, filters.class_ids),
        today_meetings=get_today_meetings(s, u),
        filters=filters,
        classes=classes,
        labels=display_class_names(classes),
        org_tree=get_org_tree(s, u),
        genders=GENDERS,
        show_daerah=should_show_daerah_filter(u),
        show_desa=should_show_desa_filter(u),
        show_kelompok=should_show_kelompok_filter(u),
        type_label=get_meeting_type_label,
        status_color=get_status_color,
    )
