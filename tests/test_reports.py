import io
from datetime import date

from openpyxl import load_workbook
from werkzeug.datastructures import MultiDict

from app.absensi.models import User
from app.absensi.modules.reports.service import (
    ReportFilters,
    export_report_xlsx,
    generate_attendance_report,
    parse_report_filters,
    period_key,
    resolve_date_range,
    week_end_date,
    week_number_in_month,
    week_start_date,
    weeks_in_month,
)

TODAY = date(2026, 10, 18)


def _october(**extra):
    return ReportFilters(month=10, year=2026, **extra)


# ---------- Weeks ----------

def test_weeks_of_october_2026():
    # 1 October 2026 is a Thursday.
    assert week_number_in_month(date(2026, 10, 1)) == 1
    assert week_number_in_month(date(2026, 10, 4)) == 1
    assert week_number_in_month(date(2026, 10, 5)) == 2
    assert week_number_in_month(date(2026, 10, 31)) == 5
    assert weeks_in_month(2026, 10) == 5
    assert week_start_date(2026, 10, 1) == date(2026, 10, 1)
    assert week_end_date(2026, 10, 1) == date(2026, 10, 4)
    assert week_start_date(2026, 10, 2) == date(2026, 10, 5)
    assert week_end_date(2026, 10, 2) == date(2026, 10, 11)
    assert week_end_date(2026, 10, 5) == date(2026, 10, 31)


def test_month_starting_on_monday_has_full_first_week():
    # 1 June 2026 is a Monday.
    assert week_end_date(2026, 6, 1) == date(2026, 6, 7)
    assert week_number_in_month(date(2026, 6, 8)) == 2


# ---------- Filters and ranges ----------

def test_parse_report_filters():
    f = parse_report_filters(
        MultiDict([
            ("view_mode", "detailed"),
            ("period", "weekly"),
            ("class_id", "3,4"),
            ("class_id", "5"),
            ("meeting_type", "PEMBINAAN"),
            ("gender", "Perempuan"),
            ("week_year", "2026"),
        ])
    )
    assert f.view_mode == "detailed"
    assert f.period == "weekly"
    assert f.class_ids == [3, 4, 5]
    assert f.meeting_types == ["PEMBINAAN"]
    assert f.gender == "Perempuan"
    assert f.week_year == 2026

    f = parse_report_filters({"view_mode": "bogus", "period": "hourly"})
    assert (f.view_mode, f.period) == ("general", "monthly")


def test_resolve_date_range():
    assert resolve_date_range(_october(), TODAY) == (date(2026, 10, 1), date(2026, 10, 31))
    assert resolve_date_range(ReportFilters(), TODAY) == (date(2026, 10, 1), date(2026, 10, 31))

    daily = ReportFilters(view_mode="detailed", period="daily", start_date=date(2026, 10, 9), end_date=date(2026, 10, 2))
    assert resolve_date_range(daily, TODAY) == (date(2026, 10, 2), date(2026, 10, 9))

    weekly = ReportFilters(view_mode="detailed", period="weekly", week_year=2026, week_month=10, start_week=2, end_week=3)
    assert resolve_date_range(weekly, TODAY) == (date(2026, 10, 5), date(2026, 10, 18))

    monthly = ReportFilters(view_mode="detailed", period="monthly", month_year=2026, start_month=2, end_month=3)
    assert resolve_date_range(monthly, TODAY) == (date(2026, 2, 1), date(2026, 3, 31))

    yearly = ReportFilters(view_mode="detailed", period="yearly", start_year=2025, end_year=2026)
    assert resolve_date_range(yearly, TODAY) == (date(2025, 1, 1), date(2026, 12, 31))
    assert resolve_date_range(ReportFilters(view_mode="detailed", period="yearly"), TODAY)[1] == TODAY


def test_period_key_labels():
    d = date(2026, 10, 12)
    assert period_key(ReportFilters(), d)[1] == "12 Okt"
    assert period_key(ReportFilters(view_mode="detailed", period="weekly"), d) == (3, "Minggu 3")
    assert period_key(ReportFilters(view_mode="detailed", period="yearly"), d) == (2026, "2026")


# ---------- Report ----------

def test_general_report_summary(october, db, world):
    report = generate_attendance_report(db, db.get(User, world.superadmin), _october(), TODAY)
    assert report["summary"] == {"total": 6, "hadir": 4, "izin": 1, "sakit": 0, "alpha": 1}
    assert {c["name"]: c["value"] for c in report["chart_data"]} == {"Hadir": 4, "Izin": 1, "Alpha": 1}
    assert len(report["meetings"]) == 4
    assert report["period"] == "general"
    assert [t["date"] for t in report["trend_chart_data"]] == ["05 Okt", "12 Okt"]


def test_report_is_scoped_to_the_user(october, db, world):
    report = generate_attendance_report(db, db.get(User, world.admin_desa), _october(), TODAY)
    assert report["summary"]["total"] == 5
    report = generate_attendance_report(db, db.get(User, world.teacher), _october(), TODAY)
    assert report["summary"]["total"] == 5
    report = generate_attendance_report(db, db.get(User, world.admin_c1), _october(), TODAY)
    assert report["summary"] == {"total": 1, "hadir": 1, "izin": 0, "sakit": 0, "alpha": 0}


def test_report_filters(october, db, world):
    su = db.get(User, world.superadmin)
    assert generate_attendance_report(db, su, _october(gender="Perempuan"), TODAY)["summary"]["total"] == 3
    assert generate_attendance_report(db, su, _october(kelompok_ids=[world.kelompok_a1]), TODAY)["summary"]["total"] == 5
    assert generate_attendance_report(db, su, _october(class_ids=[world.remaja_a1]), TODAY)["summary"]["total"] == 1
    assert generate_attendance_report(db, su, _october(meeting_types=["SAMBUNG_DESA"]), TODAY)["summary"]["total"] == 0
    assert generate_attendance_report(db, su, ReportFilters(month=9, year=2026), TODAY)["summary"]["total"] == 0


def test_detailed_weekly_report(october, db, world):
    f = ReportFilters(view_mode="detailed", period="weekly", week_year=2026, week_month=10, start_week=2, end_week=3)
    report = generate_attendance_report(db, db.get(User, world.superadmin), f, TODAY)
    trend = {t["date"]: t for t in report["trend_chart_data"]}
    assert trend["Minggu 2"]["attendance_percentage"] == 50
    assert trend["Minggu 2"]["meetings_count"] == 1
    assert trend["Minggu 3"]["attendance_percentage"] == 75
    assert trend["Minggu 3"]["meetings_count"] == 3

    rows = {r["student_name"]: r for r in report["detailed_records"]}
    assert list(rows) == ["Andi", "Budi", "Eka", "Siti"]
    assert (rows["Budi"]["attendance_rate"], rows["Budi"]["grade"], rows["Budi"]["predikat"]) == (100, "A", "Terlampaui")
    assert (rows["Siti"]["attendance_rate"], rows["Siti"]["grade"]) == (50, "D")
    assert (rows["Andi"]["izin"], rows["Andi"]["grade"]) == (1, "-")
    assert rows["Budi"]["class_name"] == "Kelas 1"


def test_export_workbook(october, db, world):
    report = generate_attendance_report(db, db.get(User, world.superadmin), _october(), TODAY)
    wb = load_workbook(io.BytesIO(export_report_xlsx(report)))
    assert wb.sheetnames == ["Ringkasan", "Detail"]
    summary = wb["Ringkasan"]
    assert summary["A1"].value == "Laporan Kehadiran"
    assert summary["B2"].value == "2026-10-01 s/d 2026-10-31"
    assert [c.value for c in summary[5]][:5] == [6, 4, 1, 0, 1]
    detail = wb["Detail"]
    assert detail.max_row == 5
    assert detail["A2"].value == "Andi"


# ---------- Routes ----------

def test_report_routes(october, client, login_as):
    login_as("admin_desa")
    r = client.get("/admin/laporan?month=10&year=2026")
    assert r.status_code == 200

    r = client.get("/admin/laporan/export.xlsx?month=10&year=2026")
    assert r.status_code == 200
    assert "laporan_kehadiran_20261001_20261031.xlsx" in r.headers["Content-Disposition"]
    wb = load_workbook(io.BytesIO(r.data))
    assert wb["Detail"].max_row == 4


def test_out_of_range_filters_fall_back_to_default_window():
    f = parse_report_filters(
        {"view_mode": "detailed", "period": "monthly", "month_year": "2026", "start_month": "13", "end_month": "13"}
    )
    assert (f.month_year, f.start_month, f.end_month) == (2026, None, None)
    assert resolve_date_range(f, TODAY) == (date(2026, 10, 1), date(2026, 10, 31))

    f = parse_report_filters({"view_mode": "detailed", "period": "weekly", "week_year": "2026", "week_month": "13", "start_week": "0", "end_week": "9"})
    assert (f.week_month, f.start_week, f.end_week) == (None, None, None)

    f = parse_report_filters({"view_mode": "detailed", "period": "yearly", "start_year": "0", "end_year": "2026"})
    assert f.start_year is None
    assert resolve_date_range(f, TODAY)[1] == TODAY

    f = parse_report_filters({"month": "0", "year": "99999"})
    assert (f.month, f.year) == (None, None)


def test_report_page_survives_bad_query_params(october, client, login_as):
    login_as("admin_desa")
    for qs in (
        "view_mode=detailed&period=monthly&month_year=2026&start_month=13&end_month=13",
        "view_mode=detailed&period=weekly&week_year=2026&week_month=13&start_week=1&end_week=2",
        "view_mode=detailed&period=yearly&start_year=0&end_year=0",
        "month=13&year=-1",
    ):
        assert client.get(f"/admin/laporan?{qs}").status_code == 200
