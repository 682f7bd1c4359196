from types import SimpleNamespace

import pytest

from app.absensi.modules.classes.utils import (
    display_class_names,
    is_caberawit_class,
    is_sambung_desa_eligible,
    is_teacher_class,
)
from app.absensi.modules.meetings.utils import (
    calculate_attendance_rate,
    calculate_attendance_stats,
    filter_attendance_by_meeting_class,
    filter_meetings_for_user,
    find_matching_class,
    get_attendance_grade,
    get_available_meeting_types,
    get_meeting_type_label,
    get_status_color,
)
from app.absensi.utils import parse_date, parse_id_list, parse_int, percent


def _log(meeting_id, student_id, status="H"):
    return SimpleNamespace(meeting_id=meeting_id, student_id=student_id, status=status)


def _meeting(class_id, class_ids=None):
    return SimpleNamespace(class_id=class_id, class_ids=class_ids or [class_id])


def _cls(cid, name, code=None, sambung=False, kelompok=None):
    category = SimpleNamespace(code=code, name=code or "", is_sambung_capable=sambung) if code else None
    return SimpleNamespace(id=cid, name=name, category=category, kelompok=kelompok)


def test_parsers():
    assert parse_int(" 7 ") == 7
    assert parse_int("x") is None
    assert parse_date("2026-10-18").day == 18
    assert parse_date("18/10/2026") is None
    assert parse_id_list("3,1,3, ,2") == [3, 1, 2]
    assert parse_id_list(["5", None, "", "5", "6"]) == [5, 6]
    assert parse_id_list(None) == []


@pytest.mark.parametrize(
    "part,whole,expected",
    [(0, 0, 0), (1, 2, 50), (1, 3, 33), (2, 3, 67), (1, 8, 13), (5, 5, 100)],
)
def test_percent_rounds_half_up(part, whole, expected):
    assert percent(part, whole) == expected


def test_attendance_stats():
    logs = [_log(1, 1, "H"), _log(1, 2, "I"), _log(1, 3, "S"), _log(1, 4, "A"), _log(2, 1, "H")]
    stats = calculate_attendance_stats(logs)
    assert (stats.total, stats.hadir, stats.izin, stats.sakit, stats.alpha) == (5, 2, 1, 1, 1)
    assert stats.percentage == 40
    assert calculate_attendance_rate(logs) == 40
    assert calculate_attendance_rate([]) == 0


def test_grades_and_colors():
    assert get_attendance_grade(None) == ("-", "")
    assert get_attendance_grade(0) == ("-", "")
    assert get_attendance_grade(95) == ("A", "Terlampaui")
    assert get_attendance_grade(90) == ("A", "Terlampaui")
    assert get_attendance_grade(80) == ("B", "Memenuhi")
    assert get_attendance_grade(70) == ("C", "Cukup Memenuhi")
    assert get_attendance_grade(69) == ("D", "Tidak Memenuhi")
    assert get_status_color(80) == "text-success"
    assert get_status_color(60) == "text-warning"
    assert get_status_color(59) == "text-danger"


def test_meeting_types_depend_on_category():
    remaja = SimpleNamespace(is_sambung_capable=True)
    caberawit = SimpleNamespace(is_sambung_capable=False)
    assert list(get_available_meeting_types([caberawit])) == ["PEMBINAAN"]
    assert list(get_available_meeting_types([None])) == ["PEMBINAAN"]
    assert "SAMBUNG_DESA" in get_available_meeting_types([caberawit, remaja])
    assert get_meeting_type_label("SAMBUNG_DESA") == "Sambung Desa"
    assert get_meeting_type_label("LAINNYA") == "LAINNYA"
    assert get_meeting_type_label(None) == ""


def test_class_predicates():
    kelas1 = _cls(1, "Kelas 1", "CABERAWIT")
    paud = _cls(2, "PAUD A", "PAUD")
    remaja = _cls(3, "Remaja", "REMAJA", sambung=True)
    pengajar = _cls(4, "Pengajar Desa", "PENGAJAR", sambung=True)
    assert is_caberawit_class(kelas1) and is_caberawit_class(paud)
    assert not is_caberawit_class(_cls(5, "Tanpa master"))
    assert is_teacher_class(pengajar)
    assert is_sambung_desa_eligible(remaja)
    assert not is_sambung_desa_eligible(kelas1)
    assert not is_sambung_desa_eligible(pengajar)


def test_display_class_names_disambiguates_duplicates():
    a1 = SimpleNamespace(name="Kelompok A1")
    a2 = SimpleNamespace(name="Kelompok A2")
    labels = display_class_names([_cls(1, "Kelas 1", kelompok=a1), _cls(2, "Kelas 1", kelompok=a2), _cls(3, "Remaja", kelompok=a1)])
    assert labels == {1: "Kelas 1 (Kelompok A1)", 2: "Kelas 1 (Kelompok A2)", 3: "Remaja"}


def test_find_matching_class_prefers_primary():
    m = _meeting(10, [10, 20])
    assert find_matching_class(m, [20, 10]) == 10
    assert find_matching_class(m, [20]) == 20
    assert find_matching_class(m, [30]) is None


def test_multi_class_meeting_does_not_leak_other_class_students():
    meetings = {1: _meeting(10, [10, 20])}
    enrollment = {10: {1, 2}, 20: {3}}
    logs = [_log(1, 1), _log(1, 2), _log(1, 3)]
    kept = filter_attendance_by_meeting_class(logs, meetings, [10], enrollment)
    assert [log.student_id for log in kept] == [1, 2]
    kept = filter_attendance_by_meeting_class(logs, meetings, [20], enrollment)
    assert [log.student_id for log in kept] == [3]
    assert filter_attendance_by_meeting_class([_log(99, 1)], meetings, [10], enrollment) == []


def test_pengajar_meetings_hidden_from_other_teachers():
    pengajar = _cls(4, "Pengajar")
    kelas1 = _cls(1, "Kelas 1")
    classes_by_id = {1: kelas1, 4: pengajar}
    meetings = [_meeting(1), _meeting(4)]
    teacher = SimpleNamespace(role="teacher", classes=[kelas1])
    assert filter_meetings_for_user(meetings, teacher, classes_by_id) == [meetings[0]]
    teacher_pengajar = SimpleNamespace(role="teacher", classes=[kelas1, pengajar])
    assert filter_meetings_for_user(meetings, teacher_pengajar, classes_by_id) == meetings
    admin = SimpleNamespace(role="admin", classes=[])
    assert filter_meetings_for_user(meetings, admin, classes_by_id) == meetings
