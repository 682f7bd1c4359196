"""
Central constants for the Absensi application.
"""
from __future__ import annotations

# Profile roles (also the Role.key values seeded by scripts/init_db.py)
ROLE_SUPERADMIN = "superadmin"
ROLE_ADMIN = "admin"
ROLE_TEACHER = "teacher"
ROLES = (ROLE_SUPERADMIN, ROLE_ADMIN, ROLE_TEACHER)
ROLE_LABELS = {
    ROLE_SUPERADMIN: "Superadmin",
    ROLE_ADMIN: "Admin",
    ROLE_TEACHER: "Guru",
}

GENDERS = ("Laki-laki", "Perempuan")

STUDENT_STATUS_ACTIVE = "active"
STUDENT_STATUS_GRADUATED = "graduated"
STUDENT_STATUS_INACTIVE = "inactive"
STUDENT_STATUSES = (STUDENT_STATUS_ACTIVE, STUDENT_STATUS_GRADUATED, STUDENT_STATUS_INACTIVE)
ARCHIVE_STATUSES = (STUDENT_STATUS_GRADUATED, STUDENT_STATUS_INACTIVE)

# Attendance status codes
HADIR = "H"
IZIN = "I"
SAKIT = "S"
ALPHA = "A"
ATTENDANCE_STATUSES = (HADIR, IZIN, SAKIT, ALPHA)
ATTENDANCE_LABELS = {
    HADIR: "Hadir",
    IZIN: "Izin",
    SAKIT: "Sakit",
    ALPHA: "Alpha",
}

# Meeting types, in display order
MEETING_TYPES = {
    "PEMBINAAN": "Pembinaan",
    "SAMBUNG_KELOMPOK": "Sambung Kelompok",
    "SAMBUNG_DESA": "Sambung Desa",
    "SAMBUNG_DAERAH": "Sambung Daerah",
    "SAMBUNG_PUSAT": "Sambung Pusat",
}
DEFAULT_MEETING_TYPE = "PEMBINAAN"

# Class master category codes treated as early-age (caberawit) classes
CABERAWIT_CODES = frozenset({"CABERAWIT", "PAUD"})

ENROLLMENT_STATUSES = ("active", "completed", "dropped")
SEMESTERS = (1, 2)

TRANSFER_PENDING = "pending"
TRANSFER_APPROVED = "approved"
TRANSFER_REJECTED = "rejected"
TRANSFER_CANCELLED = "cancelled"

# Per-teacher student management flags stored on User.permissions
TEACHER_PERMISSION_FLAGS = (
    "can_archive_students",
    "can_transfer_students",
    "can_soft_delete_students",
    "can_hard_delete_students",
)

MEETING_FORM_SETTING_KEYS = (
    "showTitle",
    "showTopic",
    "showDescription",
    "showDate",
    "showMeetingType",
    "showStudentSelection",
)

MONTH_NAMES_SHORT = ("Jan", "Feb", "Mar", "Apr", "Mei", "Jun", "Jul", "Agu", "Sep", "Okt", "Nov", "Des")
MONTH_NAMES = (
    "Januari",
    "Februari",
    "Maret",
    "April",
    "Mei",
    "Juni",
    "Juli",
    "Agustus",
    "September",
    "Oktober",
    "November",
    "Desember",
)
