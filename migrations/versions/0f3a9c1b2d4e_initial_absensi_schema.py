"""initial absensi schema

Revision ID: 0f3a9c1b2d4e
Revises:
Create Date: 2026-10-18 09:12:41.208113

"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision: str = '0f3a9c1b2d4e'
down_revision: Union[str, Sequence[str], None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def _timestamps() -> list[sa.Column]:
    return [
        sa.Column("created_at", sa.DateTime(), nullable=False, server_default=sa.func.now()),
        sa.Column("updated_at", sa.DateTime(), nullable=False, server_default=sa.func.now()),
    ]


def upgrade() -> None:
    """Create organisation, account, class, student, meeting and attendance tables."""
    # Check if tables already exist (idempotent)
    conn = op.get_bind()
    inspector = sa.inspect(conn)
    existing_tables = set(inspector.get_table_names())

    # Organisation hierarchy: daerah > desa > kelompok
    if "daerah" not in existing_tables:
        op.create_table(
            "daerah",
            sa.Column("id", sa.Integer(), primary_key=True),
            sa.Column("name", sa.String(255), nullable=False, unique=True),
            sa.Column("created_at", sa.DateTime(), nullable=False, server_default=sa.func.now()),
        )

    if "desa" not in existing_tables:
        op.create_table(
            "desa",
            sa.Column("id", sa.Integer(), primary_key=True),
            sa.Column("name", sa.String(255), nullable=False),
            sa.Column("daerah_id", sa.Integer(), sa.ForeignKey("daerah.id", ondelete="RESTRICT"), nullable=False),
            sa.Column("created_at", sa.DateTime(), nullable=False, server_default=sa.func.now()),
            sa.UniqueConstraint("daerah_id", "name", name="uq_desa_daerah_name"),
        )
        op.create_index("idx_desa_daerah", "desa", ["daerah_id"])

    if "kelompok" not in existing_tables:
        op.create_table(
            "kelompok",
            sa.Column("id", sa.Integer(), primary_key=True),
            sa.Column("name", sa.String(255), nullable=False),
            sa.Column("desa_id", sa.Integer(), sa.ForeignKey("desa.id", ondelete="RESTRICT"), nullable=False),
            sa.Column("created_at", sa.DateTime(), nullable=False, server_default=sa.func.now()),
            sa.UniqueConstraint("desa_id", "name", name="uq_kelompok_desa_name"),
        )
        op.create_index("idx_kelompok_desa", "kelompok", ["desa_id"])

    # Accounts and RBAC
    if "users" not in existing_tables:
        op.create_table(
            "users",
            sa.Column("id", sa.Integer(), primary_key=True),
            sa.Column("username", sa.String(64), nullable=False, unique=True),
            sa.Column("email", sa.String(320), nullable=False, unique=True),
            sa.Column("full_name", sa.String(255), nullable=False, server_default=""),
            sa.Column("password_hash", sa.String(255), nullable=False),
            sa.Column("is_active", sa.Boolean(), nullable=False, server_default=sa.true()),
            sa.Column("daerah_id", sa.Integer(), sa.ForeignKey("daerah.id", ondelete="SET NULL"), nullable=True),
            sa.Column("desa_id", sa.Integer(), sa.ForeignKey("desa.id", ondelete="SET NULL"), nullable=True),
            sa.Column("kelompok_id", sa.Integer(), sa.ForeignKey("kelompok.id", ondelete="SET NULL"), nullable=True),
            sa.Column("permissions", sa.JSON(), nullable=True),
            sa.Column("meeting_form_settings", sa.JSON(), nullable=True),
            *_timestamps(),
        )

    if "roles" not in existing_tables:
        op.create_table(
            "roles",
            sa.Column("id", sa.Integer(), primary_key=True),
            sa.Column("key", sa.String(64), nullable=False, unique=True),
            sa.Column("name", sa.String(128), nullable=False),
            sa.Column("created_at", sa.DateTime(), nullable=False, server_default=sa.func.now()),
        )

    if "permissions" not in existing_tables:
        op.create_table(
            "permissions",
            sa.Column("id", sa.Integer(), primary_key=True),
            sa.Column("key", sa.String(128), nullable=False, unique=True),
            sa.Column("name", sa.String(128), nullable=False),
            sa.Column("created_at", sa.DateTime(), nullable=False, server_default=sa.func.now()),
        )

    if "user_roles" not in existing_tables:
        op.create_table(
            "user_roles",
            sa.Column("user_id", sa.Integer(), sa.ForeignKey("users.id", ondelete="CASCADE"), primary_key=True),
            sa.Column("role_id", sa.Integer(), sa.ForeignKey("roles.id", ondelete="CASCADE"), primary_key=True),
        )

    if "role_permissions" not in existing_tables:
        op.create_table(
            "role_permissions",
            sa.Column("role_id", sa.Integer(), sa.ForeignKey("roles.id", ondelete="CASCADE"), primary_key=True),
            sa.Column("permission_id", sa.Integer(), sa.ForeignKey("permissions.id", ondelete="CASCADE"), primary_key=True),
        )

    if "audit_events" not in existing_tables:
        op.create_table(
            "audit_events",
            sa.Column("id", sa.Integer(), primary_key=True),
            sa.Column("created_at", sa.DateTime(), nullable=False, server_default=sa.func.now()),
            sa.Column("request_id", sa.String(64), nullable=True),
            sa.Column("actor_user_id", sa.Integer(), sa.ForeignKey("users.id", ondelete="SET NULL"), nullable=True),
            sa.Column("actor_username", sa.String(64), nullable=True),
            sa.Column("action", sa.String(128), nullable=False),
            sa.Column("entity_type", sa.String(128), nullable=True),
            sa.Column("entity_id", sa.String(128), nullable=True),
            sa.Column("reason", sa.String(512), nullable=True),
            sa.Column("metadata_json", sa.Text(), nullable=True),
            sa.Column("client_ip", sa.String(64), nullable=True),
            sa.UniqueConstraint("request_id", "id", name="uq_audit_request_id_id"),
        )

    # Classes
    if "class_master_categories" not in existing_tables:
        op.create_table(
            "class_master_categories",
            sa.Column("id", sa.Integer(), primary_key=True),
            sa.Column("code", sa.String(64), nullable=False, unique=True),
            sa.Column("name", sa.String(128), nullable=False),
            sa.Column("is_sambung_capable", sa.Boolean(), nullable=False, server_default=sa.false()),
        )

    if "class_masters" not in existing_tables:
        op.create_table(
            "class_masters",
            sa.Column("id", sa.Integer(), primary_key=True),
            sa.Column("name", sa.String(255), nullable=False, unique=True),
            sa.Column("description", sa.Text(), nullable=True),
            sa.Column("sort_order", sa.Integer(), nullable=False, server_default="0"),
            sa.Column(
                "category_id",
                sa.Integer(),
                sa.ForeignKey("class_master_categories.id", ondelete="SET NULL"),
                nullable=True,
            ),
            *_timestamps(),
        )

    if "classes" not in existing_tables:
        op.create_table(
            "classes",
            sa.Column("id", sa.Integer(), primary_key=True),
            sa.Column("name", sa.String(255), nullable=False),
            sa.Column("kelompok_id", sa.Integer(), sa.ForeignKey("kelompok.id", ondelete="RESTRICT"), nullable=False),
            sa.Column("class_master_id", sa.Integer(), sa.ForeignKey("class_masters.id", ondelete="SET NULL"), nullable=True),
            sa.Column("is_active", sa.Boolean(), nullable=False, server_default=sa.true()),
            *_timestamps(),
        )
        op.create_index("idx_classes_kelompok", "classes", ["kelompok_id"])
        op.create_index("idx_classes_master", "classes", ["class_master_id"])

    if "teacher_classes" not in existing_tables:
        op.create_table(
            "teacher_classes",
            sa.Column("teacher_id", sa.Integer(), sa.ForeignKey("users.id", ondelete="CASCADE"), primary_key=True),
            sa.Column("class_id", sa.Integer(), sa.ForeignKey("classes.id", ondelete="CASCADE"), primary_key=True),
        )

    # Students
    if "students" not in existing_tables:
        op.create_table(
            "students",
            sa.Column("id", sa.Integer(), primary_key=True),
            sa.Column("name", sa.String(255), nullable=False),
            sa.Column("gender", sa.String(32), nullable=True),
            sa.Column("status", sa.String(32), nullable=False, server_default="active"),
            sa.Column("daerah_id", sa.Integer(), sa.ForeignKey("daerah.id", ondelete="SET NULL"), nullable=True),
            sa.Column("desa_id", sa.Integer(), sa.ForeignKey("desa.id", ondelete="SET NULL"), nullable=True),
            sa.Column("kelompok_id", sa.Integer(), sa.ForeignKey("kelompok.id", ondelete="SET NULL"), nullable=True),
            sa.Column("nomor_induk", sa.String(64), nullable=True),
            sa.Column("tempat_lahir", sa.String(128), nullable=True),
            sa.Column("tanggal_lahir", sa.Date(), nullable=True),
            sa.Column("anak_ke", sa.Integer(), nullable=True),
            sa.Column("alamat", sa.Text(), nullable=True),
            sa.Column("nomor_telepon", sa.String(64), nullable=True),
            sa.Column("nama_ayah", sa.String(255), nullable=True),
            sa.Column("nama_ibu", sa.String(255), nullable=True),
            sa.Column("alamat_orangtua", sa.Text(), nullable=True),
            sa.Column("telepon_orangtua", sa.String(64), nullable=True),
            sa.Column("pekerjaan_ayah", sa.String(128), nullable=True),
            sa.Column("pekerjaan_ibu", sa.String(128), nullable=True),
            sa.Column("nama_wali", sa.String(255), nullable=True),
            sa.Column("alamat_wali", sa.Text(), nullable=True),
            sa.Column("pekerjaan_wali", sa.String(128), nullable=True),
            sa.Column("archived_at", sa.DateTime(), nullable=True),
            sa.Column("archived_by_user_id", sa.Integer(), sa.ForeignKey("users.id", ondelete="SET NULL"), nullable=True),
            sa.Column("archive_notes", sa.Text(), nullable=True),
            sa.Column("deleted_at", sa.DateTime(), nullable=True),
            sa.Column("deleted_by_user_id", sa.Integer(), sa.ForeignKey("users.id", ondelete="SET NULL"), nullable=True),
            sa.Column("transfer_history", sa.JSON(), nullable=True),
            *_timestamps(),
        )
        op.create_index("idx_students_kelompok", "students", ["kelompok_id"])
        op.create_index("idx_students_desa", "students", ["desa_id"])
        op.create_index("idx_students_daerah", "students", ["daerah_id"])
        op.create_index("idx_students_status", "students", ["status"])

    if "student_classes" not in existing_tables:
        op.create_table(
            "student_classes",
            sa.Column("student_id", sa.Integer(), sa.ForeignKey("students.id", ondelete="CASCADE"), primary_key=True),
            sa.Column("class_id", sa.Integer(), sa.ForeignKey("classes.id", ondelete="CASCADE"), primary_key=True),
        )

    if "transfer_requests" not in existing_tables:
        op.create_table(
            "transfer_requests",
            sa.Column("id", sa.Integer(), primary_key=True),
            sa.Column("student_ids", sa.JSON(), nullable=False),
            sa.Column("from_daerah_id", sa.Integer(), nullable=True),
            sa.Column("from_desa_id", sa.Integer(), nullable=True),
            sa.Column("from_kelompok_id", sa.Integer(), nullable=True),
            sa.Column("to_daerah_id", sa.Integer(), sa.ForeignKey("daerah.id", ondelete="CASCADE"), nullable=False),
            sa.Column("to_desa_id", sa.Integer(), sa.ForeignKey("desa.id", ondelete="CASCADE"), nullable=False),
            sa.Column("to_kelompok_id", sa.Integer(), sa.ForeignKey("kelompok.id", ondelete="CASCADE"), nullable=False),
            sa.Column("to_class_ids", sa.JSON(), nullable=True),
            sa.Column("status", sa.String(32), nullable=False, server_default="pending"),
            sa.Column("requested_by_user_id", sa.Integer(), sa.ForeignKey("users.id", ondelete="SET NULL"), nullable=True),
            sa.Column("requested_at", sa.DateTime(), nullable=False, server_default=sa.func.now()),
            sa.Column("reason", sa.Text(), nullable=True),
            sa.Column("notes", sa.Text(), nullable=True),
            sa.Column("reviewed_by_user_id", sa.Integer(), sa.ForeignKey("users.id", ondelete="SET NULL"), nullable=True),
            sa.Column("reviewed_at", sa.DateTime(), nullable=True),
            sa.Column("review_notes", sa.Text(), nullable=True),
            sa.Column("executed_at", sa.DateTime(), nullable=True),
            sa.Column("executed_by_user_id", sa.Integer(), sa.ForeignKey("users.id", ondelete="SET NULL"), nullable=True),
            sa.Column("updated_at", sa.DateTime(), nullable=False, server_default=sa.func.now()),
        )
        op.create_index("idx_transfer_requests_status", "transfer_requests", ["status"])
        op.create_index("idx_transfer_requests_requested_by", "transfer_requests", ["requested_by_user_id"])

    # Academic years
    if "academic_years" not in existing_tables:
        op.create_table(
            "academic_years",
            sa.Column("id", sa.Integer(), primary_key=True),
            sa.Column("name", sa.String(64), nullable=False, unique=True),
            sa.Column("start_year", sa.Integer(), nullable=False),
            sa.Column("end_year", sa.Integer(), nullable=False),
            sa.Column("start_date", sa.Date(), nullable=True),
            sa.Column("end_date", sa.Date(), nullable=True),
            sa.Column("is_active", sa.Boolean(), nullable=False, server_default=sa.false()),
            *_timestamps(),
        )

    if "student_enrollments" not in existing_tables:
        op.create_table(
            "student_enrollments",
            sa.Column("id", sa.Integer(), primary_key=True),
            sa.Column("student_id", sa.Integer(), sa.ForeignKey("students.id", ondelete="CASCADE"), nullable=False),
            sa.Column("class_id", sa.Integer(), sa.ForeignKey("classes.id", ondelete="CASCADE"), nullable=False),
            sa.Column("academic_year_id", sa.Integer(), sa.ForeignKey("academic_years.id", ondelete="CASCADE"), nullable=False),
            sa.Column("semester", sa.Integer(), nullable=False, server_default="1"),
            sa.Column("status", sa.String(32), nullable=False, server_default="active"),
            *_timestamps(),
            sa.UniqueConstraint("student_id", "academic_year_id", "semester", name="uq_enrollment_student_year_semester"),
        )
        op.create_index("idx_enrollments_class_year", "student_enrollments", ["class_id", "academic_year_id"])

    # Meetings and attendance
    if "meetings" not in existing_tables:
        op.create_table(
            "meetings",
            sa.Column("id", sa.Integer(), primary_key=True),
            sa.Column("class_id", sa.Integer(), sa.ForeignKey("classes.id", ondelete="CASCADE"), nullable=False),
            sa.Column("class_ids", sa.JSON(), nullable=False),
            sa.Column("teacher_id", sa.Integer(), sa.ForeignKey("users.id", ondelete="SET NULL"), nullable=True),
            sa.Column("title", sa.String(255), nullable=False),
            sa.Column("date", sa.Date(), nullable=False),
            sa.Column("topic", sa.String(255), nullable=True),
            sa.Column("description", sa.Text(), nullable=True),
            sa.Column("meeting_type_code", sa.String(64), nullable=False, server_default="PEMBINAAN"),
            sa.Column("meeting_number", sa.Integer(), nullable=False, server_default="1"),
            sa.Column("student_snapshot", sa.JSON(), nullable=False),
            *_timestamps(),
        )
        op.create_index("idx_meetings_date", "meetings", ["date"])
        op.create_index("idx_meetings_class", "meetings", ["class_id"])
        op.create_index("idx_meetings_teacher", "meetings", ["teacher_id"])

    if "attendance_logs" not in existing_tables:
        op.create_table(
            "attendance_logs",
            sa.Column("id", sa.Integer(), primary_key=True),
            sa.Column("meeting_id", sa.Integer(), sa.ForeignKey("meetings.id", ondelete="CASCADE"), nullable=False),
            sa.Column("student_id", sa.Integer(), sa.ForeignKey("students.id", ondelete="CASCADE"), nullable=False),
            sa.Column("date", sa.Date(), nullable=False),
            sa.Column("status", sa.String(1), nullable=False),
            sa.Column("reason", sa.String(512), nullable=True),
            sa.Column("recorded_by_user_id", sa.Integer(), sa.ForeignKey("users.id", ondelete="SET NULL"), nullable=True),
            *_timestamps(),
            sa.UniqueConstraint("student_id", "meeting_id", name="uq_attendance_student_meeting"),
        )
        op.create_index("idx_attendance_meeting", "attendance_logs", ["meeting_id"])
        op.create_index("idx_attendance_date", "attendance_logs", ["date"])


def downgrade() -> None:
    """Drop every table in reverse dependency order."""
    op.drop_index("idx_attendance_date", table_name="attendance_logs")
    op.drop_index("idx_attendance_meeting", table_name="attendance_logs")
    op.drop_table("attendance_logs")
    op.drop_index("idx_meetings_teacher", table_name="meetings")
    op.drop_index("idx_meetings_class", table_name="meetings")
    op.drop_index("idx_meetings_date", table_name="meetings")
    op.drop_table("meetings")
    op.drop_index("idx_enrollments_class_year", table_name="student_enrollments")
    op.drop_table("student_enrollments")
    op.drop_table("academic_years")
    op.drop_index("idx_transfer_requests_requested_by", table_name="transfer_requests")
    op.drop_index("idx_transfer_requests_status", table_name="transfer_requests")
    op.drop_table("transfer_requests")
    op.drop_table("student_classes")
    op.drop_index("idx_students_status", table_name="students")
    op.drop_index("idx_students_daerah", table_name="students")
    op.drop_index("idx_students_desa", table_name="students")
    op.drop_index("idx_students_kelompok", table_name="students")
    op.drop_table("students")
    op.drop_table("teacher_classes")
    op.drop_index("idx_classes_master", table_name="classes")
    op.drop_index("idx_classes_kelompok", table_name="classes")
    op.drop_table("classes")
    op.drop_table("class_masters")
    op.drop_table("class_master_categories")
    op.drop_table("audit_events")
    op.drop_table("role_permissions")
    op.drop_table("user_roles")
    op.drop_table("permissions")
    op.drop_table("roles")
    op.drop_table("users")
    op.drop_index("idx_kelompok_desa", table_name="kelompok")
    op.drop_table("kelompok")
    op.drop_index("idx_desa_daerah", table_name="desa")
    op.drop_table("desa")
    op.drop_table("daerah")
