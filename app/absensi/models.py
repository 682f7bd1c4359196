from __future__ import annotations

from datetime import datetime
from typing import TYPE_CHECKING

from sqlalchemy import JSON, Boolean, DateTime, ForeignKey, Integer, String, Text, UniqueConstraint
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column, relationship

if TYPE_CHECKING:
    from app.absensi.modules.classes.models import Class
    from app.absensi.modules.organization.models import Daerah, Desa, Kelompok


class Base(DeclarativeBase):
    pass


class UserRole(Base):
    __tablename__ = "user_roles"
    user_id: Mapped[int] = mapped_column(ForeignKey("users.id", ondelete="CASCADE"), primary_key=True)
    role_id: Mapped[int] = mapped_column(ForeignKey("roles.id", ondelete="CASCADE"), primary_key=True)


class RolePermission(Base):
    __tablename__ = "role_permissions"
    role_id: Mapped[int] = mapped_column(ForeignKey("roles.id", ondelete="CASCADE"), primary_key=True)
    permission_id: Mapped[int] = mapped_column(ForeignKey("permissions.id", ondelete="CASCADE"), primary_key=True)


class User(Base):
    """
    Login account and organisational profile in one row.

    The org columns define the user's scope: an admin with only daerah_id is an
    admin daerah, with desa_id an admin desa, with kelompok_id an admin kelompok.
    Teachers follow the same pattern.
    """

    __tablename__ = "users"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    username: Mapped[str] = mapped_column(String(64), nullable=False, unique=True)
    email: Mapped[str] = mapped_column(String(320), nullable=False, unique=True)
    full_name: Mapped[str] = mapped_column(String(255), nullable=False, default="")
    password_hash: Mapped[str] = mapped_column(String(255), nullable=False)
    is_active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)

    daerah_id: Mapped[int | None] = mapped_column(ForeignKey("daerah.id", ondelete="SET NULL"), nullable=True)
    desa_id: Mapped[int | None] = mapped_column(ForeignKey("desa.id", ondelete="SET NULL"), nullable=True)
    kelompok_id: Mapped[int | None] = mapped_column(ForeignKey("kelompok.id", ondelete="SET NULL"), nullable=True)

    # Student-management flags for teachers, e.g. {"can_archive_students": true}
    permissions: Mapped[dict | None] = mapped_column(JSON, nullable=True, default=dict)
    meeting_form_settings: Mapped[dict | None] = mapped_column(JSON, nullable=True)

    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=False), nullable=False, default=datetime.utcnow)
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=False), nullable=False, default=datetime.utcnow)

    roles: Mapped[list["Role"]] = relationship(
        secondary="user_roles",
        back_populates="users",
        lazy="selectin",
    )
    classes: Mapped[list["Class"]] = relationship(
        secondary="teacher_classes",
        back_populates="teachers",
        lazy="selectin",
        order_by="Class.name",
    )
    daerah: Mapped["Daerah | None"] = relationship(lazy="joined")
    desa: Mapped["Desa | None"] = relationship(lazy="joined")
    kelompok: Mapped["Kelompok | None"] = relationship(lazy="joined")

    @property
    def role(self) -> str | None:
        """Primary profile role: superadmin > admin > teacher."""
        from app.absensi.constants import ROLES

        keys = {r.key for r in self.roles}
        for key in ROLES:
            if key in keys:
                return key
        return None

    @property
    def class_ids(self) -> list[int]:
        return [c.id for c in self.classes]

    def has_flag(self, flag: str) -> bool:
        return bool((self.permissions or {}).get(flag))


class Role(Base):
    __tablename__ = "roles"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    key: Mapped[str] = mapped_column(String(64), nullable=False, unique=True)  # e.g. "admin"
    name: Mapped[str] = mapped_column(String(128), nullable=False)  # display name
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=False), nullable=False, default=datetime.utcnow)

    users: Mapped[list[User]] = relationship(secondary="user_roles", back_populates="roles", lazy="selectin")
    permissions: Mapped[list["Permission"]] = relationship(
        secondary="role_permissions",
        back_populates="roles",
        lazy="selectin",
    )


class Permission(Base):
    __tablename__ = "permissions"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    key: Mapped[str] = mapped_column(String(128), nullable=False, unique=True)  # e.g. "students.view"
    name: Mapped[str] = mapped_column(String(128), nullable=False)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=False), nullable=False, default=datetime.utcnow)

    roles: Mapped[list[Role]] = relationship(secondary="role_permissions", back_populates="permissions", lazy="selectin")


class AuditEvent(Base):
    """
    Append-only audit trail event.
    Module tables never reference it; entity_type/entity_id point back at the row.
    """

    __tablename__ = "audit_events"
    __table_args__ = (
        UniqueConstraint("request_id", "id", name="uq_audit_request_id_id"),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True)

    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=False), nullable=False, default=datetime.utcnow)
    request_id: Mapped[str | None] = mapped_column(String(64), nullable=True)

    actor_user_id: Mapped[int | None] = mapped_column(ForeignKey("users.id", ondelete="SET NULL"), nullable=True)
    actor_username: Mapped[str | None] = mapped_column(String(64), nullable=True)

    action: Mapped[str] = mapped_column(String(128), nullable=False)  # e.g. "student.archive"
    entity_type: Mapped[str | None] = mapped_column(String(128), nullable=True)  # e.g. "Student"
    entity_id: Mapped[str | None] = mapped_column(String(128), nullable=True)

    reason: Mapped[str | None] = mapped_column(String(512), nullable=True)
    metadata_json: Mapped[str | None] = mapped_column(Text, nullable=True)  # small JSON string
    client_ip: Mapped[str | None] = mapped_column(String(64), nullable=True)


# Ensure module models are imported so Base.metadata includes their tables.
# (Kept at bottom to avoid circular imports.)
from app.absensi.modules.organization.models import Daerah, Desa, Kelompok  # noqa: E402,F401
from app.absensi.modules.classes.models import Class, ClassMaster, ClassMasterCategory, TeacherClass  # noqa: E402,F401
from app.absensi.modules.students.models import Student, StudentClass, TransferRequest  # noqa: E402,F401
from app.absensi.modules.academic_years.models import AcademicYear, StudentEnrollment  # noqa: E402,F401
from app.absensi.modules.meetings.models import AttendanceLog, Meeting  # noqa: E402,F401
