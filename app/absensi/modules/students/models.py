from __future__ import annotations

from datetime import date, datetime
from typing import TYPE_CHECKING

from sqlalchemy import JSON, Date, DateTime, ForeignKey, Index, Integer, String, Text
from sqlalchemy.orm import Mapped, mapped_column, relationship

from app.absensi.models import Base

if TYPE_CHECKING:
    from app.absensi.modules.classes.models import Class
    from app.absensi.modules.organization.models import Daerah, Desa, Kelompok


class StudentClass(Base):
    __tablename__ = "student_classes"
    student_id: Mapped[int] = mapped_column(ForeignKey("students.id", ondelete="CASCADE"), primary_key=True)
    class_id: Mapped[int] = mapped_column(ForeignKey("classes.id", ondelete="CASCADE"), primary_key=True)


class Student(Base):
    __tablename__ = "students"
    __table_args__ = (
        Index("idx_students_kelompok", "kelompok_id"),
        Index("idx_students_desa", "desa_id"),
        Index("idx_students_daerah", "daerah_id"),
        Index("idx_students_status", "status"),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    name: Mapped[str] = mapped_column(String(255), nullable=False)
    gender: Mapped[str | None] = mapped_column(String(32), nullable=True)  # Laki-laki / Perempuan
    status: Mapped[str] = mapped_column(String(32), nullable=False, default="active")  # active, graduated, inactive

    daerah_id: Mapped[int | None] = mapped_column(ForeignKey("daerah.id", ondelete="SET NULL"), nullable=True)
    desa_id: Mapped[int | None] = mapped_column(ForeignKey("desa.id", ondelete="SET NULL"), nullable=True)
    kelompok_id: Mapped[int | None] = mapped_column(ForeignKey("kelompok.id", ondelete="SET NULL"), nullable=True)

    # Biodata
    nomor_induk: Mapped[str | None] = mapped_column(String(64), nullable=True)
    tempat_lahir: Mapped[str | None] = mapped_column(String(128), nullable=True)
    tanggal_lahir: Mapped[date | None] = mapped_column(Date, nullable=True)
    anak_ke: Mapped[int | None] = mapped_column(Integer, nullable=True)
    alamat: Mapped[str | None] = mapped_column(Text, nullable=True)
    nomor_telepon: Mapped[str | None] = mapped_column(String(64), nullable=True)
    nama_ayah: Mapped[str | None] = mapped_column(String(255), nullable=True)
    nama_ibu: Mapped[str | None] = mapped_column(String(255), nullable=True)
    alamat_orangtua: Mapped[str | None] = mapped_column(Text, nullable=True)
    telepon_orangtua: Mapped[str | None] = mapped_column(String(64), nullable=True)
    pekerjaan_ayah: Mapped[str | None] = mapped_column(String(128), nullable=True)
    pekerjaan_ibu: Mapped[str | None] = mapped_column(String(128), nullable=True)
    nama_wali: Mapped[str | None] = mapped_column(String(255), nullable=True)
    alamat_wali: Mapped[str | None] = mapped_column(Text, nullable=True)
    pekerjaan_wali: Mapped[str | None] = mapped_column(String(128), nullable=True)

    # Lifecycle
    archived_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=False), nullable=True)
    archived_by_user_id: Mapped[int | None] = mapped_column(ForeignKey("users.id", ondelete="SET NULL"), nullable=True)
    archive_notes: Mapped[str | None] = mapped_column(Text, nullable=True)
    deleted_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=False), nullable=True)
    deleted_by_user_id: Mapped[int | None] = mapped_column(ForeignKey("users.id", ondelete="SET NULL"), nullable=True)
    transfer_history: Mapped[list | None] = mapped_column(JSON, nullable=True, default=list)

    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=False), nullable=False, default=datetime.utcnow)
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=False), nullable=False, default=datetime.utcnow)

    classes: Mapped[list["Class"]] = relationship(secondary="student_classes", lazy="selectin", order_by="Class.name")
    daerah: Mapped["Daerah | None"] = relationship(lazy="joined")
    desa: Mapped["Desa | None"] = relationship(lazy="joined")
    kelompok: Mapped["Kelompok | None"] = relationship(lazy="joined")

    @property
    def class_ids(self) -> list[int]:
        return [c.id for c in self.classes]

    @property
    def is_deleted(self) -> bool:
        return self.deleted_at is not None


class TransferRequest(Base):
    __tablename__ = "transfer_requests"
    __table_args__ = (
        Index("idx_transfer_requests_status", "status"),
        Index("idx_transfer_requests_requested_by", "requested_by_user_id"),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    student_ids: Mapped[list] = mapped_column(JSON, nullable=False, default=list)

    from_daerah_id: Mapped[int | None] = mapped_column(Integer, nullable=True)
    from_desa_id: Mapped[int | None] = mapped_column(Integer, nullable=True)
    from_kelompok_id: Mapped[int | None] = mapped_column(Integer, nullable=True)
    to_daerah_id: Mapped[int] = mapped_column(ForeignKey("daerah.id", ondelete="CASCADE"), nullable=False)
    to_desa_id: Mapped[int] = mapped_column(ForeignKey("desa.id", ondelete="CASCADE"), nullable=False)
    to_kelompok_id: Mapped[int] = mapped_column(ForeignKey("kelompok.id", ondelete="CASCADE"), nullable=False)
    to_class_ids: Mapped[list | None] = mapped_column(JSON, nullable=True)

    status: Mapped[str] = mapped_column(String(32), nullable=False, default="pending")  # pending, approved, rejected, cancelled
    requested_by_user_id: Mapped[int | None] = mapped_column(ForeignKey("users.id", ondelete="SET NULL"), nullable=True)
    requested_at: Mapped[datetime] = mapped_column(DateTime(timezone=False), nullable=False, default=datetime.utcnow)
    reason: Mapped[str | None] = mapped_column(Text, nullable=True)
    notes: Mapped[str | None] = mapped_column(Text, nullable=True)

    reviewed_by_user_id: Mapped[int | None] = mapped_column(ForeignKey("users.id", ondelete="SET NULL"), nullable=True)
    reviewed_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=False), nullable=True)
    review_notes: Mapped[str | None] = mapped_column(Text, nullable=True)
    executed_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=False), nullable=True)
    executed_by_user_id: Mapped[int | None] = mapped_column(ForeignKey("users.id", ondelete="SET NULL"), nullable=True)

    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=False), nullable=False, default=datetime.utcnow)

    to_kelompok: Mapped["Kelompok"] = relationship(lazy="joined")
