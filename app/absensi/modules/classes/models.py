from __future__ import annotations

from datetime import datetime
from typing import TYPE_CHECKING

from sqlalchemy import Boolean, DateTime, ForeignKey, Index, Integer, String, Text
from sqlalchemy.orm import Mapped, mapped_column, relationship

from app.absensi.models import Base

if TYPE_CHECKING:
    from app.absensi.models import User
    from app.absensi.modules.organization.models import Kelompok


class ClassMasterCategory(Base):
    __tablename__ = "class_master_categories"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    code: Mapped[str] = mapped_column(String(64), nullable=False, unique=True)  # e.g. "CABERAWIT"
    name: Mapped[str] = mapped_column(String(128), nullable=False)
    # Sambung (joint) meetings are only offered for classes in these categories
    is_sambung_capable: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)


class ClassMaster(Base):
    """Template class (e.g. "Kelas 1", "Remaja") that kelompok-level classes are created from."""

    __tablename__ = "class_masters"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    name: Mapped[str] = mapped_column(String(255), nullable=False, unique=True)
    description: Mapped[str | None] = mapped_column(Text, nullable=True)
    sort_order: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    category_id: Mapped[int | None] = mapped_column(
        ForeignKey("class_master_categories.id", ondelete="SET NULL"), nullable=True
    )

    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=False), nullable=False, default=datetime.utcnow)
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=False), nullable=False, default=datetime.utcnow)

    category: Mapped[ClassMasterCategory | None] = relationship(lazy="joined")


class TeacherClass(Base):
    __tablename__ = "teacher_classes"
    teacher_id: Mapped[int] = mapped_column(ForeignKey("users.id", ondelete="CASCADE"), primary_key=True)
    class_id: Mapped[int] = mapped_column(ForeignKey("classes.id", ondelete="CASCADE"), primary_key=True)


class Class(Base):
    __tablename__ = "classes"
    __table_args__ = (
        Index("idx_classes_kelompok", "kelompok_id"),
        Index("idx_classes_master", "class_master_id"),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    name: Mapped[str] = mapped_column(String(255), nullable=False)
    kelompok_id: Mapped[int] = mapped_column(ForeignKey("kelompok.id", ondelete="RESTRICT"), nullable=False)
    class_master_id: Mapped[int | None] = mapped_column(ForeignKey("class_masters.id", ondelete="SET NULL"), nullable=True)
    is_active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)

    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=False), nullable=False, default=datetime.utcnow)
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=False), nullable=False, default=datetime.utcnow)

    kelompok: Mapped["Kelompok"] = relationship(lazy="joined")
    class_master: Mapped[ClassMaster | None] = relationship(lazy="joined")
    teachers: Mapped[list["User"]] = relationship(
        secondary="teacher_classes",
        back_populates="classes",
        lazy="selectin",
    )

    @property
    def category(self) -> ClassMasterCategory | None:
        return self.class_master.category if self.class_master else None

    @property
    def desa_id(self) -> int:
        return self.kelompok.desa_id

    @property
    def daerah_id(self) -> int:
        return self.kelompok.desa.daerah_id
