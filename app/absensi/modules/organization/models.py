from __future__ import annotations

from datetime import datetime

from sqlalchemy import DateTime, ForeignKey, Index, Integer, String, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column, relationship

from app.absensi.models import Base


class Daerah(Base):
    __tablename__ = "daerah"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    name: Mapped[str] = mapped_column(String(255), nullable=False, unique=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=False), nullable=False, default=datetime.utcnow)

    desa: Mapped[list["Desa"]] = relationship(back_populates="daerah", order_by="Desa.name", lazy="selectin")


class Desa(Base):
    __tablename__ = "desa"
    __table_args__ = (
        UniqueConstraint("daerah_id", "name", name="uq_desa_daerah_name"),
        Index("idx_desa_daerah", "daerah_id"),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    name: Mapped[str] = mapped_column(String(255), nullable=False)
    daerah_id: Mapped[int] = mapped_column(ForeignKey("daerah.id", ondelete="RESTRICT"), nullable=False)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=False), nullable=False, default=datetime.utcnow)

    daerah: Mapped[Daerah] = relationship(back_populates="desa", lazy="joined")
    kelompok: Mapped[list["Kelompok"]] = relationship(back_populates="desa", order_by="Kelompok.name", lazy="selectin")


class Kelompok(Base):
    __tablename__ = "kelompok"
    __table_args__ = (
        UniqueConstraint("desa_id", "name", name="uq_kelompok_desa_name"),
        Index("idx_kelompok_desa", "desa_id"),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    name: Mapped[str] = mapped_column(String(255), nullable=False)
    desa_id: Mapped[int] = mapped_column(ForeignKey("desa.id", ondelete="RESTRICT"), nullable=False)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=False), nullable=False, default=datetime.utcnow)

    desa: Mapped[Desa] = relationship(back_populates="kelompok", lazy="joined")

    @property
    def daerah_id(self) -> int:
        return self.desa.daerah_id
