from __future__ import annotations

import datetime as dt
from typing import TYPE_CHECKING

from sqlalchemy import JSON, Date, DateTime, ForeignKey, Index, Integer, String, Text, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column, relationship

from app.absensi.models import Base

if TYPE_CHECKING:
    from app.absensi.models import User
    from app.absensi.modules.classes.models import Class
    from app.absensi.modules.students.models import Student


class Meeting(Base):
    __tablename__ = "meetings"
    __table_args__ = (
        Index("idx_meetings_date", "date"),
        Index("idx_meetings_class", "class_id"),
        Index("idx_meetings_teacher", "teacher_id"),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    # Primary class (first of class_ids); class_ids holds every class the meeting covers.
    class_id: Mapped[int] = mapped_column(ForeignKey("classes.id", ondelete="CASCADE"), nullable=False)
    class_ids: Mapped[list] = mapped_column(JSON, nullable=False, default=list)
    teacher_id: Mapped[int | None] = mapped_column(ForeignKey("users.id", ondelete="SET NULL"), nullable=True)

    title: Mapped[str] = mapped_column(String(255), nullable=False)
    date: Mapped[dt.date] = mapped_column(Date, nullable=False)
    topic: Mapped[str | None] = mapped_column(String(255), nullable=True)
    description: Mapped[str | None] = mapped_column(Text, nullable=True)
    meeting_type_code: Mapped[str] = mapped_column(String(64), nullable=False, default="PEMBINAAN")
    meeting_number: Mapped[int] = mapped_column(Integer, nullable=False, default=1)

    # Student ids frozen at creation time; attendance is only recorded for these.
    student_snapshot: Mapped[list] = mapped_column(JSON, nullable=False, default=list)

    created_at: Mapped[dt.datetime] = mapped_column(DateTime(timezone=False), nullable=False, default=dt.datetime.utcnow)
    updated_at: Mapped[dt.datetime] = mapped_column(DateTime(timezone=False), nullable=False, default=dt.datetime.utcnow)

    primary_class: Mapped["Class"] = relationship(lazy="joined")
    teacher: Mapped["User | None"] = relationship(lazy="joined")
    attendance_logs: Mapped[list["AttendanceLog"]] = relationship(
        back_populates="meeting",
        cascade="all, delete-orphan",
        lazy="selectin",
    )

    @property
    def all_class_ids(self) -> list[int]:
        return list(self.class_ids or []) or [self.class_id]


class AttendanceLog(Base):
    __tablename__ = "attendance_logs"
    __table_args__ = (
        UniqueConstraint("student_id", "meeting_id", name="uq_attendance_student_meeting"),
        Index("idx_attendance_meeting", "meeting_id"),
        Index("idx_attendance_date", "date"),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    meeting_id: Mapped[int] = mapped_column(ForeignKey("meetings.id", ondelete="CASCADE"), nullable=False)
    student_id: Mapped[int] = mapped_column(ForeignKey("students.id", ondelete="CASCADE"), nullable=False)
    date: Mapped[dt.date] = mapped_column(Date, nullable=False)
    status: Mapped[str] = mapped_column(String(1), nullable=False)  # H, I, S, A
    reason: Mapped[str | None] = mapped_column(String(512), nullable=True)
    recorded_by_user_id: Mapped[int | None] = mapped_column(ForeignKey("users.id", ondelete="SET NULL"), nullable=True)

    created_at: Mapped[dt.datetime] = mapped_column(DateTime(timezone=False), nullable=False, default=dt.datetime.utcnow)
    updated_at: Mapped[dt.datetime] = mapped_column(DateTime(timezone=False), nullable=False, default=dt.datetime.utcnow)

    meeting: Mapped[Meeting] = relationship(back_populates="attendance_logs")
    student: Mapped["Student"] = relationship(lazy="joined")
