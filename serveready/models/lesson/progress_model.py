from __future__ import annotations

import enum
from datetime import datetime
from typing import TYPE_CHECKING, List, Optional

from sqlalchemy import JSON, DateTime, Enum, ForeignKey, Integer, String, UniqueConstraint, func
from sqlalchemy.orm import Mapped, mapped_column, relationship

from serveready.db.base_class import Base

if TYPE_CHECKING:
    from .lesson_model import Lesson


class ProgressStatus(str, enum.Enum):
    NOT_STARTED = "not_started"
    IN_PROGRESS = "in_progress"
    COMPLETED = "completed"

    @property
    def rank(self) -> int:
        return _STATUS_ORDER.index(self)


_STATUS_ORDER = [ProgressStatus.NOT_STARTED, ProgressStatus.IN_PROGRESS, ProgressStatus.COMPLETED]


class LessonProgress(Base):
    __tablename__ = "lesson_progress"
    __table_args__ = (
        UniqueConstraint("lesson_id", "employee_id", name="uq_lesson_progress_pair"),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    lesson_id: Mapped[str] = mapped_column(
        String(36), ForeignKey("lessons.id", ondelete="CASCADE"), index=True, nullable=False
    )
    employee_id: Mapped[str] = mapped_column(
        String(36), ForeignKey("users.id", ondelete="CASCADE"), index=True, nullable=False
    )
    status: Mapped[ProgressStatus] = mapped_column(
        Enum(ProgressStatus, name="progressstatus", values_callable=lambda obj: [e.value for e in obj]),
        nullable=False,
        default=ProgressStatus.NOT_STARTED,
    )
    score: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)
    # [{"question_id": str, "answer": [str, ...]}, ...] in first-submission order.
    answers: Mapped[list] = mapped_column(JSON, nullable=False, default=list)
    time_spent_seconds: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    attempt_count: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    started_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)
    completed_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)
    last_accessed_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, server_default=func.now()
    )
    version_id: Mapped[int] = mapped_column(Integer, nullable=False)

    lesson: Mapped["Lesson"] = relationship(back_populates="progress_records")
    attempts: Mapped[List["LessonAttempt"]] = relationship(
        back_populates="progress",
        cascade="all, delete-orphan",
        order_by="LessonAttempt.id",
    )

    __mapper_args__ = {"version_id_col": version_id}

    def __repr__(self) -> str:  # pragma: no cover - debug helper
        return (
            f"<LessonProgress(lesson_id={self.lesson_id}, employee_id={self.employee_id}, "
            f"status={self.status.value})>"
        )


class LessonAttempt(Base):
    """One submission (answers and/or score) against a progress record."""

    __tablename__ = "lesson_attempts"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    progress_id: Mapped[int] = mapped_column(
        Integer, ForeignKey("lesson_progress.id", ondelete="CASCADE"), index=True, nullable=False
    )
    status: Mapped[ProgressStatus] = mapped_column(
        Enum(ProgressStatus, name="progressstatus", values_callable=lambda obj: [e.value for e in obj]),
        nullable=False,
    )
    score: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)
    time_spent_seconds: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    answers: Mapped[list] = mapped_column(JSON, nullable=False, default=list)
    submitted_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, server_default=func.now()
    )

    progress: Mapped[LessonProgress] = relationship(back_populates="attempts")
