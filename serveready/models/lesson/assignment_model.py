from __future__ import annotations

from datetime import datetime
from typing import TYPE_CHECKING, Optional

from sqlalchemy import DateTime, ForeignKey, Integer, String, UniqueConstraint, func
from sqlalchemy.orm import Mapped, mapped_column, relationship

from serveready.db.base_class import Base

if TYPE_CHECKING:
    from .lesson_model import Lesson


class LessonAssignment(Base):
    __tablename__ = "lesson_assignments"
    __table_args__ = (
        UniqueConstraint("lesson_id", "employee_id", name="uq_lesson_assignment_pair"),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    lesson_id: Mapped[str] = mapped_column(
        String(36), ForeignKey("lessons.id", ondelete="CASCADE"), index=True, nullable=False
    )
    employee_id: Mapped[str] = mapped_column(
        String(36), ForeignKey("users.id", ondelete="CASCADE"), index=True, nullable=False
    )
    assigned_by: Mapped[Optional[str]] = mapped_column(String(36), nullable=True)
    assigned_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, server_default=func.now()
    )

    lesson: Mapped["Lesson"] = relationship(back_populates="assignments")

    def __repr__(self) -> str:  # pragma: no cover - debug helper
        return f"<LessonAssignment(lesson_id={self.lesson_id}, employee_id={self.employee_id})>"
