from __future__ import annotations

import enum
from datetime import datetime
from typing import TYPE_CHECKING, List, Optional
from uuid import uuid4

from sqlalchemy import (
    JSON,
    Boolean,
    DateTime,
    Enum,
    ForeignKey,
    Index,
    Integer,
    String,
    func,
)
from sqlalchemy.orm import Mapped, mapped_column, relationship

from serveready.db.base_class import Base

if TYPE_CHECKING:
    from .assignment_model import LessonAssignment
    from .progress_model import LessonProgress


class LessonDifficulty(str, enum.Enum):
    BEGINNER = "beginner"
    INTERMEDIATE = "intermediate"
    ADVANCED = "advanced"


# Fields an employee's understanding of the lesson depends on. Frozen once assigned.
CONTENT_FIELDS = frozenset(
    {
        "category",
        "unit",
        "unit_name",
        "chapter",
        "chapter_name",
        "difficulty",
        "content",
        "glossary",
        "menu_items",
        "questions",
    }
)


class Lesson(Base):
    __tablename__ = "lessons"
    __table_args__ = (
        Index("ix_lessons_restaurant_category", "restaurant_id", "category"),
        Index("ix_lessons_unit_chapter", "unit", "chapter"),
    )

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=lambda: str(uuid4()))
    restaurant_id: Mapped[str] = mapped_column(
        String(36), ForeignKey("restaurants.id", ondelete="CASCADE"), index=True, nullable=False
    )
    category: Mapped[str] = mapped_column(String(100), nullable=False)
    unit: Mapped[int] = mapped_column(Integer, nullable=False)
    unit_name: Mapped[str] = mapped_column(String(200), nullable=False)
    chapter: Mapped[int] = mapped_column(Integer, nullable=False)
    chapter_name: Mapped[str] = mapped_column(String(200), nullable=False)
    difficulty: Mapped[LessonDifficulty] = mapped_column(
        Enum(LessonDifficulty, name="lessondifficulty", values_callable=lambda obj: [e.value for e in obj]),
        nullable=False,
        default=LessonDifficulty.BEGINNER,
    )
    content: Mapped[dict] = mapped_column(JSON, nullable=False, default=dict)
    glossary: Mapped[dict] = mapped_column(JSON, nullable=False, default=dict)
    menu_items: Mapped[list] = mapped_column(JSON, nullable=False, default=list)
    # Ordered question templates, stored as validated ``QuestionTemplate`` dumps.
    questions: Mapped[list] = mapped_column(JSON, nullable=False, default=list)

    is_active: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)
    due_date: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)
    created_by: Mapped[Optional[str]] = mapped_column(String(36), nullable=True)
    last_modified_by: Mapped[Optional[str]] = mapped_column(String(36), nullable=True)
    last_assigned_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, server_default=func.now()
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, server_default=func.now(), onupdate=func.now()
    )
    version_id: Mapped[int] = mapped_column(Integer, nullable=False)

    assignments: Mapped[List["LessonAssignment"]] = relationship(
        back_populates="lesson",
        cascade="all, delete-orphan",
        order_by="LessonAssignment.id",
    )
    progress_records: Mapped[List["LessonProgress"]] = relationship(
        back_populates="lesson",
        cascade="all, delete-orphan",
    )

    __mapper_args__ = {"version_id_col": version_id}

    def __repr__(self) -> str:  # pragma: no cover - debug helper
        return f"<Lesson(id={self.id}, unit={self.unit}, chapter={self.chapter})>"
