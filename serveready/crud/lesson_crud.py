"""Lesson store: owns lesson templates and enforces the assignment lock."""

from __future__ import annotations

import logging
from datetime import datetime, timedelta, timezone
from typing import Any, Mapping, Union

from pydantic import ValidationError as PydanticValidationError
from sqlalchemy.orm import Session
from sqlalchemy.orm.exc import StaleDataError

from serveready.core.config import settings
from serveready.core.errors import (
    ConcurrentModificationError,
    LockedContentError,
    NotFoundError,
    ValidationError,
)
from serveready.crud import assignment_crud
from serveready.models.lesson.lesson_model import CONTENT_FIELDS, Lesson
from serveready.models.restaurant.restaurant_model import MenuItem, Restaurant
from serveready.schemas.lesson.lesson_schema import LessonCreate, LessonUpdate

logger = logging.getLogger(__name__)

LessonPayload = Union[LessonCreate, Mapping[str, Any]]
LessonPatch = Union[LessonUpdate, Mapping[str, Any]]


def _validate(model, data):
    if isinstance(data, model):
        return data
    try:
        return model.model_validate(data)
    except PydanticValidationError as exc:
        raise ValidationError.from_pydantic(exc) from exc


def _dump_questions(questions) -> list[dict]:
    return [question.model_dump(mode="json") for question in questions]


def _check_menu_items(db: Session, restaurant_id: str, menu_items: list[str]) -> None:
    if not menu_items:
        return
    found = {
        item_id
        for (item_id,) in db.query(MenuItem.id).filter(
            MenuItem.restaurant_id == restaurant_id,
            MenuItem.id.in_(menu_items),
        )
    }
    missing = [item_id for item_id in menu_items if item_id not in found]
    if missing:
        raise ValidationError("One or more menu items not found", field="menu_items", missing=missing)


def _template_fields(lesson: Lesson) -> dict[str, Any]:
    return {
        "restaurant_id": lesson.restaurant_id,
        "category": lesson.category,
        "unit": lesson.unit,
        "unit_name": lesson.unit_name,
        "chapter": lesson.chapter,
        "chapter_name": lesson.chapter_name,
        "difficulty": lesson.difficulty,
        "content": lesson.content,
        "glossary": lesson.glossary,
        "menu_items": lesson.menu_items,
        "questions": lesson.questions,
        "due_date": lesson.due_date,
    }


def create_lesson(db: Session, payload: LessonPayload, *, actor_id: str | None = None) -> Lesson:
    data = _validate(LessonCreate, payload)

    restaurant = db.get(Restaurant, data.restaurant_id)
    if restaurant is None:
        raise ValidationError(
            "Restaurant not found",
            field="restaurant_id",
            restaurant_id=data.restaurant_id,
        )
    _check_menu_items(db, restaurant.id, data.menu_items)

    now = datetime.now(timezone.utc)
    due_date = data.due_date or now + timedelta(days=settings.LESSON_DEFAULT_DUE_DAYS)
    lesson = Lesson(
        restaurant_id=restaurant.id,
        category=data.category,
        unit=data.unit,
        unit_name=data.unit_name,
        chapter=data.chapter,
        chapter_name=data.chapter_name,
        difficulty=data.difficulty,
        content=dict(data.content),
        glossary=dict(data.glossary),
        menu_items=list(data.menu_items),
        questions=_dump_questions(data.questions),
        is_active=True,
        due_date=due_date,
        created_by=actor_id,
        last_modified_by=actor_id,
        created_at=now,
    )
    db.add(lesson)
    db.commit()
    db.refresh(lesson)
    logger.info("Lesson %s created for restaurant %s by %s", lesson.id, lesson.restaurant_id, actor_id)
    return lesson


def get_lesson(db: Session, lesson_id: str) -> Lesson:
    lesson = db.get(Lesson, lesson_id)
    if lesson is None:
        raise NotFoundError("Lesson not found", entity="lesson", lesson_id=lesson_id)
    return lesson


def list_lessons(db: Session, *, include_inactive: bool = False) -> list[Lesson]:
    query = db.query(Lesson)
    if not include_inactive:
        query = query.filter(Lesson.is_active.is_(True))
    return query.order_by(Lesson.created_at.asc(), Lesson.id.asc()).all()


def list_lessons_by_restaurant(
    db: Session,
    restaurant_id: str,
    *,
    include_inactive: bool = False,
) -> list[Lesson]:
    query = db.query(Lesson).filter(Lesson.restaurant_id == restaurant_id)
    if not include_inactive:
        query = query.filter(Lesson.is_active.is_(True))
    return query.order_by(Lesson.created_at.asc(), Lesson.id.asc()).all()


def update_lesson(
    db: Session,
    lesson_id: str,
    patch: LessonPatch,
    *,
    actor_id: str | None = None,
) -> Lesson:
    """Apply a partial update.

    Content-bearing fields are frozen while any employee is assigned: a patch
    naming one of them is rejected with ``LockedContentError`` and nothing is
    written. The lesson's version column turns a race with a concurrent
    assignment into a failed write instead of a silent edit.
    """
    changes = _validate(LessonUpdate, patch).model_dump(exclude_unset=True)
    lesson = get_lesson(db, lesson_id)

    touched = sorted(CONTENT_FIELDS.intersection(changes))
    if touched and assignment_crud.has_any_assignment(db, lesson_id):
        logger.warning("Rejected edit of assigned lesson %s (fields: %s) by %s", lesson_id, touched, actor_id)
        raise LockedContentError(
            "Cannot modify the content of an assigned lesson",
            lesson_id=lesson_id,
            fields=touched,
        )

    if touched:
        merged = _template_fields(lesson)
        merged.update(changes)
        data = _validate(LessonCreate, merged)
        if "menu_items" in changes:
            _check_menu_items(db, lesson.restaurant_id, data.menu_items)
        for field in touched:
            value = getattr(data, field)
            if field == "questions":
                value = _dump_questions(value)
            elif field in {"content", "glossary"}:
                value = dict(value)
            elif field == "menu_items":
                value = list(value)
            setattr(lesson, field, value)

    if "is_active" in changes:
        if changes["is_active"] is None:
            raise ValidationError("is_active cannot be null", field="is_active")
        lesson.is_active = changes["is_active"]
    if "due_date" in changes:
        lesson.due_date = changes["due_date"]
    lesson.last_modified_by = actor_id

    try:
        db.commit()
    except StaleDataError as exc:
        db.rollback()
        if assignment_crud.has_any_assignment(db, lesson_id) and touched:
            logger.warning("Lesson %s was assigned while being edited", lesson_id)
            raise LockedContentError(
                "Cannot modify the content of an assigned lesson",
                lesson_id=lesson_id,
                fields=touched,
            ) from exc
        raise ConcurrentModificationError(
            "Lesson was modified concurrently, reload and retry",
            lesson_id=lesson_id,
        ) from exc

    db.refresh(lesson)
    logger.info("Lesson %s updated by %s (fields: %s)", lesson_id, actor_id, sorted(changes))
    return lesson


def delete_lesson(db: Session, lesson_id: str, *, actor_id: str | None = None) -> None:
    """Hard-delete a lesson with its assignments, progress and attempts."""
    lesson = get_lesson(db, lesson_id)
    db.delete(lesson)
    try:
        db.commit()
    except StaleDataError as exc:
        db.rollback()
        raise ConcurrentModificationError(
            "Lesson was modified concurrently, reload and retry",
            lesson_id=lesson_id,
        ) from exc
    logger.info("Lesson %s deleted by %s", lesson_id, actor_id)
