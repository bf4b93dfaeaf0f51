"""Assignment ledger: which employees must take which lesson.

The ledger is the single source of truth for the content lock. Assigning also
bumps the lesson row's version in the same transaction, so an edit that read
the lesson before the assignment landed fails its version check at flush.
"""

from __future__ import annotations

import logging
from datetime import datetime, timezone
from typing import Optional

from sqlalchemy import exists, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session
from sqlalchemy.orm.exc import StaleDataError

from serveready.core.errors import ConcurrentModificationError, NotFoundError
from serveready.models.lesson.assignment_model import LessonAssignment
from serveready.models.lesson.lesson_model import Lesson
from serveready.models.user.user_model import User

logger = logging.getLogger(__name__)


def get_assignment(db: Session, lesson_id: str, employee_id: str) -> Optional[LessonAssignment]:
    return (
        db.query(LessonAssignment)
        .filter(LessonAssignment.lesson_id == lesson_id, LessonAssignment.employee_id == employee_id)
        .first()
    )


def assign(
    db: Session,
    lesson_id: str,
    employee_id: str,
    *,
    assigned_by: str | None = None,
) -> tuple[LessonAssignment, bool]:
    """Assign ``employee_id`` to ``lesson_id``.

    Returns the assignment and whether it was created. Assigning an existing
    pair is a successful no-op.
    """
    lesson = db.get(Lesson, lesson_id)
    if lesson is None:
        raise NotFoundError("Lesson not found", entity="lesson", lesson_id=lesson_id)

    employee = db.get(User, employee_id)
    if employee is None or not employee.is_active:
        raise NotFoundError("Employee not found", entity="employee", employee_id=employee_id)

    existing = get_assignment(db, lesson_id, employee_id)
    if existing is not None:
        return existing, False

    now = datetime.now(timezone.utc)
    assignment = LessonAssignment(
        lesson_id=lesson_id,
        employee_id=employee_id,
        assigned_by=assigned_by,
        assigned_at=now,
    )
    db.add(assignment)
    lesson.last_assigned_at = now
    try:
        db.commit()
    except IntegrityError:
        # A concurrent request inserted the same pair first.
        db.rollback()
        winner = get_assignment(db, lesson_id, employee_id)
        if winner is None:
            raise
        return winner, False
    except StaleDataError as exc:
        db.rollback()
        logger.warning("Lesson %s changed while assigning %s", lesson_id, employee_id)
        raise ConcurrentModificationError(
            "Lesson was modified concurrently, retry the assignment",
            lesson_id=lesson_id,
            employee_id=employee_id,
        ) from exc

    db.refresh(assignment)
    logger.info("Lesson %s assigned to %s by %s", lesson_id, employee_id, assigned_by)
    return assignment, True


def unassign(db: Session, lesson_id: str, employee_id: str) -> bool:
    """Remove the pair from the ledger. Progress records are kept."""
    assignment = get_assignment(db, lesson_id, employee_id)
    if assignment is None:
        return False
    db.delete(assignment)
    db.commit()
    logger.info("Lesson %s unassigned from %s", lesson_id, employee_id)
    return True


def is_assigned(db: Session, lesson_id: str, employee_id: str) -> bool:
    return bool(
        db.scalar(
            select(
                exists().where(
                    LessonAssignment.lesson_id == lesson_id,
                    LessonAssignment.employee_id == employee_id,
                )
            )
        )
    )


def has_any_assignment(db: Session, lesson_id: str) -> bool:
    return bool(db.scalar(select(exists().where(LessonAssignment.lesson_id == lesson_id))))


def assigned_employees(db: Session, lesson_id: str) -> list[str]:
    rows = db.execute(
        select(LessonAssignment.employee_id)
        .where(LessonAssignment.lesson_id == lesson_id)
        .order_by(LessonAssignment.id.asc())
    )
    return [employee_id for (employee_id,) in rows]


def list_assignments(db: Session, lesson_id: str) -> list[LessonAssignment]:
    return (
        db.query(LessonAssignment)
        .filter(LessonAssignment.lesson_id == lesson_id)
        .order_by(LessonAssignment.id.asc())
        .all()
    )


def lessons_for_employee(db: Session, employee_id: str, *, include_inactive: bool = False) -> list[Lesson]:
    query = (
        db.query(Lesson)
        .join(LessonAssignment, LessonAssignment.lesson_id == Lesson.id)
        .filter(LessonAssignment.employee_id == employee_id)
    )
    if not include_inactive:
        query = query.filter(Lesson.is_active.is_(True))
    return query.order_by(Lesson.unit.asc(), Lesson.chapter.asc(), LessonAssignment.id.asc()).all()
