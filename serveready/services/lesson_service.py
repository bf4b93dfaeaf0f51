"""Lesson service: role checks in front of the lesson store, ledger and tracker."""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Any, Callable, Mapping, Optional, Sequence

from sqlalchemy.orm import Session

from serveready.core.config import settings
from serveready.core.errors import NotAssignedError, NotFoundError, PermissionDeniedError
from serveready.crud import assignment_crud, lesson_crud
from serveready.models.lesson.assignment_model import LessonAssignment
from serveready.models.lesson.lesson_model import Lesson
from serveready.models.lesson.progress_model import LessonProgress
from serveready.models.user.user_model import User, UserRole
from serveready.schemas.lesson.lesson_schema import LessonOut
from serveready.services.progress_service import ProgressTracker, grader_from_settings, progress_payload
from serveready.services.question_expander import (
    ConcreteQuestion,
    SourceLookup,
    expand_all,
    parse_templates,
)
from serveready.services.restaurant_sources import RestaurantSourceLookup

logger = logging.getLogger(__name__)

MANAGEMENT_ROLES = frozenset({UserRole.SUPER_ADMIN, UserRole.ADMIN, UserRole.DIRECTOR})
REPORTING_ROLES = MANAGEMENT_ROLES | {UserRole.MANAGER}

SourceLookupFactory = Callable[[Session, Lesson], SourceLookup]


def restaurant_lookup(db: Session, lesson: Lesson) -> SourceLookup:
    return RestaurantSourceLookup(db, lesson.restaurant_id, lesson)


@dataclass(frozen=True, slots=True)
class Actor:
    """The authenticated caller as the service sees it."""

    user_id: str
    role: UserRole
    restaurant_ids: frozenset[str] = field(default_factory=frozenset)

    @property
    def is_management(self) -> bool:
        return self.role in MANAGEMENT_ROLES

    @property
    def can_view_reports(self) -> bool:
        return self.role in REPORTING_ROLES

    def manages_restaurant(self, restaurant_id: str) -> bool:
        return self.is_management or (self.can_view_reports and restaurant_id in self.restaurant_ids)


class LessonService:
    def __init__(
        self,
        db: Session,
        actor: Actor,
        *,
        grader=None,
        source_lookup_factory: SourceLookupFactory | None = None,
        hide_correct_answers: bool | None = None,
    ):
        self.db = db
        self.actor = actor
        self.source_lookup_factory = source_lookup_factory or restaurant_lookup
        self.hide_correct_answers = (
            settings.LESSON_HIDE_CORRECT_ANSWERS if hide_correct_answers is None else hide_correct_answers
        )
        self.tracker = ProgressTracker(
            db,
            grader=grader or grader_from_settings(settings.LESSON_GRADING_STRATEGY),
            question_loader=self.expand_lesson,
        )

    # ------------------------------------------------------------------
    # Authorization helpers
    # ------------------------------------------------------------------
    def _deny(self, action: str, **context: Any) -> PermissionDeniedError:
        logger.warning("Denied %s for user %s (role=%s)", action, self.actor.user_id, self.actor.role.value)
        return PermissionDeniedError(
            f"Role '{self.actor.role.value}' may not {action}",
            action=action,
            role=self.actor.role.value,
            **context,
        )

    def _require_management(self, action: str, **context: Any) -> None:
        if not self.actor.is_management:
            raise self._deny(action, **context)

    def _shares_restaurant(self, employee_id: str) -> bool:
        employee = self.db.get(User, employee_id)
        return employee is not None and not self.actor.restaurant_ids.isdisjoint(employee.restaurant_ids)

    def _require_self_or_reporting(self, employee_id: str, action: str) -> None:
        # Managers only report on staff of their own restaurants.
        if self.actor.user_id == employee_id or self.actor.is_management:
            return
        if self.actor.can_view_reports and self._shares_restaurant(employee_id):
            return
        raise self._deny(action, employee_id=employee_id)

    def _present(self, lesson: Lesson) -> Lesson | LessonOut:
        """Withhold template answer keys from learners when answers are hidden."""
        if not self.hide_correct_answers or self.actor.is_management:
            return lesson
        view = LessonOut.model_validate(lesson)
        return view.model_copy(update={"questions": [question.without_answer_key() for question in view.questions]})

    def _require_self_or_management(self, employee_id: str, action: str) -> None:
        if self.actor.user_id == employee_id or self.actor.is_management:
            return
        raise self._deny(action, employee_id=employee_id)

    # ------------------------------------------------------------------
    # Lesson store
    # ------------------------------------------------------------------
    def create_lesson(self, payload) -> Lesson:
        self._require_management("create lessons")
        return lesson_crud.create_lesson(self.db, payload, actor_id=self.actor.user_id)

    def get_lesson(self, lesson_id: str) -> Lesson | LessonOut:
        if self.actor.is_management:
            return lesson_crud.get_lesson(self.db, lesson_id)
        if self.actor.can_view_reports:
            lesson = lesson_crud.get_lesson(self.db, lesson_id)
            if not self.actor.manages_restaurant(lesson.restaurant_id):
                raise self._deny("view lessons of another restaurant", lesson_id=lesson_id)
            return self._present(lesson)
        # Employees only see what they are assigned; existence is not revealed otherwise.
        if not assignment_crud.is_assigned(self.db, lesson_id, self.actor.user_id):
            raise self._deny("view unassigned lessons", lesson_id=lesson_id)
        return self._present(lesson_crud.get_lesson(self.db, lesson_id))

    def list_lessons(self, *, include_inactive: bool = False) -> list[Lesson]:
        self._require_management("list all lessons")
        return lesson_crud.list_lessons(self.db, include_inactive=include_inactive)

    def list_lessons_by_restaurant(self, restaurant_id: str, *, include_inactive: bool = False) -> list:
        if not self.actor.manages_restaurant(restaurant_id):
            raise self._deny("list lessons of this restaurant", restaurant_id=restaurant_id)
        lessons = lesson_crud.list_lessons_by_restaurant(
            self.db,
            restaurant_id,
            include_inactive=include_inactive and self.actor.is_management,
        )
        return [self._present(lesson) for lesson in lessons]

    def update_lesson(self, lesson_id: str, patch) -> Lesson:
        self._require_management("update lessons", lesson_id=lesson_id)
        return lesson_crud.update_lesson(self.db, lesson_id, patch, actor_id=self.actor.user_id)

    def delete_lesson(self, lesson_id: str) -> None:
        self._require_management("delete lessons", lesson_id=lesson_id)
        lesson_crud.delete_lesson(self.db, lesson_id, actor_id=self.actor.user_id)

    # ------------------------------------------------------------------
    # Assignment ledger
    # ------------------------------------------------------------------
    def assign_lesson(self, lesson_id: str, employee_id: str) -> tuple[LessonAssignment, bool]:
        self._require_management("assign lessons", lesson_id=lesson_id)
        return assignment_crud.assign(self.db, lesson_id, employee_id, assigned_by=self.actor.user_id)

    def unassign_lesson(self, lesson_id: str, employee_id: str) -> None:
        self._require_management("unassign lessons", lesson_id=lesson_id)
        lesson_crud.get_lesson(self.db, lesson_id)
        if not assignment_crud.unassign(self.db, lesson_id, employee_id):
            raise NotFoundError(
                "Assignment not found",
                entity="assignment",
                lesson_id=lesson_id,
                employee_id=employee_id,
            )

    def assigned_employees(self, lesson_id: str) -> list[str]:
        lesson = lesson_crud.get_lesson(self.db, lesson_id) if self.actor.can_view_reports else None
        if lesson is None or not self.actor.manages_restaurant(lesson.restaurant_id):
            raise self._deny("view assignments", lesson_id=lesson_id)
        return assignment_crud.assigned_employees(self.db, lesson_id)

    def list_assigned_lessons(self, employee_id: str) -> list:
        self._require_self_or_reporting(employee_id, "view another employee's lessons")
        return [self._present(lesson) for lesson in assignment_crud.lessons_for_employee(self.db, employee_id)]

    # ------------------------------------------------------------------
    # Employee read path
    # ------------------------------------------------------------------
    def expand_lesson(self, lesson: Lesson) -> list[ConcreteQuestion]:
        lookup = self.source_lookup_factory(self.db, lesson)
        return expand_all(parse_templates(lesson.questions), lookup)

    def get_lesson_for_employee(self, lesson_id: str, employee_id: str) -> dict:
        """Lesson metadata, expanded questions and the employee's current progress."""
        self._require_self_or_management(employee_id, "view another employee's lesson")
        lesson = lesson_crud.get_lesson(self.db, lesson_id)
        if not assignment_crud.is_assigned(self.db, lesson_id, employee_id):
            raise NotAssignedError(
                "Employee is not assigned to this lesson",
                lesson_id=lesson_id,
                employee_id=employee_id,
            )

        questions = self.expand_lesson(lesson)
        progress = self.tracker.get_progress(lesson_id, employee_id)
        answered = {entry["question_id"] for entry in progress.answers or []}
        graded_against = questions if self.tracker.grader.needs_questions else None

        return {
            "id": lesson.id,
            "restaurant_id": lesson.restaurant_id,
            "category": lesson.category,
            "unit": lesson.unit,
            "unit_name": lesson.unit_name,
            "chapter": lesson.chapter,
            "chapter_name": lesson.chapter_name,
            "difficulty": lesson.difficulty,
            "content": lesson.content or {},
            "glossary": lesson.glossary or {},
            "due_date": lesson.due_date,
            "questions": [self._question_payload(question, answered) for question in questions],
            "progress": progress_payload(progress, graded_against, include_attempts=False),
        }

    def _question_payload(self, question: ConcreteQuestion, answered: set[str]) -> dict:
        hidden = self.hide_correct_answers and question.id not in answered
        return {
            "id": question.id,
            "template_id": question.template_id,
            "question_type": question.question_type,
            "question_text": question.question_text,
            "options": list(question.options),
            "correct_answers": None if hidden else list(question.correct_answers),
            "difficulty": question.difficulty,
            "hint": question.hint,
            "substitution": question.substitution,
        }

    # ------------------------------------------------------------------
    # Progress
    # ------------------------------------------------------------------
    def _questions_if_graded(self, lesson_id: str) -> Optional[Sequence[ConcreteQuestion]]:
        if not self.tracker.grader.needs_questions:
            return None
        return self.expand_lesson(lesson_crud.get_lesson(self.db, lesson_id))

    def get_progress(self, lesson_id: str, employee_id: str) -> dict:
        self._require_self_or_reporting(employee_id, "view another employee's progress")
        if self.actor.user_id != employee_id and not self.actor.is_management:
            lesson = lesson_crud.get_lesson(self.db, lesson_id)
            if not self.actor.manages_restaurant(lesson.restaurant_id):
                raise self._deny("view progress of another restaurant", lesson_id=lesson_id)
        record = self.tracker.get_progress(lesson_id, employee_id)
        return progress_payload(record, self._questions_if_graded(lesson_id))

    def update_progress(self, lesson_id: str, employee_id: str, update) -> dict:
        self._require_self_or_management(employee_id, "update another employee's progress")
        record = self.tracker.update_progress(lesson_id, employee_id, update)
        return progress_payload(record, self._questions_if_graded(lesson_id))

    def list_lesson_progress(self, lesson_id: str) -> list[dict]:
        lesson = lesson_crud.get_lesson(self.db, lesson_id) if self.actor.can_view_reports else None
        if lesson is None or not self.actor.manages_restaurant(lesson.restaurant_id):
            raise self._deny("view lesson progress", lesson_id=lesson_id)
        records: list[LessonProgress] = self.tracker.list_lesson_progress(lesson_id)
        return [progress_payload(record, include_attempts=False) for record in records]

    def employee_progress_summary(self, employee_id: str) -> Mapping[str, Any]:
        self._require_self_or_reporting(employee_id, "view another employee's progress")
        return self.tracker.employee_summary(employee_id)

    def restaurant_progress_report(self, restaurant_id: str) -> Mapping[str, Any]:
        if not self.actor.manages_restaurant(restaurant_id):
            raise self._deny("view progress of this restaurant", restaurant_id=restaurant_id)
        return self.tracker.restaurant_report(restaurant_id)
