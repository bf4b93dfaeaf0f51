"""Per-employee lesson progress: forward-only state machine, answers and scores."""

from __future__ import annotations

import logging
import threading
from collections import OrderedDict
from contextlib import contextmanager
from datetime import datetime, timezone
from typing import Any, Callable, Iterator, Mapping, Optional, Sequence, Union

from pydantic import ValidationError as PydanticValidationError
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session
from sqlalchemy.orm.exc import StaleDataError

from serveready.core.errors import (
    ConcurrentModificationError,
    InvalidTransitionError,
    NotAssignedError,
    NotFoundError,
    ValidationError,
)
from serveready.crud import assignment_crud
from serveready.models.lesson.assignment_model import LessonAssignment
from serveready.models.lesson.lesson_model import Lesson
from serveready.models.lesson.progress_model import LessonAttempt, LessonProgress, ProgressStatus
from serveready.models.restaurant.restaurant_model import Restaurant
from serveready.models.user.user_model import User
from serveready.schemas.progress.progress_schema import ProgressUpdateIn
from serveready.services.question_expander import ConcreteQuestion

logger = logging.getLogger(__name__)

QuestionLoader = Callable[[Lesson], Sequence[ConcreteQuestion]]


class _RecordCreatedConcurrently(Exception):
    pass


# ----------------------------------------------------------------------
# Grading strategies
# ----------------------------------------------------------------------
def is_answer_correct(question: ConcreteQuestion, answer: Optional[Sequence[str]]) -> bool:
    if not answer:
        return False
    return set(answer) == set(question.correct_answers)


class CallerScoreGrader:
    """Store whatever score the caller submitted."""

    needs_questions = False

    def grade(self, questions, answers, submitted_score):
        return submitted_score


class AnswerKeyGrader:
    """Score = integer percentage of expanded questions answered correctly."""

    needs_questions = True

    def grade(self, questions, answers, submitted_score):
        if not questions:
            return submitted_score
        by_question = {entry["question_id"]: entry["answer"] for entry in answers}
        correct = sum(1 for question in questions if is_answer_correct(question, by_question.get(question.id)))
        return round(correct * 100 / len(questions))


GRADERS = {
    "caller": CallerScoreGrader,
    "answer_key": AnswerKeyGrader,
}


def grader_from_settings(name: str):
    try:
        return GRADERS[name]()
    except KeyError:
        raise ValueError(f"Unknown grading strategy '{name}'") from None


# ----------------------------------------------------------------------
# Per-pair serialisation
# ----------------------------------------------------------------------
_PAIR_LOCK_LIMIT = 4096


class _PairLock:
    __slots__ = ("lock", "users")

    def __init__(self) -> None:
        self.lock = threading.Lock()
        # Callers holding or waiting on the lock; only idle entries are evicted.
        self.users = 0


_pair_locks: "OrderedDict[tuple[str, str], _PairLock]" = OrderedDict()
_pair_locks_guard = threading.Lock()


def _evict_idle_locks() -> None:
    excess = len(_pair_locks) - _PAIR_LOCK_LIMIT
    if excess <= 0:
        return
    idle = [key for key, entry in _pair_locks.items() if entry.users == 0]
    for key in idle[:excess]:
        del _pair_locks[key]


@contextmanager
def _pair_lock(lesson_id: str, employee_id: str) -> Iterator[None]:
    key = (lesson_id, employee_id)
    with _pair_locks_guard:
        entry = _pair_locks.get(key)
        if entry is None:
            entry = _PairLock()
            _pair_locks[key] = entry
        else:
            _pair_locks.move_to_end(key)
        entry.users += 1
        _evict_idle_locks()
    try:
        with entry.lock:
            yield
    finally:
        with _pair_locks_guard:
            entry.users -= 1


def _mean(values: Sequence[int]) -> Optional[float]:
    return round(sum(values) / len(values), 2) if values else None


class _Tally:
    """Status counts plus score and time samples of completed lessons."""

    def __init__(self) -> None:
        self.counts = {status: 0 for status in ProgressStatus}
        self.scores: list[int] = []
        self.times: list[int] = []

    def add(self, status: ProgressStatus, record: Optional[LessonProgress]) -> None:
        self.counts[status] += 1
        if status == ProgressStatus.COMPLETED:
            if record.score is not None:
                self.scores.append(record.score)
            self.times.append(record.time_spent_seconds or 0)

    def as_dict(self) -> dict:
        return {
            "assigned": sum(self.counts.values()),
            "not_started": self.counts[ProgressStatus.NOT_STARTED],
            "in_progress": self.counts[ProgressStatus.IN_PROGRESS],
            "completed": self.counts[ProgressStatus.COMPLETED],
            "average_score": _mean(self.scores),
            "average_time_seconds": _mean(self.times),
        }


def _merge_answers(existing: list[dict], incoming: list[dict], *, replace: bool) -> list[dict]:
    if replace:
        return [dict(entry) for entry in incoming]
    merged = [dict(entry) for entry in existing]
    positions = {entry["question_id"]: index for index, entry in enumerate(merged)}
    for entry in incoming:
        if entry["question_id"] in positions:
            merged[positions[entry["question_id"]]] = dict(entry)
        else:
            positions[entry["question_id"]] = len(merged)
            merged.append(dict(entry))
    return merged


def _annotate(answers: Sequence[Mapping[str, Any]], questions: Optional[Sequence[ConcreteQuestion]]) -> list[dict]:
    by_id = {question.id: question for question in questions or ()}
    annotated = []
    for entry in answers:
        question = by_id.get(entry["question_id"])
        annotated.append(
            {
                "question_id": entry["question_id"],
                "answer": list(entry["answer"]),
                "is_correct": is_answer_correct(question, entry["answer"]) if question else None,
            }
        )
    return annotated


def progress_payload(
    record: LessonProgress,
    questions: Optional[Sequence[ConcreteQuestion]] = None,
    *,
    include_attempts: bool = True,
) -> dict:
    """Serialize a progress record; answers carry ``is_correct`` when questions are known."""
    return {
        "lesson_id": record.lesson_id,
        "employee_id": record.employee_id,
        "status": record.status,
        "score": record.score,
        "answers": _annotate(record.answers or [], questions),
        "time_spent_seconds": record.time_spent_seconds or 0,
        "attempt_count": record.attempt_count or 0,
        "started_at": record.started_at,
        "completed_at": record.completed_at,
        "last_accessed_at": record.last_accessed_at,
        "attempts": [
            {
                "status": attempt.status,
                "score": attempt.score,
                "time_spent_seconds": attempt.time_spent_seconds,
                "answers": _annotate(attempt.answers or [], questions),
                "submitted_at": attempt.submitted_at,
            }
            for attempt in (record.attempts or [])
        ]
        if include_attempts
        else [],
    }


class ProgressTracker:
    """Owns ``LessonProgress`` records.

    Updates require a live assignment, only move forward
    (not_started -> in_progress -> completed) and are serialised per
    (lesson, employee) pair: in-process by a keyed lock, across processes by
    the record's version column.
    """

    def __init__(
        self,
        db: Session,
        *,
        grader=None,
        question_loader: QuestionLoader | None = None,
    ):
        self.db = db
        self.grader = grader or CallerScoreGrader()
        self.question_loader = question_loader

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------
    def get_progress(self, lesson_id: str, employee_id: str) -> LessonProgress:
        if self.db.get(Lesson, lesson_id) is None:
            raise NotFoundError("Lesson not found", entity="lesson", lesson_id=lesson_id)
        record = self._find(lesson_id, employee_id)
        if record is not None:
            return record
        if not assignment_crud.is_assigned(self.db, lesson_id, employee_id):
            raise NotAssignedError(
                "Employee is not assigned to this lesson",
                lesson_id=lesson_id,
                employee_id=employee_id,
            )
        # Assigned but never touched: report the implicit initial state without persisting it.
        return LessonProgress(
            lesson_id=lesson_id,
            employee_id=employee_id,
            status=ProgressStatus.NOT_STARTED,
            score=None,
            answers=[],
            time_spent_seconds=0,
            attempt_count=0,
        )

    def update_progress(
        self,
        lesson_id: str,
        employee_id: str,
        update: Union[ProgressUpdateIn, Mapping[str, Any]],
    ) -> LessonProgress:
        if not isinstance(update, ProgressUpdateIn):
            try:
                update = ProgressUpdateIn.model_validate(update)
            except PydanticValidationError as exc:
                raise ValidationError.from_pydantic(exc) from exc

        with _pair_lock(lesson_id, employee_id):
            try:
                return self._apply_update(lesson_id, employee_id, update)
            except _RecordCreatedConcurrently:
                # Another process inserted the record first; apply on top of it.
                return self._apply_update(lesson_id, employee_id, update)

    def list_lesson_progress(self, lesson_id: str) -> list[LessonProgress]:
        if self.db.get(Lesson, lesson_id) is None:
            raise NotFoundError("Lesson not found", entity="lesson", lesson_id=lesson_id)
        return (
            self.db.query(LessonProgress)
            .filter(LessonProgress.lesson_id == lesson_id)
            .order_by(LessonProgress.id.asc())
            .all()
        )

    def employee_summary(self, employee_id: str) -> dict:
        lessons = assignment_crud.lessons_for_employee(self.db, employee_id)
        records = {
            record.lesson_id: record
            for record in self.db.query(LessonProgress).filter(LessonProgress.employee_id == employee_id)
        }

        counts = {status: 0 for status in ProgressStatus}
        completed_scores: list[int] = []
        units: "OrderedDict[tuple[str, int, str], dict]" = OrderedDict()
        for lesson in lessons:
            record = records.get(lesson.id)
            status = record.status if record is not None else ProgressStatus.NOT_STARTED
            counts[status] += 1

            key = (lesson.category, lesson.unit, lesson.unit_name)
            unit = units.setdefault(
                key,
                {"category": lesson.category, "unit": lesson.unit, "unit_name": lesson.unit_name, "completed": 0, "total": 0},
            )
            unit["total"] += 1
            if status == ProgressStatus.COMPLETED:
                unit["completed"] += 1
                if record.score is not None:
                    completed_scores.append(record.score)

        return {
            "employee_id": employee_id,
            "assigned_lessons": len(lessons),
            "not_started": counts[ProgressStatus.NOT_STARTED],
            "in_progress": counts[ProgressStatus.IN_PROGRESS],
            "completed": counts[ProgressStatus.COMPLETED],
            "average_score": _mean(completed_scores),
            "units": list(units.values()),
        }

    def restaurant_report(self, restaurant_id: str) -> dict:
        """Roll up every assignment of a restaurant's lessons.

        Each assignment counts once under its current status (no record means
        ``not_started``). Scores and time spent are averaged over completed
        lessons, overall and per unit, chapter and employee.
        """
        if self.db.get(Restaurant, restaurant_id) is None:
            raise NotFoundError("Restaurant not found", entity="restaurant", restaurant_id=restaurant_id)

        lessons = {
            lesson.id: lesson
            for lesson in self.db.query(Lesson)
            .filter(Lesson.restaurant_id == restaurant_id)
            .order_by(Lesson.unit.asc(), Lesson.chapter.asc(), Lesson.id.asc())
        }
        assignments = (
            self.db.query(LessonAssignment)
            .filter(LessonAssignment.lesson_id.in_(list(lessons)))
            .order_by(LessonAssignment.id.asc())
            .all()
        )
        records = {
            (record.lesson_id, record.employee_id): record
            for record in self.db.query(LessonProgress).filter(LessonProgress.lesson_id.in_(list(lessons)))
        }
        names = {
            user.id: user.full_name
            for user in self.db.query(User).filter(User.id.in_(sorted({a.employee_id for a in assignments})))
        }

        overall = _Tally()
        units: "OrderedDict[tuple, tuple[dict, _Tally]]" = OrderedDict()
        chapters: "OrderedDict[tuple, tuple[dict, _Tally]]" = OrderedDict()
        employees: "OrderedDict[str, tuple[dict, _Tally]]" = OrderedDict()

        # Units and chapters follow lesson order even when nothing is assigned yet.
        for lesson in lessons.values():
            units.setdefault(
                (lesson.category, lesson.unit, lesson.unit_name),
                ({"category": lesson.category, "unit": lesson.unit, "unit_name": lesson.unit_name}, _Tally()),
            )
            chapters.setdefault(
                (lesson.category, lesson.unit, lesson.chapter, lesson.chapter_name),
                (
                    {
                        "category": lesson.category,
                        "unit": lesson.unit,
                        "chapter": lesson.chapter,
                        "chapter_name": lesson.chapter_name,
                    },
                    _Tally(),
                ),
            )

        for assignment in assignments:
            lesson = lessons[assignment.lesson_id]
            record = records.get((lesson.id, assignment.employee_id))
            status = record.status if record is not None else ProgressStatus.NOT_STARTED
            employee = employees.setdefault(
                assignment.employee_id,
                ({"employee_id": assignment.employee_id, "full_name": names.get(assignment.employee_id)}, _Tally()),
            )
            overall.add(status, record)
            units[(lesson.category, lesson.unit, lesson.unit_name)][1].add(status, record)
            chapters[(lesson.category, lesson.unit, lesson.chapter, lesson.chapter_name)][1].add(status, record)
            employee[1].add(status, record)

        return {
            "restaurant_id": restaurant_id,
            "total_lessons": len(lessons),
            "total_employees": len(employees),
            "overall": overall.as_dict(),
            "units": [{**key, **tally.as_dict()} for key, tally in units.values()],
            "chapters": [{**key, **tally.as_dict()} for key, tally in chapters.values()],
            "employees": [{**key, **tally.as_dict()} for key, tally in employees.values()],
        }

    def questions_for(self, lesson: Lesson) -> Optional[Sequence[ConcreteQuestion]]:
        if self.question_loader is None:
            return None
        return self.question_loader(lesson)

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------
    @staticmethod
    def _utcnow() -> datetime:
        return datetime.now(timezone.utc)

    def _find(self, lesson_id: str, employee_id: str) -> Optional[LessonProgress]:
        return (
            self.db.query(LessonProgress)
            .filter(LessonProgress.lesson_id == lesson_id, LessonProgress.employee_id == employee_id)
            .first()
        )

    def _apply_update(self, lesson_id: str, employee_id: str, update: ProgressUpdateIn) -> LessonProgress:
        lesson = self.db.get(Lesson, lesson_id)
        if lesson is None:
            raise NotFoundError("Lesson not found", entity="lesson", lesson_id=lesson_id)
        if not assignment_crud.is_assigned(self.db, lesson_id, employee_id):
            raise NotAssignedError(
                "Employee is not assigned to this lesson",
                lesson_id=lesson_id,
                employee_id=employee_id,
            )

        record = self._find(lesson_id, employee_id)
        created = record is None
        if created:
            record = LessonProgress(
                lesson_id=lesson_id,
                employee_id=employee_id,
                status=ProgressStatus.NOT_STARTED,
                answers=[],
                time_spent_seconds=0,
                attempt_count=0,
            )
            self.db.add(record)

        current = record.status
        incoming = [answer.model_dump() for answer in update.answers]
        has_submission = bool(incoming) or update.score is not None

        if update.status is not None:
            target = update.status
        elif current == ProgressStatus.NOT_STARTED and has_submission:
            target = ProgressStatus.IN_PROGRESS
        else:
            target = current

        if target.rank < current.rank:
            self.db.rollback()
            raise InvalidTransitionError(
                f"Cannot move progress from {current.value} to {target.value}",
                current=current.value,
                requested=target.value,
            )

        stored_answers = list(record.answers or [])
        answers = _merge_answers(stored_answers, incoming, replace=update.replace_answers)

        if current == ProgressStatus.COMPLETED:
            if answers != stored_answers:
                self.db.rollback()
                raise InvalidTransitionError(
                    "Answers of a completed lesson cannot change",
                    current=current.value,
                    requested=target.value,
                )
            if update.score is None or update.score == record.score:
                # Duplicate delivery of the completing submission.
                return record

        score = record.score
        if has_submission:
            questions = self.questions_for(lesson) if self.grader.needs_questions else None
            graded = self.grader.grade(questions, answers, update.score)
            if graded is not None:
                score = graded

        now = self._utcnow()
        if target != ProgressStatus.NOT_STARTED and record.started_at is None:
            record.started_at = now
        if target == ProgressStatus.COMPLETED and current != ProgressStatus.COMPLETED:
            record.completed_at = now
        record.status = target
        record.score = score
        record.answers = answers
        record.last_accessed_at = now
        record.time_spent_seconds = (record.time_spent_seconds or 0) + update.time_spent_seconds

        if has_submission:
            record.attempt_count = (record.attempt_count or 0) + 1
            record.attempts.append(
                LessonAttempt(
                    status=target,
                    score=score,
                    time_spent_seconds=update.time_spent_seconds,
                    answers=incoming,
                    submitted_at=now,
                )
            )

        try:
            self.db.commit()
        except IntegrityError as exc:
            self.db.rollback()
            if created:
                raise _RecordCreatedConcurrently() from exc
            raise
        except StaleDataError as exc:
            self.db.rollback()
            logger.warning("Concurrent progress update for lesson %s / employee %s", lesson_id, employee_id)
            raise ConcurrentModificationError(
                "Progress was updated concurrently, reload and retry",
                lesson_id=lesson_id,
                employee_id=employee_id,
            ) from exc

        self.db.refresh(record)
        logger.info(
            "Progress lesson=%s employee=%s: %s -> %s (score=%s)",
            lesson_id,
            employee_id,
            current.value,
            target.value,
            score,
        )
        return record
