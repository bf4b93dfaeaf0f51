"""Pydantic schemas for lesson progress tracking."""
from datetime import datetime
from typing import List, Optional

from pydantic import BaseModel, ConfigDict, Field, model_validator

from serveready.models.lesson.progress_model import ProgressStatus


class AnswerIn(BaseModel):
    """One submitted response: the question (expanded id) and the selected value(s)."""

    question_id: str = Field(..., min_length=1)
    answer: List[str] = Field(default_factory=list)


class ProgressUpdateIn(BaseModel):
    """Learner-side progress submission.

    ``status`` may be omitted; answers or a score then move a lesson that was
    not started to ``in_progress``. ``replace_answers`` swaps the stored answer
    set instead of merging into it.
    """

    model_config = ConfigDict(extra="forbid")

    status: Optional[ProgressStatus] = None
    score: Optional[int] = Field(default=None, ge=0, le=100)
    answers: List[AnswerIn] = Field(default_factory=list)
    replace_answers: bool = False
    time_spent_seconds: int = Field(default=0, ge=0)

    @model_validator(mode="after")
    def _unique_questions(self) -> "ProgressUpdateIn":
        seen: set[str] = set()
        for answer in self.answers:
            if answer.question_id in seen:
                raise ValueError("duplicate_question")
            seen.add(answer.question_id)
        return self


class AnswerOut(BaseModel):
    question_id: str
    answer: List[str]
    is_correct: Optional[bool] = None


class AttemptOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    status: ProgressStatus
    score: Optional[int]
    time_spent_seconds: int
    answers: List[AnswerOut]
    submitted_at: Optional[datetime]


class ProgressOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    lesson_id: str
    employee_id: str
    status: ProgressStatus
    score: Optional[int] = None
    answers: List[AnswerOut] = Field(default_factory=list)
    time_spent_seconds: int = 0
    attempt_count: int = 0
    started_at: Optional[datetime] = None
    completed_at: Optional[datetime] = None
    last_accessed_at: Optional[datetime] = None
    attempts: List[AttemptOut] = Field(default_factory=list)


class UnitProgressOut(BaseModel):
    category: str
    unit: int
    unit_name: str
    completed: int
    total: int


class EmployeeProgressSummaryOut(BaseModel):
    employee_id: str
    assigned_lessons: int
    not_started: int
    in_progress: int
    completed: int
    average_score: Optional[float]
    units: List[UnitProgressOut] = Field(default_factory=list)


class ProgressTallyOut(BaseModel):
    assigned: int
    not_started: int
    in_progress: int
    completed: int
    average_score: Optional[float] = None
    average_time_seconds: Optional[float] = None


class UnitReportOut(ProgressTallyOut):
    category: str
    unit: int
    unit_name: str


class ChapterReportOut(ProgressTallyOut):
    category: str
    unit: int
    chapter: int
    chapter_name: str


class EmployeeReportOut(ProgressTallyOut):
    employee_id: str
    full_name: Optional[str] = None


class RestaurantProgressReportOut(BaseModel):
    """Progress across every assignment of one restaurant's lessons."""

    restaurant_id: str
    total_lessons: int
    total_employees: int
    overall: ProgressTallyOut
    units: List[UnitReportOut] = Field(default_factory=list)
    chapters: List[ChapterReportOut] = Field(default_factory=list)
    employees: List[EmployeeReportOut] = Field(default_factory=list)
