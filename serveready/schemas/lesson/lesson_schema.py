"""Pydantic schemas for lesson templates, assignments and the employee read path."""

from __future__ import annotations

import enum
import re
from datetime import datetime
from typing import Annotated, Dict, List, Literal, Optional, Union
from uuid import UUID, uuid4

from pydantic import BaseModel, ConfigDict, Field, TypeAdapter, field_validator, model_validator

from serveready.models.lesson.lesson_model import LessonDifficulty
from serveready.schemas.progress.progress_schema import ProgressOut

_VARIABLE_RE = re.compile(r"^[A-Za-z_]\w*(\.[A-Za-z_]\w*)?$")
_IDENTIFIER_RE = re.compile(r"^[A-Za-z_]\w*$")

TRUE_FALSE_OPTIONS = ["True", "False"]


class QuestionType(str, enum.Enum):
    MULTIPLE_CHOICE = "multiple_choice"
    SINGLE_SELECT = "single_select"
    TRUE_FALSE = "true_false"


class QuestionDifficulty(str, enum.Enum):
    EASY = "easy"
    MEDIUM = "medium"
    HARD = "hard"


class RepeatFor(BaseModel):
    model_config = ConfigDict(extra="forbid")

    key_variable: str = Field(..., min_length=1, max_length=64)
    source: str = Field(..., min_length=1, max_length=100)

    @field_validator("key_variable")
    @classmethod
    def _identifier(cls, value: str) -> str:
        if not _IDENTIFIER_RE.match(value):
            raise ValueError("key_variable must be an identifier")
        return value


class _QuestionTemplateBase(BaseModel):
    model_config = ConfigDict(extra="forbid")

    uuid: UUID = Field(default_factory=uuid4)
    question_text: str = Field(..., min_length=1, max_length=500)
    options: Optional[List[str]] = None
    options_variable: Optional[str] = None
    correct_answers: Optional[List[str]] = None
    correct_answer_variable: Optional[str] = None
    difficulty: QuestionDifficulty = QuestionDifficulty.MEDIUM
    hint: Optional[str] = Field(default=None, max_length=300)
    placeholders: Dict[str, str] = Field(default_factory=dict)
    repeat_for: Optional[RepeatFor] = None

    @field_validator("question_text", "hint")
    @classmethod
    def _strip(cls, value: Optional[str]) -> Optional[str]:
        return value.strip() if isinstance(value, str) else value

    @field_validator("options_variable", "correct_answer_variable")
    @classmethod
    def _variable_reference(cls, value: Optional[str]) -> Optional[str]:
        if value is not None and not _VARIABLE_RE.match(value):
            raise ValueError("variables look like 'source' or 'name.field'")
        return value

    @property
    def is_parametric(self) -> bool:
        return self.repeat_for is not None

    @model_validator(mode="after")
    def _check_answer_shape(self):
        if (self.options is None) == (self.options_variable is None):
            raise ValueError("exactly one of options / options_variable is required")
        if (self.correct_answers is None) == (self.correct_answer_variable is None):
            raise ValueError("exactly one of correct_answers / correct_answer_variable is required")

        if self.repeat_for is None and (self.options_variable or self.correct_answer_variable):
            raise ValueError("variables are only allowed on templates with repeat_for")

        if self.options is not None:
            if not self.options:
                raise ValueError("options must not be empty")
            if len(set(self.options)) != len(self.options):
                raise ValueError("options must be unique")

        if self.correct_answers is not None:
            if not self.correct_answers:
                raise ValueError("correct_answers must not be empty")
            if self.options is not None:
                missing = [answer for answer in self.correct_answers if answer not in self.options]
                if missing:
                    raise ValueError(f"correct answers not among options: {missing}")
        return self


class MultipleChoiceQuestion(_QuestionTemplateBase):
    question_type: Literal["multiple_choice"] = "multiple_choice"


class SingleSelectQuestion(_QuestionTemplateBase):
    question_type: Literal["single_select"] = "single_select"

    @model_validator(mode="after")
    def _single_answer(self):
        if self.correct_answers is not None and len(self.correct_answers) != 1:
            raise ValueError("single_select questions take exactly one correct answer")
        return self


class TrueFalseQuestion(_QuestionTemplateBase):
    question_type: Literal["true_false"] = "true_false"
    options: Optional[List[str]] = Field(default_factory=lambda: list(TRUE_FALSE_OPTIONS))

    @model_validator(mode="after")
    def _fixed_options(self):
        if self.options != TRUE_FALSE_OPTIONS:
            raise ValueError("true_false questions use the options ['True', 'False']")
        if self.correct_answers is not None and len(self.correct_answers) != 1:
            raise ValueError("true_false questions take exactly one correct answer")
        return self


QuestionTemplate = Annotated[
    Union[MultipleChoiceQuestion, SingleSelectQuestion, TrueFalseQuestion],
    Field(discriminator="question_type"),
]

question_templates_adapter = TypeAdapter(List[QuestionTemplate])


def _check_unique_question_ids(questions: List[_QuestionTemplateBase]) -> None:
    seen: set[UUID] = set()
    for question in questions:
        if question.uuid in seen:
            raise ValueError(f"duplicate question uuid {question.uuid}")
        seen.add(question.uuid)


class LessonBase(BaseModel):
    model_config = ConfigDict(extra="forbid")

    category: str = Field(..., min_length=1, max_length=100)
    unit: int = Field(..., ge=1)
    unit_name: str = Field(..., min_length=1, max_length=200)
    chapter: int = Field(..., ge=1)
    chapter_name: str = Field(..., min_length=1, max_length=200)
    difficulty: LessonDifficulty = LessonDifficulty.BEGINNER
    content: Dict[str, str] = Field(default_factory=dict)
    glossary: Dict[str, str] = Field(default_factory=dict)
    menu_items: List[str] = Field(default_factory=list)
    questions: List[QuestionTemplate] = Field(..., min_length=1)
    due_date: Optional[datetime] = None

    @field_validator("category", "unit_name", "chapter_name")
    @classmethod
    def _strip(cls, value: str) -> str:
        value = value.strip()
        if not value:
            raise ValueError("must not be blank")
        return value

    @model_validator(mode="after")
    def _unique_questions(self):
        _check_unique_question_ids(self.questions)
        if len(set(self.menu_items)) != len(self.menu_items):
            raise ValueError("menu_items must be unique")
        return self


class LessonCreate(LessonBase):
    restaurant_id: str = Field(..., min_length=1)


class LessonUpdate(BaseModel):
    """Partial update. Only the fields present in the payload are applied."""

    model_config = ConfigDict(extra="forbid")

    category: Optional[str] = Field(default=None, min_length=1, max_length=100)
    unit: Optional[int] = Field(default=None, ge=1)
    unit_name: Optional[str] = Field(default=None, min_length=1, max_length=200)
    chapter: Optional[int] = Field(default=None, ge=1)
    chapter_name: Optional[str] = Field(default=None, min_length=1, max_length=200)
    difficulty: Optional[LessonDifficulty] = None
    content: Optional[Dict[str, str]] = None
    glossary: Optional[Dict[str, str]] = None
    menu_items: Optional[List[str]] = None
    questions: Optional[List[QuestionTemplate]] = Field(default=None, min_length=1)
    is_active: Optional[bool] = None
    due_date: Optional[datetime] = None

    @model_validator(mode="after")
    def _unique_questions(self):
        if self.questions is not None:
            _check_unique_question_ids(self.questions)
        if self.menu_items is not None and len(set(self.menu_items)) != len(self.menu_items):
            raise ValueError("menu_items must be unique")
        return self


class QuestionTemplateOut(BaseModel):
    """A stored template as returned to callers. Answer keys may be withheld."""

    uuid: UUID
    question_type: QuestionType
    question_text: str
    options: Optional[List[str]] = None
    options_variable: Optional[str] = None
    correct_answers: Optional[List[str]] = None
    correct_answer_variable: Optional[str] = None
    difficulty: QuestionDifficulty = QuestionDifficulty.MEDIUM
    hint: Optional[str] = None
    placeholders: Dict[str, str] = Field(default_factory=dict)
    repeat_for: Optional[RepeatFor] = None

    def without_answer_key(self) -> "QuestionTemplateOut":
        return self.model_copy(update={"correct_answers": None, "correct_answer_variable": None})


class LessonOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: str
    restaurant_id: str
    category: str
    unit: int
    unit_name: str
    chapter: int
    chapter_name: str
    difficulty: LessonDifficulty
    content: Dict[str, str]
    glossary: Dict[str, str]
    menu_items: List[str]
    questions: List[QuestionTemplateOut]
    is_active: bool
    due_date: Optional[datetime]
    created_by: Optional[str]
    last_modified_by: Optional[str]
    created_at: Optional[datetime]
    updated_at: Optional[datetime]


class AssignmentIn(BaseModel):
    employee_id: str = Field(..., min_length=1)


class AssignmentOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    lesson_id: str
    employee_id: str
    assigned_by: Optional[str]
    assigned_at: Optional[datetime]


class ConcreteQuestionOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: str
    template_id: str
    question_type: QuestionType
    question_text: str
    options: List[str]
    correct_answers: Optional[List[str]]
    difficulty: QuestionDifficulty
    hint: Optional[str]
    substitution: Optional[str]


class EmployeeLessonOut(BaseModel):
    id: str
    restaurant_id: str
    category: str
    unit: int
    unit_name: str
    chapter: int
    chapter_name: str
    difficulty: LessonDifficulty
    content: Dict[str, str]
    glossary: Dict[str, str]
    due_date: Optional[datetime]
    questions: List[ConcreteQuestionOut]
    progress: ProgressOut
