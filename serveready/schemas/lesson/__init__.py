"""Pydantic schemas for lessons."""

from .lesson_schema import (
    AssignmentIn,
    AssignmentOut,
    ConcreteQuestionOut,
    EmployeeLessonOut,
    LessonCreate,
    LessonOut,
    LessonUpdate,
    QuestionDifficulty,
    QuestionTemplate,
    QuestionTemplateOut,
    QuestionType,
    RepeatFor,
)

__all__ = [
    "AssignmentIn",
    "AssignmentOut",
    "ConcreteQuestionOut",
    "EmployeeLessonOut",
    "LessonCreate",
    "LessonOut",
    "LessonUpdate",
    "QuestionDifficulty",
    "QuestionTemplate",
    "QuestionTemplateOut",
    "QuestionType",
    "RepeatFor",
]
