"""Lesson templates, their assignments and per-employee progress."""

from .assignment_model import LessonAssignment
from .lesson_model import CONTENT_FIELDS, Lesson, LessonDifficulty
from .progress_model import LessonAttempt, LessonProgress, ProgressStatus

__all__ = [
    "CONTENT_FIELDS",
    "Lesson",
    "LessonAssignment",
    "LessonAttempt",
    "LessonDifficulty",
    "LessonProgress",
    "ProgressStatus",
]
