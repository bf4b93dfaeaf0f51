"""Pydantic schemas for lesson progress."""

from .progress_schema import (
    AnswerIn,
    AnswerOut,
    AttemptOut,
    ChapterReportOut,
    EmployeeProgressSummaryOut,
    EmployeeReportOut,
    ProgressOut,
    ProgressTallyOut,
    ProgressUpdateIn,
    RestaurantProgressReportOut,
    UnitProgressOut,
    UnitReportOut,
)

__all__ = [
    "AnswerIn",
    "AnswerOut",
    "AttemptOut",
    "ChapterReportOut",
    "EmployeeProgressSummaryOut",
    "EmployeeReportOut",
    "ProgressOut",
    "ProgressTallyOut",
    "ProgressUpdateIn",
    "RestaurantProgressReportOut",
    "UnitProgressOut",
    "UnitReportOut",
]
