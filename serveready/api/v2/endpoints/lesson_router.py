from contextlib import contextmanager
from typing import Iterator, List

from fastapi import APIRouter, Depends, HTTPException, Query, Response, status
from sqlalchemy.orm import Session

from serveready.api.v2.dependencies import get_current_actor, get_db
from serveready.core.errors import LessonError
from serveready.schemas.lesson import lesson_schema
from serveready.schemas.progress import progress_schema
from serveready.services.lesson_service import Actor, LessonService

router = APIRouter()


@contextmanager
def _lesson_errors() -> Iterator[None]:
    """Translate domain errors into HTTP responses."""
    try:
        yield
    except LessonError as exc:
        raise HTTPException(status_code=exc.status_code, detail=exc.to_detail()) from exc


# ----------------------------------------------------------------------
# Lesson store
# ----------------------------------------------------------------------
@router.post("", response_model=lesson_schema.LessonOut, status_code=status.HTTP_201_CREATED)
def create_lesson(
    payload: lesson_schema.LessonCreate,
    db: Session = Depends(get_db),
    actor: Actor = Depends(get_current_actor),
):
    with _lesson_errors():
        return LessonService(db, actor).create_lesson(payload)


@router.get("", response_model=List[lesson_schema.LessonOut])
def list_lessons(
    include_inactive: bool = Query(False),
    db: Session = Depends(get_db),
    actor: Actor = Depends(get_current_actor),
):
    with _lesson_errors():
        return LessonService(db, actor).list_lessons(include_inactive=include_inactive)


@router.get("/restaurant/{restaurant_id}", response_model=List[lesson_schema.LessonOut])
def list_lessons_by_restaurant(
    restaurant_id: str,
    include_inactive: bool = Query(False),
    db: Session = Depends(get_db),
    actor: Actor = Depends(get_current_actor),
):
    with _lesson_errors():
        return LessonService(db, actor).list_lessons_by_restaurant(restaurant_id, include_inactive=include_inactive)


@router.get("/restaurant/{restaurant_id}/report", response_model=progress_schema.RestaurantProgressReportOut)
def restaurant_progress_report(
    restaurant_id: str,
    db: Session = Depends(get_db),
    actor: Actor = Depends(get_current_actor),
):
    with _lesson_errors():
        return LessonService(db, actor).restaurant_progress_report(restaurant_id)


# Employee-scoped routes are registered before "/{lesson_id}/..." so that
# "employee" is never captured as a lesson id.
@router.get("/employee/{employee_id}", response_model=List[lesson_schema.LessonOut])
def list_assigned_lessons(
    employee_id: str,
    db: Session = Depends(get_db),
    actor: Actor = Depends(get_current_actor),
):
    with _lesson_errors():
        return LessonService(db, actor).list_assigned_lessons(employee_id)


@router.get("/employee/{employee_id}/summary", response_model=progress_schema.EmployeeProgressSummaryOut)
def employee_progress_summary(
    employee_id: str,
    db: Session = Depends(get_db),
    actor: Actor = Depends(get_current_actor),
):
    with _lesson_errors():
        return LessonService(db, actor).employee_progress_summary(employee_id)


@router.get("/{lesson_id}", response_model=lesson_schema.LessonOut)
def get_lesson(
    lesson_id: str,
    db: Session = Depends(get_db),
    actor: Actor = Depends(get_current_actor),
):
    with _lesson_errors():
        return LessonService(db, actor).get_lesson(lesson_id)


@router.patch("/{lesson_id}", response_model=lesson_schema.LessonOut)
def update_lesson(
    lesson_id: str,
    patch: lesson_schema.LessonUpdate,
    db: Session = Depends(get_db),
    actor: Actor = Depends(get_current_actor),
):
    with _lesson_errors():
        return LessonService(db, actor).update_lesson(lesson_id, patch)


@router.delete("/{lesson_id}", status_code=status.HTTP_204_NO_CONTENT)
def delete_lesson(
    lesson_id: str,
    db: Session = Depends(get_db),
    actor: Actor = Depends(get_current_actor),
):
    with _lesson_errors():
        LessonService(db, actor).delete_lesson(lesson_id)
    return Response(status_code=status.HTTP_204_NO_CONTENT)


# ----------------------------------------------------------------------
# Assignment ledger
# ----------------------------------------------------------------------
@router.post("/{lesson_id}/assignments", response_model=lesson_schema.AssignmentOut)
def assign_lesson(
    lesson_id: str,
    payload: lesson_schema.AssignmentIn,
    response: Response,
    db: Session = Depends(get_db),
    actor: Actor = Depends(get_current_actor),
):
    with _lesson_errors():
        assignment, created = LessonService(db, actor).assign_lesson(lesson_id, payload.employee_id)
    response.status_code = status.HTTP_201_CREATED if created else status.HTTP_200_OK
    return assignment


@router.delete("/{lesson_id}/assignments/{employee_id}", status_code=status.HTTP_204_NO_CONTENT)
def unassign_lesson(
    lesson_id: str,
    employee_id: str,
    db: Session = Depends(get_db),
    actor: Actor = Depends(get_current_actor),
):
    with _lesson_errors():
        LessonService(db, actor).unassign_lesson(lesson_id, employee_id)
    return Response(status_code=status.HTTP_204_NO_CONTENT)


@router.get("/{lesson_id}/assignments", response_model=List[str])
def assigned_employees(
    lesson_id: str,
    db: Session = Depends(get_db),
    actor: Actor = Depends(get_current_actor),
):
    with _lesson_errors():
        return LessonService(db, actor).assigned_employees(lesson_id)


# ----------------------------------------------------------------------
# Employee read path and progress
# ----------------------------------------------------------------------
@router.get("/{lesson_id}/employee/{employee_id}", response_model=lesson_schema.EmployeeLessonOut)
def get_lesson_for_employee(
    lesson_id: str,
    employee_id: str,
    db: Session = Depends(get_db),
    actor: Actor = Depends(get_current_actor),
):
    with _lesson_errors():
        return LessonService(db, actor).get_lesson_for_employee(lesson_id, employee_id)


@router.get("/{lesson_id}/progress", response_model=List[progress_schema.ProgressOut])
def list_lesson_progress(
    lesson_id: str,
    db: Session = Depends(get_db),
    actor: Actor = Depends(get_current_actor),
):
    with _lesson_errors():
        return LessonService(db, actor).list_lesson_progress(lesson_id)


@router.get("/{lesson_id}/progress/{employee_id}", response_model=progress_schema.ProgressOut)
def get_progress(
    lesson_id: str,
    employee_id: str,
    db: Session = Depends(get_db),
    actor: Actor = Depends(get_current_actor),
):
    with _lesson_errors():
        return LessonService(db, actor).get_progress(lesson_id, employee_id)


@router.put("/{lesson_id}/progress/{employee_id}", response_model=progress_schema.ProgressOut)
def update_progress(
    lesson_id: str,
    employee_id: str,
    payload: progress_schema.ProgressUpdateIn,
    db: Session = Depends(get_db),
    actor: Actor = Depends(get_current_actor),
):
    with _lesson_errors():
        return LessonService(db, actor).update_progress(lesson_id, employee_id, payload)
