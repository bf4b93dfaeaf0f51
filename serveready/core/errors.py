"""Error taxonomy shared by the lesson store, assignment ledger and progress tracker.

Every error is terminal for the request that raised it: nothing in the core
retries. Each carries a machine-readable ``code``, the HTTP status the API layer
answers with, and a ``context`` mapping describing what the caller needs to act
(the offending field, the current state, ...).
"""

from __future__ import annotations

from typing import Any


class LessonError(Exception):
    code = "lesson_error"
    status_code = 400

    def __init__(self, message: str, **context: Any):
        super().__init__(message)
        self.message = message
        self.context: dict[str, Any] = dict(context)

    def to_detail(self) -> dict[str, Any]:
        return {"code": self.code, "message": self.message, "context": self.context}

    def __repr__(self) -> str:  # pragma: no cover - debug helper
        return f"<{type(self).__name__} code={self.code!r} message={self.message!r}>"


class ValidationError(LessonError):
    """Malformed or missing input."""

    code = "validation_error"
    status_code = 422

    @classmethod
    def from_pydantic(cls, exc: Any) -> "ValidationError":
        errors = [
            {
                "field": ".".join(str(part) for part in error.get("loc", ())),
                "message": error.get("msg", "invalid value"),
            }
            for error in exc.errors()
        ]
        field = errors[0]["field"] if errors else None
        message = errors[0]["message"] if errors else str(exc)
        return cls(message, field=field, errors=errors)


class NotFoundError(LessonError):
    code = "not_found"
    status_code = 404


class LockedContentError(LessonError):
    """A well-formed edit rejected because the lesson is assigned."""

    code = "lesson_locked"
    status_code = 403


class NotAssignedError(LessonError):
    code = "not_assigned"
    status_code = 403


class InvalidTransitionError(LessonError):
    code = "invalid_transition"
    status_code = 409


class SourceNotFoundError(LessonError):
    code = "source_not_found"
    status_code = 422


class PermissionDeniedError(LessonError):
    code = "forbidden"
    status_code = 403


class ConcurrentModificationError(LessonError):
    code = "concurrent_modification"
    status_code = 409


