"""Registers every SQLAlchemy model on ``Base.metadata``."""

from serveready.db.base_class import Base

# Utilisateurs et restaurants
from serveready.models.user.user_model import User
from serveready.models.restaurant.restaurant_model import MenuItem, Restaurant

# Leçons, affectations et progression
from serveready.models.lesson.lesson_model import Lesson
from serveready.models.lesson.assignment_model import LessonAssignment
from serveready.models.lesson.progress_model import LessonAttempt, LessonProgress

__all__ = (
    "Base",
    "User",
    "Restaurant",
    "MenuItem",
    "Lesson",
    "LessonAssignment",
    "LessonProgress",
    "LessonAttempt",
)
