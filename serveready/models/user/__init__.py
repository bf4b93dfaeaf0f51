from .user_model import User, UserRole

__all__ = ["User", "UserRole"]
