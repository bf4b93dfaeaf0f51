from .user_schema import Token, UserOut

__all__ = ["Token", "UserOut"]
