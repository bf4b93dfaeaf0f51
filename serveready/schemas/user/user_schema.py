from typing import List, Optional

from pydantic import BaseModel, ConfigDict, field_validator

from serveready.models.user.user_model import UserRole


class Token(BaseModel):
    access_token: str
    token_type: str = "bearer"


class UserOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: str
    email: str
    full_name: Optional[str] = None
    role: UserRole
    is_active: bool
    restaurant_ids: List[str] = []

    @field_validator("restaurant_ids", mode="before")
    @classmethod
    def _sorted(cls, value):
        return sorted(value or [])
