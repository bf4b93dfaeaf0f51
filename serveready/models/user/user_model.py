from sqlalchemy import Boolean, DateTime, Enum, ForeignKey, String, Table, Column, func
from sqlalchemy.orm import Mapped, mapped_column, relationship
from serveready.db.base_class import Base
from typing import List, Optional, TYPE_CHECKING
from datetime import datetime
from uuid import uuid4
import enum

if TYPE_CHECKING:
    from ..restaurant.restaurant_model import Restaurant


class UserRole(str, enum.Enum):
    SUPER_ADMIN = "super_admin"
    ADMIN = "admin"
    DIRECTOR = "director"
    MANAGER = "manager"
    EMPLOYEE = "employee"


user_restaurants = Table(
    "user_restaurants",
    Base.metadata,
    Column("user_id", String(36), ForeignKey("users.id", ondelete="CASCADE"), primary_key=True),
    Column("restaurant_id", String(36), ForeignKey("restaurants.id", ondelete="CASCADE"), primary_key=True),
)


class User(Base):
    __tablename__ = "users"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=lambda: str(uuid4()))
    email: Mapped[str] = mapped_column(String(255), unique=True, index=True, nullable=False)
    hashed_password: Mapped[str] = mapped_column(String, nullable=False)
    full_name: Mapped[Optional[str]] = mapped_column(String(255))
    role: Mapped[UserRole] = mapped_column(
        Enum(UserRole, name="userrole", values_callable=lambda obj: [e.value for e in obj]),
        nullable=False,
        default=UserRole.EMPLOYEE,
        server_default=UserRole.EMPLOYEE.value,
    )
    is_active: Mapped[bool] = mapped_column(Boolean, default=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), server_default=func.now())

    restaurants: Mapped[List["Restaurant"]] = relationship(secondary=user_restaurants)

    @property
    def restaurant_ids(self) -> frozenset[str]:
        return frozenset(restaurant.id for restaurant in self.restaurants)

    def __repr__(self):
        return f"<User(id={self.id}, email='{self.email}', role='{self.role.value}')>"
