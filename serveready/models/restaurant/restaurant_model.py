from __future__ import annotations

from datetime import datetime
from typing import List, Optional
from uuid import uuid4

from sqlalchemy import JSON, Boolean, DateTime, Float, ForeignKey, Integer, String, Text, func
from sqlalchemy.orm import Mapped, mapped_column, relationship

from serveready.db.base_class import Base


class Restaurant(Base):
    __tablename__ = "restaurants"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=lambda: str(uuid4()))
    name: Mapped[str] = mapped_column(String(200), nullable=False)
    is_active: Mapped[bool] = mapped_column(Boolean, default=True)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, server_default=func.now()
    )

    menu_items: Mapped[List["MenuItem"]] = relationship(
        back_populates="restaurant",
        cascade="all, delete-orphan",
        order_by="MenuItem.position",
    )

    def __repr__(self) -> str:  # pragma: no cover - debug helper
        return f"<Restaurant(id={self.id}, name='{self.name}')>"


class MenuItem(Base):
    """A dish or wine served by a restaurant; the raw material of parametric questions."""

    __tablename__ = "menu_items"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=lambda: str(uuid4()))
    restaurant_id: Mapped[str] = mapped_column(
        String(36), ForeignKey("restaurants.id", ondelete="CASCADE"), index=True
    )
    name: Mapped[str] = mapped_column(String(200), nullable=False)
    description: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    dish_type: Mapped[Optional[str]] = mapped_column(String(100), nullable=True)
    price: Mapped[Optional[float]] = mapped_column(Float, nullable=True)
    temperature: Mapped[Optional[str]] = mapped_column(String(50), nullable=True)
    ingredients: Mapped[list] = mapped_column(JSON, nullable=False, default=list)
    allergens: Mapped[list] = mapped_column(JSON, nullable=False, default=list)
    position: Mapped[int] = mapped_column(Integer, nullable=False, default=0, server_default="0")
    is_active: Mapped[bool] = mapped_column(Boolean, default=True)

    restaurant: Mapped[Restaurant] = relationship(back_populates="menu_items")

    def as_source_value(self) -> dict:
        """Plain mapping handed to the question expander."""
        return {
            "id": self.id,
            "name": self.name,
            "description": self.description or "",
            "dish_type": self.dish_type or "",
            "price": f"{self.price:.2f}" if self.price is not None else "",
            "temperature": self.temperature or "",
            "ingredients": list(self.ingredients or []),
            "allergens": list(self.allergens or []),
        }

    def __repr__(self) -> str:  # pragma: no cover - debug helper
        return f"<MenuItem(id={self.id}, name='{self.name}')>"
