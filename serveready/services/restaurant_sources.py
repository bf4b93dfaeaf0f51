"""Named data sources a restaurant exposes to parametric questions."""

from __future__ import annotations

from typing import Any, Callable, Dict, List, Optional, Sequence

from sqlalchemy.orm import Session

from serveready.core.errors import SourceNotFoundError
from serveready.models.lesson.lesson_model import Lesson
from serveready.models.restaurant.restaurant_model import MenuItem

DISH_TYPES = [
    "Appetizer",
    "Soup",
    "Salad",
    "Entree",
    "Side",
    "Dessert",
    "Beverage",
]

FOOD_ALLERGENS = [
    "Dairy",
    "Eggs",
    "Fish",
    "Shellfish",
    "Tree Nuts",
    "Peanuts",
    "Wheat",
    "Soy",
    "Sesame",
]

TEMPERATURES = ["Hot", "Warm", "Room Temperature", "Cold", "Frozen"]

STATIC_SOURCES: Dict[str, Sequence[str]] = {
    "config.dish_types": DISH_TYPES,
    "config.allergens": FOOD_ALLERGENS,
    "config.temperatures": TEMPERATURES,
}


def _distinct(items: Sequence[dict], field: str) -> List[str]:
    seen: set[str] = set()
    values: List[str] = []
    for item in items:
        raw = item.get(field)
        for value in raw if isinstance(raw, list) else [raw]:
            if value and value not in seen:
                seen.add(value)
                values.append(value)
    return values


class RestaurantSourceLookup:
    """Resolve source names against one restaurant's menu.

    Values are loaded once per instance, so a single expansion pass sees one
    consistent snapshot of the menu.
    """

    def __init__(self, db: Session, restaurant_id: str, lesson: Optional[Lesson] = None):
        self.db = db
        self.restaurant_id = restaurant_id
        self.lesson = lesson
        self._cache: Dict[str, Sequence[Any]] = {}
        self._builders: Dict[str, Callable[[], Sequence[Any]]] = {
            "menu_items": self._menu_items,
            "lesson_menu_items": self._lesson_menu_items,
            "ingredients": lambda: _distinct(self._menu_items(), "ingredients"),
            "allergens": lambda: _distinct(self._menu_items(), "allergens"),
            "dish_types": lambda: _distinct(self._menu_items(), "dish_type"),
        }

    def __call__(self, name: str) -> Sequence[Any]:
        if name in STATIC_SOURCES:
            return STATIC_SOURCES[name]
        if name not in self._builders:
            raise SourceNotFoundError(
                f"unknown data source '{name}'",
                source=name,
                restaurant_id=self.restaurant_id,
            )
        if name not in self._cache:
            self._cache[name] = self._builders[name]()
        return self._cache[name]

    def _menu_items(self) -> List[dict]:
        if "_menu" not in self._cache:
            rows = (
                self.db.query(MenuItem)
                .filter(MenuItem.restaurant_id == self.restaurant_id, MenuItem.is_active.is_(True))
                .order_by(MenuItem.position.asc(), MenuItem.name.asc())
                .all()
            )
            self._cache["_menu"] = [row.as_source_value() for row in rows]
        return list(self._cache["_menu"])

    def _lesson_menu_items(self) -> List[dict]:
        if self.lesson is None or not self.lesson.menu_items:
            return []
        by_id = {item["id"]: item for item in self._menu_items()}
        return [by_id[item_id] for item_id in self.lesson.menu_items if item_id in by_id]
