"""Utility helpers for test factories."""

from __future__ import annotations

from typing import Any
from uuid import uuid4

from serveready.models.restaurant.restaurant_model import MenuItem, Restaurant
from serveready.models.user.user_model import User, UserRole
from serveready.services.lesson_service import Actor

PLAIN_QUESTION_ID = "6f1d3c2a-9a4e-4b0f-8d52-1c3e5a7b9d01"
PARAMETRIC_QUESTION_ID = "0b8f7e6d-5c4b-4a39-8e27-1f0e2d3c4b5a"


def create_restaurant(db, name: str = "Chez Test") -> Restaurant:
    restaurant = Restaurant(name=name, is_active=True)
    db.add(restaurant)
    db.commit()
    db.refresh(restaurant)
    return restaurant


def create_user(db, *, role: UserRole = UserRole.EMPLOYEE, restaurants=(), **kwargs) -> User:
    defaults = {
        "email": f"user-{uuid4().hex[:8]}@example.com",
        "hashed_password": "x",
        "full_name": "Test User",
        "role": role,
        "is_active": True,
    }
    defaults.update(kwargs)
    user = User(**defaults)
    user.restaurants = list(restaurants)
    db.add(user)
    db.commit()
    db.refresh(user)
    return user


def create_menu_items(db, restaurant: Restaurant, names=("Burger", "Caesar Salad", "Tiramisu")) -> list[MenuItem]:
    catalog = {
        "Burger": dict(dish_type="Entree", ingredients=["Beef", "Bun", "Cheddar"], allergens=["Wheat", "Dairy"]),
        "Caesar Salad": dict(dish_type="Salad", ingredients=["Romaine", "Parmesan", "Anchovy"], allergens=["Dairy", "Fish"]),
        "Tiramisu": dict(dish_type="Dessert", ingredients=["Mascarpone", "Espresso"], allergens=["Dairy", "Eggs"]),
    }
    items = []
    for position, name in enumerate(names):
        details = catalog.get(name, dict(dish_type="Entree", ingredients=[], allergens=[]))
        item = MenuItem(restaurant_id=restaurant.id, name=name, position=position, is_active=True, price=12.5, **details)
        db.add(item)
        items.append(item)
    db.commit()
    for item in items:
        db.refresh(item)
    return items


def plain_question(**overrides: Any) -> dict:
    question = {
        "uuid": PLAIN_QUESTION_ID,
        "question_type": "multiple_choice",
        "question_text": "Which of these is a mother sauce?",
        "options": ["Bechamel", "Ketchup", "Mayonnaise"],
        "correct_answers": ["Bechamel"],
        "difficulty": "easy",
    }
    question.update(overrides)
    return question


def parametric_question(**overrides: Any) -> dict:
    question = {
        "uuid": PARAMETRIC_QUESTION_ID,
        "question_type": "multiple_choice",
        "question_text": "Which allergens are in the {dish}?",
        "options_variable": "config.allergens",
        "correct_answer_variable": "dish.allergens",
        "difficulty": "medium",
        "repeat_for": {"key_variable": "dish", "source": "menu_items"},
    }
    question.update(overrides)
    return question


def lesson_payload(restaurant_id: str, **overrides: Any) -> dict:
    payload = {
        "restaurant_id": restaurant_id,
        "category": "Food",
        "unit": 1,
        "unit_name": "Menu Basics",
        "chapter": 1,
        "chapter_name": "Our Dishes",
        "difficulty": "beginner",
        "content": {"intro": "Know the menu."},
        "glossary": {"Mise en place": "Everything in its place"},
        "questions": [parametric_question(), plain_question()],
    }
    payload.update(overrides)
    return payload


def actor_for(user: User) -> Actor:
    return Actor(user_id=user.id, role=user.role, restaurant_ids=user.restaurant_ids)
