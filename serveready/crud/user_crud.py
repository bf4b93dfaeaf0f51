# Fichier: serveready/crud/user_crud.py

from typing import Iterable, Optional

from sqlalchemy.orm import Session

from serveready.core.security import get_password_hash, verify_password
from serveready.models.restaurant.restaurant_model import Restaurant
from serveready.models.user.user_model import User, UserRole


def get_user_by_email(db: Session, email: str) -> Optional[User]:
    """Return the user registered with ``email`` (case-insensitive), if any."""
    return db.query(User).filter(User.email == email.strip().lower()).first()


def create_user(
    db: Session,
    *,
    email: str,
    password: str,
    role: UserRole = UserRole.EMPLOYEE,
    full_name: str | None = None,
    restaurant_ids: Iterable[str] = (),
) -> User:
    user = User(
        email=email.strip().lower(),
        hashed_password=get_password_hash(password),
        full_name=full_name,
        role=role,
        is_active=True,
    )
    ids = list(restaurant_ids)
    if ids:
        user.restaurants = db.query(Restaurant).filter(Restaurant.id.in_(ids)).all()
    db.add(user)
    db.commit()
    db.refresh(user)
    return user


def authenticate(db: Session, email: str, password: str) -> Optional[User]:
    user = get_user_by_email(db, email)
    if user is None or not verify_password(password, user.hashed_password):
        return None
    return user
