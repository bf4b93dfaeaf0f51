import logging
import re
from typing import Generator, Optional
from urllib.parse import unquote

from fastapi import Depends, HTTPException, Request, status
from jose import ExpiredSignatureError, JWTError
from sqlalchemy.orm import Session
from starlette.datastructures import State

from serveready.core import security
from serveready.db import session as db_session
from serveready.models.user.user_model import User
from serveready.services.lesson_service import Actor

log = logging.getLogger(__name__)


def _get_state_container(request: Request | None) -> Optional[State]:
    if request is None:
        return None

    state = getattr(request, "state", None)
    if state is None:
        state = State()
        setattr(request, "state", state)
    return state


def get_db(request: Request = None) -> Generator[Session, None, None]:  # type: ignore[assignment]
    """Provide one SQLAlchemy session shared by every dependency of a request.

    The route handler and ``get_current_actor`` both depend on ``get_db``; the
    session is cached on ``request.state`` with a reference counter so it stays
    open until the last dependency exits. Without a request (scripts, direct
    calls) a fresh session is yielded and closed.
    """

    if request is None:
        db = db_session.SessionLocal()
        try:
            yield db
        finally:
            db.close()
        return

    state = _get_state_container(request)
    db = getattr(state, "_db_session", None)
    if db is None:
        db = db_session.SessionLocal()
        setattr(state, "_db_session", db)
        setattr(state, "_db_refcount", 0)

    refcount = getattr(state, "_db_refcount", 0) + 1
    setattr(state, "_db_refcount", refcount)

    try:
        yield db
    finally:
        refcount = getattr(state, "_db_refcount", 1) - 1
        if refcount <= 0:
            try:
                db.close()
            finally:
                for attr in ("_db_session", "_db_refcount"):
                    if hasattr(state, attr):
                        delattr(state, attr)
        else:
            setattr(state, "_db_refcount", refcount)


def _normalize_token_value(raw_token: str | None) -> str | None:
    """Return a clean JWT string extracted from the supported transports.

    Browsers can percent-encode cookie values (``Bearer%20...``) and some
    clients send quoted strings. Both are normalised, and ``Bearer`` / ``Token``
    prefixes are accepted case-insensitively.
    """

    if raw_token is None:
        return None

    token = raw_token.strip().strip('"').strip("'")
    if not token:
        return None

    token = unquote(token)

    match = re.match(r"^(bearer|token)[\s,:]+(.+)$", token, flags=re.IGNORECASE)
    if match:
        token = match.group(2)
    else:
        parts = token.split()
        if len(parts) >= 2 and parts[0].lower().rstrip(",") in {"bearer", "token"}:
            token = parts[1]

    token = token.strip()
    return token or None


def _decode_user_from_token(token: str | None, db: Session) -> User:
    credentials_exception = HTTPException(
        status_code=status.HTTP_401_UNAUTHORIZED,
        detail="Could not validate credentials",
    )

    token = _normalize_token_value(token)
    if not token:
        log.warning("Authentication failed: no token supplied.")
        raise credentials_exception

    try:
        payload = security.decode_access_token(token)
        user_id = payload.get("sub")
        if not user_id:
            log.warning("Authentication failed: token carries no 'sub'.")
            raise credentials_exception
    except ExpiredSignatureError:
        log.warning("Authentication failed: token expired.")
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="token_expired")
    except JWTError:
        log.warning("Authentication failed: malformed or invalid token.")
        raise credentials_exception

    user = db.get(User, str(user_id))
    if user is None:
        log.warning("Authentication failed: user %s not found.", user_id)
        raise credentials_exception

    if not user.is_active:
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="inactive_user")

    return user


def get_current_user(request: Request, db: Session = Depends(get_db)) -> User:
    token_sources = (
        request.headers.get("Authorization"),
        request.headers.get("X-Access-Token"),
        request.cookies.get("access_token"),
    )

    last_unauthorized_error: HTTPException | None = None

    for candidate in token_sources:
        token = _normalize_token_value(candidate)
        if not token:
            continue

        try:
            return _decode_user_from_token(token, db)
        except HTTPException as exc:
            if exc.status_code != status.HTTP_401_UNAUTHORIZED:
                raise
            last_unauthorized_error = exc

    if last_unauthorized_error is not None:
        raise last_unauthorized_error

    return _decode_user_from_token(None, db)


def actor_for(user: User) -> Actor:
    return Actor(user_id=user.id, role=user.role, restaurant_ids=user.restaurant_ids)


def get_current_actor(user: User = Depends(get_current_user)) -> Actor:
    return actor_for(user)
