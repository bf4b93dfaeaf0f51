import logging

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from serveready.api.v2.api import api_router
from serveready.core.config import settings
from serveready.crud import user_crud
from serveready.db import base  # noqa: F401  registers every model on Base.metadata
from serveready.db import session as db_session
from serveready.db.base_class import Base
from serveready.models.user.user_model import UserRole

# --- Logging ---
logging.basicConfig(level=logging.INFO)
logger = logging.getLogger(__name__)

app = FastAPI(
    title="ServeReady Lessons API",
    openapi_url="/api/v2/openapi.json",
)


def _sanitize_origin(origin: str | None) -> str | None:
    if not origin:
        return None
    value = origin.strip()
    if not value:
        return None
    if not value.startswith("http"):
        value = f"https://{value}"
    return value.rstrip("/")


def _build_cors_origins() -> list[str]:
    origins = sorted({origin for origin in map(_sanitize_origin, settings.BACKEND_CORS_ORIGINS) if origin})
    logger.info("CORS origins: %s", origins)
    return origins


app.add_middleware(
    CORSMiddleware,
    allow_origins=_build_cors_origins(),
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["Authorization", "Content-Type", "X-Access-Token"],
)

app.include_router(api_router, prefix="/api/v2")


def seed_default_admin() -> None:
    """Create the default super admin when a password is configured and the account is missing."""
    if not settings.DEFAULT_ADMIN_PASSWORD:
        logger.info("DEFAULT_ADMIN_PASSWORD not set, skipping default administrator.")
        return

    with db_session.SessionLocal() as db:
        if user_crud.get_user_by_email(db, settings.DEFAULT_ADMIN_EMAIL) is not None:
            logger.info("Default administrator already present.")
            return
        user_crud.create_user(
            db,
            email=settings.DEFAULT_ADMIN_EMAIL,
            password=settings.DEFAULT_ADMIN_PASSWORD,
            role=UserRole.SUPER_ADMIN,
            full_name="Administrator",
        )
        logger.info("Default administrator '%s' created.", settings.DEFAULT_ADMIN_EMAIL)


@app.on_event("startup")
def startup() -> None:
    logger.info("Creating database tables if needed...")
    Base.metadata.create_all(bind=db_session.engine)
    logger.info("Database tables ready.")
    seed_default_admin()


@app.get("/")
def read_root():
    return {"message": "Welcome to the ServeReady Lessons API!"}
