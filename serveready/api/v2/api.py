from fastapi import APIRouter

from .endpoints import auth_router, lesson_router

api_router = APIRouter()

api_router.include_router(auth_router.router, prefix="/auth", tags=["Auth"])
api_router.include_router(lesson_router.router, prefix="/lessons", tags=["Lessons"])
