"""CBT Exam Engine - API v1 Router."""
from fastapi import APIRouter

from cbt.api.v1.auth import router as auth_router
from cbt.api.v1.exam import router as exam_router
from cbt.api.v1.admin import router as admin_router

api_router = APIRouter()

api_router.include_router(auth_router)
api_router.include_router(exam_router)
api_router.include_router(admin_router)
