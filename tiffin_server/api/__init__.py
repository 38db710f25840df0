"""
API routes and endpoints.
"""

from fastapi import APIRouter
from .v1 import admin

api_router = APIRouter()

# 包含所有v1路由
api_router.include_router(admin.router, prefix="/admin", tags=["管理员"])
