from fastapi import APIRouter

from app.api.v1.routes import admin_help_chat, health, help_chat

api_router = APIRouter()
api_router.include_router(health.router, prefix="/v1", tags=["health"])
api_router.include_router(help_chat.router, prefix="/help-chat", tags=["help-chat"])
api_router.include_router(admin_help_chat.router, prefix="/admin", tags=["admin"])
