from fastapi import APIRouter
from sqlalchemy import text

from app.core.config import get_settings
from app.core.db import get_session_factory

router = APIRouter()


@router.get("/health")
async def health() -> dict[str, str]:
    return {"status": "ok"}


@router.get("/health/db")
async def db_health() -> dict[str, str]:
    if get_settings().help_chat_store == "memory":
        return {"db": "memory"}

    async with get_session_factory()() as session:
        await session.execute(text("SELECT 1"))
    return {"db": "ok"}
