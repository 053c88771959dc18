import logging

from fastapi import APIRouter, Depends
from sqlalchemy import text
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from vidsum import __version__
from vidsum.config import Settings, get_settings
from vidsum.database import get_db

logger = logging.getLogger(__name__)

router = APIRouter(tags=["core"])

@router.get("/health")
async def health_check(db: AsyncSession = Depends(get_db)):
    try:
        await db.execute(text("SELECT 1"))
        db_status = "ok"
    except SQLAlchemyError as e:
        logger.warning("[HEALTH] database check failed: %s", e)
        db_status = "error"

    return {"status": "ok", "db": db_status}

@router.get("/version")
async def version(settings: Settings = Depends(get_settings)):
    return {
        "version": __version__,
        "environment": settings.environment,
        "app_name": "VidSum Backend"
    }
