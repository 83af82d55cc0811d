"""
Health check route (no authentication).
"""

import logging

from fastapi import APIRouter, Depends
from sqlalchemy import text
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from salonmanager.database.session import get_db_session

logger = logging.getLogger(__name__)

router = APIRouter(tags=["health"])


@router.get("/health")
async def health_check():
    return {"status": "ok"}


@router.get("/health/ready")
async def readiness_check(db_session: Session = Depends(get_db_session)):
    """Readiness: the database answers a trivial query."""
    try:
        db_session.execute(text("SELECT 1"))
    except SQLAlchemyError as e:
        logger.error("Readiness check failed", extra={"error": str(e)})
        return {"status": "degraded", "database": "unavailable"}
    return {"status": "ok", "database": "ok"}
