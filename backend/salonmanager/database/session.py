"""
Engine and per-request sessions for the salon database.

DATABASE_URL selects the backend. Heroku-style postgres:// URLs are
accepted and rewritten for SQLAlchemy; sqlite URLs are meant for local
runs only.
"""

import os
import logging
from typing import Generator

from sqlalchemy import create_engine
from sqlalchemy.engine import Engine
from sqlalchemy.orm import sessionmaker, Session
from sqlalchemy.pool import QueuePool
from fastapi import HTTPException, status

logger = logging.getLogger(__name__)

_engine = None
_SessionLocal = None


def database_url_from_env() -> str:
    url = os.getenv("DATABASE_URL")
    if not url:
        raise ValueError("DATABASE_URL environment variable is not set")
    scheme, sep, rest = url.partition("://")
    if scheme == "postgres":
        return f"postgresql{sep}{rest}"
    return url


def _build_engine(url: str) -> Engine:
    if url.startswith("sqlite"):
        # Request handlers run in a threadpool
        return create_engine(url, connect_args={"check_same_thread": False})
    return create_engine(
        url,
        poolclass=QueuePool,
        pool_size=5,
        max_overflow=10,
        pool_pre_ping=True,
        pool_recycle=1800,
    )


def get_engine() -> Engine:
    """Process-wide engine, built on first use."""
    global _engine
    if _engine is not None:
        return _engine
    try:
        url = database_url_from_env()
    except ValueError as e:
        logger.error("Database engine unavailable", extra={"error": str(e)})
        raise
    _engine = _build_engine(url)
    logger.info("Database engine created", extra={"dialect": _engine.dialect.name})
    return _engine


def get_session_factory() -> sessionmaker:
    global _SessionLocal
    if _SessionLocal is None:
        _SessionLocal = sessionmaker(bind=get_engine(), autoflush=False)
    return _SessionLocal


def get_db_session() -> Generator[Session, None, None]:
    """
    Route dependency yielding one session per request.

    Without DATABASE_URL the request fails with 503.
    """
    try:
        factory = get_session_factory()
    except ValueError:
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="Database not configured",
        )

    with factory() as session:
        yield session
