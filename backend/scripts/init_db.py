"""
Database initialization script.

Creates all tables defined in the SQLAlchemy models.
Run this script to initialize a fresh database or add new tables.

Usage:
    python -m scripts.init_db
    python -m scripts.init_db --demo-owner user_123

Environment variables:
    DATABASE_URL: Database connection string
"""

import os
import sys
import logging
from pathlib import Path

# Add backend directory to path
backend_dir = Path(__file__).parent.parent
sys.path.insert(0, str(backend_dir))

from sqlalchemy import create_engine, inspect, text
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import sessionmaker

from salonmanager.database.session import database_url_from_env
from salonmanager.db_base import Base

# Import all models to register them with Base.metadata
from salonmanager.models import (  # noqa: F401
    BillingEvent,
    ProcessedBillingEvent,
    Subscription,
    Tenant,
    TenantMember,
)

logging.basicConfig(level=logging.INFO)
logger = logging.getLogger(__name__)


def init_database(database_url: str):
    """
    Initialize database tables.

    Creates all tables defined in SQLAlchemy models if they don't exist.
    Existing tables are not modified.

    Args:
        database_url: Database connection string

    Returns:
        The engine used
    """
    logger.info("Connecting to database...")

    engine = create_engine(
        database_url,
        pool_pre_ping=True,
        echo=os.getenv("SQL_ECHO", "false").lower() == "true"
    )

    try:
        with engine.connect() as conn:
            conn.execute(text("SELECT 1")).fetchone()
        logger.info("Database connection successful")
    except SQLAlchemyError as e:
        logger.error(f"Failed to connect to database: {e}")
        raise

    table_names = sorted(Base.metadata.tables.keys())
    logger.info(f"Tables to create/verify: {', '.join(table_names)}")

    try:
        Base.metadata.create_all(bind=engine)
        logger.info("All tables created/verified successfully")
    except SQLAlchemyError as e:
        logger.error(f"Failed to create tables: {e}")
        raise

    existing = set(inspect(engine).get_table_names())
    for table_name in table_names:
        status = "EXISTS" if table_name in existing else "MISSING"
        logger.info(f"  {table_name}: {status}")

    return engine


def seed_demo_tenant(engine, owner_identity_id: str, slug: str = "luna-hair") -> None:
    """Create a demo tenant owned by the given identity, if the slug is free."""
    from salonmanager.auth.identity import Identity
    from salonmanager.services.tenant_service import SlugTakenError, TenantService

    SessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)
    session = SessionLocal()
    try:
        tenant = TenantService(session).create_tenant(
            name="Luna Hair", slug=slug, owner=Identity(id=owner_identity_id)
        )
        session.commit()
        logger.info(f"Created demo tenant: {tenant.slug} ({tenant.id})")
    except SlugTakenError:
        session.rollback()
        logger.info(f"Demo tenant already exists: {slug}")
    finally:
        session.close()


def main():
    """Main entry point."""
    import argparse

    parser = argparse.ArgumentParser(description="Initialize database tables")
    parser.add_argument(
        "--demo-owner",
        type=str,
        help="Clerk user id to own a demo 'luna-hair' tenant"
    )
    parser.add_argument(
        "--database-url",
        type=str,
        help="Database URL (overrides DATABASE_URL env var)"
    )

    args = parser.parse_args()

    database_url = args.database_url or database_url_from_env()

    logger.info("Starting database initialization...")
    engine = init_database(database_url)

    if args.demo_owner:
        logger.info("Seeding demo tenant...")
        seed_demo_tenant(engine, args.demo_owner)

    logger.info("Database initialization complete!")


if __name__ == "__main__":
    main()
