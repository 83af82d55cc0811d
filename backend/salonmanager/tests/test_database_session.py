"""
Tests for engine construction and the request session dependency.
"""

import pytest
from fastapi import HTTPException
from sqlalchemy import text

from salonmanager.database import session as db_session_module
from salonmanager.database.session import database_url_from_env, get_db_session


@pytest.fixture(autouse=True)
def fresh_engine(monkeypatch):
    monkeypatch.setattr(db_session_module, "_engine", None)
    monkeypatch.setattr(db_session_module, "_SessionLocal", None)


class TestDatabaseUrl:

    def test_postgres_scheme_is_rewritten(self, monkeypatch):
        monkeypatch.setenv("DATABASE_URL", "postgres://u:p@db:5432/salons")

        assert database_url_from_env() == "postgresql://u:p@db:5432/salons"

    def test_postgresql_scheme_is_untouched(self, monkeypatch):
        monkeypatch.setenv("DATABASE_URL", "postgresql+psycopg2://u:p@db/salons")

        assert database_url_from_env() == "postgresql+psycopg2://u:p@db/salons"

    def test_missing_url(self, monkeypatch):
        monkeypatch.delenv("DATABASE_URL", raising=False)

        with pytest.raises(ValueError):
            database_url_from_env()


class TestGetDbSession:

    def test_unconfigured_database_is_503(self, monkeypatch):
        monkeypatch.delenv("DATABASE_URL", raising=False)

        with pytest.raises(HTTPException) as exc_info:
            next(get_db_session())

        assert exc_info.value.status_code == 503

    def test_yields_usable_session_and_reuses_engine(self, monkeypatch):
        monkeypatch.setenv("DATABASE_URL", "sqlite://")

        sessions = get_db_session()
        session = next(sessions)
        assert session.execute(text("SELECT 1")).scalar() == 1
        sessions.close()

        assert db_session_module.get_engine() is session.get_bind()
