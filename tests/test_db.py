"""Tests for database URL handling and engine setup."""
import pytest

from storefront import db


def test_postgres_urls_use_asyncpg_and_drop_ssl_params():
    url = "postgresql://shop:pw@db.example.com:5432/shop?sslmode=require&channel_binding=require"
    assert db.normalize_database_url(url) == "postgresql+asyncpg://shop:pw@db.example.com:5432/shop"


def test_other_query_params_survive():
    url = "postgres://shop:pw@localhost/shop?sslmode=disable&application_name=storefront"
    assert db.normalize_database_url(url) == "postgresql+asyncpg://shop:pw@localhost/shop?application_name=storefront"


def test_sqlite_urls_use_aiosqlite():
    assert db.normalize_database_url("sqlite:///./shop.db") == "sqlite+aiosqlite:///./shop.db"
    assert db.normalize_database_url("sqlite+aiosqlite:////tmp/x.db") == "sqlite+aiosqlite:////tmp/x.db"


def test_missing_database_url(monkeypatch):
    monkeypatch.delenv("DATABASE_URL", raising=False)
    with pytest.raises(RuntimeError):
        db.get_database_url()


def test_database_url_from_environment(monkeypatch):
    monkeypatch.setenv("DATABASE_URL", "postgresql://u:p@h/d")
    assert db.get_database_url() == "postgresql+asyncpg://u:p@h/d"


@pytest.mark.asyncio
async def test_sqlite_foreign_keys_enabled(engine):
    from sqlalchemy import text

    async with engine.connect() as conn:
        result = await conn.execute(text("PRAGMA foreign_keys"))
        assert result.scalar() == 1


@pytest.mark.asyncio
async def test_sqlite_savepoint_rollback_keeps_outer_work(engine):
    from sqlalchemy import text

    async with engine.connect() as conn:
        await conn.execute(text("CREATE TABLE t (x INTEGER)"))
        await conn.execute(text("INSERT INTO t VALUES (1)"))
        nested = await conn.begin_nested()
        await conn.execute(text("INSERT INTO t VALUES (2)"))
        await nested.rollback()
        result = await conn.execute(text("SELECT x FROM t"))
        assert [row[0] for row in result] == [1]


def test_check_db_script_does_not_run_on_import(monkeypatch):
    import importlib

    monkeypatch.delenv("DATABASE_URL", raising=False)
    module = importlib.import_module("storefront.scripts.check_db")
    assert callable(module.main)
