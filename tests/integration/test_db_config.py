"""Integration tests for engine and session factory construction."""

import pytest
from sqlalchemy import text
from sqlalchemy.pool import NullPool

from minrisk.config.settings import Settings, get_settings
from minrisk.db.config import close_db, create_engine, create_session_factory, get_engine, init_db
from minrisk.db.models import Base
from minrisk.db.repositories import create_sql_store

pytestmark = pytest.mark.integration


@pytest.mark.asyncio
async def test_test_environment_uses_null_pool(tmp_path):
    settings = Settings(
        ENVIRONMENT="test",
        DATABASE_URL=f"sqlite+aiosqlite:///{tmp_path / 'cfg.db'}",
        _env_file=None,
    )
    engine = create_engine(settings)
    try:
        assert isinstance(engine.pool, NullPool)
        async with engine.begin() as conn:
            assert (await conn.execute(text("SELECT 1"))).scalar_one() == 1
    finally:
        await engine.dispose()


@pytest.mark.asyncio
async def test_session_factory_backs_store(tmp_path, org_id):
    settings = Settings(
        ENVIRONMENT="development",
        DATABASE_URL=f"sqlite+aiosqlite:///{tmp_path / 'store.db'}",
        _env_file=None,
    )
    engine = create_engine(settings)
    try:
        async with engine.begin() as conn:
            await conn.run_sync(Base.metadata.create_all)
        factory = create_session_factory(engine)

        assert factory.kw["expire_on_commit"] is False
        store = create_sql_store(factory)
        assert await store.list_risk_ids(org_id) == []
    finally:
        await engine.dispose()


@pytest.mark.asyncio
async def test_init_and_close_process_engine(tmp_path, monkeypatch):
    monkeypatch.setenv("DATABASE_URL", f"sqlite+aiosqlite:///{tmp_path / 'app.db'}")
    monkeypatch.setenv("ENVIRONMENT", "test")
    get_settings.cache_clear()
    get_engine.cache_clear()
    try:
        await init_db()
        assert str(get_engine().url).endswith("app.db")
        await close_db()
    finally:
        get_settings.cache_clear()
        get_engine.cache_clear()
