"""Tests for the async database manager."""

import pytest
from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.pool import StaticPool

from clean_cloud.common.config import CleanSettings
from clean_cloud.common.database import DatabaseManager, engine_options
from clean_cloud.orgs.models import OrganizationModel, OrgMemberModel


@pytest.fixture
async def db():
    manager = DatabaseManager(CleanSettings(db_url="sqlite+aiosqlite://"))
    await manager.init()
    await manager.create_all()
    yield manager
    await manager.close()


class TestEngineOptions:
    @pytest.mark.parametrize("url", ["sqlite+aiosqlite://", "sqlite+aiosqlite:///:memory:"])
    def test_memory_shares_connection(self, url):
        assert engine_options(url) == {"poolclass": StaticPool}

    def test_sqlite_file(self):
        assert engine_options("sqlite+aiosqlite:///./clean.db") == {}

    def test_server_database_pings(self):
        assert engine_options("postgresql+asyncpg://db/clean") == {"pool_pre_ping": True}


class TestDatabaseManager:
    async def test_session_before_init(self):
        manager = DatabaseManager(CleanSettings(db_url="sqlite+aiosqlite://"))
        with pytest.raises(RuntimeError, match="not initialized"):
            async with manager.get_session():
                pass

    async def test_ping(self, db):
        assert await db.ping() is True
        await db.close()
        assert await db.ping() is False

    async def test_commits_on_exit(self, db):
        async with db.get_session() as session:
            session.add(OrganizationModel(name="Acme", slug="acme"))
        async with db.get_session() as session:
            assert await _org_id(session, "acme") is not None

    async def test_rolls_back_on_error(self, db):
        with pytest.raises(ValueError):
            async with db.get_session() as session:
                session.add(OrganizationModel(name="Acme", slug="acme"))
                await session.flush()
                raise ValueError("abort")
        async with db.get_session() as session:
            assert await _org_id(session, "acme") is None

    async def test_foreign_keys_enforced(self, db):
        with pytest.raises(IntegrityError):
            async with db.get_session() as session:
                session.add(OrgMemberModel(org_id="missing", user_id="user-1", role="OWNER"))

    async def test_close_is_repeatable(self, db):
        await db.close()
        await db.close()
        assert db.engine is None


async def _org_id(session, slug):
    result = await session.execute(select(OrganizationModel.id).where(OrganizationModel.slug == slug))
    return result.scalar_one_or_none()
