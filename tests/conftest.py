"""Shared fixtures: rules, settings and a SQLite database."""
import pytest
import pytest_asyncio
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from pdp_coach.config.protocol_rules_loader import default_protocol_rules
from pdp_coach.config.settings import Settings
from pdp_coach.db.database import Base, create_engine


@pytest.fixture
def rules():
    """Built-in protocol rules, independent of the YAML on disk."""
    return default_protocol_rules()


@pytest.fixture
def fast_settings():
    """Settings with a short tick interval so timer tests run quickly."""
    return Settings(
        tick_interval_seconds=0.01,
        history_lookup_timeout_seconds=0.5,
        database_url="sqlite+aiosqlite:///:memory:",
    )


@pytest_asyncio.fixture
async def session_maker(tmp_path):
    """File-backed SQLite database with every table created."""
    # Import models so they register on Base.metadata
    from pdp_coach.models import coach_notification, scheduled_task, workout_log  # noqa: F401

    engine = create_engine(f"sqlite+aiosqlite:///{tmp_path / 'pdp.db'}")
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    yield async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)

    await engine.dispose()
