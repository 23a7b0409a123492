"""
Database connection and session management.
"""

from collections.abc import AsyncGenerator
from contextlib import asynccontextmanager

from sqlalchemy import text
from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, create_async_engine
from sqlalchemy.orm import sessionmaker
from sqlmodel import SQLModel

from app.core.config import get_settings

settings = get_settings()

engine = create_async_engine(
    settings.database_url,
    echo=settings.debug,
    future=True,
)

async_session_factory = sessionmaker(
    engine,
    class_=AsyncSession,
    expire_on_commit=False,
)

# PostGIS column backing the nearby queries. Mirrors the Alembic migration.
POSTGIS_DDL = [
    "CREATE EXTENSION IF NOT EXISTS postgis",
    "ALTER TABLE check_in_requests ADD COLUMN IF NOT EXISTS location geography(Point, 4326) "
    "GENERATED ALWAYS AS (CASE WHEN latitude IS NULL OR longitude IS NULL THEN NULL "
    "ELSE ST_SetSRID(ST_MakePoint(longitude, latitude), 4326)::geography END) STORED",
    "CREATE INDEX IF NOT EXISTS ix_check_in_requests_location "
    "ON check_in_requests USING GIST (location)",
    "ALTER TABLE fulfiller_locations ADD COLUMN IF NOT EXISTS location geography(Point, 4326) "
    "GENERATED ALWAYS AS (ST_SetSRID(ST_MakePoint(longitude, latitude), 4326)::geography) STORED",
    "CREATE INDEX IF NOT EXISTS ix_fulfiller_locations_location "
    "ON fulfiller_locations USING GIST (location)",
]


async def init_db(bind: AsyncEngine | None = None):
    """Create all tables (development and tests; production runs the migrations)."""
    import app.models  # noqa: F401  (populate metadata)

    bind = bind or engine
    async with bind.begin() as conn:
        await conn.run_sync(SQLModel.metadata.create_all)
        if conn.dialect.name == "postgresql":
            for statement in POSTGIS_DDL:
                await conn.execute(text(statement))


async def get_session() -> AsyncGenerator[AsyncSession, None]:
    """FastAPI dependency for database sessions."""
    async with async_session_factory() as session:
        try:
            yield session
            await session.commit()
        except Exception:
            await session.rollback()
            raise


@asynccontextmanager
async def get_session_context():
    """Context manager for use outside of FastAPI request lifecycle."""
    async with async_session_factory() as session:
        try:
            yield session
            await session.commit()
        except Exception:
            await session.rollback()
            raise
