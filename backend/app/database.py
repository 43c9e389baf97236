"""Database setup with SQLAlchemy async and PostGIS support."""

from sqlalchemy import text
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.orm import DeclarativeBase

from app.config import get_settings

settings = get_settings()

engine = create_async_engine(
    settings.database_url,
    echo=settings.debug,
    pool_pre_ping=True,
    pool_size=5,
    max_overflow=10,
)

async_session_maker = async_sessionmaker(
    engine,
    class_=AsyncSession,
    expire_on_commit=False,
)


class Base(DeclarativeBase):
    """Base class for all SQLAlchemy models."""

    pass


# Tables created by the lifecycle schema revision
REQUIRED_TABLES = (
    "departments",
    "categories",
    "users",
    "issues",
    "issue_status_history",
    "issue_escalations",
    "notification_log",
)


async def check_db_ready() -> None:
    """
    Verify the database can serve the lifecycle backend.

    Raises:
        RuntimeError: PostGIS is missing, the schema has not been migrated,
            or no active category has been seeded
    """
    async with engine.connect() as conn:
        has_postgis = await conn.scalar(
            text("SELECT EXISTS (SELECT 1 FROM pg_extension WHERE extname = 'postgis')")
        )
        if not has_postgis:
            raise RuntimeError("PostGIS extension is not installed.")

        result = await conn.execute(
            text(
                "SELECT name FROM unnest(CAST(:names AS text[])) AS name "
                "WHERE to_regclass('public.' || name) IS NULL"
            ),
            {"names": list(REQUIRED_TABLES)},
        )
        missing = result.scalars().all()
        if missing:
            raise RuntimeError(
                f"Database schema is missing tables: {', '.join(missing)} "
                "(run `alembic upgrade head`)."
            )

        # Issues cannot be reported until categories exist
        active_categories = await conn.scalar(
            text("SELECT count(*) FROM categories WHERE is_active")
        )
        if not active_categories:
            raise RuntimeError(
                "No active categories (run scripts/seed_reference_data.py)."
            )
