from typing import Any, Dict

from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.orm import declarative_base
from sqlalchemy.pool import StaticPool

from app.core.config import settings

# Postgres schemas used by the models
SCHEMAS = ("core", "auth")


def engine_options(database_url: str) -> Dict[str, Any]:
    """create_async_engine kwargs for a database URL.

    sqlite has no schemas, so core.* and auth.* are flattened into the main database;
    an in-memory sqlite database must also share one connection to survive between sessions.
    """
    if not database_url.startswith("sqlite"):
        # pool_pre_ping: check connection is alive before use.
        # pool_recycle: discard connections after this many seconds to avoid stale connections.
        return {"pool_pre_ping": True, "pool_recycle": 300}
    options: Dict[str, Any] = {
        "execution_options": {"schema_translate_map": {schema: None for schema in SCHEMAS}},
        "connect_args": {"check_same_thread": False},
    }
    if ":memory:" in database_url:
        options["poolclass"] = StaticPool
    return options


engine = create_async_engine(
    settings.database_url,
    echo=False,
    future=True,
    **engine_options(settings.database_url),
)

AsyncSessionLocal = async_sessionmaker(
    bind=engine,
    class_=AsyncSession,
    expire_on_commit=False,
)

Base = declarative_base()


async def get_db() -> AsyncSession:
    async with AsyncSessionLocal() as session:
        yield session
