"""
Async database engine and session factory.

PostgreSQL (asyncpg) in production; SQLite (aiosqlite) for local runs and tests.
"""
from sqlalchemy.ext.asyncio import create_async_engine, AsyncSession, async_sessionmaker
from sqlalchemy.orm import declarative_base
from .config import get_settings

settings = get_settings()


def _engine_options(database_url: str) -> dict:
    if database_url.startswith("postgresql"):
        return {
            "pool_pre_ping": True,  # Validate connections before use
            "pool_recycle": 3600,   # Recycle connections every hour
            "connect_args": {
                "command_timeout": 60,
                "server_settings": {"jit": "off"},
            },
        }
    return {}


engine = create_async_engine(settings.database_url, echo=False, **_engine_options(settings.database_url))

# Pipeline stages keep using loaded rows after their commit
AsyncSessionLocal = async_sessionmaker(
    engine, class_=AsyncSession, expire_on_commit=False
)

Base = declarative_base()


async def get_db():
    """FastAPI dependency: one session per request."""
    async with AsyncSessionLocal() as session:
        yield session
