from sqlalchemy.ext.asyncio import async_sessionmaker, create_async_engine
from sqlalchemy.orm import declarative_base
import os
from dotenv import load_dotenv

# Load environment variables
load_dotenv()

# Get database URL from environment variables
DATABASE_URL = os.getenv("DATABASE_URL", "sqlite+aiosqlite:///./remindbot.db")
DATABASE_ECHO = os.getenv("DATABASE_ECHO", "false").lower() in ("1", "true", "yes")

# Convert to async database URL
ASYNC_DATABASE_URL = DATABASE_URL.replace("postgresql://", "postgresql+asyncpg://")

# Create engine
engine = create_async_engine(ASYNC_DATABASE_URL, echo=DATABASE_ECHO)

# Create async session maker
async_session = async_sessionmaker(
    engine, expire_on_commit=False, autoflush=False
)

# Create base class for models
Base = declarative_base()

async def init_db(db_engine=None):
    """Initialize database."""
    # Register tables on Base.metadata
    from remindbot.models import kv_entry  # noqa: F401

    async with (db_engine or engine).begin() as conn:
        # Create tables
        await conn.run_sync(Base.metadata.create_all)
