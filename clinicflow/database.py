# clinicflow/database.py
import logging
from typing import AsyncGenerator

from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.ext.asyncio import create_async_engine, AsyncSession, async_sessionmaker
from sqlalchemy.orm import declarative_base

from .config import DATABASE_URL
from .errors import StoreError

logger = logging.getLogger("clinicflow.database")

engine = create_async_engine(
    DATABASE_URL,
    echo=False,
)

AsyncSessionLocal = async_sessionmaker(
    bind=engine,
    class_=AsyncSession,
    expire_on_commit=False
)

Base = declarative_base()


async def get_async_session() -> AsyncGenerator[AsyncSession, None]:
    """
    Dependency to get an AsyncSession.
    Ensures the session is always closed.
    """
    async with AsyncSessionLocal() as session:
        try:
            yield session
        except Exception:
            await session.rollback()
            raise
        finally:
            await session.close()


async def commit(session: AsyncSession, action: str) -> None:
    """
    Commit the unit of work. Uniqueness violations propagate as IntegrityError so
    callers can turn them into conflicts; every other storage fault becomes StoreError.
    The session is rolled back in both cases.
    """
    try:
        await session.commit()
    except IntegrityError:
        await session.rollback()
        raise
    except SQLAlchemyError as e:
        await session.rollback()
        logger.error("Storage failure during %s: %s", action, e)
        raise StoreError(f"Storage failure during {action}", {"action": action}) from e


async def init_db(bind=None):
    """Create all tables (including the partial unique slot index)."""
    # models must be imported so their tables are registered on Base.metadata
    from . import models  # noqa: F401

    async with (bind or engine).begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
