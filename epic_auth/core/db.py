"""
This module contains the database of the verifications and the users: the
async engine, the session factory, the startup housekeeping and the FastAPI
dependency that hands a session to the route handlers.
"""
import contextlib
from typing import AsyncIterator, Any
from fastapi import HTTPException
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine

from epic_auth.core.config import settings, logger
from epic_auth.db_objects._base import Base
from epic_auth.db_objects.verification import delete_expired_verifications


class DatabaseSessionManager:
    """
    Owns the engine of the verification store.

    `init` creates the `users` and `verifications` tables and drops the
    verifications that expired while the service was down. Sessions are
    opened with `expire_on_commit=False`, so a verification returned by the
    store stays readable after the commit that consumed it.
    """

    def __init__(self, host: str, engine_kwargs: dict[str, Any] = None):
        self.engine = create_async_engine(host, **(engine_kwargs or {}))
        self._sessionmaker = async_sessionmaker(bind=self.engine, expire_on_commit=False)

    def _check_initialized(self) -> None:
        if self._sessionmaker is None:
            logger.error("DatabaseSessionManager is closed")
            raise HTTPException(status_code=500, detail="Database is not available")

    async def init(self, purge_expired: bool = True) -> int:
        """
        Create the tables and purge the expired verifications.

        :param bool purge_expired: Whether to delete the expired verifications.
        :return int: The number of purged verifications.
        """
        # pylint: disable=C0415, W0611
        from epic_auth.db_objects import db_models  # noqa: F401  (registers the tables)
        self._check_initialized()
        async with self.engine.begin() as conn:
            await conn.run_sync(Base.metadata.create_all)
        if not purge_expired:
            return 0
        async with self.session() as db:
            purged = await delete_expired_verifications(db)
        logger.info(f"{purged} expired verification(s) purged.")
        return purged

    async def close(self):
        """Dispose of the engine, the manager cannot open sessions afterwards."""
        self._check_initialized()
        await self.engine.dispose()
        self.engine = None
        self._sessionmaker = None

    @contextlib.asynccontextmanager
    async def session(self) -> AsyncIterator[AsyncSession]:
        """
        Open a session, rolled back if the body raises.

        :raises HTTPException: 500 if the manager was closed.
        """
        self._check_initialized()
        async with self._sessionmaker() as session:
            try:
                yield session
            except Exception:
                await session.rollback()
                raise


sessionmanager = DatabaseSessionManager(settings.SQLALCHEMY_DATABASE_URI, {"echo": False})


async def get_async_db():
    """
    Get an asynchronous database session.

    Yields
    ------
    AsyncSession
        The session of the current request.
    """
    async with sessionmanager.session() as session:
        yield session
