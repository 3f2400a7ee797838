import logging
from collections.abc import AsyncGenerator

from fastapi import Request
from sqlalchemy import event
from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.orm import declarative_base

logger = logging.getLogger(__name__)

Base = declarative_base()


def _enable_sqlite_foreign_keys(dbapi_connection, connection_record):
    cursor = dbapi_connection.cursor()
    cursor.execute("PRAGMA foreign_keys=ON")
    cursor.close()


class Database:
    """
    Explicit storage handle.

    Owns the async engine and the session factory. It is opened once at
    application startup, handed to whatever needs sessions, and disposed
    at shutdown.
    """

    def __init__(self, url: str, environment: str = "development", echo: bool = False):
        self.url = url
        self.environment = environment
        self.echo = echo
        self._engine: AsyncEngine | None = None
        self._session_factory: async_sessionmaker[AsyncSession] | None = None

    @property
    def is_sqlite(self) -> bool:
        return self.url.startswith("sqlite")

    @property
    def engine(self) -> AsyncEngine:
        if self._engine is None:
            raise RuntimeError("Database is not connected")
        return self._engine

    @property
    def session_factory(self) -> async_sessionmaker[AsyncSession]:
        if self._session_factory is None:
            raise RuntimeError("Database is not connected")
        return self._session_factory

    def connect(self) -> None:
        if self._engine is not None:
            return

        # Environment-based configurations
        if self.is_sqlite:
            engine = create_async_engine(self.url, echo=self.echo, connect_args={"timeout": 30})
            event.listen(engine.sync_engine, "connect", _enable_sqlite_foreign_keys)
        elif self.environment == "production":
            engine = create_async_engine(
                self.url,
                pool_size=20,
                max_overflow=50,
                pool_timeout=60,
                pool_recycle=1800,
                pool_pre_ping=True,
            )
        else:
            engine = create_async_engine(
                self.url,
                echo=self.echo,
                pool_size=10,
                max_overflow=20,
                pool_timeout=30,
                pool_pre_ping=True,
            )

        self._engine = engine
        self._session_factory = async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)
        logger.info(f"Database engine created ({engine.dialect.name}, {self.environment})")

    async def create_all(self) -> None:
        async with self.engine.begin() as conn:
            await conn.run_sync(Base.metadata.create_all)

    async def drop_all(self) -> None:
        async with self.engine.begin() as conn:
            await conn.run_sync(Base.metadata.drop_all)

    async def dispose(self) -> None:
        if self._engine is None:
            return
        await self._engine.dispose()
        self._engine = None
        self._session_factory = None
        logger.info("Database engine disposed.")


async def get_db(request: Request) -> AsyncGenerator[AsyncSession, None]:
    database: Database = request.app.state.db
    async with database.session_factory() as db:
        try:
            yield db
        except Exception as e:
            logger.error(f"Database session error: {e}")
            raise
