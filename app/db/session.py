from typing import AsyncGenerator

from loguru import logger
from sqlalchemy import event
from sqlalchemy.ext.asyncio import (
    AsyncEngine,
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)
from starlette.requests import HTTPConnection

from app.db.models.database import Base


def _enable_sqlite_savepoints(engine: AsyncEngine):
    # pysqlite/aiosqlite start transactions lazily, which breaks SAVEPOINT.
    # Let SQLAlchemy emit BEGIN itself.
    @event.listens_for(engine.sync_engine, "connect")
    def _on_connect(dbapi_connection, connection_record):
        dbapi_connection.isolation_level = None

    @event.listens_for(engine.sync_engine, "begin")
    def _on_begin(conn):
        conn.exec_driver_sql("BEGIN")


class Database:
    """Engine + session factory, owned by the process entry point (app lifespan)."""

    def __init__(self, url: str, echo: bool = False):
        self.url = url
        if url.startswith("sqlite"):
            self.engine = create_async_engine(url, echo=echo)
            _enable_sqlite_savepoints(self.engine)
        else:
            self.engine = create_async_engine(
                url,
                echo=echo,
                pool_pre_ping=True,  # check the connection is still alive
            )
        self.session_factory = async_sessionmaker(
            bind=self.engine,
            class_=AsyncSession,
            expire_on_commit=False,  # keep loaded attributes usable after commit
        )

    def session(self) -> AsyncSession:
        return self.session_factory()

    async def create_all(self):
        async with self.engine.begin() as conn:
            await conn.run_sync(Base.metadata.create_all)
        logger.info("🗄 Database tables ensured")

    async def dispose(self):
        await self.engine.dispose()
        logger.info("🗄 Database engine disposed")


def get_database(conn: HTTPConnection) -> Database:
    return conn.app.state.db


async def get_session(conn: HTTPConnection) -> AsyncGenerator[AsyncSession, None]:
    async with get_database(conn).session() as session:
        try:
            yield session
        finally:
            await session.close()
