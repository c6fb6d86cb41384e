"""Async engine, session factory and the isolated unit-of-work transaction."""

from contextlib import asynccontextmanager
from typing import AsyncGenerator, AsyncIterator

from sqlalchemy.exc import ResourceClosedError
from sqlalchemy.ext.asyncio import (
    AsyncConnection,
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)

from storefront.core.config import settings

engine = create_async_engine(
    settings.DATABASE_URL,
    pool_pre_ping=True,
    pool_size=settings.DB_POOL_SIZE,
    max_overflow=settings.DB_MAX_OVERFLOW,
    pool_timeout=settings.DB_POOL_TIMEOUT,
    pool_recycle=settings.DB_POOL_RECYCLE,
    isolation_level=settings.DB_ISOLATION_LEVEL,
    echo=settings.DEBUG,
)

SessionLocal = async_sessionmaker(bind=engine, expire_on_commit=False)

UNIT_OF_WORK_ISOLATION = "REPEATABLE READ"


async def get_session() -> AsyncIterator[AsyncSession]:
    """FastAPI dependency that yields an async database session."""

    async with SessionLocal() as session:
        yield session


def _unit_of_work_limits() -> dict[str, int]:
    return {
        "innodb_lock_wait_timeout": settings.INNODB_LOCK_WAIT_TIMEOUT_SEC,
        "max_execution_time": settings.SELECT_MAX_EXECUTION_TIME_MS,
    }


async def _session_variables(conn: AsyncConnection, names) -> dict[str, int]:
    values = {}
    for name in names:
        result = await conn.exec_driver_sql(f"SELECT @@SESSION.{name}")
        values[name] = int(result.scalar_one())
    return values


async def _set_session_variables(conn: AsyncConnection, values: dict[str, int]) -> None:
    for name, value in values.items():
        await conn.exec_driver_sql(f"SET SESSION {name} = {int(value)}")


@asynccontextmanager
async def repeatable_read_transaction(session: AsyncSession) -> AsyncGenerator[AsyncSession, None]:
    """Run the enclosed block as one REPEATABLE READ transaction with bounded lock waits.

    The isolation level is set on the connection for this transaction only and
    reset by the pool on release. Lock-wait and statement timeouts are session
    variables, so their previous values are put back before the connection
    goes back to the pool.
    """

    if session.in_transaction():
        await session.rollback()
    async with session.begin():
        conn = await session.connection(
            execution_options={"isolation_level": UNIT_OF_WORK_ISOLATION}
        )
        limits = _unit_of_work_limits()
        previous = await _session_variables(conn, limits)
        await _set_session_variables(conn, limits)
        try:
            yield session
        finally:
            try:
                await _set_session_variables(conn, previous)
            except ResourceClosedError:
                # Connection invalidated by the failure; the overrides died with it.
                pass
