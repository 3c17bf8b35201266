import logging
from typing import TypedDict

import redis
from sqlalchemy import event
from sqlalchemy.ext.asyncio import (
    AsyncEngine,
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)

from app.core.utils.config import Settings
from app.types.sqlalchemy import SessionLocalType


class LifespanState(TypedDict):
    """
    The LifespanState is yielded by the application lifespan. Starlette copies it in each request state.
    Use dependencies to access it.
    """

    # Database engine
    engine: AsyncEngine
    # Database session creator
    SessionLocal: SessionLocalType
    # We may not have a Redis Client if it was not configured
    redis_client: redis.Redis | None


class RuntimeLifespanState(LifespanState):
    """
    Requests contains an extended version of the LifespanState for each request.
    """

    request_id: str


def get_database_url(settings: Settings) -> str:
    if settings.SQLITE_DB:
        return f"sqlite+aiosqlite:///./{settings.SQLITE_DB}"
    return f"postgresql+asyncpg://{settings.POSTGRES_USER}:{settings.POSTGRES_PASSWORD}@{settings.POSTGRES_HOST}/{settings.POSTGRES_DB}"


# Execution option: the transaction of the connection takes the SQLite write lock as soon as it begins
SQLITE_BEGIN_IMMEDIATE = "sqlite_begin_immediate"


def configure_sqlite_transactions(engine: AsyncEngine) -> None:
    """
    pysqlite only emits `BEGIN` before the first write, so rows read before it are not part of the transaction.
    We disable this behaviour and emit the `BEGIN` ourselves, as an immediate transaction for connections
    procured with the `SQLITE_BEGIN_IMMEDIATE` execution option.

    See https://docs.sqlalchemy.org/en/20/dialects/sqlite.html#serializable-isolation-savepoints-transactional-ddl
    """

    @event.listens_for(engine.sync_engine, "connect")
    def do_connect(dbapi_connection, connection_record):
        dbapi_connection.isolation_level = None

    @event.listens_for(engine.sync_engine, "begin")
    def do_begin(conn):
        if conn.get_execution_options().get(SQLITE_BEGIN_IMMEDIATE, False):
            conn.exec_driver_sql("BEGIN IMMEDIATE")
        else:
            conn.exec_driver_sql("BEGIN")


def init_engine(settings: Settings) -> AsyncEngine:
    """
    Return the (asynchronous) database engine based on the settings
    """
    if settings.SQLITE_DB:
        engine = create_async_engine(
            get_database_url(settings),
            echo=settings.DATABASE_DEBUG,
            # Seconds to wait for the write lock of an other transaction
            connect_args={"timeout": settings.RAFFLE_LOCK_TIMEOUT},
        )
        configure_sqlite_transactions(engine)
        return engine

    return create_async_engine(
        get_database_url(settings),
        echo=settings.DATABASE_DEBUG,
    )


def init_SessionLocal(engine: AsyncEngine) -> SessionLocalType:
    return async_sessionmaker(
        engine,
        class_=AsyncSession,
        expire_on_commit=False,
    )


def init_redis_client(
    settings: Settings,
    tombola_error_logger: logging.Logger,
) -> redis.Redis | None:
    """
    Initialize the Redis client if the settings specify a Redis connection.
    Returns None if Redis is not configured.
    """
    redis_client: redis.Redis | None = None
    if settings.REDIS_HOST:
        try:
            redis_client = redis.Redis(
                host=settings.REDIS_HOST,
                port=settings.REDIS_PORT,
                password=settings.REDIS_PASSWORD,
                socket_keepalive=True,
            )
            redis_client.ping()  # Test the connection
        except redis.exceptions.ConnectionError:
            tombola_error_logger.exception(
                "Redis connection error: Check the Redis configuration or the Redis server",
            )
            redis_client = None
    return redis_client


def disconnect_redis_client(redis_client: redis.Redis | None) -> None:
    if redis_client is not None:
        redis_client.close()
