import asyncio
import logging
import os
from collections.abc import Callable
from typing import ParamSpec, TypeVar

import psutil
import redis
from sqlalchemy import Connection, MetaData
from sqlalchemy.engine import Engine, create_engine

from app.core.utils.config import Settings
from app.types.sqlalchemy import Base
from app.utils.tools import execute_async_or_sync_method


def get_sync_db_engine(settings: Settings) -> Engine:
    """
    Create a synchronous database engine
    """
    if settings.SQLITE_DB:
        SQLALCHEMY_DATABASE_URL = f"sqlite:///./{settings.SQLITE_DB}"
    else:
        SQLALCHEMY_DATABASE_URL = f"postgresql+psycopg://{settings.POSTGRES_USER}:{settings.POSTGRES_PASSWORD}@{settings.POSTGRES_HOST}/{settings.POSTGRES_DB}"

    return create_engine(SQLALCHEMY_DATABASE_URL, echo=settings.DATABASE_DEBUG)


def drop_db_sync(conn: Connection):
    """
    Drop all tables in the database
    """
    # All tables should be dropped, including the alembic_version table
    # or Tombola will think that the database is up to date and will not initialize it
    # when running tests a second time.

    # `Base.metadata.drop_all(conn)` is only able to drop tables that are defined in models
    # This means that if a model is deleted, its table will never be dropped by `Base.metadata.drop_all(conn)`

    # Thus we construct a metadata object that reflects the database instead of only using models
    my_metadata: MetaData = MetaData(schema=Base.metadata.schema)
    my_metadata.reflect(bind=conn, resolve_fks=False)
    my_metadata.drop_all(bind=conn)


P = ParamSpec("P")
R = TypeVar("R")


async def use_lock_for_workers(
    job_function: Callable[P, R],
    key: str,
    redis_client: redis.Redis | None,
    number_of_workers: int,
    logger: logging.Logger,
    unlock_key: str | None = None,
    *args: P.args,
    **kwargs: P.kwargs,
) -> None:
    """
    Aquires a Redis lock to ensure that `job_function` is only executed by one worker.

    Using `unlock_key` allows to wait for a worker to have finished executing `job_function` before continuing execution.
    If provided, the function will wait until this unlock key is set before continuing

    The job may be a sync or async function. This util will pass `kwargs` as arguments to the `job_function`.

    If the Redis client is not provided, or if `number_of_workers` is less than or equal to 1,
    the function will execute `job_function` directly without acquiring a lock.
    """

    if (
        not isinstance(
            redis_client,
            redis.Redis,
        )
        or number_of_workers <= 1
    ):
        # If a Redis is not provided, we execute the function directly
        await execute_async_or_sync_method(job_function, **kwargs)

    elif redis_client.set(key, "1", nx=True, ex=120):
        # We acquired the lock, we execute the function
        logger.info(f"Running {job_function.__name__}")

        await execute_async_or_sync_method(job_function, **kwargs)

        if unlock_key is not None:
            # We set the unlock_key for other workers to resume operation
            redis_client.set(unlock_key, "1")

            # After 60 seconds we remove the key for both performance and reloading issues
            # we assume other jobs won't take more than 60 seconds and will check this key before expiration
            redis_client.expire(unlock_key, 60)

        redis_client.expire(key, 60)

    elif unlock_key:
        # As an `unlock_key` is provided, we will wait until an other worker has finished executing `job_function`
        while redis_client.get(unlock_key) is None:
            logger.debug(f"Waiting for {job_function.__name__} to finish")
            await asyncio.sleep(1)


def get_number_of_workers() -> int:
    """
    Get the number of active Tombola workers
    """
    # We use the parent process to get the workers
    parent_pid = os.getppid()
    parent_process = psutil.Process(parent_pid)
    workers = [
        p for p in parent_process.children() if p.status() != psutil.STATUS_ZOMBIE
    ]
    return len(workers)
