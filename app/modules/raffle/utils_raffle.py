import asyncio
import logging
from collections.abc import AsyncIterator, Awaitable, Callable
from contextlib import asynccontextmanager
from datetime import UTC, datetime
from typing import TypeVar

from sqlalchemy import text
from sqlalchemy.exc import DBAPIError, SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.users import models_users
from app.core.utils.config import Settings
from app.modules.raffle import cruds_raffle, models_raffle, schemas_raffle
from app.modules.raffle.exceptions_raffle import (
    PerUserCapExceededError,
    RaffleError,
    SoldOutError,
)
from app.modules.raffle.types_raffle import RaffleEntrySource, RaffleErrorKind
from app.types.exceptions import ContentHTTPException
from app.types.sqlalchemy import SessionLocalType
from app.utils.state import SQLITE_BEGIN_IMMEDIATE

tombola_raffle_logger = logging.getLogger("tombola.raffle")
tombola_error_logger = logging.getLogger("tombola.error")

ResultT = TypeVar("ResultT", bound=schemas_raffle.RaffleOperationResult)

# PostgreSQL lock_not_available and query_canceled errors
# See https://www.postgresql.org/docs/current/errcodes-appendix.html
POSTGRES_TIMEOUT_SQLSTATES = {"55P03", "57014"}

ERROR_STATUS_CODES: dict[RaffleErrorKind, int] = {
    RaffleErrorKind.SubscriberRequired: 403,
    RaffleErrorKind.NotFound: 404,
    RaffleErrorKind.SoldOut: 409,
    RaffleErrorKind.AlreadyDrawn: 409,
    RaffleErrorKind.Timeout: 504,
    RaffleErrorKind.Unknown: 500,
}


@asynccontextmanager
async def raffle_transaction(
    session_factory: SessionLocalType,
    settings: Settings,
) -> AsyncIterator[AsyncSession]:
    """
    Open a session and a transaction, committed when the context exits without error and rolled back otherwise.

    On PostgreSQL, waiting for a row lock longer than `RAFFLE_LOCK_TIMEOUT` aborts the transaction.
    SQLite has no row locks: the transaction takes the database write lock when it begins, before any read.
    """
    async with session_factory() as db, db.begin():
        # Execution options are only applied when the connection is procured, before its transaction begins
        connection = await db.connection(
            execution_options={SQLITE_BEGIN_IMMEDIATE: True},
        )
        if connection.dialect.name == "postgresql":
            lock_timeout_ms = int(settings.RAFFLE_LOCK_TIMEOUT * 1000)
            await db.execute(text(f"SET LOCAL lock_timeout = {lock_timeout_ms}"))
        yield db


def is_timeout_error(error: SQLAlchemyError) -> bool:
    if not isinstance(error, DBAPIError):
        return False
    orig = error.orig
    sqlstate = getattr(orig, "sqlstate", None) or getattr(orig, "pgcode", None)
    if sqlstate in POSTGRES_TIMEOUT_SQLSTATES:
        return True
    # SQLite reports concurrent writers as a locked database
    return "database is locked" in str(orig)


async def execute_raffle_operation(
    operation: Callable[[AsyncSession], Awaitable[ResultT]],
    result_type: type[ResultT],
    session_factory: SessionLocalType,
    settings: Settings,
    context: str,
) -> ResultT:
    """
    Run `operation` in its own bounded transaction.

    Raffle errors, timeouts and database errors are converted to a failed `result_type`, the transaction being rolled back.
    `context` describes the operation in logs.
    """
    try:
        async with asyncio.timeout(settings.RAFFLE_TRANSACTION_TIMEOUT):
            async with raffle_transaction(
                session_factory=session_factory,
                settings=settings,
            ) as db:
                return await operation(db)
    except RaffleError as error:
        tombola_raffle_logger.info(f"{context}: rejected, {error.kind.value}: {error}")
        return result_type.failure(error=error.kind, message=error.message)
    except TimeoutError:
        tombola_error_logger.warning(
            f"{context}: transaction aborted after {settings.RAFFLE_TRANSACTION_TIMEOUT}s",
        )
        return result_type.failure(
            error=RaffleErrorKind.Timeout,
            message="The operation timed out, please try again",
        )
    except SQLAlchemyError as error:
        if is_timeout_error(error):
            tombola_error_logger.warning(f"{context}: lock timeout, {error}")
            return result_type.failure(
                error=RaffleErrorKind.Timeout,
                message="The operation timed out, please try again",
            )
        tombola_error_logger.exception(f"{context}: database error")
        return result_type.failure(
            error=RaffleErrorKind.Unknown,
            message="An unexpected error occurred",
        )


def raise_for_failure(result: schemas_raffle.RaffleOperationResult) -> None:
    """
    Raise a ContentHTTPException with a `{success, error, message}` body if the operation failed
    """
    if result.success:
        return
    error = result.error or RaffleErrorKind.Unknown
    raise ContentHTTPException(
        status_code=ERROR_STATUS_CODES.get(error, 400),
        content={
            "success": False,
            "error": error.value,
            "message": result.message,
        },
    )


async def check_total_cap(
    raffle: models_raffle.Raffle,
    tickets: int,
    db: AsyncSession,
) -> None:
    """
    The raffle row should be locked by the caller so that two transactions can not both take the last tickets
    """
    if raffle.total_tickets_cap is None:
        return
    sold = await cruds_raffle.count_raffle_tickets(raffle_id=raffle.id, db=db)
    if sold + tickets > raffle.total_tickets_cap:
        raise SoldOutError(remaining=raffle.total_tickets_cap - sold)


async def add_tickets_to_entry(
    raffle_id: int,
    user_id: int,
    tickets: int,
    source: RaffleEntrySource,
    max_tickets_per_user: int | None,
    db: AsyncSession,
) -> models_raffle.RaffleEntry:
    """
    Create the entry of the user or increase its tickets.

    The entry row is locked before the per user cap is checked. A manual grant marks the entry as `manual`.
    """
    entry = await cruds_raffle.get_entry_for_update(
        raffle_id=raffle_id,
        user_id=user_id,
        db=db,
    )
    current_tickets = entry.tickets if entry is not None else 0
    if (
        max_tickets_per_user is not None
        and current_tickets + tickets > max_tickets_per_user
    ):
        raise PerUserCapExceededError(
            max_tickets=max_tickets_per_user,
            current_tickets=current_tickets,
        )

    if entry is None:
        return await cruds_raffle.create_entry(
            entry=models_raffle.RaffleEntry(
                raffle_id=raffle_id,
                user_id=user_id,
                tickets=tickets,
                source=source,
                created_at=datetime.now(UTC),
            ),
            db=db,
        )

    await cruds_raffle.increment_entry_tickets(
        entry_id=entry.id,
        tickets=tickets,
        source=RaffleEntrySource.manual
        if source == RaffleEntrySource.manual
        else None,
        db=db,
    )
    await db.refresh(entry, attribute_names=["tickets", "source"])
    return entry


def entry_to_schema(
    entry: models_raffle.RaffleEntry,
    user: models_users.CoreUser,
) -> schemas_raffle.EntryComplete:
    return schemas_raffle.EntryComplete(
        id=entry.id,
        raffle_id=entry.raffle_id,
        user_id=entry.user_id,
        username=user.username,
        tickets=entry.tickets,
        source=entry.source,
        created_at=entry.created_at,
    )
