"""File defining the functions called by the services and the endpoints, making queries to the table using the models"""

from collections.abc import Sequence
from datetime import datetime

from sqlalchemy import delete, func, select, update
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import noload

from app.modules.raffle import models_raffle
from app.modules.raffle.types_raffle import (
    DrawAlgorithm,
    RaffleEntrySource,
    RaffleStatusType,
)


async def create_raffle(
    raffle: models_raffle.Raffle,
    db: AsyncSession,
) -> models_raffle.Raffle:
    """Create a new raffle in database and return it"""

    db.add(raffle)
    await db.flush()
    return raffle


async def get_raffle_by_id(
    raffle_id: int,
    db: AsyncSession,
) -> models_raffle.Raffle | None:
    result = await db.execute(
        select(models_raffle.Raffle).where(models_raffle.Raffle.id == raffle_id),
    )
    return result.scalars().first()


async def get_raffle_by_id_for_update(
    raffle_id: int,
    db: AsyncSession,
    shared: bool = False,
) -> models_raffle.Raffle | None:
    """
    Return the raffle and lock its row until the end of the transaction.

    A `shared` lock does not prevent other shared locks, but prevents the status of the raffle
    from being modified by a draw until the end of the transaction.
    """
    result = await db.execute(
        select(models_raffle.Raffle)
        .where(models_raffle.Raffle.id == raffle_id)
        .with_for_update(read=shared)
        .execution_options(populate_existing=True),
    )
    return result.scalars().first()


async def mark_raffle_as_drawing(
    raffle_id: int,
    db: AsyncSession,
) -> bool:
    """
    Move the raffle to the `drawing` status, unless it is already drawing or drawn.
    Return False if an other draw already changed the status.
    """
    result = await db.execute(
        update(models_raffle.Raffle)
        .where(
            models_raffle.Raffle.id == raffle_id,
            models_raffle.Raffle.status.not_in(
                [RaffleStatusType.drawing, RaffleStatusType.completed],
            ),
        )
        .values(status=RaffleStatusType.drawing),
    )
    await db.flush()
    return result.rowcount == 1


async def set_raffle_status(
    raffle_id: int,
    status: RaffleStatusType,
    db: AsyncSession,
    draw_seed: str | None = None,
    draw_algorithm: DrawAlgorithm | None = None,
    draw_total_tickets: int | None = None,
    number_of_winners: int | None = None,
    drawn_at: datetime | None = None,
) -> None:
    values: dict = {"status": status}
    if draw_seed is not None:
        values["draw_seed"] = draw_seed
        values["draw_algorithm"] = draw_algorithm
        values["draw_total_tickets"] = draw_total_tickets
        values["drawn_at"] = drawn_at
    if number_of_winners is not None:
        values["number_of_winners"] = number_of_winners

    await db.execute(
        update(models_raffle.Raffle)
        .where(models_raffle.Raffle.id == raffle_id)
        .values(**values),
    )
    await db.flush()


async def set_rigging_enabled(
    raffle_id: int,
    rigging_enabled: bool,
    db: AsyncSession,
) -> None:
    await db.execute(
        update(models_raffle.Raffle)
        .where(models_raffle.Raffle.id == raffle_id)
        .values(rigging_enabled=rigging_enabled),
    )
    await db.flush()


# Entries


async def get_entry_by_id(
    entry_id: int,
    db: AsyncSession,
) -> models_raffle.RaffleEntry | None:
    result = await db.execute(
        select(models_raffle.RaffleEntry).where(
            models_raffle.RaffleEntry.id == entry_id,
        ),
    )
    return result.scalars().first()


async def get_entry(
    raffle_id: int,
    user_id: int,
    db: AsyncSession,
) -> models_raffle.RaffleEntry | None:
    result = await db.execute(
        select(models_raffle.RaffleEntry).where(
            models_raffle.RaffleEntry.raffle_id == raffle_id,
            models_raffle.RaffleEntry.user_id == user_id,
        ),
    )
    return result.scalars().first()


async def get_entry_for_update(
    raffle_id: int,
    user_id: int,
    db: AsyncSession,
) -> models_raffle.RaffleEntry | None:
    # The user relationship is not loaded, only the entry row should be locked
    result = await db.execute(
        select(models_raffle.RaffleEntry)
        .where(
            models_raffle.RaffleEntry.raffle_id == raffle_id,
            models_raffle.RaffleEntry.user_id == user_id,
        )
        .options(noload(models_raffle.RaffleEntry.user))
        .with_for_update(of=models_raffle.RaffleEntry)
        .execution_options(populate_existing=True),
    )
    return result.scalars().first()


async def get_entries_by_raffle_id(
    raffle_id: int,
    db: AsyncSession,
) -> Sequence[models_raffle.RaffleEntry]:
    """Return the entries of the raffle, ordered by id"""

    result = await db.execute(
        select(models_raffle.RaffleEntry)
        .where(models_raffle.RaffleEntry.raffle_id == raffle_id)
        .order_by(models_raffle.RaffleEntry.id),
    )
    return result.scalars().all()


async def get_entries_by_user_id(
    user_id: int,
    db: AsyncSession,
) -> Sequence[tuple[models_raffle.RaffleEntry, models_raffle.Raffle]]:
    result = await db.execute(
        select(models_raffle.RaffleEntry, models_raffle.Raffle)
        .join(
            models_raffle.Raffle,
            models_raffle.Raffle.id == models_raffle.RaffleEntry.raffle_id,
        )
        .where(models_raffle.RaffleEntry.user_id == user_id)
        .order_by(models_raffle.RaffleEntry.created_at.desc()),
    )
    return [(entry, raffle) for entry, raffle in result.all()]


async def count_raffle_tickets(
    raffle_id: int,
    db: AsyncSession,
) -> int:
    result = await db.execute(
        select(func.coalesce(func.sum(models_raffle.RaffleEntry.tickets), 0)).where(
            models_raffle.RaffleEntry.raffle_id == raffle_id,
        ),
    )
    return int(result.scalar_one())


async def count_raffle_entries(
    raffle_id: int,
    db: AsyncSession,
) -> int:
    result = await db.execute(
        select(func.count(models_raffle.RaffleEntry.id)).where(
            models_raffle.RaffleEntry.raffle_id == raffle_id,
        ),
    )
    return int(result.scalar_one())


async def create_entry(
    entry: models_raffle.RaffleEntry,
    db: AsyncSession,
) -> models_raffle.RaffleEntry:
    db.add(entry)
    await db.flush()
    return entry


async def increment_entry_tickets(
    entry_id: int,
    tickets: int,
    db: AsyncSession,
    source: RaffleEntrySource | None = None,
) -> None:
    """
    Add `tickets` to the entry in the database, whatever the value loaded in the session.
    If `source` is provided, the source of the entry is replaced.
    """
    values: dict = {"tickets": models_raffle.RaffleEntry.tickets + tickets}
    if source is not None:
        values["source"] = source
    await db.execute(
        update(models_raffle.RaffleEntry)
        .where(models_raffle.RaffleEntry.id == entry_id)
        .values(**values)
        .execution_options(synchronize_session=False),
    )
    await db.flush()


# Winners


async def create_winners(
    winners: Sequence[models_raffle.RaffleWinner],
    db: AsyncSession,
) -> None:
    db.add_all(winners)
    await db.flush()


async def get_winners_by_raffle_id(
    raffle_id: int,
    db: AsyncSession,
) -> Sequence[models_raffle.RaffleWinner]:
    result = await db.execute(
        select(models_raffle.RaffleWinner)
        .where(models_raffle.RaffleWinner.raffle_id == raffle_id)
        .order_by(models_raffle.RaffleWinner.spin_number),
    )
    return result.scalars().all()


async def get_winning_entry_ids(
    entry_ids: Sequence[int],
    db: AsyncSession,
) -> set[int]:
    if not entry_ids:
        return set()
    result = await db.execute(
        select(models_raffle.RaffleWinner.entry_id).where(
            models_raffle.RaffleWinner.entry_id.in_(entry_ids),
        ),
    )
    return set(result.scalars().all())


# Rigged winners


async def get_rigged_winners_by_raffle_id(
    raffle_id: int,
    db: AsyncSession,
) -> Sequence[models_raffle.RaffleRiggedWinner]:
    result = await db.execute(
        select(models_raffle.RaffleRiggedWinner)
        .where(models_raffle.RaffleRiggedWinner.raffle_id == raffle_id)
        .order_by(models_raffle.RaffleRiggedWinner.position),
    )
    return result.scalars().all()


async def replace_rigged_winners(
    raffle_id: int,
    entry_ids: Sequence[int],
    db: AsyncSession,
) -> None:
    await db.execute(
        delete(models_raffle.RaffleRiggedWinner).where(
            models_raffle.RaffleRiggedWinner.raffle_id == raffle_id,
        ),
    )
    db.add_all(
        [
            models_raffle.RaffleRiggedWinner(
                raffle_id=raffle_id,
                entry_id=entry_id,
                position=position,
            )
            for position, entry_id in enumerate(entry_ids, start=1)
        ],
    )
    await db.flush()


# Purchases


async def create_purchase(
    purchase: models_raffle.RafflePurchase,
    db: AsyncSession,
) -> None:
    db.add(purchase)
    await db.flush()


async def get_purchases_by_user_id(
    user_id: int,
    db: AsyncSession,
) -> Sequence[models_raffle.RafflePurchase]:
    result = await db.execute(
        select(models_raffle.RafflePurchase)
        .where(models_raffle.RafflePurchase.user_id == user_id)
        .order_by(models_raffle.RafflePurchase.id.desc()),
    )
    return result.scalars().all()


async def sum_points_spent(
    raffle_id: int,
    db: AsyncSession,
) -> int:
    result = await db.execute(
        select(
            func.coalesce(func.sum(models_raffle.RafflePurchase.points_spent), 0),
        ).where(models_raffle.RafflePurchase.raffle_id == raffle_id),
    )
    return int(result.scalar_one())
