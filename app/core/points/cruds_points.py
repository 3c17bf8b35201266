"""File defining the functions making queries to the points tables"""

from datetime import UTC, datetime

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.points import models_points


async def get_balance_by_user_id(
    user_id: int,
    db: AsyncSession,
) -> models_points.PointsBalance | None:
    result = await db.execute(
        select(models_points.PointsBalance).where(
            models_points.PointsBalance.user_id == user_id,
        ),
    )
    return result.scalars().first()


async def get_balance_by_user_id_for_update(
    user_id: int,
    db: AsyncSession,
) -> models_points.PointsBalance | None:
    """
    Return the balance of the user and lock its row until the end of the transaction.
    The lock is ignored by SQLite, which serializes write transactions instead.
    """
    # populate_existing is required to get the locked value and not the one cached in the session identity map
    result = await db.execute(
        select(models_points.PointsBalance)
        .where(models_points.PointsBalance.user_id == user_id)
        .with_for_update()
        .execution_options(populate_existing=True),
    )
    return result.scalars().first()


async def create_balance(
    balance: models_points.PointsBalance,
    db: AsyncSession,
) -> models_points.PointsBalance:
    db.add(balance)
    await db.flush()
    return balance


async def set_balance(
    balance: models_points.PointsBalance,
    new_balance: int,
    db: AsyncSession,
) -> None:
    balance.balance = new_balance
    balance.updated_at = datetime.now(UTC)
    await db.flush()
