import logging

from sqlalchemy.ext.asyncio import AsyncSession

from app.core.points import cruds_points
from app.core.points.exceptions_points import (
    NotEnoughPointsError,
    PointsBalanceNotFoundError,
)

tombola_points_logger = logging.getLogger("tombola.points")


class PointsLedger:
    """
    Access to the users points balances for the raffle services.

    All methods run in the transaction of the provided session. `lock_balance_for_update` must be called
    before `debit` in the same transaction so that the balance can not be modified between the check and the update.
    """

    async def lock_balance_for_update(
        self,
        user_id: int,
        db: AsyncSession,
    ) -> int | None:
        """
        Lock the balance row of the user and return its balance, or None if the user never earned points
        """
        balance = await cruds_points.get_balance_by_user_id_for_update(
            user_id=user_id,
            db=db,
        )
        if balance is None:
            return None
        return balance.balance

    async def debit(
        self,
        user_id: int,
        amount: int,
        db: AsyncSession,
        reason: str = "",
    ) -> int:
        """
        Remove `amount` points from the balance of the user and return the new balance
        """
        balance = await cruds_points.get_balance_by_user_id_for_update(
            user_id=user_id,
            db=db,
        )
        if balance is None:
            raise PointsBalanceNotFoundError(user_id=user_id)
        if balance.balance < amount:
            raise NotEnoughPointsError(
                user_id=user_id,
                balance=balance.balance,
                amount=amount,
            )

        new_balance = balance.balance - amount
        await cruds_points.set_balance(balance=balance, new_balance=new_balance, db=db)

        tombola_points_logger.info(
            f"Debit: {amount} points removed from user {user_id} balance, new balance {new_balance} ({reason})",
        )
        return new_balance

    async def is_subscriber(
        self,
        user_id: int,
        db: AsyncSession,
    ) -> bool:
        balance = await cruds_points.get_balance_by_user_id(user_id=user_id, db=db)
        return balance is not None and balance.is_subscriber
