import logging
from datetime import UTC, datetime

from sqlalchemy.ext.asyncio import AsyncSession

from app.core.points.exceptions_points import (
    NotEnoughPointsError,
    PointsBalanceNotFoundError,
)
from app.core.points.ledger_points import PointsLedger
from app.core.utils.config import Settings
from app.modules.raffle import cruds_raffle, models_raffle, schemas_raffle
from app.modules.raffle.exceptions_raffle import (
    InsufficientBalanceError,
    InvalidQuantityError,
    PerUserCapExceededError,
    RaffleEndedError,
    RaffleNotActiveError,
    RaffleNotFoundError,
    RaffleNotStartedError,
    SubscriberRequiredError,
)
from app.modules.raffle.types_raffle import RaffleEntrySource, RaffleStatusType
from app.modules.raffle.utils_raffle import (
    add_tickets_to_entry,
    check_total_cap,
    execute_raffle_operation,
)
from app.types.sqlalchemy import SessionLocalType

tombola_raffle_logger = logging.getLogger("tombola.raffle")

PURCHASABLE_STATUSES = (RaffleStatusType.active, RaffleStatusType.upcoming)


class TicketPurchaseService:
    """
    Exchange points for raffle tickets.

    A purchase runs in a single transaction: the balance is debited if and only if the entry of the user is credited.
    """

    def __init__(
        self,
        session_factory: SessionLocalType,
        ledger: PointsLedger,
        settings: Settings,
    ):
        self.session_factory = session_factory
        self.ledger = ledger
        self.settings = settings

    async def purchase(
        self,
        user_id: int,
        raffle_id: int,
        quantity: int,
    ) -> schemas_raffle.PurchaseResult:
        async def operation(db: AsyncSession) -> schemas_raffle.PurchaseResult:
            return await self._purchase(
                user_id=user_id,
                raffle_id=raffle_id,
                quantity=quantity,
                db=db,
            )

        return await execute_raffle_operation(
            operation=operation,
            result_type=schemas_raffle.PurchaseResult,
            session_factory=self.session_factory,
            settings=self.settings,
            context=f"Purchase of {quantity} tickets of raffle {raffle_id} by user {user_id}",
        )

    async def _purchase(
        self,
        user_id: int,
        raffle_id: int,
        quantity: int,
        db: AsyncSession,
    ) -> schemas_raffle.PurchaseResult:
        if quantity <= 0:
            raise InvalidQuantityError(quantity=quantity)

        raffle = await cruds_raffle.get_raffle_by_id(raffle_id=raffle_id, db=db)
        if raffle is None:
            raise RaffleNotFoundError(raffle_id=raffle_id)

        # Capped raffles are locked exclusively, so that purchases competing for the last tickets are serialized.
        # Other purchases only take a shared lock, which prevents a draw from starting until they are committed
        raffle = await cruds_raffle.get_raffle_by_id_for_update(
            raffle_id=raffle_id,
            db=db,
            shared=raffle.total_tickets_cap is None,
        )
        if raffle is None:
            raise RaffleNotFoundError(raffle_id=raffle_id)

        await self._check_eligibility(
            raffle=raffle,
            user_id=user_id,
            quantity=quantity,
            db=db,
        )

        await check_total_cap(raffle=raffle, tickets=quantity, db=db)

        total_cost = raffle.ticket_cost * quantity
        balance = await self.ledger.lock_balance_for_update(user_id=user_id, db=db)
        # A user who never earned points has no balance row
        if balance is None or balance < total_cost:
            raise InsufficientBalanceError(balance=balance or 0, total_cost=total_cost)

        entry = await add_tickets_to_entry(
            raffle_id=raffle_id,
            user_id=user_id,
            tickets=quantity,
            source=RaffleEntrySource.purchased,
            max_tickets_per_user=raffle.max_tickets_per_user,
            db=db,
        )

        try:
            new_balance = await self.ledger.debit(
                user_id=user_id,
                amount=total_cost,
                db=db,
                reason=f"{quantity} tickets of raffle {raffle_id}",
            )
        except (NotEnoughPointsError, PointsBalanceNotFoundError) as error:
            raise InsufficientBalanceError(
                balance=balance,
                total_cost=total_cost,
            ) from error

        await cruds_raffle.create_purchase(
            purchase=models_raffle.RafflePurchase(
                raffle_id=raffle_id,
                user_id=user_id,
                quantity=quantity,
                points_spent=total_cost,
                balance_after=new_balance,
                created_at=datetime.now(UTC),
            ),
            db=db,
        )

        tombola_raffle_logger.info(
            f"Purchase: user {user_id} bought {quantity} tickets of raffle {raffle_id} for {total_cost} points, entry now holds {entry.tickets} tickets",
        )

        return schemas_raffle.PurchaseResult(
            tickets_purchased=quantity,
            entry_tickets=entry.tickets,
            new_balance=new_balance,
        )

    async def _check_eligibility(
        self,
        raffle: models_raffle.Raffle,
        user_id: int,
        quantity: int,
        db: AsyncSession,
    ) -> None:
        now = datetime.now(UTC)

        if raffle.status not in PURCHASABLE_STATUSES:
            raise RaffleNotActiveError(status=raffle.status)
        if raffle.hidden_until_start and now < raffle.start_at:
            raise RaffleNotStartedError()
        if raffle.end_at <= now:
            raise RaffleEndedError()
        if raffle.sub_only and not await self.ledger.is_subscriber(
            user_id=user_id,
            db=db,
        ):
            raise SubscriberRequiredError()

        if raffle.max_tickets_per_user is not None:
            # Checked again once the entry is locked
            entry = await cruds_raffle.get_entry(
                raffle_id=raffle.id,
                user_id=user_id,
                db=db,
            )
            current_tickets = entry.tickets if entry is not None else 0
            if current_tickets + quantity > raffle.max_tickets_per_user:
                raise PerUserCapExceededError(
                    max_tickets=raffle.max_tickets_per_user,
                    current_tickets=current_tickets,
                )
