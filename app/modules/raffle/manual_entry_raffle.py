import logging

from sqlalchemy.ext.asyncio import AsyncSession

from app.core.points.ledger_points import PointsLedger
from app.core.users import cruds_users
from app.core.utils.config import Settings
from app.modules.raffle import cruds_raffle, schemas_raffle
from app.modules.raffle.exceptions_raffle import (
    InvalidQuantityError,
    RaffleNotActiveError,
    RaffleNotFoundError,
    SubscriberRequiredError,
    UserNotFoundError,
)
from app.modules.raffle.types_raffle import RaffleEntrySource, RaffleStatusType
from app.modules.raffle.utils_raffle import (
    add_tickets_to_entry,
    check_total_cap,
    entry_to_schema,
    execute_raffle_operation,
)
from app.types.sqlalchemy import SessionLocalType

tombola_raffle_logger = logging.getLogger("tombola.raffle")

CLOSED_STATUSES = (
    RaffleStatusType.drawing,
    RaffleStatusType.completed,
    RaffleStatusType.cancelled,
)


class ManualEntryService:
    """
    Grant free tickets to a user. The points balance of the user is never debited.

    Administrators may grant tickets outside of the purchase window, as long as the raffle was not drawn or cancelled.
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

    def per_user_cap(self, max_tickets_per_user: int | None) -> int | None:
        caps = [
            cap
            for cap in (
                max_tickets_per_user,
                self.settings.RAFFLE_MANUAL_ENTRY_MAX_TICKETS,
            )
            if cap is not None
        ]
        return min(caps) if caps else None

    async def grant(
        self,
        raffle_id: int,
        user_id_or_username: str,
        tickets: int,
    ) -> schemas_raffle.ManualEntryResult:
        async def operation(db: AsyncSession) -> schemas_raffle.ManualEntryResult:
            return await self._grant(
                raffle_id=raffle_id,
                user_id_or_username=user_id_or_username,
                tickets=tickets,
                db=db,
            )

        return await execute_raffle_operation(
            operation=operation,
            result_type=schemas_raffle.ManualEntryResult,
            session_factory=self.session_factory,
            settings=self.settings,
            context=f"Manual grant of {tickets} tickets of raffle {raffle_id} to {user_id_or_username}",
        )

    async def _grant(
        self,
        raffle_id: int,
        user_id_or_username: str,
        tickets: int,
        db: AsyncSession,
    ) -> schemas_raffle.ManualEntryResult:
        if tickets <= 0:
            raise InvalidQuantityError(quantity=tickets)

        raffle = await cruds_raffle.get_raffle_by_id_for_update(
            raffle_id=raffle_id,
            db=db,
        )
        if raffle is None:
            raise RaffleNotFoundError(raffle_id=raffle_id)
        if raffle.status in CLOSED_STATUSES:
            raise RaffleNotActiveError(status=raffle.status)

        user = await cruds_users.get_user_by_id_or_username(
            db=db,
            user_id_or_username=user_id_or_username.strip(),
        )
        if user is None:
            raise UserNotFoundError(user=user_id_or_username)

        if (
            self.settings.RAFFLE_MANUAL_ENTRY_ENFORCE_SUB_ONLY
            and raffle.sub_only
            and not await self.ledger.is_subscriber(user_id=user.id, db=db)
        ):
            raise SubscriberRequiredError()

        if self.settings.RAFFLE_MANUAL_ENTRY_ENFORCE_TOTAL_CAP:
            await check_total_cap(raffle=raffle, tickets=tickets, db=db)

        entry = await add_tickets_to_entry(
            raffle_id=raffle_id,
            user_id=user.id,
            tickets=tickets,
            source=RaffleEntrySource.manual,
            max_tickets_per_user=self.per_user_cap(raffle.max_tickets_per_user),
            db=db,
        )

        tombola_raffle_logger.info(
            f"Manual grant: {tickets} tickets of raffle {raffle_id} granted to user {user.id} ({user.username}), entry now holds {entry.tickets} tickets",
        )

        return schemas_raffle.ManualEntryResult(
            entry=entry_to_schema(entry=entry, user=user),
        )
