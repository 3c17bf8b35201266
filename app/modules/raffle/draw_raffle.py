import logging
import secrets
from collections.abc import Sequence
from datetime import UTC, datetime

from sqlalchemy.ext.asyncio import AsyncSession

from app.core.utils.config import Settings
from app.modules.raffle import cruds_raffle, models_raffle, schemas_raffle
from app.modules.raffle.exceptions_raffle import (
    AlreadyDrawnError,
    InvalidRiggingError,
    InvalidWinnerCountError,
    NoEntriesError,
    NoTicketsError,
    NotDrawnError,
    RaffleNotActiveError,
    RaffleNotFoundError,
)
from app.modules.raffle.pool_raffle import PoolEntry, SelectedWinner, select_winners
from app.modules.raffle.types_raffle import DrawAlgorithm, RaffleStatusType
from app.modules.raffle.utils_raffle import execute_raffle_operation
from app.types.sqlalchemy import SessionLocalType

tombola_raffle_logger = logging.getLogger("tombola.raffle")

DRAWN_STATUSES = (RaffleStatusType.drawing, RaffleStatusType.completed)


def entries_to_pool(
    entries: Sequence[models_raffle.RaffleEntry],
) -> list[PoolEntry]:
    return [
        PoolEntry(
            entry_id=entry.id,
            user_id=entry.user_id,
            username=entry.user.username,
            tickets=entry.tickets,
        )
        for entry in entries
    ]


def winner_to_schema(winner: SelectedWinner) -> schemas_raffle.WinnerSelection:
    return schemas_raffle.WinnerSelection(
        entry_id=winner.entry.entry_id,
        user_id=winner.entry.user_id,
        username=winner.entry.username,
        tickets=winner.entry.tickets,
        spin_number=winner.spin_number,
        selected_ticket_index=winner.selected_ticket_index,
        ticket_range_start=winner.ticket_range_start,
        ticket_range_end=winner.ticket_range_end,
        is_rigged=winner.is_rigged,
    )


class DrawEngine:
    """
    Select the winners of a raffle.

    The seed of each draw is stored with the raffle, so that the draw can be replayed and verified from the entries.
    """

    def __init__(self, session_factory: SessionLocalType, settings: Settings):
        self.session_factory = session_factory
        self.settings = settings

    async def draw(
        self,
        raffle_id: int,
        number_of_winners: int | None = None,
    ) -> schemas_raffle.DrawResult:
        async def operation(db: AsyncSession) -> schemas_raffle.DrawResult:
            return await self._draw(
                raffle_id=raffle_id,
                number_of_winners=number_of_winners,
                db=db,
            )

        return await execute_raffle_operation(
            operation=operation,
            result_type=schemas_raffle.DrawResult,
            session_factory=self.session_factory,
            settings=self.settings,
            context=f"Draw of raffle {raffle_id}",
        )

    async def _draw(
        self,
        raffle_id: int,
        number_of_winners: int | None,
        db: AsyncSession,
    ) -> schemas_raffle.DrawResult:
        if number_of_winners is not None and number_of_winners <= 0:
            raise InvalidWinnerCountError(number_of_winners=number_of_winners)

        raffle = await cruds_raffle.get_raffle_by_id(raffle_id=raffle_id, db=db)
        if raffle is None:
            raise RaffleNotFoundError(raffle_id=raffle_id)
        if raffle.status in DRAWN_STATUSES:
            raise AlreadyDrawnError(raffle_id=raffle_id)
        if raffle.status == RaffleStatusType.cancelled:
            raise RaffleNotActiveError(status=raffle.status)

        winners_requested = number_of_winners or raffle.number_of_winners
        if winners_requested <= 0:
            raise InvalidWinnerCountError(number_of_winners=winners_requested)
        rigging_enabled = raffle.rigging_enabled

        # Only one transaction can move the raffle to `drawing`. The update waits for purchases holding a lock on the raffle
        if not await cruds_raffle.mark_raffle_as_drawing(raffle_id=raffle_id, db=db):
            raise AlreadyDrawnError(raffle_id=raffle_id)

        entries = await cruds_raffle.get_entries_by_raffle_id(
            raffle_id=raffle_id,
            db=db,
        )
        if not entries:
            raise NoEntriesError()
        pool_entries = entries_to_pool(entries)
        total_tickets = sum(entry.tickets for entry in pool_entries)
        if total_tickets < 1:
            raise NoTicketsError()

        rigged_entry_ids: list[int] = []
        if rigging_enabled:
            rigged_winners = await cruds_raffle.get_rigged_winners_by_raffle_id(
                raffle_id=raffle_id,
                db=db,
            )
            rigged_entry_ids = [rigged.entry_id for rigged in rigged_winners]

        seed = secrets.token_bytes(32)
        algorithm = self.settings.RAFFLE_DRAW_ALGORITHM
        winners = select_winners(
            entries=pool_entries,
            seed=seed,
            number_of_winners=winners_requested,
            algorithm=algorithm,
            rigged_entry_ids=rigged_entry_ids,
        )

        now = datetime.now(UTC)
        await cruds_raffle.set_raffle_status(
            raffle_id=raffle_id,
            status=RaffleStatusType.completed,
            db=db,
            draw_seed=seed.hex(),
            draw_algorithm=algorithm,
            draw_total_tickets=total_tickets,
            number_of_winners=winners_requested,
            drawn_at=now,
        )
        await cruds_raffle.create_winners(
            winners=[
                models_raffle.RaffleWinner(
                    raffle_id=raffle_id,
                    entry_id=winner.entry.entry_id,
                    spin_number=winner.spin_number,
                    selected_ticket_index=winner.selected_ticket_index,
                    is_rigged=winner.is_rigged,
                    selected_at=now,
                )
                for winner in winners
            ],
            db=db,
        )

        if len(winners) < winners_requested:
            tombola_raffle_logger.warning(
                f"Draw of raffle {raffle_id}: only {len(winners)} winners selected out of {winners_requested} requested",
            )
        tombola_raffle_logger.info(
            f"Draw of raffle {raffle_id}: {len(winners)} winners selected from {total_tickets} tickets ({len(rigged_entry_ids)} rigged), seed {seed.hex()}",
        )

        return schemas_raffle.DrawResult(
            winners=[winner_to_schema(winner) for winner in winners],
            draw_seed=seed.hex(),
            draw_algorithm=algorithm,
            total_tickets=total_tickets,
            winners_requested=winners_requested,
        )

    async def configure_rigging(
        self,
        raffle_id: int,
        rigging_enabled: bool,
        entry_ids: Sequence[int],
    ) -> schemas_raffle.RaffleOperationResult:
        """
        Replace the predetermined winners of the raffle. They take the first slots of the draw, in the provided order
        """

        async def operation(db: AsyncSession) -> schemas_raffle.RaffleOperationResult:
            raffle = await cruds_raffle.get_raffle_by_id_for_update(
                raffle_id=raffle_id,
                db=db,
            )
            if raffle is None:
                raise RaffleNotFoundError(raffle_id=raffle_id)
            if raffle.status in DRAWN_STATUSES:
                raise AlreadyDrawnError(raffle_id=raffle_id)

            if len(entry_ids) > self.settings.RAFFLE_MAX_RIGGED_WINNERS:
                raise InvalidRiggingError(
                    f"At most {self.settings.RAFFLE_MAX_RIGGED_WINNERS} rigged winners can be configured",
                )
            if len(set(entry_ids)) != len(entry_ids):
                raise InvalidRiggingError("Rigged winners must be distinct entries")
            for entry_id in entry_ids:
                entry = await cruds_raffle.get_entry_by_id(entry_id=entry_id, db=db)
                if entry is None or entry.raffle_id != raffle_id:
                    raise InvalidRiggingError(
                        f"Entry {entry_id} does not belong to raffle {raffle_id}",
                    )

            await cruds_raffle.replace_rigged_winners(
                raffle_id=raffle_id,
                entry_ids=entry_ids,
                db=db,
            )
            await cruds_raffle.set_rigging_enabled(
                raffle_id=raffle_id,
                rigging_enabled=rigging_enabled,
                db=db,
            )
            tombola_raffle_logger.warning(
                f"Rigging of raffle {raffle_id} {'enabled' if rigging_enabled else 'disabled'} with entries {list(entry_ids)}",
            )
            return schemas_raffle.RaffleOperationResult()

        return await execute_raffle_operation(
            operation=operation,
            result_type=schemas_raffle.RaffleOperationResult,
            session_factory=self.session_factory,
            settings=self.settings,
            context=f"Rigging configuration of raffle {raffle_id}",
        )

    async def verify_draw(self, raffle_id: int) -> schemas_raffle.DrawVerification:
        """
        Replay the draw of the raffle from its stored seed and compare the result with the stored winners
        """

        async def operation(db: AsyncSession) -> schemas_raffle.DrawVerification:
            raffle = await cruds_raffle.get_raffle_by_id(raffle_id=raffle_id, db=db)
            if raffle is None:
                raise RaffleNotFoundError(raffle_id=raffle_id)
            if raffle.status != RaffleStatusType.completed or raffle.draw_seed is None:
                raise NotDrawnError(raffle_id=raffle_id)

            algorithm = raffle.draw_algorithm or DrawAlgorithm.lcg
            entries = await cruds_raffle.get_entries_by_raffle_id(
                raffle_id=raffle_id,
                db=db,
            )
            pool_entries = entries_to_pool(entries)

            rigged_entry_ids: list[int] = []
            if raffle.rigging_enabled:
                rigged_winners = await cruds_raffle.get_rigged_winners_by_raffle_id(
                    raffle_id=raffle_id,
                    db=db,
                )
                rigged_entry_ids = [rigged.entry_id for rigged in rigged_winners]

            replayed = select_winners(
                entries=pool_entries,
                seed=bytes.fromhex(raffle.draw_seed),
                number_of_winners=raffle.number_of_winners,
                algorithm=algorithm,
                rigged_entry_ids=rigged_entry_ids,
            )
            stored = await cruds_raffle.get_winners_by_raffle_id(
                raffle_id=raffle_id,
                db=db,
            )

            total_tickets = sum(entry.tickets for entry in pool_entries)
            verified = total_tickets == raffle.draw_total_tickets and [
                (
                    winner.entry.entry_id,
                    winner.spin_number,
                    winner.selected_ticket_index,
                    winner.is_rigged,
                )
                for winner in replayed
            ] == [
                (
                    winner.entry_id,
                    winner.spin_number,
                    winner.selected_ticket_index,
                    winner.is_rigged,
                )
                for winner in stored
            ]
            if not verified:
                tombola_raffle_logger.error(
                    f"Verification of raffle {raffle_id}: replayed winners do not match the stored winners",
                )

            return schemas_raffle.DrawVerification(
                verified=verified,
                draw_seed=raffle.draw_seed,
                draw_algorithm=algorithm,
                total_tickets=total_tickets,
                winners=[winner_to_schema(winner) for winner in replayed],
            )

        return await execute_raffle_operation(
            operation=operation,
            result_type=schemas_raffle.DrawVerification,
            session_factory=self.session_factory,
            settings=self.settings,
            context=f"Verification of raffle {raffle_id}",
        )
