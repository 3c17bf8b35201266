from fastapi import Depends, HTTPException
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.users import cruds_users
from app.dependencies import get_db
from app.modules.raffle import cruds_raffle, schemas_raffle
from app.modules.raffle.dependencies_raffle import (
    get_draw_engine,
    get_manual_entry_service,
    get_ticket_purchase_service,
)
from app.modules.raffle.draw_raffle import DrawEngine
from app.modules.raffle.manual_entry_raffle import ManualEntryService
from app.modules.raffle.purchase_raffle import TicketPurchaseService
from app.modules.raffle.utils_raffle import entry_to_schema, raise_for_failure
from app.types.module import Module

module = Module(
    root="raffle",
    tag="Raffle",
)


@module.router.get(
    "/raffle/raffles/{raffle_id}",
    response_model=schemas_raffle.RaffleComplete,
    status_code=200,
)
async def read_raffle(
    raffle_id: int,
    db: AsyncSession = Depends(get_db),
):
    raffle = await cruds_raffle.get_raffle_by_id(raffle_id=raffle_id, db=db)
    if raffle is None:
        raise HTTPException(status_code=404, detail="Raffle not found")

    return raffle


@module.router.get(
    "/raffle/raffles/{raffle_id}/stats",
    response_model=schemas_raffle.RaffleStats,
    status_code=200,
)
async def read_raffle_stats(
    raffle_id: int,
    db: AsyncSession = Depends(get_db),
):
    """
    Return the number of entries and tickets of the raffle, and the points spent on it.

    `remaining_tickets` is null if the raffle has no total cap.
    """
    raffle = await cruds_raffle.get_raffle_by_id(raffle_id=raffle_id, db=db)
    if raffle is None:
        raise HTTPException(status_code=404, detail="Raffle not found")

    total_tickets = await cruds_raffle.count_raffle_tickets(raffle_id=raffle_id, db=db)
    remaining_tickets = None
    if raffle.total_tickets_cap is not None:
        remaining_tickets = max(raffle.total_tickets_cap - total_tickets, 0)

    return schemas_raffle.RaffleStats(
        total_entries=await cruds_raffle.count_raffle_entries(
            raffle_id=raffle_id,
            db=db,
        ),
        total_tickets=total_tickets,
        points_collected=await cruds_raffle.sum_points_spent(
            raffle_id=raffle_id,
            db=db,
        ),
        remaining_tickets=remaining_tickets,
    )


@module.router.post(
    "/raffle/raffles/{raffle_id}/purchase",
    response_model=schemas_raffle.PurchaseResult,
    status_code=201,
)
async def purchase_tickets(
    raffle_id: int,
    purchase: schemas_raffle.TicketPurchase,
    service: TicketPurchaseService = Depends(get_ticket_purchase_service),
):
    """
    Exchange points of the user for tickets of the raffle
    """
    result = await service.purchase(
        user_id=purchase.user_id,
        raffle_id=raffle_id,
        quantity=purchase.quantity,
    )
    raise_for_failure(result)
    return result


@module.router.post(
    "/raffle/raffles/{raffle_id}/entries/manual",
    response_model=schemas_raffle.ManualEntryResult,
    status_code=201,
)
async def grant_manual_entry(
    raffle_id: int,
    grant: schemas_raffle.ManualEntryGrant,
    service: ManualEntryService = Depends(get_manual_entry_service),
):
    """
    Grant free tickets to a user, designated by its id or its username. The points balance of the user is not debited
    """
    result = await service.grant(
        raffle_id=raffle_id,
        user_id_or_username=grant.user,
        tickets=grant.tickets,
    )
    raise_for_failure(result)
    return result


@module.router.post(
    "/raffle/raffles/{raffle_id}/draw",
    response_model=schemas_raffle.DrawResult,
    status_code=201,
)
async def draw_raffle(
    raffle_id: int,
    draw: schemas_raffle.DrawRequest | None = None,
    engine: DrawEngine = Depends(get_draw_engine),
):
    """
    Select the winners of the raffle. A raffle can only be drawn once

    The body is optional: without it, the raffle's configured number of winners is drawn.
    """
    result = await engine.draw(
        raffle_id=raffle_id,
        number_of_winners=draw.number_of_winners if draw is not None else None,
    )
    raise_for_failure(result)
    return result


@module.router.patch(
    "/raffle/raffles/{raffle_id}/rigging",
    status_code=204,
)
async def edit_raffle_rigging(
    raffle_id: int,
    rigging: schemas_raffle.RiggingEdit,
    engine: DrawEngine = Depends(get_draw_engine),
):
    """
    Configure the predetermined winners of the raffle, in order. They are only used if `rigging_enabled` is true
    """
    result = await engine.configure_rigging(
        raffle_id=raffle_id,
        rigging_enabled=rigging.rigging_enabled,
        entry_ids=rigging.entry_ids,
    )
    raise_for_failure(result)


@module.router.get(
    "/raffle/raffles/{raffle_id}/draw/verification",
    response_model=schemas_raffle.DrawVerification,
    status_code=200,
)
async def verify_raffle_draw(
    raffle_id: int,
    engine: DrawEngine = Depends(get_draw_engine),
):
    """
    Replay the draw of the raffle from its stored seed and check that the same winners are selected
    """
    result = await engine.verify_draw(raffle_id=raffle_id)
    raise_for_failure(result)
    return result


@module.router.get(
    "/raffle/raffles/{raffle_id}/entries",
    response_model=list[schemas_raffle.EntryComplete],
    status_code=200,
)
async def read_raffle_entries(
    raffle_id: int,
    db: AsyncSession = Depends(get_db),
):
    raffle = await cruds_raffle.get_raffle_by_id(raffle_id=raffle_id, db=db)
    if raffle is None:
        raise HTTPException(status_code=404, detail="Raffle not found")

    entries = await cruds_raffle.get_entries_by_raffle_id(raffle_id=raffle_id, db=db)
    return [entry_to_schema(entry=entry, user=entry.user) for entry in entries]


@module.router.get(
    "/raffle/raffles/{raffle_id}/winners",
    response_model=list[schemas_raffle.WinnerComplete],
    status_code=200,
)
async def read_raffle_winners(
    raffle_id: int,
    db: AsyncSession = Depends(get_db),
):
    """
    Return the winners of the raffle, ordered by spin number
    """
    raffle = await cruds_raffle.get_raffle_by_id(raffle_id=raffle_id, db=db)
    if raffle is None:
        raise HTTPException(status_code=404, detail="Raffle not found")

    winners = await cruds_raffle.get_winners_by_raffle_id(raffle_id=raffle_id, db=db)
    return [
        schemas_raffle.WinnerComplete(
            id=winner.id,
            raffle_id=winner.raffle_id,
            entry_id=winner.entry_id,
            user_id=winner.entry.user_id,
            username=winner.entry.user.username,
            tickets=winner.entry.tickets,
            spin_number=winner.spin_number,
            selected_ticket_index=winner.selected_ticket_index,
            is_rigged=winner.is_rigged,
            selected_at=winner.selected_at,
        )
        for winner in winners
    ]


@module.router.get(
    "/raffle/users/{user_id}/entries",
    response_model=list[schemas_raffle.UserEntry],
    status_code=200,
)
async def read_user_entries(
    user_id: int,
    db: AsyncSession = Depends(get_db),
):
    """
    Return the tickets of the user in every raffle, most recent first
    """
    user = await cruds_users.get_user_by_id(db=db, user_id=user_id)
    if user is None:
        raise HTTPException(status_code=404, detail="User not found")

    entries = await cruds_raffle.get_entries_by_user_id(user_id=user_id, db=db)
    winning_entry_ids = await cruds_raffle.get_winning_entry_ids(
        entry_ids=[entry.id for entry, _ in entries],
        db=db,
    )
    return [
        schemas_raffle.UserEntry(
            **entry_to_schema(entry=entry, user=user).model_dump(),
            raffle_title=raffle.title,
            raffle_status=raffle.status,
            has_won=entry.id in winning_entry_ids,
        )
        for entry, raffle in entries
    ]


@module.router.get(
    "/raffle/users/{user_id}/purchases",
    response_model=list[schemas_raffle.PurchaseComplete],
    status_code=200,
)
async def read_user_purchases(
    user_id: int,
    db: AsyncSession = Depends(get_db),
):
    user = await cruds_users.get_user_by_id(db=db, user_id=user_id)
    if user is None:
        raise HTTPException(status_code=404, detail="User not found")

    return await cruds_raffle.get_purchases_by_user_id(user_id=user_id, db=db)
