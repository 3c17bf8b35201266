import pytest

from app.core.points.ledger_points import PointsLedger
from app.modules.raffle.manual_entry_raffle import ManualEntryService
from app.modules.raffle.purchase_raffle import TicketPurchaseService
from app.modules.raffle.types_raffle import (
    RaffleEntrySource,
    RaffleErrorKind,
    RaffleStatusType,
)
from tests.commons import (
    TestingSessionLocal,
    create_entry,
    create_raffle,
    create_user_with_points,
    get_balance,
    get_entry_tickets,
    settings,
)


@pytest.fixture
def service() -> ManualEntryService:
    return ManualEntryService(
        session_factory=TestingSessionLocal,
        ledger=PointsLedger(),
        settings=settings,
    )


def get_service(**settings_update) -> ManualEntryService:
    return ManualEntryService(
        session_factory=TestingSessionLocal,
        ledger=PointsLedger(),
        settings=settings.model_copy(update=settings_update),
    )


async def test_grant_by_id_does_not_debit(service: ManualEntryService) -> None:
    user = await create_user_with_points(points=40)
    raffle = await create_raffle(ticket_cost=10)

    result = await service.grant(
        raffle_id=raffle.id,
        user_id_or_username=str(user.id),
        tickets=4,
    )

    assert result.success
    assert result.entry is not None
    assert result.entry.user_id == user.id
    assert result.entry.username == user.username
    assert result.entry.tickets == 4
    assert result.entry.source == RaffleEntrySource.manual
    assert await get_balance(user.id) == 40


async def test_grant_by_username(service: ManualEntryService) -> None:
    user = await create_user_with_points(points=0, username="Manual_Winner")
    raffle = await create_raffle()

    result = await service.grant(
        raffle_id=raffle.id,
        user_id_or_username="manual_winner",
        tickets=1,
    )

    assert result.success
    assert result.entry is not None
    assert result.entry.user_id == user.id


async def test_grant_marks_existing_entry_as_manual(
    service: ManualEntryService,
) -> None:
    user = await create_user_with_points(points=100)
    raffle = await create_raffle(ticket_cost=10)
    purchase = await TicketPurchaseService(
        session_factory=TestingSessionLocal,
        ledger=PointsLedger(),
        settings=settings,
    ).purchase(user_id=user.id, raffle_id=raffle.id, quantity=2)
    assert purchase.success

    result = await service.grant(
        raffle_id=raffle.id,
        user_id_or_username=user.username,
        tickets=3,
    )

    assert result.entry is not None
    assert result.entry.tickets == 5
    assert result.entry.source == RaffleEntrySource.manual
    assert await get_balance(user.id) == 80


async def test_grant_outside_purchase_window(service: ManualEntryService) -> None:
    user = await create_user_with_points()
    raffle = await create_raffle(status=RaffleStatusType.upcoming, hidden_until_start=True)

    result = await service.grant(
        raffle_id=raffle.id,
        user_id_or_username=user.username,
        tickets=1,
    )

    assert result.success


@pytest.mark.parametrize(
    "status",
    [RaffleStatusType.drawing, RaffleStatusType.completed, RaffleStatusType.cancelled],
)
async def test_grant_on_closed_raffle(
    service: ManualEntryService,
    status: RaffleStatusType,
) -> None:
    user = await create_user_with_points()
    raffle = await create_raffle(status=status)

    result = await service.grant(
        raffle_id=raffle.id,
        user_id_or_username=user.username,
        tickets=1,
    )

    assert result.error == RaffleErrorKind.RaffleNotActive


async def test_grant_to_unknown_user(service: ManualEntryService) -> None:
    raffle = await create_raffle()

    result = await service.grant(
        raffle_id=raffle.id,
        user_id_or_username="nobody_has_this_name",
        tickets=1,
    )

    assert result.error == RaffleErrorKind.NotFound
    assert result.message == "User nobody_has_this_name not found"


async def test_grant_on_unknown_raffle(service: ManualEntryService) -> None:
    user = await create_user_with_points()

    result = await service.grant(
        raffle_id=777777,
        user_id_or_username=user.username,
        tickets=1,
    )

    assert result.error == RaffleErrorKind.NotFound


async def test_grant_invalid_quantity(service: ManualEntryService) -> None:
    user = await create_user_with_points()
    raffle = await create_raffle()

    result = await service.grant(
        raffle_id=raffle.id,
        user_id_or_username=user.username,
        tickets=0,
    )

    assert result.error == RaffleErrorKind.InvalidQuantity


async def test_grant_respects_per_user_caps() -> None:
    user = await create_user_with_points()
    raffle = await create_raffle(max_tickets_per_user=10)
    service = get_service(RAFFLE_MANUAL_ENTRY_MAX_TICKETS=6)

    result = await service.grant(
        raffle_id=raffle.id,
        user_id_or_username=user.username,
        tickets=7,
    )

    assert result.error == RaffleErrorKind.PerUserCapExceeded
    assert result.message is not None
    assert result.message.startswith("Maximum 6 tickets per user.")

    unlimited = get_service(RAFFLE_MANUAL_ENTRY_MAX_TICKETS=None)
    result = await unlimited.grant(
        raffle_id=raffle.id,
        user_id_or_username=user.username,
        tickets=10,
    )
    assert result.success
    assert await get_entry_tickets(raffle.id, user.id) == 10


async def test_grant_total_cap() -> None:
    user = await create_user_with_points()
    other_user = await create_user_with_points()
    raffle = await create_raffle(total_tickets_cap=5)
    await create_entry(raffle=raffle, user=other_user, tickets=4)

    result = await get_service().grant(
        raffle_id=raffle.id,
        user_id_or_username=user.username,
        tickets=2,
    )
    assert result.error == RaffleErrorKind.SoldOut

    result = await get_service(RAFFLE_MANUAL_ENTRY_ENFORCE_TOTAL_CAP=False).grant(
        raffle_id=raffle.id,
        user_id_or_username=user.username,
        tickets=2,
    )
    assert result.success


async def test_grant_subscriber_only_raffle() -> None:
    user = await create_user_with_points()
    raffle = await create_raffle(sub_only=True)

    assert (
        await get_service().grant(
            raffle_id=raffle.id,
            user_id_or_username=user.username,
            tickets=1,
        )
    ).success

    result = await get_service(RAFFLE_MANUAL_ENTRY_ENFORCE_SUB_ONLY=True).grant(
        raffle_id=raffle.id,
        user_id_or_username=user.username,
        tickets=1,
    )
    assert result.error == RaffleErrorKind.SubscriberRequired
