from datetime import UTC, datetime

import pytest
import pytest_asyncio
from fastapi.testclient import TestClient

from app.core.points import cruds_points, models_points
from app.core.points.exceptions_points import (
    NotEnoughPointsError,
    PointsBalanceNotFoundError,
)
from app.core.points.ledger_points import PointsLedger
from app.core.users import models_users
from tests.commons import TestingSessionLocal, create_user_with_points, get_balance

user: models_users.CoreUser
subscriber: models_users.CoreUser
user_without_balance: models_users.CoreUser


@pytest_asyncio.fixture(scope="module", autouse=True)
async def init_objects() -> None:
    global user, subscriber, user_without_balance

    user = await create_user_with_points(points=100)
    subscriber = await create_user_with_points(points=10, is_subscriber=True)
    user_without_balance = await create_user_with_points(points=None)


def test_read_balance(client: TestClient) -> None:
    response = client.get(f"/points/users/{subscriber.id}")

    assert response.status_code == 200
    assert response.json()["user_id"] == subscriber.id
    assert response.json()["balance"] == 10
    assert response.json()["is_subscriber"]


def test_read_missing_balance(client: TestClient) -> None:
    response = client.get(f"/points/users/{user_without_balance.id}")

    assert response.status_code == 404
    assert response.json()["detail"] == "Points balance not found"


async def test_debit() -> None:
    ledger = PointsLedger()

    async with TestingSessionLocal() as db, db.begin():
        assert await ledger.lock_balance_for_update(user_id=user.id, db=db) == 100
        new_balance = await ledger.debit(user_id=user.id, amount=30, db=db)

    assert new_balance == 70
    assert await get_balance(user.id) == 70


async def test_debit_more_than_balance() -> None:
    ledger = PointsLedger()

    with pytest.raises(NotEnoughPointsError):
        async with TestingSessionLocal() as db, db.begin():
            await ledger.debit(user_id=subscriber.id, amount=11, db=db)

    assert await get_balance(subscriber.id) == 10


async def test_debit_without_balance() -> None:
    ledger = PointsLedger()

    async with TestingSessionLocal() as db:
        assert (
            await ledger.lock_balance_for_update(user_id=user_without_balance.id, db=db)
            is None
        )
        with pytest.raises(PointsBalanceNotFoundError):
            await ledger.debit(user_id=user_without_balance.id, amount=1, db=db)


async def test_is_subscriber() -> None:
    ledger = PointsLedger()

    async with TestingSessionLocal() as db:
        assert await ledger.is_subscriber(user_id=subscriber.id, db=db)
        assert not await ledger.is_subscriber(user_id=user.id, db=db)
        assert not await ledger.is_subscriber(user_id=user_without_balance.id, db=db)


async def test_create_balance() -> None:
    new_user = await create_user_with_points(points=None)

    async with TestingSessionLocal() as db, db.begin():
        await cruds_points.create_balance(
            balance=models_points.PointsBalance(
                user_id=new_user.id,
                balance=42,
                updated_at=datetime.now(UTC),
            ),
            db=db,
        )

    assert await get_balance(new_user.id) == 42
