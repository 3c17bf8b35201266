import pytest_asyncio
from fastapi.testclient import TestClient

from app.core.users import models_users
from app.modules.raffle import models_raffle
from app.modules.raffle.types_raffle import RaffleStatusType
from tests.commons import (
    create_entry,
    create_raffle,
    create_user_with_points,
)

rich_user: models_users.CoreUser
poor_user: models_users.CoreUser
subscriber_user: models_users.CoreUser
raffle: models_raffle.Raffle
capped_raffle: models_raffle.Raffle
subscriber_raffle: models_raffle.Raffle
raffle_to_draw: models_raffle.Raffle
cancelled_raffle: models_raffle.Raffle


@pytest_asyncio.fixture(scope="module", autouse=True)
async def init_objects() -> None:
    global \
        rich_user, \
        poor_user, \
        subscriber_user, \
        raffle, \
        capped_raffle, \
        subscriber_raffle, \
        raffle_to_draw, \
        cancelled_raffle

    rich_user = await create_user_with_points(points=1000, username="rich_user")
    poor_user = await create_user_with_points(points=5, username="poor_user")
    subscriber_user = await create_user_with_points(
        points=100,
        is_subscriber=True,
    )

    raffle = await create_raffle(title="The best raffle", ticket_cost=10)
    capped_raffle = await create_raffle(
        title="Capped raffle",
        ticket_cost=1,
        total_tickets_cap=3,
    )
    subscriber_raffle = await create_raffle(title="Subscribers raffle", sub_only=True)
    raffle_to_draw = await create_raffle(
        title="Raffle to draw",
        number_of_winners=2,
    )
    cancelled_raffle = await create_raffle(
        title="Cancelled raffle",
        status=RaffleStatusType.cancelled,
    )

    await create_entry(raffle=raffle_to_draw, user=poor_user, tickets=3)
    await create_entry(raffle=raffle_to_draw, user=subscriber_user, tickets=1)


def test_read_raffle(client: TestClient) -> None:
    response = client.get(f"/raffle/raffles/{raffle.id}")

    assert response.status_code == 200
    assert response.json()["title"] == "The best raffle"
    assert response.json()["status"] == "active"


def test_read_unknown_raffle(client: TestClient) -> None:
    response = client.get("/raffle/raffles/123456789")

    assert response.status_code == 404


def test_purchase_tickets(client: TestClient) -> None:
    response = client.post(
        f"/raffle/raffles/{raffle.id}/purchase",
        json={"user_id": rich_user.id, "quantity": 3},
    )

    assert response.status_code == 201
    assert response.json()["success"]
    assert response.json()["tickets_purchased"] == 3
    assert response.json()["new_balance"] == 970

    response = client.get(f"/points/users/{rich_user.id}")
    assert response.json()["balance"] == 970


def test_purchase_with_insufficient_balance(client: TestClient) -> None:
    response = client.post(
        f"/raffle/raffles/{raffle.id}/purchase",
        json={"user_id": poor_user.id, "quantity": 1},
    )

    assert response.status_code == 400
    assert response.json() == {
        "success": False,
        "error": "InsufficientBalance",
        "message": "Insufficient points. You need 10 points but only have 5.",
    }


def test_purchase_sold_out(client: TestClient) -> None:
    response = client.post(
        f"/raffle/raffles/{capped_raffle.id}/purchase",
        json={"user_id": rich_user.id, "quantity": 4},
    )

    assert response.status_code == 409
    assert response.json()["error"] == "SoldOut"
    assert response.json()["message"] == "Raffle is sold out. Only 3 tickets remaining."


def test_purchase_subscriber_only(client: TestClient) -> None:
    response = client.post(
        f"/raffle/raffles/{subscriber_raffle.id}/purchase",
        json={"user_id": rich_user.id, "quantity": 1},
    )

    assert response.status_code == 403
    assert response.json()["error"] == "SubscriberRequired"


def test_purchase_unknown_raffle(client: TestClient) -> None:
    response = client.post(
        "/raffle/raffles/123456789/purchase",
        json={"user_id": rich_user.id, "quantity": 1},
    )

    assert response.status_code == 404
    assert response.json()["error"] == "NotFound"


def test_purchase_cancelled_raffle(client: TestClient) -> None:
    response = client.post(
        f"/raffle/raffles/{cancelled_raffle.id}/purchase",
        json={"user_id": rich_user.id, "quantity": 1},
    )

    assert response.status_code == 400
    assert response.json()["error"] == "RaffleNotActive"


def test_purchase_with_invalid_body(client: TestClient) -> None:
    response = client.post(
        f"/raffle/raffles/{raffle.id}/purchase",
        json={"user_id": rich_user.id},
    )

    assert response.status_code == 422


def test_grant_manual_entry(client: TestClient) -> None:
    response = client.post(
        f"/raffle/raffles/{capped_raffle.id}/entries/manual",
        json={"user": "poor_user", "tickets": 2},
    )

    assert response.status_code == 201
    assert response.json()["entry"]["user_id"] == poor_user.id
    assert response.json()["entry"]["tickets"] == 2
    assert response.json()["entry"]["source"] == "manual"


def test_grant_manual_entry_to_unknown_user(client: TestClient) -> None:
    response = client.post(
        f"/raffle/raffles/{capped_raffle.id}/entries/manual",
        json={"user": "unknown_user", "tickets": 1},
    )

    assert response.status_code == 404
    assert response.json()["error"] == "NotFound"


def test_read_raffle_stats(client: TestClient) -> None:
    response = client.get(f"/raffle/raffles/{raffle.id}/stats")

    assert response.status_code == 200
    assert response.json() == {
        "total_entries": 1,
        "total_tickets": 3,
        "points_collected": 30,
        "remaining_tickets": None,
    }

    response = client.get(f"/raffle/raffles/{capped_raffle.id}/stats")

    assert response.json()["remaining_tickets"] == 1
    # Manual entries are free
    assert response.json()["points_collected"] == 0


def test_read_raffle_entries(client: TestClient) -> None:
    response = client.get(f"/raffle/raffles/{raffle.id}/entries")

    assert response.status_code == 200
    assert len(response.json()) == 1
    assert response.json()[0]["username"] == "rich_user"
    assert response.json()[0]["tickets"] == 3
    assert response.json()[0]["source"] == "purchased"


def test_edit_rigging_with_foreign_entry(client: TestClient) -> None:
    entries = client.get(f"/raffle/raffles/{raffle.id}/entries").json()

    response = client.patch(
        f"/raffle/raffles/{raffle_to_draw.id}/rigging",
        json={"rigging_enabled": True, "entry_ids": [entries[0]["id"]]},
    )

    assert response.status_code == 400
    assert response.json()["error"] == "InvalidRigging"


def test_verify_raffle_not_drawn(client: TestClient) -> None:
    response = client.get(f"/raffle/raffles/{raffle_to_draw.id}/draw/verification")

    assert response.status_code == 400
    assert response.json()["error"] == "NotDrawn"


def test_draw_raffle(client: TestClient) -> None:
    # Without a body, the configured number of winners is drawn
    response = client.post(f"/raffle/raffles/{raffle_to_draw.id}/draw")

    assert response.status_code == 201
    assert response.json()["success"]
    assert response.json()["winners_requested"] == 2
    assert response.json()["total_tickets"] == 4
    assert {winner["user_id"] for winner in response.json()["winners"]} == {
        poor_user.id,
        subscriber_user.id,
    }

    response = client.get(f"/raffle/raffles/{raffle_to_draw.id}")
    assert response.json()["status"] == "completed"
    assert response.json()["draw_seed"] is not None


def test_draw_raffle_twice(client: TestClient) -> None:
    response = client.post(f"/raffle/raffles/{raffle_to_draw.id}/draw", json={})

    assert response.status_code == 409
    assert response.json()["error"] == "AlreadyDrawn"


def test_edit_rigging_after_draw(client: TestClient) -> None:
    response = client.patch(
        f"/raffle/raffles/{raffle_to_draw.id}/rigging",
        json={"rigging_enabled": False, "entry_ids": []},
    )

    assert response.status_code == 409


def test_read_raffle_winners(client: TestClient) -> None:
    response = client.get(f"/raffle/raffles/{raffle_to_draw.id}/winners")

    assert response.status_code == 200
    assert [winner["spin_number"] for winner in response.json()] == [1, 2]
    assert {winner["username"] for winner in response.json()} == {
        "poor_user",
        subscriber_user.username,
    }


def test_verify_raffle_draw(client: TestClient) -> None:
    response = client.get(f"/raffle/raffles/{raffle_to_draw.id}/draw/verification")

    assert response.status_code == 200
    assert response.json()["verified"]


def test_draw_raffle_without_entries(client: TestClient) -> None:
    response = client.post(
        f"/raffle/raffles/{subscriber_raffle.id}/draw",
        json={"number_of_winners": 1},
    )

    assert response.status_code == 400
    assert response.json()["error"] == "NoEntries"


def test_read_user_entries(client: TestClient) -> None:
    response = client.get(f"/raffle/users/{poor_user.id}/entries")

    assert response.status_code == 200
    entries = {entry["raffle_id"]: entry for entry in response.json()}
    assert entries[raffle_to_draw.id]["has_won"]
    assert entries[raffle_to_draw.id]["raffle_status"] == "completed"
    assert not entries[capped_raffle.id]["has_won"]
    assert entries[capped_raffle.id]["raffle_title"] == "Capped raffle"


def test_read_user_purchases(client: TestClient) -> None:
    response = client.get(f"/raffle/users/{rich_user.id}/purchases")

    assert response.status_code == 200
    assert len(response.json()) == 1
    assert response.json()[0]["quantity"] == 3
    assert response.json()[0]["points_spent"] == 30
    assert response.json()[0]["balance_after"] == 970


def test_read_unknown_user_entries(client: TestClient) -> None:
    response = client.get("/raffle/users/123456789/entries")

    assert response.status_code == 404
