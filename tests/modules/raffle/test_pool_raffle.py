import hashlib
from collections import Counter

import pytest

from app.modules.raffle.pool_raffle import (
    HmacSha256Generator,
    LinearCongruentialGenerator,
    PoolEntry,
    TicketPool,
    get_generator,
    select_winners,
)
from app.modules.raffle.types_raffle import DrawAlgorithm

ENTRIES = [
    PoolEntry(entry_id=1, user_id=10, username="alice", tickets=5),
    PoolEntry(entry_id=2, user_id=20, username="bob", tickets=3),
    PoolEntry(entry_id=3, user_id=30, username="carol", tickets=2),
]


def seed_for(index: int) -> bytes:
    return hashlib.sha256(str(index).encode()).digest()


def test_ticket_ranges_follow_entry_order() -> None:
    pool = TicketPool(reversed(ENTRIES))

    assert pool.total_tickets == 10
    assert len(pool) == 10
    assert [(r.entry.entry_id, r.start, r.end) for r in pool.ranges] == [
        (1, 0, 5),
        (2, 5, 8),
        (3, 8, 10),
    ]


def test_entries_without_tickets_are_not_in_the_pool() -> None:
    pool = TicketPool(
        [*ENTRIES, PoolEntry(entry_id=4, user_id=40, username="dave", tickets=0)],
    )

    assert pool.total_tickets == 10
    assert pool.range_for_entry(4) is None


def test_range_for_ticket() -> None:
    pool = TicketPool(ENTRIES)

    assert pool.range_for_ticket(0).entry.entry_id == 1
    assert pool.range_for_ticket(4).entry.entry_id == 1
    assert pool.range_for_ticket(5).entry.entry_id == 2
    assert pool.range_for_ticket(7).entry.entry_id == 2
    assert pool.range_for_ticket(9).entry.entry_id == 3
    with pytest.raises(IndexError):
        pool.range_for_ticket(10)


def test_take_replaces_the_ticket_with_the_last_one() -> None:
    pool = TicketPool(ENTRIES)

    assert pool.take(0) == 0
    assert len(pool) == 9
    # The last ticket took the place of the removed one
    assert pool.take(0) == 9
    assert pool.take(len(pool) - 1) == 7
    assert len(pool) == 7


def test_lcg_is_seeded_with_the_first_six_bytes() -> None:
    seed = bytes(6) + b"ignored bytes"
    generator = LinearCongruentialGenerator(seed)

    assert generator.state == 0
    # The first state is the increment, whose 32 high bits are zero
    assert generator.next_below(10) == 0
    assert generator.state == LinearCongruentialGenerator.INCREMENT


def test_generators_are_deterministic() -> None:
    for algorithm in DrawAlgorithm:
        first = get_generator(algorithm, seed_for(1))
        second = get_generator(algorithm, seed_for(1))
        assert [first.next_below(1000) for _ in range(20)] == [
            second.next_below(1000) for _ in range(20)
        ]


def test_get_generator() -> None:
    assert isinstance(
        get_generator(DrawAlgorithm.lcg, seed_for(0)),
        LinearCongruentialGenerator,
    )
    assert isinstance(
        get_generator(DrawAlgorithm.hmac_sha256, seed_for(0)),
        HmacSha256Generator,
    )


def test_select_winners_with_zero_seed() -> None:
    winners = select_winners(ENTRIES, bytes(32), 1)

    assert len(winners) == 1
    assert winners[0].entry.entry_id == 1
    assert winners[0].selected_ticket_index == 0
    assert winners[0].spin_number == 1
    assert (winners[0].ticket_range_start, winners[0].ticket_range_end) == (0, 5)
    assert not winners[0].is_rigged


@pytest.mark.parametrize("algorithm", list(DrawAlgorithm))
def test_select_winners_is_reproducible(algorithm: DrawAlgorithm) -> None:
    for index in range(50):
        assert select_winners(
            ENTRIES,
            seed_for(index),
            2,
            algorithm,
        ) == select_winners(ENTRIES, seed_for(index), 2, algorithm)


@pytest.mark.parametrize("algorithm", list(DrawAlgorithm))
def test_two_winners_are_distinct(algorithm: DrawAlgorithm) -> None:
    for index in range(200):
        winners = select_winners(ENTRIES, seed_for(index), 2, algorithm)

        assert len(winners) == 2
        assert winners[0].entry.entry_id != winners[1].entry.entry_id
        assert [winner.spin_number for winner in winners] == [1, 2]


@pytest.mark.parametrize("algorithm", list(DrawAlgorithm))
def test_first_winner_frequency_is_proportional_to_tickets(
    algorithm: DrawAlgorithm,
) -> None:
    draws = 4000
    counter = Counter(
        select_winners(ENTRIES, seed_for(index), 2, algorithm)[0].entry.entry_id
        for index in range(draws)
    )

    assert counter[1] / draws == pytest.approx(0.5, abs=0.05)
    assert counter[2] / draws == pytest.approx(0.3, abs=0.05)
    assert counter[3] / draws == pytest.approx(0.2, abs=0.05)


def test_single_ticket_with_more_winners_requested() -> None:
    entries = [PoolEntry(entry_id=7, user_id=70, username="erin", tickets=1)]

    winners = select_winners(entries, seed_for(0), 3)

    assert len(winners) == 1
    assert winners[0].entry.entry_id == 7
    assert winners[0].selected_ticket_index == 0


def test_duplicates_are_allowed_when_entries_are_missing() -> None:
    entries = [
        PoolEntry(entry_id=1, user_id=10, username="alice", tickets=3),
        PoolEntry(entry_id=2, user_id=20, username="bob", tickets=1),
    ]

    for index in range(50):
        winners = select_winners(entries, seed_for(index), 3)

        assert len(winners) == 3
        # Each ticket can only be drawn once
        tickets = [winner.selected_ticket_index for winner in winners]
        assert len(set(tickets)) == 3
        assert Counter(winner.entry.entry_id for winner in winners)[1] >= 2


def test_winners_are_limited_by_total_tickets() -> None:
    entries = [
        PoolEntry(entry_id=1, user_id=10, username="alice", tickets=1),
        PoolEntry(entry_id=2, user_id=20, username="bob", tickets=1),
    ]

    winners = select_winners(entries, seed_for(3), 5)

    assert len(winners) == 2
    assert {winner.entry.entry_id for winner in winners} == {1, 2}


def test_rigged_winners_take_the_first_slots() -> None:
    winners = select_winners(ENTRIES, seed_for(0), 2, rigged_entry_ids=[3])

    assert winners[0].entry.entry_id == 3
    assert winners[0].is_rigged
    assert winners[0].selected_ticket_index is None
    assert (winners[0].ticket_range_start, winners[0].ticket_range_end) == (8, 10)
    # A rigged entry already won, it can not be drawn again
    assert winners[1].entry.entry_id in {1, 2}
    assert not winners[1].is_rigged
    assert winners[1].spin_number == 2


def test_rigged_winners_are_limited_to_the_winner_count() -> None:
    winners = select_winners(ENTRIES, seed_for(0), 1, rigged_entry_ids=[2, 3])

    assert len(winners) == 1
    assert winners[0].entry.entry_id == 2


def test_unknown_rigged_entries_are_ignored() -> None:
    winners = select_winners(ENTRIES, seed_for(0), 1, rigged_entry_ids=[42])

    assert len(winners) == 1
    assert not winners[0].is_rigged


def test_empty_pool_selects_no_winner() -> None:
    assert select_winners([], seed_for(0), 2) == []


def test_rigged_entry_tickets_are_removed_from_the_pool() -> None:
    entries = [PoolEntry(entry_id=1, user_id=10, username="alice", tickets=1)]

    winners = select_winners(entries, bytes(32), 3, rigged_entry_ids=[1])

    assert len(winners) == 1
    assert winners[0].is_rigged


def test_rigged_entry_does_not_win_again_when_duplicates_are_allowed() -> None:
    entries = [
        PoolEntry(entry_id=1, user_id=10, username="alice", tickets=1),
        PoolEntry(entry_id=2, user_id=20, username="bob", tickets=2),
    ]

    for index in range(50):
        winners = select_winners(entries, seed_for(index), 5, rigged_entry_ids=[1])

        # The winner count is bounded by the total number of tickets
        assert len(winners) == 3
        assert [winner.entry.entry_id for winner in winners] == [1, 2, 2]
        assert [winner.is_rigged for winner in winners] == [True, False, False]


def test_remove_entry_keeps_the_other_tickets() -> None:
    pool = TicketPool(ENTRIES)

    pool.remove_entry(2)

    assert len(pool) == 7
    drawn = sorted(pool.take(0) for _ in range(len(pool)))
    assert drawn == [0, 1, 2, 3, 4, 8, 9]
