"""
Winner selection for raffle draws.

This module does not access the database: a draw can be replayed offline from its seed,
its generator and the snapshot of the entries.
"""

import hashlib
import hmac
from bisect import bisect_right
from collections.abc import Iterable, Sequence
from dataclasses import dataclass
from typing import Protocol

from app.modules.raffle.types_raffle import DrawAlgorithm


@dataclass(frozen=True)
class PoolEntry:
    entry_id: int
    user_id: int
    username: str
    tickets: int


@dataclass(frozen=True)
class TicketRange:
    """
    Tickets `[start, end)` of the pool belong to `entry`
    """

    entry: PoolEntry
    start: int
    end: int


@dataclass(frozen=True)
class SelectedWinner:
    entry: PoolEntry
    spin_number: int
    # None for rigged winners, which are not drawn from the pool
    selected_ticket_index: int | None
    ticket_range_start: int
    ticket_range_end: int
    is_rigged: bool


class TicketPool:
    """
    One ticket per chance: an entry holding `n` tickets owns `n` consecutive ticket numbers.

    Entries are ordered by their identifier so that the same entries always give the same pool.
    Tickets taken out of the pool can not be drawn again.
    """

    def __init__(self, entries: Iterable[PoolEntry]):
        self.ranges: list[TicketRange] = []
        self._starts: list[int] = []
        self._ranges_by_entry_id: dict[int, TicketRange] = {}

        cursor = 0
        for entry in sorted(entries, key=lambda entry: entry.entry_id):
            if entry.tickets <= 0:
                continue
            ticket_range = TicketRange(
                entry=entry,
                start=cursor,
                end=cursor + entry.tickets,
            )
            self.ranges.append(ticket_range)
            self._starts.append(cursor)
            self._ranges_by_entry_id[entry.entry_id] = ticket_range
            cursor += entry.tickets

        self.total_tickets = cursor
        self._remaining = list(range(cursor))

    def __len__(self) -> int:
        return len(self._remaining)

    def take(self, position: int) -> int:
        """
        Remove the ticket at `position` in the remaining tickets and return its ticket number.
        The last remaining ticket takes the place of the removed one.
        """
        ticket = self._remaining[position]
        last = self._remaining.pop()
        if position < len(self._remaining):
            self._remaining[position] = last
        return ticket

    def remove_entry(self, entry_id: int) -> None:
        """
        Take all the remaining tickets of the entry out of the pool, keeping the order of the other tickets
        """
        ticket_range = self._ranges_by_entry_id.get(entry_id)
        if ticket_range is None:
            return
        self._remaining = [
            ticket
            for ticket in self._remaining
            if not ticket_range.start <= ticket < ticket_range.end
        ]

    def range_for_ticket(self, ticket: int) -> TicketRange:
        if not 0 <= ticket < self.total_tickets:
            raise IndexError(ticket)
        return self.ranges[bisect_right(self._starts, ticket) - 1]

    def range_for_entry(self, entry_id: int) -> TicketRange | None:
        return self._ranges_by_entry_id.get(entry_id)


class RandomGenerator(Protocol):
    def next_below(self, bound: int) -> int: ...


class LinearCongruentialGenerator:
    """
    48 bits linear congruential generator, seeded with the first 6 bytes of the draw seed.
    Each value is made of the 32 high bits of the state.
    """

    MULTIPLIER = 0x5DEECE66D
    INCREMENT = 0xB
    MODULUS = 1 << 48

    def __init__(self, seed: bytes):
        self.state = int.from_bytes(seed[:6], "big") % self.MODULUS

    def next_below(self, bound: int) -> int:
        self.state = (self.MULTIPLIER * self.state + self.INCREMENT) % self.MODULUS
        return (self.state >> 16) % bound


class HmacSha256Generator:
    """
    Each value is the HMAC-SHA256 of a counter, keyed by the hexadecimal draw seed.
    The first 8 bytes of the digest are read as a big endian integer.
    """

    def __init__(self, seed: bytes):
        self.key = seed.hex().encode()
        self.counter = 0

    def next_below(self, bound: int) -> int:
        digest = hmac.new(
            self.key,
            str(self.counter).encode(),
            hashlib.sha256,
        ).digest()
        self.counter += 1
        return int.from_bytes(digest[:8], "big") % bound


def get_generator(algorithm: DrawAlgorithm, seed: bytes) -> RandomGenerator:
    if algorithm == DrawAlgorithm.hmac_sha256:
        return HmacSha256Generator(seed)
    return LinearCongruentialGenerator(seed)


def select_winners(
    entries: Sequence[PoolEntry],
    seed: bytes,
    number_of_winners: int,
    algorithm: DrawAlgorithm = DrawAlgorithm.lcg,
    rigged_entry_ids: Sequence[int] = (),
) -> list[SelectedWinner]:
    """
    Select up to `number_of_winners` winners from the tickets of `entries`.

    Rigged entries, in the provided order, take the first slots without drawing any ticket.
    Their tickets are taken out of the pool, so a rigged entry wins exactly once.
    The remaining slots are drawn from the pool: each drawn ticket is removed from it.
    An entry can only win once, unless fewer entries than winners were requested.
    If the pool is exhausted first, fewer winners than requested are returned.
    """
    pool = TicketPool(entries)
    generator = get_generator(algorithm, seed)

    winners: list[SelectedWinner] = []
    winning_entry_ids: set[int] = set()

    for entry_id in rigged_entry_ids:
        if len(winners) >= number_of_winners:
            break
        ticket_range = pool.range_for_entry(entry_id)
        if ticket_range is None or entry_id in winning_entry_ids:
            continue
        pool.remove_entry(entry_id)
        winners.append(
            SelectedWinner(
                entry=ticket_range.entry,
                spin_number=len(winners) + 1,
                selected_ticket_index=None,
                ticket_range_start=ticket_range.start,
                ticket_range_end=ticket_range.end,
                is_rigged=True,
            ),
        )
        winning_entry_ids.add(entry_id)

    allow_duplicates = number_of_winners > len(pool.ranges)

    while len(winners) < number_of_winners and len(pool) > 0:
        ticket = pool.take(generator.next_below(len(pool)))
        ticket_range = pool.range_for_ticket(ticket)

        if not allow_duplicates and ticket_range.entry.entry_id in winning_entry_ids:
            continue

        winners.append(
            SelectedWinner(
                entry=ticket_range.entry,
                spin_number=len(winners) + 1,
                selected_ticket_index=ticket,
                ticket_range_start=ticket_range.start,
                ticket_range_end=ticket_range.end,
                is_rigged=False,
            ),
        )
        winning_entry_ids.add(ticket_range.entry.entry_id)

    return winners
