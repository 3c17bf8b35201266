from datetime import datetime
from typing import Self

from pydantic import BaseModel, ConfigDict, Field

from app.modules.raffle.types_raffle import (
    DrawAlgorithm,
    RaffleEntrySource,
    RaffleErrorKind,
    RaffleStatusType,
)


class TicketPurchase(BaseModel):
    user_id: int
    quantity: int


class DrawRequest(BaseModel):
    """If `number_of_winners` is not provided, the number configured on the raffle is used"""

    number_of_winners: int | None = None


class ManualEntryGrant(BaseModel):
    # A user id or a username
    user: str
    tickets: int


class RiggingEdit(BaseModel):
    rigging_enabled: bool
    entry_ids: list[int] = Field(default_factory=list)


class RaffleOperationResult(BaseModel):
    """
    Result of a purchase, a manual grant or a draw. Failed operations carry an error kind and a displayable message
    """

    success: bool = True
    error: RaffleErrorKind | None = None
    message: str | None = None

    @classmethod
    def failure(cls, error: RaffleErrorKind, message: str) -> Self:
        return cls(success=False, error=error, message=message)


class PurchaseResult(RaffleOperationResult):
    tickets_purchased: int | None = None
    # Tickets held by the user in the raffle after the purchase
    entry_tickets: int | None = None
    new_balance: int | None = None


class EntryComplete(BaseModel):
    id: int
    raffle_id: int
    user_id: int
    username: str
    tickets: int
    source: RaffleEntrySource
    created_at: datetime


class ManualEntryResult(RaffleOperationResult):
    entry: EntryComplete | None = None


class WinnerSelection(BaseModel):
    entry_id: int
    user_id: int
    username: str
    tickets: int
    spin_number: int
    selected_ticket_index: int | None
    ticket_range_start: int
    ticket_range_end: int
    is_rigged: bool


class DrawResult(RaffleOperationResult):
    winners: list[WinnerSelection] = Field(default_factory=list)
    draw_seed: str | None = None
    draw_algorithm: DrawAlgorithm | None = None
    total_tickets: int | None = None
    winners_requested: int | None = None


class DrawVerification(RaffleOperationResult):
    """
    The draw replayed from the stored seed. `verified` is True if the replayed winners are the stored ones
    """

    verified: bool = False
    draw_seed: str | None = None
    draw_algorithm: DrawAlgorithm | None = None
    total_tickets: int | None = None
    winners: list[WinnerSelection] = Field(default_factory=list)


class RaffleComplete(BaseModel):
    id: int
    title: str
    description: str | None
    ticket_cost: int
    start_at: datetime
    end_at: datetime
    max_tickets_per_user: int | None
    total_tickets_cap: int | None
    status: RaffleStatusType
    sub_only: bool
    hidden_until_start: bool
    number_of_winners: int
    rigging_enabled: bool
    draw_seed: str | None
    draw_algorithm: DrawAlgorithm | None
    draw_total_tickets: int | None
    drawn_at: datetime | None

    model_config = ConfigDict(from_attributes=True)


class RaffleStats(BaseModel):
    total_entries: int
    total_tickets: int
    points_collected: int
    # None if the raffle has no total cap
    remaining_tickets: int | None


class WinnerComplete(BaseModel):
    id: int
    raffle_id: int
    entry_id: int
    user_id: int
    username: str
    tickets: int
    spin_number: int
    selected_ticket_index: int | None
    is_rigged: bool
    selected_at: datetime


class UserEntry(EntryComplete):
    raffle_title: str
    raffle_status: RaffleStatusType
    has_won: bool


class PurchaseComplete(BaseModel):
    id: int
    raffle_id: int
    user_id: int
    quantity: int
    points_spent: int
    balance_after: int
    created_at: datetime

    model_config = ConfigDict(from_attributes=True)
