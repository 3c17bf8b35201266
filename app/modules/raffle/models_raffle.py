"""Models file for module raffle"""

from datetime import datetime

from sqlalchemy import CheckConstraint, ForeignKey, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column, relationship

from app.core.users.models_users import CoreUser
from app.modules.raffle.types_raffle import (
    DrawAlgorithm,
    RaffleEntrySource,
    RaffleStatusType,
)
from app.types.sqlalchemy import Base, PrimaryKey


class Raffle(Base):
    __tablename__ = "raffle"
    __table_args__ = (
        CheckConstraint("ticket_cost > 0", name="raffle_ticket_cost_positive"),
        CheckConstraint(
            "number_of_winners >= 1",
            name="raffle_number_of_winners_positive",
        ),
    )

    id: Mapped[PrimaryKey] = mapped_column(init=False)
    title: Mapped[str]
    # Points per ticket
    ticket_cost: Mapped[int]
    start_at: Mapped[datetime]
    end_at: Mapped[datetime]
    description: Mapped[str | None] = mapped_column(default=None)

    max_tickets_per_user: Mapped[int | None] = mapped_column(default=None)
    total_tickets_cap: Mapped[int | None] = mapped_column(default=None)

    status: Mapped[RaffleStatusType] = mapped_column(
        default=RaffleStatusType.upcoming,
    )
    sub_only: Mapped[bool] = mapped_column(default=False)
    hidden_until_start: Mapped[bool] = mapped_column(default=False)
    # Overwritten with the requested number of winners when the raffle is drawn
    number_of_winners: Mapped[int] = mapped_column(default=1)
    rigging_enabled: Mapped[bool] = mapped_column(default=False)

    # Set once, by the draw. Together with the entries, they allow to replay the draw
    draw_seed: Mapped[str | None] = mapped_column(default=None)
    draw_algorithm: Mapped[DrawAlgorithm | None] = mapped_column(default=None)
    draw_total_tickets: Mapped[int | None] = mapped_column(default=None)
    drawn_at: Mapped[datetime | None] = mapped_column(default=None)


class RaffleEntry(Base):
    """
    Tickets held by a user in a raffle. There is at most one entry per user and raffle
    """

    __tablename__ = "raffle_entry"
    __table_args__ = (
        UniqueConstraint("raffle_id", "user_id"),
        CheckConstraint("tickets >= 1", name="raffle_entry_tickets_positive"),
    )

    id: Mapped[PrimaryKey] = mapped_column(init=False)
    raffle_id: Mapped[int] = mapped_column(ForeignKey("raffle.id"), index=True)
    user_id: Mapped[int] = mapped_column(ForeignKey("core_user.id"), index=True)
    tickets: Mapped[int]
    source: Mapped[RaffleEntrySource]
    created_at: Mapped[datetime]

    user: Mapped[CoreUser] = relationship(
        "CoreUser",
        lazy="joined",
        innerjoin=True,
        init=False,
    )


class RaffleWinner(Base):
    __tablename__ = "raffle_winner"

    id: Mapped[PrimaryKey] = mapped_column(init=False)
    raffle_id: Mapped[int] = mapped_column(ForeignKey("raffle.id"), index=True)
    entry_id: Mapped[int] = mapped_column(ForeignKey("raffle_entry.id"))
    # 1-based slot of the winner in the draw
    spin_number: Mapped[int]
    # Ticket number drawn from the pool, None for rigged winners
    selected_ticket_index: Mapped[int | None]
    is_rigged: Mapped[bool]
    selected_at: Mapped[datetime]

    entry: Mapped[RaffleEntry] = relationship(
        "RaffleEntry",
        lazy="joined",
        innerjoin=True,
        init=False,
    )


class RaffleRiggedWinner(Base):
    """
    Predetermined winner configured by an administrator. Only used when the raffle has `rigging_enabled`
    """

    __tablename__ = "raffle_rigged_winner"
    __table_args__ = (UniqueConstraint("raffle_id", "position"),)

    id: Mapped[PrimaryKey] = mapped_column(init=False)
    raffle_id: Mapped[int] = mapped_column(ForeignKey("raffle.id"), index=True)
    entry_id: Mapped[int] = mapped_column(ForeignKey("raffle_entry.id"))
    position: Mapped[int]


class RafflePurchase(Base):
    """
    Purchase history. Each row matches exactly one debit of the points balance
    """

    __tablename__ = "raffle_purchase"

    id: Mapped[PrimaryKey] = mapped_column(init=False)
    raffle_id: Mapped[int] = mapped_column(ForeignKey("raffle.id"), index=True)
    user_id: Mapped[int] = mapped_column(ForeignKey("core_user.id"), index=True)
    quantity: Mapped[int]
    points_spent: Mapped[int]
    balance_after: Mapped[int]
    created_at: Mapped[datetime]
