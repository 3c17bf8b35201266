"""raffle tables

Create Date: 2026-09-28 10:12:41.318204
"""

from collections.abc import Sequence
from datetime import UTC, datetime
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from pytest_alembic import MigrationContext

import sqlalchemy as sa
from alembic import op

from app.types.sqlalchemy import BigIntegerType, TZDateTime

# revision identifiers, used by Alembic.
revision: str = "4f0c9d2a7b13"
down_revision: str | None = None
branch_labels: str | Sequence[str] | None = None
depends_on: str | Sequence[str] | None = None

raffle_status_type = sa.Enum(
    "upcoming",
    "active",
    "drawing",
    "completed",
    "cancelled",
    name="rafflestatustype",
)
raffle_entry_source = sa.Enum("purchased", "manual", name="raffleentrysource")
draw_algorithm = sa.Enum("lcg", "hmac_sha256", name="drawalgorithm")


def upgrade() -> None:
    op.create_table(
        "core_user",
        sa.Column("id", BigIntegerType, autoincrement=True, nullable=False),
        sa.Column("username", sa.String(), nullable=False),
        sa.Column("created_on", TZDateTime(), nullable=True),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index(op.f("ix_core_user_id"), "core_user", ["id"], unique=False)
    op.create_index(
        op.f("ix_core_user_username"),
        "core_user",
        ["username"],
        unique=True,
    )

    op.create_table(
        "points_balance",
        sa.Column("user_id", BigIntegerType, nullable=False),
        sa.Column("balance", BigIntegerType, nullable=False),
        sa.Column("updated_at", TZDateTime(), nullable=False),
        sa.Column("is_subscriber", sa.Boolean(), nullable=False),
        sa.ForeignKeyConstraint(["user_id"], ["core_user.id"]),
        sa.PrimaryKeyConstraint("user_id"),
    )

    op.create_table(
        "raffle",
        sa.Column("id", BigIntegerType, autoincrement=True, nullable=False),
        sa.Column("title", sa.String(), nullable=False),
        sa.Column("ticket_cost", BigIntegerType, nullable=False),
        sa.Column("start_at", TZDateTime(), nullable=False),
        sa.Column("end_at", TZDateTime(), nullable=False),
        sa.Column("description", sa.String(), nullable=True),
        sa.Column("max_tickets_per_user", BigIntegerType, nullable=True),
        sa.Column("total_tickets_cap", BigIntegerType, nullable=True),
        sa.Column("status", raffle_status_type, nullable=False),
        sa.Column("sub_only", sa.Boolean(), nullable=False),
        sa.Column("hidden_until_start", sa.Boolean(), nullable=False),
        sa.Column("number_of_winners", BigIntegerType, nullable=False),
        sa.Column("rigging_enabled", sa.Boolean(), nullable=False),
        sa.Column("draw_seed", sa.String(), nullable=True),
        sa.Column("draw_algorithm", draw_algorithm, nullable=True),
        sa.Column("draw_total_tickets", BigIntegerType, nullable=True),
        sa.Column("drawn_at", TZDateTime(), nullable=True),
        sa.CheckConstraint("ticket_cost > 0", name="raffle_ticket_cost_positive"),
        sa.CheckConstraint(
            "number_of_winners >= 1",
            name="raffle_number_of_winners_positive",
        ),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index(op.f("ix_raffle_id"), "raffle", ["id"], unique=False)

    op.create_table(
        "raffle_entry",
        sa.Column("id", BigIntegerType, autoincrement=True, nullable=False),
        sa.Column("raffle_id", BigIntegerType, nullable=False),
        sa.Column("user_id", BigIntegerType, nullable=False),
        sa.Column("tickets", BigIntegerType, nullable=False),
        sa.Column("source", raffle_entry_source, nullable=False),
        sa.Column("created_at", TZDateTime(), nullable=False),
        sa.CheckConstraint("tickets >= 1", name="raffle_entry_tickets_positive"),
        sa.ForeignKeyConstraint(["raffle_id"], ["raffle.id"]),
        sa.ForeignKeyConstraint(["user_id"], ["core_user.id"]),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("raffle_id", "user_id"),
    )
    op.create_index(op.f("ix_raffle_entry_id"), "raffle_entry", ["id"], unique=False)
    op.create_index(
        op.f("ix_raffle_entry_raffle_id"),
        "raffle_entry",
        ["raffle_id"],
        unique=False,
    )
    op.create_index(
        op.f("ix_raffle_entry_user_id"),
        "raffle_entry",
        ["user_id"],
        unique=False,
    )

    op.create_table(
        "raffle_winner",
        sa.Column("id", BigIntegerType, autoincrement=True, nullable=False),
        sa.Column("raffle_id", BigIntegerType, nullable=False),
        sa.Column("entry_id", BigIntegerType, nullable=False),
        sa.Column("spin_number", BigIntegerType, nullable=False),
        sa.Column("selected_ticket_index", BigIntegerType, nullable=True),
        sa.Column("is_rigged", sa.Boolean(), nullable=False),
        sa.Column("selected_at", TZDateTime(), nullable=False),
        sa.ForeignKeyConstraint(["entry_id"], ["raffle_entry.id"]),
        sa.ForeignKeyConstraint(["raffle_id"], ["raffle.id"]),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index(op.f("ix_raffle_winner_id"), "raffle_winner", ["id"], unique=False)
    op.create_index(
        op.f("ix_raffle_winner_raffle_id"),
        "raffle_winner",
        ["raffle_id"],
        unique=False,
    )

    op.create_table(
        "raffle_rigged_winner",
        sa.Column("id", BigIntegerType, autoincrement=True, nullable=False),
        sa.Column("raffle_id", BigIntegerType, nullable=False),
        sa.Column("entry_id", BigIntegerType, nullable=False),
        sa.Column("position", BigIntegerType, nullable=False),
        sa.ForeignKeyConstraint(["entry_id"], ["raffle_entry.id"]),
        sa.ForeignKeyConstraint(["raffle_id"], ["raffle.id"]),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("raffle_id", "position"),
    )
    op.create_index(
        op.f("ix_raffle_rigged_winner_id"),
        "raffle_rigged_winner",
        ["id"],
        unique=False,
    )
    op.create_index(
        op.f("ix_raffle_rigged_winner_raffle_id"),
        "raffle_rigged_winner",
        ["raffle_id"],
        unique=False,
    )

    op.create_table(
        "raffle_purchase",
        sa.Column("id", BigIntegerType, autoincrement=True, nullable=False),
        sa.Column("raffle_id", BigIntegerType, nullable=False),
        sa.Column("user_id", BigIntegerType, nullable=False),
        sa.Column("quantity", BigIntegerType, nullable=False),
        sa.Column("points_spent", BigIntegerType, nullable=False),
        sa.Column("balance_after", BigIntegerType, nullable=False),
        sa.Column("created_at", TZDateTime(), nullable=False),
        sa.ForeignKeyConstraint(["raffle_id"], ["raffle.id"]),
        sa.ForeignKeyConstraint(["user_id"], ["core_user.id"]),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index(
        op.f("ix_raffle_purchase_id"),
        "raffle_purchase",
        ["id"],
        unique=False,
    )
    op.create_index(
        op.f("ix_raffle_purchase_raffle_id"),
        "raffle_purchase",
        ["raffle_id"],
        unique=False,
    )
    op.create_index(
        op.f("ix_raffle_purchase_user_id"),
        "raffle_purchase",
        ["user_id"],
        unique=False,
    )


def downgrade() -> None:
    op.drop_table("raffle_purchase")
    op.drop_table("raffle_rigged_winner")
    op.drop_table("raffle_winner")
    op.drop_table("raffle_entry")
    op.drop_table("raffle")
    op.drop_table("points_balance")
    op.drop_table("core_user")

    draw_algorithm.drop(op.get_bind(), checkfirst=True)
    raffle_entry_source.drop(op.get_bind(), checkfirst=True)
    raffle_status_type.drop(op.get_bind(), checkfirst=True)


def pre_test_upgrade(
    alembic_runner: "MigrationContext",
    alembic_connection: sa.Connection,
) -> None:
    pass


def test_upgrade(
    alembic_runner: "MigrationContext",
    alembic_connection: sa.Connection,
) -> None:
    alembic_connection.execute(
        sa.text(
            "INSERT INTO core_user (id, username) VALUES (1, 'migration_user')",
        ),
    )
    alembic_connection.execute(
        sa.text(
            "INSERT INTO raffle (id, title, ticket_cost, start_at, end_at, status, sub_only, hidden_until_start, number_of_winners, rigging_enabled) "
            "VALUES (1, 'Migration raffle', 10, :start_at, :end_at, 'active', false, false, 1, false)",
        ),
        {
            "start_at": datetime(2026, 1, 1, tzinfo=UTC).replace(tzinfo=None),
            "end_at": datetime(2026, 2, 1, tzinfo=UTC).replace(tzinfo=None),
        },
    )
    alembic_connection.execute(
        sa.text(
            "INSERT INTO raffle_entry (raffle_id, user_id, tickets, source, created_at) "
            "VALUES (1, 1, 3, 'purchased', :created_at)",
        ),
        {"created_at": datetime(2026, 1, 2, tzinfo=UTC).replace(tzinfo=None)},
    )
    tickets = alembic_connection.execute(
        sa.text("SELECT tickets FROM raffle_entry WHERE raffle_id = 1 AND user_id = 1"),
    ).scalar_one()
    assert tickets == 3
