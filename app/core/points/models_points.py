from datetime import datetime

from sqlalchemy import ForeignKey
from sqlalchemy.orm import Mapped, mapped_column

from app.types.sqlalchemy import Base


class PointsBalance(Base):
    """
    Points are earned outside of the raffle engine. Ticket purchases only debit them.
    """

    __tablename__ = "points_balance"

    user_id: Mapped[int] = mapped_column(
        ForeignKey("core_user.id"),
        primary_key=True,
    )
    balance: Mapped[int]
    updated_at: Mapped[datetime]
    is_subscriber: Mapped[bool] = mapped_column(default=False)
