from datetime import datetime

from sqlalchemy.orm import Mapped, mapped_column

from app.types.sqlalchemy import Base, PrimaryKey


class CoreUser(Base):
    """
    Users are created by the authentication service. The raffle engine only reads them.
    """

    __tablename__ = "core_user"

    id: Mapped[PrimaryKey] = mapped_column(init=False)
    username: Mapped[str] = mapped_column(unique=True, index=True)
    created_on: Mapped[datetime | None] = mapped_column(default=None)
