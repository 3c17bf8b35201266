"""File defining the functions called by the endpoints, making queries to the table using the models"""

from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.users import models_users


async def get_user_by_id(
    db: AsyncSession,
    user_id: int,
) -> models_users.CoreUser | None:
    result = await db.execute(
        select(models_users.CoreUser).where(models_users.CoreUser.id == user_id),
    )
    return result.scalars().first()


async def get_user_by_username(
    db: AsyncSession,
    username: str,
) -> models_users.CoreUser | None:
    """Usernames are compared case insensitively, an exact match is preferred"""

    result = await db.execute(
        select(models_users.CoreUser).where(
            models_users.CoreUser.username == username,
        ),
    )
    user = result.scalars().first()
    if user is not None:
        return user

    result = await db.execute(
        select(models_users.CoreUser)
        .where(
            func.lower(models_users.CoreUser.username) == username.lower(),
        )
        .order_by(models_users.CoreUser.id),
    )
    return result.scalars().first()


async def get_user_by_id_or_username(
    db: AsyncSession,
    user_id_or_username: str,
) -> models_users.CoreUser | None:
    """
    Resolve a user from a numeric identifier first, then from its username
    """
    if user_id_or_username.isdigit() and int(user_id_or_username) < 2**63:
        user = await get_user_by_id(db=db, user_id=int(user_id_or_username))
        if user is not None:
            return user
    return await get_user_by_username(db=db, username=user_id_or_username)


async def create_user(
    db: AsyncSession,
    user: models_users.CoreUser,
) -> models_users.CoreUser:
    db.add(user)
    await db.flush()
    return user
