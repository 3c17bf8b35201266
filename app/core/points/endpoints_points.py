from fastapi import Depends, HTTPException
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.points import cruds_points, schemas_points
from app.dependencies import get_db
from app.types.module import CoreModule

core_module = CoreModule(
    root="points",
    tag="Points",
)


@core_module.router.get(
    "/points/users/{user_id}",
    response_model=schemas_points.PointsBalance,
    status_code=200,
)
async def read_user_balance(
    user_id: int,
    db: AsyncSession = Depends(get_db),
):
    """
    Return the points balance of the user
    """
    balance = await cruds_points.get_balance_by_user_id(user_id=user_id, db=db)
    if balance is None:
        raise HTTPException(status_code=404, detail="Points balance not found")

    return balance
