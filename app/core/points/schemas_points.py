from datetime import datetime

from pydantic import BaseModel, ConfigDict


class PointsBalance(BaseModel):
    user_id: int
    balance: int
    is_subscriber: bool
    updated_at: datetime

    model_config = ConfigDict(from_attributes=True)
