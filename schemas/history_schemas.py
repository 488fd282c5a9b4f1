# schemas/history_schemas.py
import uuid
from datetime import datetime
from typing import Optional
from pydantic import BaseModel, constr, conint

class UsageHistoryBase(BaseModel):
    # user_id is provided by the system (from the auth token), not the client
    action: constr(max_length=64)
    photos_processed: conint(ge=0) = 1
    metadata_json: Optional[constr(max_length=4096)] = None

class UsageHistoryCreate(UsageHistoryBase):
    pass

class UsageHistorySchema(UsageHistoryBase):
    id: uuid.UUID
    user_id: uuid.UUID
    created_at: datetime

    class Config:
        from_attributes = True
