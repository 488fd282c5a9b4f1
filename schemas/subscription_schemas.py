# schemas/subscription_schemas.py
import uuid
from typing import Dict, Optional
from pydantic import BaseModel

MB = 1024 * 1024
UNLIMITED = -1
DEFAULT_PLAN = "FREE"

class PlanLimits(BaseModel):
    monthly_photos: int  # UNLIMITED (-1) disables the monthly cap
    max_file_size: int   # bytes
    max_batch_size: int

SUBSCRIPTION_LIMITS: Dict[str, PlanLimits] = {
    "FREE": PlanLimits(monthly_photos=10, max_file_size=10 * MB, max_batch_size=5),
    "BASIC": PlanLimits(monthly_photos=100, max_file_size=15 * MB, max_batch_size=20),
    "PRO": PlanLimits(monthly_photos=500, max_file_size=25 * MB, max_batch_size=50),
    "ENTERPRISE": PlanLimits(monthly_photos=UNLIMITED, max_file_size=50 * MB, max_batch_size=50),
}

def get_plan_limits(plan: str) -> PlanLimits:
    return SUBSCRIPTION_LIMITS.get(plan, SUBSCRIPTION_LIMITS[DEFAULT_PLAN])

class SubscriptionSchema(BaseModel):
    id: uuid.UUID
    plan: str
    status: str
    monthly_limit: int
    photos_processed: int
    photos_remaining: Optional[int] = None  # None when unlimited

    class Config:
        from_attributes = True
