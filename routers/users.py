from fastapi import APIRouter, Depends, Request, Query
from sqlalchemy.orm import Session
from typing import List, Optional

from models.models import User, Subscription
from schemas.user_schemas import UserProfile, UserSchema
from schemas.subscription_schemas import SubscriptionSchema, UNLIMITED
from schemas.history_schemas import UsageHistorySchema
from auth_utils import get_current_user
from db import crud
from db.database import get_db
from rate_limiter import limiter, get_dynamic_rate_limit


router = APIRouter(
    prefix="/api/users",
    tags=["users"],
    responses={404: {"description": "Not found"}},
)

def subscription_to_schema(subscription: Optional[Subscription]) -> Optional[SubscriptionSchema]:
    if subscription is None:
        return None
    schema = SubscriptionSchema.model_validate(subscription)
    if subscription.monthly_limit != UNLIMITED:
        schema.photos_remaining = max(subscription.monthly_limit - subscription.photos_processed, 0)
    return schema

@router.get("/me", response_model=UserProfile)
async def read_users_me(
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db)
):
    """
    Get the current user's profile with subscription usage and photo count.
    """
    subscription = crud.get_subscription_for_user(db, user_id=current_user.id)
    return UserProfile(
        **UserSchema.model_validate(current_user).model_dump(),
        subscription=subscription_to_schema(subscription),
        photos_count=crud.count_photos_by_user(db, user_id=current_user.id),
    )


@router.get("/me/usage", response_model=List[UsageHistorySchema])
@limiter.limit(get_dynamic_rate_limit)
async def read_user_usage_history(
    request: Request,
    skip: int = Query(0, ge=0),
    limit: int = Query(20, ge=1, le=100),
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db)
):
    """
    Get usage history (enhancements and batches) for the current user, newest first.
    """
    return crud.get_usage_history_by_user(db=db, user_id=current_user.id, skip=skip, limit=limit)
