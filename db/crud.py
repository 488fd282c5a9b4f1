# db/crud.py

import uuid
from datetime import datetime
from typing import Optional, List

from sqlalchemy import update, or_, case
from sqlalchemy.orm import Session

# Import only SQLAlchemy models from the 'models' module.
from models import models as db_models

# Import Pydantic schemas from the 'schemas' module.
from schemas import (
    user_schemas,
    photo_schemas,
    history_schemas,
)
from schemas.subscription_schemas import DEFAULT_PLAN, UNLIMITED, get_plan_limits

from auth_utils import hash_password

# --- User CRUD ---
def get_user_by_email(db: Session, email: str) -> Optional[db_models.User]:
    return db.query(db_models.User).filter(db_models.User.email == email).first()

def get_user_by_id(db: Session, user_id: uuid.UUID) -> Optional[db_models.User]:
    return db.query(db_models.User).filter(db_models.User.id == user_id).first()

def create_user(db: Session, user: user_schemas.UserCreate) -> db_models.User:
    """Creates the user together with a subscription on the default plan."""
    db_user = db_models.User(
        email=user.email,
        name=user.name,
        hashed_password=hash_password(user.password),
    )
    db.add(db_user)
    db.flush()  # assigns db_user.id

    limits = get_plan_limits(DEFAULT_PLAN)
    db.add(db_models.Subscription(
        user_id=db_user.id,
        plan=DEFAULT_PLAN,
        monthly_limit=limits.monthly_photos,
        photos_processed=0,
    ))
    db.commit()
    db.refresh(db_user)
    return db_user

# --- Subscription CRUD ---
def get_subscription_for_user(db: Session, user_id: uuid.UUID) -> Optional[db_models.Subscription]:
    return db.query(db_models.Subscription).filter(db_models.Subscription.user_id == user_id).first()

def reserve_photo_quota(db: Session, user_id: uuid.UUID, count: int) -> bool:
    """
    Atomically adds `count` to the user's processed-photo counter, but only if the
    result stays within the monthly limit. Returns False when the quota is exhausted.
    """
    Subscription = db_models.Subscription
    stmt = (
        update(Subscription)
        .where(
            Subscription.user_id == user_id,
            Subscription.status == db_models.SUBSCRIPTION_STATUS_ACTIVE,
            or_(
                Subscription.monthly_limit == UNLIMITED,
                Subscription.photos_processed + count <= Subscription.monthly_limit,
            ),
        )
        .values(photos_processed=Subscription.photos_processed + count)
        .execution_options(synchronize_session="fetch")
    )
    result = db.execute(stmt)
    db.commit()
    return result.rowcount == 1

def release_photo_quota(db: Session, user_id: uuid.UUID, count: int) -> None:
    """Gives back quota reserved for photos that could not be enhanced. The counter never drops below zero."""
    if count <= 0:
        return
    Subscription = db_models.Subscription
    stmt = (
        update(Subscription)
        .where(Subscription.user_id == user_id)
        .values(photos_processed=case(
            (Subscription.photos_processed > count, Subscription.photos_processed - count),
            else_=0,
        ))
        .execution_options(synchronize_session="fetch")
    )
    db.execute(stmt)
    db.commit()

# --- Photo CRUD ---
def create_photo(db: Session, photo: photo_schemas.PhotoCreate, user_id: uuid.UUID) -> db_models.Photo:
    db_photo = db_models.Photo(
        **photo.model_dump(),
        user_id=user_id,
        status=db_models.PHOTO_STATUS_PROCESSING,
    )
    db.add(db_photo)
    db.commit()
    db.refresh(db_photo)
    return db_photo

def mark_photo_completed(
    db: Session,
    db_photo: db_models.Photo,
    enhanced_path: str,
    method: str,
    processing_time_ms: int,
    parameters_json: Optional[str] = None,
    analysis_json: Optional[str] = None,
    width: Optional[int] = None,
    height: Optional[int] = None,
    thumbnail_path: Optional[str] = None,
) -> db_models.Photo:
    db_photo.status = db_models.PHOTO_STATUS_COMPLETED
    db_photo.enhanced_path = enhanced_path
    db_photo.method = method
    db_photo.processing_time_ms = processing_time_ms
    db_photo.parameters_json = parameters_json
    db_photo.analysis_json = analysis_json
    db_photo.width = width
    db_photo.height = height
    db_photo.thumbnail_path = thumbnail_path
    db_photo.error = None
    db.commit()
    db.refresh(db_photo)
    return db_photo

def mark_photo_failed(db: Session, db_photo: db_models.Photo, error: str, processing_time_ms: Optional[int] = None) -> db_models.Photo:
    db_photo.status = db_models.PHOTO_STATUS_FAILED
    db_photo.error = error
    db_photo.processing_time_ms = processing_time_ms
    db.commit()
    db.refresh(db_photo)
    return db_photo

def get_photo(db: Session, photo_id: uuid.UUID, user_id: uuid.UUID) -> Optional[db_models.Photo]:
    return db.query(db_models.Photo).filter(db_models.Photo.id == photo_id, db_models.Photo.user_id == user_id).first()

def get_photos_by_user(db: Session, user_id: uuid.UUID, skip: int = 0, limit: int = 20) -> List[db_models.Photo]:
    return db.query(db_models.Photo).filter(db_models.Photo.user_id == user_id).order_by(db_models.Photo.created_at.desc()).offset(skip).limit(limit).all()

def count_photos_by_user(db: Session, user_id: uuid.UUID) -> int:
    return db.query(db_models.Photo).filter(db_models.Photo.user_id == user_id).count()

def delete_photo(db: Session, db_photo: db_models.Photo) -> None:
    db.delete(db_photo)
    db.commit()

# --- UsageHistory CRUD ---
def create_usage_history(db: Session, history_data: history_schemas.UsageHistoryCreate, user_id: uuid.UUID) -> db_models.UsageHistory:
    db_history = db_models.UsageHistory(user_id=user_id, **history_data.model_dump())
    db.add(db_history)
    db.commit()
    db.refresh(db_history)
    return db_history

def get_usage_history_by_user(db: Session, user_id: uuid.UUID, skip: int = 0, limit: int = 20) -> List[db_models.UsageHistory]:
    return db.query(db_models.UsageHistory).filter(db_models.UsageHistory.user_id == user_id).order_by(db_models.UsageHistory.created_at.desc()).offset(skip).limit(limit).all()

# --- RefreshToken CRUD ---
def create_refresh_token(db: Session, user_id: uuid.UUID, token: str, expires_at: datetime) -> db_models.RefreshToken:
    db_token = db_models.RefreshToken(user_id=user_id, token=token, expires_at=expires_at)
    db.add(db_token)
    db.commit()
    db.refresh(db_token)
    return db_token

def get_refresh_token(db: Session, token: str) -> Optional[db_models.RefreshToken]:
    return db.query(db_models.RefreshToken).filter(db_models.RefreshToken.token == token).first()

def delete_refresh_token(db: Session, db_token: db_models.RefreshToken) -> None:
    db.delete(db_token)
    db.commit()
