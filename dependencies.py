# dependencies.py
import logging
from functools import lru_cache

from fastapi import Depends, HTTPException, status
from sqlalchemy.orm import Session

from config import UPLOAD_DIR, PROCESSED_DIR
from db import crud
from db.database import get_db
from models import models as db_models
from auth_utils import get_current_user
from services.enhancement_service import EnhancementOrchestrator, EnhancementSettings
from services.file_storage import LocalStorage

logger = logging.getLogger(__name__)


@lru_cache()
def get_storage() -> LocalStorage:
    """Dependency providing the local file storage (one instance per process)."""
    return LocalStorage(upload_dir=UPLOAD_DIR, processed_dir=PROCESSED_DIR)


@lru_cache()
def get_enhancement_orchestrator() -> EnhancementOrchestrator:
    """Dependency providing the orchestrator built from the current configuration."""
    settings = EnhancementSettings.from_config()
    logger.info(f"Creating enhancement orchestrator in '{settings.mode.value}' mode.")
    return EnhancementOrchestrator.from_settings(settings)


def get_active_subscription(
    current_user: db_models.User = Depends(get_current_user),
    db: Session = Depends(get_db),
) -> db_models.Subscription:
    """
    Returns the current user's subscription, or 403 if there is none or it is not active.
    """
    subscription = crud.get_subscription_for_user(db, user_id=current_user.id)
    if not subscription or subscription.status != db_models.SUBSCRIPTION_STATUS_ACTIVE:
        logger.warning(f"User {current_user.id} has no active subscription.")
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="No active subscription",
        )
    return subscription
