import os
import time
import logging
from datetime import datetime

from fastapi import APIRouter, Depends, HTTPException, status
from sqlalchemy.orm import Session
from sqlalchemy import text

from db.database import get_db
from dependencies import get_storage, get_enhancement_orchestrator
from services.enhancement_service import EnhancementOrchestrator
from services.file_storage import LocalStorage

logger = logging.getLogger(__name__)

STARTED_AT = time.monotonic()

router = APIRouter(
    prefix="/api/health",
    tags=["health"]
)

@router.get(
    "/live",
    summary="Liveness Probe",
    description="Checks if the application instance is running. Returns HTTP 200 if alive.",
    status_code=status.HTTP_200_OK,
)
async def liveness_check():
    """
    Returns `status`, the current UTC `timestamp` and process `uptime_seconds`.
    """
    return {
        "status": "alive",
        "timestamp": datetime.utcnow().isoformat() + "Z",
        "uptime_seconds": round(time.monotonic() - STARTED_AT, 1),
    }

@router.get(
    "/ready",
    summary="Readiness Probe",
    description="Checks database connectivity and that processed images can be written.",
    status_code=status.HTTP_200_OK,
    responses={
        status.HTTP_503_SERVICE_UNAVAILABLE: {
            "content": {"application/json": {"example": {"detail": {"status": "database_error", "detail": "Cannot connect to database."}}}},
            "description": "A required dependency is unavailable."
        }
    }
)
async def readiness_check(
    db: Session = Depends(get_db),
    storage: LocalStorage = Depends(get_storage),
    orchestrator: EnhancementOrchestrator = Depends(get_enhancement_orchestrator),
):
    """
    - Returns HTTP 200 if the database answers and the processed directory is writable.
    - Returns HTTP 503 otherwise.
    The AI backend is reported but not required: without it photos go through the filter pipeline.
    """
    try:
        db.execute(text("SELECT 1")).fetchone()
    except Exception as e:
        logger.error(f"Readiness check: Database connection failed. Error: {e}", exc_info=True)
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail={"status": "database_error", "detail": "Cannot connect to database."}
        )

    if not os.access(storage.processed_dir, os.W_OK):
        logger.error(f"Readiness check: processed directory {storage.processed_dir} is not writable.")
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail={"status": "storage_error", "detail": "Processed image directory is not writable."}
        )

    return {
        "status": "ready",
        "detail": "Database connection successful.",
        "ai_enabled": orchestrator.ai_enabled,
        "mode": orchestrator.settings.mode.value,
    }
