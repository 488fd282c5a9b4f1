# routers/enhancement.py
import asyncio
import base64
import json
import logging
from typing import List, Optional

import magic
from fastapi import APIRouter, Depends, File, Form, HTTPException, Request, UploadFile, status
from pydantic import ValidationError
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from config import MAX_UPLOAD_SIZE_MB
from db import crud
from db.database import get_db
from models import models as db_models
from schemas import photo_schemas
from schemas.enhancement_schemas import (
    BatchSummary,
    EnhancementLevel,
    EnhancementRequest,
    EnhancementResult,
)
from schemas.history_schemas import UsageHistoryCreate
from schemas.subscription_schemas import PlanLimits, get_plan_limits
from services import image_processing
from services.enhancement_service import EnhancementOrchestrator
from services.file_storage import LocalStorage, normalize_filename
from dependencies import get_active_subscription, get_enhancement_orchestrator, get_storage
from auth_utils import get_current_user
from rate_limiter import limiter, get_dynamic_rate_limit
from routers.photos import photo_to_schema

logger = logging.getLogger(__name__)

router = APIRouter(
    prefix="/api/enhance",
    tags=["enhancement"],
)

ALLOWED_MIME_TYPES = ["image/jpeg", "image/png", "image/webp"]
MAX_UPLOAD_SIZE_BYTES = MAX_UPLOAD_SIZE_MB * 1024 * 1024
DEFAULT_UPLOAD_NAME = "upload"


def _parse_level(level: Optional[str]) -> Optional[EnhancementLevel]:
    if not level:
        return None
    try:
        return EnhancementLevel(level.strip().upper())
    except ValueError:
        raise HTTPException(
            status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
            detail=f"Invalid enhancement level '{level}'. Allowed: {', '.join(l.value for l in EnhancementLevel)}."
        )


def _validate_upload(contents: bytes, limits: PlanLimits) -> str:
    """Checks size against the global cap and the plan, then sniffs the MIME type. Returns the MIME type."""
    file_size = len(contents)
    if file_size == 0:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Uploaded file is empty.")
    if file_size > MAX_UPLOAD_SIZE_BYTES:
        raise HTTPException(
            status_code=status.HTTP_413_REQUEST_ENTITY_TOO_LARGE,
            detail=f"File too large. Maximum size is {MAX_UPLOAD_SIZE_MB}MB."
        )
    if file_size > limits.max_file_size:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail=f"File size exceeds your plan limit of {limits.max_file_size // (1024 * 1024)}MB."
        )

    detected_mime_type = magic.from_buffer(contents, mime=True)
    if detected_mime_type not in ALLOWED_MIME_TYPES:
        raise HTTPException(
            status_code=status.HTTP_415_UNSUPPORTED_MEDIA_TYPE,
            detail=f"Unsupported file type: '{detected_mime_type}'. Allowed types are JPG, PNG, WEBP."
        )
    return detected_mime_type


def _read_data_url(path: str) -> str:
    with open(path, "rb") as f:
        return "data:image/jpeg;base64," + base64.b64encode(f.read()).decode("ascii")


async def _store_result(
    db: Session,
    storage: LocalStorage,
    db_photo: db_models.Photo,
    result: EnhancementResult,
) -> db_models.Photo:
    """Creates the thumbnail and marks the photo record as completed."""
    thumbnail_path = storage.thumbnail_path_for(db_photo.id)
    try:
        await asyncio.to_thread(image_processing.create_thumbnail, result.output_path, thumbnail_path)
    except image_processing.ImageProcessingError as e:
        logger.warning(f"Could not create thumbnail for photo {db_photo.id}: {e}")
        thumbnail_path = None

    analysis = result.analysis
    return crud.mark_photo_completed(
        db,
        db_photo,
        enhanced_path=result.output_path,
        method=result.method.value,
        processing_time_ms=result.processing_time_ms,
        parameters_json=analysis.parameters.model_dump_json() if analysis and analysis.parameters else None,
        analysis_json=analysis.model_dump_json(exclude={"parameters"}, exclude_none=True) if analysis else None,
        width=result.width,
        height=result.height,
        thumbnail_path=thumbnail_path,
    )


@router.post(
    "/single",
    response_model=photo_schemas.EnhancedPhotoResponse,
    summary="Enhance a Single Photo"
)
@limiter.limit(get_dynamic_rate_limit)
async def enhance_single_photo(
    request: Request,
    photo: UploadFile = File(...),
    prompt: Optional[str] = Form(None),
    level: Optional[str] = Form(None),
    brightness: Optional[float] = Form(None),
    contrast: Optional[float] = Form(None),
    saturation: Optional[float] = Form(None),
    db: Session = Depends(get_db),
    current_user: db_models.User = Depends(get_current_user),
    subscription: db_models.Subscription = Depends(get_active_subscription),
    orchestrator: EnhancementOrchestrator = Depends(get_enhancement_orchestrator),
    storage: LocalStorage = Depends(get_storage),
):
    """
    Enhances one uploaded food photo.

    - **photo**: JPG, PNG or WEBP file.
    - **prompt**: optional extra instructions for the AI.
    - **level**: optional LOW, MEDIUM, HIGH or AUTO preset for the filter pipeline.
    - **brightness / contrast / saturation**: optional overrides (clamped to safe ranges).
    """
    enhancement_level = _parse_level(level)
    limits = get_plan_limits(subscription.plan)
    contents = await photo.read()
    mime_type = _validate_upload(contents, limits)
    file_name = normalize_filename(photo.filename, DEFAULT_UPLOAD_NAME)

    if not crud.reserve_photo_quota(db, user_id=current_user.id, count=1):
        logger.info(f"User {current_user.id} reached the monthly photo limit.")
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Monthly photo limit reached")

    db_photo = None
    input_path = None
    try:
        db_photo = crud.create_photo(
            db,
            photo_schemas.PhotoCreate(
                file_name=file_name,
                file_size=len(contents),
                mime_type=mime_type,
                enhancement_level=enhancement_level.value if enhancement_level else None,
            ),
            user_id=current_user.id,
        )
        logger.info(f"User {current_user.id} enhancing photo {db_photo.id} ('{file_name}')")
        input_path = storage.save_upload(contents, file_name)
        result = await orchestrator.enhance(
            EnhancementRequest(
                input_path=input_path,
                original_filename=file_name,
                custom_prompt=prompt,
                level=enhancement_level,
                brightness=brightness,
                contrast=contrast,
                saturation=saturation,
                request_id=db_photo.id.hex,
            ),
            str(storage.processed_dir),
        )
    except Exception as e:
        logger.error(f"Unexpected error enhancing photo '{file_name}': {e}", exc_info=True)
        db.rollback()
        if db_photo is not None:
            crud.mark_photo_failed(db, db_photo, error=f"Unexpected error: {e}")
        crud.release_photo_quota(db, user_id=current_user.id, count=1)
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="An unexpected error occurred while enhancing the photo."
        )
    finally:
        storage.delete_file(input_path)

    if not result.success:
        crud.mark_photo_failed(db, db_photo, error=result.error, processing_time_ms=result.processing_time_ms)
        crud.release_photo_quota(db, user_id=current_user.id, count=1)
        status_code = (
            status.HTTP_422_UNPROCESSABLE_ENTITY
            if result.error_code == image_processing.UnsupportedFormat.__name__
            else status.HTTP_500_INTERNAL_SERVER_ERROR
        )
        raise HTTPException(status_code=status_code, detail=f"Failed to enhance photo: {result.error}")

    db_photo = await _store_result(db, storage, db_photo, result)
    crud.create_usage_history(
        db,
        UsageHistoryCreate(
            action=db_models.ACTION_ENHANCE_PHOTO,
            photos_processed=1,
            metadata_json=json.dumps({"photo_id": str(db_photo.id), "method": result.method.value}),
        ),
        user_id=current_user.id,
    )

    response = photo_schemas.EnhancedPhotoResponse(**photo_to_schema(db_photo, storage).model_dump())
    response.enhanced_data_url = await asyncio.to_thread(_read_data_url, result.output_path)
    return response


@router.post(
    "/batch",
    response_model=photo_schemas.BatchEnhanceResponse,
    summary="Enhance Several Photos"
)
@limiter.limit(get_dynamic_rate_limit)
async def enhance_batch_photos(
    request: Request,
    photos: List[UploadFile] = File(...),
    prompt: Optional[str] = Form(None),
    level: Optional[str] = Form(None),
    db: Session = Depends(get_db),
    current_user: db_models.User = Depends(get_current_user),
    subscription: db_models.Subscription = Depends(get_active_subscription),
    orchestrator: EnhancementOrchestrator = Depends(get_enhancement_orchestrator),
    storage: LocalStorage = Depends(get_storage),
):
    """
    Enhances several photos in one request. Files that fail validation or processing are
    reported in `errors`; the others are still processed.
    """
    enhancement_level = _parse_level(level)
    limits = get_plan_limits(subscription.plan)
    if len(photos) > limits.max_batch_size:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail=f"Batch size exceeds limit of {limits.max_batch_size} photos for the {subscription.plan} plan."
        )

    errors: List[photo_schemas.BatchFileError] = []
    accepted = []
    for upload in photos:
        file_name = normalize_filename(upload.filename, DEFAULT_UPLOAD_NAME)
        contents = await upload.read()
        try:
            mime_type = _validate_upload(contents, limits)
        except HTTPException as e:
            errors.append(photo_schemas.BatchFileError(file=file_name, error=str(e.detail)))
            continue
        accepted.append((file_name, contents, mime_type))

    if accepted and not crud.reserve_photo_quota(db, user_id=current_user.id, count=len(accepted)):
        logger.info(f"User {current_user.id} cannot process {len(accepted)} photos: monthly limit reached.")
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Monthly photo limit reached")

    db_photos: List[db_models.Photo] = []
    enhancement_requests: List[EnhancementRequest] = []
    success: List[photo_schemas.PhotoSchema] = []
    try:
        for file_name, contents, mime_type in accepted:
            db_photo = None
            try:
                db_photo = crud.create_photo(
                    db,
                    photo_schemas.PhotoCreate(
                        file_name=file_name,
                        file_size=len(contents),
                        mime_type=mime_type,
                        enhancement_level=enhancement_level.value if enhancement_level else None,
                    ),
                    user_id=current_user.id,
                )
                input_path = storage.save_upload(contents, file_name)
            except (ValidationError, OSError, SQLAlchemyError) as e:
                # Only this file is dropped; its reserved quota is released with the other failures below.
                logger.error(f"Could not store batch upload '{file_name}' for user {current_user.id}: {e}", exc_info=True)
                db.rollback()
                if db_photo is not None:
                    crud.mark_photo_failed(db, db_photo, error=f"Could not store upload: {e}")
                errors.append(photo_schemas.BatchFileError(file=file_name, error="Could not store the uploaded file."))
                continue
            db_photos.append(db_photo)
            enhancement_requests.append(EnhancementRequest(
                input_path=input_path,
                original_filename=file_name,
                custom_prompt=prompt,
                level=enhancement_level,
                request_id=db_photo.id.hex,
            ))

        if enhancement_requests:
            batch_result = await orchestrator.enhance_batch(enhancement_requests, str(storage.processed_dir))
            results_by_id = {result.request_id: result for result in batch_result.successes}
            for db_photo in db_photos:
                result = results_by_id.get(db_photo.id.hex)
                if result:
                    db_photo = await _store_result(db, storage, db_photo, result)
                    success.append(photo_to_schema(db_photo, storage))
            for item in batch_result.errors:
                crud.mark_photo_failed(db, db_photos[item.index], error=item.error)
                errors.append(photo_schemas.BatchFileError(file=item.file or DEFAULT_UPLOAD_NAME, error=item.error))
    except Exception as e:
        logger.error(f"Unexpected error during batch enhancement for user {current_user.id}: {e}", exc_info=True)
        for db_photo in db_photos:
            if db_photo.status == db_models.PHOTO_STATUS_PROCESSING:
                crud.mark_photo_failed(db, db_photo, error=f"Unexpected error: {e}")
        crud.release_photo_quota(db, user_id=current_user.id, count=len(accepted) - len(success))
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="An unexpected error occurred while enhancing the batch."
        )
    finally:
        for enhancement_request in enhancement_requests:
            storage.delete_file(enhancement_request.input_path)

    crud.release_photo_quota(db, user_id=current_user.id, count=len(accepted) - len(success))
    summary = BatchSummary(total=len(photos), succeeded=len(success), failed=len(photos) - len(success))
    if success:
        crud.create_usage_history(
            db,
            UsageHistoryCreate(
                action=db_models.ACTION_BATCH_ENHANCE,
                photos_processed=len(success),
                metadata_json=json.dumps(summary.model_dump()),
            ),
            user_id=current_user.id,
        )
    logger.info(f"Batch enhancement for user {current_user.id}: {summary.model_dump()}")
    return photo_schemas.BatchEnhanceResponse(success=success, errors=errors, summary=summary)
