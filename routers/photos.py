# routers/photos.py
import json
import math
import uuid
import logging

from fastapi import APIRouter, Depends, HTTPException, status, Request, Query
from sqlalchemy.orm import Session

from db import crud
from db.database import get_db
from models import models as db_models
from schemas import photo_schemas
from auth_utils import get_current_user
from dependencies import get_storage
from services.file_storage import LocalStorage
from rate_limiter import limiter, get_dynamic_rate_limit

logger = logging.getLogger(__name__)

router = APIRouter(
    prefix="/api/enhance/photos",
    tags=["photos"],
    responses={404: {"description": "Photo not found"}},
)

DEFAULT_PAGE_SIZE = 20
MAX_PAGE_SIZE = 100


def photo_to_schema(db_photo: db_models.Photo, storage: LocalStorage) -> photo_schemas.PhotoSchema:
    """Builds the API view of a photo record, resolving file paths to public URLs."""
    schema = photo_schemas.PhotoSchema.model_validate(db_photo)
    schema.enhanced_url = storage.public_url(db_photo.enhanced_path)
    schema.thumbnail_url = storage.public_url(db_photo.thumbnail_path)
    if db_photo.parameters_json:
        schema.parameters = json.loads(db_photo.parameters_json)
    if db_photo.analysis_json:
        schema.analysis = json.loads(db_photo.analysis_json)
    return schema


def _get_owned_photo(db: Session, photo_id: uuid.UUID, user: db_models.User) -> db_models.Photo:
    db_photo = crud.get_photo(db, photo_id=photo_id, user_id=user.id)
    if not db_photo:
        # Photos owned by other users are reported as missing too.
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Photo not found")
    return db_photo


@router.get("", response_model=photo_schemas.PhotoListResponse, summary="List Enhanced Photos")
@limiter.limit(get_dynamic_rate_limit)
async def list_photos(
    request: Request,
    page: int = Query(1, ge=1),
    limit: int = Query(DEFAULT_PAGE_SIZE, ge=1, le=MAX_PAGE_SIZE),
    db: Session = Depends(get_db),
    current_user: db_models.User = Depends(get_current_user),
    storage: LocalStorage = Depends(get_storage),
):
    """
    Lists the current user's photos, newest first.

    - **page**: 1-based page number.
    - **limit**: page size (max 100).
    """
    total = crud.count_photos_by_user(db, user_id=current_user.id)
    photos = crud.get_photos_by_user(db, user_id=current_user.id, skip=(page - 1) * limit, limit=limit)
    return photo_schemas.PhotoListResponse(
        photos=[photo_to_schema(photo, storage) for photo in photos],
        page=page,
        limit=limit,
        total=total,
        total_pages=math.ceil(total / limit),
    )


@router.get("/{photo_id}", response_model=photo_schemas.PhotoSchema, summary="Get a Photo")
@limiter.limit(get_dynamic_rate_limit)
async def get_photo(
    request: Request,
    photo_id: uuid.UUID,
    db: Session = Depends(get_db),
    current_user: db_models.User = Depends(get_current_user),
    storage: LocalStorage = Depends(get_storage),
):
    return photo_to_schema(_get_owned_photo(db, photo_id, current_user), storage)


@router.delete("/{photo_id}", status_code=status.HTTP_204_NO_CONTENT, summary="Delete a Photo")
@limiter.limit(get_dynamic_rate_limit)
async def delete_photo(
    request: Request,
    photo_id: uuid.UUID,
    db: Session = Depends(get_db),
    current_user: db_models.User = Depends(get_current_user),
    storage: LocalStorage = Depends(get_storage),
):
    """Deletes the photo record and its files. Missing files are ignored."""
    db_photo = _get_owned_photo(db, photo_id, current_user)
    storage.delete_file(db_photo.enhanced_path)
    storage.delete_file(db_photo.thumbnail_path)
    crud.delete_photo(db, db_photo)
    logger.info(f"User {current_user.id} deleted photo {photo_id}")
