# schemas/photo_schemas.py
import uuid
from datetime import datetime
from typing import Optional, List, Dict, Any
from pydantic import BaseModel, constr, conint

from schemas.enhancement_schemas import BatchSummary

MAX_STRING_LENGTH = 255

# Pydantic schema for creating a Photo record before processing starts
class PhotoCreate(BaseModel):
    file_name: constr(max_length=MAX_STRING_LENGTH)
    file_size: conint(gt=0)
    mime_type: constr(max_length=MAX_STRING_LENGTH)
    enhancement_level: Optional[str] = None

class PhotoSchema(BaseModel):
    id: uuid.UUID
    file_name: str
    file_size: int
    mime_type: str
    status: str
    method: Optional[str] = None
    enhancement_level: Optional[str] = None
    width: Optional[int] = None
    height: Optional[int] = None
    processing_time_ms: Optional[int] = None
    error: Optional[str] = None
    created_at: datetime
    enhanced_url: Optional[str] = None
    thumbnail_url: Optional[str] = None
    parameters: Optional[Dict[str, Any]] = None
    analysis: Optional[Dict[str, Any]] = None

    class Config:
        from_attributes = True

class EnhancedPhotoResponse(PhotoSchema):
    enhanced_data_url: Optional[str] = None # Inline base64 copy of the enhanced image

class BatchFileError(BaseModel):
    file: str
    error: str

class BatchEnhanceResponse(BaseModel):
    success: List[PhotoSchema]
    errors: List[BatchFileError]
    summary: BatchSummary

class PhotoListResponse(BaseModel):
    photos: List[PhotoSchema]
    page: conint(ge=1)
    limit: conint(ge=1)
    total: conint(ge=0)
    total_pages: conint(ge=0)
