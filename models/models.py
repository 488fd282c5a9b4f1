# models/models.py
import uuid
from datetime import datetime
from sqlalchemy import Column, DateTime, Integer, String, ForeignKey, Text, Uuid
from sqlalchemy.orm import declarative_base

Base = declarative_base()

# Photo lifecycle
PHOTO_STATUS_PROCESSING = "PROCESSING"
PHOTO_STATUS_COMPLETED = "COMPLETED"
PHOTO_STATUS_FAILED = "FAILED"

# Usage history actions
ACTION_ENHANCE_PHOTO = "ENHANCE_PHOTO"
ACTION_BATCH_ENHANCE = "BATCH_ENHANCE"

SUBSCRIPTION_STATUS_ACTIVE = "ACTIVE"

class User(Base):
    __tablename__ = "users"
    id = Column(Uuid(as_uuid=True), primary_key=True, default=uuid.uuid4)
    email = Column(String, unique=True, index=True, nullable=False)
    name = Column(String, nullable=True)
    hashed_password = Column(String, nullable=False)
    created_at = Column(DateTime, default=datetime.utcnow)

class Subscription(Base):
    __tablename__ = "subscriptions"
    id = Column(Uuid(as_uuid=True), primary_key=True, default=uuid.uuid4)
    user_id = Column(Uuid(as_uuid=True), ForeignKey("users.id"), nullable=False, unique=True, index=True)
    plan = Column(String, nullable=False, default="FREE")
    status = Column(String, nullable=False, default=SUBSCRIPTION_STATUS_ACTIVE)
    monthly_limit = Column(Integer, nullable=False)  # -1 means unlimited
    photos_processed = Column(Integer, nullable=False, default=0)
    created_at = Column(DateTime, default=datetime.utcnow)

class Photo(Base):
    __tablename__ = "photos"
    id = Column(Uuid(as_uuid=True), primary_key=True, default=uuid.uuid4)
    user_id = Column(Uuid(as_uuid=True), ForeignKey("users.id"), nullable=False, index=True)
    file_name = Column(String, nullable=False)
    file_size = Column(Integer, nullable=False)
    mime_type = Column(String, nullable=False)
    enhanced_path = Column(String, nullable=True)
    thumbnail_path = Column(String, nullable=True)
    status = Column(String, nullable=False, default=PHOTO_STATUS_PROCESSING, index=True)
    method = Column(String, nullable=True)
    enhancement_level = Column(String, nullable=True)
    parameters_json = Column(Text, nullable=True)
    analysis_json = Column(Text, nullable=True)
    width = Column(Integer, nullable=True)
    height = Column(Integer, nullable=True)
    processing_time_ms = Column(Integer, nullable=True)
    error = Column(String, nullable=True)
    created_at = Column(DateTime, default=datetime.utcnow, index=True)

class UsageHistory(Base):
    __tablename__ = "usage_history"
    id = Column(Uuid(as_uuid=True), primary_key=True, default=uuid.uuid4)
    user_id = Column(Uuid(as_uuid=True), ForeignKey("users.id"), nullable=False, index=True)
    action = Column(String, nullable=False)
    photos_processed = Column(Integer, nullable=False, default=1)
    metadata_json = Column(Text, nullable=True)
    created_at = Column(DateTime, default=datetime.utcnow)

class RefreshToken(Base):
    __tablename__ = "refresh_tokens"
    id = Column(Uuid(as_uuid=True), primary_key=True, default=uuid.uuid4)
    user_id = Column(Uuid(as_uuid=True), ForeignKey("users.id"), nullable=False, index=True)
    token = Column(String, unique=True, index=True, nullable=False)
    expires_at = Column(DateTime, nullable=False)
    created_at = Column(DateTime, default=datetime.utcnow)
