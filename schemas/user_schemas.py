# schemas/user_schemas.py
import re
import uuid
from datetime import datetime
from typing import Optional
from pydantic import BaseModel, EmailStr, constr, validator

from schemas.subscription_schemas import SubscriptionSchema

MIN_PASSWORD_LENGTH = 8
MAX_NAME_LENGTH = 120

class UserBase(BaseModel):
    email: EmailStr

class UserCreate(UserBase):
    password: constr(min_length=MIN_PASSWORD_LENGTH)
    name: Optional[constr(max_length=MAX_NAME_LENGTH)] = None

    @validator('password')
    def password_strength(cls, v):
        if not re.search(r"[A-Z]", v):
            raise ValueError('Password must contain an uppercase letter')
        if not re.search(r"[a-z]", v):
            raise ValueError('Password must contain a lowercase letter')
        if not re.search(r"\d", v):
            raise ValueError('Password must contain a digit')
        if not re.search(r"[!@#$%^&*(),.?\":{}|<>]", v):
            raise ValueError('Password must contain a special character')
        return v

class UserSchema(UserBase):
    id: uuid.UUID
    name: Optional[str] = None
    created_at: datetime

    class Config:
        from_attributes = True

class UserProfile(UserSchema):
    subscription: Optional[SubscriptionSchema] = None
    photos_count: int = 0

class TokenResponse(BaseModel):
    access_token: str
    refresh_token: str
    token_type: str = "bearer"
    user: Optional[UserSchema] = None

class RefreshRequest(BaseModel):
    refresh_token: constr(min_length=1)
