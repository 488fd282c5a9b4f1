from fastapi import APIRouter, Depends, HTTPException, status, Request
from sqlalchemy.orm import Session
import logging
from datetime import datetime

from fastapi.security import OAuth2PasswordRequestForm
from db.database import get_db
from db import crud
from schemas.user_schemas import UserCreate, UserSchema, TokenResponse, RefreshRequest
from auth_utils import verify_password, decode_refresh_token, issue_token_pair

# Initialize logger for this module
logger = logging.getLogger(__name__)

router = APIRouter(
    prefix="/api/auth",
    tags=["auth"],
    responses={404: {"description": "Not found"}},
)

@router.post("/register", response_model=TokenResponse, status_code=status.HTTP_201_CREATED)
def register_user(
    request: Request,
    user: UserCreate,
    db: Session = Depends(get_db),
):
    """
    Registers a new user on the FREE plan and logs them in.
    """
    logger.info(f"Registration attempt for email: {user.email}")
    # Password strength (including length) is handled by Pydantic model UserCreate

    db_user = crud.get_user_by_email(db, email=user.email)
    if db_user:
        raise HTTPException(
            status_code=status.HTTP_409_CONFLICT,
            detail="Email already registered",
        )

    # Create user and default subscription (hashing is done within crud.create_user)
    created_user = crud.create_user(db=db, user=user)
    logger.info(f"User created successfully with ID: {created_user.id}")

    access_token, refresh_token = issue_token_pair(db, created_user)
    return TokenResponse(
        access_token=access_token,
        refresh_token=refresh_token,
        user=UserSchema.model_validate(created_user),
    )

@router.post("/login", response_model=TokenResponse)
async def login_for_access_token(
    request: Request,
    form_data: OAuth2PasswordRequestForm = Depends(),
    db: Session = Depends(get_db)
):
    user = crud.get_user_by_email(db, email=form_data.username)
    if not user or not verify_password(form_data.password, user.hashed_password):
        logger.warning(f"Failed login attempt for email: {form_data.username}")
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Incorrect email or password",
            headers={"WWW-Authenticate": "Bearer"},
        )

    access_token, refresh_token = issue_token_pair(db, user)
    logger.info(f"User {user.id} logged in.")
    return TokenResponse(
        access_token=access_token,
        refresh_token=refresh_token,
        user=UserSchema.model_validate(user),
    )

@router.post("/refresh", response_model=TokenResponse)
def refresh_access_token(
    request: Request,
    body: RefreshRequest,
    db: Session = Depends(get_db),
):
    """
    Exchanges a valid refresh token for a new token pair. The old refresh token is revoked.
    """
    payload = decode_refresh_token(body.refresh_token)

    stored_token = crud.get_refresh_token(db, token=body.refresh_token)
    if not stored_token or stored_token.expires_at < datetime.utcnow():
        logger.warning("Refresh attempted with an unknown, revoked or expired token.")
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid refresh token",
        )

    user = crud.get_user_by_id(db, user_id=stored_token.user_id)
    if user is None or str(user.id) != payload.get("user_id"):
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid refresh token",
        )

    crud.delete_refresh_token(db, stored_token)
    access_token, refresh_token = issue_token_pair(db, user)
    return TokenResponse(access_token=access_token, refresh_token=refresh_token, user=UserSchema.model_validate(user))

@router.post("/logout", status_code=status.HTTP_204_NO_CONTENT)
def logout(
    request: Request,
    body: RefreshRequest,
    db: Session = Depends(get_db),
):
    """Revokes the given refresh token. Unknown tokens are ignored."""
    stored_token = crud.get_refresh_token(db, token=body.refresh_token)
    if stored_token:
        user_id = stored_token.user_id
        crud.delete_refresh_token(db, stored_token)
        logger.info(f"Refresh token revoked for user {user_id}.")
