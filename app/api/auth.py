"""Authentication endpoints"""

from typing import Optional

from fastapi import APIRouter, Depends, status
from fastapi.security import HTTPBearer, HTTPAuthorizationCredentials
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.errors import InvalidInput, Unauthorized
from app.db import get_db, User
from app.schemas import UserCreate, UserLogin, UserResponse, Token
from app.services import (
    authenticate_user, create_user, get_user_by_email,
    get_user_by_id, create_access_token, decode_access_token
)

router = APIRouter(prefix="/auth", tags=["Authentication"])
security = HTTPBearer(auto_error=False)


async def get_current_user(
    credentials: Optional[HTTPAuthorizationCredentials] = Depends(security),
    db: AsyncSession = Depends(get_db)
) -> User:
    """Dependency to get the current authenticated user from the Bearer token."""
    user_id = None
    if credentials and credentials.credentials:
        user_id = decode_access_token(credentials.credentials)

    if not user_id:
        raise Unauthorized("invalid or expired token")

    user = await get_user_by_id(db, user_id)
    if not user or not user.is_active:
        raise Unauthorized("user not found or inactive")

    return user


@router.post("/register", response_model=UserResponse, status_code=status.HTTP_201_CREATED)
async def register(
    user_data: UserCreate,
    db: AsyncSession = Depends(get_db)
):
    """Register a new user"""
    existing = await get_user_by_email(db, user_data.email)
    if existing:
        raise InvalidInput("email already registered", code="email_taken")

    user = await create_user(
        db,
        email=user_data.email,
        password=user_data.password,
        name=user_data.name
    )
    return user


@router.post("/login", response_model=Token)
async def login(
    credentials: UserLogin,
    db: AsyncSession = Depends(get_db)
):
    """Login and get access token"""
    user = await authenticate_user(db, credentials.email, credentials.password)
    if not user:
        raise Unauthorized("incorrect email or password")

    return Token(access_token=create_access_token(user.id))


@router.get("/me", response_model=UserResponse)
async def get_me(
    current_user: User = Depends(get_current_user)
):
    """Get current user info"""
    return current_user
