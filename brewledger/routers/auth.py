"""
Authentication router — signup and login endpoints.

These are the only public endpoints in the API apart from /health and
the platform webhook. Everything else requires a valid JWT token.

Endpoints:
  POST /auth/signup  — Register a new member and get a token
  POST /auth/login   — Authenticate and get a token

Plaintext passwords exist only in memory during request processing;
they are hashed before any database operation and never logged.
"""

from fastapi import APIRouter, Depends, status
from sqlalchemy.ext.asyncio import AsyncSession

from brewledger.database import get_db
from brewledger.schemas.auth import (
    UserSignupRequest,
    UserLoginRequest,
    TokenResponse,
    SignupResponse,
)
from brewledger.services import auth_service

router = APIRouter()


@router.post(
    "/signup",
    response_model=SignupResponse,
    status_code=status.HTTP_201_CREATED,
    summary="Register a new member",
)
async def signup(
    request: UserSignupRequest,
    db: AsyncSession = Depends(get_db),
):
    """
    Register a new member with a zero credit balance.

    - **email**: Must be a valid email format and not already registered
    - **username**: Shown to staff when a credit transfer is redeemed
    - **password**: Minimum 8 characters
    - **phone_number**: Optional; used to block sending credits to yourself
    """
    user, token = await auth_service.signup(
        db=db,
        email=request.email,
        username=request.username,
        password=request.password,
        full_name=request.full_name,
        phone_number=request.phone_number,
    )

    return SignupResponse(
        user_id=user.id,
        email=user.email,
        username=user.username,
        user_type=user.user_type.value,
        token=token,
    )


@router.post(
    "/login",
    response_model=TokenResponse,
    summary="Authenticate and get a token",
)
async def login(
    request: UserLoginRequest,
    db: AsyncSession = Depends(get_db),
):
    """
    Authenticate with email and password.

    Returns a JWT bearer token for the Authorization header:

        Authorization: Bearer <token>
    """
    user, token = await auth_service.login(
        db=db,
        email=request.email,
        password=request.password,
    )

    return TokenResponse(token=token)
