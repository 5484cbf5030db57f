"""
Authentication router — signup and login endpoints.

These are the only public (unauthenticated) endpoints in the API besides
/health. Everything else requires a valid JWT token.

Endpoints:
  POST /auth/signup  — Register a new user and get a token
  POST /auth/login   — Authenticate and get a token

Plaintext passwords exist only in memory during request processing; they
are hashed before any database operation and never logged.
"""

from fastapi import APIRouter, Depends, status
from sqlalchemy.ext.asyncio import AsyncSession

from app.database import get_db
from app.schemas.auth import (
    UserSignupRequest,
    UserLoginRequest,
    TokenResponse,
    SignupResponse,
)
from app.services import auth_service

router = APIRouter()


@router.post(
    "/signup",
    response_model=SignupResponse,
    status_code=status.HTTP_201_CREATED,
    summary="Register a new user",
)
async def signup(
    request: UserSignupRequest,
    db: AsyncSession = Depends(get_db),
):
    """
    Register a new user and return a JWT so they are logged in immediately.

    The email given here is where bank account verification codes are sent.
    """
    user, token = await auth_service.signup(
        db=db,
        email=request.email,
        password=request.password,
        first_name=request.first_name,
        last_name=request.last_name,
    )

    return SignupResponse(
        user_id=user.id,
        email=user.email,
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
    _, token = await auth_service.login(
        db=db,
        email=request.email,
        password=request.password,
    )

    return TokenResponse(token=token)
