"""
FastAPI dependencies for authentication and collaborator injection.

  get_current_user   (JWT -> User)
  get_notifier       (settings -> Notifier)
  get_bank_directory (settings -> BankDirectoryClient)

Every bank-account endpoint declares get_current_user, which scopes all
service calls to the authenticated user's own accounts. The collaborator
dependencies exist so tests can swap in fakes through
app.dependency_overrides without touching the service layer.
"""

import uuid

from fastapi import Depends, HTTPException, status
from fastapi.security import OAuth2PasswordBearer
from jose import JWTError
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from app.database import get_db
from app.models.user import User
from app.security import decode_access_token
from app.services.bank_directory import BankDirectoryClient, build_bank_directory
from app.services.notifier import Notifier, build_notifier


# OAuth2PasswordBearer tells FastAPI where to look for the token:
# the "Authorization: Bearer <token>" header.
oauth2_scheme = OAuth2PasswordBearer(tokenUrl="/auth/login")


async def get_current_user(
    token: str = Depends(oauth2_scheme),
    db: AsyncSession = Depends(get_db),
) -> User:
    """
    Extract and validate the JWT token, then return the corresponding User.

    Raises:
        HTTPException 401: If the token is invalid or the user doesn't exist
            or has been deactivated.
    """
    credentials_exception = HTTPException(
        status_code=status.HTTP_401_UNAUTHORIZED,
        detail="Could not validate credentials",
        headers={"WWW-Authenticate": "Bearer"},
    )

    try:
        payload = decode_access_token(token)
        user_id_str: str | None = payload.get("sub")
        if user_id_str is None:
            raise credentials_exception
        user_id = uuid.UUID(user_id_str)
    except (JWTError, ValueError):
        raise credentials_exception

    result = await db.execute(select(User).where(User.id == user_id))
    user = result.scalar_one_or_none()

    if user is None or not user.is_active:
        raise credentials_exception

    return user


def get_notifier() -> Notifier:
    return build_notifier()


def get_bank_directory() -> BankDirectoryClient:
    return build_bank_directory()
