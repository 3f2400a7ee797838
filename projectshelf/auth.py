from datetime import datetime, timedelta, timezone
from typing import Optional

from fastapi import Depends
from fastapi.security import OAuth2PasswordBearer
from jose import ExpiredSignatureError, JWTError, jwt
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.future import select

from projectshelf.config import settings
from projectshelf.database import get_db
from projectshelf.exceptions import AuthenticationError, InvalidTokenError
from projectshelf.models.user import User
import logging

# Initialize logging
logger = logging.getLogger(__name__)


# Tokens are issued by the main ProjectShelf API; analytics only verifies them
oauth2_scheme = OAuth2PasswordBearer(tokenUrl="token", auto_error=False)


# Used by tests and local tooling to mint tokens the main API would issue
def create_access_token(data: dict, expires_delta: Optional[timedelta] = None) -> str:
    to_encode = data.copy()
    if expires_delta:
        expire = datetime.now(timezone.utc) + expires_delta
    else:
        expire = datetime.now(timezone.utc) + timedelta(minutes=settings.access_token_expire_minutes)

    to_encode.update({"exp": expire})

    if "sub" not in to_encode:
        raise ValueError("Missing 'sub' claim (email) in token data.")

    return jwt.encode(to_encode, settings.secret_key, algorithm=settings.algorithm)


def decode_access_token(token: str) -> str:
    """Return the email in the token's 'sub' claim."""
    try:
        payload = jwt.decode(token, settings.secret_key, algorithms=[settings.algorithm])
    except ExpiredSignatureError:
        logger.warning("Token expired")
        raise InvalidTokenError("Token has expired")
    except JWTError as e:
        logger.warning(f"JWT decoding failed: {str(e)}")
        raise InvalidTokenError()

    email = payload.get("sub")
    if email is None:
        logger.warning("Token is missing 'sub' claim")
        raise InvalidTokenError("Token does not contain 'sub' field.")
    return email


async def _user_for_token(token: str, db: AsyncSession) -> User:
    email = decode_access_token(token)
    result = await db.execute(select(User).where(User.email == email))
    user = result.scalars().first()
    if user is None:
        logger.warning(f"User with email '{email}' not found.")
        raise AuthenticationError()
    return user


async def get_current_user(
    token: Optional[str] = Depends(oauth2_scheme),
    db: AsyncSession = Depends(get_db),
) -> User:
    if not token:
        raise AuthenticationError("Not authenticated")
    return await _user_for_token(token, db)


async def get_optional_user(
    token: Optional[str] = Depends(oauth2_scheme),
    db: AsyncSession = Depends(get_db),
) -> Optional[User]:
    """
    Resolve the viewer when a token is present.

    Public pages record views for anonymous visitors too, so a missing or
    unusable token yields None instead of an error.
    """
    if not token:
        return None
    try:
        return await _user_for_token(token, db)
    except AuthenticationError as e:
        logger.info(f"Ignoring unusable token on public endpoint: {e.message}")
        return None
