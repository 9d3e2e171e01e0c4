import logging
from datetime import datetime, timedelta, timezone
from typing import Optional

from fastapi import Depends
from fastapi.security import OAuth2PasswordBearer
from jose import JWTError, jwt
from sqlalchemy.ext.asyncio import AsyncSession

from windynovel import config
from windynovel.database import get_async_session
from windynovel.exceptions import AuthenticationError
from windynovel.models.user_model import User

logger = logging.getLogger(__name__)

oauth2_scheme = OAuth2PasswordBearer(tokenUrl="/api/auth/login")
oauth2_scheme_optional = OAuth2PasswordBearer(tokenUrl="/api/auth/login", auto_error=False)


def _get_secret_key() -> str:
    secret = config.SECRET_KEY
    if not secret:
        # fail fast with a clear message instead of a generic 500
        raise RuntimeError("SECRET_KEY is not configured in the backend environment")
    if len(secret) < 32:
        raise RuntimeError("SECRET_KEY is too short; use at least 32 characters")
    return secret


def create_access_token(user: User, expires_minutes: Optional[int] = None) -> str:
    expire = datetime.now(timezone.utc) + timedelta(
        minutes=expires_minutes or config.ACCESS_TOKEN_EXPIRE_MINUTES
    )
    to_encode = {
        "id": user.id,         # what get_current_user expects
        "sub": user.username,  # helpful for auditing/logs
        "role": user.role,
        "exp": expire,
    }
    return jwt.encode(to_encode, _get_secret_key(), algorithm=config.ALGORITHM)


def decode_access_token(token: str) -> dict:
    try:
        payload = jwt.decode(token, _get_secret_key(), algorithms=[config.ALGORITHM])
    except JWTError as exc:
        raise AuthenticationError("Invalid or expired token.") from exc
    if payload.get("id") is None:
        raise AuthenticationError("Invalid token payload.")
    return payload


async def _user_from_token(token: str, session: AsyncSession) -> User:
    payload = decode_access_token(token)
    user = await session.get(User, payload["id"])
    if not user:
        raise AuthenticationError("User not found.")
    if not user.is_active:
        raise AuthenticationError("Account is deactivated.")
    return user


async def get_current_user(
    token: str = Depends(oauth2_scheme),
    session: AsyncSession = Depends(get_async_session),
) -> User:
    return await _user_from_token(token, session)


async def get_current_user_optional(
    token: Optional[str] = Depends(oauth2_scheme_optional),
    session: AsyncSession = Depends(get_async_session),
) -> Optional[User]:
    """Like get_current_user, but anonymous (or badly authenticated) requests get None."""
    if not token:
        return None
    try:
        return await _user_from_token(token, session)
    except AuthenticationError as exc:
        logger.debug("Ignoring bad optional token: %s", exc)
        return None
