import logging

from fastapi import APIRouter, Depends, Request, status
from sqlalchemy.ext.asyncio import AsyncSession

from windynovel.config import RATE_LIMIT_AUTH
from windynovel.database import get_async_session
from windynovel.deps.auth import get_current_user
from windynovel.limiter import limiter
from windynovel.models.user_model import User
from windynovel.schemas.common import MessageOut
from windynovel.schemas.user_schemas import UserCreate, UserLogin, UserOut, TokenOut, ChangePasswordIn
from windynovel.services import users as user_service
from windynovel.utils.token_utils import create_access_token

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/auth", tags=["auth"])


def _token_response(user: User) -> TokenOut:
    return TokenOut(access_token=create_access_token(user), user=UserOut.model_validate(user))


@router.post("/register", response_model=TokenOut, status_code=status.HTTP_201_CREATED)
@limiter.limit(RATE_LIMIT_AUTH)
async def register(request: Request, body: UserCreate, db: AsyncSession = Depends(get_async_session)):
    user = await user_service.register_user(db, body.username, str(body.email), body.password)
    await db.commit()
    return _token_response(user)


@router.post("/login", response_model=TokenOut)
@limiter.limit(RATE_LIMIT_AUTH)
async def login(request: Request, body: UserLogin, db: AsyncSession = Depends(get_async_session)):
    user = await user_service.authenticate_user(db, body.login, body.password)
    await db.commit()
    return _token_response(user)


@router.post("/refresh", response_model=TokenOut)
async def refresh(user: User = Depends(get_current_user)):
    return _token_response(user)


@router.get("/me", response_model=UserOut)
async def me(user: User = Depends(get_current_user)):
    return user


@router.post("/logout", response_model=MessageOut)
async def logout(user: User = Depends(get_current_user)):
    # tokens are stateless; the client drops its copy
    logger.debug("User %s logged out", user.id)
    return MessageOut(message="Logged out successfully.")


@router.post("/change-password", response_model=MessageOut)
@limiter.limit(RATE_LIMIT_AUTH)
async def change_password(
    request: Request,
    body: ChangePasswordIn,
    user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_async_session),
):
    await user_service.change_password(db, user, body.current_password, body.new_password)
    await db.commit()
    return MessageOut(message="Password changed successfully.")
