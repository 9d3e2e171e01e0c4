# windynovel/deps/auth.py
from fastapi import Depends

from windynovel.exceptions import PermissionDeniedError
from windynovel.models.user_model import User
from windynovel.services.permissions import is_admin
from windynovel.utils.token_utils import get_current_user, get_current_user_optional

__all__ = ["get_current_user", "get_current_user_optional", "require_admin"]


async def require_admin(user: User = Depends(get_current_user)) -> User:
    """
    Requires the authenticated user to have role=ADMIN.
    Raises 403 if not an admin.
    """
    if not is_admin(user):
        raise PermissionDeniedError("Admin access required")
    return user
