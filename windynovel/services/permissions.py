from typing import Optional

from windynovel.exceptions import PermissionDeniedError
from windynovel.models.user_model import User, UserRole


def is_admin(user: Optional[User]) -> bool:
    return (getattr(user, "role", "") or "").upper() == UserRole.ADMIN


def is_owner(user: Optional[User], owner_id: Optional[int]) -> bool:
    return user is not None and owner_id is not None and user.id == owner_id


def ensure_owner_or_admin(user: User, owner_id: Optional[int], message: str = "Access denied.") -> None:
    if not (is_admin(user) or is_owner(user, owner_id)):
        raise PermissionDeniedError(message)
