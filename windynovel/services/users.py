import logging
from typing import Optional

from passlib.hash import bcrypt
from sqlalchemy import select, func, delete, or_
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from windynovel.config import READING_HISTORY_LIMIT
from windynovel.database import utcnow
from windynovel.exceptions import (
    ValidationError,
    AuthenticationError,
    NotFoundError,
    DuplicateError,
    PermissionDeniedError,
)
from windynovel.models.bookmark_model import Bookmark, ReadingHistory
from windynovel.models.story_model import Story, StoryTag
from windynovel.models.user_model import User, UserRole, DEFAULT_PREFERENCES
from windynovel.services.permissions import is_admin

logger = logging.getLogger(__name__)

MIN_PASSWORD_LENGTH = 6

PREFERENCE_CHOICES = {
    "theme": ("light", "dark"),
    "font_size": ("small", "medium", "large"),
    "font_family": ("serif", "sans-serif", "monospace"),
}


async def get_user(db: AsyncSession, user_id: int) -> User:
    user = await db.get(User, user_id)
    if not user:
        raise NotFoundError("User not found.", resource="user")
    return user


# ------------------------------
# accounts
# ------------------------------
async def register_user(db: AsyncSession, username: str, email: str, password: str) -> User:
    username_norm = (username or "").strip()
    email_norm = (email or "").strip().lower()
    if len(password or "") < MIN_PASSWORD_LENGTH:
        raise ValidationError(f"Password must be at least {MIN_PASSWORD_LENGTH} characters long.")

    # username OR email conflict in a single round-trip
    existing = (
        await db.execute(
            select(User).where(
                (User.username == username_norm) | (func.lower(User.email) == email_norm)
            )
        )
    ).scalars().all()
    if any((u.email or "").lower() == email_norm for u in existing):
        raise DuplicateError("Email already exists.", {"field": "email"})
    if any(u.username == username_norm for u in existing):
        raise DuplicateError("Username already exists.", {"field": "username"})

    user = User(
        username=username_norm,
        email=email_norm,
        password=bcrypt.hash(password),
        role=UserRole.USER,
        favorite_genres=[],
        preferences=dict(DEFAULT_PREFERENCES),
        is_active=True,
        last_login=utcnow(),
    )
    db.add(user)
    try:
        await db.flush()
    except IntegrityError as exc:
        raise DuplicateError("Username or email already exists.") from exc
    logger.info("Registered user %s (%s)", user.id, user.username)
    return user


async def authenticate_user(db: AsyncSession, login: str, password: str) -> User:
    """Look a user up by username or email and check the password."""
    ident = (login or "").strip()
    if not ident or not password:
        raise ValidationError("Username/email and password are required.")

    user = (
        await db.execute(
            select(User).where(or_(User.username == ident, func.lower(User.email) == ident.lower()))
        )
    ).scalars().first()
    if not user or not bcrypt.verify(password, user.password):
        logger.info("Failed login for %r", ident)
        raise AuthenticationError("Invalid credentials.")
    if not user.is_active:
        raise AuthenticationError("Account is deactivated.")

    user.last_login = utcnow()
    await db.flush()
    return user


async def change_password(db: AsyncSession, user: User, current_password: str, new_password: str) -> None:
    if not bcrypt.verify(current_password or "", user.password):
        raise AuthenticationError("Current password is incorrect.")
    if len(new_password or "") < MIN_PASSWORD_LENGTH:
        raise ValidationError(f"New password must be at least {MIN_PASSWORD_LENGTH} characters long.")
    user.password = bcrypt.hash(new_password)
    await db.flush()


# ------------------------------
# profile
# ------------------------------
async def get_profile(db: AsyncSession, user_id: int, actor: User) -> User:
    if actor.id != user_id and not is_admin(actor):
        raise PermissionDeniedError("Access denied.")
    return await get_user(db, user_id)


def _merge_preferences(current: Optional[dict], updates: dict) -> dict:
    merged = dict(DEFAULT_PREFERENCES)
    merged.update(current or {})
    for key, value in updates.items():
        if value is None:
            continue
        choices = PREFERENCE_CHOICES.get(key)
        if choices and value not in choices:
            raise ValidationError(f"Invalid value for {key}", {"allowed": list(choices)})
        if key not in DEFAULT_PREFERENCES:
            raise ValidationError(f"Unknown preference '{key}'")
        merged[key] = value
    return merged


async def update_profile(db: AsyncSession, user: User, data: dict) -> User:
    if data.get("display_name") is not None:
        user.display_name = data["display_name"].strip() or None
    if data.get("bio") is not None:
        user.bio = data["bio"].strip() or None
    if data.get("avatar") is not None:
        user.avatar = data["avatar"] or None
    if data.get("favorite_genres") is not None:
        genres = []
        for g in data["favorite_genres"]:
            try:
                value = StoryTag(g).value
            except ValueError:
                raise ValidationError(f"Unknown genre '{g}'", {"allowed": [t.value for t in StoryTag]})
            if value not in genres:
                genres.append(value)
        user.favorite_genres = genres
    if data.get("preferences") is not None:
        # reassign so the JSON column is marked dirty
        user.preferences = _merge_preferences(user.preferences, data["preferences"])
    await db.flush()
    return user


# ------------------------------
# bookmarks
# ------------------------------
async def get_published_story(db: AsyncSession, story_id: int) -> Story:
    story = await db.get(Story, story_id)
    if not story or not story.is_published:
        raise NotFoundError("Story not found.", resource="story")
    return story


async def add_bookmark(db: AsyncSession, user: User, story_id: int) -> bool:
    """Bookmark a story. Returns False if it was already bookmarked (no-op)."""
    story = await get_published_story(db, story_id)
    existing = (
        await db.execute(
            select(Bookmark.id).where(Bookmark.user_id == user.id, Bookmark.story_id == story.id).limit(1)
        )
    ).first()
    if existing:
        return False

    db.add(Bookmark(user_id=user.id, story_id=story.id))
    try:
        await db.flush()
    except IntegrityError as exc:
        raise DuplicateError("Story already bookmarked.", {"story_id": story_id}) from exc

    story.bookmark_count = (story.bookmark_count or 0) + 1
    await db.flush()
    return True


async def remove_bookmark(db: AsyncSession, user: User, story_id: int) -> None:
    bookmark = (
        await db.execute(
            select(Bookmark).where(Bookmark.user_id == user.id, Bookmark.story_id == story_id).limit(1)
        )
    ).scalars().first()
    if not bookmark:
        raise ValidationError("Story is not bookmarked.", {"story_id": story_id})

    await db.delete(bookmark)
    story = await db.get(Story, story_id)
    if story is not None:
        story.bookmark_count = max(0, (story.bookmark_count or 0) - 1)
    await db.flush()


async def list_bookmarks(
    db: AsyncSession, user: User, page: int = 1, page_size: int = 20
) -> tuple[list[tuple[Bookmark, Story]], int]:
    base = (
        select(Bookmark, Story)
        .join(Story, Story.id == Bookmark.story_id)
        .where(Bookmark.user_id == user.id, Story.is_published.is_(True))
    )
    total = int(
        (
            await db.execute(
                select(func.count(Bookmark.id))
                .join(Story, Story.id == Bookmark.story_id)
                .where(Bookmark.user_id == user.id, Story.is_published.is_(True))
            )
        ).scalar_one()
        or 0
    )
    rows = await db.execute(
        base.order_by(Bookmark.added_at.desc(), Bookmark.id.desc())
        .offset((page - 1) * page_size)
        .limit(page_size)
    )
    return [(b, s) for b, s in rows.all()], total


# ------------------------------
# reading history
# ------------------------------
async def record_reading(
    db: AsyncSession, user: User, story_id: int, chapter_number: int, progress: int = 0
) -> ReadingHistory:
    """
    Upsert the user's position in a story. Only the most recent
    READING_HISTORY_LIMIT entries per user are kept.
    """
    if chapter_number is None or chapter_number < 1:
        raise ValidationError("Chapter number must be at least 1.")
    if not 0 <= (progress or 0) <= 100:
        raise ValidationError("Progress must be between 0 and 100.")

    entry = (
        await db.execute(
            select(ReadingHistory)
            .where(ReadingHistory.user_id == user.id, ReadingHistory.story_id == story_id)
            .limit(1)
        )
    ).scalars().first()
    if entry:
        entry.chapter_number = chapter_number
        entry.progress = progress or 0
        entry.read_at = utcnow()
    else:
        entry = ReadingHistory(
            user_id=user.id,
            story_id=story_id,
            chapter_number=chapter_number,
            progress=progress or 0,
            read_at=utcnow(),
        )
        db.add(entry)
    await db.flush()

    keep = (
        select(ReadingHistory.id)
        .where(ReadingHistory.user_id == user.id)
        .order_by(ReadingHistory.read_at.desc(), ReadingHistory.id.desc())
        .limit(READING_HISTORY_LIMIT)
    )
    kept_ids = [hid for (hid,) in (await db.execute(keep)).all()]
    await db.execute(
        delete(ReadingHistory).where(
            ReadingHistory.user_id == user.id,
            ReadingHistory.id.not_in(kept_ids),
        )
    )
    await db.flush()
    return entry


async def list_reading_history(
    db: AsyncSession, user: User, page: int = 1, page_size: int = 20
) -> tuple[list[tuple[ReadingHistory, Story]], int]:
    total = int(
        (
            await db.execute(select(func.count(ReadingHistory.id)).where(ReadingHistory.user_id == user.id))
        ).scalar_one()
        or 0
    )
    rows = await db.execute(
        select(ReadingHistory, Story)
        .join(Story, Story.id == ReadingHistory.story_id)
        .where(ReadingHistory.user_id == user.id)
        .order_by(ReadingHistory.read_at.desc(), ReadingHistory.id.desc())
        .offset((page - 1) * page_size)
        .limit(page_size)
    )
    return [(h, s) for h, s in rows.all()], total


# ------------------------------
# admin
# ------------------------------
async def list_users(
    db: AsyncSession,
    page: int = 1,
    page_size: int = 20,
    search: Optional[str] = None,
    role: Optional[str] = None,
    is_active: Optional[bool] = None,
) -> tuple[list[User], int]:
    filters = []
    if search:
        like = f"%{search.strip()}%"
        filters.append(or_(User.username.ilike(like), User.email.ilike(like), User.display_name.ilike(like)))
    if role:
        filters.append(User.role == role.upper())
    if is_active is not None:
        filters.append(User.is_active.is_(is_active))

    total_stmt = select(func.count(User.id))
    stmt = select(User).order_by(User.created_at.desc(), User.id.desc())
    if filters:
        total_stmt = total_stmt.where(*filters)
        stmt = stmt.where(*filters)
    total = int((await db.execute(total_stmt)).scalar_one() or 0)
    rows = (await db.execute(stmt.offset((page - 1) * page_size).limit(page_size))).scalars().all()
    return list(rows), total


async def set_user_role(db: AsyncSession, user_id: int, role: str, actor: User) -> User:
    role_norm = (role or "").upper()
    if role_norm not in (UserRole.USER, UserRole.ADMIN):
        raise ValidationError("Invalid role", {"allowed": [UserRole.USER, UserRole.ADMIN]})
    user = await get_user(db, user_id)
    if user.id == actor.id and role_norm != UserRole.ADMIN:
        raise ValidationError("You cannot change your own role.")
    user.role = role_norm
    await db.flush()
    logger.info("User %s role set to %s by admin %s", user.id, role_norm, actor.id)
    return user


async def set_user_active(db: AsyncSession, user_id: int, is_active: bool, actor: User) -> User:
    user = await get_user(db, user_id)
    if user.id == actor.id and not is_active:
        raise ValidationError("You cannot deactivate your own account.")
    user.is_active = bool(is_active)
    await db.flush()
    logger.info("User %s %s by admin %s", user.id, "activated" if is_active else "deactivated", actor.id)
    return user
