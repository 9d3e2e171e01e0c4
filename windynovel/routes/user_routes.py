from typing import Optional

from fastapi import APIRouter, Depends, Query
from sqlalchemy.ext.asyncio import AsyncSession

from windynovel.database import get_async_session
from windynovel.deps.auth import get_current_user, require_admin
from windynovel.models.story_model import Story
from windynovel.models.user_model import User
from windynovel.schemas.common import PageOut, page_out
from windynovel.schemas.user_schemas import (
    UserOut, ProfileUpdate, RoleIn, StatusIn,
    ReadingProgressIn, ReadingHistoryOut, BookmarkOut, BookmarkToggleOut,
)
from windynovel.services import users as user_service

router = APIRouter(prefix="/users", tags=["users"])


# ------------------------------
# profile
# ------------------------------
@router.get("/profile", response_model=UserOut)
async def my_profile(user: User = Depends(get_current_user)):
    return user


@router.get("/profile/{user_id}", response_model=UserOut)
async def user_profile(
    user_id: int,
    user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_async_session),
):
    return await user_service.get_profile(db, user_id, user)


@router.put("/profile", response_model=UserOut)
async def update_profile(
    body: ProfileUpdate,
    user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_async_session),
):
    data = body.model_dump(exclude_unset=True)
    if body.preferences is not None:
        data["preferences"] = body.preferences.model_dump(exclude_none=True)
    updated = await user_service.update_profile(db, user, data)
    await db.commit()
    return updated


# ------------------------------
# bookmarks
# ------------------------------
@router.post("/bookmarks/{story_id}", response_model=BookmarkToggleOut)
async def add_bookmark(
    story_id: int,
    user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_async_session),
):
    added = await user_service.add_bookmark(db, user, story_id)
    await db.commit()
    story = await db.get(Story, story_id)
    return BookmarkToggleOut(
        message="Story bookmarked successfully." if added else "Story already bookmarked.",
        bookmarked=True,
        bookmark_count=story.bookmark_count,
    )


@router.delete("/bookmarks/{story_id}", response_model=BookmarkToggleOut)
async def remove_bookmark(
    story_id: int,
    user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_async_session),
):
    await user_service.remove_bookmark(db, user, story_id)
    await db.commit()
    story = await db.get(Story, story_id)
    return BookmarkToggleOut(
        message="Bookmark removed successfully.",
        bookmarked=False,
        bookmark_count=story.bookmark_count if story else 0,
    )


@router.get("/bookmarks", response_model=PageOut[BookmarkOut])
async def list_bookmarks(
    page: int = Query(1, ge=1),
    page_size: int = Query(20, ge=1, le=100),
    user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_async_session),
):
    rows, total = await user_service.list_bookmarks(db, user, page, page_size)
    items = [
        BookmarkOut(
            story_id=s.id,
            story_title=s.title,
            story_slug=s.slug,
            story_cover=s.cover,
            story_author=s.author,
            total_chapters=s.total_chapters,
            added_at=b.added_at,
        )
        for b, s in rows
    ]
    return page_out(items, page, page_size, total)


# ------------------------------
# reading history
# ------------------------------
@router.post("/reading-history", response_model=ReadingHistoryOut)
async def update_reading_history(
    body: ReadingProgressIn,
    user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_async_session),
):
    story = await user_service.get_published_story(db, body.story_id)
    entry = await user_service.record_reading(db, user, story.id, body.chapter_number, body.progress)
    await db.commit()
    return ReadingHistoryOut(
        story_id=story.id,
        story_title=story.title,
        story_slug=story.slug,
        story_cover=story.cover,
        chapter_number=entry.chapter_number,
        progress=entry.progress,
        read_at=entry.read_at,
    )


@router.get("/reading-history", response_model=PageOut[ReadingHistoryOut])
async def reading_history(
    page: int = Query(1, ge=1),
    page_size: int = Query(20, ge=1, le=100),
    user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_async_session),
):
    rows, total = await user_service.list_reading_history(db, user, page, page_size)
    items = [
        ReadingHistoryOut(
            story_id=s.id,
            story_title=s.title,
            story_slug=s.slug,
            story_cover=s.cover,
            chapter_number=h.chapter_number,
            progress=h.progress,
            read_at=h.read_at,
        )
        for h, s in rows
    ]
    return page_out(items, page, page_size, total)


# ------------------------------
# admin
# ------------------------------
@router.get("", response_model=PageOut[UserOut])
async def list_users(
    page: int = Query(1, ge=1),
    page_size: int = Query(20, ge=1, le=100),
    search: Optional[str] = None,
    role: Optional[str] = None,
    is_active: Optional[bool] = None,
    _admin: User = Depends(require_admin),
    db: AsyncSession = Depends(get_async_session),
):
    rows, total = await user_service.list_users(db, page, page_size, search, role, is_active)
    return page_out([UserOut.model_validate(u) for u in rows], page, page_size, total)


@router.put("/{user_id}/role", response_model=UserOut)
async def set_role(
    user_id: int,
    body: RoleIn,
    admin: User = Depends(require_admin),
    db: AsyncSession = Depends(get_async_session),
):
    user = await user_service.set_user_role(db, user_id, body.role, admin)
    await db.commit()
    return user


@router.put("/{user_id}/status", response_model=UserOut)
async def set_status(
    user_id: int,
    body: StatusIn,
    admin: User = Depends(require_admin),
    db: AsyncSession = Depends(get_async_session),
):
    user = await user_service.set_user_active(db, user_id, body.is_active, admin)
    await db.commit()
    return user
