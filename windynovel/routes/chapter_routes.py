from typing import List, Optional

from fastapi import APIRouter, Depends, Query, status
from sqlalchemy.ext.asyncio import AsyncSession

from windynovel.database import get_async_session
from windynovel.deps.auth import get_current_user, get_current_user_optional, require_admin
from windynovel.models.user_model import User
from windynovel.schemas.common import PageOut, page_out
from windynovel.schemas.chapter_schemas import (
    ChapterCreate, ChapterUpdate, ChapterOut, ChapterSummaryOut, LatestChapterOut,
    ChapterReadOut, NavItemOut, StoryRefOut, LikeOut, RatingStatsOut,
)
from windynovel.schemas.story_schemas import PublishIn, RatingIn
from windynovel.services import chapters as chapter_service

router = APIRouter(prefix="/chapters", tags=["chapters"])


@router.get("/story/{story_id}", response_model=PageOut[ChapterSummaryOut])
async def list_story_chapters(
    story_id: int,
    page: int = Query(1, ge=1),
    page_size: int = Query(50, ge=1, le=200),
    viewer: Optional[User] = Depends(get_current_user_optional),
    db: AsyncSession = Depends(get_async_session),
):
    _story, rows, total = await chapter_service.list_story_chapters(db, story_id, viewer, page, page_size)
    return page_out([ChapterSummaryOut.model_validate(c) for c in rows], page, page_size, total)


@router.get("/latest", response_model=List[LatestChapterOut])
async def latest_chapters(
    limit: int = Query(10, ge=1, le=50),
    db: AsyncSession = Depends(get_async_session),
):
    rows = await chapter_service.list_latest_chapters(db, limit)
    return [
        LatestChapterOut(
            **ChapterSummaryOut.model_validate(c).model_dump(),
            story_title=s.title,
            story_slug=s.slug,
        )
        for c, s in rows
    ]


@router.get("/admin/all", response_model=PageOut[ChapterSummaryOut])
async def admin_list_chapters(
    page: int = Query(1, ge=1),
    page_size: int = Query(20, ge=1, le=100),
    story_id: Optional[int] = None,
    is_published: Optional[bool] = None,
    search: Optional[str] = None,
    _admin: User = Depends(require_admin),
    db: AsyncSession = Depends(get_async_session),
):
    rows, total = await chapter_service.list_all_chapters(db, page, page_size, story_id, is_published, search)
    return page_out([ChapterSummaryOut.model_validate(c) for c in rows], page, page_size, total)


@router.post("", response_model=ChapterOut, status_code=status.HTTP_201_CREATED)
async def create_chapter(
    body: ChapterCreate,
    user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_async_session),
):
    chapter = await chapter_service.create_chapter(db, body.model_dump(), user)
    await db.commit()
    return chapter


@router.put("/{chapter_id}", response_model=ChapterOut)
async def update_chapter(
    chapter_id: int,
    body: ChapterUpdate,
    user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_async_session),
):
    chapter = await chapter_service.update_chapter(db, chapter_id, body.model_dump(exclude_unset=True), user)
    await db.commit()
    return chapter


@router.put("/{chapter_id}/publish", response_model=ChapterOut)
async def publish_chapter(
    chapter_id: int,
    body: PublishIn,
    admin: User = Depends(require_admin),
    db: AsyncSession = Depends(get_async_session),
):
    chapter = await chapter_service.set_chapter_published(db, chapter_id, body.is_published, admin)
    await db.commit()
    return chapter


@router.delete("/{chapter_id}", status_code=204)
async def delete_chapter(
    chapter_id: int,
    user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_async_session),
):
    await chapter_service.delete_chapter(db, chapter_id, user)
    await db.commit()


@router.post("/{chapter_id}/like", response_model=LikeOut)
async def like_chapter(
    chapter_id: int,
    user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_async_session),
):
    liked, count = await chapter_service.toggle_chapter_like(db, chapter_id, user)
    await db.commit()
    return LikeOut(liked=liked, like_count=count)


@router.post("/{chapter_id}/rate", response_model=RatingStatsOut)
async def rate_chapter(
    chapter_id: int,
    body: RatingIn,
    user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_async_session),
):
    chapter, _updated = await chapter_service.rate_chapter(db, chapter_id, user, body.rating)
    await db.commit()
    return RatingStatsOut(average=chapter.rating_average, count=chapter.rating_count, user_rating=body.rating)


@router.get("/{chapter_id}/rating", response_model=RatingStatsOut)
async def chapter_rating(chapter_id: int, db: AsyncSession = Depends(get_async_session)):
    return await chapter_service.chapter_rating_stats(db, chapter_id)


@router.get("/{chapter_id}/user-rating", response_model=RatingStatsOut)
async def my_chapter_rating(
    chapter_id: int,
    user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_async_session),
):
    stats = await chapter_service.chapter_rating_stats(db, chapter_id)
    stats["user_rating"] = await chapter_service.user_chapter_rating(db, chapter_id, user)
    return stats


# keep last: the int convertors stop it from shadowing the routes above
@router.get("/{story_id:int}/{number:int}", response_model=ChapterReadOut)
async def read_chapter(
    story_id: int,
    number: int,
    viewer: Optional[User] = Depends(get_current_user_optional),
    db: AsyncSession = Depends(get_async_session),
):
    reading = await chapter_service.read_chapter(db, story_id, number, viewer)
    await db.commit()
    return ChapterReadOut(
        chapter=ChapterOut.model_validate(reading.chapter),
        story=StoryRefOut.model_validate(reading.story),
        previous=NavItemOut.model_validate(reading.previous) if reading.previous else None,
        next=NavItemOut.model_validate(reading.next) if reading.next else None,
    )
