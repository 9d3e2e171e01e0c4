from typing import List, Optional

from fastapi import APIRouter, Depends, Query, status
from sqlalchemy.ext.asyncio import AsyncSession

from windynovel.database import get_async_session
from windynovel.deps.auth import get_current_user, get_current_user_optional, require_admin
from windynovel.models.user_model import User
from windynovel.schemas.common import PageOut, page_out
from windynovel.schemas.story_schemas import (
    StoryCreate, StoryUpdate, StoryOut, StoryDetailOut, StatisticsOut,
    PublishIn, FeatureIn, RatingIn,
)
from windynovel.services import stories as story_service

router = APIRouter(prefix="/stories", tags=["stories"])


def _split_tags(tags: Optional[str]) -> List[str]:
    return [t.strip() for t in (tags or "").split(",") if t.strip()]


@router.get("", response_model=PageOut[StoryOut])
async def list_stories(
    page: int = Query(1, ge=1),
    page_size: int = Query(20, ge=1, le=100),
    search: Optional[str] = None,
    tags: Optional[str] = Query(None, description="comma separated"),
    status_filter: Optional[str] = Query(None, alias="status"),
    sort_by: str = "updated_at",
    sort_order: str = "desc",
    db: AsyncSession = Depends(get_async_session),
):
    rows, total = await story_service.list_stories(
        db, page, page_size, search, _split_tags(tags), status_filter, sort_by, sort_order
    )
    return page_out([StoryOut.model_validate(s) for s in rows], page, page_size, total)


@router.get("/featured", response_model=List[StoryOut])
async def featured_stories(
    limit: int = Query(10, ge=1, le=50),
    db: AsyncSession = Depends(get_async_session),
):
    return await story_service.list_featured(db, limit)


@router.get("/trending", response_model=List[StoryOut])
async def trending_stories(
    limit: int = Query(10, ge=1, le=50),
    db: AsyncSession = Depends(get_async_session),
):
    return await story_service.list_trending(db, limit)


@router.get("/statistics", response_model=StatisticsOut)
async def statistics(db: AsyncSession = Depends(get_async_session)):
    return await story_service.story_statistics(db)


@router.get("/admin/all", response_model=PageOut[StoryOut])
async def admin_list_stories(
    page: int = Query(1, ge=1),
    page_size: int = Query(20, ge=1, le=100),
    search: Optional[str] = None,
    status_filter: Optional[str] = Query(None, alias="status"),
    is_published: Optional[bool] = None,
    featured: Optional[bool] = None,
    _admin: User = Depends(require_admin),
    db: AsyncSession = Depends(get_async_session),
):
    rows, total = await story_service.list_all_stories(
        db, page, page_size, search, status_filter, is_published, featured
    )
    return page_out([StoryOut.model_validate(s) for s in rows], page, page_size, total)


@router.get("/{slug}", response_model=StoryDetailOut)
async def get_story(
    slug: str,
    viewer: Optional[User] = Depends(get_current_user_optional),
    db: AsyncSession = Depends(get_async_session),
):
    story, chapter_count, bookmarked = await story_service.get_story_by_slug(db, slug, viewer)
    await db.commit()
    out = StoryOut.model_validate(story).model_dump()
    return StoryDetailOut(**out, chapter_count=chapter_count, is_bookmarked=bookmarked)


@router.post("", response_model=StoryOut, status_code=status.HTTP_201_CREATED)
async def create_story(
    body: StoryCreate,
    user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_async_session),
):
    story = await story_service.create_story(db, body.model_dump(), user)
    await db.commit()
    return story


@router.put("/{story_id}", response_model=StoryOut)
async def update_story(
    story_id: int,
    body: StoryUpdate,
    user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_async_session),
):
    story = await story_service.update_story(db, story_id, body.model_dump(exclude_unset=True), user)
    await db.commit()
    return story


@router.put("/{story_id}/publish", response_model=StoryOut)
async def publish_story(
    story_id: int,
    body: PublishIn,
    admin: User = Depends(require_admin),
    db: AsyncSession = Depends(get_async_session),
):
    story = await story_service.set_story_published(db, story_id, body.is_published, admin)
    await db.commit()
    return story


@router.put("/{story_id}/feature", response_model=StoryOut)
async def feature_story(
    story_id: int,
    body: FeatureIn,
    admin: User = Depends(require_admin),
    db: AsyncSession = Depends(get_async_session),
):
    story = await story_service.set_story_featured(db, story_id, body.featured, body.featured_order, admin)
    await db.commit()
    return story


@router.post("/{story_id}/rate", response_model=StoryOut)
async def rate_story(
    story_id: int,
    body: RatingIn,
    user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_async_session),
):
    story, _ = await story_service.rate_story(db, story_id, user, body.rating)
    await db.commit()
    return story


@router.delete("/{story_id}", status_code=204)
async def delete_story(
    story_id: int,
    user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_async_session),
):
    await story_service.delete_story(db, story_id, user)
    await db.commit()
