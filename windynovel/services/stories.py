import logging
from datetime import timedelta
from typing import Optional, Iterable

from sqlalchemy import select, func, delete, or_
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from windynovel.database import utcnow
from windynovel.exceptions import ValidationError, NotFoundError, DuplicateError
from windynovel.models.bookmark_model import Bookmark, ReadingHistory
from windynovel.models.chapter_model import Chapter, ChapterLike, ChapterRating
from windynovel.models.story_model import Story, StoryRating, StoryStatus, StoryTag, StoryTagLink
from windynovel.models.user_model import User
from windynovel.services.comments import purge_scope_comments
from windynovel.services.permissions import ensure_owner_or_admin
from windynovel.services.slugs import allocate_slug, slugify_title, slug_taken

logger = logging.getLogger(__name__)

TRENDING_WINDOW = timedelta(days=7)

SORT_FIELDS = {
    "updated_at": Story.updated_at,
    "created_at": Story.created_at,
    "view_count": Story.view_count,
    "like_count": Story.like_count,
    "bookmark_count": Story.bookmark_count,
    "rating_average": Story.rating_average,
    "title": Story.title,
}

# fields a story owner may change through update_story
EDITABLE_FIELDS = ("title", "author", "translator", "description", "cover", "status")


def _order_by(sort_field: str, sort_order: str):
    column = SORT_FIELDS.get(sort_field)
    if column is None:
        raise ValidationError(f"Cannot sort stories by '{sort_field}'", {"allowed": list(SORT_FIELDS)})
    if (sort_order or "desc").lower() == "asc":
        return column.asc(), Story.id.asc()
    return column.desc(), Story.id.desc()


def _parse_status(value) -> StoryStatus:
    if isinstance(value, StoryStatus):
        return value
    try:
        return StoryStatus(value)
    except ValueError:
        raise ValidationError("Invalid story status", {"allowed": [s.value for s in StoryStatus]})


def _parse_tags(tags: Optional[Iterable]) -> list[StoryTag]:
    out = []
    for t in tags or []:
        if isinstance(t, StoryTag):
            out.append(t)
            continue
        try:
            out.append(StoryTag(t))
        except ValueError:
            raise ValidationError(f"Unknown tag '{t}'", {"allowed": [x.value for x in StoryTag]})
    return out


def _story_filters(
    search: Optional[str] = None,
    tags: Optional[Iterable] = None,
    status: Optional[str] = None,
) -> list:
    filters = []
    if search:
        like = f"%{search.strip()}%"
        filters.append(or_(Story.title.ilike(like), Story.author.ilike(like), Story.description.ilike(like)))
    wanted = _parse_tags(tags)
    if wanted:
        filters.append(Story.id.in_(select(StoryTagLink.story_id).where(StoryTagLink.tag.in_(wanted))))
    if status:
        filters.append(Story.status == _parse_status(status))
    return filters


async def _page(db: AsyncSession, filters: list, order, page: int, page_size: int) -> tuple[list[Story], int]:
    total_stmt = select(func.count(Story.id))
    stmt = select(Story).order_by(*order)
    if filters:
        total_stmt = total_stmt.where(*filters)
        stmt = stmt.where(*filters)
    total = int((await db.execute(total_stmt)).scalar_one() or 0)
    rows = (await db.execute(stmt.offset((page - 1) * page_size).limit(page_size))).scalars().all()
    return list(rows), total


async def get_story(db: AsyncSession, story_id: int) -> Story:
    story = await db.get(Story, story_id)
    if not story:
        raise NotFoundError("Story not found.", resource="story")
    return story


# ------------------------------
# reads
# ------------------------------
async def list_stories(
    db: AsyncSession,
    page: int = 1,
    page_size: int = 20,
    search: Optional[str] = None,
    tags: Optional[Iterable] = None,
    status: Optional[str] = None,
    sort_field: str = "updated_at",
    sort_order: str = "desc",
) -> tuple[list[Story], int]:
    filters = [Story.is_published.is_(True), *_story_filters(search, tags, status)]
    return await _page(db, filters, _order_by(sort_field, sort_order), page, page_size)


async def list_all_stories(
    db: AsyncSession,
    page: int = 1,
    page_size: int = 20,
    search: Optional[str] = None,
    status: Optional[str] = None,
    is_published: Optional[bool] = None,
    featured: Optional[bool] = None,
) -> tuple[list[Story], int]:
    """Admin view: unpublished stories included."""
    filters = _story_filters(search, None, status)
    if is_published is not None:
        filters.append(Story.is_published.is_(is_published))
    if featured is not None:
        filters.append(Story.featured.is_(featured))
    return await _page(db, filters, (Story.created_at.desc(), Story.id.desc()), page, page_size)


async def list_featured(db: AsyncSession, limit: int = 10) -> list[Story]:
    rows = await db.execute(
        select(Story)
        .where(Story.featured.is_(True), Story.is_published.is_(True))
        .order_by(Story.featured_order.asc(), Story.updated_at.desc())
        .limit(limit)
    )
    return list(rows.scalars().all())


async def list_trending(db: AsyncSession, limit: int = 10) -> list[Story]:
    since = utcnow() - TRENDING_WINDOW
    rows = await db.execute(
        select(Story)
        .where(Story.is_published.is_(True), Story.updated_at >= since)
        .order_by(Story.view_count.desc(), Story.like_count.desc(), Story.id.desc())
        .limit(limit)
    )
    return list(rows.scalars().all())


async def story_statistics(db: AsyncSession) -> dict:
    published = Story.is_published.is_(True)
    stories = (await db.execute(select(func.count(Story.id)).where(published))).scalar_one()
    authors = (await db.execute(select(func.count(func.distinct(Story.author))).where(published))).scalar_one()
    readers = (await db.execute(select(func.count(User.id)))).scalar_one()
    views = (await db.execute(select(func.coalesce(func.sum(Story.view_count), 0)).where(published))).scalar_one()
    return {
        "stories": int(stories or 0),
        "authors": int(authors or 0),
        "readers": int(readers or 0),
        "total_views": int(views or 0),
    }


async def count_published_chapters(db: AsyncSession, story_id: int) -> int:
    return int(
        (
            await db.execute(
                select(func.count(Chapter.id)).where(
                    Chapter.story_id == story_id, Chapter.is_published.is_(True)
                )
            )
        ).scalar_one()
        or 0
    )


async def is_bookmarked(db: AsyncSession, user_id: Optional[int], story_id: int) -> bool:
    if not user_id:
        return False
    row = await db.execute(
        select(Bookmark.id).where(Bookmark.user_id == user_id, Bookmark.story_id == story_id).limit(1)
    )
    return row.first() is not None


async def get_story_by_slug(
    db: AsyncSession,
    slug: str,
    viewer: Optional[User] = None,
) -> tuple[Story, int, bool]:
    """Published story by slug; counts a view. Returns (story, chapter_count, is_bookmarked)."""
    story = (
        await db.execute(select(Story).where(Story.slug == slug, Story.is_published.is_(True)))
    ).scalars().first()
    if not story:
        raise NotFoundError("Story not found.", resource="story")

    story.view_count = (story.view_count or 0) + 1
    await db.flush()

    chapter_count = await count_published_chapters(db, story.id)
    bookmarked = await is_bookmarked(db, viewer.id if viewer else None, story.id)
    return story, chapter_count, bookmarked


# ------------------------------
# writes
# ------------------------------
async def _ensure_title_free(db: AsyncSession, title: str, exclude_id: Optional[int] = None) -> None:
    stmt = select(Story.id).where(Story.title == title)
    if exclude_id is not None:
        stmt = stmt.where(Story.id != exclude_id)
    if (await db.execute(stmt.limit(1))).first():
        raise DuplicateError("A story with this title already exists.", {"title": title})


async def create_story(db: AsyncSession, data: dict, owner: User) -> Story:
    title = (data.get("title") or "").strip()
    author = (data.get("author") or "").strip()
    description = (data.get("description") or "").strip()
    if not title or not author or not description:
        raise ValidationError("Title, author, and description are required.")

    await _ensure_title_free(db, title)
    # allocate before the new row is pending so autoflush never sees a NULL slug
    slug = await allocate_slug(db, title)

    is_published = bool(data.get("is_published", True))
    story = Story(
        title=title,
        slug=slug,
        author=author,
        translator=(data.get("translator") or None),
        description=description,
        cover=data.get("cover") or None,
        status=_parse_status(data.get("status") or StoryStatus.ONGOING),
        is_published=is_published,
        published_at=utcnow() if is_published else None,
        created_by=owner.id,
        last_updated_by=owner.id,
        total_chapters=0,
        view_count=0,
        like_count=0,
        bookmark_count=0,
        rating_average=0.0,
        rating_count=0,
    )
    story.set_tags(_parse_tags(data.get("tags")))
    db.add(story)
    await db.flush()
    logger.info("Story %s created by user %s with slug %r", story.id, owner.id, story.slug)
    return story


async def update_story(db: AsyncSession, story_id: int, data: dict, actor: User) -> Story:
    """
    Owner/admin update. Counters, owner and rating are not writable here.

    Slug handling:
      - explicit ``slug`` given: normalized and de-duplicated against other stories
      - title changed and no ``slug`` given: re-derived from the new title
      - otherwise the current slug is kept
    """
    story = await get_story(db, story_id)
    ensure_owner_or_admin(actor, story.created_by, "Access denied. You can only edit your own stories.")

    new_title = data.get("title")
    title_changed = new_title is not None and new_title.strip() != story.title
    if title_changed:
        new_title = new_title.strip()
        if not new_title:
            raise ValidationError("Title cannot be empty.")
        await _ensure_title_free(db, new_title, exclude_id=story.id)

    requested_slug = data.get("slug")
    if requested_slug:
        base = slugify_title(requested_slug)
        if base != story.slug or await slug_taken(db, base, exclude_id=story.id):
            story.slug = await allocate_slug(db, base, exclude_id=story.id)
    elif title_changed:
        story.slug = await allocate_slug(db, new_title, exclude_id=story.id)

    for field in EDITABLE_FIELDS:
        if field not in data or data[field] is None:
            continue
        value = data[field]
        if field == "title":
            value = new_title if title_changed else story.title
        elif field == "status":
            value = _parse_status(value)
        elif isinstance(value, str):
            value = value.strip()
        setattr(story, field, value)

    if data.get("tags") is not None:
        story.set_tags(_parse_tags(data["tags"]))

    story.last_updated_by = actor.id
    await db.flush()
    return story


async def set_story_published(db: AsyncSession, story_id: int, is_published: bool, actor: User) -> Story:
    story = await get_story(db, story_id)
    story.is_published = bool(is_published)
    if story.is_published and not story.published_at:
        story.published_at = utcnow()
    story.last_updated_by = actor.id
    await db.flush()
    logger.info("Story %s %s by admin %s", story.id, "published" if is_published else "unpublished", actor.id)
    return story


async def set_story_featured(
    db: AsyncSession, story_id: int, featured: bool, featured_order: int = 0, actor: Optional[User] = None
) -> Story:
    story = await get_story(db, story_id)
    story.featured = bool(featured)
    story.featured_order = featured_order if featured else 0
    if actor is not None:
        story.last_updated_by = actor.id
    await db.flush()
    return story


async def delete_story(db: AsyncSession, story_id: int, actor: User) -> None:
    story = await get_story(db, story_id)
    ensure_owner_or_admin(actor, story.created_by, "Access denied. You can only delete your own stories.")

    chapter_ids = [
        cid for (cid,) in (await db.execute(select(Chapter.id).where(Chapter.story_id == story.id))).all()
    ]
    await purge_scope_comments(db, story_id=story.id, chapter_ids=chapter_ids)
    if chapter_ids:
        await db.execute(delete(ChapterRating).where(ChapterRating.chapter_id.in_(chapter_ids)))
        await db.execute(delete(ChapterLike).where(ChapterLike.chapter_id.in_(chapter_ids)))
        await db.execute(delete(Chapter).where(Chapter.id.in_(chapter_ids)))
    await db.execute(delete(Bookmark).where(Bookmark.story_id == story.id))
    await db.execute(delete(ReadingHistory).where(ReadingHistory.story_id == story.id))
    await db.execute(delete(StoryRating).where(StoryRating.story_id == story.id))
    await db.delete(story)
    await db.flush()
    logger.info("Story %s deleted by user %s (%d chapters)", story_id, actor.id, len(chapter_ids))


def _check_rating(rating) -> None:
    if isinstance(rating, bool) or not isinstance(rating, int) or not 1 <= rating <= 5:
        raise ValidationError("Rating must be between 1 and 5.")


async def rate_story(db: AsyncSession, story_id: int, user: User, rating: int) -> tuple[Story, bool]:
    """Set ``user``'s rating for a published story (last write wins).

    The aggregate is recomputed from every stored rating. Returns
    (story, updated_existing).
    """
    _check_rating(rating)
    story = await get_story(db, story_id)
    if not story.is_published:
        raise NotFoundError("Story not found.", resource="story")

    existing = (
        await db.execute(
            select(StoryRating)
            .where(StoryRating.story_id == story.id, StoryRating.user_id == user.id)
            .limit(1)
        )
    ).scalars().first()
    if existing:
        existing.rating = rating
        existing.rated_at = utcnow()
    else:
        db.add(StoryRating(story_id=story.id, user_id=user.id, rating=rating))

    try:
        await db.flush()
    except IntegrityError as exc:
        raise DuplicateError("Rating already recorded.", {"story_id": story_id}) from exc

    avg, count = (
        await db.execute(
            select(func.avg(StoryRating.rating), func.count(StoryRating.id)).where(
                StoryRating.story_id == story.id
            )
        )
    ).one()
    story.rating_average = float(avg or 0.0)
    story.rating_count = int(count or 0)
    await db.flush()
    return story, existing is not None
