import logging
from dataclasses import dataclass
from typing import Optional

from sqlalchemy import select, func, delete
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from windynovel.database import utcnow
from windynovel.exceptions import ValidationError, NotFoundError, DuplicateError, PermissionDeniedError
from windynovel.models.chapter_model import Chapter, ChapterLike, ChapterRating
from windynovel.models.story_model import Story
from windynovel.models.user_model import User
from windynovel.services.comments import purge_scope_comments
from windynovel.services.permissions import ensure_owner_or_admin, is_admin, is_owner
from windynovel.services.users import record_reading

logger = logging.getLogger(__name__)

EDITABLE_FIELDS = ("title", "content", "notes", "number")


@dataclass
class ChapterReading:
    chapter: Chapter
    story: Story
    previous: Optional[Chapter]
    next: Optional[Chapter]


def count_words(content: Optional[str]) -> int:
    return len((content or "").split())


async def get_chapter(db: AsyncSession, chapter_id: int) -> Chapter:
    chapter = await db.get(Chapter, chapter_id)
    if not chapter:
        raise NotFoundError("Chapter not found.", resource="chapter")
    return chapter


async def get_published_chapter(db: AsyncSession, chapter_id: int) -> Chapter:
    chapter = await db.get(Chapter, chapter_id)
    if not chapter or not chapter.is_published:
        raise NotFoundError("Chapter not found.", resource="chapter")
    return chapter


async def _story_for(db: AsyncSession, story_id: int) -> Story:
    story = await db.get(Story, story_id)
    if not story:
        raise NotFoundError("Story not found.", resource="story")
    return story


def _can_manage(user: Optional[User], story: Story, chapter: Optional[Chapter] = None) -> bool:
    if user is None:
        return False
    if is_admin(user) or is_owner(user, story.created_by):
        return True
    return chapter is not None and is_owner(user, chapter.created_by)


async def _ensure_number_free(
    db: AsyncSession, story_id: int, number: int, exclude_id: Optional[int] = None
) -> None:
    stmt = select(Chapter.id).where(Chapter.story_id == story_id, Chapter.number == number)
    if exclude_id is not None:
        stmt = stmt.where(Chapter.id != exclude_id)
    if (await db.execute(stmt.limit(1))).first():
        raise DuplicateError(
            f"Chapter {number} already exists for this story.",
            {"story_id": story_id, "number": number},
        )


# ------------------------------
# reads
# ------------------------------
async def list_story_chapters(
    db: AsyncSession,
    story_id: int,
    viewer: Optional[User] = None,
    page: int = 1,
    page_size: int = 50,
) -> tuple[Story, list[Chapter], int]:
    story = await _story_for(db, story_id)
    manager = _can_manage(viewer, story)
    if not story.is_published and not manager:
        raise NotFoundError("Story not found.", resource="story")

    filters = [Chapter.story_id == story.id]
    if not manager:
        filters.append(Chapter.is_published.is_(True))

    total = int((await db.execute(select(func.count(Chapter.id)).where(*filters))).scalar_one() or 0)
    rows = (
        await db.execute(
            select(Chapter)
            .where(*filters)
            .order_by(Chapter.number.asc())
            .offset((page - 1) * page_size)
            .limit(page_size)
        )
    ).scalars().all()
    return story, list(rows), total


async def list_latest_chapters(db: AsyncSession, limit: int = 10) -> list[tuple[Chapter, Story]]:
    rows = await db.execute(
        select(Chapter, Story)
        .join(Story, Story.id == Chapter.story_id)
        .where(Chapter.is_published.is_(True), Story.is_published.is_(True))
        .order_by(Chapter.published_at.desc(), Chapter.id.desc())
        .limit(limit)
    )
    return [(c, s) for c, s in rows.all()]


async def list_all_chapters(
    db: AsyncSession,
    page: int = 1,
    page_size: int = 20,
    story_id: Optional[int] = None,
    is_published: Optional[bool] = None,
    search: Optional[str] = None,
) -> tuple[list[Chapter], int]:
    filters = []
    if story_id is not None:
        filters.append(Chapter.story_id == story_id)
    if is_published is not None:
        filters.append(Chapter.is_published.is_(is_published))
    if search:
        filters.append(Chapter.title.ilike(f"%{search.strip()}%"))

    total_stmt = select(func.count(Chapter.id))
    stmt = select(Chapter).order_by(Chapter.created_at.desc(), Chapter.id.desc())
    if filters:
        total_stmt = total_stmt.where(*filters)
        stmt = stmt.where(*filters)
    total = int((await db.execute(total_stmt)).scalar_one() or 0)
    rows = (await db.execute(stmt.offset((page - 1) * page_size).limit(page_size))).scalars().all()
    return list(rows), total


async def _neighbour(db: AsyncSession, story_id: int, number: int, forward: bool, include_unpublished: bool):
    stmt = select(Chapter).where(Chapter.story_id == story_id)
    if forward:
        stmt = stmt.where(Chapter.number > number).order_by(Chapter.number.asc())
    else:
        stmt = stmt.where(Chapter.number < number).order_by(Chapter.number.desc())
    if not include_unpublished:
        stmt = stmt.where(Chapter.is_published.is_(True))
    return (await db.execute(stmt.limit(1))).scalars().first()


async def read_chapter(
    db: AsyncSession,
    story_id: int,
    number: int,
    viewer: Optional[User] = None,
) -> ChapterReading:
    """
    Open a chapter for reading.

    Unpublished stories and chapters are visible only to whoever manages the
    story. Reading a published chapter counts a view and moves the viewer's
    reading history to it.
    """
    story = await _story_for(db, story_id)
    manager = _can_manage(viewer, story)
    if not story.is_published and not manager:
        raise NotFoundError("Story not found.", resource="story")

    stmt = select(Chapter).where(Chapter.story_id == story.id, Chapter.number == number)
    if not manager:
        stmt = stmt.where(Chapter.is_published.is_(True))
    chapter = (await db.execute(stmt)).scalars().first()
    if not chapter:
        raise NotFoundError("Chapter not found.", resource="chapter")

    if chapter.is_published:
        chapter.view_count = (chapter.view_count or 0) + 1
        await db.flush()

    previous = await _neighbour(db, story.id, chapter.number, forward=False, include_unpublished=manager)
    nxt = await _neighbour(db, story.id, chapter.number, forward=True, include_unpublished=manager)

    if viewer is not None and chapter.is_published:
        await record_reading(db, viewer, story.id, chapter.number)

    return ChapterReading(chapter=chapter, story=story, previous=previous, next=nxt)


# ------------------------------
# writes
# ------------------------------
async def create_chapter(db: AsyncSession, data: dict, actor: User) -> Chapter:
    story_id = data.get("story_id")
    number = data.get("number")
    title = (data.get("title") or "").strip()
    content = data.get("content") or ""
    if not story_id or number is None or not title or not content.strip():
        raise ValidationError("Story ID, chapter number, title, and content are required.")
    if number < 1:
        raise ValidationError("Chapter number must be at least 1.")

    story = await _story_for(db, story_id)
    ensure_owner_or_admin(actor, story.created_by, "Access denied. You can only add chapters to your own stories.")
    await _ensure_number_free(db, story.id, number)

    is_published = bool(data.get("is_published", True))
    chapter = Chapter(
        story_id=story.id,
        number=number,
        title=title,
        content=content,
        word_count=count_words(content),
        notes=data.get("notes") or None,
        is_published=is_published,
        published_at=utcnow() if is_published else None,
        view_count=0,
        like_count=0,
        rating_average=0.0,
        rating_count=0,
        created_by=actor.id,
        last_updated_by=actor.id,
    )
    db.add(chapter)
    try:
        await db.flush()
    except IntegrityError as exc:
        raise DuplicateError(
            f"Chapter {number} already exists for this story.",
            {"story_id": story.id, "number": number},
        ) from exc

    story.total_chapters = (story.total_chapters or 0) + 1
    story.last_updated_by = actor.id
    await db.flush()
    logger.info("Chapter %s (story %s, #%s) created by user %s", chapter.id, story.id, number, actor.id)
    return chapter


async def update_chapter(db: AsyncSession, chapter_id: int, data: dict, actor: User) -> Chapter:
    chapter = await get_chapter(db, chapter_id)
    story = await _story_for(db, chapter.story_id)
    if not _can_manage(actor, story, chapter):
        raise PermissionDeniedError("Access denied. You can only edit your own chapters.")

    number = data.get("number")
    if number is not None and number != chapter.number:
        if number < 1:
            raise ValidationError("Chapter number must be at least 1.")
        await _ensure_number_free(db, chapter.story_id, number, exclude_id=chapter.id)

    for field in EDITABLE_FIELDS:
        if field in data and data[field] is not None:
            value = data[field]
            if field == "title":
                value = value.strip()
                if not value:
                    raise ValidationError("Title cannot be empty.")
            setattr(chapter, field, value)

    if data.get("content") is not None:
        chapter.word_count = count_words(chapter.content)

    chapter.last_updated_by = actor.id
    await db.flush()
    return chapter


async def set_chapter_published(db: AsyncSession, chapter_id: int, is_published: bool, actor: User) -> Chapter:
    chapter = await get_chapter(db, chapter_id)
    chapter.is_published = bool(is_published)
    if chapter.is_published and not chapter.published_at:
        chapter.published_at = utcnow()
    chapter.last_updated_by = actor.id
    await db.flush()
    return chapter


async def delete_chapter(db: AsyncSession, chapter_id: int, actor: User) -> None:
    chapter = await get_chapter(db, chapter_id)
    story = await _story_for(db, chapter.story_id)
    if not _can_manage(actor, story, chapter):
        raise PermissionDeniedError("Access denied. You can only delete your own chapters.")

    await purge_scope_comments(db, chapter_ids=[chapter.id])
    await db.execute(delete(ChapterRating).where(ChapterRating.chapter_id == chapter.id))
    await db.execute(delete(ChapterLike).where(ChapterLike.chapter_id == chapter.id))
    await db.delete(chapter)

    story.total_chapters = max(0, (story.total_chapters or 0) - 1)
    await db.flush()
    logger.info("Chapter %s deleted by user %s", chapter_id, actor.id)


# ------------------------------
# likes and ratings
# ------------------------------
async def toggle_chapter_like(db: AsyncSession, chapter_id: int, user: User) -> tuple[bool, int]:
    chapter = await get_published_chapter(db, chapter_id)

    existing = (
        await db.execute(
            select(ChapterLike)
            .where(ChapterLike.chapter_id == chapter.id, ChapterLike.user_id == user.id)
            .limit(1)
        )
    ).scalars().first()
    if existing:
        await db.delete(existing)
        liked = False
    else:
        db.add(ChapterLike(chapter_id=chapter.id, user_id=user.id))
        liked = True

    try:
        await db.flush()
    except IntegrityError as exc:
        raise DuplicateError("Chapter already liked.", {"chapter_id": chapter_id}) from exc

    chapter.like_count = int(
        (
            await db.execute(select(func.count(ChapterLike.id)).where(ChapterLike.chapter_id == chapter.id))
        ).scalar_one()
        or 0
    )
    await db.flush()
    return liked, chapter.like_count


async def rate_chapter(db: AsyncSession, chapter_id: int, user: User, rating: int) -> tuple[Chapter, bool]:
    """Set ``user``'s rating (last write wins). Returns (chapter, updated_existing)."""
    if isinstance(rating, bool) or not isinstance(rating, int) or not 1 <= rating <= 5:
        raise ValidationError("Rating must be between 1 and 5.")
    chapter = await get_published_chapter(db, chapter_id)

    existing = (
        await db.execute(
            select(ChapterRating)
            .where(ChapterRating.chapter_id == chapter.id, ChapterRating.user_id == user.id)
            .limit(1)
        )
    ).scalars().first()
    if existing:
        existing.rating = rating
        existing.rated_at = utcnow()
    else:
        db.add(ChapterRating(chapter_id=chapter.id, user_id=user.id, rating=rating))

    try:
        await db.flush()
    except IntegrityError as exc:
        raise DuplicateError("Rating already recorded.", {"chapter_id": chapter_id}) from exc

    avg, count = (
        await db.execute(
            select(func.avg(ChapterRating.rating), func.count(ChapterRating.id)).where(
                ChapterRating.chapter_id == chapter.id
            )
        )
    ).one()
    chapter.rating_average = float(avg or 0.0)
    chapter.rating_count = int(count or 0)
    await db.flush()
    return chapter, existing is not None


async def chapter_rating_stats(db: AsyncSession, chapter_id: int) -> dict:
    chapter = await get_published_chapter(db, chapter_id)
    return {"average": chapter.rating_average or 0.0, "count": chapter.rating_count or 0}


async def user_chapter_rating(db: AsyncSession, chapter_id: int, user: User) -> Optional[int]:
    await get_published_chapter(db, chapter_id)
    row = await db.execute(
        select(ChapterRating.rating).where(
            ChapterRating.chapter_id == chapter_id, ChapterRating.user_id == user.id
        )
    )
    return row.scalar_one_or_none()
