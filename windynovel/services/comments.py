"""Comment threads on stories and chapters.

Threads are two levels deep: top-level comments (``parent_id`` is NULL) and
their direct replies. ``reply_count`` and ``like_count`` are never
incremented in place; every mutation recounts them from the source rows, so
a lost update heals on the next write.

Deleting is soft: the row stays, content is replaced by a tombstone, and the
comment drops out of listings and of its parent's reply count. Replies to a
deleted comment are left alone and keep counting towards it.
"""

import logging
from dataclasses import dataclass, field
from typing import Optional, Union

from sqlalchemy import select, func, delete, or_
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from windynovel.config import COMMENT_MAX_LENGTH, COMMENT_TOMBSTONE
from windynovel.database import utcnow
from windynovel.exceptions import (
    ValidationError,
    NotFoundError,
    DuplicateError,
    DuplicateReportError,
    PermissionDeniedError,
)
from windynovel.models.chapter_model import Chapter
from windynovel.models.comment_model import Comment, CommentLike, CommentReport, ReportReason
from windynovel.models.story_model import Story
from windynovel.models.user_model import User
from windynovel.services.permissions import ensure_owner_or_admin, is_admin

logger = logging.getLogger(__name__)

SCOPE_STORY = "story"
SCOPE_CHAPTER = "chapter"

SORT_FIELDS = {
    "created_at": Comment.created_at,
    "createdAt": Comment.created_at,
    "updated_at": Comment.updated_at,
    "updatedAt": Comment.updated_at,
    "like_count": Comment.like_count,
    "likeCount": Comment.like_count,
    "reply_count": Comment.reply_count,
    "replyCount": Comment.reply_count,
}


@dataclass
class CommentThread:
    comment: Comment
    replies: list[Comment] = field(default_factory=list)


# ------------------------------
# helpers
# ------------------------------
def _clean_content(content: Optional[str]) -> str:
    text = (content or "").strip()
    if not text:
        raise ValidationError("Comment content is required.")
    if len(text) > COMMENT_MAX_LENGTH:
        raise ValidationError(
            f"Comment cannot exceed {COMMENT_MAX_LENGTH} characters",
            {"max_length": COMMENT_MAX_LENGTH},
        )
    return text


def _order_by(sort_field: str, sort_order: str):
    column = SORT_FIELDS.get(sort_field)
    if column is None:
        raise ValidationError(
            f"Cannot sort comments by '{sort_field}'",
            {"allowed": sorted(k for k in SORT_FIELDS if "_" in k)},
        )
    order = (sort_order or "desc").lower()
    if order not in ("asc", "desc"):
        raise ValidationError("sort_order must be 'asc' or 'desc'")
    if order == "asc":
        return column.asc(), Comment.id.asc()
    return column.desc(), Comment.id.desc()


def _parse_reason(reason: Union[str, ReportReason, None]) -> ReportReason:
    if isinstance(reason, ReportReason):
        return reason
    try:
        return ReportReason((reason or "").strip().lower())
    except ValueError:
        raise ValidationError(
            "Invalid report reason",
            {"allowed": [r.value for r in ReportReason]},
        )


async def _load_published_story(db: AsyncSession, story_id: int) -> Story:
    story = await db.get(Story, story_id)
    if not story or not story.is_published:
        raise NotFoundError("Story not found.", resource="story")
    return story


async def _load_published_chapter(db: AsyncSession, chapter_id: int) -> Chapter:
    chapter = await db.get(Chapter, chapter_id)
    if not chapter or not chapter.is_published:
        raise NotFoundError("Chapter not found.", resource="chapter")
    return chapter


async def get_comment(db: AsyncSession, comment_id: int) -> Comment:
    """Fetch by id, soft-deleted comments included (their content is the tombstone)."""
    comment = await db.get(Comment, comment_id)
    if not comment:
        raise NotFoundError("Comment not found.", resource="comment")
    return comment


async def get_active_comment(db: AsyncSession, comment_id: int) -> Comment:
    comment = await db.get(Comment, comment_id)
    if not comment or comment.is_deleted:
        raise NotFoundError("Comment not found.", resource="comment")
    return comment


# ------------------------------
# counters
# ------------------------------
async def recompute_reply_count(db: AsyncSession, parent_id: int) -> int:
    """Set the parent's reply_count to its number of non-deleted direct children."""
    count = int(
        (
            await db.execute(
                select(func.count(Comment.id)).where(
                    Comment.parent_id == parent_id,
                    Comment.is_deleted.is_(False),
                )
            )
        ).scalar_one()
        or 0
    )
    parent = await db.get(Comment, parent_id)
    if parent is not None:
        parent.reply_count = count
        await db.flush()
    return count


async def _count_likes(db: AsyncSession, comment_id: int) -> int:
    return int(
        (
            await db.execute(
                select(func.count(CommentLike.id)).where(CommentLike.comment_id == comment_id)
            )
        ).scalar_one()
        or 0
    )


# ------------------------------
# operations
# ------------------------------
async def create_comment(
    db: AsyncSession,
    content: str,
    author: User,
    story_id: Optional[int] = None,
    chapter_id: Optional[int] = None,
    parent_id: Optional[int] = None,
) -> Comment:
    text = _clean_content(content)

    if not story_id and not chapter_id:
        raise ValidationError("Either story ID or chapter ID is required.")

    if story_id:
        await _load_published_story(db, story_id)
    if chapter_id:
        chapter = await _load_published_chapter(db, chapter_id)
        if story_id and chapter.story_id != story_id:
            raise ValidationError("Chapter does not belong to this story.")

    if parent_id is not None:
        parent = await db.get(Comment, parent_id)
        if not parent or parent.is_deleted:
            raise ValidationError("Parent comment not found.", {"parent_id": parent_id})
        if parent.parent_id is not None:
            raise ValidationError("Replies cannot be nested under another reply.")
        if parent.story_id != (story_id or None) or parent.chapter_id != (chapter_id or None):
            raise ValidationError("Parent comment belongs to a different story or chapter.")

    comment = Comment(
        content=text,
        user_id=author.id,
        story_id=story_id or None,
        chapter_id=chapter_id or None,
        parent_id=parent_id,
        is_reply=parent_id is not None,
        like_count=0,
        reply_count=0,
    )
    db.add(comment)
    await db.flush()

    if parent_id is not None:
        await recompute_reply_count(db, parent_id)
    return comment


async def edit_comment(db: AsyncSession, comment_id: int, content: str, actor: User) -> Comment:
    comment = await get_active_comment(db, comment_id)
    ensure_owner_or_admin(actor, comment.user_id, "Access denied. You can only edit your own comments.")

    comment.content = _clean_content(content)
    comment.is_edited = True
    comment.edited_at = utcnow()
    await db.flush()
    return comment


async def soft_delete_comment(db: AsyncSession, comment_id: int, actor: User) -> Comment:
    comment = await get_active_comment(db, comment_id)
    ensure_owner_or_admin(actor, comment.user_id, "Access denied. You can only delete your own comments.")

    comment.is_deleted = True
    comment.deleted_at = utcnow()
    comment.content = COMMENT_TOMBSTONE
    await db.flush()

    if comment.parent_id is not None:
        await recompute_reply_count(db, comment.parent_id)
    return comment


async def toggle_comment_like(db: AsyncSession, comment_id: int, user: User) -> tuple[bool, int]:
    """Like if not yet liked by ``user``, otherwise unlike. Returns (liked, like_count)."""
    comment = await get_active_comment(db, comment_id)
    if not comment.is_approved:
        raise NotFoundError("Comment not found.", resource="comment")

    existing = (
        await db.execute(
            select(CommentLike)
            .where(CommentLike.comment_id == comment.id, CommentLike.user_id == user.id)
            .limit(1)
        )
    ).scalars().first()

    if existing:
        await db.delete(existing)
        liked = False
    else:
        db.add(CommentLike(comment_id=comment.id, user_id=user.id))
        liked = True

    try:
        await db.flush()
    except IntegrityError as exc:
        # another request from the same user inserted the like first
        raise DuplicateError("Comment already liked.", {"comment_id": comment_id}) from exc

    comment.like_count = await _count_likes(db, comment.id)
    await db.flush()
    return liked, comment.like_count


async def report_comment(
    db: AsyncSession,
    comment_id: int,
    user: User,
    reason: Union[str, ReportReason],
) -> Comment:
    parsed = _parse_reason(reason)
    comment = await get_active_comment(db, comment_id)

    existing = (
        await db.execute(
            select(CommentReport.id)
            .where(CommentReport.comment_id == comment.id, CommentReport.user_id == user.id)
            .limit(1)
        )
    ).first()
    if existing:
        raise DuplicateReportError()

    db.add(CommentReport(comment_id=comment.id, user_id=user.id, reason=parsed))
    try:
        await db.flush()
    except IntegrityError as exc:
        raise DuplicateReportError() from exc

    logger.info("Comment %s reported by user %s (%s)", comment.id, user.id, parsed.value)
    return comment


# ------------------------------
# listings
# ------------------------------
async def list_top_level_comments(
    db: AsyncSession,
    scope_type: str,
    scope_id: int,
    page: int = 1,
    page_size: int = 20,
    sort_field: str = "created_at",
    sort_order: str = "desc",
) -> tuple[list[CommentThread], int]:
    """
    Visible top-level comments for a story or chapter, one page at a time,
    each with all of its visible replies (oldest first). Only the top-level
    set is paginated. Story scope covers every comment carrying the story id,
    including ones that also name a chapter.
    """
    if scope_type == SCOPE_STORY:
        await _load_published_story(db, scope_id)
        scope_filters = [Comment.story_id == scope_id]
    elif scope_type == SCOPE_CHAPTER:
        await _load_published_chapter(db, scope_id)
        scope_filters = [Comment.chapter_id == scope_id]
    else:
        raise ValidationError(f"Unknown comment scope '{scope_type}'")

    if page < 1 or page_size < 1:
        raise ValidationError("page and page_size must be positive")

    filters = [
        *scope_filters,
        Comment.parent_id.is_(None),
        Comment.is_deleted.is_(False),
        Comment.is_approved.is_(True),
    ]

    total = int(
        (await db.execute(select(func.count(Comment.id)).where(*filters))).scalar_one() or 0
    )

    roots = (
        await db.execute(
            select(Comment)
            .where(*filters)
            .order_by(*_order_by(sort_field, sort_order))
            .offset((page - 1) * page_size)
            .limit(page_size)
        )
    ).scalars().all()

    by_parent: dict[int, list[Comment]] = {}
    root_ids = [c.id for c in roots]
    if root_ids:
        replies = (
            await db.execute(
                select(Comment)
                .where(
                    Comment.parent_id.in_(root_ids),
                    Comment.is_deleted.is_(False),
                    Comment.is_approved.is_(True),
                )
                .order_by(Comment.created_at.asc(), Comment.id.asc())
            )
        ).scalars().all()
        for r in replies:
            by_parent.setdefault(r.parent_id, []).append(r)

    return [CommentThread(comment=c, replies=by_parent.get(c.id, [])) for c in roots], total


async def list_replies(db: AsyncSession, parent_id: int) -> list[Comment]:
    """Visible replies of any comment, including one that has been soft-deleted."""
    await get_comment(db, parent_id)
    return list(
        (
            await db.execute(
                select(Comment)
                .where(
                    Comment.parent_id == parent_id,
                    Comment.is_deleted.is_(False),
                    Comment.is_approved.is_(True),
                )
                .order_by(Comment.created_at.asc(), Comment.id.asc())
            )
        ).scalars().all()
    )


async def liked_comment_ids(db: AsyncSession, user_id: Optional[int], comment_ids: list[int]) -> set[int]:
    if not user_id or not comment_ids:
        return set()
    rows = await db.execute(
        select(CommentLike.comment_id).where(
            CommentLike.user_id == user_id,
            CommentLike.comment_id.in_(comment_ids),
        )
    )
    return {cid for (cid,) in rows.all()}


async def list_user_comments(
    db: AsyncSession,
    user_id: int,
    actor: User,
    page: int = 1,
    page_size: int = 20,
) -> tuple[list[Comment], int]:
    if actor.id != user_id and not is_admin(actor):
        raise PermissionDeniedError("Access denied.")

    filters = [Comment.user_id == user_id, Comment.is_deleted.is_(False)]
    total = int((await db.execute(select(func.count(Comment.id)).where(*filters))).scalar_one() or 0)
    rows = (
        await db.execute(
            select(Comment)
            .where(*filters)
            .order_by(Comment.created_at.desc(), Comment.id.desc())
            .offset((page - 1) * page_size)
            .limit(page_size)
        )
    ).scalars().all()
    return list(rows), total


async def list_latest_comments(db: AsyncSession, limit: int = 10) -> list[Comment]:
    rows = (
        await db.execute(
            select(Comment)
            .where(
                Comment.is_deleted.is_(False),
                Comment.is_approved.is_(True),
                Comment.parent_id.is_(None),
            )
            .order_by(Comment.created_at.desc(), Comment.id.desc())
            .limit(limit)
        )
    ).scalars().all()
    return list(rows)


# ------------------------------
# moderation (admin)
# ------------------------------
async def list_all_comments(
    db: AsyncSession,
    page: int = 1,
    page_size: int = 20,
    search: Optional[str] = None,
    is_approved: Optional[bool] = None,
    is_deleted: Optional[bool] = None,
    has_reports: Optional[bool] = None,
    sort_field: str = "created_at",
    sort_order: str = "desc",
) -> tuple[list[Comment], int]:
    filters = []
    if search:
        filters.append(Comment.content.ilike(f"%{search}%"))
    if is_approved is not None:
        filters.append(Comment.is_approved.is_(is_approved))
    if is_deleted is not None:
        filters.append(Comment.is_deleted.is_(is_deleted))
    if has_reports:
        filters.append(Comment.id.in_(select(CommentReport.comment_id)))

    total_stmt = select(func.count(Comment.id))
    stmt = select(Comment).order_by(*_order_by(sort_field, sort_order))
    if filters:
        total_stmt = total_stmt.where(*filters)
        stmt = stmt.where(*filters)

    total = int((await db.execute(total_stmt)).scalar_one() or 0)
    rows = (await db.execute(stmt.offset((page - 1) * page_size).limit(page_size))).scalars().all()
    return list(rows), total


async def reports_for(db: AsyncSession, comment_ids: list[int]) -> dict[int, list[CommentReport]]:
    if not comment_ids:
        return {}
    rows = (
        await db.execute(
            select(CommentReport)
            .where(CommentReport.comment_id.in_(comment_ids))
            .order_by(CommentReport.reported_at.asc(), CommentReport.id.asc())
        )
    ).scalars().all()
    out: dict[int, list[CommentReport]] = {}
    for r in rows:
        out.setdefault(r.comment_id, []).append(r)
    return out


async def set_comment_approval(db: AsyncSession, comment_id: int, is_approved: bool) -> Comment:
    comment = await get_comment(db, comment_id)
    comment.is_approved = bool(is_approved)
    await db.flush()
    logger.info("Comment %s %s", comment.id, "approved" if is_approved else "unapproved")
    return comment


async def purge_comments(db: AsyncSession, comment_ids: list[int]) -> None:
    """Hard-delete comments plus their likes, reports and replies."""
    if not comment_ids:
        return
    child_ids = [
        cid
        for (cid,) in (
            await db.execute(select(Comment.id).where(Comment.parent_id.in_(comment_ids)))
        ).all()
    ]
    all_ids = list(set(comment_ids) | set(child_ids))
    await db.execute(delete(CommentLike).where(CommentLike.comment_id.in_(all_ids)))
    await db.execute(delete(CommentReport).where(CommentReport.comment_id.in_(all_ids)))
    # replies first so the self-referencing FK never dangles
    await db.execute(delete(Comment).where(Comment.id.in_(child_ids)))
    await db.execute(delete(Comment).where(Comment.id.in_(comment_ids)))
    await db.flush()


async def purge_comment(db: AsyncSession, comment_id: int) -> None:
    comment = await get_comment(db, comment_id)
    parent_id = comment.parent_id
    await purge_comments(db, [comment.id])
    if parent_id is not None:
        await recompute_reply_count(db, parent_id)
    logger.info("Comment %s permanently deleted", comment_id)


async def purge_scope_comments(
    db: AsyncSession,
    story_id: Optional[int] = None,
    chapter_ids: Optional[list[int]] = None,
) -> None:
    """Hard-delete every comment attached to a story and/or a set of chapters."""
    conds = []
    if story_id is not None:
        conds.append(Comment.story_id == story_id)
    if chapter_ids:
        conds.append(Comment.chapter_id.in_(chapter_ids))
    if not conds:
        return
    ids = [cid for (cid,) in (await db.execute(select(Comment.id).where(or_(*conds)))).all()]
    await purge_comments(db, ids)
