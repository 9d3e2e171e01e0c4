from typing import Iterable, List, Optional

from fastapi import APIRouter, Depends, Query, status
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from windynovel.database import get_async_session
from windynovel.deps.auth import get_current_user, get_current_user_optional, require_admin
from windynovel.models.comment_model import Comment
from windynovel.models.user_model import User
from windynovel.schemas.common import MessageOut, PageOut, page_out
from windynovel.schemas.comment_schemas import (
    CreateCommentIn, UpdateCommentIn, ReportIn, ApprovalIn,
    CommentOut, AdminCommentOut, ReportOut, CommentLikeOut,
)
from windynovel.schemas.user_schemas import UserSummaryOut
from windynovel.services import comments as comment_service

router = APIRouter(prefix="/comments", tags=["comments"])


# ------------------------------
# helpers
# ------------------------------
async def _authors(db: AsyncSession, comments: Iterable[Comment]) -> dict[int, User]:
    ids = {c.user_id for c in comments if c.user_id is not None}
    if not ids:
        return {}
    rows = (await db.execute(select(User).where(User.id.in_(ids)))).scalars().all()
    return {u.id: u for u in rows}


def _comment_to_out(
    c: Comment,
    authors: dict[int, User],
    liked: set[int],
    replies: Optional[List[CommentOut]] = None,
) -> CommentOut:
    author = authors.get(c.user_id)
    return CommentOut(
        id=c.id,
        content=c.content,
        story_id=c.story_id,
        chapter_id=c.chapter_id,
        parent_id=c.parent_id,
        is_reply=bool(c.is_reply),
        like_count=c.like_count or 0,
        reply_count=c.reply_count or 0,
        is_liked=c.id in liked,
        is_edited=bool(c.is_edited),
        edited_at=c.edited_at,
        is_deleted=bool(c.is_deleted),
        created_at=c.created_at,
        updated_at=c.updated_at,
        author=UserSummaryOut.model_validate(author) if author else None,
        replies=replies or [],
    )


async def _comments_to_out(db: AsyncSession, comments: List[Comment], viewer: Optional[User]) -> List[CommentOut]:
    authors = await _authors(db, comments)
    liked = await comment_service.liked_comment_ids(db, viewer.id if viewer else None, [c.id for c in comments])
    return [_comment_to_out(c, authors, liked) for c in comments]


async def _threads_page(db, threads, total, page, page_size, viewer) -> dict:
    flat = [t.comment for t in threads] + [r for t in threads for r in t.replies]
    authors = await _authors(db, flat)
    liked = await comment_service.liked_comment_ids(db, viewer.id if viewer else None, [c.id for c in flat])
    items = [
        _comment_to_out(
            t.comment, authors, liked,
            replies=[_comment_to_out(r, authors, liked) for r in t.replies],
        )
        for t in threads
    ]
    return page_out(items, page, page_size, total)


# ------------------------------
# listings
# ------------------------------
@router.get("/story/{story_id}", response_model=PageOut[CommentOut])
async def story_comments(
    story_id: int,
    page: int = Query(1, ge=1),
    page_size: int = Query(20, ge=1, le=100),
    sort_by: str = "created_at",
    sort_order: str = "desc",
    viewer: Optional[User] = Depends(get_current_user_optional),
    db: AsyncSession = Depends(get_async_session),
):
    threads, total = await comment_service.list_top_level_comments(
        db, comment_service.SCOPE_STORY, story_id, page, page_size, sort_by, sort_order
    )
    return await _threads_page(db, threads, total, page, page_size, viewer)


@router.get("/chapter/{chapter_id}", response_model=PageOut[CommentOut])
async def chapter_comments(
    chapter_id: int,
    page: int = Query(1, ge=1),
    page_size: int = Query(20, ge=1, le=100),
    sort_by: str = "created_at",
    sort_order: str = "desc",
    viewer: Optional[User] = Depends(get_current_user_optional),
    db: AsyncSession = Depends(get_async_session),
):
    threads, total = await comment_service.list_top_level_comments(
        db, comment_service.SCOPE_CHAPTER, chapter_id, page, page_size, sort_by, sort_order
    )
    return await _threads_page(db, threads, total, page, page_size, viewer)


@router.get("/latest", response_model=List[CommentOut])
async def latest_comments(
    limit: int = Query(10, ge=1, le=50),
    viewer: Optional[User] = Depends(get_current_user_optional),
    db: AsyncSession = Depends(get_async_session),
):
    rows = await comment_service.list_latest_comments(db, limit)
    return await _comments_to_out(db, rows, viewer)


@router.get("/admin/all", response_model=PageOut[AdminCommentOut])
async def admin_list_comments(
    page: int = Query(1, ge=1),
    page_size: int = Query(20, ge=1, le=100),
    search: Optional[str] = None,
    is_approved: Optional[bool] = None,
    is_deleted: Optional[bool] = None,
    has_reports: Optional[bool] = None,
    sort_by: str = "created_at",
    sort_order: str = "desc",
    _admin: User = Depends(require_admin),
    db: AsyncSession = Depends(get_async_session),
):
    rows, total = await comment_service.list_all_comments(
        db, page, page_size, search, is_approved, is_deleted, has_reports, sort_by, sort_order
    )
    authors = await _authors(db, rows)
    reports = await comment_service.reports_for(db, [c.id for c in rows])
    items = []
    for c in rows:
        base = _comment_to_out(c, authors, set()).model_dump()
        mine = reports.get(c.id, [])
        items.append(
            AdminCommentOut(
                **base,
                is_approved=bool(c.is_approved),
                deleted_at=c.deleted_at,
                report_count=len(mine),
                reports=[
                    ReportOut(user_id=r.user_id, reason=r.reason.value, reported_at=r.reported_at)
                    for r in mine
                ],
            )
        )
    return page_out(items, page, page_size, total)


@router.get("/user/{user_id}", response_model=PageOut[CommentOut])
async def user_comments(
    user_id: int,
    page: int = Query(1, ge=1),
    page_size: int = Query(20, ge=1, le=100),
    user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_async_session),
):
    rows, total = await comment_service.list_user_comments(db, user_id, user, page, page_size)
    return page_out(await _comments_to_out(db, rows, user), page, page_size, total)


# ------------------------------
# single comment
# ------------------------------
@router.post("", response_model=CommentOut, status_code=status.HTTP_201_CREATED)
async def create_comment(
    body: CreateCommentIn,
    user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_async_session),
):
    comment = await comment_service.create_comment(
        db, body.content, user,
        story_id=body.story_id, chapter_id=body.chapter_id, parent_id=body.parent_id,
    )
    await db.commit()
    return _comment_to_out(comment, {user.id: user}, set())


@router.get("/{comment_id}", response_model=CommentOut)
async def get_comment(
    comment_id: int,
    viewer: Optional[User] = Depends(get_current_user_optional),
    db: AsyncSession = Depends(get_async_session),
):
    comment = await comment_service.get_comment(db, comment_id)
    return (await _comments_to_out(db, [comment], viewer))[0]


@router.get("/{comment_id}/replies", response_model=List[CommentOut])
async def comment_replies(
    comment_id: int,
    viewer: Optional[User] = Depends(get_current_user_optional),
    db: AsyncSession = Depends(get_async_session),
):
    rows = await comment_service.list_replies(db, comment_id)
    return await _comments_to_out(db, rows, viewer)


@router.put("/{comment_id}", response_model=CommentOut)
async def edit_comment(
    comment_id: int,
    body: UpdateCommentIn,
    user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_async_session),
):
    comment = await comment_service.edit_comment(db, comment_id, body.content, user)
    await db.commit()
    return (await _comments_to_out(db, [comment], user))[0]


@router.delete("/{comment_id}", response_model=MessageOut)
async def delete_comment(
    comment_id: int,
    user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_async_session),
):
    await comment_service.soft_delete_comment(db, comment_id, user)
    await db.commit()
    return MessageOut(message="Comment deleted successfully.")


@router.post("/{comment_id}/like", response_model=CommentLikeOut)
async def like_comment(
    comment_id: int,
    user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_async_session),
):
    liked, count = await comment_service.toggle_comment_like(db, comment_id, user)
    await db.commit()
    return CommentLikeOut(liked=liked, like_count=count)


@router.post("/{comment_id}/report", response_model=MessageOut)
async def report_comment(
    comment_id: int,
    body: ReportIn,
    user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_async_session),
):
    await comment_service.report_comment(db, comment_id, user, body.reason)
    await db.commit()
    return MessageOut(message="Comment reported successfully.")


@router.put("/{comment_id}/approve", response_model=AdminCommentOut)
async def approve_comment(
    comment_id: int,
    body: ApprovalIn,
    _admin: User = Depends(require_admin),
    db: AsyncSession = Depends(get_async_session),
):
    comment = await comment_service.set_comment_approval(db, comment_id, body.is_approved)
    await db.commit()
    authors = await _authors(db, [comment])
    return AdminCommentOut(
        **_comment_to_out(comment, authors, set()).model_dump(),
        is_approved=bool(comment.is_approved),
        deleted_at=comment.deleted_at,
    )


@router.delete("/{comment_id}/admin", response_model=MessageOut)
async def purge_comment(
    comment_id: int,
    _admin: User = Depends(require_admin),
    db: AsyncSession = Depends(get_async_session),
):
    await comment_service.purge_comment(db, comment_id)
    await db.commit()
    return MessageOut(message="Comment permanently deleted.")
