import pytest
from sqlalchemy import select, func

from windynovel.config import COMMENT_MAX_LENGTH, COMMENT_TOMBSTONE
from windynovel.exceptions import (
    ValidationError,
    NotFoundError,
    PermissionDeniedError,
    DuplicateReportError,
)
from windynovel.models.comment_model import Comment, CommentReport
from windynovel.services import comments as svc
from windynovel.services import stories as story_service


async def test_reply_count_follows_create_and_soft_delete(db, chapter, user, other_user):
    c1 = await svc.create_comment(db, "First!", user, chapter_id=chapter.id)
    assert c1.reply_count == 0
    assert c1.is_reply is False

    c2 = await svc.create_comment(db, "Agreed", other_user, chapter_id=chapter.id, parent_id=c1.id)
    assert c2.is_reply is True
    assert c1.reply_count == 1

    await svc.soft_delete_comment(db, c2.id, other_user)
    assert c1.reply_count == 0

    fetched = await svc.get_comment(db, c2.id)
    assert fetched.is_deleted is True
    assert fetched.content == COMMENT_TOMBSTONE
    assert fetched.deleted_at is not None


async def test_recompute_reply_count_is_idempotent(db, chapter, user):
    parent = await svc.create_comment(db, "parent", user, chapter_id=chapter.id)
    for i in range(3):
        await svc.create_comment(db, f"reply {i}", user, chapter_id=chapter.id, parent_id=parent.id)

    # simulate drift from a lost update
    parent.reply_count = 42
    await db.flush()

    assert await svc.recompute_reply_count(db, parent.id) == 3
    assert await svc.recompute_reply_count(db, parent.id) == 3
    assert parent.reply_count == 3


async def test_soft_deleting_parent_leaves_children_alone(db, chapter, user, other_user):
    parent = await svc.create_comment(db, "parent", user, chapter_id=chapter.id)
    child = await svc.create_comment(db, "child", other_user, chapter_id=chapter.id, parent_id=parent.id)

    await svc.soft_delete_comment(db, parent.id, user)

    assert child.is_deleted is False
    assert child.content == "child"
    assert parent.reply_count == 1
    replies = await svc.list_replies(db, parent.id)
    assert [r.id for r in replies] == [child.id]


async def test_create_requires_a_scope(db, user):
    with pytest.raises(ValidationError):
        await svc.create_comment(db, "orphan", user)


@pytest.mark.parametrize("content", ["", "   ", "x" * (COMMENT_MAX_LENGTH + 1)])
async def test_create_rejects_bad_content(db, chapter, user, content):
    with pytest.raises(ValidationError):
        await svc.create_comment(db, content, user, chapter_id=chapter.id)


async def test_create_rejects_missing_or_deleted_parent(db, chapter, user):
    with pytest.raises(ValidationError):
        await svc.create_comment(db, "reply", user, chapter_id=chapter.id, parent_id=9999)

    parent = await svc.create_comment(db, "parent", user, chapter_id=chapter.id)
    await svc.soft_delete_comment(db, parent.id, user)
    with pytest.raises(ValidationError):
        await svc.create_comment(db, "reply", user, chapter_id=chapter.id, parent_id=parent.id)


async def test_replies_cannot_nest(db, chapter, user):
    parent = await svc.create_comment(db, "parent", user, chapter_id=chapter.id)
    reply = await svc.create_comment(db, "reply", user, chapter_id=chapter.id, parent_id=parent.id)
    with pytest.raises(ValidationError):
        await svc.create_comment(db, "deeper", user, chapter_id=chapter.id, parent_id=reply.id)


async def test_reply_must_share_parent_scope(db, story, chapter, user):
    on_story = await svc.create_comment(db, "on story", user, story_id=story.id)
    with pytest.raises(ValidationError):
        await svc.create_comment(db, "reply", user, chapter_id=chapter.id, parent_id=on_story.id)


async def test_create_on_unknown_or_unpublished_scope(db, story, user, admin):
    with pytest.raises(NotFoundError):
        await svc.create_comment(db, "hi", user, story_id=9999)

    await story_service.set_story_published(db, story.id, False, admin)
    with pytest.raises(NotFoundError):
        await svc.create_comment(db, "hi", user, story_id=story.id)


async def test_chapter_must_belong_to_story(db, chapter, user):
    other = await story_service.create_story(
        db, {"title": "Other", "author": "B", "description": "d"}, user
    )
    with pytest.raises(ValidationError):
        await svc.create_comment(db, "hi", user, story_id=other.id, chapter_id=chapter.id)


async def test_edit_by_author_marks_edited(db, chapter, user):
    c = await svc.create_comment(db, "tpyo", user, chapter_id=chapter.id)
    edited = await svc.edit_comment(db, c.id, "  typo  ", user)
    assert edited.content == "typo"
    assert edited.is_edited is True
    assert edited.edited_at is not None


async def test_edit_and_delete_permissions(db, chapter, user, other_user, admin):
    c = await svc.create_comment(db, "mine", user, chapter_id=chapter.id)

    with pytest.raises(PermissionDeniedError):
        await svc.edit_comment(db, c.id, "hijacked", other_user)
    with pytest.raises(PermissionDeniedError):
        await svc.soft_delete_comment(db, c.id, other_user)

    await svc.edit_comment(db, c.id, "moderated", admin)
    await svc.soft_delete_comment(db, c.id, admin)

    # deleted comments are gone for edit, delete and like
    with pytest.raises(NotFoundError):
        await svc.edit_comment(db, c.id, "again", user)
    with pytest.raises(NotFoundError):
        await svc.soft_delete_comment(db, c.id, user)
    with pytest.raises(NotFoundError):
        await svc.toggle_comment_like(db, c.id, user)


async def test_toggle_like_is_self_inverse(db, chapter, user, other_user):
    c = await svc.create_comment(db, "like me", user, chapter_id=chapter.id)

    assert await svc.toggle_comment_like(db, c.id, other_user) == (True, 1)
    assert await svc.toggle_comment_like(db, c.id, user) == (True, 2)
    assert await svc.toggle_comment_like(db, c.id, other_user) == (False, 1)
    assert await svc.toggle_comment_like(db, c.id, user) == (False, 0)
    assert c.like_count == 0


async def test_cannot_like_unapproved_comment(db, chapter, user):
    c = await svc.create_comment(db, "hidden", user, chapter_id=chapter.id)
    await svc.set_comment_approval(db, c.id, False)
    with pytest.raises(NotFoundError):
        await svc.toggle_comment_like(db, c.id, user)


async def test_duplicate_report_stores_one(db, chapter, user, other_user):
    c = await svc.create_comment(db, "spammy", user, chapter_id=chapter.id)
    await svc.report_comment(db, c.id, other_user, "spam")
    with pytest.raises(DuplicateReportError):
        await svc.report_comment(db, c.id, other_user, "other")

    count = (
        await db.execute(select(func.count(CommentReport.id)).where(CommentReport.comment_id == c.id))
    ).scalar_one()
    assert count == 1


async def test_report_reason_must_be_known(db, chapter, user, other_user):
    c = await svc.create_comment(db, "text", user, chapter_id=chapter.id)
    with pytest.raises(ValidationError):
        await svc.report_comment(db, c.id, other_user, "boring")


async def test_list_top_level_filters_and_nests(db, story, chapter, user, other_user):
    a = await svc.create_comment(db, "a", user, chapter_id=chapter.id)
    b = await svc.create_comment(db, "b", user, chapter_id=chapter.id)
    gone = await svc.create_comment(db, "gone", user, chapter_id=chapter.id)
    hidden = await svc.create_comment(db, "hidden", user, chapter_id=chapter.id)
    r1 = await svc.create_comment(db, "r1", other_user, chapter_id=chapter.id, parent_id=a.id)
    r2 = await svc.create_comment(db, "r2", other_user, chapter_id=chapter.id, parent_id=a.id)
    r3 = await svc.create_comment(db, "r3", other_user, chapter_id=chapter.id, parent_id=a.id)
    await svc.soft_delete_comment(db, gone.id, user)
    await svc.soft_delete_comment(db, r2.id, other_user)
    await svc.set_comment_approval(db, hidden.id, False)
    # a story-page comment is not part of the chapter thread
    await svc.create_comment(db, "story level", user, story_id=story.id)

    threads, total = await svc.list_top_level_comments(
        db, svc.SCOPE_CHAPTER, chapter.id, sort_field="created_at", sort_order="asc"
    )
    assert total == 2
    assert [t.comment.id for t in threads] == [a.id, b.id]
    assert [r.id for r in threads[0].replies] == [r1.id, r3.id]
    assert threads[1].replies == []


async def test_story_scope_matches_on_story_id(db, story, chapter, user):
    on_story = await svc.create_comment(db, "story", user, story_id=story.id)
    both = await svc.create_comment(db, "both", user, story_id=story.id, chapter_id=chapter.id)
    await svc.create_comment(db, "chapter only", user, chapter_id=chapter.id)

    threads, total = await svc.list_top_level_comments(
        db, svc.SCOPE_STORY, story.id, sort_field="created_at", sort_order="asc"
    )
    assert total == 2
    assert [t.comment.id for t in threads] == [on_story.id, both.id]

    _, total = await svc.list_top_level_comments(db, svc.SCOPE_CHAPTER, chapter.id)
    assert total == 2


async def test_list_top_level_pagination_and_sort(db, chapter, user, other_user):
    ids = [(await svc.create_comment(db, f"c{i}", user, chapter_id=chapter.id)).id for i in range(5)]
    await svc.toggle_comment_like(db, ids[2], other_user)

    page2, total = await svc.list_top_level_comments(
        db, svc.SCOPE_CHAPTER, chapter.id, page=2, page_size=2, sort_field="created_at", sort_order="asc"
    )
    assert total == 5
    assert [t.comment.id for t in page2] == ids[2:4]

    by_likes, _ = await svc.list_top_level_comments(
        db, svc.SCOPE_CHAPTER, chapter.id, page_size=1, sort_field="like_count", sort_order="desc"
    )
    assert by_likes[0].comment.id == ids[2]


async def test_list_top_level_rejects_unknown_sort(db, chapter):
    with pytest.raises(ValidationError):
        await svc.list_top_level_comments(db, svc.SCOPE_CHAPTER, chapter.id, sort_field="content")
    with pytest.raises(ValidationError):
        await svc.list_top_level_comments(db, svc.SCOPE_CHAPTER, chapter.id, sort_order="sideways")


async def test_user_comments_own_or_admin(db, chapter, user, other_user, admin):
    await svc.create_comment(db, "mine", user, chapter_id=chapter.id)
    rows, total = await svc.list_user_comments(db, user.id, user)
    assert total == 1 and rows[0].content == "mine"

    rows, total = await svc.list_user_comments(db, user.id, admin)
    assert total == 1

    with pytest.raises(PermissionDeniedError):
        await svc.list_user_comments(db, user.id, other_user)


async def test_admin_list_filters_reported(db, chapter, user, other_user):
    clean = await svc.create_comment(db, "clean", user, chapter_id=chapter.id)
    flagged = await svc.create_comment(db, "flag me", user, chapter_id=chapter.id)
    await svc.report_comment(db, flagged.id, other_user, "harassment")

    rows, total = await svc.list_all_comments(db, has_reports=True)
    assert total == 1 and rows[0].id == flagged.id

    rows, total = await svc.list_all_comments(db, search="clean")
    assert [r.id for r in rows] == [clean.id]

    reports = await svc.reports_for(db, [flagged.id, clean.id])
    assert [r.reason.value for r in reports[flagged.id]] == ["harassment"]
    assert clean.id not in reports


async def test_purge_removes_comment_and_replies(db, chapter, user, other_user):
    parent = await svc.create_comment(db, "parent", user, chapter_id=chapter.id)
    reply = await svc.create_comment(db, "reply", other_user, chapter_id=chapter.id, parent_id=parent.id)
    await svc.toggle_comment_like(db, reply.id, user)
    await svc.report_comment(db, reply.id, user, "spam")

    await svc.purge_comment(db, reply.id)
    assert parent.reply_count == 0

    await svc.purge_comment(db, parent.id)
    remaining = (await db.execute(select(func.count(Comment.id)))).scalar_one()
    assert remaining == 0
    with pytest.raises(NotFoundError):
        await svc.get_comment(db, parent.id)
