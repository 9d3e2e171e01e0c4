import pytest
from sqlalchemy import select, func

from windynovel.exceptions import DuplicateError, NotFoundError, PermissionDeniedError, ValidationError
from windynovel.models.bookmark_model import ReadingHistory
from windynovel.models.chapter_model import ChapterRating
from windynovel.services import chapters as svc
from windynovel.services import comments as comment_service


def _data(story, number, **extra):
    return {
        "story_id": story.id,
        "number": number,
        "title": extra.pop("title", f"Chương {number}"),
        "content": extra.pop("content", "lorem ipsum dolor"),
        **extra,
    }


def test_count_words():
    assert svc.count_words("") == 0
    assert svc.count_words(None) == 0
    assert svc.count_words("  một   hai\nba\tbốn ") == 4


async def test_create_counts_words_and_chapters(db, story, chapter):
    assert chapter.word_count == 4
    assert story.total_chapters == 1


async def test_number_unique_within_story(db, story, chapter, user):
    with pytest.raises(DuplicateError):
        await svc.create_chapter(db, _data(story, 1), user)

    second = await svc.create_chapter(db, _data(story, 2), user)
    with pytest.raises(DuplicateError):
        await svc.update_chapter(db, second.id, {"number": 1}, user)


async def test_only_story_owner_or_admin_creates(db, story, other_user, admin):
    with pytest.raises(PermissionDeniedError):
        await svc.create_chapter(db, _data(story, 2), other_user)
    created = await svc.create_chapter(db, _data(story, 2), admin)
    assert created.created_by == admin.id


async def test_update_recomputes_word_count(db, chapter, user, other_user):
    updated = await svc.update_chapter(db, chapter.id, {"content": "just two"}, user)
    assert updated.word_count == 2

    with pytest.raises(PermissionDeniedError):
        await svc.update_chapter(db, chapter.id, {"title": "mine now"}, other_user)


async def test_delete_decrements_total_and_removes_comments(db, story, chapter, user, other_user):
    await comment_service.create_comment(db, "nice", other_user, chapter_id=chapter.id)
    await svc.rate_chapter(db, chapter.id, other_user, 4)

    with pytest.raises(PermissionDeniedError):
        await svc.delete_chapter(db, chapter.id, other_user)

    await svc.delete_chapter(db, chapter.id, user)
    assert story.total_chapters == 0
    assert (await db.execute(select(func.count(ChapterRating.id)))).scalar_one() == 0
    with pytest.raises(NotFoundError):
        await svc.get_chapter(db, chapter.id)


async def test_total_chapters_never_negative(db, story, chapter, user):
    story.total_chapters = 0
    await db.flush()
    await svc.delete_chapter(db, chapter.id, user)
    assert story.total_chapters == 0


async def test_toggle_chapter_like(db, chapter, user, other_user):
    assert await svc.toggle_chapter_like(db, chapter.id, user) == (True, 1)
    assert await svc.toggle_chapter_like(db, chapter.id, other_user) == (True, 2)
    assert await svc.toggle_chapter_like(db, chapter.id, user) == (False, 1)


async def test_rating_last_write_wins(db, chapter, user, other_user):
    _, updated = await svc.rate_chapter(db, chapter.id, user, 2)
    assert updated is False
    await svc.rate_chapter(db, chapter.id, other_user, 4)
    rated, updated = await svc.rate_chapter(db, chapter.id, user, 5)
    assert updated is True

    assert rated.rating_count == 2
    assert rated.rating_average == pytest.approx(4.5)
    assert await svc.user_chapter_rating(db, chapter.id, user) == 5
    assert await svc.chapter_rating_stats(db, chapter.id) == {"average": pytest.approx(4.5), "count": 2}

    for bad in (0, True):
        with pytest.raises(ValidationError):
            await svc.rate_chapter(db, chapter.id, user, bad)


async def test_read_chapter_navigation_and_history(db, story, chapter, user, other_user):
    hidden = await svc.create_chapter(db, _data(story, 2, is_published=False), user)
    third = await svc.create_chapter(db, _data(story, 3), user)

    reading = await svc.read_chapter(db, story.id, 1, other_user)
    assert reading.previous is None
    assert reading.next.id == third.id
    assert reading.chapter.view_count == 1

    history = (
        await db.execute(select(ReadingHistory).where(ReadingHistory.user_id == other_user.id))
    ).scalars().all()
    assert [(h.story_id, h.chapter_number) for h in history] == [(story.id, 1)]

    # the owner sees the draft in navigation and can open it
    reading = await svc.read_chapter(db, story.id, 1, user)
    assert reading.next.id == hidden.id
    draft = await svc.read_chapter(db, story.id, 2, user)
    assert draft.chapter.view_count == 0

    with pytest.raises(NotFoundError):
        await svc.read_chapter(db, story.id, 2, other_user)
    with pytest.raises(NotFoundError):
        await svc.read_chapter(db, story.id, 2)


async def test_list_story_chapters_hides_drafts_from_readers(db, story, chapter, user, other_user):
    await svc.create_chapter(db, _data(story, 2, is_published=False), user)

    _, rows, total = await svc.list_story_chapters(db, story.id, other_user)
    assert total == 1 and [c.number for c in rows] == [1]

    _, rows, total = await svc.list_story_chapters(db, story.id, user)
    assert [c.number for c in rows] == [1, 2]


async def test_latest_chapters_only_published(db, story, chapter, user, admin):
    draft = await svc.create_chapter(db, _data(story, 2, is_published=False), user)
    latest = await svc.list_latest_chapters(db)
    assert [c.id for c, _ in latest] == [chapter.id]

    await svc.set_chapter_published(db, draft.id, True, admin)
    latest = await svc.list_latest_chapters(db)
    assert [c.id for c, _ in latest] == [draft.id, chapter.id]
