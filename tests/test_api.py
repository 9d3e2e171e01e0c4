async def test_health(client):
    resp = await client.get("/api/health")
    assert resp.status_code == 200
    assert resp.json()["success"] is True


async def test_register_login_me(client):
    body = {
        "username": "fresh_reader",
        "email": "Fresh@Example.com",
        "password": "hunter22",
        "confirm_password": "hunter22",
    }
    resp = await client.post("/api/auth/register", json=body)
    assert resp.status_code == 201
    data = resp.json()
    assert data["token_type"] == "bearer"
    assert data["user"]["email"] == "fresh@example.com"

    resp = await client.post("/api/auth/register", json=body)
    assert resp.status_code == 409
    assert resp.json() == {"success": False, "message": "Email already exists.", "details": {"field": "email"}}

    resp = await client.post("/api/auth/login", json={"login": "fresh_reader", "password": "hunter22"})
    assert resp.status_code == 200
    token = resp.json()["access_token"]

    resp = await client.get("/api/auth/me", headers={"Authorization": f"Bearer {token}"})
    assert resp.status_code == 200
    assert resp.json()["username"] == "fresh_reader"


async def test_register_password_mismatch_is_422(client):
    resp = await client.post(
        "/api/auth/register",
        json={"username": "abc", "email": "abc@example.com", "password": "hunter22", "confirm_password": "hunter23"},
    )
    assert resp.status_code == 422


async def test_bad_login_is_401(client, user):
    resp = await client.post("/api/auth/login", json={"login": user.username, "password": "nope-nope"})
    assert resp.status_code == 401
    assert resp.json()["success"] is False
    assert resp.headers["www-authenticate"] == "Bearer"


async def test_auth_required(client):
    resp = await client.post("/api/stories", json={"title": "t", "author": "a", "description": "d"})
    assert resp.status_code == 401

    resp = await client.get("/api/auth/me", headers={"Authorization": "Bearer not-a-jwt"})
    assert resp.status_code == 401


async def test_story_slugs_over_http(client, user_headers):
    base = {"author": "A", "description": "d"}
    first = await client.post("/api/stories", json={"title": "Hello World!!", **base}, headers=user_headers)
    second = await client.post("/api/stories", json={"title": "Hello, World", **base}, headers=user_headers)
    assert first.status_code == 201
    assert first.json()["slug"] == "hello-world"
    assert second.json()["slug"] == "hello-world-1"

    dup = await client.post("/api/stories", json={"title": "Hello World!!", **base}, headers=user_headers)
    assert dup.status_code == 409

    detail = await client.get("/api/stories/hello-world-1", headers=user_headers)
    assert detail.status_code == 200
    body = detail.json()
    assert body["view_count"] == 1
    assert body["chapter_count"] == 0
    assert body["is_bookmarked"] is False

    listing = await client.get("/api/stories", params={"sort_by": "title", "sort_order": "asc"})
    assert listing.json()["total"] == 2
    assert [s["title"] for s in listing.json()["items"]] == ["Hello World!!", "Hello, World"]

    missing = await client.get("/api/stories/nope")
    assert missing.status_code == 404
    assert missing.json()["details"] == {"resource": "story"}


async def test_story_admin_routes_need_admin(client, story, user_headers, admin_headers):
    resp = await client.put(f"/api/stories/{story.id}/feature", json={"featured": True}, headers=user_headers)
    assert resp.status_code == 403

    resp = await client.put(
        f"/api/stories/{story.id}/feature", json={"featured": True, "featured_order": 3}, headers=admin_headers
    )
    assert resp.status_code == 200
    featured = await client.get("/api/stories/featured")
    assert [s["id"] for s in featured.json()] == [story.id]


async def test_comment_thread_over_http(client, chapter, user_headers, other_headers):
    resp = await client.post("/api/comments", json={"content": "First!", "chapter_id": chapter.id}, headers=user_headers)
    assert resp.status_code == 201
    c1 = resp.json()
    assert c1["reply_count"] == 0
    assert c1["author"]["username"] == "reader"

    resp = await client.post(
        "/api/comments",
        json={"content": "Agreed", "chapter_id": chapter.id, "parent_id": c1["id"]},
        headers=other_headers,
    )
    c2 = resp.json()
    assert c2["is_reply"] is True

    page = (await client.get(f"/api/comments/chapter/{chapter.id}")).json()
    assert page["total"] == 1
    assert page["items"][0]["reply_count"] == 1
    assert [r["id"] for r in page["items"][0]["replies"]] == [c2["id"]]

    liked = await client.post(f"/api/comments/{c1['id']}/like", headers=other_headers)
    assert liked.json() == {"liked": True, "like_count": 1}
    page = (await client.get(f"/api/comments/chapter/{chapter.id}", headers=other_headers)).json()
    assert page["items"][0]["is_liked"] is True
    unliked = await client.post(f"/api/comments/{c1['id']}/like", headers=other_headers)
    assert unliked.json() == {"liked": False, "like_count": 0}

    forbidden = await client.delete(f"/api/comments/{c2['id']}", headers=user_headers)
    assert forbidden.status_code == 403

    deleted = await client.delete(f"/api/comments/{c2['id']}", headers=other_headers)
    assert deleted.status_code == 200
    tomb = (await client.get(f"/api/comments/{c2['id']}")).json()
    assert tomb["is_deleted"] is True
    assert tomb["content"] == "[Comment has been deleted]"
    parent = (await client.get(f"/api/comments/{c1['id']}")).json()
    assert parent["reply_count"] == 0


async def test_comment_validation_over_http(client, chapter, user_headers):
    resp = await client.post("/api/comments", json={"content": "no scope"}, headers=user_headers)
    assert resp.status_code == 400
    assert resp.json()["success"] is False

    resp = await client.get(f"/api/comments/chapter/{chapter.id}", params={"sort_by": "content"})
    assert resp.status_code == 400


async def test_duplicate_report_is_409(client, chapter, user_headers, other_headers):
    c = (
        await client.post("/api/comments", json={"content": "meh", "chapter_id": chapter.id}, headers=user_headers)
    ).json()
    first = await client.post(f"/api/comments/{c['id']}/report", json={"reason": "spam"}, headers=other_headers)
    assert first.status_code == 200
    again = await client.post(f"/api/comments/{c['id']}/report", json={"reason": "spam"}, headers=other_headers)
    assert again.status_code == 409
    assert again.json()["message"] == "You have already reported this comment."


async def test_admin_comment_moderation(client, chapter, user_headers, other_headers, admin_headers):
    c = (
        await client.post("/api/comments", json={"content": "rude", "chapter_id": chapter.id}, headers=user_headers)
    ).json()
    await client.post(f"/api/comments/{c['id']}/report", json={"reason": "harassment"}, headers=other_headers)

    assert (await client.get("/api/comments/admin/all", headers=user_headers)).status_code == 403

    page = (await client.get("/api/comments/admin/all", params={"has_reports": True}, headers=admin_headers)).json()
    assert page["total"] == 1
    assert page["items"][0]["report_count"] == 1
    assert page["items"][0]["reports"][0]["reason"] == "harassment"

    hidden = await client.put(f"/api/comments/{c['id']}/approve", json={"is_approved": False}, headers=admin_headers)
    assert hidden.json()["is_approved"] is False
    assert (await client.get(f"/api/comments/chapter/{chapter.id}")).json()["total"] == 0

    purged = await client.delete(f"/api/comments/{c['id']}/admin", headers=admin_headers)
    assert purged.status_code == 200
    assert (await client.get(f"/api/comments/{c['id']}")).status_code == 404


async def test_read_chapter_over_http(client, story, chapter, user_headers, other_headers):
    resp = await client.post(
        "/api/chapters",
        json={"story_id": story.id, "number": 2, "title": "Tiếp", "content": "a b"},
        headers=user_headers,
    )
    assert resp.status_code == 201
    assert resp.json()["word_count"] == 2

    dup = await client.post(
        "/api/chapters",
        json={"story_id": story.id, "number": 2, "title": "Again", "content": "c"},
        headers=user_headers,
    )
    assert dup.status_code == 409

    read = (await client.get(f"/api/chapters/{story.id}/1", headers=other_headers)).json()
    assert read["chapter"]["number"] == 1
    assert read["previous"] is None
    assert read["next"] == {"number": 2, "title": "Tiếp"}
    assert read["story"]["slug"] == story.slug

    history = (await client.get("/api/users/reading-history", headers=other_headers)).json()
    assert history["total"] == 1
    assert history["items"][0]["chapter_number"] == 1

    rate = await client.post(f"/api/chapters/{chapter.id}/rate", json={"rating": 4}, headers=other_headers)
    assert rate.json() == {"average": 4.0, "count": 1, "user_rating": 4}
    mine = (await client.get(f"/api/chapters/{chapter.id}/user-rating", headers=other_headers)).json()
    assert mine["user_rating"] == 4


async def test_bookmarks_over_http(client, story, other_headers):
    first = await client.post(f"/api/users/bookmarks/{story.id}", headers=other_headers)
    again = await client.post(f"/api/users/bookmarks/{story.id}", headers=other_headers)
    assert first.json()["bookmark_count"] == 1
    assert again.json()["bookmark_count"] == 1

    listing = (await client.get("/api/users/bookmarks", headers=other_headers)).json()
    assert [b["story_id"] for b in listing["items"]] == [story.id]

    removed = await client.delete(f"/api/users/bookmarks/{story.id}", headers=other_headers)
    assert removed.json()["bookmark_count"] == 0
    missing = await client.delete(f"/api/users/bookmarks/{story.id}", headers=other_headers)
    assert missing.status_code == 400


async def test_deactivated_user_token_rejected(client, user, user_headers, admin_headers):
    resp = await client.put(f"/api/users/{user.id}/status", json={"is_active": False}, headers=admin_headers)
    assert resp.status_code == 200
    assert resp.json()["is_active"] is False

    assert (await client.get("/api/auth/me", headers=user_headers)).status_code == 401


async def test_story_rating_is_per_user(client, story, user_headers, other_headers, admin_headers):
    for _ in range(3):
        resp = await client.post(f"/api/stories/{story.id}/rate", json={"rating": 5}, headers=other_headers)
    assert resp.status_code == 200
    assert (resp.json()["rating_count"], resp.json()["rating_average"]) == (1, 5.0)

    resp = await client.post(f"/api/stories/{story.id}/rate", json={"rating": 1}, headers=user_headers)
    assert (resp.json()["rating_count"], resp.json()["rating_average"]) == (2, 3.0)

    await client.put(f"/api/stories/{story.id}/publish", json={"is_published": False}, headers=admin_headers)
    hidden = await client.post(f"/api/stories/{story.id}/rate", json={"rating": 4}, headers=other_headers)
    assert hidden.status_code == 404
