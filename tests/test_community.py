from datetime import datetime

from backend import db


def create_post(client, session, **overrides):
    body = {"title": "Leaf curl on chilli", "body": "Seeing curled leaves after rain", "category": "question"}
    body.update(overrides)
    resp = client.post("/api/community/posts", headers=session["headers"], json=body)
    assert resp.status_code == 201, resp.text
    return resp.json()["data"]["post"]


def test_create_post_defaults(client, farmer):
    post = create_post(client, farmer, tags="chilli")
    assert post["tags"] == ["chilli"]
    assert post["status"] == "published"
    assert post["author"]["name"] == "Ravi Kumar"
    assert post["engagementStats"] == {"views": 0, "likes": 0, "comments": 0, "shares": 0}


def test_post_location_defaults_to_profile(client, farmer):
    client.put(
        "/api/auth/profile/location",
        headers=farmer["headers"],
        json={"latitude": 17.38, "longitude": 78.48, "city": "Hyderabad"},
    )
    post = create_post(client, farmer)
    assert post["content"]["location"]["latitude"] == 17.38
    assert post["content"]["location"]["city"] == "Hyderabad"


def test_get_post_counts_views(client, farmer):
    post = create_post(client, farmer)
    client.get(f"/api/community/posts/{post['_id']}")
    data = client.get(f"/api/community/posts/{post['_id']}").json()["data"]["post"]
    assert data["engagement"]["views"] == 2

    resp = client.get("/api/community/posts/64b7f0c2a1b2c3d4e5f60718")
    assert resp.status_code == 404
    assert resp.json()["message"] == "Post not found"


def test_list_posts_filters_and_nearby(client, farmer):
    create_post(client, farmer, title="near", location={"latitude": 12.97, "longitude": 77.59})
    create_post(client, farmer, title="far", category="market_info",
                location={"latitude": 28.61, "longitude": 77.2})

    data = client.get("/api/community/posts").json()["data"]
    assert data["pagination"]["total"] == 2

    data = client.get("/api/community/posts?category=market_info").json()["data"]
    assert [p["content"]["title"] for p in data["posts"]] == ["far"]

    data = client.get("/api/community/posts?latitude=12.9&longitude=77.6&radius=20000").json()["data"]
    assert [p["content"]["title"] for p in data["posts"]] == ["near"]


def test_only_author_can_edit_or_delete(client, farmer, other_farmer):
    post = create_post(client, farmer)
    url = f"/api/community/posts/{post['_id']}"

    resp = client.put(url, headers=other_farmer["headers"], json={"title": "hijack"})
    assert resp.status_code == 404
    assert resp.json()["message"] == "Post not found or not authorized"

    resp = client.put(url, headers=farmer["headers"], json={"title": "Leaf curl solved", "tags": ["chilli"]})
    assert resp.json()["data"]["post"]["content"]["title"] == "Leaf curl solved"

    assert client.delete(url, headers=other_farmer["headers"]).status_code == 404
    assert client.delete(url, headers=farmer["headers"]).status_code == 200
    assert db.collection(db.COMMUNITY_POSTS).count_documents({}) == 0


def test_like_toggles(client, farmer, other_farmer):
    post = create_post(client, farmer)
    url = f"/api/community/posts/{post['_id']}/like"
    assert client.post(url, headers=other_farmer["headers"]).json()["data"] == {"likes": 1, "isLiked": True}
    assert client.post(url, headers=farmer["headers"]).json()["data"] == {"likes": 2, "isLiked": True}
    assert client.post(url, headers=other_farmer["headers"]).json()["data"] == {"likes": 1, "isLiked": False}


def test_comments_and_replies(client, farmer, other_farmer):
    post = create_post(client, farmer)
    base = f"/api/community/posts/{post['_id']}/comments"

    resp = client.post(base, headers=other_farmer["headers"], json={"content": "  "})
    assert resp.status_code == 400

    comment = client.post(base, headers=other_farmer["headers"], json={"content": "Try neem oil"}).json()
    comment = comment["data"]["comment"]
    assert comment["user"]["name"] == "Sita Devi"

    resp = client.post(f"{base}/{comment['_id']}/reply", headers=farmer["headers"], json={"content": "Thanks"})
    assert resp.status_code == 201

    resp = client.post(f"{base}/64b7f0c2a1b2c3d4e5f60718/reply", headers=farmer["headers"],
                       json={"content": "?"})
    assert resp.status_code == 404
    assert resp.json()["message"] == "Comment not found"

    full = client.get(f"/api/community/posts/{post['_id']}").json()["data"]["post"]
    stored_comment = full["engagement"]["comments"][0]
    assert stored_comment["user"]["name"] == "Sita Devi"
    assert stored_comment["replies"][0]["user"]["name"] == "Ravi Kumar"


def test_comment_delete_permissions(client, farmer, other_farmer):
    from tests.conftest import register

    stranger = register(client, email="stranger@example.com", name="Stranger")
    post = create_post(client, farmer)
    base = f"/api/community/posts/{post['_id']}/comments"
    comment = client.post(base, headers=other_farmer["headers"], json={"content": "hello"}).json()
    url = f"{base}/{comment['data']['comment']['_id']}"

    resp = client.delete(url, headers=stranger["headers"])
    assert resp.status_code == 403
    assert resp.json()["message"] == "Not authorized to delete this comment"

    assert client.delete(url, headers=farmer["headers"]).status_code == 200
    stored = db.collection(db.COMMUNITY_POSTS).find_one({})
    assert stored["engagement"]["comments"] == []


def test_categories_trending_search(client, farmer, other_farmer):
    quiet = create_post(client, farmer, title="Quiet post", tags=["misc"])
    popular = create_post(client, farmer, title="Popular (rice) tips", tags=["rice"])
    client.post(f"/api/community/posts/{popular['_id']}/like", headers=other_farmer["headers"])

    categories = client.get("/api/community/categories").json()["data"]["categories"]
    assert len(categories) == 8

    trending = client.get("/api/community/trending?limit=1").json()["data"]["posts"]
    assert trending[0]["_id"] == popular["_id"]

    assert client.get("/api/community/search").status_code == 400
    found = client.get("/api/community/search?q=(RICE)").json()["data"]["posts"]
    assert [p["_id"] for p in found] == [popular["_id"]]
    found = client.get("/api/community/search?q=misc").json()["data"]["posts"]
    assert [p["_id"] for p in found] == [quiet["_id"]]


def test_my_posts_and_analytics(client, farmer, other_farmer):
    post = create_post(client, farmer, tags=["chilli", "pests"])
    create_post(client, other_farmer, category="crop_advice", tags=["chilli"])
    db.collection(db.COMMUNITY_POSTS).insert_one(
        {"author": db.parse_object_id(farmer["user"]["_id"]), "status": "draft",
         "content": {"title": "draft", "body": "x"}, "engagement": {"views": 0, "likes": [], "comments": []},
         "createdAt": db.period_start("1d")}
    )
    client.post(f"/api/community/posts/{post['_id']}/like", headers=other_farmer["headers"])

    mine = client.get("/api/community/my-posts", headers=farmer["headers"]).json()["data"]
    assert mine["pagination"]["total"] == 1
    everything = client.get("/api/community/my-posts?status=all", headers=farmer["headers"]).json()["data"]
    assert everything["pagination"]["total"] == 2

    data = client.get("/api/community/analytics", headers=farmer["headers"]).json()["data"]
    assert data["summary"]["totalPosts"] == 2
    assert data["summary"]["totalLikes"] == 1
    assert data["summary"]["popularTags"][0] == "chilli"
    assert {c["_id"] for c in data["categories"]} == {"question", "crop_advice"}


def test_post_expiry_stored_as_utc(client, farmer):
    create_post(client, farmer, expiresAt="2030-01-01T05:30:00+05:30")
    stored = db.collection(db.COMMUNITY_POSTS).find_one({})
    assert stored["expiresAt"] == datetime(2030, 1, 1)


def test_engagement_writes_keep_concurrent_changes(client, farmer, other_farmer):
    from backend.services import community

    post = create_post(client, farmer)
    post_id = db.parse_object_id(post["_id"])
    stale = community.get_post(post_id)
    also_stale = community.get_post(post_id)

    client.get(f"/api/community/posts/{post['_id']}")
    client.get(f"/api/community/posts/{post['_id']}")
    client.post(f"/api/community/posts/{post['_id']}/like", headers=other_farmer["headers"])

    likes, liked = community.toggle_like(stale, db.parse_object_id(farmer["user"]["_id"]))
    assert (likes, liked) == (2, True)
    community.add_comment(stale, db.parse_object_id(farmer["user"]["_id"]), "first")
    community.add_comment(also_stale, db.parse_object_id(other_farmer["user"]["_id"]), "second")

    stored = db.collection(db.COMMUNITY_POSTS).find_one({"_id": post_id})
    assert stored["engagement"]["views"] == 2
    assert len(stored["engagement"]["likes"]) == 2
    assert [c["content"] for c in stored["engagement"]["comments"]] == ["first", "second"]

    first_id = stored["engagement"]["comments"][0]["_id"]
    community.add_reply(also_stale, first_id, db.parse_object_id(other_farmer["user"]["_id"]), "reply")
    community.delete_comment(also_stale, stored["engagement"]["comments"][1]["_id"],
                             db.parse_object_id(farmer["user"]["_id"]))
    stored = db.collection(db.COMMUNITY_POSTS).find_one({"_id": post_id})
    assert [c["content"] for c in stored["engagement"]["comments"]] == ["first"]
    assert stored["engagement"]["comments"][0]["replies"][0]["content"] == "reply"
    assert stored["engagement"]["views"] == 2
