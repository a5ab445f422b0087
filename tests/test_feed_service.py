from endgame.services import feed_service, post_service


async def test_feed_lists_newest_first_with_like_state(db):
    author = db.add_profile("author")
    fan = db.add_profile("fan")
    older = db.add_post(author)
    newer = db.add_post(author)
    await post_service.like_post(fan, older)

    posts = await feed_service.get_feed(viewer_id=fan)

    assert [post.id for post in posts] == [newer, older]
    assert [post.liked_by_user for post in posts] == [False, True]
    assert posts[1].likes_count == 1
    assert posts[0].author.username == "author"


async def test_cached_page_is_personalised_per_viewer(db, monkeypatch):
    author = db.add_profile("author")
    fan = db.add_profile("fan")
    post_id = db.add_post(author)
    await post_service.like_post(fan, post_id)
    cached = await post_service.get_latest_posts()

    async def fake_cached_feed():
        return [post.model_copy(deep=True) for post in cached]

    monkeypatch.setattr(feed_service, "get_cached_feed", fake_cached_feed)

    def no_store_reads(*args, **kwargs):
        raise AssertionError("feed page should come from the cache")

    monkeypatch.setattr(feed_service, "get_latest_posts", no_store_reads)

    fan_view = await feed_service.get_feed(viewer_id=fan)
    author_view = await feed_service.get_feed(viewer_id=author)

    assert fan_view[0].liked_by_user is True
    assert author_view[0].liked_by_user is False
