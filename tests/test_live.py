"""Tests for per-session live subscription bookkeeping."""

from mayau.live import LiveFeeds


def test_subscribes_once_and_caches_latest(store) -> None:
    feeds = LiveFeeds()
    calls = []

    def subscribe(callback):
        calls.append(1)
        return store.watch_document("things", "t1", callback)

    assert feeds.ensure(("thing", "t1"), subscribe) is None
    store.set("things", "t1", {"n": 1})
    assert feeds.ensure(("thing", "t1"), subscribe) == {"id": "t1", "n": 1}
    assert len(calls) == 1


def test_end_run_releases_unused_subscriptions(store) -> None:
    feeds = LiveFeeds()
    feeds.begin_run()
    feeds.ensure("a", lambda cb: store.watch_document("things", "a", cb))
    feeds.ensure("b", lambda cb: store.watch_document("things", "b", cb))
    feeds.end_run()
    assert store.listener_count() == 2

    # Next run only looks at "b", e.g. the user switched workspace
    feeds.begin_run()
    feeds.ensure("b", lambda cb: store.watch_document("things", "b", cb))
    feeds.end_run()

    assert "a" not in feeds
    assert "b" in feeds
    assert store.listener_count() == 1


def test_release_all(store) -> None:
    feeds = LiveFeeds()
    feeds.ensure("a", lambda cb: store.watch_query("things", "kind", "x", cb), default=[])
    feeds.ensure("b", lambda cb: store.watch_document("things", "b", cb))
    feeds.release_all()
    assert len(feeds) == 0
    assert store.listener_count() == 0
    assert feeds.ensure("a", lambda cb: store.watch_query("things", "kind", "x", cb), default=[]) == []
