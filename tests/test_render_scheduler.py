import logging

from summar.record_store import RecordStore
from summar.render_scheduler import RenderScheduler


def test_burst_of_appends_renders_once_with_full_text(store, clock, rendered):
    for i in range(20):
        store.append_text("k", "pdf", f"{i},")
        clock.advance(5)
    assert rendered == []
    clock.advance(60)
    expected = "".join(f"{i}," for i in range(20))
    assert rendered == [("k", f"<p>{expected}</p>")]
    assert store.scheduler.render_count == 1


def test_each_mutation_restarts_the_window(store, clock, rendered):
    store.append_text("k", "pdf", "a")
    clock.advance(50)
    store.append_text("k", "pdf", "b")
    clock.advance(50)
    assert rendered == []
    clock.advance(10)
    assert rendered == [("k", "<p>ab</p>")]


def test_keys_are_independent(store, clock, rendered):
    store.append_text("a", "x", "1")
    clock.advance(30)
    store.append_text("b", "y", "2")
    clock.advance(30)
    assert rendered == [("a", "<p>1</p>")]
    clock.advance(30)
    assert rendered == [("a", "<p>1</p>"), ("b", "<p>2</p>")]


def test_delete_cancels_pending_render(store, clock, rendered):
    store.append_text("k", "pdf", "text")
    assert store.scheduler.pending("k")
    store.delete_record("k")
    assert not store.scheduler.pending("k")
    clock.advance(200)
    assert rendered == []


def test_stale_timer_is_ignored(clock):
    applied = []
    scheduler = RenderScheduler(lambda key: "t", str.upper,
                                lambda key, html: applied.append(html),
                                timer_factory=clock)
    scheduler.schedule("k")
    first = clock.timers[0]
    scheduler.schedule("k")
    first.callback()
    assert applied == []
    assert scheduler.pending("k")
    clock.advance(60)
    assert applied == ["T"]


def test_render_failure_is_logged_not_raised(clock, caplog):
    def boom(text):
        raise RuntimeError("bad markup")

    store = RecordStore(render_fn=boom, timer_factory=clock)
    store.append_text("k", "pdf", "x")
    with caplog.at_level(logging.ERROR, logger="Summar"):
        clock.advance(60)
    assert "render failed for key=k" in caplog.text
    assert store.scheduler.render_count == 0


def test_cancel_all_and_flush(store, clock, rendered):
    store.append_text("a", "x", "1")
    store.append_text("b", "y", "2")
    assert sorted(store.scheduler.pending_keys()) == ["a", "b"]
    assert store.scheduler.flush("a") is True
    assert rendered == [("a", "<p>1</p>")]
    assert store.scheduler.cancel_all() == 1
    clock.advance(100)
    assert rendered == [("a", "<p>1</p>")]
