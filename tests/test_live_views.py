import json

import pytest

from smartmark.services.errors import SubscriptionError
from smartmark.services.sync import SyncEngine
from smartmark.services.views import LiveViewRegistry, format_event, stream_events


def _parse(frame: str):
    lines = frame.strip().splitlines()
    kind = lines[0].removeprefix("event: ")
    data = json.loads(lines[1].removeprefix("data: "))
    return kind, data


def test_registry_tokens_are_bound_to_user(fake_store):
    registry = LiveViewRegistry(secret_key="test")
    engine = SyncEngine(fake_store)

    token = registry.open(7, engine)

    assert registry.get(token, 7) is engine
    assert registry.get(token, 8) is None
    assert registry.get(token + "x", 7) is None
    assert registry.get(None, 7) is None


def test_registry_close_detaches_engine(fake_store):
    registry = LiveViewRegistry(secret_key="test")
    engine = SyncEngine(fake_store)
    token = registry.open(7, engine)
    engine.attach()

    assert registry.close(token, 7) is True
    assert not engine.attached
    assert registry.get(token, 7) is None
    assert registry.close(token, 7) is False


def test_reap_idle_skips_streaming_views(fake_store):
    registry = LiveViewRegistry(secret_key="test")
    idle = SyncEngine(fake_store)
    streaming = SyncEngine(fake_store)
    registry.open(1, idle)
    registry.open(1, streaming)
    streaming.attach()

    reaped = registry.reap_idle(60, now=10**9)

    assert reaped == 1
    assert len(registry) == 1
    streaming.detach()


def test_format_event_frames(make_record):
    record = make_record("a")

    kind, data = _parse(format_event("insert", record))
    assert kind == "insert"
    assert data["id"] == "a"
    assert data["domain"] == "a.example.com"

    assert _parse(format_event("delete", "a")) == ("delete", {"id": "a"})
    kind, data = _parse(format_event("reset", [record]))
    assert kind == "reset"
    assert [row["id"] for row in data] == ["a"]


def test_stream_starts_with_reset_and_relays_changes(fake_store, make_record):
    fake_store.rows = [make_record("a")]
    engine = SyncEngine(fake_store)
    stream = stream_events(
        engine, load_snapshot=lambda: fake_store.query("bookmarks"), keepalive_seconds=0.01
    )

    kind, data = _parse(next(stream))
    assert kind == "reset"
    assert [row["id"] for row in data] == ["a"]
    assert fake_store.feed.subscriber_count() == 1

    created = engine.submit_create("Example", "example.com")
    fake_store.feed.publish_insert("bookmarks", created, owner="user-1")
    fake_store.feed.publish_delete("bookmarks", "a")

    assert _parse(next(stream)) == ("insert", created.as_dict())
    assert _parse(next(stream)) == ("delete", {"id": "a"})
    assert next(stream) == ": keepalive\n\n"

    stream.close()
    assert fake_store.feed.subscriber_count() == 0
    assert not engine.attached


def test_stream_stops_after_max_events(fake_store, make_record):
    engine = SyncEngine(fake_store, [make_record("a")])

    frames = list(stream_events(engine, keepalive_seconds=0.01, max_events=1))

    assert len(frames) == 1
    assert _parse(frames[0])[0] == "reset"
    assert fake_store.feed.subscriber_count() == 0


def test_second_stream_on_same_engine_is_rejected(fake_store):
    engine = SyncEngine(fake_store)
    first = stream_events(engine, keepalive_seconds=0.01)
    next(first)

    with pytest.raises(SubscriptionError):
        next(stream_events(engine, keepalive_seconds=0.01))

    first.close()
    assert fake_store.feed.subscriber_count() == 0


def test_reconnect_takes_over_and_stops_the_stale_stream(fake_store, make_record):
    engine = SyncEngine(fake_store, [make_record("a")])
    first = stream_events(engine, keepalive_seconds=0.01)
    assert _parse(next(first))[0] == "reset"

    second = stream_events(engine, keepalive_seconds=0.01, replace=True)
    assert _parse(next(second))[0] == "reset"

    with pytest.raises(StopIteration):
        next(first)
    assert engine.attached
    assert fake_store.feed.subscriber_count() == 1

    second.close()
    assert not engine.attached
    assert fake_store.feed.subscriber_count() == 0


def test_registry_keeps_recent_views_per_user(fake_store):
    registry = LiveViewRegistry(secret_key="test")
    engines = [SyncEngine(fake_store) for _ in range(4)]
    tokens = [registry.open(1, engine, max_per_user=2) for engine in engines]
    other = registry.open(2, SyncEngine(fake_store), max_per_user=2)

    assert len(registry) == 3
    assert registry.get(tokens[0], 1) is None
    assert registry.get(tokens[1], 1) is None
    assert registry.get(tokens[3], 1) is engines[3]
    assert registry.get(other, 2) is not None


def test_registry_limit_never_evicts_streaming_views(fake_store):
    registry = LiveViewRegistry(secret_key="test")
    streaming = SyncEngine(fake_store)
    token = registry.open(1, streaming, max_per_user=1)
    streaming.attach()

    registry.open(1, SyncEngine(fake_store), max_per_user=1)
    registry.open(1, SyncEngine(fake_store), max_per_user=1)

    assert registry.get(token, 1) is streaming
    assert streaming.attached
    assert len(registry) == 2
    streaming.detach()


def test_registry_remembers_view_query(fake_store):
    registry = LiveViewRegistry(secret_key="test")
    engine = SyncEngine(fake_store)
    token = registry.open(1, engine, query="python")

    view = registry.get_view(token, 1)

    assert view.engine is engine
    assert view.query == "python"
