from __future__ import annotations

import json
import logging
import queue
import threading
import time
import uuid
from dataclasses import dataclass, field

from itsdangerous import BadData, URLSafeSerializer

logger = logging.getLogger(__name__)


def _now() -> float:
    return time.monotonic()


@dataclass
class LiveView:
    view_id: str
    user_id: int
    engine: object
    query: str = ""
    last_seen: float = field(default_factory=_now)


class LiveViewRegistry:
    """Open dashboard views, each owning one synchronization engine."""

    def __init__(self, secret_key: str | None = None) -> None:
        self.secret_key = secret_key
        self._lock = threading.Lock()
        self._views: dict[str, LiveView] = {}

    def init_app(self, app) -> None:
        self.secret_key = app.config["SECRET_KEY"]
        app.extensions["live_views"] = self

    def _serializer(self) -> URLSafeSerializer:
        return URLSafeSerializer(secret_key=self.secret_key, salt="live-view")

    def open(
        self,
        user_id: int,
        engine,
        query: str = "",
        max_per_user: int | None = None,
    ) -> str:
        view_id = uuid.uuid4().hex
        evicted: list[LiveView] = []
        with self._lock:
            self._views[view_id] = LiveView(
                view_id=view_id, user_id=user_id, engine=engine, query=query
            )
            if max_per_user is not None:
                evicted = self._evict_oldest(user_id, max_per_user, keep=view_id)
        for view in evicted:
            view.engine.detach()
        logger.debug("live view %s opened for user %s", view_id, user_id)
        return self._serializer().dumps({"view": view_id, "user_id": user_id})

    def get(self, token: str | None, user_id: int):
        view = self.get_view(token, user_id)
        return view.engine if view is not None else None

    def get_view(self, token: str | None, user_id: int) -> LiveView | None:
        view = self._lookup(token, user_id)
        if view is not None:
            view.last_seen = _now()
        return view

    def close(self, token: str | None, user_id: int) -> bool:
        view = self._lookup(token, user_id)
        if view is None:
            return False
        with self._lock:
            self._views.pop(view.view_id, None)
        view.engine.detach()
        return True

    def reap_idle(self, max_idle_seconds: float, now: float | None = None) -> int:
        current = _now() if now is None else now
        with self._lock:
            stale = [
                view
                for view in self._views.values()
                if not view.engine.attached
                and current - view.last_seen > max_idle_seconds
            ]
            for view in stale:
                self._views.pop(view.view_id, None)
        for view in stale:
            view.engine.detach()
        if stale:
            logger.info("reaped %d idle live views", len(stale))
        return len(stale)

    def clear(self) -> None:
        with self._lock:
            views = list(self._views.values())
            self._views.clear()
        for view in views:
            view.engine.detach()

    def __len__(self) -> int:
        with self._lock:
            return len(self._views)

    def _evict_oldest(
        self, user_id: int, max_per_user: int, keep: str
    ) -> list[LiveView]:
        idle = sorted(
            (
                view
                for view in self._views.values()
                if view.user_id == user_id
                and view.view_id != keep
                and not view.engine.attached
            ),
            key=lambda view: view.last_seen,
        )
        owned = sum(1 for view in self._views.values() if view.user_id == user_id)
        evicted = idle[: max(0, owned - max_per_user)]
        for view in evicted:
            self._views.pop(view.view_id, None)
        if evicted:
            logger.info(
                "evicted %d live views for user %s over the limit of %d",
                len(evicted),
                user_id,
                max_per_user,
            )
        return evicted

    def _lookup(self, token: str | None, user_id: int) -> LiveView | None:
        if not token:
            return None
        try:
            payload = self._serializer().loads(token)
        except BadData:
            return None
        if payload.get("user_id") != user_id:
            return None
        with self._lock:
            return self._views.get(payload.get("view"))


def format_event(kind: str, payload) -> str:
    if kind == "insert":
        data = payload.as_dict()
    elif kind == "reset":
        data = [record.as_dict() for record in payload]
    else:
        data = {"id": payload}
    return f"event: {kind}\ndata: {json.dumps(data)}\n\n"


def stream_events(
    engine,
    load_snapshot=None,
    keepalive_seconds: float = 15.0,
    max_events: int | None = None,
    replace: bool = False,
):
    """Yield server-sent event frames for the effective changes of ``engine``.

    The engine holds its change subscription only while the generator is
    running; closing the generator releases it. With ``replace`` a newer
    stream takes the subscription over and the older one stops.
    """
    events: queue.Queue = queue.Queue()

    def listener(kind, payload):
        events.put((kind, payload))

    engine.add_listener(listener)
    try:
        with engine.live(replace=replace) as subscription:
            if load_snapshot is not None:
                engine.reset(load_snapshot())
            else:
                events.put(("reset", engine.bookmarks))

            sent = 0
            while max_events is None or sent < max_events:
                try:
                    kind, payload = events.get(timeout=keepalive_seconds)
                except queue.Empty:
                    frame = ": keepalive\n\n"
                else:
                    frame = format_event(kind, payload)
                    sent += 1
                if subscription.closed:
                    return
                yield frame
    finally:
        engine.remove_listener(listener)
