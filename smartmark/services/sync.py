from __future__ import annotations

import logging
import threading
from collections.abc import Callable, Iterable
from contextlib import contextmanager

from smartmark.services.errors import RemoteError, SubscriptionError, ValidationError
from smartmark.services.records import BookmarkRecord, ensure_scheme

logger = logging.getLogger(__name__)

BOOKMARKS_TABLE = "bookmarks"
REQUIRED_FIELDS_MESSAGE = "Both title and URL are required."
SIGNED_OUT_MESSAGE = "You must be signed in to add bookmarks."
TEXT_FIELDS_MESSAGE = "Title and URL must be text."

CHANGE_INSERT = "insert"
CHANGE_DELETE = "delete"
CHANGE_RESET = "reset"

ChangeListener = Callable[[str, object], None]


def _clean_text(value) -> str:
    if value is None:
        return ""
    if not isinstance(value, str):
        raise ValidationError(TEXT_FIELDS_MESSAGE)
    return value.strip()


class SyncEngine:
    """Ordered bookmark collection fed by optimistic writes and a change feed.

    Records are keyed by ``id``; no two entries with the same id are ever
    held. New records always go to the head of the list.
    """

    def __init__(
        self,
        store,
        snapshot: Iterable[BookmarkRecord] = (),
        table: str = BOOKMARKS_TABLE,
    ):
        self.store = store
        self.table = table
        self._lock = threading.RLock()
        self._items: list[BookmarkRecord] = []
        self._listeners: list[ChangeListener] = []
        self._subscription = None
        self._replace(snapshot)

    @property
    def bookmarks(self) -> list[BookmarkRecord]:
        with self._lock:
            return list(self._items)

    @property
    def count(self) -> int:
        with self._lock:
            return len(self._items)

    @property
    def attached(self) -> bool:
        return self._subscription is not None

    def __len__(self) -> int:
        return self.count

    def __contains__(self, bookmark_id) -> bool:
        return self.get(bookmark_id) is not None

    def get(self, bookmark_id) -> BookmarkRecord | None:
        with self._lock:
            for item in self._items:
                if item.id == bookmark_id:
                    return item
        return None

    def add_listener(self, listener: ChangeListener) -> None:
        with self._lock:
            self._listeners.append(listener)

    def remove_listener(self, listener: ChangeListener) -> None:
        with self._lock:
            if listener in self._listeners:
                self._listeners.remove(listener)

    def reset(self, snapshot: Iterable[BookmarkRecord]) -> None:
        with self._lock:
            self._replace(snapshot)
            self._emit(CHANGE_RESET, list(self._items))

    def submit_create(self, title: str, url: str) -> BookmarkRecord:
        clean_title = _clean_text(title)
        clean_url = _clean_text(url)
        if not clean_title or not clean_url:
            raise ValidationError(REQUIRED_FIELDS_MESSAGE)

        owner = self.store.get_current_user()
        if owner is None:
            raise RemoteError(SIGNED_OUT_MESSAGE)

        try:
            created = self.store.insert(
                self.table,
                {
                    "title": clean_title,
                    "url": ensure_scheme(clean_url),
                    "user_id": owner,
                },
            )
        except RemoteError:
            raise
        except Exception as exc:
            raise RemoteError(str(exc)) from exc

        self._insert_at_head(created)
        return created

    def submit_delete(self, bookmark_id) -> None:
        self._remove(bookmark_id)
        try:
            self.store.delete(self.table, bookmark_id)
        except Exception as exc:
            # No rollback; the entry stays hidden locally.
            logger.warning("bookmark delete %s failed: %s", bookmark_id, exc)

    def on_remote_insert(self, record: BookmarkRecord) -> None:
        self._insert_at_head(record)

    def on_remote_delete(self, bookmark_id) -> None:
        self._remove(bookmark_id)

    def attach(self, replace: bool = False):
        stale = None
        with self._lock:
            if self._subscription is not None:
                if not replace:
                    raise SubscriptionError("engine already has an active subscription")
                stale = self._subscription
            owner = self.store.get_current_user()
            self._subscription = self.store.subscribe_changes(
                self.table,
                on_insert=self.on_remote_insert,
                on_delete=self.on_remote_delete,
                owner=owner,
            )
            logger.debug("engine attached to %s for owner %s", self.table, owner)
            subscription = self._subscription
        if stale is not None:
            stale.close()
            logger.debug("engine subscription on %s replaced", self.table)
        return subscription

    def detach(self, subscription=None) -> None:
        """Release the active subscription, or only ``subscription`` when given."""
        with self._lock:
            if subscription is None or subscription is self._subscription:
                subscription, self._subscription = self._subscription, None
        if subscription is not None:
            subscription.close()

    @contextmanager
    def live(self, replace: bool = False):
        subscription = self.attach(replace=replace)
        try:
            yield subscription
        finally:
            self.detach(subscription)

    def _replace(self, snapshot: Iterable[BookmarkRecord]) -> None:
        seen: set = set()
        items: list[BookmarkRecord] = []
        for record in snapshot:
            if record.id in seen:
                continue
            seen.add(record.id)
            items.append(record)
        self._items = items

    def _insert_at_head(self, record: BookmarkRecord) -> bool:
        with self._lock:
            if any(item.id == record.id for item in self._items):
                return False
            self._items.insert(0, record)
            self._emit(CHANGE_INSERT, record)
            return True

    def _remove(self, bookmark_id) -> bool:
        with self._lock:
            remaining = [item for item in self._items if item.id != bookmark_id]
            if len(remaining) == len(self._items):
                return False
            self._items = remaining
            self._emit(CHANGE_DELETE, bookmark_id)
            return True

    def _emit(self, kind: str, payload) -> None:
        for listener in list(self._listeners):
            try:
                listener(kind, payload)
            except Exception:
                logger.exception("sync listener failed for %s event", kind)
