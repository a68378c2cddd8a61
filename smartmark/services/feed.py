"""In-process change notifications for store tables.

Inserts are delivered only to subscriptions whose owner filter matches the
row owner (or that have no filter). Deletes are delivered to every
subscription on the table.
"""

from __future__ import annotations

import logging
import threading
from collections.abc import Callable

logger = logging.getLogger(__name__)


InsertHandler = Callable[[object], None]
DeleteHandler = Callable[[str], None]


class Subscription:
    def __init__(
        self,
        feed: "ChangeFeed",
        table: str,
        on_insert: InsertHandler | None = None,
        on_delete: DeleteHandler | None = None,
        owner=None,
    ) -> None:
        self.feed = feed
        self.table = table
        self.on_insert = on_insert
        self.on_delete = on_delete
        self.owner = owner
        self.closed = False

    def accepts_insert(self, owner) -> bool:
        if self.on_insert is None:
            return False
        return self.owner is None or str(self.owner) == str(owner)

    def close(self) -> None:
        if self.closed:
            return
        self.closed = True
        self.feed._remove(self)

    def __enter__(self) -> "Subscription":
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.close()


class ChangeFeed:
    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._subscriptions: dict[str, list[Subscription]] = {}

    def subscribe(
        self,
        table: str,
        on_insert: InsertHandler | None = None,
        on_delete: DeleteHandler | None = None,
        owner=None,
    ) -> Subscription:
        subscription = Subscription(
            self, table, on_insert=on_insert, on_delete=on_delete, owner=owner
        )
        with self._lock:
            self._subscriptions.setdefault(table, []).append(subscription)
        logger.debug("change subscription opened on %s for owner %s", table, owner)
        return subscription

    def subscriber_count(self, table: str | None = None) -> int:
        with self._lock:
            if table is not None:
                return len(self._subscriptions.get(table, []))
            return sum(len(items) for items in self._subscriptions.values())

    def publish_insert(self, table: str, record, owner) -> int:
        targets = [
            sub for sub in self._snapshot(table) if sub.accepts_insert(owner)
        ]
        for subscription in targets:
            self._deliver(subscription.on_insert, record, table, "insert")
        return len(targets)

    def publish_delete(self, table: str, record_id: str) -> int:
        targets = [sub for sub in self._snapshot(table) if sub.on_delete is not None]
        for subscription in targets:
            self._deliver(subscription.on_delete, record_id, table, "delete")
        return len(targets)

    def clear(self) -> None:
        with self._lock:
            subscriptions = [
                sub for items in self._subscriptions.values() for sub in items
            ]
            self._subscriptions.clear()
        for subscription in subscriptions:
            subscription.closed = True

    def _snapshot(self, table: str) -> list[Subscription]:
        with self._lock:
            return list(self._subscriptions.get(table, []))

    def _remove(self, subscription: Subscription) -> None:
        with self._lock:
            items = self._subscriptions.get(subscription.table, [])
            if subscription in items:
                items.remove(subscription)
            if not items:
                self._subscriptions.pop(subscription.table, None)
        logger.debug(
            "change subscription closed on %s for owner %s",
            subscription.table,
            subscription.owner,
        )

    @staticmethod
    def _deliver(handler, payload, table: str, action: str) -> None:
        try:
            handler(payload)
        except Exception:
            logger.exception("change handler failed for %s on %s", action, table)
