from __future__ import annotations

import logging

from sqlalchemy.exc import SQLAlchemyError

from smartmark.extensions import change_feed, db, live_views
from smartmark.models import Bookmark, SyncEvent
from smartmark.services.errors import RemoteError
from smartmark.services.feed import ChangeFeed, Subscription
from smartmark.services.records import BookmarkRecord
from smartmark.services.sync import SyncEngine

logger = logging.getLogger(__name__)

BOOKMARKS_TABLE = "bookmarks"


def log_sync_event(user_id: int, entity_id: str, action: str, payload: dict) -> None:
    event = SyncEvent(
        user_id=user_id,
        entity_type="bookmark",
        entity_id=entity_id,
        action=action,
        payload=payload,
    )
    db.session.add(event)


class SqlStore:
    """Bookmark store client bound to one signed-in user.

    Row ownership is enforced on every write; reads are scoped by the
    ``owner`` argument. Successful writes are committed together with a
    ``sync_events`` entry and then published on the change feed.
    """

    def __init__(self, feed: ChangeFeed, user_id: int | None = None) -> None:
        self.feed = feed
        self.user_id = user_id

    def get_current_user(self) -> int | None:
        return self.user_id

    def insert(self, table: str, record: dict) -> BookmarkRecord:
        self._check_table(table)
        if self.user_id is None:
            raise RemoteError("not authenticated")
        if str(record.get("user_id")) != str(self.user_id):
            raise RemoteError(
                f'new row violates row-level security policy for table "{table}"'
            )

        bookmark = Bookmark(
            user_id=self.user_id,
            title=record.get("title"),
            url=record.get("url"),
        )
        try:
            db.session.add(bookmark)
            db.session.flush()
            log_sync_event(self.user_id, bookmark.id, "create", bookmark.as_dict())
            db.session.commit()
        except SQLAlchemyError as exc:
            db.session.rollback()
            logger.warning("bookmark insert failed: %s", exc)
            raise RemoteError(str(exc.orig if hasattr(exc, "orig") else exc)) from exc

        created = BookmarkRecord.from_model(bookmark)
        self.feed.publish_insert(table, created, owner=created.user_id)
        return created

    def delete(self, table: str, record_id: str) -> int:
        self._check_table(table)
        if self.user_id is None:
            raise RemoteError("not authenticated")

        bookmark = Bookmark.query.filter_by(id=record_id, user_id=self.user_id).first()
        if not bookmark:
            return 0
        try:
            log_sync_event(self.user_id, bookmark.id, "delete", bookmark.as_dict())
            db.session.delete(bookmark)
            db.session.commit()
        except SQLAlchemyError as exc:
            db.session.rollback()
            logger.warning("bookmark delete failed: %s", exc)
            raise RemoteError(str(exc.orig if hasattr(exc, "orig") else exc)) from exc

        self.feed.publish_delete(table, record_id)
        return 1

    def query(
        self, table: str, owner=None, descending: bool = True
    ) -> list[BookmarkRecord]:
        self._check_table(table)
        query = Bookmark.query
        if owner is not None:
            query = query.filter_by(user_id=owner)
        order = Bookmark.created_at.desc() if descending else Bookmark.created_at.asc()
        return [BookmarkRecord.from_model(row) for row in query.order_by(order).all()]

    def subscribe_changes(
        self, table: str, on_insert=None, on_delete=None, owner=None
    ) -> Subscription:
        self._check_table(table)
        return self.feed.subscribe(
            table, on_insert=on_insert, on_delete=on_delete, owner=owner
        )

    @staticmethod
    def _check_table(table: str) -> None:
        if table != BOOKMARKS_TABLE:
            raise RemoteError(f'relation "{table}" does not exist')


def store_for_user(user_id: int | None) -> SqlStore:
    return SqlStore(change_feed, user_id)


def engine_for_user(user_id: int, view_token: str | None = None) -> SyncEngine:
    engine = live_views.get(view_token, user_id)
    if engine is None:
        engine = SyncEngine(store_for_user(user_id))
    return engine
