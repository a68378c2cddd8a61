import uuid
from datetime import datetime, timezone

import pytest

from smartmark import create_app
from smartmark.config import TestConfig
from smartmark.extensions import change_feed, db, live_views
from smartmark.services.errors import RemoteError
from smartmark.services.feed import ChangeFeed
from smartmark.services.records import BookmarkRecord


@pytest.fixture
def app():
    app = create_app(TestConfig)
    with app.app_context():
        db.drop_all()
        db.create_all()
    yield app
    live_views.clear()
    change_feed.clear()


@pytest.fixture
def client(app):
    return app.test_client()


class FakeStore:
    def __init__(self, user_id="user-1", feed=None):
        self.user_id = user_id
        self.feed = feed or ChangeFeed()
        self.rows: list[BookmarkRecord] = []
        self.inserts: list[dict] = []
        self.deletes: list[str] = []
        self.fail_insert: str | None = None
        self.fail_delete: str | None = None
        self.echo_before_return = False

    def get_current_user(self):
        return self.user_id

    def insert(self, table, record):
        self.inserts.append(record)
        if self.fail_insert:
            raise RemoteError(self.fail_insert)
        created = BookmarkRecord(
            id=str(uuid.uuid4()),
            title=record["title"],
            url=record["url"],
            user_id=record["user_id"],
            created_at=datetime.now(timezone.utc),
        )
        self.rows.insert(0, created)
        if self.echo_before_return:
            self.feed.publish_insert(table, created, owner=created.user_id)
        return created

    def delete(self, table, record_id):
        self.deletes.append(record_id)
        if self.fail_delete:
            raise RemoteError(self.fail_delete)
        self.rows = [row for row in self.rows if row.id != record_id]
        return 1

    def query(self, table, owner=None, descending=True):
        return list(self.rows)

    def subscribe_changes(self, table, on_insert=None, on_delete=None, owner=None):
        return self.feed.subscribe(
            table, on_insert=on_insert, on_delete=on_delete, owner=owner
        )


@pytest.fixture
def fake_store():
    return FakeStore()


def make_record(record_id: str, title: str = "Example", owner="user-1", created_at=None):
    return BookmarkRecord(
        id=record_id,
        title=title,
        url=f"https://{record_id}.example.com",
        user_id=owner,
        created_at=created_at or datetime(2026, 1, 5, 12, 0, tzinfo=timezone.utc),
    )


@pytest.fixture(name="make_record")
def make_record_fixture():
    return make_record
