from __future__ import annotations

import re
from dataclasses import dataclass
from datetime import datetime, timezone
from urllib.parse import urlparse

from dateutil import parser as dt_parser


SCHEME_PATTERN = re.compile(r"^https?://", re.IGNORECASE)
DEFAULT_SCHEME_PREFIX = "https://"

MINUTE = 60
HOUR = 60 * MINUTE
DAY = 24 * HOUR
WEEK = 7 * DAY


def ensure_scheme(url: str) -> str:
    value = (url or "").strip()
    if not SCHEME_PATTERN.match(value):
        value = DEFAULT_SCHEME_PREFIX + value
    return value


def parse_timestamp(value) -> datetime:
    if isinstance(value, datetime):
        parsed = value
    else:
        parsed = dt_parser.isoparse(str(value))
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


def derive_domain(url: str) -> str:
    try:
        host = urlparse(url).hostname
    except (TypeError, ValueError, AttributeError):
        return url
    if not host:
        return url
    return host.removeprefix("www.")


def format_calendar_date(value: datetime) -> str:
    return f"{value:%b} {value.day}, {value.year}"


def relative_age(created_at, now: datetime | None = None) -> str:
    created = parse_timestamp(created_at)
    current = parse_timestamp(now) if now is not None else datetime.now(timezone.utc)
    seconds = int((current - created).total_seconds())

    if seconds < MINUTE:
        return "just now"
    if seconds < HOUR:
        return f"{seconds // MINUTE}m ago"
    if seconds < DAY:
        return f"{seconds // HOUR}h ago"
    if seconds < WEEK:
        return f"{seconds // DAY}d ago"
    return format_calendar_date(created)


@dataclass(frozen=True)
class BookmarkRecord:
    id: str
    title: str
    url: str
    user_id: int | str
    created_at: datetime

    @property
    def domain(self) -> str:
        return derive_domain(self.url)

    def age(self, now: datetime | None = None) -> str:
        return relative_age(self.created_at, now)

    @classmethod
    def from_dict(cls, payload: dict) -> "BookmarkRecord":
        return cls(
            id=str(payload["id"]),
            title=payload.get("title") or "",
            url=payload.get("url") or "",
            user_id=payload.get("user_id"),
            created_at=parse_timestamp(payload["created_at"]),
        )

    @classmethod
    def from_model(cls, bookmark) -> "BookmarkRecord":
        return cls(
            id=bookmark.id,
            title=bookmark.title,
            url=bookmark.url,
            user_id=bookmark.user_id,
            created_at=parse_timestamp(bookmark.created_at),
        )

    def as_dict(self) -> dict:
        return {
            "id": self.id,
            "title": self.title,
            "url": self.url,
            "user_id": self.user_id,
            "created_at": self.created_at.isoformat(),
            "domain": self.domain,
        }
