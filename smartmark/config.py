import os
from pathlib import Path


BASE_DIR = Path(__file__).resolve().parent.parent


class Config:
    SECRET_KEY = os.environ.get("SECRET_KEY", "default-secret-key")
    SQLALCHEMY_DATABASE_URI = os.environ.get(
        "DATABASE_URL", f"sqlite:///{BASE_DIR / 'smartmark.db'}"
    )
    SQLALCHEMY_TRACK_MODIFICATIONS = False
    SCHEDULER_ENABLED = os.environ.get("SCHEDULER_ENABLED", "1") == "1"
    LOG_LEVEL = os.environ.get("LOG_LEVEL", "INFO").upper()
    LIVE_VIEW_IDLE_SECONDS = int(os.environ.get("LIVE_VIEW_IDLE_SECONDS", "3600"))
    LIVE_VIEW_MAX_PER_USER = int(os.environ.get("LIVE_VIEW_MAX_PER_USER", "8"))
    LIVE_VIEW_REAP_INTERVAL_MINUTES = int(
        os.environ.get("LIVE_VIEW_REAP_INTERVAL_MINUTES", "10")
    )
    STREAM_KEEPALIVE_SECONDS = float(os.environ.get("STREAM_KEEPALIVE_SECONDS", "15"))
    SYNC_EVENT_RETENTION_DAYS = int(os.environ.get("SYNC_EVENT_RETENTION_DAYS", "30"))


class TestConfig(Config):
    TESTING = True
    SQLALCHEMY_DATABASE_URI = "sqlite:///:memory:"
    SCHEDULER_ENABLED = False
    STREAM_KEEPALIVE_SECONDS = 0.05
