import os
from datetime import timedelta

from apscheduler.schedulers.background import BackgroundScheduler

from smartmark.extensions import db, live_views
from smartmark.models import SyncEvent, utcnow


scheduler = BackgroundScheduler()


def run_live_view_reaper(app):
    live_views.reap_idle(app.config["LIVE_VIEW_IDLE_SECONDS"])


def run_sync_event_prune(app):
    with app.app_context():
        cutoff = utcnow() - timedelta(days=app.config["SYNC_EVENT_RETENTION_DAYS"])
        removed = SyncEvent.query.filter(SyncEvent.created_at < cutoff).delete(
            synchronize_session=False
        )
        db.session.commit()
        if removed:
            app.logger.info("pruned %d sync events older than %s", removed, cutoff)
        return removed


def start_scheduler(app):
    if not app.config.get("SCHEDULER_ENABLED", True):
        return
    if os.environ.get("WERKZEUG_RUN_MAIN") == "false":
        return

    if not scheduler.get_jobs():
        scheduler.add_job(
            run_live_view_reaper,
            "interval",
            minutes=app.config["LIVE_VIEW_REAP_INTERVAL_MINUTES"],
            kwargs={"app": app},
            id="live_view_reaper",
            replace_existing=True,
        )
        scheduler.add_job(
            run_sync_event_prune,
            "interval",
            hours=6,
            kwargs={"app": app},
            id="sync_event_prune",
            replace_existing=True,
        )
        scheduler.start()
