from __future__ import annotations

from flask import current_app, flash, redirect, render_template, request, url_for
from flask_login import current_user, login_required

from smartmark.extensions import live_views
from smartmark.services.errors import RemoteError, ValidationError
from smartmark.services.search import filter_bookmarks
from smartmark.services.store import BOOKMARKS_TABLE, engine_for_user, store_for_user
from smartmark.services.sync import SyncEngine
from smartmark.web import web_bp


@web_bp.route("/")
def index():
    if current_user.is_authenticated:
        return redirect(url_for("web.dashboard"))
    return render_template("landing.html")


@web_bp.route("/dashboard")
@login_required
def dashboard():
    store = store_for_user(current_user.id)
    q = (request.args.get("q") or "").strip()
    rows = store.query(BOOKMARKS_TABLE, owner=current_user.id)
    engine = SyncEngine(store, filter_bookmarks(rows, q))
    view_token = live_views.open(
        current_user.id,
        engine,
        query=q,
        max_per_user=current_app.config["LIVE_VIEW_MAX_PER_USER"],
    )

    return render_template(
        "dashboard.html",
        items=engine.bookmarks,
        total=engine.count,
        q=q,
        view_token=view_token,
    )


@web_bp.route("/bookmarks", methods=["POST"])
@login_required
def bookmarks_create():
    engine = engine_for_user(current_user.id, request.form.get("view_token"))
    try:
        engine.submit_create(request.form.get("title"), request.form.get("url"))
    except (ValidationError, RemoteError) as exc:
        flash(str(exc), "error")
    else:
        flash("Bookmark added.", "success")
    return redirect(url_for("web.dashboard"))


@web_bp.route("/bookmarks/<bookmark_id>/delete", methods=["POST"])
@login_required
def bookmarks_delete(bookmark_id: str):
    engine = engine_for_user(current_user.id, request.form.get("view_token"))
    engine.submit_delete(bookmark_id)
    current_app.logger.debug("delete requested for bookmark %s", bookmark_id)
    return redirect(url_for("web.dashboard"))
