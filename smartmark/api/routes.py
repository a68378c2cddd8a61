from __future__ import annotations

from flask import Response, current_app, g, jsonify, request, stream_with_context

from smartmark.api import api_bp
from smartmark.extensions import db, live_views
from smartmark.models import ApiToken, SyncEvent, User
from smartmark.services.errors import RemoteError, ValidationError
from smartmark.services.search import filter_bookmarks
from smartmark.services.security import api_auth_required
from smartmark.services.store import BOOKMARKS_TABLE, engine_for_user, store_for_user
from smartmark.services.sync import SyncEngine
from smartmark.services.views import stream_events

VIEW_TOKEN_HEADER = "X-Live-View"


def _view_token(payload: dict | None = None) -> str | None:
    token = request.headers.get(VIEW_TOKEN_HEADER)
    if not token and payload:
        token = payload.get("view_token")
    return (token or "").strip() or None


@api_bp.route("/health")
def health():
    return jsonify({"status": "ok", "service": "SmartMark"})


@api_bp.route("/auth/token", methods=["POST"])
def create_token_with_credentials():
    payload = request.get_json(silent=True) or {}
    username = (payload.get("username") or "").strip()
    password = payload.get("password") or ""
    token_name = (payload.get("token_name") or "SmartMark API Token").strip()

    user = User.query.filter_by(username=username).first()
    if not user or not user.is_active or not user.check_password(password):
        return jsonify({"error": "invalid credentials"}), 401

    token, token_hash = ApiToken.issue_token()
    row = ApiToken(user_id=user.id, name=token_name, token_hash=token_hash)
    db.session.add(row)
    db.session.commit()
    return jsonify({"token": token, "token_name": token_name, "user_id": user.id})


@api_bp.route("/bookmarks", methods=["GET"])
@api_auth_required
def bookmarks_list():
    user = g.api_user
    items = store_for_user(user.id).query(BOOKMARKS_TABLE, owner=user.id)
    items = filter_bookmarks(items, request.args.get("q"))
    return jsonify({"items": [item.as_dict() for item in items], "count": len(items)})


@api_bp.route("/bookmarks", methods=["POST"])
@api_auth_required
def bookmarks_create_api():
    user = g.api_user
    payload = request.get_json(silent=True) or {}
    engine = engine_for_user(user.id, _view_token(payload))
    try:
        record = engine.submit_create(payload.get("title"), payload.get("url"))
    except ValidationError as exc:
        return jsonify({"error": str(exc)}), 400
    except RemoteError as exc:
        current_app.logger.warning("bookmark create rejected: %s", exc)
        return jsonify({"error": str(exc)}), 502
    return jsonify(record.as_dict()), 201


@api_bp.route("/bookmarks/<bookmark_id>", methods=["DELETE"])
@api_auth_required
def bookmarks_delete_api(bookmark_id: str):
    user = g.api_user
    engine = engine_for_user(user.id, _view_token())
    engine.submit_delete(bookmark_id)
    return jsonify({"status": "accepted", "id": bookmark_id}), 202


@api_bp.route("/views", methods=["POST"])
@api_auth_required
def views_open():
    user = g.api_user
    store = store_for_user(user.id)
    q = (request.args.get("q") or "").strip()
    engine = SyncEngine(
        store, filter_bookmarks(store.query(BOOKMARKS_TABLE, owner=user.id), q)
    )
    token = live_views.open(
        user.id,
        engine,
        query=q,
        max_per_user=current_app.config["LIVE_VIEW_MAX_PER_USER"],
    )
    return (
        jsonify(
            {
                "view_token": token,
                "items": [item.as_dict() for item in engine.bookmarks],
                "count": engine.count,
            }
        ),
        201,
    )


@api_bp.route("/views/<token>/events", methods=["GET"])
@api_auth_required
def views_events(token: str):
    user = g.api_user
    view = live_views.get_view(token, user.id)
    if view is None:
        return jsonify({"error": "view not found"}), 404

    owner = user.id
    store = store_for_user(owner)

    def load_snapshot():
        rows = store.query(BOOKMARKS_TABLE, owner=owner)
        return filter_bookmarks(rows, view.query)

    # A reconnect for the same view takes the subscription over.
    events = stream_events(
        view.engine,
        load_snapshot=load_snapshot,
        keepalive_seconds=current_app.config["STREAM_KEEPALIVE_SECONDS"],
        max_events=request.args.get("max_events", type=int),
        replace=True,
    )
    return Response(
        stream_with_context(events),
        mimetype="text/event-stream",
        headers={"Cache-Control": "no-cache", "X-Accel-Buffering": "no"},
    )


@api_bp.route("/views/<token>", methods=["DELETE"])
@api_auth_required
def views_close(token: str):
    user = g.api_user
    if not live_views.close(token, user.id):
        return jsonify({"error": "view not found"}), 404
    return jsonify({"status": "closed"})


@api_bp.route("/sync/pull", methods=["GET"])
@api_auth_required
def sync_pull():
    user = g.api_user
    since = request.args.get("since", default=0, type=int)
    limit = request.args.get("limit", default=200, type=int)
    events = (
        SyncEvent.query.filter_by(user_id=user.id)
        .filter(SyncEvent.id > since)
        .order_by(SyncEvent.id.asc())
        .limit(limit)
        .all()
    )
    latest_cursor = since
    if events:
        latest_cursor = events[-1].id
    return jsonify(
        {
            "events": [event.as_dict() for event in events],
            "cursor": latest_cursor,
            "has_more": len(events) == limit,
        }
    )
