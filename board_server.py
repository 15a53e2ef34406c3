#!/usr/bin/env python3
"""
Task Board Server
-----------------
JSON API over the task store: task CRUD, bulk reordering for drag and drop,
the broadcast event feed, and per-member time analytics.

Usage:
    python board_server.py --config board.yaml
    python board_server.py --db /tmp/board.db --port 3000

Auth:
    Every /api route requires X-API-Key (shared secret, TASKBOARD_API_SECRET)
    and X-User-Id (the acting user; workspace membership is checked per call).

API:
    GET    /api/tasks                 → { data: { documents, total, page, limit } }
    GET    /api/tasks/<id>            → { data: task }
    POST   /api/tasks                 → { data: task }            (201)
    PATCH  /api/tasks/<id>            → { data: task }
    DELETE /api/tasks/<id>            → { data: { id } }
    POST   /api/tasks/bulk-update     → { data: [task, ...] }
    GET    /api/events?workspaceId=W&since=N
                                      → { data: { events, lastSeq, firstSeq } }
    GET    /api/members/current       → { data: member }
    GET    /api/analytics/time        → { data: { days, members } }
    GET    /health
"""

import argparse
import hmac
import logging
import sys
from functools import wraps

from flask import Flask, g, jsonify, request

from pkg.taskboard.config import Config
from pkg.taskboard.errors import BoardError, ValidationError
from pkg.taskboard.events import Broadcaster
from pkg.taskboard.service import TaskMutationService
from pkg.taskboard.store import TaskStore

logger = logging.getLogger("taskboard.server")


def create_app(
    config: Config,
    store: TaskStore = None,
    broadcaster: Broadcaster = None,
    service: TaskMutationService = None,
) -> Flask:
    """Build the Flask app. Collaborators may be injected (tests)."""
    store = store or TaskStore(config.db_path)
    broadcaster = broadcaster or Broadcaster(
        relay_url=config.relay_url,
        relay_secret=config.relay_secret,
        buffer_size=config.event_buffer_size,
    )
    service = service or TaskMutationService(store, broadcaster)

    app = Flask(__name__)
    app.config["BOARD"] = config

    # ── Auth ─────────────────────────────────────────────────────────────────

    def require_api_key(f):
        """Decorator: reject requests without a valid X-API-Key and X-User-Id."""
        @wraps(f)
        def decorated(*args, **kwargs):
            if not config.api_secret:
                return jsonify({"error": "API_SECRET not set"}), 503
            provided = request.headers.get("X-API-Key", "").strip()
            if not hmac.compare_digest(provided, config.api_secret):
                code = 401 if not provided else 403
                return jsonify({"error": "Unauthorized"}), code
            actor = request.headers.get("X-User-Id", "").strip()
            if not actor:
                return jsonify({"error": "Unauthorized"}), 401
            g.actor_id = actor
            return f(*args, **kwargs)
        return decorated

    def json_body():
        data = request.get_json(force=True, silent=True)
        if data is None:
            raise ValidationError("Request body must be JSON")
        return data

    def int_arg(name: str, default: int) -> int:
        raw = request.args.get(name)
        if raw is None or raw == "":
            return default
        try:
            return int(raw)
        except ValueError:
            raise ValidationError(f"Field {name} must be an integer, got: '{raw}'")

    def required_arg(name: str) -> str:
        value = request.args.get(name, "").strip()
        if not value:
            raise ValidationError(f"Missing required field: {name}")
        return value

    # ── Errors ───────────────────────────────────────────────────────────────

    @app.errorhandler(BoardError)
    def handle_board_error(e: BoardError):
        if e.status_code >= 500:
            logger.error(f"{request.method} {request.path}: {e}")
        else:
            logger.info(f"{request.method} {request.path} rejected ({e.category}): {e}")
        return jsonify({"error": e.message}), e.status_code

    # ── Tasks ────────────────────────────────────────────────────────────────

    @app.route("/api/tasks", methods=["GET"])
    @require_api_key
    def api_list_tasks():
        return jsonify({"data": service.list_tasks(g.actor_id, request.args.to_dict())})

    @app.route("/api/tasks/<task_id>", methods=["GET"])
    @require_api_key
    def api_get_task(task_id):
        task = service.get_task(g.actor_id, task_id)
        return jsonify({"data": task.to_public_dict()})

    @app.route("/api/tasks", methods=["POST"])
    @require_api_key
    def api_create_task():
        task = service.create(g.actor_id, json_body())
        return jsonify({"data": task.to_public_dict()}), 201

    @app.route("/api/tasks/<task_id>", methods=["PATCH"])
    @require_api_key
    def api_patch_task(task_id):
        task = service.patch(g.actor_id, task_id, json_body())
        return jsonify({"data": task.to_public_dict()})

    @app.route("/api/tasks/<task_id>", methods=["DELETE"])
    @require_api_key
    def api_delete_task(task_id):
        task = service.delete(g.actor_id, task_id)
        return jsonify({"data": {"id": task.id}})

    @app.route("/api/tasks/bulk-update", methods=["POST"])
    @require_api_key
    def api_bulk_update():
        tasks = service.bulk_update(g.actor_id, json_body())
        return jsonify({"data": [t.to_public_dict() for t in tasks]})

    # ── Events, members, analytics ───────────────────────────────────────────

    @app.route("/api/events", methods=["GET"])
    @require_api_key
    def api_events():
        workspace_id = required_arg("workspaceId")
        service.current_member(g.actor_id, workspace_id)
        since = int_arg("since", 0)
        limit = int_arg("limit", 500)
        events = []
        if since >= 0:
            events = broadcaster.events_since(since, limit=limit, workspace_id=workspace_id)
        # firstSeq after the listing, so an eviction in between reads as a gap
        return jsonify({"data": {
            "events": events,
            "lastSeq": broadcaster.last_seq,
            "firstSeq": broadcaster.first_seq,
        }})

    @app.route("/api/members/current", methods=["GET"])
    @require_api_key
    def api_current_member():
        workspace_id = required_arg("workspaceId")
        member = service.current_member(g.actor_id, workspace_id)
        return jsonify({"data": member.to_dict()})

    @app.route("/api/analytics/time", methods=["GET"])
    @require_api_key
    def api_time_analytics():
        workspace_id = required_arg("workspaceId")
        report = service.time_analytics(g.actor_id, workspace_id, days=int_arg("days", 7))
        return jsonify({"data": report})

    @app.route("/health")
    def health():
        return jsonify({"status": "ok", "db": store.db_path, "lastSeq": broadcaster.last_seq})

    return app


# ── Main ─────────────────────────────────────────────────────────────────────

def main(argv=None):
    parser = argparse.ArgumentParser(description="Task Board Server")
    parser.add_argument("--config", help="Path to board.yaml (overrides TASKBOARD_CONFIG)")
    parser.add_argument("--host", help="Bind address (use 0.0.0.0 to expose on network)")
    parser.add_argument("--port", type=int)
    parser.add_argument("--db", help="Path to board.db (overrides TASKBOARD_DB)")
    parser.add_argument("--log-level", help="DEBUG, INFO, WARNING, ERROR")
    args = parser.parse_args(argv)

    try:
        config = Config.load(args.config)
    except BoardError as e:
        print(f"Config error: {e}", file=sys.stderr)
        return 1
    if args.host:
        config.host = args.host
    if args.port:
        config.port = args.port
    if args.db:
        config.db_path = args.db
    if args.log_level:
        config.log_level = args.log_level

    logging.basicConfig(
        level=getattr(logging, config.log_level.upper(), logging.INFO),
        format="%(asctime)s [taskboard] %(levelname)s: %(message)s",
        handlers=[logging.StreamHandler(sys.stdout)],
    )
    if not config.api_secret:
        logger.warning("TASKBOARD_API_SECRET not set: all /api routes will return 503")

    app = create_app(config)
    logger.info(f"Task board on http://{config.host}:{config.port} (db: {config.db_path})")
    app.run(host=config.host, port=config.port, debug=False, threaded=True)
    return 0


if __name__ == "__main__":
    sys.exit(main())
