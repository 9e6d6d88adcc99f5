"""Logs API routes"""

from flask import Blueprint, Response, jsonify, request

from fileuploader.services.log_service import get_log_service

logs_bp = Blueprint("logs", __name__)


@logs_bp.route("/entries", methods=["GET"])
def get_log_entries() -> tuple[Response, int]:
    """Query log entries with filtering and pagination.

    Query params:
        date: Filter by date (YYYY-MM-DD)
        level: Filter by level (INFO/WARNING/ERROR)
        category: Filter by category (app/job/upload/cleanup/queue/settings)
        search: Search in message and event
        offset: Pagination offset (default 0)
        limit: Pagination limit (default 100, max 1000)

    Returns:
        JSON with entries, total, offset, limit
    """
    try:
        offset = max(0, int(request.args.get("offset", "0")))
        limit = max(1, min(1000, int(request.args.get("limit", "100"))))
    except ValueError:
        offset, limit = 0, 100

    result = get_log_service().read_log_entries(
        date=request.args.get("date"),
        level=request.args.get("level"),
        category=request.args.get("category"),
        search=request.args.get("search"),
        offset=offset,
        limit=limit,
    )
    return jsonify(result), 200


@logs_bp.route("/files", methods=["GET"])
def get_log_files() -> tuple[Response, int]:
    """List all JSONL log files with metadata."""
    return jsonify({"files": get_log_service().list_log_files()}), 200


@logs_bp.route("/stats", methods=["GET"])
def get_log_stats() -> tuple[Response, int]:
    """Get aggregate log statistics."""
    return jsonify(get_log_service().get_log_stats()), 200
