"""Settings API routes"""

from flask import Blueprint, Response, jsonify, request

from fileuploader.config import EDITABLE_KEYS, get_package_version, get_settings
from fileuploader.services.log_service import get_log_service

settings_bp = Blueprint("settings", __name__)


@settings_bp.route("", methods=["GET"])
def get_all_settings() -> tuple[Response, int]:
    """Get all current settings."""
    return jsonify({**get_settings().all(), "version": get_package_version()}), 200


@settings_bp.route("", methods=["PUT"])
def update_settings() -> tuple[Response, int]:
    """Update settings.

    Only keys in EDITABLE_KEYS are accepted; others are ignored. Changes to
    worker count, timeouts and delays apply to the scheduler created on the
    next process start.

    Returns:
        JSON response with updated settings
    """
    if not request.is_json:
        return jsonify({"error": "JSON body required"}), 400

    data = request.get_json(silent=True)
    if not data or not isinstance(data, dict):
        return jsonify({"error": "Empty body"}), 400

    filtered_data = {k: v for k, v in data.items() if k in EDITABLE_KEYS}
    if not filtered_data:
        return jsonify({"error": "No valid settings provided"}), 400

    settings = get_settings()
    settings.update(filtered_data)

    get_log_service().info(
        "settings",
        "settings_updated",
        f"Updated settings: {', '.join(filtered_data.keys())}",
        {"changed_keys": list(filtered_data.keys())},
    )

    return jsonify(settings.all()), 200
