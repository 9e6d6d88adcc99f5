"""Upload queue API routes"""

from flask import Blueprint, Response, jsonify, request

from fileuploader.services.log_service import get_log_service
from fileuploader.services.queue_store import (
    UploadDescriptor,
    UploadNotFoundError,
    get_queue_store,
)

queue_bp = Blueprint("queue", __name__)


@queue_bp.route("", methods=["GET"])
def list_uploads() -> tuple[Response, int]:
    """List every upload still waiting in the durable queue.

    Returns:
        JSON with the queued uploads in dispatch order and their count
    """
    store = get_queue_store()
    uploads = [descriptor.to_dict() for _, descriptor in store.list()]
    return jsonify({"uploads": uploads, "total": len(uploads)}), 200


@queue_bp.route("", methods=["POST"])
def add_upload() -> tuple[Response, int]:
    """Queue a file for upload.

    Request body:
        file_path: Local path of the file to upload
        upload_url: Destination URL (http, https or s3)
        upload_id: Optional id; generated when omitted
        delete_on_upload: Delete the local file once uploaded (default: false)
        extras: Optional string map echoed back on every event

    Returns:
        JSON with the queued upload (201 Created)
    """
    if not request.is_json:
        return jsonify({"error": "JSON body required"}), 400

    data = request.get_json(silent=True)
    if not isinstance(data, dict):
        return jsonify({"error": "JSON object required"}), 400

    try:
        descriptor = UploadDescriptor.from_dict(data)
    except ValueError as e:
        return jsonify({"error": str(e)}), 400

    store = get_queue_store()
    store.add(descriptor)
    store.commit()

    get_log_service().info(
        "queue",
        "upload_queued",
        f"Queued {descriptor.file_path}",
        {"upload_id": descriptor.upload_id, "upload_url": descriptor.upload_url},
    )

    return jsonify(descriptor.to_dict()), 201


@queue_bp.route("/<upload_id>", methods=["GET"])
def get_upload(upload_id: str) -> tuple[Response, int]:
    """Get one queued upload."""
    try:
        descriptor = get_queue_store().get(upload_id)
    except UploadNotFoundError:
        return jsonify({"error": "Upload not found"}), 404
    return jsonify(descriptor.to_dict()), 200


@queue_bp.route("/<upload_id>", methods=["DELETE"])
def remove_upload(upload_id: str) -> tuple[Response, int]:
    """Remove an upload from the queue before it is attempted again."""
    store = get_queue_store()
    try:
        store.get(upload_id)
    except UploadNotFoundError:
        return jsonify({"error": "Upload not found"}), 404

    store.remove(upload_id)
    store.commit()

    get_log_service().info(
        "queue", "upload_dequeued", f"Removed {upload_id} from the queue", {"upload_id": upload_id}
    )
    return jsonify({"upload_id": upload_id, "removed": True}), 200
