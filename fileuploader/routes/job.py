"""Job control API routes"""

from flask import Blueprint, Response, jsonify

from fileuploader.services.job_scheduler import get_job_scheduler

job_bp = Blueprint("job", __name__)


@job_bp.route("/start", methods=["POST"])
def start_job() -> tuple[Response, int]:
    """Run an upload job now.

    Returns:
        JSON with the job handle (202 Accepted), or 409 if a job is running
    """
    scheduler = get_job_scheduler()
    job = scheduler.run_now()
    if job is None:
        return jsonify({"error": "A job is already running"}), 409
    return jsonify({"job": job.to_dict(), "status": scheduler.status()}), 202


@job_bp.route("/stop", methods=["POST"])
def stop_job() -> tuple[Response, int]:
    """Preempt the running job. Uploads in flight are not cancelled."""
    scheduler = get_job_scheduler()
    if not scheduler.is_running:
        return jsonify({"error": "No job is running"}), 409
    needs_reschedule = scheduler.stop()
    return jsonify({"stopped": True, "needs_reschedule": needs_reschedule}), 200


@job_bp.route("/status", methods=["GET"])
def job_status() -> tuple[Response, int]:
    """Get scheduler and batch status."""
    return jsonify(get_job_scheduler().status()), 200
