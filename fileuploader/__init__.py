"""Flask application factory for the background file uploader."""

import os

from flask import Flask

from fileuploader.config import get_package_version, get_settings


def create_app() -> Flask:
    """Create and configure the Flask application."""
    app = Flask(__name__)

    # Load configuration
    settings = get_settings()
    app.config["SECRET_KEY"] = os.environ.get("SECRET_KEY", "dev-secret-key-change-in-production")
    app.config["SETTINGS"] = settings

    # Register blueprints
    from fileuploader.routes.events import events_bp
    from fileuploader.routes.job import job_bp
    from fileuploader.routes.logs import logs_bp
    from fileuploader.routes.queue import queue_bp
    from fileuploader.routes.settings import settings_bp

    app.register_blueprint(queue_bp, url_prefix="/api/uploads")
    app.register_blueprint(job_bp, url_prefix="/api/job")
    app.register_blueprint(events_bp, url_prefix="/api/events")
    app.register_blueprint(logs_bp, url_prefix="/api/logs")
    app.register_blueprint(settings_bp, url_prefix="/api/settings")

    # Log application startup
    from fileuploader.services.log_service import get_log_service

    log = get_log_service()
    log.info(
        "app",
        "app_started",
        f"Application started (v{get_package_version()})",
        {"version": get_package_version()},
    )

    return app
