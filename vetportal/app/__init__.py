"""Application factory for the vetportal frontend."""
from __future__ import annotations

from flask import Flask

from vetportal.config import get_config
from vetportal.app.middleware import register_session_middleware
from vetportal.extensions import cors


def create_app(config_name: str | None = None) -> Flask:
    """Create and configure the Flask application."""

    app = Flask(__name__)
    config_cls = get_config(config_name or app.config.get("ENV"))
    app.config.from_object(config_cls)
    if not app.config.get("SECRET_KEY"):
        raise RuntimeError("SECRET_KEY must be set to sign session cookies.")

    register_extensions(app)
    register_blueprints(app)
    register_session_middleware(app)

    return app


def register_extensions(app: Flask) -> None:
    """Initialize Flask extensions."""

    cors.init_app(app, resources={r"/portal/appointments/availability": {"origins": "*"}})


def register_blueprints(app: Flask) -> None:
    """Register application blueprints."""

    from vetportal.app.views import admin_bp, portal_bp

    app.register_blueprint(admin_bp)
    app.register_blueprint(portal_bp, url_prefix="/portal")
