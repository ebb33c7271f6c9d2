"""
Application factory for the equipment allocation (dotation) service.

Usage::

    from dotation import create_app
    app = create_app()           # Uses FLASK_ENV to pick config.
    app = create_app("testing")  # Explicit config for tests.
"""

import logging
import os

from flask import Flask, jsonify

from .config import config_by_name
from .errors import DotationError
from .extensions import csrf, db, login_manager, migrate


def create_app(config_name: str | None = None, sync_port=None) -> Flask:
    """
    Create and configure the Flask application.

    Args:
        config_name: One of 'development', 'testing', or 'production'.
                     Defaults to the FLASK_ENV environment variable,
                     falling back to 'development'.
        sync_port:   Optional ``ExternalSyncPort`` to install instead of
                     the one derived from configuration.  Tests pass a
                     fake here.

    Returns:
        A fully configured Flask application instance.
    """
    # Resolve the configuration class.
    if config_name is None:
        config_name = os.environ.get("FLASK_ENV", "development")
    config_class = config_by_name.get(config_name)
    if config_class is None:
        raise ValueError(
            f"Unknown config '{config_name}'. "
            f"Valid options: {list(config_by_name.keys())}"
        )

    app = Flask(__name__)
    app.config.from_object(config_class)

    # Refuse to run production with default secrets or missing Entra ID
    # credentials.
    if config_name == "production":
        config_class.validate_production_secrets(app.config)

    # -- Initialize extensions ---------------------------------------------
    _register_extensions(app)

    # -- Install the external sync port ------------------------------------
    _register_sync_port(app, sync_port)

    # -- Register blueprints -----------------------------------------------
    _register_blueprints(app)

    # -- Register error handlers -------------------------------------------
    _register_error_handlers(app)

    # -- Register custom CLI commands --------------------------------------
    _register_cli_commands(app)

    # -- Configure logging -------------------------------------------------
    _configure_logging(app)

    return app


def _register_extensions(app: Flask) -> None:
    """Bind all Flask extensions to the application instance."""
    db.init_app(app)
    migrate.init_app(app, db)
    login_manager.init_app(app)
    csrf.init_app(app)

    # Imported here to avoid circular imports with models.
    from .models.user import User  # pylint: disable=import-outside-toplevel

    @login_manager.user_loader
    def load_user(user_id: str):
        """Load a user by primary key for Flask-Login session management."""
        return db.session.get(User, int(user_id))

    @login_manager.unauthorized_handler
    def unauthorized():
        """Answer JSON instead of redirecting to a login page."""
        return (
            jsonify(
                {
                    "error": "UNAUTHORIZED",
                    "message": "Authentication required.",
                    "details": {},
                }
            ),
            401,
        )


def _register_sync_port(app: Flask, sync_port) -> None:
    """
    Store the external sync port on the app.

    An explicit port wins.  Otherwise the asset system port, wired to
    the adapter's status push, is installed when a status attribute ID
    or API token is configured, and the null port when not.
    """
    # pylint: disable=import-outside-toplevel
    from .services import asset_sync_service
    from .services.sync_port import build_sync_port

    app.extensions["dotation.sync_port"] = sync_port or build_sync_port(
        app.config, push=asset_sync_service.update_status_only
    )


def _register_blueprints(app: Flask) -> None:
    """
    Import and register each blueprint with its URL prefix.

    Blueprints are imported inside this function to avoid circular
    imports; models and services can safely import ``db`` from
    extensions at module level.
    """
    # pylint: disable=import-outside-toplevel

    # Main blueprint: health check.
    from .blueprints.main import bp as main_bp

    app.register_blueprint(main_bp)

    # Authentication: login, logout, OAuth2 callbacks.
    from .blueprints.auth import bp as auth_bp

    app.register_blueprint(auth_bp, url_prefix="/auth")

    # Equipment registry.
    from .blueprints.equipment import bp as equipment_bp

    app.register_blueprint(equipment_bp, url_prefix="/equipment")

    # Allocations (dotations).
    from .blueprints.allocations import bp as allocations_bp

    app.register_blueprint(allocations_bp, url_prefix="/allocations")

    # Returns (restitutions).
    from .blueprints.returns import bp as returns_bp

    app.register_blueprint(returns_bp, url_prefix="/returns")

    # External asset system sync triggers.
    from .blueprints.assets import bp as assets_bp

    app.register_blueprint(assets_bp, url_prefix="/assets")


def _register_error_handlers(app: Flask) -> None:
    """Render domain errors and common HTTP errors as JSON."""

    @app.errorhandler(DotationError)
    def domain_error(error: DotationError):
        """Map a typed service error to its status code."""
        return jsonify(error.to_dict()), error.http_status

    @app.errorhandler(403)
    def forbidden(error):  # pylint: disable=unused-argument
        """Handle 403 Forbidden errors."""
        return (
            jsonify(
                {
                    "error": "FORBIDDEN",
                    "message": "You do not have permission to perform this action.",
                    "details": {},
                }
            ),
            403,
        )

    @app.errorhandler(404)
    def not_found(error):  # pylint: disable=unused-argument
        """Handle 404 Not Found errors."""
        return (
            jsonify({"error": "NOT_FOUND", "message": "Not found.", "details": {}}),
            404,
        )

    @app.errorhandler(500)
    def internal_error(error):  # pylint: disable=unused-argument
        """Handle 500 Internal Server Error."""
        db.session.rollback()
        return (
            jsonify(
                {
                    "error": "INTERNAL_ERROR",
                    "message": "Internal server error.",
                    "details": {},
                }
            ),
            500,
        )


def _register_cli_commands(app: Flask) -> None:
    """Register custom Flask CLI commands (e.g., flask db-check)."""
    from .cli import register_commands  # pylint: disable=import-outside-toplevel

    register_commands(app)


def _configure_logging(app: Flask) -> None:
    """Set the root log level from ``LOG_LEVEL``."""
    log_level = app.config.get("LOG_LEVEL", "INFO")
    logging.basicConfig(level=getattr(logging, log_level, logging.INFO))

    # Quiet down noisy libraries in development.
    if app.debug:
        logging.getLogger("sqlalchemy.engine").setLevel(logging.WARNING)
