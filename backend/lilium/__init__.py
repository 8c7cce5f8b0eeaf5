# backend/lilium/__init__.py
import logging

from flask import Flask, request
from sqlalchemy.engine import make_url
from werkzeug.exceptions import HTTPException

from .config import Config
from .errors import ServiceError
from .extensions import db, migrate
from .validation import ValidationError

LOG_FORMAT = "%(asctime)s %(levelname)s: %(message)s [in %(pathname)s:%(lineno)d]"


def _configure_logging(app: Flask) -> None:
    log_level_str = str(app.config.get("LOG_LEVEL", "INFO")).upper()
    log_level = getattr(logging, log_level_str, logging.INFO)

    stream_handler = logging.StreamHandler()
    stream_handler.setFormatter(logging.Formatter(LOG_FORMAT))
    stream_handler.setLevel(log_level)
    if not app.logger.handlers:
        app.logger.addHandler(stream_handler)
    app.logger.setLevel(log_level)

    # Service modules log under the package logger
    package_logger = logging.getLogger(__name__)
    if not package_logger.handlers:
        package_logger.addHandler(stream_handler)
    package_logger.setLevel(log_level)


def redacted_database_url(uri: str) -> str:
    return make_url(uri).render_as_string(hide_password=True)


def _register_error_handlers(app: Flask) -> None:
    @app.errorhandler(ServiceError)
    def handle_service_error(e: ServiceError):
        return e.to_dict(), e.kind.http_status

    @app.errorhandler(ValidationError)
    def handle_validation_error(e: ValidationError):
        return {"error": str(e), "code": "VALIDATION_ERROR"}, 400

    @app.errorhandler(Exception)
    def handle_unexpected_error(e: Exception):
        if isinstance(e, HTTPException):
            return e
        app.logger.exception("Unhandled error on %s %s", request.method, request.path)
        return {"error": "Internal server error", "code": "UNEXPECTED"}, 500


def create_app(config_object=None) -> Flask:
    app = Flask(__name__, instance_relative_config=True)
    app.config.from_object(config_object or Config)

    _configure_logging(app)

    # Initialize extensions
    db.init_app(app)
    migrate.init_app(app, db)

    # Import models so Alembic can discover metadata reliably
    from . import models  # noqa: F401

    # Services are stateless apart from their injected settings
    from .services.inventory_service import InventoryService
    from .services.settlement_service import SettlementService
    app.extensions["inventory_service"] = InventoryService.from_config(app.config)
    app.extensions["settlement_service"] = SettlementService.from_config(app.config)

    # Register blueprints
    from .routes.system import system_bp
    from .routes.auth import auth_bp
    from .routes.inventory import inventory_bp
    from .routes.orders import orders_bp
    from .routes.settlements import settlements_bp

    app.register_blueprint(system_bp)
    app.register_blueprint(auth_bp)
    app.register_blueprint(inventory_bp)
    app.register_blueprint(orders_bp)
    app.register_blueprint(settlements_bp)

    _register_error_handlers(app)

    # Register CLI commands
    from .cli import register_commands
    register_commands(app)

    app.logger.info(
        "Lilium backend started (database: %s)",
        redacted_database_url(app.config["SQLALCHEMY_DATABASE_URI"]),
    )
    return app
