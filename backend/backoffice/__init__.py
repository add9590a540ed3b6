# backend/backoffice/__init__.py
import logging

from flask import Flask, jsonify

from .config import Config
from .errors import BackOfficeError
from .extensions import db, migrate


def create_app(config_overrides: dict | None = None) -> Flask:
    app = Flask(__name__, instance_relative_config=True)
    app.config.from_object(Config)
    if config_overrides:
        app.config.update(config_overrides)

    app.logger.setLevel(getattr(logging, str(app.config.get("LOG_LEVEL", "INFO")).upper(), logging.INFO))

    # Initialize extensions
    db.init_app(app)
    migrate.init_app(app, db)

    # Import models so Alembic can discover metadata reliably
    from . import models  # noqa: F401

    # Register blueprints
    from .routes.system import system_bp
    from .routes.history import history_bp
    from .routes.admin_db import admin_db_bp

    app.register_blueprint(system_bp)
    app.register_blueprint(history_bp)
    app.register_blueprint(admin_db_bp)

    @app.errorhandler(BackOfficeError)
    def handle_backoffice_error(error: BackOfficeError):
        db.session.rollback()
        return jsonify(error.to_dict()), error.status

    # Register CLI commands
    from .cli import register_commands
    register_commands(app)

    return app
