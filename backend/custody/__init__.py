# backend/custody/__init__.py
import logging

from flask import Flask

from .config import Config
from .extensions import db, migrate


def create_app(config_overrides: dict | None = None) -> Flask:
    app = Flask(__name__, instance_relative_config=True)
    app.config.from_object(Config)
    if config_overrides:
        app.config.update(config_overrides)

    logging.getLogger("custody").setLevel(app.config["LOG_LEVEL"])

    # Initialize extensions
    db.init_app(app)
    migrate.init_app(app, db)

    # Import models so Alembic can discover metadata reliably
    from . import models  # noqa: F401

    # Register blueprints
    from .routes.system import system_bp
    from .routes.custody import custody_bp
    from .routes.maintenance import maintenance_bp
    from .routes.offboarding import offboarding_bp
    from .routes.audit import audit_bp

    app.register_blueprint(system_bp)
    app.register_blueprint(custody_bp)
    app.register_blueprint(maintenance_bp)
    app.register_blueprint(offboarding_bp)
    app.register_blueprint(audit_bp)

    # Register CLI commands
    from .cli import register_commands
    register_commands(app)

    return app
