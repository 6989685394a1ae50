# backend/forecourt/__init__.py
from __future__ import annotations

import logging

from flask import Flask

from .config import Config
from .extensions import db, migrate


def create_app(config_overrides: dict | type | None = None) -> Flask:
    app = Flask(__name__, instance_relative_config=True)
    app.config.from_object(Config)
    if isinstance(config_overrides, dict):
        app.config.update(config_overrides)
    elif config_overrides is not None:
        app.config.from_object(config_overrides)

    app.logger.setLevel(getattr(logging, str(app.config.get("LOG_LEVEL", "INFO")).upper(), logging.INFO))

    # Initialize extensions
    db.init_app(app)
    migrate.init_app(app, db)

    # Import models so Alembic can discover metadata reliably
    from . import models  # noqa: F401

    # Bank postings go through the same database transaction by default
    from .services.bank_ledger import EXTENSION_KEY, SqlBankLedger
    app.extensions.setdefault(EXTENSION_KEY, SqlBankLedger())

    # Register blueprints
    from .routes.system import system_bp
    from .routes.assignments import assignments_bp
    from .routes.attendant_shifts import attendant_shifts_bp
    from .routes.accounting import accounting_bp, distributions_bp

    app.register_blueprint(system_bp)
    app.register_blueprint(assignments_bp)
    app.register_blueprint(attendant_shifts_bp)
    app.register_blueprint(accounting_bp)
    app.register_blueprint(distributions_bp)

    # Register CLI commands
    from .cli import register_commands
    register_commands(app)

    return app
