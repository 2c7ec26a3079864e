# backend/branch_ledger/__init__.py
from flask import Flask, request

from .config import Config
from .extensions import db, migrate


def create_app(config_overrides: dict | None = None) -> Flask:
    app = Flask(__name__, instance_relative_config=True)
    app.config.from_object(Config)
    if config_overrides:
        app.config.update(config_overrides)

    app.logger.setLevel(app.config.get("LOG_LEVEL", "INFO"))

    # Initialize extensions
    db.init_app(app)
    migrate.init_app(app, db)

    # Import models so Alembic can discover metadata reliably
    from . import models  # noqa: F401

    # Register blueprints
    from .routes.system import system_bp
    from .routes.branches import branches_bp
    from .routes.transactions import transactions_bp
    from .routes.payment_schedules import payment_schedules_bp, repayments_bp
    from .routes.condition_logs import condition_logs_bp

    app.register_blueprint(system_bp)
    app.register_blueprint(branches_bp)
    app.register_blueprint(transactions_bp)
    app.register_blueprint(payment_schedules_bp)
    app.register_blueprint(repayments_bp)
    app.register_blueprint(condition_logs_bp)

    allowed_origins = set(app.config.get("CORS_ALLOWED_ORIGINS", ()))

    @app.after_request
    def add_cors_headers(response):
        origin = request.headers.get("Origin")
        if origin in allowed_origins:
            response.headers["Access-Control-Allow-Origin"] = origin
            response.headers["Vary"] = "Origin"
            response.headers["Access-Control-Allow-Headers"] = "Authorization, Content-Type, Idempotency-Key"
            response.headers["Access-Control-Allow-Methods"] = "GET,POST,PUT,DELETE,OPTIONS"
        return response

    # Register CLI commands
    from .cli import register_commands
    register_commands(app)

    return app
