# backend/fulfillment/__init__.py
from flask import Flask, request

from .config import Config, FulfillmentSettings
from .extensions import db, migrate


def create_app(config_object=Config) -> Flask:
    app = Flask(__name__, instance_relative_config=True)
    app.config.from_object(config_object)

    # Initialize extensions
    db.init_app(app)
    migrate.init_app(app, db)

    # Frozen tuning knobs, read by services through config.get_settings()
    app.extensions["fulfillment"] = FulfillmentSettings.from_mapping(app.config)

    # Import models so Alembic can discover metadata reliably
    from . import models  # noqa: F401

    from .services.notification_service import log_notifier, register_notifier
    register_notifier(app, log_notifier)

    # Register blueprints
    from .routes.system import system_bp
    from .routes.orders import orders_bp
    from .routes.remittances import remittances_bp
    from .routes.remittance_types import remittance_types_bp
    from .routes.payment_accounts import payment_accounts_bp
    from .routes.inventory import inventory_bp
    from .routes.reports import reports_bp

    app.register_blueprint(system_bp)
    app.register_blueprint(orders_bp)
    app.register_blueprint(remittances_bp)
    app.register_blueprint(remittance_types_bp)
    app.register_blueprint(payment_accounts_bp)
    app.register_blueprint(inventory_bp)
    app.register_blueprint(reports_bp)

    @app.after_request
    def add_cors_headers(response):
        origin = request.headers.get("Origin")
        allowed_origins = {
            "http://localhost:5173",
            "http://127.0.0.1:5173",
            "http://localhost:4173",
            "http://127.0.0.1:4173",
        }
        if origin in allowed_origins:
            response.headers["Access-Control-Allow-Origin"] = origin
            response.headers["Vary"] = "Origin"
            response.headers["Access-Control-Allow-Headers"] = "X-User-Id, Content-Type"
            response.headers["Access-Control-Allow-Methods"] = "GET,POST,PUT,DELETE,PATCH,OPTIONS"
        return response

    # Register CLI commands
    from .cli import register_commands
    register_commands(app)

    return app
