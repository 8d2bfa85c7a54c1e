# backend/retailcore/__init__.py
from flask import Flask, request

from .config import Config, _engine_options
from .extensions import db, migrate


def create_app(config_overrides: dict | None = None) -> Flask:
    app = Flask(__name__, instance_relative_config=True)
    app.config.from_object(Config)

    if config_overrides:
        app.config.update(config_overrides)
        # Engine options follow the database URI unless given explicitly
        if ("SQLALCHEMY_DATABASE_URI" in config_overrides
                and "SQLALCHEMY_ENGINE_OPTIONS" not in config_overrides):
            app.config["SQLALCHEMY_ENGINE_OPTIONS"] = _engine_options(
                app.config["SQLALCHEMY_DATABASE_URI"]
            )

    # Initialize extensions
    db.init_app(app)
    migrate.init_app(app, db)

    # Import models so Alembic can discover metadata reliably
    from . import models  # noqa: F401

    # Shared services
    from .services.database_service import DatabaseService
    from .services.order_events import OrderEventBroker
    from .services.order_service import OrderService

    database_service = DatabaseService.from_app(app, db)
    order_events = OrderEventBroker(app.config["ORDER_EVENT_QUEUE_SIZE"], logger=app.logger)

    app.extensions["database_service"] = database_service
    app.extensions["order_events"] = order_events
    app.extensions["order_service"] = OrderService(
        database_service, event_broker=order_events, logger=app.logger
    )

    # Register blueprints
    from .routes.system import system_bp
    from .routes.mobile import mobile_bp  # Customer-facing storefront and orders
    from .routes.mobile_orders import mobile_orders_bp  # Shop-side order management

    app.register_blueprint(system_bp)
    app.register_blueprint(mobile_bp)
    app.register_blueprint(mobile_orders_bp)

    @app.after_request
    def add_cors_headers(response):
        origin = request.headers.get("Origin")
        if origin and origin in app.config["CORS_ALLOWED_ORIGINS"]:
            response.headers["Access-Control-Allow-Origin"] = origin
            response.headers["Vary"] = "Origin"
            response.headers["Access-Control-Allow-Headers"] = "Authorization, Content-Type"
            response.headers["Access-Control-Allow-Methods"] = "GET,POST,PUT,OPTIONS"
        return response

    # Register CLI commands
    from .cli import register_commands
    register_commands(app)

    return app
