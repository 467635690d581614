# backend/orderdesk/__init__.py
from flask import Flask, request

from .config import Config
from .extensions import db, migrate


def _register_blueprints(app: Flask) -> None:
    from .routes.system import system_bp
    from .routes.catalog import catalog_bp
    from .routes.customers import customers_bp
    from .routes.carts import carts_bp  # storefront: cart, claims, checkout
    from .routes.discounts import discounts_bp
    from .routes.orders import orders_bp
    from .routes.rewards import rewards_bp  # quarterly cashback
    from .routes.payments import payments_bp
    from .routes.stats import stats_bp  # admin dashboard

    for blueprint in (
        system_bp,
        catalog_bp,
        customers_bp,
        carts_bp,
        discounts_bp,
        orders_bp,
        rewards_bp,
        payments_bp,
        stats_bp,
    ):
        app.register_blueprint(blueprint)


def create_app(config_overrides: dict | None = None) -> Flask:
    app = Flask(__name__, instance_relative_config=True)
    app.config.from_object(Config)
    if config_overrides:
        app.config.update(config_overrides)

    app.logger.setLevel(app.config["LOG_LEVEL"])

    db.init_app(app)
    migrate.init_app(app, db)

    # Models must be imported before Alembic or create_all read the metadata
    from . import models  # noqa: F401

    _register_blueprints(app)

    allowed_origins = frozenset(app.config["CORS_ALLOWED_ORIGINS"])

    @app.after_request
    def add_cors_headers(response):
        origin = request.headers.get("Origin")
        if origin in allowed_origins:
            response.headers["Access-Control-Allow-Origin"] = origin
            response.headers["Vary"] = "Origin"
            response.headers["Access-Control-Allow-Headers"] = "Content-Type"
            response.headers["Access-Control-Allow-Methods"] = "GET,POST,PUT,DELETE,PATCH,OPTIONS"
        return response

    from .cli import register_commands
    register_commands(app)

    return app
