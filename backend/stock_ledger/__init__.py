# backend/stock_ledger/__init__.py
from __future__ import annotations

from flask import Flask

from .config import Config
from .extensions import db, migrate


def create_app(config_overrides: dict | None = None) -> Flask:
    app = Flask(__name__, instance_relative_config=True)
    app.config.from_object(Config)
    if config_overrides:
        app.config.update(config_overrides)

    # Initialize extensions
    db.init_app(app)
    migrate.init_app(app, db)

    # Import models so Alembic can discover metadata reliably
    from . import models  # noqa: F401

    # Register blueprints
    from .routes.system import system_bp
    from .routes.transfers import transfers_bp
    from .routes.invoices import invoices_bp
    from .routes.stock import stock_bp
    from .routes.warehouses import warehouses_bp

    app.register_blueprint(system_bp)
    app.register_blueprint(transfers_bp)
    app.register_blueprint(invoices_bp)
    app.register_blueprint(stock_bp)
    app.register_blueprint(warehouses_bp)

    # Register CLI commands
    from .cli import register_commands
    register_commands(app)

    if app.config.get("REQUIRE_MAIN_WAREHOUSE"):
        # Fail at startup rather than on the first stock write
        from .services.warehouse_service import get_main_warehouse_id
        with app.app_context():
            main_id = get_main_warehouse_id()
        app.logger.info("Main warehouse resolved: %s", main_id)

    return app
