# backend/freshroute/__init__.py
import logging

from flask import Flask

from .config import Config
from .extensions import db, migrate



def create_app(test_config: dict | None = None) -> Flask:
    app = Flask(__name__, instance_relative_config=True)
    app.config.from_object(Config)
    if test_config:
        # Engines are bound in db.init_app, so overrides must land first
        app.config.update(test_config)

    app.logger.setLevel(getattr(logging, str(app.config.get("LOG_LEVEL", "INFO")).upper(), logging.INFO))

    # Initialize extensions
    db.init_app(app)
    migrate.init_app(app, db)

    # Import models so Alembic can discover metadata reliably
    from . import models  # noqa: F401

    # Register blueprints
    from .routes.system import system_bp
    from .routes.stores import stores_bp
    from .routes.products import products_bp
    from .routes.stock import stock_bp
    from .routes.orders import orders_bp
    from .routes.replenishment import replenishment_bp
    from .routes.kitchen import kitchen_bp
    from .routes.deliveries import deliveries_bp
    from .routes.returns import returns_bp
    from .routes.invoices import invoices_bp
    from .routes.payments import payments_bp
    from .routes.notifications import notifications_bp

    app.register_blueprint(system_bp)
    app.register_blueprint(stores_bp)
    app.register_blueprint(products_bp)
    app.register_blueprint(stock_bp)
    app.register_blueprint(orders_bp)
    app.register_blueprint(replenishment_bp)
    app.register_blueprint(kitchen_bp)
    app.register_blueprint(deliveries_bp)
    app.register_blueprint(returns_bp)
    app.register_blueprint(invoices_bp)
    app.register_blueprint(payments_bp)
    app.register_blueprint(notifications_bp)

    # Register CLI commands
    from .cli import register_commands
    register_commands(app)

    return app
