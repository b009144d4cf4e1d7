# backend/tabpos/__init__.py
from flask import Flask

from .config import Config
from .extensions import db, migrate


def create_app(test_config: dict | None = None) -> Flask:
    app = Flask(__name__, instance_relative_config=True)
    app.config.from_object(Config)
    if test_config:
        app.config.update(test_config)

    # Initialize extensions
    db.init_app(app)
    migrate.init_app(app, db)

    # Import models so Alembic can discover metadata reliably
    from . import models  # noqa: F401

    # Register blueprints
    from .routes.system import system_bp
    from .routes.catalog import catalog_bp
    from .routes.tills import tills_bp
    from .routes.tickets import tickets_bp
    from .routes.coupons import coupons_bp
    from .routes.loyalty import loyalty_bp
    from .routes.cashback import cashback_bp

    app.register_blueprint(system_bp)
    app.register_blueprint(catalog_bp)
    app.register_blueprint(tills_bp)
    app.register_blueprint(tickets_bp)
    app.register_blueprint(coupons_bp)
    app.register_blueprint(loyalty_bp)
    app.register_blueprint(cashback_bp)

    # Register CLI commands
    from .cli import register_commands
    register_commands(app)

    return app
