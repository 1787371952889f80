"""
Flask Application Factory - listing phone pipeline

Serves the worker API (lease/report) and health endpoint. The periodic
fetch/transfer/title loops run in a separate process
(scripts/pipeline_worker.py) built on the same factory.
"""

import logging
import os

from flask import Flask
from flask_cors import CORS
from flask_migrate import Migrate

from config import Config
from models.database import db

logger = logging.getLogger(__name__)

# Initialize Flask-Migrate (will be initialized in create_app)
migrate = Migrate()


def create_app(config_overrides=None):
    app = Flask(__name__)
    app.config.from_object(Config)
    if config_overrides:
        app.config.update(config_overrides)

    # Workers call from other hosts; no cookies involved
    CORS(app,
         resources={r"/api/*": {"origins": "*"}},
         methods=["GET", "POST", "OPTIONS"],
         allow_headers=["Content-Type", "Authorization", "X-Request-ID", "X-Worker-ID"],
         expose_headers=["X-Request-ID"],
         supports_credentials=False,
         send_wildcard=True)

    from api.middleware import setup_request_id_middleware, setup_error_handlers
    setup_request_id_middleware(app)
    setup_error_handlers(app)

    # Initialize SQLAlchemy
    db.init_app(app)

    # Initialize Flask-Migrate for database migrations
    migrate.init_app(app, db)

    from utils.rate_limiter import init_limiter
    init_limiter(app)

    with app.app_context():
        # Import all models before create_all to ensure tables are created
        import models  # noqa: F401

        env = (os.environ.get("ENV") or os.environ.get("FLASK_ENV") or os.environ.get("APP_ENV") or "").lower()
        is_prod = env in {"prod", "production"}
        allow_create = app.config.get("TESTING") or not is_prod
        if allow_create:
            db.create_all()
            logger.info("Database initialized")
        else:
            logger.info("Database ready (schema creation disabled in production; use flask db upgrade)")

    # Register routes
    from routes.phone_fetch import phone_fetch_bp
    app.register_blueprint(phone_fetch_bp, url_prefix='/api/phone-fetch')

    from routes.health import health_bp
    app.register_blueprint(health_bp, url_prefix='/api')

    return app


def run_app():
    """Main entry point for local development - starts server with Flask's dev server."""
    logging.basicConfig(
        level=logging.INFO,
        format='%(asctime)s [%(levelname)s] %(name)s: %(message)s',
        datefmt='%Y-%m-%d %H:%M:%S',
    )
    app = create_app()
    app.run(debug=app.config.get('DEBUG', False), host="0.0.0.0", port=int(os.environ.get('PORT', 5000)))


if __name__ == "__main__":
    run_app()
