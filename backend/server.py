"""
Flask application entry point for the RxLedger backend.

Registers the prescription, entity and settings APIs.
"""

import logging

from flask import Flask

from rxledger.config import config
from rxledger.api import register_error_handlers
from rxledger.api.prescriptions import bp as prescriptions_bp
from rxledger.api.entities import bp as entities_bp
from rxledger.api.settings import bp as settings_bp
from rxledger.db.postgres import close_db_session, rollback_session


def create_app(init_database: bool = False):
    """Create and configure Flask app."""
    app = Flask(__name__)

    # Load config
    app.config["SECRET_KEY"] = config.SECRET_KEY
    app.config["DEBUG"] = config.DEBUG

    # Enable CORS for the web client
    @app.after_request
    def after_request(response):
        response.headers.add("Access-Control-Allow-Origin", "*")
        response.headers.add("Access-Control-Allow-Headers", "Content-Type,X-Account")
        response.headers.add("Access-Control-Allow-Methods", "GET,PUT,POST,DELETE,OPTIONS")
        return response

    # Ensure clean session state at the start of each request
    @app.before_request
    def ensure_clean_session():
        rollback_session()

    # Clean up database session at the end of each request
    @app.teardown_appcontext
    def shutdown_session(exception=None):
        close_db_session(exception)

    register_error_handlers(app)

    app.register_blueprint(prescriptions_bp)  # /api/v1/prescriptions/*
    app.register_blueprint(entities_bp)       # /api/v1/entities/*
    app.register_blueprint(settings_bp)       # /api/v1/settings/*

    # Health check endpoint
    @app.route("/health")
    def health():
        return {"status": "ok", "reconcile_on_list": config.RECONCILE_ON_LIST}

    # Initialize database tables if requested (development only)
    if init_database:
        with app.app_context():
            from rxledger.db.postgres import init_db
            init_db()
            logging.getLogger("rxledger").info("Index tables initialized")

    return app


if __name__ == "__main__":
    logging.basicConfig(
        level=getattr(logging, config.LOG_LEVEL.upper(), logging.INFO),
        format="%(asctime)s %(levelname)s [%(name)s] %(message)s",
    )
    logger = logging.getLogger("rxledger")

    app = create_app(init_database=False)
    logger.info("Starting server on port 5001...")
    logger.info(f"Ledger RPC: {config.LEDGER_RPC_URL}")
    logger.info(f"Content store: {config.IPFS_API_URL}")
    logger.info("Routes:")
    logger.info("  - /api/v1/prescriptions/* (Prescription lifecycle)")
    logger.info("  - /api/v1/entities/* (Entity registry mirror)")
    logger.info("  - /api/v1/settings/* (Configuration distribution)")
    logger.info("  - /health (Health check)")
    app.run(debug=config.DEBUG, port=5001)
