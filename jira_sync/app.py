"""
Flask Application Factory
HTTP surface for manually triggering sync runs.
"""

import os
from typing import Callable

from flask import Flask, jsonify

from jira_sync.config_manager import ConfigManager, SyncConfig
from jira_sync.database.connection import DatabaseConnection
from jira_sync.sync_pipeline import run_sync
from jira_sync.utils.helpers import utc_now
from jira_sync.utils.logger import get_logger, setup_logging


def create_app(
    config: SyncConfig = None,
    runner: Callable = None,
    db: DatabaseConnection = None
) -> Flask:
    """
    Application factory for Flask app.

    Args:
        config: Run configuration; loaded from config files when omitted
        runner: Callable(config, since=...) -> RunResult, defaults to run_sync
        db: Database connection used by runs and the health check

    Returns:
        Configured Flask application
    """
    if config is None:
        manager = ConfigManager()
        setup_logging(manager.get_logging_config())
        config = manager.build_sync_config()

    logger = get_logger(__name__)
    db = db or DatabaseConnection(config.database)

    app = Flask(__name__)
    app.config['SYNC_CONFIG'] = config
    app.config['SYNC_RUNNER'] = runner or (lambda cfg, since=None: run_sync(cfg, since=since, db=db))

    from jira_sync.api.sync_routes import sync_bp
    app.register_blueprint(sync_bp)

    @app.route('/health', methods=['GET'])
    def health_check():
        """Health check endpoint."""
        db_healthy = db.check_connection()

        return jsonify({
            'status': 'healthy' if db_healthy else 'degraded',
            'timestamp': utc_now().isoformat(),
            'database': 'connected' if db_healthy else 'disconnected'
        })

    @app.errorhandler(404)
    def not_found(error):
        return jsonify({
            'success': False,
            'error': 'Not found'
        }), 404

    @app.errorhandler(500)
    def internal_error(error):
        return jsonify({
            'success': False,
            'error': 'Internal server error'
        }), 500

    logger.info("Flask application created")

    return app


if __name__ == '__main__':
    # Development server
    create_app().run(
        host='0.0.0.0',
        port=int(os.getenv('FLASK_PORT', 8080)),
        debug=os.getenv('FLASK_DEBUG', 'false').lower() == 'true'
    )
