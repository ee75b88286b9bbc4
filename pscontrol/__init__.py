import logging
import os
from flask import Flask

from pscontrol.config import config


def create_app(init_services=True):
    """Flask application factory.

    init_services=False skips database, Redis and workers (tests).
    """
    _configure_logging()

    app = Flask(__name__)

    from pscontrol.api.health import health_bp
    from pscontrol.api.heartbeat import heartbeat_bp
    from pscontrol.api.webhook import webhook_bp

    app.register_blueprint(health_bp)
    app.register_blueprint(heartbeat_bp)
    app.register_blueprint(webhook_bp)

    if not init_services:
        return app

    from pscontrol.db import init_pool, run_migration
    init_pool()

    # Idempotent migrations (IF NOT EXISTS)
    migration_dir = os.path.join(os.path.dirname(__file__), '..', 'migrations')
    if os.path.isdir(migration_dir):
        for mig in sorted(os.listdir(migration_dir)):
            if mig.endswith('.sql'):
                try:
                    run_migration(os.path.join(migration_dir, mig))
                except Exception as e:
                    logging.getLogger('pscontrol').warning(f'Migration {mig}: {e}')

    from pscontrol.db.redis_client import init_redis
    init_redis()

    from pscontrol.workers.manager import start_all_workers
    start_all_workers()

    logging.getLogger('pscontrol').info('PSControl connection heartbeat started')
    return app


def _configure_logging():
    level = getattr(logging, config.LOG_LEVEL.upper(), logging.INFO)
    logging.basicConfig(
        level=level,
        format='%(asctime)s [%(name)s] %(levelname)s: %(message)s',
        datefmt='%Y-%m-%d %H:%M:%S',
    )
    logging.getLogger('urllib3').setLevel(logging.WARNING)
    logging.getLogger('werkzeug').setLevel(logging.WARNING)
