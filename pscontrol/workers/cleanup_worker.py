"""Background worker: daily pruning of the connection event log."""

import time
import logging

from pscontrol.config import config

log = logging.getLogger('workers.cleanup')


def run():
    """Main loop, runs forever as daemon thread."""
    while True:
        try:
            time.sleep(config.CLEANUP_INTERVAL_SECONDS)
            _prune()
        except Exception as e:
            log.error(f'Cleanup worker error: {e}', exc_info=True)


def _prune():
    from pscontrol.services import heartbeat_service
    heartbeat_service.cleanup(config.EVENT_LOG_RETENTION_DAYS)
