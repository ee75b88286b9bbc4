"""Background worker: batch heartbeat over all non-blocked instances.

Optional in-process replacement for the external cron trigger. Enabled
with HEARTBEAT_WORKER_ENABLED=true.
"""

import time
import logging

from pscontrol.config import config

log = logging.getLogger('workers.heartbeat')


def run():
    """Main loop, runs forever as daemon thread."""
    # Let the app finish booting before the first pass
    time.sleep(60)
    while True:
        try:
            _run_batch()
        except Exception as e:
            log.error(f'Heartbeat worker error: {e}', exc_info=True)
        time.sleep(config.HEARTBEAT_BATCH_INTERVAL_SECONDS)


def _run_batch():
    from pscontrol.services import heartbeat_service
    heartbeat_service.check_all()
