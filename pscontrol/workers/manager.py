"""Initialize and manage background workers with auto-restart.

Workers are daemon threads that run forever. If a worker dies from an
unhandled exception, the supervisor thread restarts it.
"""

import logging
import threading
import time

from pscontrol.config import config

log = logging.getLogger('workers.manager')

_started = False
_workers = {}     # name -> (target_fn, thread)
_lock = threading.Lock()

_SUPERVISOR_INTERVAL = 30


def _make_worker(name, target):
    t = threading.Thread(target=_safe_run, args=(name, target),
                         name=name, daemon=True)
    t.start()
    return t


def _safe_run(name, target):
    try:
        target()
    except Exception as e:
        log.error(f'[WORKER-CRASH] {name} died: {e}', exc_info=True)


def _supervisor_loop():
    while True:
        time.sleep(_SUPERVISOR_INTERVAL)
        restart_dead_workers()


def restart_dead_workers():
    """Restart any worker whose thread is no longer alive. Returns names."""
    restarted = []
    with _lock:
        for name, (target, thread) in list(_workers.items()):
            if not thread.is_alive():
                log.warning(f'[WORKER-RESTART] {name} is dead, restarting...')
                _workers[name] = (target, _make_worker(name, target))
                restarted.append(name)
    return restarted


def worker_definitions():
    """(name, target) pairs enabled by the current configuration."""
    from pscontrol.workers.cleanup_worker import run as run_cleanup
    from pscontrol.workers.heartbeat_worker import run as run_heartbeat

    defs = [('event-log-cleanup', run_cleanup)]
    if config.HEARTBEAT_WORKER_ENABLED:
        defs.append(('heartbeat-batch', run_heartbeat))
    return defs


def start_all_workers():
    """Start all background worker threads. Safe to call multiple times."""
    global _started
    if _started:
        return
    _started = True

    with _lock:
        for name, target in worker_definitions():
            _workers[name] = (target, _make_worker(name, target))
            log.info(f'Worker started: {name}')

    supervisor = threading.Thread(
        target=_supervisor_loop,
        name='worker-supervisor',
        daemon=True,
    )
    supervisor.start()
    log.info(f'Worker supervisor started (checking every {_SUPERVISOR_INTERVAL}s)')
