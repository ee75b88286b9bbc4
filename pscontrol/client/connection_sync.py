"""Client-side connection sync for a tenant's WhatsApp instance.

Merges three signals into one presented state:
    - periodic silent polling of the single-check endpoint,
    - realtime row updates pushed over Redis pub/sub,
    - host UI events (network online/offline, window visibility).

The backend stays the source of truth. Browser-side events only trigger a
read-through check; they never write instance state themselves.

Usage:
    sync = ConnectionSync('https://api.example.com', tenant_id,
                          notifier=show_toast)
    sync.start()
    ...
    sync.attempt_reconnect()
    sync.stop()
"""

import logging
import threading
from datetime import datetime, timezone

import redis
import requests

from pscontrol.config import config
from pscontrol.connection_state import (
    CHECKING, NEEDS_QR, RECONNECTING, derive_state, format_offline_duration,
)
from pscontrol.db.redis_client import get_redis
from pscontrol.realtime import channel_for, parse_message

log = logging.getLogger('client.sync')


def log_notifier(level, message, description=None):
    """Default notifier: user-facing toasts go to the log."""
    text = f'{message}: {description}' if description else message
    log.log(logging.WARNING if level in ('warning', 'error') else logging.INFO,
            f'[TOAST:{level}] {text}')


class ConnectionSync:

    def __init__(self, base_url, tenant_id, heartbeat_interval=None,
                 enable_auto_healing=True, on_status_change=None,
                 notifier=None, session=None, redis_client=None):
        self.base_url = base_url.rstrip('/')
        self.tenant_id = str(tenant_id)
        self.heartbeat_interval = heartbeat_interval or config.CLIENT_HEARTBEAT_INTERVAL_SECONDS
        self.enable_auto_healing = enable_auto_healing
        self.on_status_change = on_status_change
        self.notify = notifier or log_notifier
        self.session = session or requests.Session()
        self._redis = redis_client

        self._lock = threading.RLock()
        self._state = {
            'configured': False,
            'connected': False,
            'state': CHECKING,
            'session_valid': True,
        }
        self.is_loading = False
        self.last_sync_time = None
        self._previous_connected = None
        self._failures = 0

        self._stop = threading.Event()
        self._poll_thread = None
        self._realtime_thread = None

    # --- Presented state ---

    @property
    def state(self):
        with self._lock:
            return dict(self._state)

    @property
    def presented_state(self):
        return self.state['state']

    @property
    def is_connected(self):
        return self.state['connected']

    @property
    def is_configured(self):
        return self.state['configured']

    @property
    def needs_qr(self):
        return self.presented_state == NEEDS_QR

    @property
    def is_reconnecting(self):
        return self.presented_state == RECONNECTING

    @property
    def is_checking(self):
        return self.presented_state == CHECKING

    def offline_duration(self, now=None):
        return format_offline_duration(self.state.get('offline_since'), now=now)

    def _set_presented(self, presented, **extra):
        with self._lock:
            self._state['state'] = presented
            self._state.update(extra)

    def _emit_change(self, new_state):
        if not self.on_status_change:
            return
        try:
            self.on_status_change(dict(new_state))
        except Exception as e:
            log.error(f'on_status_change callback failed: {e}', exc_info=True)

    # --- Backend calls ---

    def _request(self, method, path):
        r = self.session.request(
            method, f'{self.base_url}{path}',
            timeout=config.CLIENT_REQUEST_TIMEOUT_SECONDS,
        )
        r.raise_for_status()
        return r.json()

    @staticmethod
    def _state_from_response(data):
        return {
            'configured': data.get('configured', False),
            'connected': data.get('connected', False),
            'state': derive_state(data),
            'instance_name': data.get('instance_name'),
            'last_heartbeat': data.get('last_heartbeat'),
            'session_valid': data.get('session_valid', True),
            'offline_since': data.get('offline_since'),
            'heartbeat_failures': data.get('heartbeat_failures'),
            'evolution_state': data.get('state'),
        }

    @staticmethod
    def _state_from_row(row):
        session_valid = row.get('session_valid')
        return {
            'configured': True,
            'connected': bool(row.get('is_connected')),
            'state': derive_state(row),
            'instance_name': row.get('instance_name'),
            'last_heartbeat': row.get('last_heartbeat_at'),
            'session_valid': True if session_valid is None else session_valid,
            'offline_since': row.get('offline_since'),
            'heartbeat_failures': row.get('heartbeat_failures'),
            'evolution_state': row.get('last_evolution_state'),
        }

    def sync_status(self, silent=False, announce=True):
        """Ask the backend for a fresh check. Returns the new state or None.

        Network failures reaching the backend do not touch the presented
        state until CLIENT_MAX_SYNC_FAILURES happen in a row; after that the
        state regresses to 'checking'.
        """
        if not silent:
            self.is_loading = True
        try:
            data = self._request('POST', f'/heartbeat/check/{self.tenant_id}')
        except (requests.RequestException, ValueError) as e:
            with self._lock:
                self._failures += 1
                failures = self._failures
                if failures >= config.CLIENT_MAX_SYNC_FAILURES:
                    self._state['state'] = CHECKING
            log.warning(f'[SYNC] Status sync failed ({failures}): {e}')
            return None
        finally:
            if not silent:
                self.is_loading = False

        new_state = self._state_from_response(data)
        with self._lock:
            previous = self._previous_connected
            self._state = new_state
            self._previous_connected = new_state['connected']
            self._failures = 0
            self.last_sync_time = datetime.now(timezone.utc)

        if previous is not None and previous != new_state['connected']:
            self._emit_change(new_state)
            if announce and new_state['connected'] and self.enable_auto_healing:
                self.notify('success', 'WhatsApp reconectado automaticamente!',
                            'A conexão foi restaurada.')
        return dict(new_state)

    def apply_realtime_update(self, row):
        """Merge a pushed instance row into the presented state."""
        new_state = self._state_from_row(row)
        with self._lock:
            previous = self._previous_connected
            self._state = new_state
            self._previous_connected = new_state['connected']

        # no baseline yet (first sync still in flight): not a recovery
        if previous is False and new_state['connected'] and self.enable_auto_healing:
            self.notify('success', 'WhatsApp reconectado!',
                        'A conexão foi restaurada automaticamente.')
        self._emit_change(new_state)
        return dict(new_state)

    def attempt_reconnect(self):
        """Manual reconnect. Shows 'reconnecting' at once, then reconciles."""
        self._set_presented(RECONNECTING)
        try:
            data = self._request('POST', f'/heartbeat/reconnect/{self.tenant_id}')
        except (requests.RequestException, ValueError) as e:
            log.error(f'[SYNC] Reconnect error: {e}')
            self.notify('error', 'Falha ao reconectar')
            return {'success': False, 'needsQR': False, 'error': str(e)}

        if data.get('success'):
            self.sync_status(announce=False)
            self.notify('success', 'Reconectado com sucesso!')
            return {'success': True, 'needsQR': False}

        if data.get('needsQR'):
            self._set_presented(NEEDS_QR, session_valid=False)
            self.notify('warning', 'Sessão expirada. Escaneie o QR Code novamente.')
            return {'success': False, 'needsQR': True}

        self.sync_status()
        self.notify('error', 'Falha ao reconectar', data.get('error'))
        return {'success': False, 'needsQR': False, 'error': data.get('error')}

    # --- Host UI events ---

    def on_online(self):
        log.info('[SYNC] Network online, syncing...')
        self.notify('info', 'Conexão restaurada. Verificando WhatsApp...')
        return self.sync_status(silent=False)

    def on_offline(self):
        log.info('[SYNC] Network offline')
        self._set_presented(RECONNECTING)

    def on_visibility_change(self, visible):
        if visible:
            log.info('[SYNC] Window visible, syncing...')
            return self.sync_status(silent=False)
        return None

    # --- Lifecycle ---

    def start(self):
        """Start polling and the realtime subscription. Safe to call twice."""
        if self._poll_thread and self._poll_thread.is_alive():
            return
        self._stop.clear()
        self._poll_thread = threading.Thread(
            target=self._poll_loop, name=f'sync-poll-{self.tenant_id}', daemon=True)
        self._poll_thread.start()

        client = self._redis or get_redis()
        if client is not None:
            self._realtime_thread = threading.Thread(
                target=self._realtime_loop, args=(client,),
                name=f'sync-realtime-{self.tenant_id}', daemon=True)
            self._realtime_thread.start()
        log.info(f'[SYNC] Heartbeat started ({self.heartbeat_interval}s interval)')

    def stop(self, timeout=5):
        self._stop.set()
        for t in (self._poll_thread, self._realtime_thread):
            if t and t.is_alive():
                t.join(timeout)
        self._poll_thread = None
        self._realtime_thread = None
        log.info('[SYNC] Heartbeat stopped')

    def _poll_loop(self):
        self.sync_status()
        while not self._stop.wait(self.heartbeat_interval):
            self.sync_status(silent=True)

    def _realtime_loop(self, client):
        pubsub = client.pubsub(ignore_subscribe_messages=True)
        try:
            pubsub.subscribe(channel_for(self.tenant_id))
            while not self._stop.is_set():
                try:
                    message = pubsub.get_message(timeout=1.0)
                except redis.RedisError as e:
                    log.warning(f'[SYNC] Realtime channel error: {e}')
                    self._stop.wait(5)
                    continue
                row = parse_message(message)
                if row:
                    self.apply_realtime_update(row)
        except redis.RedisError as e:
            log.warning(f'[SYNC] Realtime subscription failed: {e}, polling only')
        finally:
            pubsub.close()
