"""Presented connection state, shared by the API responses and the client sync.

The persisted instance row only stores raw facts (is_connected,
session_valid, heartbeat_failures, offline_since). What the UI shows is
derived here so server and client can never disagree.
"""

import math
from datetime import datetime, timezone

from pscontrol.config import config

CONNECTED = 'connected'
DISCONNECTED = 'disconnected'
RECONNECTING = 'reconnecting'
CHECKING = 'checking'
NEEDS_QR = 'needs_qr'


def derive_state(data):
    """Map a check_single response (or an instance row) to a presented state.

    Evaluated in order: not configured, connected, session invalid,
    transient failures, otherwise disconnected.
    """
    if not data.get('configured', True):
        return DISCONNECTED
    if data.get('connected', data.get('is_connected')):
        return CONNECTED
    if data.get('session_valid') is False:
        return NEEDS_QR
    failures = data.get('heartbeat_failures') or 0
    if 0 < failures < config.RECONNECTING_MAX_FAILURES:
        return RECONNECTING
    return DISCONNECTED


def parse_timestamp(value):
    """Accept a datetime or ISO-8601 string; naive values are taken as UTC."""
    if value is None or value == '':
        return None
    if isinstance(value, str):
        value = datetime.fromisoformat(value.replace('Z', '+00:00'))
    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    return value


def _round(x):
    # half-up, so 1.5 min reads "2 min" like the web client did
    return int(math.floor(x + 0.5))


def format_offline_duration(offline_since, now=None):
    """Human text for how long an instance has been offline, or None."""
    since = parse_timestamp(offline_since)
    if since is None:
        return None
    now = now or datetime.now(timezone.utc)
    minutes = _round((now - since).total_seconds() / 60)

    if minutes < 1:
        return 'agora'
    if minutes < 60:
        return f'{minutes} min'
    hours = _round(minutes / 60)
    if hours < 24:
        return f'{hours}h'
    return f'{_round(hours / 24)}d'
