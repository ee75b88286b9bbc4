"""Connection heartbeat: probe, reconcile and heal tenant WhatsApp instances.

Entry points:
    check_single(tenant_id)  on-demand check from the client
    check_all()              batch pass for the scheduler
    reconnect(tenant_id)     user-triggered heal
    cleanup()                prune the event log

The instance row is a status cache. Writers (this module and the webhook
handler) overwrite only the fields they own; concurrent writers race and
the last write wins. Persistence failures are logged and the probed state
is still returned to the caller.
"""

import logging
import time
from datetime import datetime, timezone

from pscontrol.config import config
from pscontrol.channels import whatsapp
from pscontrol.connection_state import derive_state, parse_timestamp
from pscontrol.db import events as events_db
from pscontrol.db import gateway as gateway_db
from pscontrol.db import instances as instances_db
from pscontrol.realtime import publish_instance_change
from pscontrol.services import alert_service, healer

log = logging.getLogger('services.heartbeat')


class GatewayNotConfigured(Exception):
    """No active Evolution API configuration is available."""


def utcnow():
    return datetime.now(timezone.utc)


def _label(connected):
    return 'connected' if connected else 'disconnected'


def load_gateway():
    """Active gateway credentials: DB config first, environment as fallback."""
    row = gateway_db.get_active_config()
    if row and row.get('api_url'):
        return {'api_url': row['api_url'], 'api_token': row.get('api_token') or ''}
    if config.EVOLUTION_URL and config.EVOLUTION_API_KEY:
        return {'api_url': config.EVOLUTION_URL, 'api_token': config.EVOLUTION_API_KEY}
    raise GatewayNotConfigured('Evolution API not configured')


# --- Field computation (pure) ---

def heartbeat_fields(instance, probe, now):
    """Instance fields after one probe.

    Failures reset on success and count up otherwise; offline_since is kept
    while disconnected and only set when missing; the session is considered
    lost once SESSION_INVALID_FAILURES consecutive probes failed.
    """
    connected = bool(probe['connected'])
    failures = 0 if connected else (instance.get('heartbeat_failures') or 0) + 1
    return {
        'is_connected': connected,
        'last_heartbeat_at': now,
        'last_evolution_state': probe.get('state'),
        'heartbeat_failures': failures,
        'offline_since': None if connected else (instance.get('offline_since') or now),
        'session_valid': connected or failures < config.SESSION_INVALID_FAILURES,
        'connection_source': 'heartbeat',
    }


def connected_fields(now, state='open', source='heartbeat'):
    """Fields for an instance observed (or healed back to) connected."""
    return {
        'is_connected': True,
        'last_heartbeat_at': now,
        'last_evolution_state': state,
        'heartbeat_failures': 0,
        'reconnect_attempts': 0,
        'offline_since': None,
        'session_valid': True,
        'connection_source': source,
    }


def _offline_minutes(instance, now):
    since = parse_timestamp(instance.get('offline_since'))
    if since is None:
        return None
    return (now - since).total_seconds() / 60


# --- Persistence (best effort) ---

def persist_state(tenant_id, fields):
    """Write fields and fan the row out. Returns the row or None on failure."""
    try:
        row = instances_db.update_instance(tenant_id, **fields)
    except Exception as e:
        log.error(f'[HEARTBEAT] Failed to persist state for tenant {tenant_id}: {e}')
        return None
    publish_instance_change(row)
    return row


def record_event(tenant_id, instance_name, event_type, source, previous, new,
                 is_connected, error_message=None, metadata=None):
    try:
        events_db.log_event(
            tenant_id, instance_name, event_type, source,
            previous_state=previous, new_state=new, is_connected=is_connected,
            error_message=error_message, metadata=metadata,
        )
    except Exception as e:
        log.error(f'[HEARTBEAT] Failed to log {event_type} for tenant {tenant_id}: {e}')


# --- Single instance ---

def check_single(tenant_id):
    """Probe one tenant's instance and reconcile the stored status."""
    gateway = load_gateway()
    instance = instances_db.get_instance(tenant_id)
    if not instance or not instance.get('instance_name'):
        return {'configured': False, 'connected': False, 'presented_state': 'disconnected'}

    instance_name = instance['instance_name']
    probe = whatsapp.probe_connection(gateway['api_url'], gateway['api_token'], instance_name)
    now = utcnow()
    fields = heartbeat_fields(instance, probe, now)
    was_connected = bool(instance.get('is_connected'))

    persist_state(tenant_id, fields)

    if was_connected != fields['is_connected']:
        log.info(f'[HEARTBEAT] {instance_name}: {_label(was_connected)} -> '
                 f'{_label(fields["is_connected"])} ({probe.get("state")})')
        record_event(
            tenant_id, instance_name, _label(fields['is_connected']), 'heartbeat',
            _label(was_connected), _label(fields['is_connected']), fields['is_connected'],
            error_message=probe.get('error'),
            metadata={'evolution_state': probe.get('state')},
        )
        if fields['is_connected']:
            alert_service.resolve_alerts(tenant_id)

    result = {
        'configured': True,
        'connected': fields['is_connected'],
        'state': probe.get('state'),
        'instance_name': instance_name,
        'last_heartbeat': now.isoformat(),
        'session_valid': fields['session_valid'],
        'heartbeat_failures': fields['heartbeat_failures'],
        'offline_since': fields['offline_since'].isoformat() if fields['offline_since'] else None,
    }
    if probe.get('error'):
        result['error'] = probe['error']
    result['presented_state'] = derive_state(result)
    return result


# --- Batch ---

def check_all():
    """Probe every non-blocked instance sequentially, healing the disconnected.

    Returns counters: checked, connected, disconnected, reconnected,
    needs_qr and errors (gateway unreachable or per-instance failure).
    """
    gateway = load_gateway()
    instances = instances_db.list_checkable_instances()
    results = {
        'checked': 0, 'connected': 0, 'disconnected': 0,
        'errors': 0, 'reconnected': 0, 'needs_qr': 0,
    }
    if not instances:
        log.info('[HEARTBEAT] No instances to check')
        return results

    for i, instance in enumerate(instances):
        if i:
            time.sleep(config.BATCH_SPACING_SECONDS)
        results['checked'] += 1
        try:
            outcome = _check_batch_instance(gateway, instance)
        except Exception as e:
            log.error(f'[HEARTBEAT] Batch check failed for {instance.get("instance_name")}: {e}',
                      exc_info=True)
            results['errors'] += 1
            continue
        for key in outcome:
            results[key] += 1

    log.info(f'[HEARTBEAT] Batch completed: {results}')
    return results


def _check_batch_instance(gateway, instance):
    """Reconcile one instance inside a batch. Returns the counters to bump."""
    tenant_id = instance['tenant_id']
    instance_name = instance['instance_name']
    was_connected = bool(instance.get('is_connected'))

    probe = whatsapp.probe_connection(gateway['api_url'], gateway['api_token'], instance_name)
    now = utcnow()

    if probe['connected']:
        persist_state(tenant_id, connected_fields(now, probe.get('state')))
        alert_service.resolve_alerts(tenant_id)
        if not was_connected:
            record_event(tenant_id, instance_name, 'connected', 'heartbeat',
                       'disconnected', 'connected', True,
                       metadata={'evolution_state': probe.get('state')})
        return ['connected']

    outcome = ['disconnected']
    if probe.get('error'):
        outcome.append('errors')

    if was_connected:
        record_event(tenant_id, instance_name, 'disconnected', 'heartbeat',
                   'connected', 'disconnected', False,
                   error_message=probe.get('error'),
                   metadata={'evolution_state': probe.get('state')})

    attempts = instance.get('reconnect_attempts') or 0
    if attempts < len(config.RECONNECT_RETRY_DELAYS):
        heal = healer.attempt_reconnect(gateway, instance_name)

        if heal['success']:
            fields = connected_fields(now)
            fields['last_reconnect_attempt_at'] = now
            persist_state(tenant_id, fields)
            alert_service.resolve_alerts(tenant_id)
            record_event(tenant_id, instance_name, 'auto_reconnect_success', 'heartbeat',
                       'disconnected', 'connected', True,
                       metadata={'attempt': attempts + 1})
            return outcome + ['reconnected']

        if heal['needsQR']:
            fields = heartbeat_fields(instance, probe, now)
            fields.update({
                'session_valid': False,
                'reconnect_attempts': attempts + 1,
                'last_reconnect_attempt_at': now,
            })
            persist_state(tenant_id, fields)
            alert_service.raise_alert(tenant_id, instance_name,
                                      alert_service.SESSION_INVALID,
                                      alert_service.MSG_SESSION_EXPIRED)
            return outcome + ['needs_qr']
    else:
        log.info(f'[HEARTBEAT] {instance_name}: auto-heal exhausted ({attempts} attempts)')

    fields = heartbeat_fields(instance, probe, now)
    fields.update({
        'reconnect_attempts': attempts + 1,
        'last_reconnect_attempt_at': now,
    })
    persist_state(tenant_id, fields)

    minutes = _offline_minutes(instance, now)
    if minutes is not None and minutes > config.OFFLINE_ALERT_MINUTES:
        alert_service.raise_alert(tenant_id, instance_name,
                                  alert_service.OFFLINE_TOO_LONG,
                                  alert_service.offline_message(minutes))
    return outcome


# --- Manual reconnect ---

def reconnect(tenant_id):
    """User-triggered heal. Returns {success, connected, needsQR, error}."""
    gateway = load_gateway()
    instance = instances_db.get_instance(tenant_id)
    if not instance or not instance.get('instance_name'):
        return {'success': False, 'connected': False, 'needsQR': False,
                'error': 'Instance not found'}

    instance_name = instance['instance_name']
    heal = healer.attempt_reconnect(gateway, instance_name)
    now = utcnow()

    if heal['success']:
        persist_state(tenant_id, connected_fields(now, source='manual_reconnect'))
        alert_service.resolve_alerts(tenant_id)
        record_event(tenant_id, instance_name, 'manual_reconnect_success', 'frontend',
                   'disconnected', 'connected', True)
        return {'success': True, 'connected': True, 'needsQR': False}

    persist_state(tenant_id, {
        'session_valid': not heal['needsQR'],
        'reconnect_attempts': (instance.get('reconnect_attempts') or 0) + 1,
        'last_reconnect_attempt_at': now,
    })
    error = heal.get('error') or ('Needs new QR code' if heal['needsQR'] else 'Unknown error')
    record_event(tenant_id, instance_name, 'manual_reconnect_failed', 'frontend',
               'disconnected', 'disconnected', False, error_message=error)
    return {
        'success': False,
        'connected': False,
        'needsQR': heal['needsQR'],
        'error': heal.get('error'),
    }


# --- Alerts / maintenance ---

def get_alerts(tenant_id, include_resolved=False):
    return {'alerts': alert_service.list_alerts(tenant_id, include_resolved=include_resolved)}


def cleanup(retention_days=None):
    """Prune event log rows older than retention_days (default from config)."""
    days = retention_days if retention_days is not None else config.EVENT_LOG_RETENTION_DAYS
    if days < 1:
        raise ValueError(f'retention_days must be positive, got {days}')
    deleted = events_db.delete_older_than(days)
    log.info(f'[HEARTBEAT] Pruned {deleted} event log rows older than {days} days')
    return {'success': True, 'deleted': deleted}
