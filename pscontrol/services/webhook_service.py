"""Connection events pushed by the Evolution API webhook."""

import logging
from datetime import datetime, timezone

from pscontrol.db import instances as instances_db
from pscontrol.services import alert_service
from pscontrol.services.heartbeat_service import persist_state, record_event

log = logging.getLogger('services.webhook')


def extract_instance_name(payload):
    data = payload.get('data')
    nested = data.get('instance') if isinstance(data, dict) else None
    if payload.get('instance'):
        return payload['instance']
    if isinstance(nested, dict):
        return nested.get('instanceName')
    return None


def interpret_event(event, data):
    """Map a gateway event to (connected, session_valid, alert_type, message).

    Returns None for events that carry no connection information.
    """
    if event == 'connection.update':
        connection = data.get('connection')
        state = data.get('state') or (connection.get('state') if isinstance(connection, dict) else None)
        if state == 'open':
            return True, True, None, None
        if state == 'close':
            return (False, True, alert_service.CONNECTION_LOST,
                    alert_service.MSG_CONNECTION_LOST)
        return False, True, None, None
    if event == 'qrcode.updated':
        # a fresh QR means "scan me", the session itself is still usable
        return False, True, None, None
    if event == 'instance.ready':
        return True, True, None, None
    if event in ('connection.lost', 'logout'):
        return (False, False, alert_service.SESSION_INVALID,
                alert_service.MSG_SESSION_ENDED)
    return None


def handle_connection_event(payload):
    """Apply one webhook event. Returns a result dict, or None if the
    instance is unknown."""
    instance_name = extract_instance_name(payload)
    instance = instances_db.get_instance_by_name(instance_name)
    if not instance:
        log.info(f'[WEBHOOK] Instance not found: {instance_name}')
        return None

    event = payload.get('webhook_event') or payload.get('event')
    data = payload.get('data') if isinstance(payload.get('data'), dict) else payload
    interpreted = interpret_event(event, data)
    if interpreted is None:
        log.debug(f'[WEBHOOK] Ignoring event {event} for {instance_name}')
        return {'success': True, 'ignored': event}

    connected, session_valid, alert_type, alert_message = interpreted
    tenant_id = instance['tenant_id']
    was_connected = bool(instance.get('is_connected'))
    now = datetime.now(timezone.utc)

    fields = {
        'is_connected': connected,
        'session_valid': session_valid,
        'last_heartbeat_at': now,
        'last_evolution_state': event,
        'connection_source': 'webhook',
    }
    if connected:
        fields['offline_since'] = None
        fields['heartbeat_failures'] = 0
    elif was_connected or not instance.get('offline_since'):
        fields['offline_since'] = now

    persist_state(tenant_id, fields)
    record_event(
        tenant_id, instance['instance_name'], event, 'webhook',
        'connected' if was_connected else 'disconnected',
        'connected' if connected else 'disconnected',
        connected, metadata={'webhook_data': data},
    )

    if connected:
        alert_service.resolve_alerts(tenant_id)
    elif alert_type:
        alert_service.raise_alert(tenant_id, instance['instance_name'],
                                  alert_type, alert_message)

    log.info(f'[WEBHOOK] {instance_name}: {event} -> '
             f'{"connected" if connected else "disconnected"}')
    return {'success': True, 'processed': event}
