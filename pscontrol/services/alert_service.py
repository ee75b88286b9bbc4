"""Raise and resolve durable connection alerts.

Writes are best effort: a failed alert write is logged and never breaks
the reconciliation that triggered it.
"""

import logging

from pscontrol.db import alerts as alerts_db

log = logging.getLogger('services.alerts')

SESSION_INVALID = 'session_invalid'
OFFLINE_TOO_LONG = 'offline_too_long'
CONNECTION_LOST = 'connection_lost'

MSG_SESSION_EXPIRED = 'Sessão do WhatsApp expirou. É necessário escanear o QR Code novamente.'
MSG_SESSION_ENDED = 'Sessão do WhatsApp encerrada'
MSG_CONNECTION_LOST = 'Conexão com WhatsApp perdida'


def offline_message(minutes):
    return f'WhatsApp offline há {round(minutes)} minutos. Verifique sua conexão.'


def raise_alert(tenant_id, instance_name, alert_type, message, severity='critical'):
    """Open (or refresh) an alert. Returns the alert row, or None on failure."""
    log.error(f'[ALERT] Tenant:{tenant_id} | Instance:{instance_name} | '
              f'Type:{alert_type} | {message}')
    try:
        return alerts_db.upsert_open_alert(tenant_id, instance_name, alert_type,
                                           severity, message)
    except Exception as e:
        log.error(f'[ALERT] Failed to persist {alert_type} for {tenant_id}: {e}')
        return None


def resolve_alerts(tenant_id):
    """Resolve every open alert of a tenant. Returns count (0 on failure)."""
    try:
        count = alerts_db.resolve_open_alerts(tenant_id)
    except Exception as e:
        log.error(f'[ALERT] Failed to resolve alerts for {tenant_id}: {e}')
        return 0
    if count:
        log.info(f'[ALERT] Resolved {count} alert(s) for tenant {tenant_id}')
    return count


def list_alerts(tenant_id, include_resolved=False):
    return alerts_db.list_alerts(tenant_id, include_resolved=include_resolved)
