"""Realtime fan-out of instance row changes over Redis pub/sub.

Channel per tenant: ``instance-status:<tenant_id>``. The payload is the full
updated row as JSON, mirroring a database change notification.
"""

import json
import logging
from datetime import date, datetime

import redis

from pscontrol.config import config
from pscontrol.db.redis_client import get_redis

log = logging.getLogger('realtime')


def channel_for(tenant_id):
    return f'{config.REALTIME_CHANNEL_PREFIX}:{tenant_id}'


def to_json_safe(row):
    """Copy of a DB row with datetimes as ISO-8601 and UUIDs as strings."""
    out = {}
    for k, v in (row or {}).items():
        if isinstance(v, (datetime, date)):
            out[k] = v.isoformat()
        elif v is None or isinstance(v, (bool, int, float, str, list, dict)):
            out[k] = v
        else:
            out[k] = str(v)
    return out


def publish_instance_change(row):
    """Publish an updated instance row. Returns number of receivers (0 if off)."""
    if not row:
        return 0
    r = get_redis()
    if r is None:
        return 0
    payload = json.dumps({'event': 'UPDATE', 'new': to_json_safe(row)})
    try:
        return r.publish(channel_for(row['tenant_id']), payload)
    except redis.RedisError as e:
        log.warning(f'[REALTIME] Publish failed for tenant {row.get("tenant_id")}: {e}')
        return 0


def parse_message(message):
    """Extract the new row from a pub/sub message dict, or None."""
    if not message or message.get('type') != 'message':
        return None
    try:
        data = json.loads(message['data'])
    except (TypeError, ValueError):
        log.warning('[REALTIME] Dropping malformed payload')
        return None
    return data.get('new')
