"""Messaging instance (whatsapp_seller_instances) database operations."""

import logging
from pscontrol.db import query, execute

log = logging.getLogger('db.instances')


def get_instance(tenant_id):
    return query(
        "SELECT * FROM whatsapp_seller_instances WHERE tenant_id = %s",
        (str(tenant_id),),
        fetch='one',
    )


def get_instance_by_name(instance_name):
    """Resolve a gateway instance handle to its row (webhook entry point)."""
    return query(
        "SELECT * FROM whatsapp_seller_instances WHERE instance_name = %s",
        (instance_name,),
        fetch='one',
    )


def list_checkable_instances():
    """All instances the batch heartbeat should probe.

    Blocked instances (billing delinquency) and rows without a gateway
    handle are skipped.
    """
    return query(
        """SELECT * FROM whatsapp_seller_instances
           WHERE instance_blocked = FALSE AND instance_name <> ''
           ORDER BY last_heartbeat_at ASC NULLS FIRST""",
    )


def update_instance(tenant_id, **fields):
    """Partial update keyed by tenant. Returns the updated row or None."""
    sets = []
    vals = []
    for k, v in fields.items():
        sets.append(f"{k} = %s")
        vals.append(v)
    sets.append("updated_at = CURRENT_TIMESTAMP")
    vals.append(str(tenant_id))
    return execute(
        f"""UPDATE whatsapp_seller_instances SET {', '.join(sets)}
            WHERE tenant_id = %s
            RETURNING *""",
        tuple(vals),
        returning=True,
    )
