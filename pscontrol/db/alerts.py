"""Connection alert database operations.

At most one unresolved alert exists per (tenant, alert_type): raising an
alert that is already open refreshes its message instead of inserting a
duplicate (partial unique index uq_connection_alerts_open).
"""

import logging
from pscontrol.db import query, execute

log = logging.getLogger('db.alerts')


def upsert_open_alert(tenant_id, instance_name, alert_type, severity, message):
    return execute(
        """INSERT INTO connection_alerts
           (tenant_id, instance_name, alert_type, severity, message)
           VALUES (%s, %s, %s, %s, %s)
           ON CONFLICT (tenant_id, alert_type) WHERE is_resolved = FALSE
           DO UPDATE SET message = EXCLUDED.message,
                         severity = EXCLUDED.severity,
                         instance_name = EXCLUDED.instance_name
           RETURNING *""",
        (str(tenant_id), instance_name, alert_type, severity, message),
        returning=True,
    )


def resolve_open_alerts(tenant_id):
    """Mark every unresolved alert of a tenant resolved. Returns rowcount."""
    return execute(
        """UPDATE connection_alerts
           SET is_resolved = TRUE, resolved_at = CURRENT_TIMESTAMP
           WHERE tenant_id = %s AND is_resolved = FALSE""",
        (str(tenant_id),),
    )


def list_alerts(tenant_id, include_resolved=False, limit=50):
    if include_resolved:
        return query(
            """SELECT * FROM connection_alerts
               WHERE tenant_id = %s
               ORDER BY created_at DESC LIMIT %s""",
            (str(tenant_id), limit),
        )
    return query(
        """SELECT * FROM connection_alerts
           WHERE tenant_id = %s AND is_resolved = FALSE
           ORDER BY created_at DESC""",
        (str(tenant_id),),
    )
