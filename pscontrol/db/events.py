"""Connection event log: append-only audit of observed state transitions."""

import logging
from pscontrol.db import execute

log = logging.getLogger('db.events')


def log_event(tenant_id, instance_name, event_type, event_source,
              previous_state=None, new_state=None, is_connected=None,
              error_message=None, metadata=None):
    return execute(
        """INSERT INTO connection_event_logs
           (tenant_id, instance_name, event_type, event_source,
            previous_state, new_state, is_connected, error_message, metadata)
           VALUES (%s, %s, %s, %s, %s, %s, %s, %s, %s)""",
        (str(tenant_id), instance_name, event_type, event_source,
         previous_state, new_state, is_connected, error_message,
         metadata or {}),
    )


def delete_older_than(days):
    """Prune log rows older than `days`. Returns number of deleted rows."""
    return execute(
        """DELETE FROM connection_event_logs
           WHERE created_at < CURRENT_TIMESTAMP - make_interval(days => %s)""",
        (days,),
    )
