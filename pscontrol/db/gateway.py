"""Global Evolution API configuration (admin-managed, one active row)."""

from pscontrol.db import query


def get_active_config():
    return query(
        """SELECT * FROM whatsapp_global_config
           WHERE is_active = TRUE
           ORDER BY created_at DESC
           LIMIT 1""",
        fetch='one',
    )
