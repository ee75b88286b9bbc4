"""PostgreSQL access for the heartbeat tables.

Two ThreadedConnectionPools: DATABASE_URL (primary) and the DB_* settings
(fallback). A statement goes to the first pool that hands out a working
connection; only connection-level errors move on to the next pool.
"""

import logging
import psycopg2
import psycopg2.extensions
import psycopg2.extras
import psycopg2.pool

from pscontrol.config import config

log = logging.getLogger('db')

_pools = []  # [(label, pool)] in failover order

# connection_event_logs.metadata is JSONB
psycopg2.extensions.register_adapter(dict, psycopg2.extras.Json)

_CONNECTION_ERRORS = (psycopg2.OperationalError, psycopg2.InterfaceError)


def init_pool():
    """Open the pools once. Raises if none can be opened."""
    if _pools:
        return
    targets = []
    if config.DATABASE_URL:
        targets.append(('primary', {'dsn': config.DATABASE_URL}))
    targets.append(('fallback', {
        'host': config.DB_HOST, 'port': config.DB_PORT, 'dbname': config.DB_NAME,
        'user': config.DB_USER, 'password': config.DB_PASSWORD,
    }))

    last_error = None
    for label, kwargs in targets:
        try:
            _pools.append((label, psycopg2.pool.ThreadedConnectionPool(1, 10, **kwargs)))
            log.info(f'[DB] {label} pool ready')
        except psycopg2.Error as e:
            last_error = e
            log.warning(f'[DB] {label} pool unavailable: {e}')
    if not _pools:
        raise last_error


def _run(operation):
    if not _pools:
        raise RuntimeError('[DB] init_pool() has not been called')

    last_error = None
    for label, pool in _pools:
        try:
            conn = pool.getconn()
        except _CONNECTION_ERRORS as e:
            last_error = e
            log.warning(f'[DB-FAILOVER] {label}: {e}')
            continue
        broken = False
        try:
            return operation(conn)
        except _CONNECTION_ERRORS as e:
            broken = True
            last_error = e
            log.warning(f'[DB-FAILOVER] {label}: {e}')
        except Exception:
            conn.rollback()
            raise
        finally:
            pool.putconn(conn, close=broken)
    raise last_error


def query(sql, params=None, fetch='all'):
    """SELECT helper. fetch='all' gives a list of dicts, 'one' a dict or None."""
    def op(conn):
        with conn.cursor(cursor_factory=psycopg2.extras.RealDictCursor) as cur:
            cur.execute(sql, params)
            if fetch == 'one':
                row = cur.fetchone()
                return dict(row) if row else None
            return [dict(r) for r in cur.fetchall()]
    return _run(op)


def execute(sql, params=None, returning=False):
    """Write helper. Returns the RETURNING row (dict or None) or the rowcount."""
    def op(conn):
        with conn.cursor(cursor_factory=psycopg2.extras.RealDictCursor) as cur:
            cur.execute(sql, params)
            row = cur.fetchone() if returning else None
            conn.commit()
            if returning:
                return dict(row) if row else None
            return cur.rowcount
    return _run(op)


def run_migration(sql_path):
    with open(sql_path) as f:
        sql = f.read()

    def op(conn):
        with conn.cursor() as cur:
            cur.execute(sql)
        conn.commit()
    _run(op)
    log.info(f'[DB] Migration applied: {sql_path}')
