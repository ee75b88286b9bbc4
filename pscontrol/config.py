import os

from dotenv import load_dotenv

load_dotenv()


class Config:
    # --- PostgreSQL ---
    DATABASE_URL = os.getenv('DATABASE_URL', '')  # primary (managed Postgres)
    DB_HOST = os.getenv('DB_HOST', 'postgres')
    DB_PORT = int(os.getenv('DB_PORT', '5432'))
    DB_NAME = os.getenv('DB_NAME', 'pscontrol')
    DB_USER = os.getenv('DB_USER', 'pscontrol')
    DB_PASSWORD = os.getenv('DB_PASSWORD', '')

    # --- Redis (realtime fan-out) ---
    REDIS_URL = os.getenv('REDIS_URL', '')
    REALTIME_CHANNEL_PREFIX = 'instance-status'

    # --- Evolution API (fallback when whatsapp_global_config is empty) ---
    EVOLUTION_URL = os.getenv('EVOLUTION_URL', '')
    EVOLUTION_API_KEY = os.getenv('EVOLUTION_API_KEY', '')

    # --- Application ---
    PORT = int(os.getenv('PORT', '3000'))
    LOG_LEVEL = os.getenv('LOG_LEVEL', 'INFO')
    INTERNAL_API_KEY = os.getenv('INTERNAL_API_KEY', '')  # Secures scheduler endpoints

    # --- Status probe ---
    PROBE_TIMEOUT_SECONDS = 10
    PROBE_RETRIES = 2  # extra attempts after the first one
    PROBE_BACKOFF_SECONDS = 1  # multiplied by attempt number

    # --- Auto-heal ---
    HEAL_WAIT_SECONDS = 3
    HEAL_REQUEST_TIMEOUT_SECONDS = 15
    # 30s, 1min, 3min, 5min, 10min. Only the length bounds attempts per batch pass.
    RECONNECT_RETRY_DELAYS = [30, 60, 180, 300, 600]

    # --- Reconciler thresholds ---
    SESSION_INVALID_FAILURES = 3
    RECONNECTING_MAX_FAILURES = 5
    OFFLINE_ALERT_MINUTES = 5
    BATCH_SPACING_SECONDS = 0.5

    # --- Workers ---
    HEARTBEAT_WORKER_ENABLED = os.getenv('HEARTBEAT_WORKER_ENABLED', 'false').lower() == 'true'
    HEARTBEAT_BATCH_INTERVAL_SECONDS = int(os.getenv('HEARTBEAT_BATCH_INTERVAL_SECONDS', '300'))
    EVENT_LOG_RETENTION_DAYS = int(os.getenv('EVENT_LOG_RETENTION_DAYS', '30'))
    CLEANUP_INTERVAL_SECONDS = 86400

    # --- Client sync ---
    CLIENT_HEARTBEAT_INTERVAL_SECONDS = 30
    CLIENT_MAX_SYNC_FAILURES = 3
    CLIENT_REQUEST_TIMEOUT_SECONDS = 40  # check_single can spend ~33s on probe retries


config = Config()
