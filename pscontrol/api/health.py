"""Health check endpoint."""

from datetime import datetime, timezone

from flask import Blueprint, jsonify

health_bp = Blueprint('health', __name__)


@health_bp.route('/health', methods=['GET'])
def health():
    return jsonify({
        'status': 'ok',
        'service': 'connection-heartbeat',
        'timestamp': datetime.now(timezone.utc).isoformat(),
    }), 200
