"""Connection heartbeat endpoints.

Tenant-facing routes (check, reconnect, alerts) rely on the hosting
backend's session layer in front of this service. Scheduler routes
(check-all, cleanup) require the INTERNAL_API_KEY bearer token.
"""

import logging
from functools import wraps
from flask import Blueprint, request, jsonify
from werkzeug.exceptions import HTTPException

from pscontrol.config import config
from pscontrol.realtime import to_json_safe
from pscontrol.services import heartbeat_service
from pscontrol.services.heartbeat_service import GatewayNotConfigured

log = logging.getLogger('api.heartbeat')

heartbeat_bp = Blueprint('heartbeat', __name__, url_prefix='/heartbeat')


def require_internal_auth(f):
    """Require a valid INTERNAL_API_KEY bearer token."""
    @wraps(f)
    def wrapped(*args, **kwargs):
        expected = config.INTERNAL_API_KEY

        # No key configured: only loopback / docker network callers
        if not expected:
            remote = request.remote_addr or ''
            if remote not in ('127.0.0.1', '::1') and not remote.startswith('172.'):
                log.warning(f'Scheduler endpoint denied from {remote} (no INTERNAL_API_KEY configured)')
                return jsonify({'error': 'unauthorized'}), 401
            return f(*args, **kwargs)

        if request.headers.get('Authorization', '') != f'Bearer {expected}':
            log.warning(f'Scheduler endpoint auth failed from {request.remote_addr}')
            return jsonify({'error': 'unauthorized'}), 401
        return f(*args, **kwargs)
    return wrapped


@heartbeat_bp.errorhandler(GatewayNotConfigured)
def gateway_not_configured(e):
    return jsonify({'error': str(e)}), 400


@heartbeat_bp.errorhandler(Exception)
def unexpected_error(e):
    if isinstance(e, HTTPException):
        return e
    log.error(f'Heartbeat error: {e}', exc_info=True)
    return jsonify({'error': str(e)}), 500


@heartbeat_bp.route('/check/<tenant_id>', methods=['POST'])
def check_single(tenant_id):
    return jsonify(heartbeat_service.check_single(tenant_id)), 200


@heartbeat_bp.route('/check-all', methods=['POST'])
@require_internal_auth
def check_all():
    results = heartbeat_service.check_all()
    return jsonify({
        'success': True,
        'results': results,
        'timestamp': heartbeat_service.utcnow().isoformat(),
    }), 200


@heartbeat_bp.route('/reconnect/<tenant_id>', methods=['POST'])
def reconnect(tenant_id):
    return jsonify(heartbeat_service.reconnect(tenant_id)), 200


@heartbeat_bp.route('/alerts/<tenant_id>', methods=['GET'])
def alerts(tenant_id):
    include_resolved = request.args.get('include_resolved', '').lower() in ('1', 'true', 'yes')
    result = heartbeat_service.get_alerts(tenant_id, include_resolved=include_resolved)
    return jsonify({'alerts': [to_json_safe(a) for a in result['alerts']]}), 200


@heartbeat_bp.route('/cleanup', methods=['POST'])
@require_internal_auth
def cleanup():
    raw = request.args.get('days')
    days = request.args.get('days', type=int)
    if raw is not None and (days is None or days < 1):
        return jsonify({'error': 'days must be a positive integer'}), 400
    return jsonify(heartbeat_service.cleanup(days)), 200
