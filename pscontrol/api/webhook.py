"""Webhook endpoint: receives Evolution API connection events.

Handled inline (a few small writes) so the gateway gets a meaningful
status code for unknown instances.
"""

import logging

from flask import Blueprint, request, jsonify

from pscontrol.services.webhook_service import extract_instance_name, handle_connection_event

log = logging.getLogger('api.webhook')

webhook_bp = Blueprint('webhook', __name__)


@webhook_bp.route('/webhook/evolution', methods=['POST'])
def webhook():
    payload = request.get_json(silent=True)
    if not payload or not isinstance(payload, dict):
        return jsonify({'error': 'empty payload'}), 400

    if not extract_instance_name(payload):
        return jsonify({'error': 'Instance name required'}), 400

    try:
        result = handle_connection_event(payload)
    except Exception as e:
        log.error(f'Unhandled webhook error: {e}', exc_info=True)
        return jsonify({'error': str(e)}), 500

    if result is None:
        return jsonify({'error': 'Instance not found'}), 404
    return jsonify(result), 200
