"""Non-interactive reconnect for a disconnected instance.

Restart first; if the gateway answers a connect request with QR material the
WhatsApp session is gone and only a human re-scan can fix it.
"""

import logging
import time

from pscontrol.config import config
from pscontrol.channels import whatsapp

log = logging.getLogger('services.healer')


def attempt_reconnect(gateway, instance_name):
    """Try to bring an instance back without a QR scan.

    Returns {'success': bool, 'needsQR': bool, 'error'?: str}. Never raises.
    """
    api_url, api_token = gateway['api_url'], gateway['api_token']
    try:
        if whatsapp.restart_instance(api_url, api_token, instance_name):
            time.sleep(config.HEAL_WAIT_SECONDS)
            probe = whatsapp.probe_connection(api_url, api_token, instance_name)
            if probe['connected']:
                log.info(f'[HEAL] {instance_name} reconnected after restart')
                return {'success': True, 'needsQR': False}

        connect = whatsapp.request_connect(api_url, api_token, instance_name)
        if 'error' not in connect and whatsapp.has_qr_material(connect):
            log.warning(f'[HEAL] {instance_name} needs a new QR scan')
            return {'success': False, 'needsQR': True}

        error = connect.get('error') or 'Reconnection failed'
        log.warning(f'[HEAL] {instance_name} not recovered: {error}')
        return {'success': False, 'needsQR': False, 'error': error}
    except Exception as e:
        log.error(f'[HEAL] Unexpected error for {instance_name}: {e}', exc_info=True)
        return {'success': False, 'needsQR': False, 'error': str(e)}
