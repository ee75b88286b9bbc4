"""Evolution API v2 client for instance connection management.

All gateway communication goes through this module. Every function
returns a result dict and never raises: transport failures are reported
as data so callers can reconcile without try/except.
"""

import logging
import re
import time

import requests

from pscontrol.config import config

log = logging.getLogger('channels.whatsapp')

_MANAGER_SUFFIX = re.compile(r'/manager/?$', re.IGNORECASE)


def normalize_url(api_url):
    """Strip a trailing /manager (panel URL pasted by admins) and slashes."""
    url = (api_url or '').strip()
    url = _MANAGER_SUFFIX.sub('', url)
    return url.rstrip('/')


def _headers(api_token, json_body=False):
    headers = {'apikey': api_token or ''}
    if json_body:
        headers['Content-Type'] = 'application/json'
    return headers


def _extract_state(data):
    if not isinstance(data, dict):
        return 'unknown'
    instance = data.get('instance')
    if isinstance(instance, dict) and instance.get('state'):
        return instance['state']
    return data.get('state') or 'unknown'


# --- Status probe ---

def probe_connection(api_url, api_token, instance_name, retries=None):
    """Query connectionState for one instance, retrying transient failures.

    Returns {'connected': bool, 'state': str} on a 2xx answer, or
    {'connected': False, 'state': 'error', 'error': str} once retries are
    exhausted.
    """
    if retries is None:
        retries = config.PROBE_RETRIES
    url = f'{normalize_url(api_url)}/instance/connectionState/{instance_name}'

    error = 'Max retries exceeded'
    for attempt in range(retries + 1):
        try:
            r = requests.get(
                url,
                headers=_headers(api_token),
                timeout=config.PROBE_TIMEOUT_SECONDS,
            )
            if r.ok:
                state = _extract_state(r.json())
                return {'connected': state == 'open', 'state': state}
            error = f'API error: {r.status_code}'
        except (requests.RequestException, ValueError) as e:
            error = str(e) or e.__class__.__name__

        if attempt < retries:
            log.debug(f'[PROBE] {instance_name} attempt {attempt + 1} failed: {error}')
            time.sleep(config.PROBE_BACKOFF_SECONDS * (attempt + 1))

    log.warning(f'[PROBE] {instance_name} unreachable after {retries + 1} attempts: {error}')
    return {'connected': False, 'state': 'error', 'error': error}


# --- Instance management ---

def restart_instance(api_url, api_token, instance_name):
    """PUT /instance/restart. Returns True when the gateway accepted it."""
    try:
        r = requests.put(
            f'{normalize_url(api_url)}/instance/restart/{instance_name}',
            headers=_headers(api_token, json_body=True),
            timeout=config.HEAL_REQUEST_TIMEOUT_SECONDS,
        )
        if r.ok:
            return True
        log.warning(f'[HEAL] Restart rejected for {instance_name} ({r.status_code}): {r.text[:200]}')
        return False
    except requests.RequestException as e:
        log.warning(f'[HEAL] Restart error for {instance_name}: {e}')
        return False


def request_connect(api_url, api_token, instance_name):
    """GET /instance/connect. Returns the JSON body, or {'error': ...}."""
    try:
        r = requests.get(
            f'{normalize_url(api_url)}/instance/connect/{instance_name}',
            headers=_headers(api_token),
            timeout=config.HEAL_REQUEST_TIMEOUT_SECONDS,
        )
        if not r.ok:
            return {'error': f'API error: {r.status_code}'}
        data = r.json()
        return data if isinstance(data, dict) else {}
    except (requests.RequestException, ValueError) as e:
        return {'error': str(e)}


def has_qr_material(connect_result):
    """True when a connect answer carries a fresh QR (session must be re-linked)."""
    return bool(
        connect_result.get('base64')
        or connect_result.get('code')
        or connect_result.get('qrcode')
    )
