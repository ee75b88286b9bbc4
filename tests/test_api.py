"""Tests for the heartbeat HTTP endpoints."""

import unittest
from datetime import datetime, timezone
from unittest.mock import patch


class ApiTestCase(unittest.TestCase):

    def setUp(self):
        from pscontrol import create_app
        self.client = create_app(init_services=False).test_client()


class TestHealth(ApiTestCase):

    def test_health(self):
        r = self.client.get('/health')
        self.assertEqual(r.status_code, 200)
        self.assertEqual(r.get_json()['status'], 'ok')


@patch('pscontrol.api.heartbeat.heartbeat_service')
class TestTenantRoutes(ApiTestCase):

    def test_check_single(self, mock_svc):
        mock_svc.check_single.return_value = {'configured': True, 'connected': True, 'state': 'open'}
        r = self.client.post('/heartbeat/check/ten-a')
        self.assertEqual(r.status_code, 200)
        self.assertTrue(r.get_json()['connected'])
        mock_svc.check_single.assert_called_once_with('ten-a')

    def test_reconnect(self, mock_svc):
        mock_svc.reconnect.return_value = {'success': False, 'connected': False,
                                           'needsQR': True, 'error': None}
        r = self.client.post('/heartbeat/reconnect/ten-a')
        self.assertEqual(r.status_code, 200)
        self.assertTrue(r.get_json()['needsQR'])

    def test_alerts_serialize_timestamps(self, mock_svc):
        created = datetime(2026, 3, 10, 12, 0, tzinfo=timezone.utc)
        mock_svc.get_alerts.return_value = {'alerts': [
            {'id': 1, 'alert_type': 'session_invalid', 'created_at': created, 'is_resolved': False},
        ]}
        r = self.client.get('/heartbeat/alerts/ten-a?include_resolved=true')
        self.assertEqual(r.status_code, 200)
        self.assertEqual(r.get_json()['alerts'][0]['created_at'], created.isoformat())
        mock_svc.get_alerts.assert_called_once_with('ten-a', include_resolved=True)

    def test_alerts_default_open_only(self, mock_svc):
        mock_svc.get_alerts.return_value = {'alerts': []}
        self.client.get('/heartbeat/alerts/ten-a')
        mock_svc.get_alerts.assert_called_once_with('ten-a', include_resolved=False)

    def test_unexpected_error_is_500(self, mock_svc):
        mock_svc.check_single.side_effect = RuntimeError('boom')
        r = self.client.post('/heartbeat/check/ten-a')
        self.assertEqual(r.status_code, 500)
        self.assertEqual(r.get_json()['error'], 'boom')

    def test_wrong_method_stays_405(self, mock_svc):
        r = self.client.get('/heartbeat/check/ten-a')
        self.assertEqual(r.status_code, 405)


class TestGatewayMissing(ApiTestCase):

    def test_missing_gateway_is_400(self):
        from pscontrol.services.heartbeat_service import GatewayNotConfigured
        with patch('pscontrol.api.heartbeat.heartbeat_service.check_single',
                   side_effect=GatewayNotConfigured('Evolution API not configured')):
            r = self.client.post('/heartbeat/check/ten-a')
        self.assertEqual(r.status_code, 400)
        self.assertIn('not configured', r.get_json()['error'])


@patch('pscontrol.api.heartbeat.heartbeat_service')
class TestSchedulerRoutes(ApiTestCase):

    def test_check_all_requires_key(self, mock_svc):
        from pscontrol.config import config
        with patch.object(config, 'INTERNAL_API_KEY', 'secret'):
            r = self.client.post('/heartbeat/check-all')
        self.assertEqual(r.status_code, 401)
        mock_svc.check_all.assert_not_called()

    def test_check_all_with_key(self, mock_svc):
        mock_svc.check_all.return_value = {'checked': 2, 'connected': 1}
        mock_svc.utcnow.return_value = datetime(2026, 3, 10, tzinfo=timezone.utc)
        from pscontrol.config import config
        with patch.object(config, 'INTERNAL_API_KEY', 'secret'):
            r = self.client.post('/heartbeat/check-all',
                                 headers={'Authorization': 'Bearer secret'})
        self.assertEqual(r.status_code, 200)
        body = r.get_json()
        self.assertTrue(body['success'])
        self.assertEqual(body['results']['checked'], 2)

    def test_no_key_allows_loopback_only(self, mock_svc):
        mock_svc.cleanup.return_value = {'success': True, 'deleted': 0}
        from pscontrol.config import config
        with patch.object(config, 'INTERNAL_API_KEY', ''):
            local = self.client.post('/heartbeat/cleanup',
                                     environ_base={'REMOTE_ADDR': '127.0.0.1'})
            remote = self.client.post('/heartbeat/cleanup',
                                      environ_base={'REMOTE_ADDR': '203.0.113.9'})
        self.assertEqual(local.status_code, 200)
        self.assertEqual(remote.status_code, 401)

    def test_cleanup_days(self, mock_svc):
        mock_svc.cleanup.return_value = {'success': True, 'deleted': 4}
        from pscontrol.config import config
        with patch.object(config, 'INTERNAL_API_KEY', 'secret'):
            r = self.client.post('/heartbeat/cleanup?days=7',
                                 headers={'Authorization': 'Bearer secret'})
        self.assertEqual(r.get_json()['deleted'], 4)
        mock_svc.cleanup.assert_called_once_with(7)

    def test_cleanup_rejects_non_positive_days(self, mock_svc):
        from pscontrol.config import config
        with patch.object(config, 'INTERNAL_API_KEY', 'secret'):
            for days in ('-1', '0', 'abc'):
                r = self.client.post(f'/heartbeat/cleanup?days={days}',
                                     headers={'Authorization': 'Bearer secret'})
                self.assertEqual(r.status_code, 400, days)
        mock_svc.cleanup.assert_not_called()


if __name__ == '__main__':
    unittest.main()
