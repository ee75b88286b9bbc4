"""Tests for the client-side connection sync."""

import json
import unittest
from unittest.mock import MagicMock

import requests


def _response(body):
    r = MagicMock()
    r.json.return_value = body
    r.raise_for_status.return_value = None
    return r


CONNECTED = {'configured': True, 'connected': True, 'state': 'open',
             'instance_name': 'seller-a', 'session_valid': True, 'heartbeat_failures': 0}
DISCONNECTED = {'configured': True, 'connected': False, 'state': 'close',
                'instance_name': 'seller-a', 'session_valid': True, 'heartbeat_failures': 1,
                'offline_since': '2026-03-10T12:00:00+00:00'}


class SyncTestCase(unittest.TestCase):

    def setUp(self):
        from pscontrol.client.connection_sync import ConnectionSync
        self.session = MagicMock()
        self.notifier = MagicMock()
        self.changes = []
        self.sync = ConnectionSync(
            'https://api.example.com/', 'ten-a',
            notifier=self.notifier, session=self.session,
            on_status_change=self.changes.append,
        )

    def respond(self, *bodies):
        self.session.request.side_effect = [
            b if isinstance(b, Exception) else _response(b) for b in bodies
        ]

    def toasts(self):
        return [c[0][1] for c in self.notifier.call_args_list]


class TestSyncStatus(SyncTestCase):

    def test_initial_state_is_checking(self):
        self.assertTrue(self.sync.is_checking)
        self.assertFalse(self.sync.is_configured)

    def test_posts_to_single_check(self):
        self.respond(CONNECTED)
        state = self.sync.sync_status()

        method, url = self.session.request.call_args[0]
        self.assertEqual((method, url), ('POST', 'https://api.example.com/heartbeat/check/ten-a'))
        self.assertEqual(self.session.request.call_args[1]['timeout'], 40)
        self.assertEqual(state['state'], 'connected')
        self.assertIsNotNone(self.sync.last_sync_time)
        # first sync never counts as a transition
        self.assertEqual(self.changes, [])

    def test_regresses_to_checking_after_three_failures(self):
        self.respond(DISCONNECTED, requests.ConnectionError('down'),
                     requests.Timeout('slow'), requests.ConnectionError('down'))
        self.sync.sync_status()
        self.assertEqual(self.sync.presented_state, 'reconnecting')

        self.assertIsNone(self.sync.sync_status(silent=True))
        self.assertEqual(self.sync.presented_state, 'reconnecting')
        self.sync.sync_status(silent=True)
        self.assertEqual(self.sync.presented_state, 'reconnecting')
        self.sync.sync_status(silent=True)
        self.assertEqual(self.sync.presented_state, 'checking')

    def test_success_resets_failure_count(self):
        self.respond(requests.ConnectionError('down'), requests.ConnectionError('down'),
                     CONNECTED, requests.ConnectionError('down'), requests.ConnectionError('down'))
        for _ in range(5):
            self.sync.sync_status(silent=True)
        self.assertEqual(self.sync.presented_state, 'connected')

    def test_recovery_announced_once(self):
        self.respond(DISCONNECTED, CONNECTED, CONNECTED)
        for _ in range(3):
            self.sync.sync_status(silent=True)
        self.assertEqual(self.toasts(), ['WhatsApp reconectado automaticamente!'])
        self.assertEqual(len(self.changes), 1)

    def test_offline_duration(self):
        from datetime import datetime, timezone
        self.respond(DISCONNECTED)
        self.sync.sync_status()
        now = datetime(2026, 3, 10, 12, 12, tzinfo=timezone.utc)
        self.assertEqual(self.sync.offline_duration(now=now), '12 min')


class TestLoadingIndicator(SyncTestCase):

    def _record_loading(self, result):
        seen = []

        def request(method, url, timeout):
            seen.append(self.sync.is_loading)
            if isinstance(result, Exception):
                raise result
            return _response(result)
        self.session.request.side_effect = request
        return seen

    def test_silent_poll_does_not_toggle_loading(self):
        seen = self._record_loading(CONNECTED)
        self.sync.sync_status(silent=True)
        self.assertEqual(seen, [False])
        self.assertFalse(self.sync.is_loading)

    def test_foreground_sync_shows_loading(self):
        seen = self._record_loading(CONNECTED)
        self.sync.sync_status()
        self.assertEqual(seen, [True])
        self.assertFalse(self.sync.is_loading)

    def test_loading_cleared_when_sync_fails(self):
        seen = self._record_loading(requests.ConnectionError('down'))
        self.assertIsNone(self.sync.sync_status())
        self.assertEqual(seen, [True])
        self.assertFalse(self.sync.is_loading)

    def test_host_events_sync_in_foreground(self):
        seen = self._record_loading(CONNECTED)
        self.sync.on_online()
        self.sync.on_visibility_change(True)
        self.assertEqual(seen, [True, True])


class TestRealtime(SyncTestCase):

    def test_push_before_first_sync_is_not_a_recovery(self):
        row = {'tenant_id': 'ten-a', 'instance_name': 'seller-a', 'is_connected': True,
               'session_valid': True, 'heartbeat_failures': 0}
        self.sync.apply_realtime_update(row)

        self.notifier.assert_not_called()
        self.assertTrue(self.sync.is_connected)
        self.assertEqual(len(self.changes), 1)

    def test_push_after_connected_sync_is_silent(self):
        self.respond(CONNECTED)
        self.sync.sync_status()
        self.sync.apply_realtime_update({'tenant_id': 'ten-a', 'is_connected': True})
        self.notifier.assert_not_called()

    def test_reconnect_toast_once(self):
        self.respond(DISCONNECTED)
        self.sync.sync_status()

        row = {'tenant_id': 'ten-a', 'instance_name': 'seller-a', 'is_connected': True,
               'session_valid': True, 'heartbeat_failures': 0, 'offline_since': None}
        self.sync.apply_realtime_update(row)
        self.sync.apply_realtime_update(row)

        self.assertEqual(self.toasts(), ['WhatsApp reconectado!'])
        self.assertTrue(self.sync.is_connected)
        self.assertIsNone(self.sync.offline_duration())

    def test_invalid_session_row(self):
        row = {'tenant_id': 'ten-a', 'instance_name': 'seller-a', 'is_connected': False,
               'session_valid': False, 'heartbeat_failures': 3}
        self.sync.apply_realtime_update(row)
        self.assertTrue(self.sync.needs_qr)

    def test_realtime_loop_applies_messages(self):
        row = {'tenant_id': 'ten-a', 'is_connected': True, 'session_valid': True}
        messages = [
            None,
            {'type': 'message', 'data': json.dumps({'event': 'UPDATE', 'new': row})},
        ]
        pubsub = MagicMock()

        def get_message(timeout):
            if messages:
                return messages.pop(0)
            self.sync._stop.set()
            return None
        pubsub.get_message.side_effect = get_message
        client = MagicMock()
        client.pubsub.return_value = pubsub

        self.sync._realtime_loop(client)

        pubsub.subscribe.assert_called_once_with('instance-status:ten-a')
        pubsub.close.assert_called_once()
        self.assertTrue(self.sync.is_connected)


class TestManualReconnect(SyncTestCase):

    def test_needs_qr(self):
        self.respond({'success': False, 'connected': False, 'needsQR': True, 'error': None})
        result = self.sync.attempt_reconnect()

        self.assertEqual(result, {'success': False, 'needsQR': True})
        self.assertTrue(self.sync.needs_qr)
        self.assertFalse(self.sync.state['session_valid'])
        self.assertEqual(self.notifier.call_args[0][0], 'warning')

    def test_success_resyncs(self):
        self.respond({'success': True, 'connected': True, 'needsQR': False}, CONNECTED)
        result = self.sync.attempt_reconnect()

        self.assertTrue(result['success'])
        self.assertTrue(self.sync.is_connected)
        self.assertEqual(self.toasts(), ['Reconectado com sucesso!'])
        paths = [c[0][1] for c in self.session.request.call_args_list]
        self.assertTrue(paths[0].endswith('/heartbeat/reconnect/ten-a'))
        self.assertTrue(paths[1].endswith('/heartbeat/check/ten-a'))

    def test_network_error(self):
        self.respond(requests.ConnectionError('down'))
        result = self.sync.attempt_reconnect()
        self.assertFalse(result['success'])
        self.assertEqual(self.notifier.call_args[0][:2], ('error', 'Falha ao reconectar'))

    def test_shows_reconnecting_while_in_flight(self):
        seen = []

        def request(method, url, timeout):
            seen.append(self.sync.presented_state)
            raise requests.ConnectionError('down')
        self.session.request.side_effect = request

        self.sync.attempt_reconnect()
        self.assertEqual(seen, ['reconnecting'])


class TestHostEvents(SyncTestCase):

    def test_offline_then_online(self):
        self.respond(CONNECTED, CONNECTED)
        self.sync.sync_status()

        self.sync.on_offline()
        self.assertTrue(self.sync.is_reconnecting)

        self.sync.on_online()
        self.assertEqual(self.sync.presented_state, 'connected')
        self.assertIn('Conexão restaurada. Verificando WhatsApp...', self.toasts())

    def test_hidden_window_does_not_sync(self):
        self.assertIsNone(self.sync.on_visibility_change(False))
        self.session.request.assert_not_called()

    def test_visible_window_syncs(self):
        self.respond(CONNECTED)
        self.sync.on_visibility_change(True)
        self.assertEqual(self.session.request.call_count, 1)


if __name__ == '__main__':
    unittest.main()
