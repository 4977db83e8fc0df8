"""
Unit tests for the Heartbeat Prober

Drives check_connection() against a scripted transport with a short reply
timeout so the full retry budget runs in well under a second.
"""

import asyncio
import errno
import socket
import unittest
from unittest.mock import AsyncMock

from ibtools.config import IbConfig
from ibtools.errors import IbProtocolError, NotConnectedError, TransportError
from ibtools.ib.heartbeat import HeartbeatProber, ProbeOutcome
from ibtools.ib.supervisor import ReconnectSupervisor
from ibtools.ib.transport import MessageKind
from tests.ib.fakes import FakeTransport

FAST_TIMEOUT = 0.01


class TestHeartbeatProber(unittest.TestCase):
    """Test check_connection behaviour."""

    def setUp(self):
        self.config = IbConfig(host="127.0.0.1", port=4002, client_id=3)
        self.sleep = AsyncMock()

    def _prober(self, transport, **kwargs):
        supervisor = ReconnectSupervisor(transport, self.config, sleep=self.sleep)
        kwargs.setdefault("timeout", FAST_TIMEOUT)
        return HeartbeatProber(transport, supervisor, sleep=self.sleep, **kwargs)

    def test_defaults_from_config(self):
        transport = FakeTransport()
        supervisor = ReconnectSupervisor(transport, self.config)
        prober = HeartbeatProber(transport, supervisor)

        self.assertEqual(prober.timeout, 1.0)
        self.assertEqual(prober.max_attempts, 10)
        self.assertEqual(prober.reconnect_pause, 0.1)

    def test_reply_on_first_attempt(self):
        transport = FakeTransport(reply_always=True)
        prober = self._prober(transport)

        self.assertTrue(asyncio.run(prober.check_connection()))
        self.assertEqual(transport.sends, 1)
        self.assertEqual(prober.last_attempt.outcome, ProbeOutcome.ACKED)
        self.assertIsNotNone(prober.last_attempt.reply)

    def test_reply_on_later_attempt_stops_sending(self):
        for k in (2, 5, 11):
            with self.subTest(k=k):
                transport = FakeTransport(reply_on_sends=[k])
                prober = self._prober(transport)

                self.assertTrue(asyncio.run(prober.check_connection()))
                self.assertEqual(transport.sends, k)
                self.assertEqual(prober.timeouts, k - 1)

    def test_no_reply_gives_up_after_eleventh_timeout(self):
        transport = FakeTransport()
        prober = self._prober(transport)

        with self.assertLogs("ibtools.ib.heartbeat", level="WARNING"):
            result = asyncio.run(prober.check_connection())

        self.assertFalse(result)
        self.assertEqual(transport.sends, 11)
        self.assertEqual(prober.timeouts, 11)
        self.assertEqual(transport.count("connect"), 0)
        self.assertEqual(transport.count("disconnect"), 0)
        self.assertEqual(prober.last_attempt.outcome, ProbeOutcome.TIMED_OUT)

    def test_transport_errors_retry_in_place(self):
        transport = FakeTransport(
            send_errors=[BrokenPipeError(), TransportError("socket closed"), None],
            reply_on_sends=[3],
        )
        prober = self._prober(transport)

        self.assertTrue(asyncio.run(prober.check_connection()))
        self.assertEqual(transport.calls, ["send", "send", "send"])
        self.assertEqual(prober.send_errors, 2)

    def test_unreachable_route_on_send_is_retried(self):
        for error in (
            OSError(errno.EHOSTUNREACH, "No route to host"),
            OSError(errno.ENETUNREACH, "Network is unreachable"),
        ):
            with self.subTest(error=error):
                transport = FakeTransport(send_errors=[error], reply_on_sends=[2])
                prober = self._prober(transport)

                self.assertTrue(asyncio.run(prober.check_connection()))
                self.assertEqual(transport.calls, ["send", "send"])
                self.assertEqual(prober.send_errors, 1)

    def test_protocol_error_on_send_is_retried(self):
        for error in (
            IbProtocolError("soft"),
            ConnectionError("TWS/gateway version must be >= 157"),
        ):
            with self.subTest(error=error):
                transport = FakeTransport(send_errors=[error], reply_on_sends=[2])
                prober = self._prober(transport)

                self.assertTrue(asyncio.run(prober.check_connection()))
                self.assertEqual(transport.sends, 2)
                self.assertEqual(transport.count("connect"), 0)
                self.assertEqual(transport.registry.listener_count(), 0)

    def test_transport_errors_are_bounded(self):
        transport = FakeTransport(send_errors=[OSError("broken")] * 20)
        prober = self._prober(transport)

        self.assertFalse(asyncio.run(prober.check_connection()))
        self.assertEqual(transport.sends, 11)
        self.assertEqual(transport.count("connect"), 0)

    def test_not_connected_triggers_one_reconnect(self):
        transport = FakeTransport(
            send_errors=[NotConnectedError("no session")], reply_on_sends=[2]
        )
        prober = self._prober(transport)

        result = asyncio.run(prober.check_connection())

        self.assertTrue(result)
        self.assertEqual(transport.calls, ["send", "disconnect", "connect", "send"])
        self.assertEqual(prober.reconnects, 1)
        self.sleep.assert_awaited_once_with(0.1)

    def test_ib_insync_not_connected_error(self):
        transport = FakeTransport(
            send_errors=[ConnectionError("Not connected")], reply_on_sends=[2]
        )
        prober = self._prober(transport)

        self.assertTrue(asyncio.run(prober.check_connection()))
        self.assertEqual(transport.count("disconnect"), 1)
        self.assertEqual(transport.count("connect"), 1)

    def test_reconnect_resets_attempt_counter(self):
        # Two timeouts, then a dead session, then timeouts until the budget is spent
        transport = FakeTransport(send_errors=[None, None, NotConnectedError("gone")])
        prober = self._prober(transport, max_attempts=2)

        self.assertFalse(asyncio.run(prober.check_connection()))
        self.assertEqual(
            transport.calls,
            ["send", "send", "send", "disconnect", "connect", "send", "send", "send"],
        )

    def test_session_that_never_comes_back_is_bounded(self):
        # Every reconnect succeeds but the session is still reported missing
        transport = FakeTransport(send_errors=[ConnectionError("Not connected")] * 10)
        prober = self._prober(transport, max_attempts=2)

        with self.assertLogs("ibtools.ib.heartbeat", level="WARNING"):
            result = asyncio.run(prober.check_connection())

        self.assertFalse(result)
        self.assertEqual(
            transport.calls,
            ["send", "disconnect", "connect", "send", "disconnect", "connect", "send"],
        )
        self.assertEqual(prober.reconnects, 2)

    def test_failed_reconnect_reports_lost_connection(self):
        transport = FakeTransport(
            send_errors=[NotConnectedError("gone")],
            connect_errors=[socket.gaierror(socket.EAI_NONAME, "unknown host")],
        )
        prober = self._prober(transport)

        self.assertFalse(asyncio.run(prober.check_connection()))
        self.assertEqual(transport.calls, ["send", "disconnect", "connect"])
        self.assertEqual(transport.registry.listener_count(), 0)

    def test_unclassified_send_error_propagates_without_leak(self):
        transport = FakeTransport(send_errors=[ValueError("bad message")])
        prober = self._prober(transport)

        with self.assertRaises(ValueError):
            asyncio.run(prober.check_connection())
        self.assertEqual(transport.registry.listener_count(), 0)

    def test_no_listener_leak_across_cycles(self):
        transport = FakeTransport(send_errors=[OSError("down")] * 100)
        prober = self._prober(transport, max_attempts=1)
        before = transport.registry.listener_count(MessageKind.CURRENT_TIME)

        async def run():
            for _ in range(5):
                self.assertFalse(await prober.check_connection())

        asyncio.run(run())

        self.assertEqual(transport.registry.listener_count(MessageKind.CURRENT_TIME), before)
        self.assertEqual(prober.probes, 5)

    def test_late_reply_is_discarded(self):
        transport = FakeTransport(reply_on_sends=[1], reply_delay=0.05)
        prober = self._prober(transport, max_attempts=0)

        async def run():
            first = await prober.check_connection()
            # Let the late reply arrive after the listener is gone
            await asyncio.sleep(0.1)
            transport.reply_always = True
            transport.reply_delay = 0.0
            second = await prober.check_connection()
            return first, second

        first, second = asyncio.run(run())

        self.assertFalse(first)
        self.assertTrue(second)
        self.assertEqual(transport.registry.listener_count(), 0)

    def test_concurrent_probes_are_single_flight(self):
        transport = FakeTransport(reply_always=True, reply_delay=0.02)
        prober = self._prober(transport, timeout=1.0)

        async def run():
            return await asyncio.gather(
                prober.check_connection(),
                prober.check_connection(),
                prober.check_connection(),
            )

        self.assertEqual(asyncio.run(run()), [True, True, True])
        self.assertEqual(transport.listeners_at_send, [1, 1, 1])

    def test_stop_aborts_probe(self):
        transport = FakeTransport(reply_always=True)
        prober = self._prober(transport)
        prober.supervisor.stop()

        self.assertFalse(asyncio.run(prober.check_connection()))
        self.assertEqual(transport.sends, 0)

    def test_get_stats(self):
        transport = FakeTransport(reply_on_sends=[2])
        prober = self._prober(transport)
        asyncio.run(prober.check_connection())

        stats = prober.get_stats()

        self.assertEqual(stats["probes"], 1)
        self.assertEqual(stats["acks"], 1)
        self.assertEqual(stats["timeouts"], 1)
        self.assertEqual(stats["last_outcome"], "acked")
        self.assertEqual(self.sleep.await_args_list, [])


if __name__ == "__main__":
    unittest.main()
