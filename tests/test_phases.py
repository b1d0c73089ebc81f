"""Tests for the phase runners against a scripted transport."""

import asyncio
import unittest

from fakes import FakeTransport, fast_config

from multispeed.download import DownloadPhase
from multispeed.errors import IllegalStateError
from multispeed.latency import PingPhase
from multispeed.models import PhaseKind, PhaseStatus
from multispeed.phase import PhaseState
from multispeed.protocol import DOWNLOAD, STOP, decode
from multispeed.upload import UploadPhase


class _PhaseTestCase(unittest.IsolatedAsyncioTestCase):
    async def _ready(self, **options):
        transport = FakeTransport(**options)
        await transport.establish(1.0)
        self.addAsyncCleanup(transport.close)
        return transport


class TestPingPhase(_PhaseTestCase):
    async def test_collects_every_reply(self):
        transport = await self._ready(ping_delay=0.02)
        runner = PingPhase(transport, fast_config(ping_sample_count=4))
        result = await runner.run()

        self.assertEqual(result.kind, PhaseKind.PING)
        self.assertEqual(result.status, PhaseStatus.COMPLETED)
        self.assertEqual(result.sample_count, 4)
        self.assertEqual(result.attempts, 4)
        self.assertAlmostEqual(result.packet_loss, 0.0)
        # Round trip is the scripted delay plus scheduling noise.
        self.assertGreaterEqual(result.average, 15.0)
        self.assertLess(result.average, 200.0)
        self.assertIsNotNone(result.jitter)
        self.assertEqual(runner.state, PhaseState.COMPLETED)

    async def test_unanswered_ping_is_skipped(self):
        transport = await self._ready(drop_pings={1})
        config = fast_config(ping_sample_count=3, per_phase_timeout_ms=300)
        result = await PingPhase(transport, config).run()

        self.assertEqual(result.status, PhaseStatus.COMPLETED)
        self.assertEqual(result.sample_count, 2)
        self.assertEqual(result.attempts, 3)
        self.assertAlmostEqual(result.packet_loss, 100 / 3, places=3)
        # Skipped, not retried: exactly one request per seq.
        seqs = [decode(p).fields["seq"] for p in transport.sent]
        self.assertEqual(seqs, [0, 1, 2])

    async def test_single_reply_has_no_jitter(self):
        transport = await self._ready()
        result = await PingPhase(transport, fast_config(ping_sample_count=1)).run()
        self.assertEqual(result.sample_count, 1)
        self.assertIsNone(result.jitter)

    async def test_progress_per_sample(self):
        transport = await self._ready()
        runner = PingPhase(transport, fast_config(ping_sample_count=3))
        updates = []
        runner.on_progress = updates.append
        await runner.run()

        counts = [u.sample_count for u in updates]
        self.assertIn(3, counts)
        self.assertEqual(updates[-1].kind, PhaseKind.PING)
        self.assertAlmostEqual(max(u.fraction for u in updates), 1.0)

    async def test_run_only_once(self):
        transport = await self._ready()
        runner = PingPhase(transport, fast_config(ping_sample_count=1))
        await runner.run()
        with self.assertRaises(IllegalStateError):
            await runner.run()


class TestDownloadPhase(_PhaseTestCase):
    async def test_partial_download_completes(self):
        # Three units in a 1 s window; the 0.55 s gap before the last one is
        # longer than the 0.5 s inactivity timeout.
        transport = await self._ready(download_schedule=[0.01, 0.4, 0.95])
        config = fast_config(
            phase_duration_ms=1000, per_phase_timeout_ms=500, payload_size=16384
        )
        result = await DownloadPhase(transport, config).run()

        self.assertEqual(result.status, PhaseStatus.COMPLETED)
        self.assertIsNone(result.reason)
        self.assertEqual(result.sample_count, 3)
        self.assertEqual(result.bytes_total, 3 * 16384)
        self.assertAlmostEqual(result.elapsed_ms, 950.0, delta=80.0)
        expected = (3 * 16384 * 8) / (result.elapsed_ms / 1000 * 1_000_000)
        self.assertAlmostEqual(result.throughput_mbps, expected, places=6)

    async def test_quiet_after_first_unit_runs_full_window(self):
        transport = await self._ready(download_schedule=[0.05])
        config = fast_config(phase_duration_ms=800, per_phase_timeout_ms=200)
        runner = DownloadPhase(transport, config)
        result = await runner.run()

        self.assertEqual(result.status, PhaseStatus.COMPLETED)
        self.assertEqual(result.sample_count, 1)
        self.assertEqual(runner.state, PhaseState.COMPLETED)

    async def test_request_and_stop_sent(self):
        transport = await self._ready()
        await DownloadPhase(transport, fast_config()).run()
        types = [decode(p).type for p in transport.sent]
        self.assertEqual(types[0], DOWNLOAD)
        self.assertEqual(types[-1], STOP)

    async def test_payload_size_capped_by_transport(self):
        transport = await self._ready()
        transport.max_payload_size = 1100
        runner = DownloadPhase(transport, fast_config(payload_size=16384))
        self.assertEqual(runner.payload_size, 1100)
        await runner.run()
        self.assertEqual(decode(transport.sent[0]).fields["payload_size"], 1100)

    async def test_silence_times_out(self):
        transport = await self._ready(stream_download=False)
        config = fast_config(phase_duration_ms=2000, per_phase_timeout_ms=200)
        result = await DownloadPhase(transport, config).run()

        self.assertEqual(result.status, PhaseStatus.TIMED_OUT)
        self.assertEqual(result.bytes_total, 0)
        self.assertIsNone(result.throughput_mbps)
        self.assertIn("no activity", result.reason)

    async def test_transport_lost_fails_with_partial_data(self):
        transport = await self._ready()
        asyncio.get_running_loop().call_later(0.2, transport.lose, "peer vanished")
        config = fast_config(phase_duration_ms=2000)
        result = await DownloadPhase(transport, config).run()

        self.assertEqual(result.status, PhaseStatus.FAILED)
        self.assertTrue(result.reason.startswith("TransportLost"))
        self.assertGreater(result.bytes_total, 0)
        self.assertLess(result.elapsed_ms, 1000.0)

    async def test_progress_reports_live_speed(self):
        transport = await self._ready()
        runner = DownloadPhase(transport, fast_config())
        updates = []
        runner.on_progress = updates.append
        await runner.run()

        self.assertTrue(updates)
        self.assertTrue(any(u.live_mbps for u in updates))
        self.assertTrue(all(0.0 <= u.fraction <= 1.0 for u in updates))


class TestUploadPhase(_PhaseTestCase):
    async def test_send_time_accounting(self):
        transport = await self._ready()
        result = await UploadPhase(transport, fast_config(payload_size=2048)).run()

        self.assertEqual(result.status, PhaseStatus.COMPLETED)
        self.assertEqual(result.bytes_total, len(transport.sent) * 2048)
        self.assertEqual(result.sample_count, len(transport.sent))
        self.assertGreater(result.throughput_mbps, 0)
        self.assertTrue(all(len(p) == 2048 for p in transport.sent))

    async def test_elapsed_covers_last_send_interval(self):
        # Five sends at a 100 ms cadence fill the whole 500 ms window.
        transport = await self._ready()
        config = fast_config(phase_duration_ms=500, packet_interval_ms=100, payload_size=1000)
        result = await UploadPhase(transport, config).run()

        self.assertEqual(result.status, PhaseStatus.COMPLETED)
        self.assertGreaterEqual(result.sample_count, 5)
        self.assertAlmostEqual(result.elapsed_ms, 500.0, delta=40.0)
        expected = (result.bytes_total * 8) / (result.elapsed_ms / 1000 * 1_000_000)
        self.assertAlmostEqual(result.throughput_mbps, expected, places=6)

    async def test_send_failures_are_skipped(self):
        transport = await self._ready(fail_sends=True)
        config = fast_config(phase_duration_ms=1000, per_phase_timeout_ms=200)
        result = await UploadPhase(transport, config).run()

        self.assertEqual(result.status, PhaseStatus.TIMED_OUT)
        self.assertEqual(result.bytes_total, 0)
        self.assertGreater(result.attempts, 0)

    async def test_abort_keeps_partial_bytes(self):
        transport = await self._ready()
        runner = UploadPhase(transport, fast_config(phase_duration_ms=2000))
        asyncio.get_running_loop().call_later(0.2, runner.abort)
        result = await runner.run()

        self.assertEqual(result.status, PhaseStatus.ABORTED)
        self.assertGreater(result.bytes_total, 0)
        self.assertLess(result.elapsed_ms, 1000.0)
        self.assertEqual(runner.state, PhaseState.ABORTED)

    async def test_abort_before_start(self):
        transport = await self._ready()
        runner = UploadPhase(transport, fast_config())
        runner.abort()
        result = await runner.run()
        self.assertEqual(result.status, PhaseStatus.ABORTED)
        self.assertEqual(result.bytes_total, 0)
        self.assertEqual(transport.sent, [])

    async def test_not_ready_transport_fails(self):
        transport = FakeTransport()
        result = await UploadPhase(transport, fast_config()).run()
        self.assertEqual(result.status, PhaseStatus.FAILED)
        self.assertTrue(result.reason.startswith("TransportLost"))


if __name__ == "__main__":
    unittest.main()
