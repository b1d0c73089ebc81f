"""Tests for multispeed.comparison -- cross-transport deltas and formatting."""

import unittest

from multispeed.comparison import best_transport, compare_transports, format_delta, metric_value
from multispeed.models import (
    PhaseKind,
    PhaseResult,
    PhaseStatus,
    Report,
    RunMode,
    TransportKind,
    TransportResult,
)

D = TransportKind.DATAGRAM
M = TransportKind.MULTIPLEXED
S = TransportKind.STREAM


def _result(kind, ping=None, jitter=None, down=None, up=None):
    def transfer(phase_kind, mbps):
        if mbps is None:
            return None
        return PhaseResult(kind=phase_kind, status=PhaseStatus.COMPLETED,
                           average=mbps, throughput_mbps=mbps)

    return TransportResult(
        kind=kind,
        ping=PhaseResult(kind=PhaseKind.PING, status=PhaseStatus.COMPLETED,
                         average=ping, jitter=jitter),
        download=transfer(PhaseKind.DOWNLOAD, down),
        upload=transfer(PhaseKind.UPLOAD, up),
    )


def _report(*results):
    return Report(
        transport_results=tuple(results),
        selected_transport=results[0].kind if results else None,
        mode=RunMode.COMPARISON,
    )


class TestMetricValue(unittest.TestCase):
    def test_reads_phase_attribute(self):
        result = _result(S, ping=12.0, jitter=1.5, down=90.0, up=40.0)
        self.assertEqual(metric_value(result, "latency"), 12.0)
        self.assertEqual(metric_value(result, "jitter"), 1.5)
        self.assertEqual(metric_value(result, "download"), 90.0)
        self.assertEqual(metric_value(result, "upload"), 40.0)

    def test_missing_phase(self):
        result = _result(S, ping=12.0)
        self.assertIsNone(metric_value(result, "download"))

    def test_unknown_metric(self):
        with self.assertRaises(KeyError):
            metric_value(_result(S, ping=1.0), "grade")


class TestCompareTransports(unittest.TestCase):
    def test_basic_delta(self):
        report = _report(
            _result(D, ping=10.0, jitter=1.0, down=100.0, up=50.0),
            _result(S, ping=15.0, jitter=3.0, down=90.0, up=45.0),
        )
        deltas = compare_transports(report)
        self.assertEqual(list(deltas), [D])
        self.assertAlmostEqual(deltas[D]["latency_delta"], -5.0)
        self.assertAlmostEqual(deltas[D]["jitter_delta"], -2.0)
        self.assertAlmostEqual(deltas[D]["download_delta"], 10.0)
        self.assertAlmostEqual(deltas[D]["upload_delta"], 5.0)

    def test_missing_metric_is_none(self):
        report = _report(
            _result(M, ping=10.0),
            _result(S, ping=20.0, down=50.0),
        )
        deltas = compare_transports(report)
        self.assertAlmostEqual(deltas[M]["latency_delta"], -10.0)
        self.assertIsNone(deltas[M]["download_delta"])
        self.assertIsNone(deltas[M]["jitter_delta"])

    def test_no_baseline(self):
        report = _report(_result(D, ping=10.0))
        self.assertIsNone(compare_transports(report))

    def test_unestablished_baseline(self):
        report = _report(
            _result(D, ping=10.0),
            TransportResult(kind=S, establishment_error="refused"),
        )
        self.assertIsNone(compare_transports(report))

    def test_unestablished_peer_skipped(self):
        report = _report(
            TransportResult(kind=D, establishment_error="refused"),
            _result(S, ping=20.0),
        )
        self.assertEqual(compare_transports(report), {})

    def test_other_baseline(self):
        report = _report(
            _result(D, ping=10.0),
            _result(S, ping=15.0),
        )
        deltas = compare_transports(report, baseline=D)
        self.assertAlmostEqual(deltas[S]["latency_delta"], 5.0)


class TestBestTransport(unittest.TestCase):
    def setUp(self):
        self.report = _report(
            _result(D, ping=8.0, jitter=4.0, down=120.0, up=30.0),
            _result(M, ping=12.0, jitter=1.0, down=95.0, up=60.0),
            _result(S, ping=20.0, jitter=2.0, down=90.0, up=45.0),
        )

    def test_lower_is_better(self):
        self.assertEqual(best_transport(self.report, "latency"), D)
        self.assertEqual(best_transport(self.report, "jitter"), M)

    def test_higher_is_better(self):
        self.assertEqual(best_transport(self.report, "download"), D)
        self.assertEqual(best_transport(self.report, "upload"), M)

    def test_nobody_measured(self):
        report = _report(TransportResult(kind=S, establishment_error="refused"))
        self.assertIsNone(best_transport(report, "download"))


class TestFormatDelta(unittest.TestCase):
    def test_positive_speed(self):
        result = format_delta(10.0, "Mbps")
        self.assertIn("+10.0", result)
        self.assertIn("green", result)

    def test_negative_speed(self):
        result = format_delta(-10.0, "Mbps")
        self.assertIn("-10.0", result)
        self.assertIn("red", result)

    def test_positive_latency_is_bad(self):
        result = format_delta(5.0, "ms", invert=True)
        self.assertIn("+5.0", result)
        self.assertIn("red", result)

    def test_negative_latency_is_good(self):
        result = format_delta(-5.0, "ms", invert=True)
        self.assertIn("green", result)

    def test_tiny_delta(self):
        self.assertIn("same", format_delta(0.005, "Mbps"))

    def test_none(self):
        self.assertIn("n/a", format_delta(None, "ms"))


if __name__ == "__main__":
    unittest.main()
