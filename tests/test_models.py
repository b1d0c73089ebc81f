"""Unit tests for multispeed.models and multispeed.endpoint -- data shapes and serialisation."""

import unittest

from multispeed.endpoint import Endpoint
from multispeed.models import (
    KIND_PRIORITY,
    PhaseKind,
    PhaseResult,
    PhaseStatus,
    Report,
    RunMode,
    TransportKind,
    TransportResult,
)


def _ping(**kw):
    values = dict(kind=PhaseKind.PING, status=PhaseStatus.COMPLETED, average=10.0, jitter=1.0,
                  sample_count=10, attempts=10, packet_loss=0.0)
    values.update(kw)
    return PhaseResult(**values)


def _transfer(kind, **kw):
    values = dict(kind=kind, status=PhaseStatus.COMPLETED, average=80.0, throughput_mbps=80.0,
                  sample_count=100, bytes_total=1_000_000, elapsed_ms=100.0)
    values.update(kw)
    return PhaseResult(**values)


class TestTransportKind(unittest.TestCase):
    def test_priority(self):
        self.assertEqual(
            KIND_PRIORITY,
            (TransportKind.DATAGRAM, TransportKind.MULTIPLEXED, TransportKind.STREAM),
        )

    def test_labels(self):
        for kind in TransportKind:
            self.assertTrue(kind.label)


class TestPhaseResult(unittest.TestCase):
    def test_ok(self):
        self.assertTrue(_ping().ok)
        self.assertFalse(_ping(status=PhaseStatus.TIMED_OUT).ok)

    def test_ping_dict_has_no_throughput(self):
        d = _ping().to_dict()
        self.assertEqual(d["kind"], "ping")
        self.assertIn("jitter", d)
        self.assertIn("packet_loss", d)
        self.assertNotIn("throughput_mbps", d)

    def test_transfer_dict_has_no_jitter(self):
        d = _transfer(PhaseKind.DOWNLOAD).to_dict()
        self.assertEqual(d["throughput_mbps"], 80.0)
        self.assertEqual(d["bytes_total"], 1_000_000)
        self.assertNotIn("jitter", d)

    def test_undefined_values_stay_none(self):
        d = _ping(average=None, jitter=None).to_dict()
        self.assertIsNone(d["average"])
        self.assertIsNone(d["jitter"])

    def test_reason_only_when_set(self):
        self.assertNotIn("reason", _ping().to_dict())
        self.assertEqual(_ping(status=PhaseStatus.FAILED, reason="TransportLost: x").to_dict()["reason"],
                         "TransportLost: x")


class TestTransportResult(unittest.TestCase):
    def test_establishment_error_excludes_phases(self):
        with self.assertRaises(ValueError):
            TransportResult(kind=TransportKind.DATAGRAM, ping=_ping(), establishment_error="refused")

    def test_established(self):
        self.assertTrue(TransportResult(kind=TransportKind.STREAM, ping=_ping()).established)
        self.assertFalse(
            TransportResult(kind=TransportKind.STREAM, establishment_error="refused").established
        )

    def test_phases_in_order(self):
        tr = TransportResult(
            kind=TransportKind.STREAM,
            ping=_ping(),
            upload=_transfer(PhaseKind.UPLOAD),
        )
        self.assertEqual([p.kind for p in tr.phases], [PhaseKind.PING, PhaseKind.UPLOAD])
        self.assertIsNone(tr.phase(PhaseKind.DOWNLOAD))

    def test_to_dict(self):
        d = TransportResult(kind=TransportKind.DATAGRAM, establishment_error="refused").to_dict()
        self.assertEqual(d["transport"], "datagram")
        self.assertFalse(d["established"])
        self.assertEqual(d["establishment_error"], "refused")
        self.assertIsNone(d["ping"])


class TestReport(unittest.TestCase):
    def _report(self):
        return Report(
            transport_results=(
                TransportResult(kind=TransportKind.DATAGRAM, establishment_error="refused"),
                TransportResult(kind=TransportKind.STREAM, ping=_ping()),
            ),
            selected_transport=TransportKind.STREAM,
            mode=RunMode.SINGLE,
        )

    def test_lookup(self):
        report = self._report()
        self.assertIs(report.selected_result, report.transport_results[1])
        self.assertIsNone(report.result_for(TransportKind.MULTIPLEXED))

    def test_to_dict(self):
        d = self._report().to_dict()
        self.assertEqual(d["mode"], "single")
        self.assertEqual(d["selected_transport"], "stream")
        self.assertFalse(d["aborted"])
        self.assertEqual([t["transport"] for t in d["transports"]], ["datagram", "stream"])
        self.assertIn("timestamp", d)


class TestEndpoint(unittest.TestCase):
    SAMPLE = {
        "host": "reflector.lab:9999",
        "udp_port": 7001,
        "ws_port": 7002,
        "http_port": 7080,
        "quic_port": 7003,
    }

    def test_from_dict(self):
        ep = Endpoint.from_dict(self.SAMPLE)
        self.assertEqual(ep.host, "reflector.lab")
        self.assertEqual(ep.udp_port, 7001)
        self.assertEqual(ep.quic_port, 7003)

    def test_from_dict_defaults(self):
        ep = Endpoint.from_dict({})
        self.assertEqual(ep, Endpoint())
        self.assertTrue(ep.insecure)

    def test_urls(self):
        ep = Endpoint.from_dict(self.SAMPLE)
        self.assertEqual(ep.ws_url, "ws://reflector.lab:7002/")
        self.assertEqual(ep.relay_url, "http://reflector.lab:7080/udp-relay")
        self.assertEqual(ep.udp_address, ("reflector.lab", 7001))

    def test_secure_urls(self):
        ep = Endpoint(host="r.lab", secure=True)
        self.assertTrue(ep.ws_url.startswith("wss://"))
        self.assertTrue(ep.relay_url.startswith("https://"))

    def test_to_dict_roundtrip(self):
        ep = Endpoint.from_dict(self.SAMPLE)
        self.assertEqual(Endpoint.from_dict(ep.to_dict()), ep)


if __name__ == "__main__":
    unittest.main()
