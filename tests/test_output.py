"""Unit tests for ui.output -- JSON creation, text and CSV formatting."""

import json
import os
import tempfile
import unittest

from multispeed.config import SpeedTestConfig
from multispeed.endpoint import Endpoint
from multispeed.models import (
    PhaseKind,
    PhaseResult,
    PhaseStatus,
    Report,
    RunMode,
    TransportKind,
    TransportResult,
)
from ui.output import (
    _csv_escape,
    create_report_json,
    format_csv_header,
    format_csv_row,
    format_csv_rows,
    format_text_result,
    save_json,
)


def _established(kind, ping=10.0, down=100.0, up=50.0, upload_status=PhaseStatus.COMPLETED,
                 aborted=False):
    return TransportResult(
        kind=kind,
        ping=PhaseResult(kind=PhaseKind.PING, status=PhaseStatus.COMPLETED, average=ping,
                         jitter=1.5, sample_count=10, attempts=10, packet_loss=0.0),
        download=PhaseResult(kind=PhaseKind.DOWNLOAD, status=PhaseStatus.COMPLETED,
                             average=down, throughput_mbps=down, bytes_total=125_000_000),
        upload=PhaseResult(kind=PhaseKind.UPLOAD, status=upload_status,
                           average=up, throughput_mbps=up, bytes_total=62_500_000),
        aborted=aborted,
    )


def _report(*results, mode=RunMode.SINGLE, aborted=False):
    selected = next((r.kind for r in results if r.established), None)
    return Report(transport_results=tuple(results), selected_transport=selected,
                  mode=mode, aborted=aborted)


class TestCreateReportJson(unittest.TestCase):
    def test_basic_structure(self):
        r = create_report_json(_report(_established(TransportKind.STREAM)))
        self.assertIn("timestamp", r)
        self.assertEqual(r["mode"], "single")
        self.assertEqual(r["selected_transport"], "stream")
        stream = r["transports"][0]
        self.assertEqual(stream["ping"]["average"], 10.0)
        self.assertEqual(stream["download"]["throughput_mbps"], 100.0)
        self.assertNotIn("comparison", r)

    def test_serialisable(self):
        r = create_report_json(
            _report(_established(TransportKind.STREAM)),
            config=SpeedTestConfig(),
            endpoint=Endpoint(host="10.0.0.5"),
        )
        text = json.dumps(r)
        self.assertIn('"10.0.0.5"', text)
        self.assertEqual(r["config"]["ping_count"], 10)

    def test_comparison_deltas(self):
        report = _report(
            _established(TransportKind.DATAGRAM, ping=8.0, down=120.0),
            _established(TransportKind.STREAM, ping=10.0, down=100.0),
            mode=RunMode.COMPARISON,
        )
        r = create_report_json(report)
        self.assertEqual(r["comparison"]["baseline"], "stream")
        deltas = r["comparison"]["deltas"]["datagram"]
        self.assertAlmostEqual(deltas["latency_delta"], -2.0)
        self.assertAlmostEqual(deltas["download_delta"], 20.0)

    def test_comparison_without_baseline(self):
        report = _report(_established(TransportKind.DATAGRAM), mode=RunMode.COMPARISON)
        self.assertNotIn("comparison", create_report_json(report))

    def test_unestablished_transport(self):
        report = _report(TransportResult(kind=TransportKind.DATAGRAM, establishment_error="refused"))
        r = create_report_json(report)
        self.assertIsNone(r["selected_transport"])
        self.assertFalse(r["transports"][0]["established"])


class TestSaveJson(unittest.TestCase):
    def test_roundtrip(self):
        data = {"key": "value", "number": 42}
        with tempfile.NamedTemporaryFile(mode="w", suffix=".json", delete=False) as f:
            path = f.name
        try:
            save_json(data, path)
            with open(path) as fh:
                loaded = json.load(fh)
            self.assertEqual(loaded, data)
        finally:
            os.unlink(path)

    def test_atomic_no_partial(self):
        # If the directory doesn't exist, it should raise, not leave a temp file
        with self.assertRaises(IOError):
            save_json({"a": 1}, "/nonexistent/dir/file.json")


class TestFormatTextResult(unittest.TestCase):
    def test_contains_values(self):
        text = format_text_result(_report(_established(TransportKind.STREAM)))
        self.assertIn("10.0 ms", text)
        self.assertIn("100.00 Mbps", text)
        self.assertIn("50.00 Mbps", text)
        self.assertIn("Stream (WebSocket)", text)

    def test_failed_transport(self):
        text = format_text_result(_report(
            TransportResult(kind=TransportKind.DATAGRAM, establishment_error="port unreachable"),
            _established(TransportKind.STREAM),
        ))
        self.assertIn("Not established: port unreachable", text)
        self.assertIn("Selected: Stream (WebSocket)", text)

    def test_non_completed_phase_marked(self):
        report = _report(
            _established(TransportKind.STREAM, upload_status=PhaseStatus.ABORTED, aborted=True),
            aborted=True,
        )
        text = format_text_result(report)
        self.assertIn("[aborted]", text)
        self.assertIn("partial", text)

    def test_nothing_attempted(self):
        self.assertIn("No transport was attempted", format_text_result(_report()))


class TestCsv(unittest.TestCase):
    def test_header_matches_row(self):
        report = _report(_established(TransportKind.STREAM))
        row = format_csv_row(report, report.transport_results[0])
        self.assertEqual(len(format_csv_header().split(",")), len(row.split(",")))

    def test_row_values(self):
        report = _report(_established(TransportKind.STREAM))
        fields = format_csv_row(report, report.transport_results[0]).split(",")
        self.assertEqual(fields[1:], [
            "single", "stream", "yes", "10.0", "1.50", "0.0", "100.00", "50.00", "ok", "",
        ])

    def test_unavailable_row(self):
        report = _report(TransportResult(kind=TransportKind.DATAGRAM, establishment_error="refused"))
        fields = format_csv_row(report, report.transport_results[0]).split(",")
        self.assertEqual(fields[3], "no")
        self.assertEqual(fields[4:9], ["", "", "", "", ""])
        self.assertEqual(fields[9:], ["unavailable", "refused"])

    def test_status_column(self):
        partial = _established(TransportKind.STREAM, upload_status=PhaseStatus.TIMED_OUT)
        aborted = _established(TransportKind.DATAGRAM, upload_status=PhaseStatus.ABORTED, aborted=True)
        report = _report(aborted, partial)
        rows = format_csv_rows(report)
        self.assertEqual([r.split(",")[9] for r in rows], ["aborted", "partial"])

    def test_error_with_comma_escaped(self):
        report = _report(TransportResult(kind=TransportKind.STREAM, establishment_error="refused, twice"))
        row = format_csv_row(report, report.transport_results[0])
        self.assertTrue(row.endswith('"refused, twice"'))


class TestCsvEscape(unittest.TestCase):
    """CSV fields with commas must be quoted to avoid corruption."""

    def test_plain_value(self):
        self.assertEqual(_csv_escape("refused"), "refused")

    def test_value_with_comma(self):
        self.assertEqual(_csv_escape("Berlin, Germany"), '"Berlin, Germany"')

    def test_value_with_quotes(self):
        self.assertEqual(_csv_escape('Say "hello"'), '"Say ""hello"""')

    def test_value_with_newline(self):
        self.assertEqual(_csv_escape("line1\nline2"), '"line1\nline2"')


if __name__ == "__main__":
    unittest.main()
