"""Tests for multispeed.selector -- availability, resolution and fallback."""

import unittest

from fakes import probes

from multispeed.config import SpeedTestConfig
from multispeed.models import TransportKind
from multispeed.selector import ProtocolSelector

D = TransportKind.DATAGRAM
M = TransportKind.MULTIPLEXED
S = TransportKind.STREAM
AUTO = TransportKind.AUTO


def _selector(order=(AUTO,), available=(D, M, S), compare=False):
    config = SpeedTestConfig(preferred_order=order, comparison_mode=compare)
    return ProtocolSelector(config, probes=probes(*available))


class TestAvailability(unittest.TestCase):
    def test_priority_order(self):
        self.assertEqual(_selector(available=(S, D, M)).available(), (D, M, S))

    def test_unavailable_dropped(self):
        self.assertEqual(_selector(available=(S, D)).available(), (D, S))

    def test_probe_exception_means_unavailable(self):
        def _broken():
            raise OSError("no sockets here")

        config = SpeedTestConfig()
        selector = ProtocolSelector(config, probes={D: _broken, S: lambda: True})
        with self.assertLogs("multispeed.selector", level="WARNING"):
            self.assertEqual(selector.available(), (S,))

    def test_probes_cached(self):
        calls = []

        def _probe():
            calls.append(1)
            return True

        selector = ProtocolSelector(SpeedTestConfig(), probes={S: _probe})
        selector.available()
        selector.available()
        selector.resolve()
        self.assertEqual(len(calls), 1)


class TestResolveSingle(unittest.TestCase):
    def test_auto_picks_highest_priority(self):
        self.assertEqual(_selector().resolve(), [D])

    def test_auto_skips_unavailable(self):
        self.assertEqual(_selector(available=(M, S)).resolve(), [M])

    def test_explicit_preference(self):
        self.assertEqual(_selector(order=(S,)).resolve(), [S])

    def test_first_available_preference(self):
        self.assertEqual(_selector(order=(M, S), available=(D, S)).resolve(), [S])

    def test_nothing_available(self):
        self.assertEqual(_selector(available=()).resolve(), [])


class TestResolveComparison(unittest.TestCase):
    def test_all_available_in_priority_order(self):
        self.assertEqual(_selector(order=(S, M), compare=True).resolve(), [D, M, S])

    def test_deduplicated(self):
        selector = _selector(order=(S, S, AUTO), available=(S, D), compare=True)
        self.assertEqual(selector.resolve(), [D, S])


class TestFallback(unittest.TestCase):
    def test_auto_chain(self):
        selector = _selector(available=(S, D))
        self.assertEqual(selector.fallback_chain(), (D, S))
        self.assertEqual(selector.fallback(D), S)
        self.assertIsNone(selector.fallback(S))

    def test_deterministic(self):
        first = _selector(available=(S, D))
        second = _selector(available=(S, D))
        self.assertEqual(first.fallback_chain(), second.fallback_chain())
        self.assertEqual(first.fallback(D), second.fallback(D))

    def test_preferred_then_priority(self):
        selector = _selector(order=(M,))
        self.assertEqual(selector.fallback_chain(), (M, D, S))

    def test_chain_ends_at_stream(self):
        selector = _selector(order=(S, D))
        self.assertEqual(selector.fallback_chain(), (S,))
        self.assertIsNone(selector.fallback(S))

    def test_unknown_kind(self):
        self.assertIsNone(_selector(available=(S,)).fallback(D))


if __name__ == "__main__":
    unittest.main()
