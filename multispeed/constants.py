"""
Shared constants used across all multispeed modules.

Centralises defaults, bounds, and tunables so they live in exactly one
place.
"""

# ---------------------------------------------------------------------------
# Endpoint defaults
# ---------------------------------------------------------------------------

DEFAULT_HOST = "127.0.0.1"
DEFAULT_HTTP_PORT = 8080         # relay front end
DEFAULT_UDP_PORT = 9001
DEFAULT_WS_PORT = 9002
DEFAULT_QUIC_PORT = 9003

QUIC_ALPN = "multispeed"

# ---------------------------------------------------------------------------
# Timing (milliseconds unless noted)
# ---------------------------------------------------------------------------

DEFAULT_PING_COUNT = 10
DEFAULT_PING_INTERVAL_MS = 100
DEFAULT_DURATION_MS = 10_000     # download / upload window
DEFAULT_PHASE_TIMEOUT_MS = 5_000
DEFAULT_CONNECT_TIMEOUT_MS = 5_000
DEFAULT_PACKET_INTERVAL_MS = 10
DEFAULT_COMPARISON_PAUSE_MS = 1_000

MIN_PING_COUNT = 1
MAX_PING_COUNT = 100
MIN_DURATION_MS = 500
MAX_DURATION_MS = 300_000
MIN_TIMEOUT_MS = 50
MAX_TIMEOUT_MS = 120_000
MAX_INTERVAL_MS = 10_000

SAMPLE_INTERVAL = 0.25           # seconds between progress callbacks
HELLO_INTERVAL = 0.25            # seconds between UDP reachability probes
REFLECTOR_IDLE_TIMEOUT = 30.0    # seconds before a quiet UDP reflector session is dropped

# ---------------------------------------------------------------------------
# Payload sizes (bytes)
# ---------------------------------------------------------------------------

DEFAULT_PAYLOAD_SIZE = 16 * 1024
MIN_PAYLOAD_SIZE = 64
MAX_PAYLOAD_SIZE = 65_507        # largest IPv4 UDP payload

MAX_UDP_DATAGRAM = 65_507
MAX_QUIC_DATAGRAM = 1_100        # must fit in a single QUIC packet
MAX_WS_MESSAGE = 1024 * 1024

# ---------------------------------------------------------------------------
# Speed filtering / smoothing
# ---------------------------------------------------------------------------

MAX_REASONABLE_SPEED = 20_000.0  # 20 Gbps -- anything above is a spike
EMA_ALPHA = 0.25                 # exponential moving average weight
