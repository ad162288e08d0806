"""
Shared constants used across all measurement modules.

Centralises magic numbers, default endpoints, and tunables so they live in
exactly one place.
"""

# ---------------------------------------------------------------------------
# HTTP
# ---------------------------------------------------------------------------

USER_AGENT = "speedtest-exporter/0.1"

COMMON_HEADERS = {
    "User-Agent": USER_AGENT,
    "Accept": "*/*",
    # Compressed bodies would distort the byte counts
    "Accept-Encoding": "identity",
}

DEFAULT_DOWNLOAD_URL = "https://speedtest-64.speedtest.vodafone-ip.de/data.zero.bin.512M"
DEFAULT_UPLOAD_URL = "https://speedtest-64.speedtest.vodafone-ip.de/empty.txt"

# ---------------------------------------------------------------------------
# Server
# ---------------------------------------------------------------------------

DEFAULT_ADDRESS = "0.0.0.0"
DEFAULT_PORT = 9090

# ---------------------------------------------------------------------------
# Speedtest timing
# ---------------------------------------------------------------------------

DEFAULT_DURATION = 10.0          # seconds for download / upload
MIN_DURATION = 0.1
MAX_DURATION = 300.0
DEFAULT_CHUNK_TIMEOUT = 5.0      # one stalled chunk fails the transfer

# ---------------------------------------------------------------------------
# Chunking
# ---------------------------------------------------------------------------

DEFAULT_CHUNK_SIZE = 0                   # 0 selects the adaptive policy
MIN_CHUNK_SIZE = 16 * 1024               # 16 KB
MAX_CHUNK_SIZE = 16 * 1024 * 1024        # 16 MB
INITIAL_CHUNK_SIZE = 256 * 1024          # 256 KB – good TCP window utilisation
TARGET_CHUNK_DURATION = 0.1              # 100 ms per chunk
UPLOAD_BUFFER_SIZE = 1024 * 1024         # 1 MB pre-generated random buffer
READ_SIZE = 64 * 1024                    # single socket read while filling a chunk

# ---------------------------------------------------------------------------
# Ping
# ---------------------------------------------------------------------------

DEFAULT_PING_TARGETS = ["8.8.8.8", "9.9.9.9", "1.1.1.1", "google.com"]
DEFAULT_PING_PORT = 443
DEFAULT_PING_TIMEOUT = 2.0
DEFAULT_RESOLVE_TIMEOUT = 2.0
DEFAULT_PING_SAMPLES = 3
DEFAULT_PING_DELAY = 0.2
MIN_PING_SAMPLES = 1
MAX_PING_SAMPLES = 100

# ---------------------------------------------------------------------------
# Statistics
# ---------------------------------------------------------------------------

DEFAULT_QUANTILES = [0.0, 0.25, 0.5, 0.75, 0.9, 0.99, 1.0]

DIRECTIONS = ("download", "upload")
