"""
Shared constants for BSC Token Monitor.

Contract addresses, Kafka topic names, numeric constants, and default values
used across all modules.
"""

# ---------------------------------------------------------------------------
# Numeric Constants
# ---------------------------------------------------------------------------

DEFAULT_TOKEN_DECIMALS = 18
MILLISECONDS_PER_SECOND = 1000

# Reserved for future multi-chain use; every record currently carries 0
CANONICAL_CHAIN_ID = 0
BSC_CHAIN_ID = 56

# Placeholder for values that could not be resolved
NOT_AVAILABLE = "N/A"

# ---------------------------------------------------------------------------
# four.meme TokenManager contracts (BSC)
# ---------------------------------------------------------------------------

TOKEN_MANAGER_V1 = "0xEC4549caDcE5DA21Df6E6422d448034B5233bFbC"
TOKEN_MANAGER_V2 = "0x5c952063c7fc8610FFDB798152D69F0B9550762b"

# ---------------------------------------------------------------------------
# PancakeSwap V2 pairs monitored for Swap events
# ---------------------------------------------------------------------------

DEFAULT_PANCAKE_PAIRS = (
    "0x473d8f4e7f63389cd7cb44837bad01b754de772a",
    "0x9Fbd9892821efE8022881427EA6f03384080F351",
    "0xfaaa87be61eb923c60de3dd19cbca7654b52eb94",
)

# ---------------------------------------------------------------------------
# Kafka topics
# ---------------------------------------------------------------------------

TOPIC_TOKEN_CREATED = "token.raw.created"
TOPIC_TOKEN_TRADE = "token.raw.trade"
TOPIC_TOKEN_MIGRATED = "token.raw.migrated"

DEFAULT_KAFKA_BROKER = "localhost:9092"
DEFAULT_KAFKA_CLIENT_ID = "binance-token-monitor"

# ---------------------------------------------------------------------------
# Connection lifecycle defaults
# ---------------------------------------------------------------------------

DEFAULT_MAX_RECONNECT_ATTEMPTS = 10
DEFAULT_RECONNECT_DELAY_MS = 5000
DEFAULT_HEALTH_CHECK_INTERVAL_SECONDS = 30.0
DEFAULT_CONNECTION_TIMEOUT_SECONDS = 10.0
DEFAULT_REQUEST_TIMEOUT_SECONDS = 15.0
DEFAULT_RESUBSCRIBE_ATTEMPTS = 3

# ---------------------------------------------------------------------------
# Backoff / block cache defaults
# ---------------------------------------------------------------------------

DEFAULT_BACKOFF_BASE_MS = 1000
DEFAULT_BACKOFF_MAX_MS = 30000
DEFAULT_BLOCK_CACHE_CAPACITY = 100
DEFAULT_BLOCK_FETCH_RETRIES = 3
