"""
Shared pytest configuration and fixtures for BSC Token Monitor tests.

Provides standard configs and mock collaborators for the dispatch pipeline.
Log builders live in tests/factories.py.
"""

from unittest.mock import AsyncMock, MagicMock

import pytest

from tests.factories import (
    BLOCK_TIMESTAMP_MS,
    CREATOR,
    MANAGER_V1,
    MANAGER_V2,
    PAIR,
    STANDARD_MONITOR_FLAGS,
    STANDARD_TOPICS,
    WEI,
)

# ---------------------------------------------------------------------------
# Standard configs
# ---------------------------------------------------------------------------


@pytest.fixture
def mock_config_loader():
    """
    Provide a mock ConfigLoader that returns standard configs.

    Usage in tests:
        def test_something(mock_config_loader):
            mock_config_loader.get_monitor_config.return_value = {...}
    """
    loader = MagicMock()
    loader.get_chain_config.return_value = {
        "chain_id": 56,
        "rpc": {"ws_url": "wss://bsc-rpc.publicnode.com", "http_url": "https://bsc-dataseed1.binance.org/"},
        "contracts": {"token_manager_v1": MANAGER_V1, "token_manager_v2": MANAGER_V2},
        "pancake_pairs": [PAIR],
    }
    loader.get_monitor_config.return_value = {"events": dict(STANDARD_MONITOR_FLAGS), "publish_pair_swaps": False}
    loader.get_kafka_config.return_value = {
        "bootstrap_servers": "localhost:9092",
        "client_id": "test",
        "topics": dict(STANDARD_TOPICS),
    }
    loader.get_app_config.return_value = {"logging": {"log_dir": "logs"}}
    loader.get_abi.return_value = []
    return loader


# ---------------------------------------------------------------------------
# Pipeline collaborators
# ---------------------------------------------------------------------------


@pytest.fixture
def mock_block_cache():
    cache = MagicMock()
    cache.get_or_fetch = AsyncMock(return_value=BLOCK_TIMESTAMP_MS)
    return cache


@pytest.fixture
def mock_chain_reader():
    reader = MagicMock()
    reader.total_supply = AsyncMock(return_value=1_000_000_000 * WEI)
    reader.founder = AsyncMock(return_value=CREATOR)
    reader.pair = AsyncMock(return_value=PAIR)
    reader.pair_reserves = AsyncMock()
    return reader


@pytest.fixture
def mock_bus():
    bus = MagicMock()
    bus.publish = AsyncMock()
    return bus
