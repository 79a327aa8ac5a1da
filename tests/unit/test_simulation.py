"""
Unit tests for core/simulation.py.
"""

import asyncio
import random
from unittest.mock import AsyncMock, MagicMock, patch

import pytest

from core.simulation import MOCK_WALLETS, MockEventGenerator, run_simulation
from core.token_index import CreatedTokenIndex
from tests.factories import STANDARD_TOPICS


@pytest.fixture
def generator():
    return MockEventGenerator(CreatedTokenIndex(), rng=random.Random(7))


class TestMockEventGenerator:
    def test_token_create_registers_token(self, generator):
        record = generator.token_create()

        assert record.chain_id == 0
        assert record.token_mint == MockEventGenerator.token_address(0)
        assert record.creator_wallet in MOCK_WALLETS
        assert record.signature.startswith("0x") and len(record.signature) == 66
        assert generator.tokens_created == 1

    def test_token_addresses_unique(self, generator):
        mints = {generator.token_create().token_mint for _ in range(20)}
        assert len(mints) == 20
        assert all(len(m) == 42 for m in mints)

    def test_no_trade_or_migration_before_any_token(self, generator):
        assert generator.trade() is None
        assert generator.migration() is None

    def test_trade_uses_known_token(self, generator):
        created = generator.token_create()

        trade = generator.trade()

        assert trade.token_mint == created.token_mint
        assert trade.direction in ("buy", "sell")
        assert trade.token_decimals == 18

    def test_slots_increase(self, generator):
        first = generator.token_create()
        second = generator.trade()
        assert second.slot == first.slot + 1

    def test_migration_record(self, generator):
        created = generator.token_create()

        migration = generator.migration()

        assert migration.token_mint == created.token_mint
        assert migration.migrator_wallet in MOCK_WALLETS

    def test_next_for_unknown_category(self, generator):
        with pytest.raises(ValueError, match="unknown category"):
            generator.next_for("burned")


class TestRunSimulation:
    @pytest.mark.asyncio
    async def test_publishes_until_stopped(self, generator):
        bus = MagicMock()
        bus.publish = AsyncMock()
        stop_event = asyncio.Event()

        with patch("core.simulation.setup_module_logger"):
            task = asyncio.create_task(
                run_simulation(
                    generator,
                    bus,
                    STANDARD_TOPICS,
                    stop_event,
                    intervals={"created": 0.01, "trade": 0.01, "migrated": 0.05},
                )
            )
            await asyncio.sleep(0.2)
            stop_event.set()
            counts = await asyncio.wait_for(task, timeout=1)

        assert counts["token.raw.created"] > 0
        assert sum(counts.values()) == bus.publish.await_count
        topic, key, payload = bus.publish.await_args_list[0].args
        assert key == payload["signature"]

    @pytest.mark.asyncio
    async def test_publish_failure_keeps_running(self, generator):
        bus = MagicMock()
        bus.publish = AsyncMock(side_effect=RuntimeError("broker down"))
        stop_event = asyncio.Event()

        with patch("core.simulation.setup_module_logger"):
            task = asyncio.create_task(
                run_simulation(generator, bus, STANDARD_TOPICS, stop_event, intervals={"created": 0.01})
            )
            await asyncio.sleep(0.1)
            stop_event.set()
            counts = await asyncio.wait_for(task, timeout=1)

        assert counts["token.raw.created"] == 0
        assert bus.publish.await_count > 1
