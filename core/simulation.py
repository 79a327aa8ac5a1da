"""
Simulated canonical records for exercising bus consumers without a chain.

Creates tokens, trades against tokens created earlier, and migrates them,
at the cadence of the live system (create every 5s, trade every 2s,
migration every 30s).

Usage:
    generator = MockEventGenerator(CreatedTokenIndex())
    record = generator.token_create()
    await run_simulation(generator, bus, topics, stop_event)
"""

from __future__ import annotations

import asyncio
import random
import time
from typing import Any, Mapping

from bot_logging.logger_manager import setup_module_logger
from core.token_index import CreatedTokenIndex
from shared.constants import CANONICAL_CHAIN_ID, DEFAULT_TOKEN_DECIMALS
from shared.serialization_utils import iso_now
from shared.types import TokenCreate, TokenMigration, TokenTrade, TradeDirection

MOCK_TOKENS = (
    ("DogeCoin", "DOGE"),
    ("ShibaInu", "SHIB"),
    ("Pepe", "PEPE"),
    ("Floki", "FLOKI"),
    ("BabyDoge", "BABYDOGE"),
    ("Kishu", "KISHU"),
    ("Samoyed", "SAMO"),
    ("Pitbull", "PIT"),
    ("Astro", "ASTRO"),
    ("Poodl", "POODL"),
)
MOCK_WALLETS = (
    "0x742d35Cc6634C0532925a3b844Bc454e4438f44e",
    "0x8ba1f109551bD432803012645Ac136ddd64DBA72",
    "0xAb5801a7D398351b8bE11C439e05C5B3259aeC9B",
    "0x1Db3439a222C519ab44bb1144fC28167b4Fa6EE6",
    "0x66f820a414680B5bcda5eECA5dea238543F42054",
)

DEFAULT_INTERVALS = {"created": 5.0, "trade": 2.0, "migrated": 30.0}


class MockEventGenerator:
    def __init__(
        self,
        token_index: CreatedTokenIndex,
        rng: random.Random | None = None,
        start_slot: int = 1_000_000,
    ) -> None:
        self._token_index = token_index
        self._rng = rng or random.Random()
        self._token_counter = 0
        self._slot = start_slot

    def _next_slot(self) -> int:
        slot = self._slot
        self._slot += 1
        return slot

    def _tx_hash(self) -> str:
        return "0x" + "".join(self._rng.choice("0123456789abcdef") for _ in range(64))

    def _wallet(self) -> str:
        return self._rng.choice(MOCK_WALLETS)

    @property
    def tokens_created(self) -> int:
        return self._token_index.count()

    @staticmethod
    def token_address(index: int) -> str:
        return "0x" + format(index + 1000, "x").zfill(40)

    # ------------------------------------------------------------------
    # Records
    # ------------------------------------------------------------------

    def token_create(self) -> TokenCreate:
        token_mint = self.token_address(self._token_counter)
        self._token_counter += 1
        name, symbol = self._rng.choice(MOCK_TOKENS)
        record = TokenCreate(
            chain_id=CANONICAL_CHAIN_ID,
            token_mint=token_mint,
            token_name=name,
            token_symbol=symbol,
            creator_wallet=self._wallet(),
            metadata_uri="",
            initial_supply=str(self._rng.randint(100_000, 1_100_000)),
            block_time=int(time.time()),
            slot=self._next_slot(),
            signature=self._tx_hash(),
            kafka_timestamp=iso_now(),
        )
        self._token_index.append(token_mint)
        return record

    def trade(self) -> TokenTrade | None:
        """A buy or sell of a random known token; None until a token exists."""
        known = self._token_index.random_token(self._rng)
        if known is None:
            return None
        direction = self._rng.choice((TradeDirection.BUY, TradeDirection.SELL))
        return TokenTrade(
            chain_id=CANONICAL_CHAIN_ID,
            direction=direction.value,
            buyer_wallet=self._wallet(),
            token_mint=known.token_mint,
            token_amount=f"{self._rng.uniform(10, 1010):.2f}",
            token_decimals=DEFAULT_TOKEN_DECIMALS,
            sol_amount=f"{self._rng.uniform(0.01, 0.11):.8f}",
            market_cap=round(self._rng.uniform(1000, 11000), 2),
            block_time=int(time.time()),
            slot=self._next_slot(),
            signature=self._tx_hash(),
            kafka_timestamp=iso_now(),
        )

    def migration(self) -> TokenMigration | None:
        known = self._token_index.random_token(self._rng)
        if known is None:
            return None
        return TokenMigration(
            chain_id=CANONICAL_CHAIN_ID,
            token_mint=known.token_mint,
            migrator_wallet=self._wallet(),
            liquidity_pool=self.token_address(self._rng.randrange(1000)),
            migration_fee=f"{self._rng.uniform(0.01, 0.11):.8f}",
            block_time=int(time.time()),
            slot=self._next_slot(),
            signature=self._tx_hash(),
            kafka_timestamp=iso_now(),
        )

    def next_for(self, category: str) -> TokenCreate | TokenTrade | TokenMigration | None:
        if category == "created":
            return self.token_create()
        if category == "trade":
            return self.trade()
        if category == "migrated":
            return self.migration()
        raise ValueError(f"unknown category: {category}")


async def run_simulation(
    generator: MockEventGenerator,
    bus: Any,
    topics: Mapping[str, str],
    stop_event: asyncio.Event,
    intervals: Mapping[str, float] | None = None,
) -> dict[str, int]:
    """Publish simulated records until stop_event is set. Returns per-topic counts."""
    logger = setup_module_logger("simulation", "simulation.log", module_folder="Main_Logs")
    intervals = {**DEFAULT_INTERVALS, **(intervals or {})}
    counts = {topics[category]: 0 for category in intervals}

    async def _emit_loop(category: str, interval: float) -> None:
        topic = topics[category]
        while not stop_event.is_set():
            try:
                await asyncio.wait_for(stop_event.wait(), timeout=interval)
                return
            except asyncio.TimeoutError:
                pass
            record = generator.next_for(category)
            if record is None:
                continue
            try:
                await bus.publish(topic, record.signature, record.to_dict())
                counts[topic] += 1
                logger.info("Sent %s event (%s)", topic, record.token_mint)
            except Exception as e:
                logger.error("Failed to send %s event: %s", topic, e)

    await asyncio.gather(*(_emit_loop(category, interval) for category, interval in intervals.items()))
    logger.info("Simulation stopped; tokens created: %d", generator.tokens_created)
    return counts
