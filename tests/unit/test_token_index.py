"""
Unit tests for core/token_index.py.
"""

import random

from core.token_index import CreatedTokenIndex


class TestCreatedTokenIndex:
    def test_append_returns_record(self):
        index = CreatedTokenIndex()
        record = index.append("0xabc", created_at=123)
        assert record.token_mint == "0xabc"
        assert record.created_at == 123
        assert index.count() == 1

    def test_append_defaults_created_at_to_wall_clock_ms(self):
        index = CreatedTokenIndex()
        record = index.append("0xabc")
        assert record.created_at > 1_600_000_000_000

    def test_order_and_duplicates_preserved(self):
        index = CreatedTokenIndex()
        for mint in ("0x1", "0x2", "0x1"):
            index.append(mint)
        assert [r.token_mint for r in index.latest(3)] == ["0x1", "0x2", "0x1"]
        assert len(index) == 3

    def test_latest(self):
        index = CreatedTokenIndex()
        for i in range(5):
            index.append(f"0x{i}")
        assert [r.token_mint for r in index.latest(2)] == ["0x3", "0x4"]
        assert index.latest(0) == []

    def test_random_token_empty(self):
        assert CreatedTokenIndex().random_token() is None

    def test_random_token_from_index(self):
        index = CreatedTokenIndex()
        for i in range(3):
            index.append(f"0x{i}")
        picked = index.random_token(random.Random(42))
        assert picked.token_mint in {"0x0", "0x1", "0x2"}

    def test_clear(self):
        index = CreatedTokenIndex()
        index.append("0x1")
        index.clear()
        assert index.count() == 0
