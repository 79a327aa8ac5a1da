"""
In-memory index of tokens seen in TokenCreate events.

Append-only and ordered by arrival; never pruned by age, only cleared in bulk
(at shutdown). Used by simulation to trade against known tokens.
"""

from __future__ import annotations

import random
import time

from shared.types import CreatedTokenRecord


class CreatedTokenIndex:
    def __init__(self) -> None:
        self._records: list[CreatedTokenRecord] = []

    def append(self, token_mint: str, created_at: int | None = None) -> CreatedTokenRecord:
        record = CreatedTokenRecord(
            token_mint=token_mint,
            created_at=created_at if created_at is not None else int(time.time() * 1000),
        )
        self._records.append(record)
        return record

    def count(self) -> int:
        return len(self._records)

    def __len__(self) -> int:
        return len(self._records)

    def latest(self, n: int = 1) -> list[CreatedTokenRecord]:
        """The n most recently appended records, newest last."""
        if n <= 0:
            return []
        return list(self._records[-n:])

    def random_token(self, rng: random.Random | None = None) -> CreatedTokenRecord | None:
        if not self._records:
            return None
        return (rng or random).choice(self._records)

    def clear(self) -> None:
        self._records.clear()
