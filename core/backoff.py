"""
Retry delay policy shared by the block cache and the connection manager.

delay(attempt) = min(base * 2^(attempt - 1), max), in milliseconds.
A policy with base == max is a fixed delay (the default for reconnects).
"""

from __future__ import annotations

from dataclasses import dataclass

from shared.constants import DEFAULT_BACKOFF_BASE_MS, DEFAULT_BACKOFF_MAX_MS


def calculate_backoff_delay(
    attempt: int,
    base_delay_ms: int = DEFAULT_BACKOFF_BASE_MS,
    max_delay_ms: int = DEFAULT_BACKOFF_MAX_MS,
) -> int:
    """Exponential delay for a 1-based attempt number, capped at max_delay_ms."""
    attempt = max(1, attempt)
    if base_delay_ms >= max_delay_ms:
        return max_delay_ms
    # Once past the cap the exponent no longer matters; avoid huge ints
    exponent = min(attempt - 1, max_delay_ms.bit_length())
    return min(base_delay_ms * (2**exponent), max_delay_ms)


@dataclass(frozen=True)
class BackoffPolicy:
    base_delay_ms: int = DEFAULT_BACKOFF_BASE_MS
    max_delay_ms: int = DEFAULT_BACKOFF_MAX_MS

    @classmethod
    def fixed(cls, delay_ms: int) -> BackoffPolicy:
        return cls(base_delay_ms=delay_ms, max_delay_ms=delay_ms)

    def delay_ms(self, attempt: int) -> int:
        return calculate_backoff_delay(attempt, self.base_delay_ms, self.max_delay_ms)

    def delay_seconds(self, attempt: int) -> float:
        return self.delay_ms(attempt) / 1000
