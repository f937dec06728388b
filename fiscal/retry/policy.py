"""
Fiscal Retry - Backoff Policy
=============================
delay_for(n) = min(base_delay * 2**n, max_delay)

A retry chain is exhausted once `attempt_number >= max_attempts`; the
document then stays SIGNED for an operator to resubmit.
"""

from __future__ import annotations

from dataclasses import dataclass


@dataclass(frozen=True)
class RetryPolicy:
    base_delay: float = 2.0
    max_delay: float = 300.0
    max_attempts: int = 5

    def __post_init__(self) -> None:
        if self.base_delay <= 0:
            raise ValueError("base_delay must be > 0.")
        if self.max_delay < self.base_delay:
            raise ValueError("max_delay must be >= base_delay.")
        if not isinstance(self.max_attempts, int) or self.max_attempts < 1:
            raise ValueError("max_attempts must be int >= 1.")

    def delay_for(self, attempt_number: int) -> float:
        if attempt_number < 0:
            raise ValueError("attempt_number must be >= 0.")
        # Cap the exponent so huge attempt numbers do not overflow the float.
        exponent = min(attempt_number, 64)
        return min(self.base_delay * (2 ** exponent), self.max_delay)

    def is_exhausted(self, attempt_number: int) -> bool:
        return attempt_number >= self.max_attempts
