from __future__ import annotations

from dataclasses import dataclass

from .constants import (
    DEFAULT_DALLY_FACTOR,
    DEFAULT_FINAL_MAX_RETRIES,
    DEFAULT_MAX_DUPLICATES,
    DEFAULT_MAX_RETRIES,
    DEFAULT_POLL_MS,
    DEFAULT_SERVER_PORT,
    DEFAULT_TIMEOUT_MS,
)
from .net import Impairment
from .retry import RetryPolicy


@dataclass(frozen=True, slots=True)
class ServerConfig:
    host: str = "0.0.0.0"
    port: int = DEFAULT_SERVER_PORT
    root: str = "."
    timeout_ms: int = DEFAULT_TIMEOUT_MS
    max_retries: int = DEFAULT_MAX_RETRIES
    final_max_retries: int = DEFAULT_FINAL_MAX_RETRIES
    dally_factor: int = DEFAULT_DALLY_FACTOR
    max_duplicates: int = DEFAULT_MAX_DUPLICATES
    poll_ms: int = DEFAULT_POLL_MS
    loss_rate: float = 0.0
    delay_ms: int = 0

    def __post_init__(self) -> None:
        if self.timeout_ms <= 0:
            raise ValueError(f"timeout_ms must be positive, got {self.timeout_ms}")
        if not 0.0 <= self.loss_rate <= 1.0:
            raise ValueError(f"loss_rate must be within [0, 1], got {self.loss_rate}")
        if min(self.max_retries, self.final_max_retries, self.max_duplicates, self.dally_factor) < 0:
            raise ValueError("retry limits must not be negative")

    @property
    def impairment(self) -> Impairment:
        return Impairment(self.loss_rate, self.delay_ms)

    def block_policy(self) -> RetryPolicy:
        return RetryPolicy(self.timeout_ms, self.max_retries, self.max_duplicates)

    def final_block_policy(self) -> RetryPolicy:
        return RetryPolicy(self.timeout_ms, self.final_max_retries, self.max_duplicates)

    def dally_policy(self) -> RetryPolicy:
        # ends at the first quiet window
        return RetryPolicy(self.timeout_ms * self.dally_factor, 0, self.max_duplicates)
