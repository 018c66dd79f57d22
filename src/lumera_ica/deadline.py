"""Command-wide deadline shared by every blocking call."""

from __future__ import annotations

import os
import time
from dataclasses import dataclass

from lumera_ica.errors import ConfigError, OperationTimeoutError

DEFAULT_COMMAND_TIMEOUT = 10 * 60.0
TIMEOUT_ENV_VAR = "LUMERA_ICA_TIMEOUT"


@dataclass(frozen=True)
class Deadline:
    expires_at: float

    @classmethod
    def after(cls, seconds: float) -> "Deadline":
        return cls(expires_at=time.monotonic() + max(0.0, float(seconds)))

    def remaining(self) -> float:
        return max(0.0, self.expires_at - time.monotonic())

    @property
    def expired(self) -> bool:
        return self.remaining() <= 0.0

    def check(self, operation: str) -> float:
        """Return the remaining seconds or raise if the deadline has passed."""
        remaining = self.remaining()
        if remaining <= 0.0:
            raise OperationTimeoutError(f"deadline exceeded: {operation}")
        return remaining

    def sleep(self, interval: float) -> None:
        time.sleep(min(max(0.1, interval), self.remaining()))


def resolve_command_timeout(value: float | None = None) -> float:
    if value is not None:
        if value <= 0:
            raise ConfigError("--timeout must be a positive number of seconds")
        return float(value)
    raw = (os.getenv(TIMEOUT_ENV_VAR) or "").strip()
    if not raw:
        return DEFAULT_COMMAND_TIMEOUT
    try:
        parsed = float(raw)
    except ValueError as exc:
        raise ConfigError(f"{TIMEOUT_ENV_VAR} must be a number of seconds") from exc
    if parsed <= 0:
        raise ConfigError(f"{TIMEOUT_ENV_VAR} must be a positive number of seconds")
    return parsed
