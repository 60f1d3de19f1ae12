# src/epochflow/runtime/epoch.py
from __future__ import annotations

"""Epoch clock.

Single shared implementation of "the epoch". Every component derives epoch
boundaries from here so that no two components can drift apart.

  epoch_start(t)      = t - (t mod L)
  next_epoch_start(t) = epoch_start(t) + L
"""

import threading
import time
from dataclasses import dataclass
from typing import Protocol

from epochflow.ledger.constants import EPOCH_LENGTH_SECONDS


class Clock(Protocol):
    def now(self) -> int: ...


class SystemClock:
    """Wall-clock time in whole unix seconds."""

    def now(self) -> int:
        return int(time.time())


class ManualClock:
    """Settable clock for deterministic epoch-boundary tests and simulations."""

    def __init__(self, start: int = 0) -> None:
        self._now = int(start)
        self._lock = threading.Lock()

    def now(self) -> int:
        with self._lock:
            return self._now

    def set(self, t: int) -> None:
        with self._lock:
            self._now = int(t)

    def advance(self, seconds: int) -> int:
        with self._lock:
            self._now += int(seconds)
            return self._now


@dataclass(frozen=True, slots=True)
class EpochClock:
    epoch_length: int = EPOCH_LENGTH_SECONDS

    def __post_init__(self) -> None:
        if int(self.epoch_length) <= 0:
            raise ValueError(f"epoch_length must be > 0; got: {self.epoch_length}")

    def epoch_start(self, t: int) -> int:
        t = int(t)
        return t - (t % int(self.epoch_length))

    def next_epoch_start(self, t: int) -> int:
        return self.epoch_start(t) + int(self.epoch_length)

    def epoch_end(self, t: int) -> int:
        return self.next_epoch_start(t)

    def epoch_number(self, t: int) -> int:
        return int(t) // int(self.epoch_length)

    def time_until_next_epoch(self, t: int) -> int:
        return self.next_epoch_start(t) - int(t)

    def is_aligned(self, epoch: int) -> bool:
        return int(epoch) % int(self.epoch_length) == 0

    def shift(self, epoch: int, epochs: int) -> int:
        """Return the epoch `epochs` whole epochs after `epoch`."""
        return int(epoch) + int(epochs) * int(self.epoch_length)


__all__ = ["Clock", "SystemClock", "ManualClock", "EpochClock"]
