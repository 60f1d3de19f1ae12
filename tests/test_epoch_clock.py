from __future__ import annotations

import pytest

from epochflow.ledger.constants import EPOCH_LENGTH_SECONDS
from epochflow.runtime.epoch import EpochClock, ManualClock


def test_epoch_start_and_next_start_are_aligned() -> None:
    c = EpochClock(1_000)
    assert c.epoch_start(10_000) == 10_000
    assert c.epoch_start(10_999) == 10_000
    assert c.next_epoch_start(10_999) == 11_000
    assert c.next_epoch_start(11_000) == 12_000
    assert c.epoch_end(10_500) == 11_000


def test_epoch_helpers() -> None:
    c = EpochClock(1_000)
    assert c.epoch_number(10_500) == 10
    assert c.time_until_next_epoch(10_250) == 750
    assert c.is_aligned(12_000)
    assert not c.is_aligned(12_001)
    assert c.shift(10_000, 3) == 13_000


def test_default_epoch_is_one_week() -> None:
    c = EpochClock()
    assert c.epoch_length == EPOCH_LENGTH_SECONDS == 604_800


def test_epoch_length_must_be_positive() -> None:
    with pytest.raises(ValueError):
        EpochClock(0)


def test_manual_clock_set_and_advance() -> None:
    mc = ManualClock(5)
    assert mc.now() == 5
    assert mc.advance(10) == 15
    mc.set(100)
    assert mc.now() == 100
