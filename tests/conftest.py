from __future__ import annotations

import sys
from pathlib import Path

import pytest

# Ensure local "src/" takes precedence over any globally-installed "epochflow" package.
ROOT = Path(__file__).resolve().parents[1]
SRC = ROOT / "src"

src_str = str(SRC)
if src_str not in sys.path:
    sys.path.insert(0, src_str)

from epochflow.runtime.engine import EpochFlowEngine  # noqa: E402
from epochflow.runtime.epoch import ManualClock  # noqa: E402

# Short epochs keep the arithmetic in tests readable.
EPOCH = 1_000
T0 = 10_000


@pytest.fixture
def clock() -> ManualClock:
    return ManualClock(T0)


@pytest.fixture
def engine(tmp_path: Path, clock: ManualClock) -> EpochFlowEngine:
    return EpochFlowEngine(
        db_path=str(tmp_path / "epochflow.db"),
        engine_id="test-engine",
        epoch_length=EPOCH,
        clock=clock,
    )


def run_op(eng: EpochFlowEngine, op: str, caller: str = "ADMIN", **payload):
    """Submit an unsigned op and return its result dict."""
    return eng.submit({"op": op, "caller": caller, "payload": payload})["result"]
