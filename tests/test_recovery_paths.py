from __future__ import annotations

import pytest

from conftest import run_op
from epochflow.runtime.errors import (
    EpochNotEnded,
    GracePeriodNotElapsed,
    NotZeroWeightEpoch,
    RecoveryPolicyMismatch,
    TargetHadWeight,
    Unauthorized,
)

E1 = 11_000


def _fund(engine, ledger_id: str, policy: str, *, grace: int = 2, amount: int = 1_000) -> None:
    run_op(engine, "LEDGER_CREATE", ledger_id=ledger_id, target="gauge-A", policy=policy, grace_epochs=grace)
    run_op(engine, "ASSET_ISSUE", asset="FOO", to="briber", amount=amount)
    run_op(engine, "LEDGER_DEPOSIT", caller="briber", ledger_id=ledger_id, asset="FOO", epoch=E1, amount=amount)


# --- zero-weight refund --------------------------------------------------


def test_zero_weight_refund_returns_contribution(engine, clock) -> None:
    _fund(engine, "bribes", "refund")
    clock.set(12_000)

    out = run_op(engine, "LEDGER_REFUND", caller="briber", ledger_id="bribes", asset="FOO", epoch=E1)
    assert out["amount"] == 1_000
    assert engine.balance_of("FOO", "briber") == 1_000

    # Exclusive paths: once refunded nothing is claimable, and nothing is refunded twice.
    assert run_op(engine, "LEDGER_CLAIM", caller="alice", ledger_id="bribes", asset="FOO", epoch=E1)["amount"] == 0
    assert run_op(engine, "LEDGER_REFUND", caller="briber", ledger_id="bribes", asset="FOO", epoch=E1)["amount"] == 0

    view = engine.ledger_epoch_view("bribes", E1)
    assert view["deposits"] == {"FOO": 0}
    assert view["refunded"] == {"FOO": 1_000}


def test_refund_before_epoch_end_is_rejected(engine, clock) -> None:
    _fund(engine, "bribes", "refund")
    clock.set(11_500)
    with pytest.raises(EpochNotEnded):
        run_op(engine, "LEDGER_REFUND", caller="briber", ledger_id="bribes", asset="FOO", epoch=E1)


def test_refund_requires_zero_weight(engine, clock) -> None:
    _fund(engine, "bribes", "refund")
    run_op(engine, "WEIGHT_REPORT", target="gauge-A", identity="alice", weight=5, epoch=E1)
    clock.set(12_000)
    with pytest.raises(TargetHadWeight):
        run_op(engine, "LEDGER_REFUND", caller="briber", ledger_id="bribes", asset="FOO", epoch=E1)


def test_refund_of_non_depositor_is_zero(engine, clock) -> None:
    _fund(engine, "bribes", "refund")
    clock.set(12_000)
    assert run_op(engine, "LEDGER_REFUND", caller="stranger", ledger_id="bribes", asset="FOO", epoch=E1)["amount"] == 0
    assert engine.balance_of("FOO", "ledger:bribes") == 1_000


def test_refund_on_sweep_ledger_is_policy_mismatch(engine, clock) -> None:
    _fund(engine, "rewards", "sweep")
    clock.set(12_000)
    with pytest.raises(RecoveryPolicyMismatch):
        run_op(engine, "LEDGER_REFUND", caller="briber", ledger_id="rewards", asset="FOO", epoch=E1)


# --- administrative sweep ------------------------------------------------


def test_sweep_waits_for_grace_period(engine, clock) -> None:
    _fund(engine, "rewards", "sweep", grace=2)

    # Unlocks at E1 + (2 + 1) epochs.
    for t in (12_000, 13_999):
        clock.set(t)
        with pytest.raises(GracePeriodNotElapsed):
            run_op(engine, "LEDGER_SWEEP", ledger_id="rewards", asset="FOO", epoch=E1)

    clock.set(14_000)
    out = run_op(engine, "LEDGER_SWEEP", ledger_id="rewards", asset="FOO", epoch=E1)
    assert out["amount"] == 1_000
    assert engine.balance_of("FOO", "TREASURY") == 1_000
    assert engine.ledger_epoch_view("rewards", E1)["swept"] == {"FOO": 1_000}

    assert run_op(engine, "LEDGER_SWEEP", ledger_id="rewards", asset="FOO", epoch=E1)["amount"] == 0


def test_sweep_requires_ledger_admin(engine, clock) -> None:
    _fund(engine, "rewards", "sweep", grace=0)
    clock.set(12_000)
    with pytest.raises(Unauthorized):
        run_op(engine, "LEDGER_SWEEP", caller="mallory", ledger_id="rewards", asset="FOO", epoch=E1)


def test_sweep_requires_zero_weight(engine, clock) -> None:
    _fund(engine, "rewards", "sweep", grace=0)
    run_op(engine, "WEIGHT_REPORT", target="gauge-A", identity="alice", weight=5, epoch=E1)
    clock.set(12_000)
    with pytest.raises(NotZeroWeightEpoch):
        run_op(engine, "LEDGER_SWEEP", ledger_id="rewards", asset="FOO", epoch=E1)


def test_sweep_on_refund_ledger_is_policy_mismatch(engine, clock) -> None:
    _fund(engine, "bribes", "refund", grace=0)
    clock.set(12_000)
    with pytest.raises(RecoveryPolicyMismatch):
        run_op(engine, "LEDGER_SWEEP", ledger_id="bribes", asset="FOO", epoch=E1)


def test_delegated_ledger_admin_may_sweep(engine, clock) -> None:
    run_op(engine, "LEDGER_CREATE", ledger_id="rewards", target="gauge-A", policy="sweep", grace_epochs=0, admin="ops")
    run_op(engine, "ASSET_ISSUE", asset="FOO", to="briber", amount=10)
    run_op(engine, "LEDGER_DEPOSIT", caller="briber", ledger_id="rewards", asset="FOO", epoch=E1, amount=10)
    clock.set(12_000)
    assert run_op(engine, "LEDGER_SWEEP", caller="ops", ledger_id="rewards", asset="FOO", epoch=E1)["amount"] == 10
