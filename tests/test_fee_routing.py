from __future__ import annotations

import pytest

from conftest import run_op
from epochflow.runtime.errors import InvalidPayload, NotFound, RecoveryPolicyMismatch, ZeroAmount

E1 = 11_000


def _route(engine, burn_bps: int = 2_500) -> None:
    run_op(engine, "STREAM_CREATE", stream_id="s", asset="FEE")
    run_op(engine, "LEDGER_CREATE", ledger_id="stakers", target="staking", policy="sweep")
    run_op(engine, "FEE_ROUTE_CREATE", route_id="r", asset="FEE", stream_id="s", ledger_id="stakers", burn_bps=burn_bps)


def test_fee_split_lands_in_both_legs(engine) -> None:
    _route(engine)
    run_op(engine, "ASSET_ISSUE", asset="FEE", to="venue", amount=1_000)

    out = run_op(engine, "FEES_ROUTE", caller="venue", route_id="r", amount=1_000)
    assert (out["burned_queue"], out["rewards_deposit"]) == (250, 750)
    assert out["pending_epoch"] == E1
    assert out["reward_epoch"] == E1

    stream = engine.stream_view("s")
    assert stream["pending_amount"] == 250
    assert engine.ledger_epoch_view("stakers", E1)["deposits"] == {"FEE": 750}
    assert engine.balance_of("FEE", "route:r") == 0
    assert engine.balance_of("FEE", "venue") == 0


def test_full_burn_route_skips_ledger(engine) -> None:
    _route(engine, burn_bps=10_000)
    run_op(engine, "ASSET_ISSUE", asset="FEE", to="venue", amount=40)
    out = run_op(engine, "FEES_ROUTE", caller="venue", route_id="r", amount=40)
    assert out["rewards_deposit"] == 0
    assert out["reward_epoch"] is None
    assert engine.stream_view("s")["pending_amount"] == 40


def test_route_asset_must_match_stream(engine) -> None:
    run_op(engine, "STREAM_CREATE", stream_id="s", asset="FEE")
    run_op(engine, "LEDGER_CREATE", ledger_id="stakers", target="staking", policy="sweep")
    with pytest.raises(InvalidPayload):
        run_op(engine, "FEE_ROUTE_CREATE", route_id="r", asset="OTHER", stream_id="s", ledger_id="stakers", burn_bps=1)


@pytest.mark.parametrize("bps", [-1, 10_001])
def test_burn_bps_range(engine, bps: int) -> None:
    run_op(engine, "STREAM_CREATE", stream_id="s", asset="FEE")
    run_op(engine, "LEDGER_CREATE", ledger_id="stakers", target="staking", policy="sweep")
    with pytest.raises(InvalidPayload):
        run_op(engine, "FEE_ROUTE_CREATE", route_id="r", asset="FEE", stream_id="s", ledger_id="stakers", burn_bps=bps)


def test_unknown_route(engine) -> None:
    with pytest.raises(NotFound):
        run_op(engine, "FEES_ROUTE", caller="venue", route_id="nope", amount=1)


def test_route_needs_sweep_ledger(engine) -> None:
    run_op(engine, "STREAM_CREATE", stream_id="s", asset="FEE")
    run_op(engine, "LEDGER_CREATE", ledger_id="bribes", target="staking", policy="refund")
    with pytest.raises(RecoveryPolicyMismatch):
        run_op(engine, "FEE_ROUTE_CREATE", route_id="r", asset="FEE", stream_id="s", ledger_id="bribes", burn_bps=0)
    assert engine.read_state().get("fee_routes", {}) == {}


def test_zero_weight_route_rewards_are_swept(engine, clock) -> None:
    run_op(engine, "STREAM_CREATE", stream_id="s", asset="FEE")
    run_op(engine, "LEDGER_CREATE", ledger_id="stakers", target="staking", policy="sweep", grace_epochs=0)
    run_op(engine, "FEE_ROUTE_CREATE", route_id="r", asset="FEE", stream_id="s", ledger_id="stakers", burn_bps=0)
    run_op(engine, "ASSET_ISSUE", asset="FEE", to="venue", amount=600)
    run_op(engine, "FEES_ROUTE", caller="venue", route_id="r", amount=600)

    # Nobody staked in E1, so the route's deposit goes to the treasury.
    clock.set(E1 + 1_000)
    out = run_op(engine, "LEDGER_SWEEP", ledger_id="stakers", asset="FEE", epoch=E1)
    assert out["amount"] == 600
    assert engine.balance_of("FEE", "TREASURY") == 600
    assert engine.balance_of("FEE", "ledger:stakers") == 0


def test_route_zero_amount(engine) -> None:
    _route(engine)
    run_op(engine, "ASSET_ISSUE", asset="FEE", to="venue", amount=10)
    with pytest.raises(ZeroAmount):
        run_op(engine, "FEES_ROUTE", caller="venue", route_id="r", amount=0)
    assert engine.balance_of("FEE", "venue") == 10
