from __future__ import annotations

import pytest

from conftest import EPOCH, run_op
from epochflow.runtime.engine import EpochFlowEngine
from epochflow.runtime.errors import InvalidIdentity
from epochflow.testing.sigtools import pubkey_for, sign_op_dict

E1 = 11_000


def test_signed_engine_refuses_component_holder_identity(tmp_path, clock) -> None:
    eng = EpochFlowEngine(
        db_path=str(tmp_path / "ns.db"), engine_id="ns", epoch_length=EPOCH, require_signatures=True, clock=clock
    )
    eng.submit(sign_op_dict({"op": "IDENTITY_REGISTER", "caller": "ADMIN", "nonce": 1, "payload": {"pubkey": pubkey_for("ADMIN")}}))
    nonces = {"ADMIN": 1, "briber": 0}

    def submit(op: str, caller: str = "ADMIN", **payload) -> None:
        if nonces[caller] == 0:
            eng.submit(
                sign_op_dict({"op": "IDENTITY_REGISTER", "caller": caller, "nonce": 1, "payload": {"pubkey": pubkey_for(caller)}}, label=caller)
            )
            nonces[caller] = 1
        nonces[caller] += 1
        eng.submit(sign_op_dict({"op": op, "caller": caller, "nonce": nonces[caller], "payload": payload}, label=caller))

    submit("LEDGER_CREATE", ledger_id="L1", target="gauge-A", policy="refund")
    submit("ASSET_ISSUE", asset="FOO", to="briber", amount=1_000)
    submit("LEDGER_DEPOSIT", caller="briber", ledger_id="L1", asset="FOO", epoch=E1, amount=1_000)
    assert eng.balance_of("FOO", "ledger:L1") == 1_000

    # Nobody can take the ledger's holder id as an identity...
    with pytest.raises(InvalidIdentity):
        eng.submit(
            sign_op_dict(
                {"op": "IDENTITY_REGISTER", "caller": "ledger:L1", "nonce": 1, "payload": {"pubkey": pubkey_for("mallory")}},
                label="mallory",
            )
        )
    # ...and so nobody can spend from it.
    with pytest.raises(InvalidIdentity):
        eng.submit(
            sign_op_dict(
                {"op": "ASSET_TRANSFER", "caller": "ledger:L1", "nonce": 2, "payload": {"asset": "FOO", "to": "mallory", "amount": 1_000}},
                label="mallory",
            )
        )

    assert eng.balance_of("FOO", "ledger:L1") == 1_000
    assert eng.balance_of("FOO", "mallory") == 0
    assert eng.identity_nonce("ledger:L1") == 0


@pytest.mark.parametrize("holder", ["ledger:L1", "stream:s", "route:r"])
def test_unsigned_caller_cannot_use_holder_ids(engine, holder) -> None:
    run_op(engine, "STREAM_CREATE", stream_id="s", asset="FOO")
    run_op(engine, "ASSET_ISSUE", asset="FOO", to="stream:s", amount=10)
    with pytest.raises(InvalidIdentity):
        run_op(engine, "ASSET_TRANSFER", caller=holder, asset="FOO", to="mallory", amount=10)
    assert engine.balance_of("FOO", "stream:s") == 10


def test_weights_cannot_name_holder_ids(engine) -> None:
    with pytest.raises(InvalidIdentity):
        run_op(engine, "WEIGHT_REPORT", target="gauge-A", identity="ledger:L1", weight=5, epoch=E1)


@pytest.mark.parametrize("op", ["ASSET_ISSUE", "ASSET_TRANSFER"])
@pytest.mark.parametrize("to", ["", "ledger:L1", "route:r", "stream:nope"])
def test_credit_recipient_must_be_identity_or_stream(engine, op, to) -> None:
    run_op(engine, "LEDGER_CREATE", ledger_id="L1", target="gauge-A", policy="refund")
    run_op(engine, "ASSET_ISSUE", asset="FOO", to="alice", amount=10)
    caller = "alice" if op == "ASSET_TRANSFER" else "ADMIN"
    with pytest.raises(InvalidIdentity):
        run_op(engine, op, caller=caller, asset="FOO", to=to, amount=5)
    assert engine.balance_of("FOO", "alice") == 10


def test_direct_credit_to_stream_holder_is_allowed(engine) -> None:
    run_op(engine, "STREAM_CREATE", stream_id="s", asset="FOO")
    run_op(engine, "ASSET_ISSUE", asset="FOO", to="alice", amount=10)
    run_op(engine, "ASSET_TRANSFER", caller="alice", asset="FOO", to="stream:s", amount=4)
    assert engine.stream_view("s")["unaccounted"] == 4


@pytest.mark.parametrize("caller", ["", "   "])
def test_empty_caller_is_invalid_identity(engine, caller) -> None:
    run_op(engine, "STREAM_CREATE", stream_id="s", asset="FOO")
    with pytest.raises(InvalidIdentity):
        run_op(engine, "STREAM_DEPOSIT", caller=caller, stream_id="s", amount=5)
    with pytest.raises(InvalidIdentity):
        run_op(engine, "ASSET_TRANSFER", caller=caller, asset="FOO", to="alice", amount=5)
