from __future__ import annotations

import pytest
from fastapi.testclient import TestClient

from conftest import EPOCH, T0
from epochflow.runtime import metrics
from epochflow.runtime.engine import EpochFlowEngine
from epochflow.runtime.epoch import ManualClock

E1 = T0 + EPOCH


@pytest.fixture
def api(tmp_path, monkeypatch):
    monkeypatch.setenv("EPOCHFLOW_MODE", "dev")
    monkeypatch.setenv("EPOCHFLOW_RL_DISABLE", "1")
    monkeypatch.delenv("EPOCHFLOW_ADMIN_TOKEN", raising=False)
    monkeypatch.delenv("EPOCHFLOW_CHECKPOINT_LOOP_AUTOSTART", raising=False)

    clock = ManualClock(T0)
    eng = EpochFlowEngine(db_path=str(tmp_path / "api.db"), engine_id="api-test", epoch_length=EPOCH, clock=clock)

    import epochflow.api.app as app_mod

    monkeypatch.setattr(app_mod, "build_engine", lambda: eng)
    client = TestClient(app_mod.create_app())
    return client, eng, clock


def _post(client: TestClient, path: str, body: dict, **kw):
    return client.post(f"/v1{path}", json=body, **kw)


def test_health_and_root_checks(api) -> None:
    client, _, _ = api
    body = client.get("/v1/health").json()
    assert body["ok"] is True
    assert body["engine_id"] == "api-test"
    assert body["epoch"]["current_epoch"] == T0

    assert client.get("/healthz").json() == {"ok": True}
    assert client.get("/readyz").status_code == 200


def test_readyz_without_engine(monkeypatch) -> None:
    monkeypatch.setenv("EPOCHFLOW_MODE", "dev")
    from epochflow.api.app import create_app

    client = TestClient(create_app(boot_runtime=False))
    assert client.get("/readyz").status_code == 503
    r = client.get("/v1/streams/s")
    assert r.status_code == 503
    assert r.json()["error"]["code"] == "not_ready"


def test_epoch_endpoint(api) -> None:
    client, _, clock = api
    clock.set(T0 + 250)
    body = client.get("/v1/epoch").json()
    assert body["next_epoch"] == E1
    assert body["seconds_until_next_epoch"] == 750


def test_stream_lifecycle_over_http(api) -> None:
    client, eng, clock = api
    assert _post(client, "/streams", {"caller": "ADMIN", "stream_id": "s", "asset": "FEE"}).status_code == 200
    eng.submit({"op": "ASSET_ISSUE", "caller": "ADMIN", "payload": {"asset": "FEE", "to": "alice", "amount": 100}})

    r = _post(client, "/streams/s/deposit", {"caller": "alice", "amount": 100})
    assert r.status_code == 200
    assert r.json()["result"]["pending_epoch"] == E1

    r = _post(client, "/streams/s/start", {"caller": "alice"})
    assert r.status_code == 409
    assert r.json()["error"]["code"] == "not_ready"

    clock.set(E1 + EPOCH // 2)
    r = _post(client, "/streams/s/checkpoint", {"caller": "keeper"})
    assert r.json()["result"]["dripped"] == 50

    stream = client.get("/v1/streams/s").json()["stream"]
    assert stream["destroyed_so_far"] == 50
    assert client.get("/v1/assets/FEE").json()["asset"]["supply"] == 50


def test_ledger_claim_flow_over_http(api) -> None:
    client, eng, clock = api
    _post(client, "/ledgers", {"caller": "ADMIN", "ledger_id": "L", "target": "g"})
    eng.submit({"op": "ASSET_ISSUE", "caller": "ADMIN", "payload": {"asset": "FOO", "to": "briber", "amount": 90}})
    assert _post(client, "/ledgers/L/deposit", {"caller": "briber", "asset": "FOO", "epoch": E1, "amount": 90}).status_code == 200
    _post(client, "/weights/report", {"caller": "ADMIN", "target": "g", "identity": "alice", "weight": 2, "epoch": E1})
    _post(client, "/weights/report", {"caller": "ADMIN", "target": "g", "identity": "bob", "weight": 1, "epoch": E1})

    r = _post(client, "/ledgers/L/claim", {"caller": "alice", "asset": "FOO", "epoch": E1})
    assert r.status_code == 409
    assert r.json()["error"]["code"] == "epoch_not_ended"

    clock.set(E1 + EPOCH)
    preview = client.get("/v1/ledgers/L/preview", params={"identity": "alice", "asset": "FOO", "epoch": E1}).json()
    assert preview["amount"] == 60

    r = _post(client, "/ledgers/L/claim", {"caller": "alice", "asset": "FOO", "epoch": E1})
    assert r.json()["result"]["amount"] == 60
    assert client.get("/v1/assets/FOO/alice").json()["balance"] == 60

    view = client.get(f"/v1/ledgers/L/epochs/{E1}").json()["epoch"]
    assert view["claimed_totals"] == {"FOO": 60}
    assert client.get(f"/v1/weights/{E1}/g").json()["weights"]["total"] == 3


def test_error_status_mapping(api) -> None:
    client, _, _ = api
    r = client.get("/v1/streams/missing")
    assert r.status_code == 404
    assert r.json()["error"]["code"] == "not_found"

    _post(client, "/ledgers", {"caller": "ADMIN", "ledger_id": "L", "target": "g"})
    r = client.get(f"/v1/ledgers/L/epochs/{T0 + 1}")
    assert r.status_code == 400
    assert r.json()["error"]["code"] == "invalid_epoch"

    r = _post(client, "/ledgers", {"caller": "mallory", "ledger_id": "M", "target": "g"})
    assert r.status_code == 403
    assert r.json()["error"]["code"] == "unauthorized"

    r = _post(client, "/ledgers", {"caller": "ADMIN", "ledger_id": "L", "target": "g"})
    assert r.status_code == 409


def test_validation_errors_are_400(api) -> None:
    client, _, _ = api
    r = _post(client, "/streams/s/queue", {"caller": "x", "amount": "lots"})
    assert r.status_code == 400
    assert r.json()["error"]["code"] == "invalid_payload"

    r = _post(client, "/streams/s/queue", {"caller": "x", "amount": 1, "surprise": True})
    assert r.status_code == 400


def test_admin_token_gate(tmp_path, monkeypatch) -> None:
    monkeypatch.setenv("EPOCHFLOW_MODE", "dev")
    monkeypatch.setenv("EPOCHFLOW_RL_DISABLE", "1")
    monkeypatch.setenv("EPOCHFLOW_ADMIN_TOKEN", "s3cret")
    eng = EpochFlowEngine(db_path=str(tmp_path / "t.db"), engine_id="t", epoch_length=EPOCH, clock=ManualClock(T0))

    import epochflow.api.app as app_mod

    monkeypatch.setattr(app_mod, "build_engine", lambda: eng)
    client = TestClient(app_mod.create_app())

    body = {"caller": "ADMIN", "stream_id": "s", "asset": "FEE"}
    r = _post(client, "/streams", body)
    assert r.status_code == 403
    assert r.json()["error"]["code"] == "admin_token_required"

    r = _post(client, "/streams", body, headers={"x-epochflow-admin-token": "s3cret"})
    assert r.status_code == 200

    op = {"op": "ASSET_ISSUE", "caller": "ADMIN", "payload": {"asset": "FEE", "to": "a", "amount": 1}}
    assert _post(client, "/ops/submit", op).status_code == 403
    assert _post(client, "/ops/submit", op, headers={"x-epochflow-admin-token": "s3cret"}).status_code == 200


def test_ops_submit_and_recent(api) -> None:
    client, _, _ = api
    r = _post(client, "/ops/submit", {"op": "warp_drive", "caller": "ADMIN"})
    assert r.status_code == 400
    assert r.json()["error"]["code"] == "op_unimplemented"

    r = _post(client, "/ops/submit", {"op": "asset_issue", "caller": "ADMIN", "payload": {"asset": "X", "to": "a", "amount": 3}})
    assert r.status_code == 200
    assert r.json()["seq"] == 1

    ops = client.get("/v1/ops/recent", params={"limit": 5}).json()["ops"]
    assert [o["op"] for o in ops] == ["ASSET_ISSUE"]


def test_unknown_asset_is_404(api) -> None:
    client, _, _ = api
    assert client.get("/v1/assets/NOPE").status_code == 404


def test_state_snapshot(api) -> None:
    client, _, _ = api
    st = client.get("/v1/state/snapshot").json()["state"]
    assert st["engine_id"] == "api-test"


def test_metrics_endpoint(api, monkeypatch) -> None:
    client, eng, _ = api
    assert client.get("/v1/metrics").status_code == 404

    monkeypatch.setenv("EPOCHFLOW_METRICS_ENABLED", "1")
    metrics.reset()
    eng.submit({"op": "ASSET_ISSUE", "caller": "ADMIN", "payload": {"asset": "X", "to": "a", "amount": 1}})
    text = client.get("/v1/metrics").text
    assert 'epochflow_ops_applied_total{op="ASSET_ISSUE"} 1' in text
    assert "# TYPE epochflow_ops_applied_total counter" in text
    assert "epochflow_op_seq 1" in text


def test_metrics_export_stream_and_ledger_state(api, monkeypatch) -> None:
    client, eng, _ = api
    monkeypatch.setenv("EPOCHFLOW_METRICS_ENABLED", "1")
    metrics.reset()

    def op(name: str, caller: str = "ADMIN", **payload) -> None:
        eng.submit({"op": name, "caller": caller, "payload": payload})

    op("STREAM_CREATE", stream_id="fees", asset="FEE")
    op("LEDGER_CREATE", ledger_id="votes", target="gauge-A", policy="refund")
    op("ASSET_ISSUE", asset="FEE", to="alice", amount=500)
    op("STREAM_DEPOSIT", caller="alice", stream_id="fees", amount=200)
    op("LEDGER_DEPOSIT", caller="alice", ledger_id="votes", asset="FEE", epoch=E1, amount=300)

    text = client.get("/v1/metrics").text
    assert 'epochflow_stream_pending_amount{asset="FEE",stream="fees"} 200' in text
    assert 'epochflow_stream_active_amount{asset="FEE",stream="fees"} 0' in text
    assert 'epochflow_ledger_held_balance{asset="FEE",ledger="votes"} 300' in text

    op("STREAM_CREATE", stream_id="other", asset="FEE")
    metrics.clear_gauges("stream_")
    text = client.get("/v1/metrics").text
    assert 'stream="other"' in text
    assert 'epochflow_stream_pending_amount{asset="FEE",stream="fees"} 200' in text


def test_request_id_echoed(api) -> None:
    client, _, _ = api
    r = client.get("/v1/health", headers={"x-request-id": "abc-123"})
    assert r.headers.get("x-request-id") == "abc-123"
