from __future__ import annotations

from fastapi.testclient import TestClient

from epochflow.api.app import create_app


def test_request_size_limit_returns_413(monkeypatch):
    # Make limit very small for test determinism.
    monkeypatch.setenv("EPOCHFLOW_MAX_REQUEST_BYTES", "128")
    monkeypatch.delenv("EPOCHFLOW_SIZE_LIMIT_DISABLE", raising=False)

    app = create_app(boot_runtime=False)
    c = TestClient(app)

    payload = {"caller": "alice", "asset": "FOO", "epoch": 0, "amount": 1, "pad": "x" * 500}

    r = c.post("/v1/ledgers/L/deposit", json=payload)
    assert r.status_code == 413

    j = r.json()
    assert j.get("ok") is False
    assert isinstance(j.get("error"), dict)
    assert j["error"].get("code") == "request_too_large"


def test_small_request_passes_size_limit(monkeypatch):
    monkeypatch.setenv("EPOCHFLOW_MAX_REQUEST_BYTES", "4096")
    monkeypatch.setenv("EPOCHFLOW_RL_DISABLE", "1")

    c = TestClient(create_app(boot_runtime=False))

    # Reaches the route, which reports the missing engine.
    r = c.post("/v1/ledgers/L/deposit", json={"caller": "alice", "asset": "FOO", "epoch": 0, "amount": 1})
    assert r.status_code == 503


def test_write_rate_limit_returns_429(monkeypatch):
    monkeypatch.delenv("EPOCHFLOW_RL_DISABLE", raising=False)
    monkeypatch.setenv("EPOCHFLOW_RL_WRITE_PER_SEC", "0")
    monkeypatch.setenv("EPOCHFLOW_RL_WRITE_BURST", "2")

    c = TestClient(create_app(boot_runtime=False))
    body = {"caller": "alice", "asset": "FOO", "epoch": 0, "amount": 1}

    codes = [c.post("/v1/ledgers/L/deposit", json=body).status_code for _ in range(3)]
    assert codes[:2] == [503, 503]
    assert codes[2] == 429
    assert c.post("/v1/ledgers/L/deposit", json=body).json()["error"]["details"] == {"route_class": "write"}
