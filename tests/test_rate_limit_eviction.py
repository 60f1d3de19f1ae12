from __future__ import annotations

import pytest
from fastapi.testclient import TestClient

from epochflow.api.security import RateLimiter, RouteClass, TokenBucket, bucket_config_from_env, classify_request


class _FakeClock:
    def __init__(self, t: float = 1_000.0) -> None:
        self.t = t

    def __call__(self) -> float:
        return self.t


def _limiter(clock: _FakeClock, *, ttl_s: float = 10.0, max_keys: int = 1_000) -> RateLimiter:
    buckets = {"tick": TokenBucket(rate_per_sec=0.0, burst=2.0), "read": TokenBucket(rate_per_sec=1.0, burst=1.0)}
    return RateLimiter(buckets, ttl_s=ttl_s, max_keys=max_keys, clock=clock)


@pytest.mark.parametrize(
    "method,path,expected",
    [
        ("POST", "/v1/streams/fees/checkpoint", RouteClass("tick", "stream:fees")),
        ("POST", "/v1/streams/fees/drip", RouteClass("tick", "stream:fees")),
        ("POST", "/v1/streams/fees/deposit", RouteClass("write")),
        ("POST", "/v1/ledgers/votes/claim", RouteClass("claim", "ledger:votes")),
        ("POST", "/v1/ledgers/votes/claim_many", RouteClass("claim", "ledger:votes")),
        ("POST", "/v1/ledgers/votes/sweep", RouteClass("write")),
        ("GET", "/v1/ledgers/votes/preview", RouteClass("read")),
        ("POST", "/v1/ops/submit", RouteClass("write")),
        ("GET", "/readyz", RouteClass("exempt")),
    ],
)
def test_classify_request(method: str, path: str, expected: RouteClass) -> None:
    assert classify_request(method, path) == expected


def test_tick_budget_is_per_stream() -> None:
    lim = _limiter(_FakeClock())
    fees = RouteClass("tick", "stream:fees")
    burn = RouteClass("tick", "stream:burn")

    assert [lim.allow(fees, "203.0.113.1") for _ in range(3)] == [True, True, False]
    assert lim.allow(burn, "203.0.113.1") is True
    assert lim.allow(fees, "203.0.113.2") is True


def test_refill_follows_clock() -> None:
    clock = _FakeClock()
    lim = _limiter(clock)
    rc = RouteClass("read")

    assert lim.allow(rc, "a") is True
    assert lim.allow(rc, "a") is False
    clock.t += 1.0
    assert lim.allow(rc, "a") is True


def test_unlisted_class_is_not_limited() -> None:
    lim = _limiter(_FakeClock())
    assert all(lim.allow(RouteClass("exempt"), "a") for _ in range(50))
    assert len(lim) == 0


def test_idle_keys_expire_by_ttl() -> None:
    clock = _FakeClock()
    lim = _limiter(clock, ttl_s=10.0)

    for i in range(50):
        lim.allow(RouteClass("tick", f"stream:s{i}"), "203.0.113.7")
    assert len(lim) == 50

    clock.t += 11.0
    lim.allow(RouteClass("tick", "stream:fresh"), "203.0.113.7")
    assert len(lim) == 1


def test_key_cap_drops_least_recently_seen() -> None:
    clock = _FakeClock()
    lim = _limiter(clock, ttl_s=0, max_keys=3)

    for sid in ("a", "b", "c"):
        lim.allow(RouteClass("tick", f"stream:{sid}"), "x")
        clock.t += 1.0
    # "a" is touched again, so "b" is now the oldest.
    lim.allow(RouteClass("tick", "stream:a"), "x")
    lim.allow(RouteClass("tick", "stream:d"), "x")
    assert len(lim) == 3

    # An evicted key comes back with a full burst.
    assert [lim.allow(RouteClass("tick", "stream:b"), "x") for _ in range(3)] == [True, True, False]


def test_bucket_config_reads_env(monkeypatch) -> None:
    monkeypatch.setenv("EPOCHFLOW_RL_TICK_PER_SEC", "0.5")
    monkeypatch.setenv("EPOCHFLOW_RL_CLAIM_BURST", "3")
    monkeypatch.setenv("EPOCHFLOW_RL_WRITE_BURST", "not-a-number")

    cfg = bucket_config_from_env()
    assert cfg["tick"] == TokenBucket(rate_per_sec=0.5, burst=5.0)
    assert cfg["claim"].burst == 3.0
    assert cfg["write"].burst == 20.0


def test_hammered_checkpoint_is_limited_per_stream(monkeypatch) -> None:
    monkeypatch.delenv("EPOCHFLOW_RL_DISABLE", raising=False)
    monkeypatch.setenv("EPOCHFLOW_RL_TICK_PER_SEC", "0")
    monkeypatch.setenv("EPOCHFLOW_RL_TICK_BURST", "2")

    from epochflow.api.app import create_app

    c = TestClient(create_app(boot_runtime=False))

    codes = [c.post("/v1/streams/fees/checkpoint", json={}).status_code for _ in range(3)]
    assert codes == [503, 503, 429]

    r = c.post("/v1/streams/fees/checkpoint", json={})
    assert r.json()["error"]["details"] == {"route_class": "tick", "component": "stream:fees"}

    # Other streams and other route classes keep their own budgets.
    assert c.post("/v1/streams/burn/checkpoint", json={}).status_code == 503
    assert c.post("/v1/ledgers/votes/claim", json={"caller": "alice"}).status_code != 429
