# src/epochflow/runtime/metrics.py
"""In-process metrics registry.

Series are identified by a name plus optional string labels, e.g.

  inc_counter("ops_applied_total", op="LEDGER_CLAIM")
  set_gauge("stream_pending_amount", 250, stream="fee-burn", asset="FEE")

Counters only grow until reset(). State-derived gauge families are
republished wholesale (clear_gauges + set_gauge) so a removed component does
not linger in the exposition.
"""

from __future__ import annotations

import os
import threading
import time
from typing import Dict, List, Tuple

Labels = Tuple[Tuple[str, str], ...]
SeriesKey = Tuple[str, Labels]

_lock = threading.Lock()
_counters: Dict[SeriesKey, int] = {}
_gauges: Dict[SeriesKey, int] = {}
_started_ms = int(time.time() * 1000)


def metrics_enabled() -> bool:
    v = (os.environ.get("EPOCHFLOW_METRICS_ENABLED") or "").strip().lower()
    return v in {"1", "true", "yes", "y", "on"}


def _key(name: str, labels: Dict[str, object]) -> SeriesKey:
    return str(name).strip(), tuple(sorted((str(k), str(v)) for k, v in labels.items()))


def _series_name(key: SeriesKey) -> str:
    name, labels = key
    if not labels:
        return name
    inner = ",".join(f'{k}="{_escape(v)}"' for k, v in labels)
    return f"{name}{{{inner}}}"


def _escape(v: str) -> str:
    return v.replace("\\", "\\\\").replace('"', '\\"').replace("\n", "\\n")


def inc_counter(name: str, value: int = 1, **labels: object) -> None:
    key = _key(name, labels)
    if not key[0]:
        return
    with _lock:
        _counters[key] = _counters.get(key, 0) + int(value)


def set_gauge(name: str, value: int, **labels: object) -> None:
    key = _key(name, labels)
    if not key[0]:
        return
    with _lock:
        _gauges[key] = int(value)


def clear_gauges(prefix: str) -> None:
    """Drop every gauge series whose name starts with `prefix`."""
    with _lock:
        for key in [k for k in _gauges if k[0].startswith(prefix)]:
            del _gauges[key]


def counter_value(name: str, **labels: object) -> int:
    with _lock:
        return _counters.get(_key(name, labels), 0)


def gauge_value(name: str, **labels: object) -> int | None:
    with _lock:
        return _gauges.get(_key(name, labels))


def snapshot() -> dict:
    """Plain-dict view keyed by rendered series name (`name{k="v"}`)."""
    now_ms = int(time.time() * 1000)
    with _lock:
        return {
            "ts_ms": now_ms,
            "started_ms": _started_ms,
            "uptime_ms": now_ms - _started_ms,
            "counters": {_series_name(k): v for k, v in _counters.items()},
            "gauges": {_series_name(k): v for k, v in _gauges.items()},
        }


def reset() -> None:
    with _lock:
        _counters.clear()
        _gauges.clear()


def format_prometheus(prefix: str = "epochflow_") -> str:
    """Prometheus text exposition, one TYPE line per family."""
    pre = str(prefix or "").strip() or "epochflow_"
    with _lock:
        families: List[Tuple[str, str, List[Tuple[SeriesKey, int]]]] = []
        for kind, store in (("counter", _counters), ("gauge", _gauges)):
            by_name: Dict[str, List[Tuple[SeriesKey, int]]] = {}
            for key, v in store.items():
                by_name.setdefault(key[0], []).append((key, v))
            families.extend((name, kind, sorted(series)) for name, series in sorted(by_name.items()))
        uptime = int(time.time() * 1000) - _started_ms

    lines = [f"# TYPE {pre}uptime_ms gauge", f"{pre}uptime_ms {uptime}"]
    for name, kind, series in families:
        lines.append(f"# TYPE {pre}{name} {kind}")
        lines.extend(f"{pre}{_series_name(key)} {v}" for key, v in series)
    return "\n".join(lines) + "\n"
