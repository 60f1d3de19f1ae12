# src/epochflow/runtime/checkpoint_loop.py
from __future__ import annotations

import logging
import os
import threading
from dataclasses import dataclass
from typing import Optional

from epochflow.runtime.metrics import inc_counter, set_gauge


log = logging.getLogger("epochflow.checkpoint_loop")


@dataclass(frozen=True, slots=True)
class CheckpointLoopConfig:
    interval_ms: int
    enabled: bool

    # Reliability knobs
    fail_fast_after: int
    error_backoff_min_ms: int
    error_backoff_max_ms: int


def _env_bool(name: str, default: bool) -> bool:
    v = os.environ.get(name)
    if v is None:
        return bool(default)
    return (v or "").strip().lower() in {"1", "true", "yes", "y", "on"}


def _env_int(name: str, default: int) -> int:
    try:
        return int(os.environ.get(name, str(default)))
    except Exception:
        return int(default)


def checkpoint_loop_config_from_env() -> CheckpointLoopConfig:
    enabled = _env_bool("EPOCHFLOW_CHECKPOINT_LOOP_ENABLED", True)
    interval_ms = max(250, _env_int("EPOCHFLOW_CHECKPOINT_INTERVAL_MS", 60_000))

    fail_fast_after = max(3, _env_int("EPOCHFLOW_CHECKPOINT_LOOP_FAIL_FAST_AFTER", 10))
    error_backoff_min_ms = max(50, _env_int("EPOCHFLOW_CHECKPOINT_LOOP_ERROR_BACKOFF_MIN_MS", 250))
    error_backoff_max_ms = max(error_backoff_min_ms, _env_int("EPOCHFLOW_CHECKPOINT_LOOP_ERROR_BACKOFF_MAX_MS", 10_000))

    return CheckpointLoopConfig(
        interval_ms=int(interval_ms),
        enabled=bool(enabled),
        fail_fast_after=int(fail_fast_after),
        error_backoff_min_ms=int(error_backoff_min_ms),
        error_backoff_max_ms=int(error_backoff_max_ms),
    )


class CheckpointLoop:
    """Keeper loop that checkpoints every burn stream at a fixed interval.

    Streams advance only when someone calls them; this loop is that someone
    for a single-node deployment. Status is exposed on the engine for the
    readiness check.
    """

    def __init__(self, *, engine, cfg: Optional[CheckpointLoopConfig] = None) -> None:
        self._engine = engine
        self._cfg = cfg or checkpoint_loop_config_from_env()

        self._t: Optional[threading.Thread] = None
        self._stop = threading.Event()
        self._started = False

        self._consecutive_failures = 0
        self._last_error: str = ""

        try:
            setattr(self._engine, "checkpoint_loop_running", False)
            setattr(self._engine, "checkpoint_loop_unhealthy", False)
            setattr(self._engine, "checkpoint_loop_last_error", "")
        except Exception:
            pass

    @property
    def started(self) -> bool:
        return self._started

    def start(self) -> bool:
        if self._started:
            return True
        if not self._cfg.enabled:
            return False
        self._t = threading.Thread(target=self._run, name="epochflow-checkpoint-loop", daemon=True)
        self._t.start()
        self._started = True
        try:
            setattr(self._engine, "checkpoint_loop_running", True)
        except Exception:
            pass
        inc_counter("checkpoint_loop_start_total", 1)
        return True

    def stop(self) -> None:
        self._stop.set()
        t = self._t
        if t is not None:
            t.join(timeout=2.0)
        try:
            setattr(self._engine, "checkpoint_loop_running", False)
        except Exception:
            pass
        inc_counter("checkpoint_loop_stop_total", 1)

    def tick(self) -> dict:
        """Run one checkpoint pass synchronously."""
        out = self._engine.checkpoint_all()
        inc_counter("checkpoint_loop_ticks_total", 1)
        return out

    def _mark_error(self, err: Exception) -> None:
        self._consecutive_failures += 1
        self._last_error = f"{type(err).__name__}:{err}"
        inc_counter("checkpoint_loop_errors_total", 1)
        set_gauge("checkpoint_loop_consecutive_failures", self._consecutive_failures)
        try:
            setattr(self._engine, "checkpoint_loop_last_error", self._last_error)
        except Exception:
            pass
        log.exception("checkpoint loop error failures=%s", self._consecutive_failures)

    def _clear_error(self) -> None:
        if self._consecutive_failures == 0 and not self._last_error:
            return
        self._consecutive_failures = 0
        self._last_error = ""
        set_gauge("checkpoint_loop_consecutive_failures", 0)
        try:
            setattr(self._engine, "checkpoint_loop_last_error", "")
        except Exception:
            pass

    def _backoff_s(self) -> float:
        n = max(1, int(self._consecutive_failures))
        ms = min(int(self._cfg.error_backoff_max_ms), int(self._cfg.error_backoff_min_ms) * (2 ** min(10, n - 1)))
        return max(0.0, float(ms) / 1000.0)

    def _trip_unhealthy_and_stop(self) -> None:
        try:
            setattr(self._engine, "checkpoint_loop_unhealthy", True)
            setattr(self._engine, "checkpoint_loop_running", False)
        except Exception:
            pass
        set_gauge("checkpoint_loop_unhealthy", 1)
        log.error(
            "checkpoint loop fail-fast tripped: failures=%s last_error=%s",
            self._consecutive_failures,
            self._last_error,
        )
        self._stop.set()

    def _run(self) -> None:
        interval_s = float(self._cfg.interval_ms) / 1000.0

        while not self._stop.is_set():
            try:
                self.tick()
                self._clear_error()
            except Exception as err:
                self._mark_error(err)
                if self._consecutive_failures >= int(self._cfg.fail_fast_after):
                    self._trip_unhealthy_and_stop()
                    break
                self._stop.wait(self._backoff_s())
                continue

            self._stop.wait(interval_s)
