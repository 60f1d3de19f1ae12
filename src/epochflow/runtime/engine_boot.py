# src/epochflow/runtime/engine_boot.py

from __future__ import annotations

import dataclasses
import os
from typing import Optional

from epochflow.runtime.apply.weights import WeightOracle
from epochflow.runtime.engine import EpochFlowEngine
from epochflow.runtime.engine_config import EngineConfig, load_engine_config, validate_engine_config
from epochflow.runtime.epoch import Clock


def engine_config_from_env() -> EngineConfig:
    """Config file (EPOCHFLOW_CONFIG_PATH) or defaults, then env overrides."""
    cfg = load_engine_config()

    overrides = {}
    db_path = (os.environ.get("EPOCHFLOW_DB_PATH") or "").strip()
    if db_path:
        overrides["db_path"] = db_path
    engine_id = (os.environ.get("EPOCHFLOW_ENGINE_ID") or "").strip()
    if engine_id:
        overrides["engine_id"] = engine_id
    mode = (os.environ.get("EPOCHFLOW_MODE") or "").strip().lower()
    if mode:
        overrides["mode"] = mode
    req = (os.environ.get("EPOCHFLOW_REQUIRE_SIGNATURES") or "").strip().lower()
    if req:
        overrides["require_signatures"] = req in {"1", "true", "yes", "y", "on"}

    if not overrides:
        return cfg
    out = dataclasses.replace(cfg, **overrides)
    validate_engine_config(out)
    return out


def build_engine(
    cfg: Optional[EngineConfig] = None,
    *,
    clock: Optional[Clock] = None,
    oracle: Optional[WeightOracle] = None,
) -> EpochFlowEngine:
    """
    Build an EpochFlowEngine from an explicit config or, if omitted, from the
    config file and environment.

    `epochflow.api.app` calls build_engine() with no args in production.
    """
    c = cfg or engine_config_from_env()
    return EpochFlowEngine.from_config(c, clock=clock, oracle=oracle)
