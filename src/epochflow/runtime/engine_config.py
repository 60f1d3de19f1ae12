# src/epochflow/runtime/engine_config.py
from __future__ import annotations

import json
import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, List, Optional

import yaml

from epochflow.ledger.constants import (
    DEFAULT_ADMIN_ID,
    DEFAULT_SWEEP_GRACE_EPOCHS,
    EPOCH_LENGTH_SECONDS,
    TREASURY_ACCOUNT_ID,
)

Json = Dict[str, Any]


def _as_int(v: Any, default: int) -> int:
    try:
        return int(v)
    except Exception:
        return int(default)


def _as_str(v: Any, default: str) -> str:
    if v is None:
        return str(default)
    s = str(v)
    return s if s.strip() else str(default)


def _as_bool(v: Any, default: bool) -> bool:
    if v is None:
        return bool(default)
    if isinstance(v, bool):
        return v
    s = str(v).strip().lower()
    if s in {"1", "true", "yes", "y", "on"}:
        return True
    if s in {"0", "false", "no", "n", "off"}:
        return False
    return bool(default)


def _as_list_of_dicts(v: Any) -> List[Json]:
    if not isinstance(v, list):
        return []
    return [dict(x) for x in v if isinstance(x, dict)]


@dataclass(frozen=True)
class GenesisConfig:
    """Components provisioned on first boot of an empty database."""

    streams: List[Json] = field(default_factory=list)
    ledgers: List[Json] = field(default_factory=list)
    fee_routes: List[Json] = field(default_factory=list)

    def is_empty(self) -> bool:
        return not (self.streams or self.ledgers or self.fee_routes)


@dataclass(frozen=True)
class EngineConfig:
    engine_id: str
    mode: str  # "dev" | "testnet" | "prod"

    db_path: str

    # Fixed for the lifetime of a database.
    epoch_length: int

    admin: str
    treasury: str
    weight_reporter: str
    sweep_grace_epochs: int

    require_signatures: bool

    api_host: str
    api_port: int

    log_level: str

    genesis: GenesisConfig = field(default_factory=GenesisConfig)


_ALLOWED_MODES = {"dev", "testnet", "prod"}


def validate_engine_config(cfg: EngineConfig) -> None:
    """Fail-fast validation for operator config."""

    for name, v in (
        ("engine_id", cfg.engine_id),
        ("admin", cfg.admin),
        ("treasury", cfg.treasury),
        ("weight_reporter", cfg.weight_reporter),
        ("db_path", cfg.db_path),
    ):
        if not isinstance(v, str) or not v.strip():
            raise ValueError(f"{name} must be a non-empty string")

    mode = str(cfg.mode or "").strip().lower()
    if mode not in _ALLOWED_MODES:
        raise ValueError(f"mode must be one of {_ALLOWED_MODES}; got: {cfg.mode!r}")

    if int(cfg.epoch_length) < 1:
        raise ValueError(f"epoch_length must be >= 1; got: {cfg.epoch_length}")

    if int(cfg.sweep_grace_epochs) < 0:
        raise ValueError(f"sweep_grace_epochs must be >= 0; got: {cfg.sweep_grace_epochs}")

    if int(cfg.api_port) <= 0 or int(cfg.api_port) > 65535:
        raise ValueError(f"api_port must be 1..65535; got: {cfg.api_port}")

    if mode == "prod" and not cfg.require_signatures:
        raise ValueError("prod mode requires require_signatures=true")

    for section, items, key in (
        ("streams", cfg.genesis.streams, "stream_id"),
        ("ledgers", cfg.genesis.ledgers, "ledger_id"),
        ("fee_routes", cfg.genesis.fee_routes, "route_id"),
    ):
        for item in items:
            if not str(item.get(key) or "").strip():
                raise ValueError(f"genesis.{section} entries require {key}")


def default_engine_config() -> EngineConfig:
    return EngineConfig(
        engine_id="epochflow-dev",
        # Without an explicit config file the engine must not fall into an
        # unsigned development posture.
        mode="prod",
        db_path="./data/epochflow.db",
        epoch_length=EPOCH_LENGTH_SECONDS,
        admin=DEFAULT_ADMIN_ID,
        treasury=TREASURY_ACCOUNT_ID,
        weight_reporter=DEFAULT_ADMIN_ID,
        sweep_grace_epochs=DEFAULT_SWEEP_GRACE_EPOCHS,
        require_signatures=True,
        api_host="0.0.0.0",
        api_port=8000,
        log_level="INFO",
    )


def engine_config_from_dict(raw: Json) -> EngineConfig:
    if not isinstance(raw, dict):
        raise ValueError("engine config must be a mapping")

    d = default_engine_config()
    gen = raw.get("genesis") if isinstance(raw.get("genesis"), dict) else {}
    admin = _as_str(raw.get("admin"), d.admin)

    cfg = EngineConfig(
        engine_id=_as_str(raw.get("engine_id"), d.engine_id),
        mode=_as_str(raw.get("mode"), d.mode).strip().lower(),
        db_path=_as_str(raw.get("db_path"), d.db_path),
        epoch_length=_as_int(raw.get("epoch_length"), d.epoch_length),
        admin=admin,
        treasury=_as_str(raw.get("treasury"), d.treasury),
        # The reporter follows the admin unless named explicitly.
        weight_reporter=_as_str(raw.get("weight_reporter"), admin),
        sweep_grace_epochs=_as_int(raw.get("sweep_grace_epochs"), d.sweep_grace_epochs),
        require_signatures=_as_bool(raw.get("require_signatures"), d.require_signatures),
        api_host=_as_str(raw.get("api_host"), d.api_host),
        api_port=_as_int(raw.get("api_port"), d.api_port),
        log_level=_as_str(raw.get("log_level"), d.log_level),
        genesis=GenesisConfig(
            streams=_as_list_of_dicts(gen.get("streams")),
            ledgers=_as_list_of_dicts(gen.get("ledgers")),
            fee_routes=_as_list_of_dicts(gen.get("fee_routes")),
        ),
    )

    validate_engine_config(cfg)
    return cfg


def read_engine_config_file(path: str) -> EngineConfig:
    p = Path(path)
    text = p.read_text(encoding="utf-8")
    if p.suffix.lower() in {".yaml", ".yml"}:
        raw = yaml.safe_load(text)
    else:
        raw = json.loads(text)
    if not isinstance(raw, dict):
        raise ValueError("engine config must be a JSON/YAML object")
    return engine_config_from_dict(raw)


def load_engine_config(*, config_path: Optional[str] = None) -> EngineConfig:
    p = config_path or os.environ.get("EPOCHFLOW_CONFIG_PATH")
    if p:
        return read_engine_config_file(p)

    cfg = default_engine_config()
    validate_engine_config(cfg)
    return cfg


def apply_engine_config_to_env(cfg: EngineConfig) -> None:
    validate_engine_config(cfg)
    os.environ["EPOCHFLOW_ENGINE_ID"] = cfg.engine_id
    os.environ["EPOCHFLOW_MODE"] = (cfg.mode or "prod").strip().lower()
    os.environ["EPOCHFLOW_DB_PATH"] = cfg.db_path
    os.environ["EPOCHFLOW_LOG_LEVEL"] = cfg.log_level
