# src/epochflow/runtime/engine.py
from __future__ import annotations

import copy
import logging
import threading
import time
from typing import Any, Dict, List, Optional

from epochflow.crypto.sig import canonical_op_message, verify_ed25519_signature, verify_op_sig_against_any_key
from epochflow.ledger.constants import (
    DEFAULT_ADMIN_ID,
    DEFAULT_SWEEP_GRACE_EPOCHS,
    EPOCH_LENGTH_SECONDS,
    TREASURY_ACCOUNT_ID,
)
from epochflow.runtime import metrics
from epochflow.runtime.apply import assets, burn_stream, distribution, weights
from epochflow.runtime.apply.common import require_identity
from epochflow.runtime.apply.identity import bump_nonce, identity_nonce
from epochflow.runtime.domain_dispatch import apply_op
from epochflow.runtime.engine_config import EngineConfig, GenesisConfig
from epochflow.runtime.epoch import Clock, EpochClock, SystemClock
from epochflow.runtime.errors import BadNonce, EngineError, InvalidEpoch, InvalidSignature
from epochflow.runtime.op_types import OpContext, OpEnvelope
from epochflow.runtime.sqlite_db import SqliteDB, SqliteStateStore
from epochflow.runtime.state_invariants import ensure_state

Json = Dict[str, Any]

log = logging.getLogger("epochflow.engine")


def _now_ms() -> int:
    return int(time.time() * 1000)


def _safe_int(v: Any, default: int) -> int:
    try:
        return int(v)
    except Exception:
        return int(default)


class EngineBootError(RuntimeError):
    pass


class EpochFlowEngine:
    """Single mutation gate over the engine state.

    Every op runs against a deep copy of the state under one lock. The copy
    becomes the live state only after the snapshot and its journal row were
    committed to SQLite, so a failed op changes neither memory nor disk.
    """

    def __init__(
        self,
        *,
        db_path: str,
        engine_id: str,
        epoch_length: int = EPOCH_LENGTH_SECONDS,
        admin: str = DEFAULT_ADMIN_ID,
        treasury: str = TREASURY_ACCOUNT_ID,
        weight_reporter: Optional[str] = None,
        sweep_grace_epochs: int = DEFAULT_SWEEP_GRACE_EPOCHS,
        require_signatures: bool = False,
        clock: Optional[Clock] = None,
        oracle: Optional[weights.WeightOracle] = None,
        genesis: Optional[GenesisConfig] = None,
    ) -> None:
        self.engine_id = str(engine_id)
        self.db_path = str(db_path)
        self.require_signatures = bool(require_signatures)
        self.epochs = EpochClock(int(epoch_length))

        self._clock: Clock = clock or SystemClock()
        self._oracle = oracle
        self._lock = threading.Lock()

        self._db = SqliteDB(path=self.db_path)
        self._store = SqliteStateStore(db=self._db)

        if self._store.exists():
            self.state = ensure_state(self._store.read())
            self._check_identity_fail_closed()
        else:
            self.state = self._initial_state(
                admin=admin,
                treasury=treasury,
                weight_reporter=weight_reporter or admin,
                sweep_grace_epochs=sweep_grace_epochs,
            )
            if genesis is not None and not genesis.is_empty():
                self._provision_genesis(genesis)
            self._store.write(self.state)
            log.info("engine initialised engine_id=%s epoch_length=%s", self.engine_id, self.epochs.epoch_length)

    @classmethod
    def from_config(
        cls,
        cfg: EngineConfig,
        *,
        clock: Optional[Clock] = None,
        oracle: Optional[weights.WeightOracle] = None,
    ) -> "EpochFlowEngine":
        return cls(
            db_path=cfg.db_path,
            engine_id=cfg.engine_id,
            epoch_length=cfg.epoch_length,
            admin=cfg.admin,
            treasury=cfg.treasury,
            weight_reporter=cfg.weight_reporter,
            sweep_grace_epochs=cfg.sweep_grace_epochs,
            require_signatures=cfg.require_signatures,
            clock=clock,
            oracle=oracle,
            genesis=cfg.genesis,
        )

    def _initial_state(self, *, admin: str, treasury: str, weight_reporter: str, sweep_grace_epochs: int) -> Json:
        st: Json = {
            "engine_id": self.engine_id,
            "params": {
                "epoch_length": int(self.epochs.epoch_length),
                "admin": str(admin),
                "treasury": str(treasury),
                "weight_reporter": str(weight_reporter),
                "sweep_grace_epochs": int(sweep_grace_epochs),
            },
            "op_seq": 0,
            "last_op_ts": 0,
            "created_ms": _now_ms(),
        }
        return ensure_state(st)

    def _check_identity_fail_closed(self) -> None:
        st_id = str(self.state.get("engine_id") or "").strip()
        if st_id and st_id != self.engine_id:
            raise EngineBootError(f"engine_id mismatch: db={st_id!r} engine={self.engine_id!r}. Refuse to start.")

        params = self.state.get("params") or {}
        st_len = _safe_int(params.get("epoch_length"), 0)
        if st_len != int(self.epochs.epoch_length):
            raise EngineBootError(
                f"epoch_length mismatch: db={st_len} configured={self.epochs.epoch_length}. "
                "Epoch length is fixed for the lifetime of a database. Refuse to start."
            )

    def _provision_genesis(self, genesis: GenesisConfig) -> None:
        admin = str(self.state["params"]["admin"])
        ctx = self.context()
        working = copy.deepcopy(self.state)
        for op, items in (
            ("STREAM_CREATE", genesis.streams),
            ("LEDGER_CREATE", genesis.ledgers),
            ("FEE_ROUTE_CREATE", genesis.fee_routes),
        ):
            for payload in items:
                apply_op(working, OpEnvelope(op=op, caller=admin, payload=dict(payload)), ctx)
        self.state = working
        log.info(
            "genesis provisioned streams=%s ledgers=%s fee_routes=%s",
            len(genesis.streams),
            len(genesis.ledgers),
            len(genesis.fee_routes),
        )

    # ----------------------------
    # Context
    # ----------------------------

    def now(self) -> int:
        return int(self._clock.now())

    def context(self, now: Optional[int] = None) -> OpContext:
        t = self.now() if now is None else int(now)
        return OpContext(now=t, clock=self.epochs, oracle=self._oracle)

    def epoch_info(self) -> Json:
        ctx = self.context()
        return {
            "now": ctx.now,
            "epoch_length": int(self.epochs.epoch_length),
            "current_epoch": ctx.current_epoch,
            "next_epoch": ctx.next_epoch,
            "epoch_number": self.epochs.epoch_number(ctx.now),
            "seconds_until_next_epoch": self.epochs.time_until_next_epoch(ctx.now),
        }

    # ----------------------------
    # Mutation
    # ----------------------------

    def _admit(self, working: Json, env: OpEnvelope) -> None:
        """Signature and nonce gate. Mutates only the working copy."""
        if not self.require_signatures:
            return

        require_identity(env.caller)

        want = identity_nonce(working, env.caller) + 1
        if int(env.nonce) != want:
            raise BadNonce({"caller": env.caller, "nonce": int(env.nonce), "expected": want})

        payload = dict(env.payload or {})
        if env.op == "IDENTITY_REGISTER":
            # The key being bound vouches for its own registration.
            pubkey = str(payload.get("pubkey") or "")
            msg = canonical_op_message(op=env.op, caller=env.caller, nonce=env.nonce, payload=payload)
            ok = bool(pubkey) and bool(env.sig) and verify_ed25519_signature(message=msg, sig=env.sig, pubkey=pubkey)
            info: Json = {"reason": "invalid_signature"}
        else:
            ok, info = verify_op_sig_against_any_key(
                state=working,
                op=env.op,
                caller=env.caller,
                nonce=env.nonce,
                payload=payload,
                sig=env.sig,
            )
        if not ok:
            raise InvalidSignature({"caller": env.caller, "op": env.op, **info})

    def submit(self, env: Any) -> Json:
        """Apply one externally submitted op atomically and return its receipt.

        Raises EngineError (or a subclass) when the op is rejected.
        """
        return self._commit(env, admit=True)

    def submit_internal(self, env: Any) -> Json:
        """Apply an op originating inside the process (keeper loop, genesis tooling).

        Skips the signature and nonce gate; every domain check still applies.
        """
        return self._commit(env, admit=False)

    def _commit(self, env: Any, *, admit: bool) -> Json:
        op_env = env if isinstance(env, OpEnvelope) else OpEnvelope.from_json(env)

        with self._lock:
            ctx = self.context()
            working = copy.deepcopy(self.state)
            try:
                if admit:
                    self._admit(working, op_env)
                result = apply_op(working, op_env, ctx)
            except EngineError as e:
                metrics.inc_counter("ops_rejected_total", op=op_env.op, code=e.code)
                log.info("op rejected op=%s caller=%s code=%s reason=%s", op_env.op, op_env.caller, e.code, e.reason)
                raise

            if admit and self.require_signatures:
                bump_nonce(working, op_env.caller, op_env.nonce)
            working["op_seq"] = _safe_int(working.get("op_seq"), 0) + 1
            working["last_op_ts"] = int(ctx.now)

            receipt: Json = {"ok": True, "op": op_env.op, "seq": working["op_seq"], "result": result, "ts": int(ctx.now)}
            self._store.commit_op(working, envelope=op_env.to_json(), receipt=receipt)
            self.state = working

        self._record_metrics(op_env, result)
        log.info("op applied op=%s caller=%s seq=%s", op_env.op, op_env.caller, receipt["seq"])
        return receipt

    def _record_metrics(self, env: OpEnvelope, result: Json) -> None:
        op = env.op
        metrics.inc_counter("ops_applied_total", op=op)
        metrics.set_gauge("op_seq", _safe_int(self.state.get("op_seq"), 0))
        dripped = _safe_int(result.get("dripped"), 0)
        if dripped > 0:
            metrics.inc_counter("burn_destroyed_total", dripped, stream=str((env.payload or {}).get("stream_id") or ""))
        amount = _safe_int(result.get("amount"), 0)
        if amount <= 0:
            return
        ledger = str((env.payload or {}).get("ledger_id") or "")
        if op in {"LEDGER_CLAIM", "LEDGER_CLAIM_MANY"}:
            metrics.inc_counter("claims_paid_total", amount, ledger=ledger)
        elif op == "LEDGER_REFUND":
            metrics.inc_counter("refunds_paid_total", amount, ledger=ledger)
        elif op == "LEDGER_SWEEP":
            metrics.inc_counter("swept_total", amount, ledger=ledger)

    def publish_state_gauges(self) -> None:
        """Republish per-stream and per-ledger gauges from current state.

        Streams export their accounting fields; ledgers export the balance
        their holder carries in each asset.
        """
        with self._lock:
            st, ctx = self._read_view()
            streams = [burn_stream.stream_view(st, rec, ctx) for _, rec in sorted((st.get("streams") or {}).items())]
            held = []
            for lid, rec in sorted((st.get("ledgers") or {}).items()):
                for kind in sorted((st.get("assets") or {}).keys()):
                    bal = assets.balance_of(st, kind, str(rec.get("holder") or ""))
                    if bal:
                        held.append((lid, kind, bal))

        metrics.clear_gauges("stream_")
        metrics.clear_gauges("ledger_")
        for v in streams:
            labels = {"stream": v["stream_id"], "asset": v["asset"]}
            for field in ("pending_amount", "active_amount", "remaining_active", "burnable_now", "unaccounted", "destroyed_total"):
                metrics.set_gauge(f"stream_{field}", v[field], **labels)
        for lid, kind, bal in held:
            metrics.set_gauge("ledger_held_balance", bal, ledger=lid, asset=kind)

    def _checkpoint_due(self, stream_id: str) -> bool:
        v = self.stream_view(stream_id)
        if v["unaccounted"] > 0 or v["burnable_now"] > 0:
            return True
        pending_epoch = v["pending_epoch"]
        return v["active_amount"] == 0 and pending_epoch is not None and self.now() >= int(pending_epoch)

    def checkpoint_all(self) -> Dict[str, Json]:
        """Checkpoint every stream; a stream that fails is reported, not raised."""
        with self._lock:
            stream_ids = sorted((self.state.get("streams") or {}).keys())

        out: Dict[str, Json] = {}
        for sid in stream_ids:
            if not self._checkpoint_due(sid):
                continue
            try:
                receipt = self.submit_internal(OpEnvelope(op="STREAM_CHECKPOINT", payload={"stream_id": sid}))
                out[sid] = receipt["result"]
            except EngineError as e:
                log.warning("checkpoint failed stream=%s code=%s reason=%s", sid, e.code, e.reason)
                out[sid] = {"error": e.code, "reason": e.reason}
        return out

    # ----------------------------
    # Reads
    # ----------------------------

    def _aligned(self, epoch: int) -> int:
        if int(epoch) < 0 or not self.epochs.is_aligned(epoch):
            raise InvalidEpoch({"epoch": int(epoch), "epoch_length": int(self.epochs.epoch_length)})
        return int(epoch)

    def _read_view(self) -> tuple[Json, OpContext]:
        """State and context for a read.

        A snapshotting oracle writes into whatever state it is given, so reads
        against an external oracle run on a throwaway copy.
        """
        ctx = self.context()
        if self._oracle is None:
            return self.state, ctx
        return copy.deepcopy(self.state), ctx

    def read_state(self) -> Json:
        with self._lock:
            return copy.deepcopy(self.state)

    def stream_view(self, stream_id: str) -> Json:
        with self._lock:
            st, ctx = self._read_view()
            return burn_stream.stream_view(st, burn_stream.get_stream(st, stream_id), ctx)

    def ledger_view(self, ledger_id: str) -> Json:
        with self._lock:
            st, _ = self._read_view()
            return distribution.ledger_view(st, distribution.get_ledger(st, ledger_id))

    def ledger_epoch_view(self, ledger_id: str, epoch: int) -> Json:
        with self._lock:
            st, ctx = self._read_view()
            return distribution.epoch_view(st, distribution.get_ledger(st, ledger_id), epoch=self._aligned(epoch), ctx=ctx)

    def preview_claim(self, ledger_id: str, *, identity: str, asset: str, epoch: int) -> int:
        with self._lock:
            st, ctx = self._read_view()
            rec = distribution.get_ledger(st, ledger_id)
            return distribution.preview_claim(st, rec, identity=identity, asset=asset, epoch=self._aligned(epoch), ctx=ctx)

    def weights_view(self, epoch: int, target: str) -> Json:
        with self._lock:
            return weights.weights_view(self.state, epoch=self._aligned(epoch), target=target)

    def balance_of(self, asset: str, holder: str) -> int:
        with self._lock:
            return assets.balance_of(self.state, asset, holder)

    def asset_summary(self, asset: str) -> Optional[Json]:
        with self._lock:
            return assets.asset_summary(self.state, asset)

    def identity_nonce(self, identity: str) -> int:
        with self._lock:
            return identity_nonce(self.state, identity)

    def recent_ops(self, limit: int = 50) -> List[Json]:
        return self._store.recent_ops(limit)
