# src/epochflow/runtime/state_invariants.py
from __future__ import annotations

"""State invariants / normalization helpers.

Engine state is a nested JSON-like dict that is mutated deterministically by
apply_* modules. This module creates only the core containers every domain
relies on; each apply module owns the shape of its own records.
"""

from collections.abc import MutableMapping
from typing import Any, Dict

Json = Dict[str, Any]

_CORE_CONTAINERS = ("params", "identities", "assets", "weights", "streams", "ledgers", "fee_routes")


def ensure_state(st: Any) -> Json:
    """Ensure `st` is a dict and contains core keys.

    Raises:
        TypeError: if st is not a MutableMapping or a core key has the wrong type
    """
    if not isinstance(st, MutableMapping):
        raise TypeError(f"state must be MutableMapping, got {type(st)}")

    for key in _CORE_CONTAINERS:
        cur = st.get(key)
        if cur is None:
            st[key] = {}
        elif not isinstance(cur, dict):
            # Fail closed: do not attempt to coerce arbitrary types.
            raise TypeError(f"state[{key!r}] must be dict, got {type(cur)}")

    return st  # type: ignore[return-value]


__all__ = ["ensure_state"]
