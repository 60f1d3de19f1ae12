# src/epochflow/runtime/apply/__init__.py
"""Domain-specific apply modules.

Each module implements deterministic state transitions for a subset of ops
and exposes an `apply_<domain>(state, env, ctx)` entry point that returns
None for ops it does not claim.

NOTE: Keep this package import-safe (no imports of domain_dispatch).
"""

from __future__ import annotations

__all__ = [
    "assets",
    "identity",
    "weights",
    "burn_stream",
    "distribution",
    "fees",
]
