# src/epochflow/ledger/constants.py
from __future__ import annotations

"""Engine-wide constants.

Epochs are identified by their start timestamp (unix seconds), so an epoch
boundary always lands on a predictable wall-clock instant.
"""

# 7 days
EPOCH_LENGTH_SECONDS: int = 7 * 24 * 60 * 60

# Basis points denominator for fee splits.
BPS_DENOMINATOR: int = 10_000

# Extra fully-elapsed epochs an internal rewards ledger waits before its
# zero-weight value may be swept.
DEFAULT_SWEEP_GRACE_EPOCHS: int = 4

# Canonical identities.
DEFAULT_ADMIN_ID: str = "ADMIN"
TREASURY_ACCOUNT_ID: str = "TREASURY"

# Stranded-value policies for distribution ledgers.
POLICY_REFUND: str = "refund"
POLICY_SWEEP: str = "sweep"
LEDGER_POLICIES = (POLICY_REFUND, POLICY_SWEEP)

# Holder namespaces inside the asset book.
STREAM_HOLDER_PREFIX: str = "stream:"
LEDGER_HOLDER_PREFIX: str = "ledger:"
ROUTE_HOLDER_PREFIX: str = "route:"
