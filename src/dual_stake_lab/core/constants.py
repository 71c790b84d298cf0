"""Core constants shared across DualStakeLab modules."""

from __future__ import annotations

# Fixed-point scale for amounts, prices and USD values (18 decimals).
WAD = 10**18

# Basis-point denominator used by every ratio, fee and weight.
BPS = 10_000

# Largest representable ledger value.  Results above this bound are rejected
# instead of wrapping so that ledgers stay compatible with uint256 accounting.
MAX_UINT256 = 2**256 - 1

SECONDS_PER_DAY = 86_400

# Rebalance history entries retained by the controller.
HISTORY_LIMIT = 100

__all__ = ["WAD", "BPS", "MAX_UINT256", "SECONDS_PER_DAY", "HISTORY_LIMIT"]
