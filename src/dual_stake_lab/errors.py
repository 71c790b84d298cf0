"""Exception hierarchy raised by the DualStakeLab engine.

Errors fall into five families:

* validation errors reject bad input synchronously and never change state,
* arithmetic errors guard fixed-point math against wrapping or zero division,
* execution errors describe failed external calls during rebalancing,
* consistency errors are recoverable shortfalls (the request stays queued),
* flow errors report why a rebalance or queue operation was refused.
"""

from __future__ import annotations

from enum import Enum


class FailureKind(str, Enum):
    """Classification applied to a failed external call."""

    TRANSIENT = "transient"
    TERMINAL = "terminal"


class DualStakeError(Exception):
    """Base class for all engine errors."""


# -----------------
# Validation
# -----------------


class ValidationError(DualStakeError, ValueError):
    """Input rejected before any state was touched."""


class InsufficientAmount(ValidationError):
    pass


class BelowMinimum(ValidationError):
    pass


class StalePrice(ValidationError):
    pass


class ZeroShares(ValidationError):
    pass


class InsufficientShares(ValidationError):
    pass


# -----------------
# Arithmetic
# -----------------


class ArithmeticFault(DualStakeError, ArithmeticError):
    """Fixed-point operation refused instead of producing a wrapped value."""


class DivisionByZero(ArithmeticFault):
    pass


class ArithmeticOverflow(ArithmeticFault):
    pass


class ArithmeticUnderflow(ArithmeticFault):
    pass


# -----------------
# Execution
# -----------------


class ExecutionError(DualStakeError):
    """An external call failed while the engine was acting on it."""

    def __init__(self, message: str, kind: FailureKind = FailureKind.TERMINAL) -> None:
        super().__init__(message)
        self.kind = kind


class ExternalCallFailed(ExecutionError):
    pass


class SlippageExceeded(ExecutionError):
    def __init__(self, message: str) -> None:
        super().__init__(message, FailureKind.TRANSIENT)


class TransientCallError(Exception):
    """Raised by collaborators to mark a failure as retryable."""


# -----------------
# Consistency
# -----------------


class InsufficientLiquidity(DualStakeError):
    """Reserve could not cover a release yet; the caller should retry later."""


# -----------------
# Rebalance flow
# -----------------


class NotNeeded(DualStakeError):
    pass


class Paused(DualStakeError):
    pass


class RebalanceInProgress(DualStakeError):
    pass


class CooloffActive(DualStakeError):
    pass


# -----------------
# Unbonding queue
# -----------------


class NotYetUnlocked(DualStakeError):
    pass


class AlreadyProcessed(DualStakeError):
    pass


class UnknownRequest(DualStakeError, KeyError):
    pass


# -----------------
# Access control
# -----------------


class Unauthorized(DualStakeError, PermissionError):
    pass


__all__ = [
    "FailureKind",
    "DualStakeError",
    "ValidationError",
    "InsufficientAmount",
    "BelowMinimum",
    "StalePrice",
    "ZeroShares",
    "InsufficientShares",
    "ArithmeticFault",
    "DivisionByZero",
    "ArithmeticOverflow",
    "ArithmeticUnderflow",
    "ExecutionError",
    "ExternalCallFailed",
    "SlippageExceeded",
    "TransientCallError",
    "InsufficientLiquidity",
    "NotNeeded",
    "Paused",
    "RebalanceInProgress",
    "CooloffActive",
    "NotYetUnlocked",
    "AlreadyProcessed",
    "UnknownRequest",
    "Unauthorized",
]
