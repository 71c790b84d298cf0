"""Result wrapper for calls into external collaborators.

Every suspension point of the engine (oracle reads, swaps, delegation moves,
reward claims, payouts) goes through :func:`guarded_call`.  Failures come back
as a :class:`CallResult` carrying a :class:`~dual_stake_lab.errors.FailureKind`
so the controller decides retry and circuit-breaker policy in one place.
"""

from __future__ import annotations

import logging
from collections.abc import Callable
from dataclasses import dataclass
from typing import Any, Generic, TypeVar

from ..errors import ExecutionError, ExternalCallFailed, FailureKind, TransientCallError

logger = logging.getLogger(__name__)

T = TypeVar("T")

TRANSIENT_ERRORS: tuple[type[BaseException], ...] = (
    TimeoutError,
    ConnectionError,
    TransientCallError,
)


def classify_failure(exc: BaseException) -> FailureKind:
    if isinstance(exc, ExecutionError):
        return exc.kind
    if isinstance(exc, TRANSIENT_ERRORS):
        return FailureKind.TRANSIENT
    return FailureKind.TERMINAL


@dataclass(frozen=True)
class CallResult(Generic[T]):
    label: str
    value: T | None = None
    error: Exception | None = None
    kind: FailureKind | None = None

    @property
    def ok(self) -> bool:
        return self.error is None

    def unwrap(self) -> T:
        if self.error is not None:
            raise ExternalCallFailed(
                f"{self.label} failed: {self.error}", self.kind or FailureKind.TERMINAL
            ) from self.error
        return self.value  # type: ignore[return-value]


def guarded_call(label: str, fn: Callable[..., T], *args: Any, **kwargs: Any) -> CallResult[T]:
    try:
        value = fn(*args, **kwargs)
    except Exception as exc:
        kind = classify_failure(exc)
        logger.warning("External call %s failed (%s): %s", label, kind.value, exc)
        return CallResult(label=label, error=exc, kind=kind)
    return CallResult(label=label, value=value)


__all__ = ["TRANSIENT_ERRORS", "CallResult", "classify_failure", "guarded_call"]
