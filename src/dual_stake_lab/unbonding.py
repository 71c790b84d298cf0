"""Queue of withdrawals waiting out their unbonding period."""

from __future__ import annotations

from collections.abc import Iterator

import pandas as pd

from .core.models import AssetKind, UnbondingRequest
from .errors import AlreadyProcessed, NotYetUnlocked, UnknownRequest


class UnbondingQueue:
    """FIFO of :class:`UnbondingRequest` rows; readiness is polled, not timed."""

    def __init__(self) -> None:
        self._requests: dict[int, UnbondingRequest] = {}
        # unprocessed requests only, in enqueue order
        self._pending: dict[int, UnbondingRequest] = {}
        self._next_id = 1

    def enqueue(
        self, user: str, amount: int, asset: AssetKind, now: float, period: float
    ) -> UnbondingRequest:
        request = UnbondingRequest(
            request_id=self._next_id,
            user=user,
            amount=amount,
            asset=asset,
            request_time=now,
            unlock_time=now + period,
        )
        self._requests[request.request_id] = request
        self._pending[request.request_id] = request
        self._next_id += 1
        return request

    def get(self, request_id: int) -> UnbondingRequest:
        try:
            return self._requests[request_id]
        except KeyError:
            raise UnknownRequest(f"no unbonding request {request_id}") from None

    def check_releasable(self, request_id: int, now: float) -> UnbondingRequest:
        request = self.get(request_id)
        if request.processed:
            raise AlreadyProcessed(f"request {request_id} was already processed")
        if now < request.unlock_time:
            raise NotYetUnlocked(
                f"request {request_id} unlocks in {request.unlock_time - now:.0f}s"
            )
        return request

    def pending(self, asset: AssetKind | None = None) -> list[UnbondingRequest]:
        return [
            r
            for r in self._pending.values()
            if asset is None or r.asset is asset
        ]

    def ready(self, now: float) -> list[UnbondingRequest]:
        return [r for r in self.pending() if now >= r.unlock_time]

    def queued_total(self, asset: AssetKind) -> int:
        return sum(r.amount for r in self.pending(asset))

    def mark_processed(self, request_id: int) -> None:
        self.get(request_id).processed = True
        self._pending.pop(request_id, None)

    def to_dataframe(self) -> pd.DataFrame:
        return pd.DataFrame([r.to_dict() for r in self._requests.values()])

    def __len__(self) -> int:
        return len(self._requests)

    def __iter__(self) -> Iterator[UnbondingRequest]:
        return iter(self._requests.values())


__all__ = ["UnbondingQueue"]
