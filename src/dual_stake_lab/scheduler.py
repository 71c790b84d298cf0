"""Periodic keeper loop for unattended pools."""

from __future__ import annotations

import logging
import threading
from typing import TYPE_CHECKING

from .errors import DualStakeError

if TYPE_CHECKING:
    from .engine import DualStakeEngine
    from .rebalance import RebalanceOutcome

logger = logging.getLogger(__name__)


class RebalanceScheduler:
    """Release matured withdrawals and rebalance every ``interval_seconds``.

    Each tick re-arms a daemon :class:`threading.Timer`.  Errors raised by a
    tick are logged and the loop keeps running.
    """

    def __init__(
        self, engine: "DualStakeEngine", interval_seconds: float, *, caller: str = "scheduler"
    ) -> None:
        if interval_seconds <= 0:
            raise ValueError("interval_seconds must be positive")
        self.engine = engine
        self.interval_seconds = interval_seconds
        self.caller = caller
        self.runs = 0
        self._timer: threading.Timer | None = None
        self._stopped = threading.Event()

    @property
    def running(self) -> bool:
        return self._timer is not None and not self._stopped.is_set()

    def run_once(self) -> "RebalanceOutcome | None":
        self.runs += 1
        released = self.engine.process_ready_requests()
        if released:
            logger.info("Scheduler released %s unbonding requests", len(released))
        if not self.engine.needs_rebalance():
            return None
        return self.engine.rebalance(self.caller)

    def _tick(self) -> None:
        if self._stopped.is_set():
            return
        try:
            self.run_once()
        except DualStakeError as exc:
            logger.warning("Scheduled run failed: %s", exc)
        except Exception:
            logger.exception("Unexpected error in scheduled run")
        self._arm()

    def _arm(self) -> None:
        if self._stopped.is_set():
            return
        self._timer = threading.Timer(self.interval_seconds, self._tick)
        self._timer.daemon = True
        self._timer.start()

    def start(self) -> None:
        if self.running:
            return
        self._stopped.clear()
        logger.info("Scheduler started (every %ss)", self.interval_seconds)
        self._arm()

    def stop(self) -> None:
        self._stopped.set()
        if self._timer is not None:
            self._timer.cancel()
            self._timer = None
        logger.info("Scheduler stopped after %s runs", self.runs)


__all__ = ["RebalanceScheduler"]
