"""Background expiry of uncollected holds and due-date reminders."""

import logging
import threading
from typing import Optional

from sqlalchemy.exc import SQLAlchemyError

from ..errors import CirculationError
from .manager import ReservationQueue, SweepResult

logger = logging.getLogger(__name__)


class ExpirySweeper:
    """Runs the hold expiry and due reminders on an interval in a daemon thread."""

    def __init__(self, reservations: ReservationQueue, interval: Optional[float] = None):
        self.reservations = reservations
        self.interval = interval if interval is not None else reservations.config.sweep_interval_seconds
        self._stop = threading.Event()
        self._thread: Optional[threading.Thread] = None

    @property
    def running(self) -> bool:
        return self._thread is not None and self._thread.is_alive()

    def run_once(self) -> Optional[SweepResult]:
        """One sweep. Failures are logged and left for the next pass."""
        try:
            result = self.reservations.expire_stale()
            self.reservations.engine.send_due_reminders(self.reservations.config.due_reminder_days)
            return result
        except (CirculationError, SQLAlchemyError):
            logger.exception("Reservation sweep failed")
            return None

    def _run(self) -> None:
        logger.debug("Expiry sweeper started (every %ss)", self.interval)
        while not self._stop.is_set():
            self.run_once()
            self._stop.wait(self.interval)
        logger.debug("Expiry sweeper stopped")

    def start(self) -> None:
        if self.running:
            return
        self._stop.clear()
        self._thread = threading.Thread(target=self._run, name="circdesk-sweeper", daemon=True)
        self._thread.start()

    def stop(self, timeout: Optional[float] = None) -> None:
        self._stop.set()
        if self._thread is not None:
            self._thread.join(timeout)
            self._thread = None

    def __enter__(self) -> "ExpirySweeper":
        self.start()
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.stop()
