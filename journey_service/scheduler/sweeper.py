"""
Time-window sweeper - keeps time-bound journeys' activation in sync.

Runs as a background thread that calls
JourneyEngine.check_and_update_time_based_journeys() every
SWEEP_INTERVAL_SECONDS. The engine itself has no timing logic.
"""
import threading
from typing import List, Optional

from journey_service.config import config
from journey_service.flow_control.journey.engine import JourneyEngine
from journey_service.logging_config import get_logger

logger = get_logger(__name__)


class TimeWindowSweeper:
    """Periodic trigger for the engine's time-window sweep."""

    def __init__(self, engine: JourneyEngine, interval_seconds: Optional[float] = None):
        self.engine = engine
        self.interval_seconds = (
            config.scheduler.sweep_interval_seconds
            if interval_seconds is None
            else interval_seconds
        )
        if self.interval_seconds <= 0:
            raise ValueError("Sweep interval must be positive")

        self._thread: Optional[threading.Thread] = None
        self._stop_event = threading.Event()
        self._lock = threading.Lock()

    @property
    def running(self) -> bool:
        return self._thread is not None and self._thread.is_alive()

    def run_once(self) -> List[str]:
        """Run one sweep. Returns IDs of journeys whose activation changed."""
        changed = self.engine.check_and_update_time_based_journeys()
        if changed:
            logger.info("Time window sweep changed journeys", journey_ids=changed)
        return changed

    def _loop(self) -> None:
        logger.info("Sweeper started", interval_seconds=self.interval_seconds)

        while not self._stop_event.is_set():
            try:
                self.run_once()
            except Exception:
                logger.exception("Sweeper loop error")

            self._stop_event.wait(self.interval_seconds)

        logger.info("Sweeper stopped")

    def start(self) -> None:
        """Start the sweeper in a background thread."""
        with self._lock:
            if self.running:
                logger.warning("Sweeper already running")
                return

            self._stop_event.clear()
            self._thread = threading.Thread(
                target=self._loop,
                daemon=True,
                name="TimeWindowSweeper",
            )
            self._thread.start()

    def stop(self, timeout: Optional[float] = None) -> None:
        """Stop the sweeper and wait for the thread to exit."""
        with self._lock:
            self._stop_event.set()
            if self._thread:
                self._thread.join(timeout=timeout)
                self._thread = None
