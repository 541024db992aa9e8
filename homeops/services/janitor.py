import threading
from typing import Callable

from homeops.logging_config import get_logger

logger = get_logger("janitor")

MAX_SWEEP_INTERVAL_SECONDS = 60.0
MIN_SWEEP_INTERVAL_SECONDS = 1.0


def sweep_interval_for(ttl_seconds: float) -> float:
    """Sweep at least once per TTL, but never more often than the floor."""
    return max(min(ttl_seconds, MAX_SWEEP_INTERVAL_SECONDS), MIN_SWEEP_INTERVAL_SECONDS)


class Janitor:
    """Background thread that calls `sweep` every `interval` seconds until stopped."""

    def __init__(self, name: str, sweep: Callable[[], int], interval: float):
        self._name = name
        self._sweep = sweep
        self._interval = interval
        self._stop = threading.Event()
        self._thread = None
        if interval > 0:
            self._thread = threading.Thread(target=self._run, name=f"{name}-janitor", daemon=True)
            self._thread.start()

    @property
    def running(self) -> bool:
        return self._thread is not None and self._thread.is_alive()

    def _run(self) -> None:
        while not self._stop.wait(self._interval):
            try:
                removed = self._sweep()
            except Exception as e:
                logger.error(f"{self._name} sweep failed: {e}", exc_info=True)
                continue
            if removed:
                logger.debug(
                    f"{self._name} sweep removed expired entries",
                    extra={"context": {"removed": removed}},
                )

    def stop(self, timeout: float = 5.0) -> None:
        self._stop.set()
        if self.running and self._thread is not threading.current_thread():
            self._thread.join(timeout)
