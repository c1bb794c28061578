"""Background task that periodically refreshes a cache."""
import threading
import time
from typing import Callable, Optional, Union
from .config import logger

# Longest single Event.wait; long intervals are waited out in steps of this size.
MAX_WAIT = 3600.0


class RefreshScheduler:
    """
    Runs ``refresh`` on a daemon thread every ``interval`` seconds.

    The interval may be a number or a callable; a callable is re-read
    before every wait so the period follows the cache's current TTLs.
    Once stopped, the scheduler cannot be started again.
    """

    def __init__(self, refresh: Callable[[], None], interval: Union[float, Callable[[], float]],
                 name: str = "dns-cache-refresh"):
        self._refresh = refresh
        self._interval = interval if callable(interval) else (lambda: interval)
        self._name = name
        self._stop = threading.Event()
        self._thread: Optional[threading.Thread] = None
        self._start_lock = threading.Lock()

    @property
    def running(self) -> bool:
        return self._thread is not None and self._thread.is_alive()

    @property
    def stopped(self) -> bool:
        return self._stop.is_set()

    def start(self):
        """Start the refresh thread. Starting twice is a no-op."""
        with self._start_lock:
            if self._stop.is_set():
                raise RuntimeError("refresh scheduler cannot be restarted after stop()")
            if self._thread is not None:
                return
            self._thread = threading.Thread(target=self._run, name=self._name, daemon=True)
            self._thread.start()
        logger.debug(f"Refresh scheduler {self._name} started")

    def stop(self, timeout: Optional[float] = 2.0):
        """Signal the refresh thread to exit and wait for it."""
        with self._start_lock:
            if self._stop.is_set():
                return
            self._stop.set()
            thread = self._thread
        if thread is not None and thread is not threading.current_thread():
            thread.join(timeout)
        logger.debug(f"Refresh scheduler {self._name} stopped")

    def _wait(self) -> bool:
        """Wait out one interval. Returns True once stop() was called."""
        deadline = time.monotonic() + self._interval()
        while True:
            remaining = deadline - time.monotonic()
            if remaining <= 0:
                return False
            if self._stop.wait(min(remaining, MAX_WAIT)):
                return True

    def _run(self):
        while not self._wait():
            try:
                self._refresh()
            except Exception:
                logger.exception(f"Refresh scheduler {self._name}: sweep failed")
