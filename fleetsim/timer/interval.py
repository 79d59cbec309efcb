"""Repeating background jobs on a dedicated thread.

An IntervalJob calls a function every ``interval`` wall-clock seconds until cancelled. The
wait uses ``threading.Event.wait`` so cancellation takes effect immediately rather than after
the current sleep. A call that is already running when the job is cancelled is allowed to
finish.
"""

from collections.abc import Callable
import logging
import threading

logger = logging.getLogger(__name__)


class IntervalJob:
    """Run ``fn`` every ``interval`` seconds on a daemon thread."""

    def __init__(self, interval: float, fn: Callable[[], object], name: str | None = None):
        if interval <= 0:
            msg = f"Interval must be positive, got {interval}"
            raise ValueError(msg)
        self.interval = interval
        self.name = name or getattr(fn, "__name__", "interval-job")
        self.runs = 0
        self._fn = fn
        self._cancelled = threading.Event()
        self._thread: threading.Thread | None = None

    @property
    def running(self) -> bool:
        return self._thread is not None and self._thread.is_alive() and not self._cancelled.is_set()

    def start(self) -> None:
        if self._thread is not None:
            return
        self._thread = threading.Thread(target=self._run, name=self.name, daemon=True)
        self._thread.start()

    def cancel(self, wait: bool = True, timeout: float | None = 5.0) -> None:
        """Stop scheduling further runs; optionally wait for the thread to exit."""
        self._cancelled.set()
        thread = self._thread
        if wait and thread is not None and thread is not threading.current_thread():
            thread.join(timeout=timeout)

    def _run(self) -> None:
        while not self._cancelled.wait(self.interval):
            try:
                self._fn()
            except Exception:
                logger.exception("Interval job %s failed", self.name)
            self.runs += 1
