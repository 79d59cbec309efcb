"""Countdown timers and the deferred-action registry built on them.

Timers count simulated seconds down as the scheduler advances them; they never sleep. A
DeferredActions registry keys every pending timer by id so an owner can cancel one action or all
of them deterministically, for instance when the simulation stops.

Example Usage:
    >>> fired = []
    >>> actions = DeferredActions()
    >>> timer_id = actions.schedule(30.0, lambda: fired.append("done"), timer_id="mission:d1")
    >>> actions.advance(10.0)
    []
    >>> actions.advance(20.0)
    ['mission:d1']
    >>> fired
    ['done']
"""

from collections.abc import Callable
import itertools
import logging
import threading

logger = logging.getLogger(__name__)

_ZERO_TIME = 0.0


class Timer:
    """Countdown timer over simulated seconds.

    Note:
        Timer instances should not be reused across unrelated operations. Create a new
        Timer for each deferred action.

    Attributes:
        _duration (float): Remaining seconds. Reaches zero or below when complete.
        action (Callable | None): Called once by the owning registry on completion.
    """

    _duration: float

    def __init__(self, duration: float, action: Callable[[], None] | None = None) -> None:
        if duration < _ZERO_TIME:
            msg = f"Timer duration cannot be negative: {duration}"
            raise ValueError(msg)
        self._duration = float(duration)
        self.action = action

    @property
    def duration(self) -> float:
        """Remaining seconds."""
        return self._duration

    @property
    def done(self) -> bool:
        return self._duration <= _ZERO_TIME

    def _advance(self, delta: float) -> None:
        self._duration -= delta

    def reset(self, duration: float) -> None:
        """Restart the countdown from ``duration`` seconds."""
        self._duration = float(duration)


class DeferredActions:
    """Thread-safe registry of timers, each firing an action once when it runs out.

    Actions fire from within :meth:`advance`, outside the registry lock, so an action may
    schedule or cancel other actions. An action that raises is logged and dropped.
    """

    def __init__(self):
        self._timers: dict[str, Timer] = {}
        self._lock = threading.Lock()
        self._ids = itertools.count(1)

    def schedule(self, delay: float, action: Callable[[], None], timer_id: str | None = None) -> str:
        """Schedule ``action`` to run after ``delay`` simulated seconds.

        Scheduling under an id that is already pending replaces the earlier timer.

        Returns:
            str: The timer id, usable with :meth:`cancel`.
        """
        timer = Timer(delay, action)
        with self._lock:
            if timer_id is None:
                timer_id = f"timer-{next(self._ids)}"
            self._timers[timer_id] = timer
        return timer_id

    def cancel(self, timer_id: str) -> bool:
        with self._lock:
            return self._timers.pop(timer_id, None) is not None

    def cancel_all(self) -> int:
        with self._lock:
            count = len(self._timers)
            self._timers.clear()
        return count

    def pending(self) -> list[str]:
        with self._lock:
            return list(self._timers)

    def remaining(self, timer_id: str) -> float | None:
        with self._lock:
            timer = self._timers.get(timer_id)
            return None if timer is None else timer.duration

    def advance(self, delta: float) -> list[str]:
        """Advance every timer by ``delta`` seconds and fire the ones that completed.

        Returns:
            list[str]: Ids of the timers that fired, in scheduling order.
        """
        if delta < _ZERO_TIME:
            return []

        due: list[tuple[str, Timer]] = []
        with self._lock:
            for timer_id, timer in list(self._timers.items()):
                timer._advance(delta)
                if timer.done:
                    due.append((timer_id, timer))
                    del self._timers[timer_id]

        for timer_id, timer in due:
            try:
                timer.action()
            except Exception:
                logger.exception("Deferred action %s failed", timer_id)
        return [timer_id for timer_id, _ in due]

    def __len__(self) -> int:
        with self._lock:
            return len(self._timers)
