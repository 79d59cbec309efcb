"""Timer utilities for simulation time management and scheduling.

Components:
    Timer: Countdown timer over simulated seconds
    DeferredActions: Id-keyed registry of cancellable one-shot actions driven by the tick
    IntervalJob: Repeating wall-clock job on a background thread

Timer Lifecycle:
    1. Creation: DeferredActions.schedule() wraps the action in a Timer
    2. Advancement: the scheduler calls DeferredActions.advance(dt) once per tick
    3. Completion: the action fires and the timer is dropped
    4. Cancellation: cancel(id) or cancel_all() before it fires
"""

from .interval import IntervalJob
from .timer import DeferredActions, Timer

__all__ = ["Timer", "DeferredActions", "IntervalJob"]
