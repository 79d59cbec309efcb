"""Error taxonomy for the fleet simulation and dispatch core.

Every exception raised on purpose by this package derives from FleetSimError so that an owning
process can tell core failures apart from programming errors. The classes map onto the recovery
policy of each component:

    NoCandidateDrone    eligibility filtering produced no drone; needs human intervention.
    DroneNotFound       repository lookup miss; propagated, never retried.
    OrderNotFound       repository lookup miss; propagated, never retried.
    TickStepFailure     one drone failed during a tick; the scheduler logs it and moves on.
    PersistenceFailure  a sink or repository write failed; in-memory state stays authoritative.
    IllegalTransition   a state machine refused a transition.
"""


class FleetSimError(Exception):
    """Base class for all errors raised by fleetsim."""


class NoCandidateDrone(FleetSimError):
    """Raised when no drone passes the eligibility filter for an order.

    Attributes:
        order_id: Order the selection was made for.
        excluded: Drone ids that were removed from consideration up front.
    """

    def __init__(self, order_id: str, excluded: tuple[str, ...] = ()):
        self.order_id = order_id
        self.excluded = excluded
        msg = f"No eligible drone available for order {order_id}"
        if excluded:
            msg += f" (excluding {', '.join(excluded)})"
        super().__init__(msg)


class DroneNotFound(FleetSimError, LookupError):
    """Raised when a drone record does not exist."""

    def __init__(self, drone_id: str):
        self.drone_id = drone_id
        super().__init__(f"Drone {drone_id} not found")


class OrderNotFound(FleetSimError, LookupError):
    """Raised when an order record does not exist."""

    def __init__(self, order_id: str):
        self.order_id = order_id
        super().__init__(f"Order {order_id} not found")


class TickStepFailure(FleetSimError):
    """A single drone's update failed during a tick.

    The scheduler catches this per drone; the drone's committed state stays as it was before
    the tick started.
    """

    def __init__(self, drone_id: str, cause: BaseException):
        self.drone_id = drone_id
        self.cause = cause
        super().__init__(f"Tick failed for drone {drone_id}: {cause}")


class PersistenceFailure(FleetSimError):
    """A write to a telemetry sink or repository failed."""

    def __init__(self, target: str, cause: BaseException):
        self.target = target
        self.cause = cause
        super().__init__(f"Persistence failure in {target}: {cause}")


class IllegalTransition(FleetSimError, ValueError):
    """Raised by a state machine when a transition is not in its graph."""

    def __init__(self, frm, to):
        self.frm = frm
        self.to = to
        super().__init__(f"Illegal transition {frm.name} → {to.name}")
