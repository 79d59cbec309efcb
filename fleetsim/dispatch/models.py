"""Value objects produced by scoring, dispatch and live tracking."""

from dataclasses import dataclass, field
from enum import Enum

from fleetsim.geo import GeoPoint
from fleetsim.store import DroneRecord, OrderRecord

from .routing import Route, Waypoint


class FailoverReason(Enum):
    CRITICAL_BATTERY = "critical_battery"
    DELAYED_DELIVERY = "delayed_delivery"


@dataclass(frozen=True)
class DispatchCandidate:
    """A scored drone for one order; only lives for one selection pass."""

    drone: DroneRecord
    score: float
    distance_to_pickup_km: float
    estimated_time_minutes: float

    @property
    def drone_id(self) -> str:
        return self.drone.drone_id

    def sort_key(self) -> tuple[float, float, float, str]:
        """Best first: score desc, battery desc, distance asc, then drone id."""
        return (-self.score, -self.drone.battery_level, self.distance_to_pickup_km, self.drone.drone_id)


@dataclass(frozen=True)
class DispatchResult:
    order: OrderRecord
    assigned_drone: DroneRecord
    paused_orders: tuple[str, ...]
    route: Route
    estimated_time_minutes: float


@dataclass(frozen=True)
class FailoverResult:
    """Outcome of a failover attempt.

    ``success`` and ``requires_manual_intervention`` are mutually exclusive; when no backup
    drone exists the order keeps its old drone and ground staff are notified.
    """

    order_id: str
    reason: FailoverReason
    success: bool
    old_drone_id: str | None = None
    new_drone_id: str | None = None
    route: Route | None = None
    requires_manual_intervention: bool = False
    message: str = ""


@dataclass(frozen=True)
class Progress:
    percentage: float
    current_waypoint: Waypoint | None = None
    next_waypoint: Waypoint | None = None
    remaining_distance_km: float = 0.0


@dataclass(frozen=True)
class TrackingAlert:
    type: str
    severity: str
    message: str


@dataclass(frozen=True)
class TrackingUpdate:
    """Result of one live-tracking check of an emergency order."""

    order_id: str
    drone_id: str | None
    timestamp: float
    location: GeoPoint | None = None
    battery_level: float | None = None
    progress: Progress | None = None
    alerts: tuple[TrackingAlert, ...] = ()
    failover: FailoverResult | None = None
    route_adjustments: tuple[str, ...] = ()
    stopped: bool = False

    def as_dict(self) -> dict[str, object]:
        return {
            "orderId": self.order_id,
            "droneId": self.drone_id,
            "timestamp": self.timestamp,
            "location": self.location.as_dict() if self.location else None,
            "battery": self.battery_level,
            "progress": None
            if self.progress is None
            else {
                "percentage": self.progress.percentage,
                "remainingDistance": self.progress.remaining_distance_km,
                "currentWaypoint": self.progress.current_waypoint.as_dict()
                if self.progress.current_waypoint
                else None,
                "nextWaypoint": self.progress.next_waypoint.as_dict() if self.progress.next_waypoint else None,
            },
            "alerts": [{"type": a.type, "severity": a.severity, "message": a.message} for a in self.alerts],
            "failover": None
            if self.failover is None
            else {"success": self.failover.success, "reason": self.failover.reason.value},
        }


@dataclass
class TrackingSession:
    """Live monitoring of one emergency order; owned by the FailoverMonitor."""

    order_id: str
    drone_id: str | None
    started_at: float
    last_update_at: float | None = None
    update_count: int = 0
    failovers: list[FailoverResult] = field(default_factory=list)

    def duration(self, now: float) -> float:
        return max(0.0, now - self.started_at)
