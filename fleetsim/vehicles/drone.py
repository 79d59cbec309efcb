"""Per-drone simulation state and its flight-mode state machine.

A DroneSimState exists for every drone the scheduler is actively simulating. It is plain data:
the KinematicEngine, BatteryModel and GeofenceMonitor mutate it once per tick, while the
scheduler serialises access through the drone's lock and commits a fully advanced copy.

Flight modes:
    IDLE        on the ground, no motion
    TAKEOFF     vertical climb to cruise altitude
    FLYING      horizontal flight to a destination, or patrol without one
    DELIVERING  hovering at the destination until the mission dwell ends
    RETURNING   flying back to the home base
    LANDING     controlled descent
    EMERGENCY   fast descent, entered on critical battery; only exits to IDLE

State Transitions:
    Normal flow: IDLE → TAKEOFF → FLYING → DELIVERING → RETURNING → LANDING → IDLE
    Emergency: any airborne mode → EMERGENCY → IDLE
    Re-tasking: DELIVERING or RETURNING → FLYING when a new mission is assigned in flight
"""

from collections import deque
from dataclasses import dataclass, field
from enum import Enum

from fleetsim.energy import BatteryState
from fleetsim.geo import GeoPoint, GeofenceStatus
from fleetsim.state import StateMachine, graph

FLIGHT_PATH_LIMIT = 100
ALERT_TTL_SECONDS = 300.0


class DroneMode(Enum):
    """Flight phase of a simulated drone."""

    IDLE = "idle"
    TAKEOFF = "takeoff"
    FLYING = "flying"
    DELIVERING = "delivering"
    RETURNING = "returning"
    LANDING = "landing"
    EMERGENCY = "emergency"


AIRBORNE_MODES = frozenset(mode for mode in DroneMode if mode is not DroneMode.IDLE)

FLIGHT_GRAPH = graph(
    {
        DroneMode.IDLE: (DroneMode.TAKEOFF,),
        DroneMode.TAKEOFF: (
            DroneMode.FLYING,
            DroneMode.RETURNING,
            DroneMode.LANDING,
            DroneMode.EMERGENCY,
        ),
        DroneMode.FLYING: (
            DroneMode.DELIVERING,
            DroneMode.RETURNING,
            DroneMode.LANDING,
            DroneMode.EMERGENCY,
        ),
        DroneMode.DELIVERING: (DroneMode.FLYING, DroneMode.RETURNING, DroneMode.LANDING, DroneMode.EMERGENCY),
        DroneMode.RETURNING: (DroneMode.FLYING, DroneMode.LANDING, DroneMode.EMERGENCY),
        DroneMode.LANDING: (DroneMode.IDLE, DroneMode.EMERGENCY),
        DroneMode.EMERGENCY: (DroneMode.IDLE,),
    }
)


@dataclass
class Position:
    """Latitude/longitude in degrees and altitude in meters."""

    latitude: float
    longitude: float
    altitude: float = 0.0

    @property
    def point(self) -> GeoPoint:
        return GeoPoint(self.latitude, self.longitude)

    def move_to(self, point: GeoPoint) -> None:
        self.latitude = point.latitude
        self.longitude = point.longitude

    def as_dict(self) -> dict[str, float]:
        return {"latitude": self.latitude, "longitude": self.longitude, "altitude": self.altitude}


@dataclass
class Velocity:
    """Ground speed (m/s), heading (degrees from north) and vertical speed (m/s)."""

    speed: float = 0.0
    heading: float = 0.0
    vertical_speed: float = 0.0

    def stop(self) -> None:
        self.speed = 0.0
        self.vertical_speed = 0.0

    def as_dict(self) -> dict[str, float]:
        return {"speed": self.speed, "heading": self.heading, "verticalSpeed": self.vertical_speed}


@dataclass(frozen=True)
class Alert:
    type: str
    message: str
    severity: str
    raised_at: float

    def as_dict(self) -> dict[str, object]:
        return {
            "type": self.type,
            "message": self.message,
            "severity": self.severity,
            "timestamp": self.raised_at,
        }


@dataclass(frozen=True)
class FlightPoint:
    latitude: float
    longitude: float
    altitude: float
    timestamp: float


def _flight_path() -> deque[FlightPoint]:
    return deque(maxlen=FLIGHT_PATH_LIMIT)


@dataclass
class DroneSimState:
    """Instantaneous simulated state of one drone.

    Attributes:
        drone_id (str): Identifier of the externally owned drone record.
        position (Position): Current position and altitude.
        battery (BatteryState): Current battery snapshot.
        home_base (GeoPoint): Where the drone returns after a mission.
        mode (DroneMode): Authoritative flight phase; change it via transition_to().
        velocity (Velocity): Current ground and vertical speed.
        destination (GeoPoint | None): Target while en route, otherwise None.
        emergency_mode (bool): Raises drain rate and max speed, independent of mode.
        order_id (str | None): Order this drone currently serves.
        geofence_status (GeofenceStatus): Recomputed every tick.
        alerts (dict[str, Alert]): Active alerts keyed by type.
        last_tick_at (float): Clock reading of the last applied tick.
        flight_path (deque[FlightPoint]): Bounded trail of recent positions.
    """

    drone_id: str
    position: Position
    battery: BatteryState
    home_base: GeoPoint
    model: str = ""
    mode: DroneMode = DroneMode.IDLE
    velocity: Velocity = field(default_factory=Velocity)
    destination: GeoPoint | None = None
    emergency_mode: bool = False
    order_id: str | None = None
    geofence_status: GeofenceStatus = GeofenceStatus.INSIDE
    alerts: dict[str, Alert] = field(default_factory=dict)
    last_tick_at: float = 0.0
    flight_path: deque[FlightPoint] = field(default_factory=_flight_path)

    @property
    def airborne(self) -> bool:
        return self.mode in AIRBORNE_MODES

    @property
    def active_alerts(self) -> list[Alert]:
        return sorted(self.alerts.values(), key=lambda alert: alert.raised_at)

    def can_transition(self, mode: DroneMode) -> bool:
        return StateMachine(self.mode, FLIGHT_GRAPH).can_transition(mode)

    def transition_to(self, mode: DroneMode) -> None:
        """Move to ``mode`` if FLIGHT_GRAPH allows it.

        Raises:
            IllegalTransition: If the transition is not allowed.
        """
        machine = StateMachine(self.mode, FLIGHT_GRAPH)
        machine.request_transition(mode)
        self.mode = machine.current

    def raise_alert(self, alert_type: str, message: str, severity: str, now: float) -> bool:
        """Add an alert unless one of the same type is already active.

        Returns:
            bool: True if a new alert was added.
        """
        if alert_type in self.alerts:
            return False
        self.alerts[alert_type] = Alert(alert_type, message, severity, now)
        return True

    def expire_alerts(self, now: float, ttl: float = ALERT_TTL_SECONDS) -> None:
        self.alerts = {
            alert_type: alert
            for alert_type, alert in self.alerts.items()
            if now - alert.raised_at < ttl
        }

    def record_flight_point(self, now: float) -> None:
        self.flight_path.append(
            FlightPoint(self.position.latitude, self.position.longitude, self.position.altitude, now)
        )
