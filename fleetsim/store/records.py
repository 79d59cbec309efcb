"""Drone and order records as held by the external stores.

These are the entities the surrounding system owns and persists. The simulation and dispatch
core reads and writes them only through the repository contracts in ``protocols``; nothing here
talks to storage.

Emergency order lifecycle:
    normal → emergency_pending → emergency_assigned → (emergency_failover)* → delivered | failed
"""

from dataclasses import dataclass, field
from enum import Enum
from typing import TYPE_CHECKING

from fleetsim.energy import CRITICAL_BATTERY_LEVEL
from fleetsim.geo import GeoPoint
from fleetsim.state import StateMachine, graph

if TYPE_CHECKING:
    from fleetsim.dispatch.routing import Route


class DroneStatus(Enum):
    AVAILABLE = "available"
    IN_FLIGHT = "in_flight"
    MAINTENANCE = "maintenance"
    CHARGING = "charging"
    OFFLINE = "offline"
    EMERGENCY_ASSIGNED = "emergency_assigned"
    EMERGENCY_STANDBY = "emergency_standby"
    LOW_BATTERY = "low_battery"
    CRITICAL_BATTERY = "critical_battery"


class OrderStatus(Enum):
    PENDING = "pending"
    PROCESSING = "processing"
    IN_TRANSIT = "in-transit"
    DELIVERED = "delivered"
    CANCELLED = "cancelled"
    FAILED = "failed"


TERMINAL_ORDER_STATUSES = frozenset({OrderStatus.DELIVERED, OrderStatus.CANCELLED, OrderStatus.FAILED})


class OrderPriority(Enum):
    NORMAL = "normal"
    HIGH = "high"
    EMERGENCY = "emergency"


class AssignmentStatus(Enum):
    ASSIGNED = "assigned"
    IN_PROGRESS = "in_progress"
    COMPLETED = "completed"
    CANCELLED = "cancelled"


ACTIVE_ASSIGNMENT_STATUSES = frozenset({AssignmentStatus.ASSIGNED, AssignmentStatus.IN_PROGRESS})


class EmergencyState(Enum):
    NORMAL = "normal"
    PENDING = "emergency_pending"
    ASSIGNED = "emergency_assigned"
    FAILOVER = "emergency_failover"
    DELIVERED = "delivered"
    FAILED = "failed"


EMERGENCY_GRAPH = graph(
    {
        EmergencyState.NORMAL: (EmergencyState.PENDING,),
        EmergencyState.PENDING: (EmergencyState.ASSIGNED, EmergencyState.FAILED),
        EmergencyState.ASSIGNED: (EmergencyState.FAILOVER, EmergencyState.DELIVERED, EmergencyState.FAILED),
        EmergencyState.FAILOVER: (EmergencyState.FAILOVER, EmergencyState.DELIVERED, EmergencyState.FAILED),
        EmergencyState.DELIVERED: (),
        EmergencyState.FAILED: (),
    }
)


@dataclass
class BatteryThresholds:
    """Per-drone battery thresholds in percent."""

    emergency: float = 30.0
    critical: float = CRITICAL_BATTERY_LEVEL
    return_home: float = 25.0


@dataclass
class Assignment:
    """Binding between an order and the drone serving it."""

    order_id: str
    drone_id: str
    assigned_at: float
    priority: OrderPriority = OrderPriority.NORMAL
    status: AssignmentStatus = AssignmentStatus.ASSIGNED
    delivery_location: GeoPoint | None = None
    completed_at: float | None = None

    @property
    def active(self) -> bool:
        return self.status in ACTIVE_ASSIGNMENT_STATUSES


@dataclass
class DroneRecord:
    """Externally owned drone entity.

    Attributes:
        drone_id (str): Stable identifier.
        status (DroneStatus): Fleet-facing status, distinct from the simulated flight mode.
        battery_level (float): Last known charge in percent.
        location (GeoPoint): Last known position.
        max_payload (float): Kilograms.
        max_range (float): Kilometers.
        reliability (float): 0–100.
        average_speed (float): km/h; 0 means unknown.
        assignment (Assignment | None): Current delivery binding, if any.
        last_seen (float | None): Epoch seconds of the last telemetry update.
        home_base (GeoPoint | None): Return point; the scheduler default is used when None.
    """

    drone_id: str
    model: str
    status: DroneStatus
    battery_level: float
    location: GeoPoint
    max_payload: float
    max_range: float
    reliability: float = 100.0
    average_speed: float = 0.0
    emergency_capable: bool = True
    thresholds: BatteryThresholds = field(default_factory=BatteryThresholds)
    assignment: Assignment | None = None
    last_seen: float | None = None
    home_base: GeoPoint | None = None


@dataclass(frozen=True)
class TrackingEntry:
    status: str
    notes: str
    timestamp: float
    location: GeoPoint | None = None


@dataclass
class EmergencyContact:
    name: str
    phone: str
    relationship: str = ""
    notified: bool = False
    notified_at: float | None = None


@dataclass
class EmergencyDetails:
    state: EmergencyState = EmergencyState.NORMAL
    reason: str = ""
    approved_by: str | None = None
    approved_at: float | None = None
    failover_count: int = 0
    last_failover_reason: str | None = None


@dataclass
class EmergencyTracking:
    is_live_tracking: bool = False
    tracking_started: float | None = None
    last_location_update: float | None = None
    last_location: GeoPoint | None = None
    contacts: list[EmergencyContact] = field(default_factory=list)


@dataclass
class OrderRecord:
    """Externally owned order entity.

    ``tracking_history`` is append-only; use :meth:`record` to add to it.
    """

    order_id: str
    pickup: GeoPoint
    delivery: GeoPoint
    total_weight: float
    status: OrderStatus = OrderStatus.PENDING
    priority: OrderPriority = OrderPriority.NORMAL
    is_emergency: bool = False
    drone_id: str | None = None
    estimated_delivery: float | None = None
    route: "Route | None" = None
    tracking_history: list[TrackingEntry] = field(default_factory=list)
    emergency: EmergencyDetails = field(default_factory=EmergencyDetails)
    tracking: EmergencyTracking = field(default_factory=EmergencyTracking)
    delivered_at: float | None = None

    @property
    def delivery_distance_km(self) -> float:
        return self.pickup.distance_km_to(self.delivery)

    @property
    def is_terminal(self) -> bool:
        return self.status in TERMINAL_ORDER_STATUSES

    def record(
        self,
        status: str,
        notes: str,
        now: float,
        location: GeoPoint | None = None,
    ) -> TrackingEntry:
        entry = TrackingEntry(status, notes, now, location)
        self.tracking_history.append(entry)
        return entry

    def can_transition_emergency(self, state: EmergencyState) -> bool:
        return StateMachine(self.emergency.state, EMERGENCY_GRAPH).can_transition(state)

    def transition_emergency(self, state: EmergencyState) -> None:
        """Advance the emergency lifecycle.

        Raises:
            IllegalTransition: If ``state`` cannot follow the current emergency state.
        """
        machine = StateMachine(self.emergency.state, EMERGENCY_GRAPH)
        machine.request_transition(state)
        self.emergency.state = machine.current
