"""Records and collaborator contracts for the externally owned stores.

Components:
    DroneRecord, OrderRecord: entities persisted by the surrounding system
    DroneRepository, OrderRepository, TelemetrySink, RealtimeBroadcaster, NotificationGateway:
        the narrow contracts the core talks to
    InMemory*: thread-safe in-memory implementations of those contracts
"""

from .memory import (
    InMemoryDroneRepository,
    InMemoryOrderRepository,
    InMemoryTelemetrySink,
    LoggingNotificationGateway,
    RecordingBroadcaster,
)
from .protocols import (
    DroneRepository,
    NotificationGateway,
    OrderRepository,
    RealtimeBroadcaster,
    TelemetrySink,
)
from .records import (
    ACTIVE_ASSIGNMENT_STATUSES,
    EMERGENCY_GRAPH,
    TERMINAL_ORDER_STATUSES,
    Assignment,
    AssignmentStatus,
    BatteryThresholds,
    DroneRecord,
    DroneStatus,
    EmergencyContact,
    EmergencyDetails,
    EmergencyState,
    EmergencyTracking,
    OrderPriority,
    OrderRecord,
    OrderStatus,
    TrackingEntry,
)

__all__ = [
    "ACTIVE_ASSIGNMENT_STATUSES",
    "EMERGENCY_GRAPH",
    "TERMINAL_ORDER_STATUSES",
    "Assignment",
    "AssignmentStatus",
    "BatteryThresholds",
    "DroneRecord",
    "DroneRepository",
    "DroneStatus",
    "EmergencyContact",
    "EmergencyDetails",
    "EmergencyState",
    "EmergencyTracking",
    "InMemoryDroneRepository",
    "InMemoryOrderRepository",
    "InMemoryTelemetrySink",
    "LoggingNotificationGateway",
    "NotificationGateway",
    "OrderPriority",
    "OrderRecord",
    "OrderRepository",
    "OrderStatus",
    "RealtimeBroadcaster",
    "RecordingBroadcaster",
    "TelemetrySink",
    "TrackingEntry",
]
