"""Simulated drone state and motion.

Components:
    DroneMode: closed enumeration of flight phases
    DroneSimState: mutable per-drone simulation state
    KinematicEngine: per-tick motion model
"""

from .drone import (
    AIRBORNE_MODES,
    ALERT_TTL_SECONDS,
    FLIGHT_GRAPH,
    FLIGHT_PATH_LIMIT,
    Alert,
    DroneMode,
    DroneSimState,
    FlightPoint,
    Position,
    Velocity,
)
from .kinematics import (
    ARRIVAL_THRESHOLD_M,
    CRUISE_ALTITUDE_M,
    EMERGENCY_MAX_SPEED,
    NORMAL_MAX_SPEED,
    KinematicEngine,
)

__all__ = [
    "AIRBORNE_MODES",
    "ALERT_TTL_SECONDS",
    "ARRIVAL_THRESHOLD_M",
    "CRUISE_ALTITUDE_M",
    "EMERGENCY_MAX_SPEED",
    "FLIGHT_GRAPH",
    "FLIGHT_PATH_LIMIT",
    "NORMAL_MAX_SPEED",
    "Alert",
    "DroneMode",
    "DroneSimState",
    "FlightPoint",
    "KinematicEngine",
    "Position",
    "Velocity",
]
