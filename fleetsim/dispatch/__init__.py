"""Emergency dispatch and failover.

Components:
    DroneScoringEngine: weighted drone scoring with an eligibility pre-filter
    RoutePlanner: waypoint routes, safety scores and ETAs
    EmergencyDispatcher: two-phase emergency assignment, failover, order failure
    FailoverMonitor: per-order live tracking that triggers failover on battery or delay
"""

from .emergency import (
    ASSIGNMENT_CHANNEL,
    DASHBOARD_CHANNEL,
    FAILOVER_CHANNEL,
    GROUND_SUPPORT_CHANNEL,
    EmergencyDispatcher,
)
from .failover import FailoverMonitor, order_channel, route_progress
from .models import (
    DispatchCandidate,
    DispatchResult,
    FailoverReason,
    FailoverResult,
    Progress,
    TrackingAlert,
    TrackingSession,
    TrackingUpdate,
)
from .routing import Eta, RiskFactor, Route, RouteAdjustment, RoutePlanner, Waypoint, WeatherConditions
from .scoring import DroneScoringEngine

__all__ = [
    "ASSIGNMENT_CHANNEL",
    "DASHBOARD_CHANNEL",
    "FAILOVER_CHANNEL",
    "GROUND_SUPPORT_CHANNEL",
    "DispatchCandidate",
    "DispatchResult",
    "DroneScoringEngine",
    "EmergencyDispatcher",
    "Eta",
    "FailoverMonitor",
    "FailoverReason",
    "FailoverResult",
    "Progress",
    "RiskFactor",
    "Route",
    "RouteAdjustment",
    "RoutePlanner",
    "TrackingAlert",
    "TrackingSession",
    "TrackingUpdate",
    "Waypoint",
    "WeatherConditions",
    "order_channel",
    "route_progress",
]
