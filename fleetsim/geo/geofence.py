"""Circular geofence classification.

A drone is ``inside`` while it stays within the warning ring (90 % of the radius by default),
``warning`` between the ring and the boundary, and in ``violation`` beyond it. Classification
is a total, monotonic function of the distance to the fence centre.
"""

from dataclasses import dataclass, field
from enum import Enum
import logging
from typing import TYPE_CHECKING

from .geo_point import GeoPoint

if TYPE_CHECKING:
    from fleetsim.vehicles.drone import DroneSimState

logger = logging.getLogger(__name__)

DEFAULT_CENTER = GeoPoint(40.7128, -74.0060)
DEFAULT_RADIUS_M = 50_000.0
DEFAULT_WARNING_RATIO = 0.9

GEOFENCE_ALERT = "geofence_violation"


class GeofenceStatus(Enum):
    """Position of a drone relative to its authorised flight zone."""

    INSIDE = "inside"
    WARNING = "warning"
    VIOLATION = "violation"


@dataclass(frozen=True)
class GeofenceConfig:
    """Circular boundary definition.

    Attributes:
        center: Fence centre.
        radius_m: Boundary radius in meters.
        warning_ratio: Fraction of the radius at which the warning ring starts.
    """

    center: GeoPoint = field(default_factory=lambda: DEFAULT_CENTER)
    radius_m: float = DEFAULT_RADIUS_M
    warning_ratio: float = DEFAULT_WARNING_RATIO

    def __post_init__(self):
        if self.radius_m <= 0:
            msg = f"Geofence radius must be positive, got {self.radius_m}"
            raise ValueError(msg)
        if not 0.0 < self.warning_ratio <= 1.0:
            msg = f"Warning ratio must be in (0, 1], got {self.warning_ratio}"
            raise ValueError(msg)


class GeofenceMonitor:
    """Classifies positions against one configured boundary."""

    def __init__(self, config: GeofenceConfig | None = None):
        self.config = config or GeofenceConfig()

    def classify_distance(self, distance_m: float) -> GeofenceStatus:
        if distance_m > self.config.radius_m:
            return GeofenceStatus.VIOLATION
        if distance_m > self.config.radius_m * self.config.warning_ratio:
            return GeofenceStatus.WARNING
        return GeofenceStatus.INSIDE

    def classify(self, point: GeoPoint) -> GeofenceStatus:
        return self.classify_distance(point.distance_to(self.config.center))

    def update(self, state: "DroneSimState", now: float) -> GeofenceStatus:
        """Recompute ``state.geofence_status`` and raise a violation alert when needed."""
        status = self.classify(state.position.point)
        state.geofence_status = status
        if status is GeofenceStatus.VIOLATION:
            raised = state.raise_alert(
                GEOFENCE_ALERT,
                "Drone has left authorized flight zone",
                "critical",
                now,
            )
            if raised:
                logger.warning("Drone %s violated the geofence", state.drone_id)
        return status
