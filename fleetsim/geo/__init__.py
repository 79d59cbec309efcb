"""Geographic utilities for drone simulation.

Components:
    GeoPoint: latitude/longitude pair with distance, bearing and projection helpers
    distance_meters / distance_km / bearing_degrees / destination_point: pure functions
    GeofenceMonitor: circular flight-zone classifier

Typical Usage:
    >>> from fleetsim.geo import GeoPoint, GeofenceMonitor
    >>> base = GeoPoint(40.7128, -74.0060)
    >>> GeofenceMonitor().classify(base.forward(0.0, 46_000.0)).value
    'warning'
"""

from .geo_point import (
    EARTH_RADIUS_KM,
    EARTH_RADIUS_M,
    GeoPoint,
    bearing_degrees,
    destination_point,
    distance_km,
    distance_meters,
)
from .geofence import (
    DEFAULT_CENTER,
    DEFAULT_RADIUS_M,
    GEOFENCE_ALERT,
    GeofenceConfig,
    GeofenceMonitor,
    GeofenceStatus,
)

__all__ = [
    "DEFAULT_CENTER",
    "DEFAULT_RADIUS_M",
    "EARTH_RADIUS_KM",
    "EARTH_RADIUS_M",
    "GEOFENCE_ALERT",
    "GeoPoint",
    "GeofenceConfig",
    "GeofenceMonitor",
    "GeofenceStatus",
    "bearing_degrees",
    "destination_point",
    "distance_km",
    "distance_meters",
]
