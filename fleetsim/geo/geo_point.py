"""Great-circle geometry on a spherical Earth.

All calculations use a sphere of radius 6,371,000 m through ``pyproj.Geod``. On a sphere the
geodesic is the great circle, so distances match the haversine formula and azimuths match the
spherical initial-bearing formula. Two distance flavours exist because the simulation works in
meters while dispatch scoring and route planning work in kilometers; each call site sticks to one.
"""

from dataclasses import dataclass

from pyproj import Geod

EARTH_RADIUS_M = 6_371_000.0
EARTH_RADIUS_KM = EARTH_RADIUS_M / 1000.0

_SPHERE = Geod(a=EARTH_RADIUS_M, f=0.0)


def distance_meters(lat1: float, lon1: float, lat2: float, lon2: float) -> float:
    """Great-circle distance in meters between two points given in degrees."""
    _, _, dist = _SPHERE.inv(lon1, lat1, lon2, lat2)
    return float(dist)


def distance_km(lat1: float, lon1: float, lat2: float, lon2: float) -> float:
    """Great-circle distance in kilometers between two points given in degrees."""
    return distance_meters(lat1, lon1, lat2, lon2) / 1000.0


def bearing_degrees(lat1: float, lon1: float, lat2: float, lon2: float) -> float:
    """Initial bearing from point 1 to point 2, clockwise from north, in [0, 360)."""
    az12, _, _ = _SPHERE.inv(lon1, lat1, lon2, lat2)
    return float(az12) % 360.0


def destination_point(lat: float, lon: float, bearing_deg: float, dist_m: float) -> tuple[float, float]:
    """Project a point ``dist_m`` meters along ``bearing_deg`` from (lat, lon).

    Returns:
        tuple[float, float]: (latitude, longitude) in degrees.
    """
    lon2, lat2, _ = _SPHERE.fwd(lon, lat, bearing_deg, dist_m)
    return float(lat2), float(lon2)


@dataclass(frozen=True)
class GeoPoint:
    """A latitude/longitude pair in decimal degrees.

    Example:
        >>> nyc = GeoPoint(40.7128, -74.0060)
        >>> east = nyc.forward(90.0, 1000.0)
        >>> round(nyc.distance_to(east))
        1000
    """

    latitude: float
    longitude: float

    @classmethod
    def from_deg(cls, lat: float, lon: float) -> "GeoPoint":
        return cls(float(lat), float(lon))

    def distance_to(self, other: "GeoPoint") -> float:
        """Distance to ``other`` in meters."""
        return distance_meters(self.latitude, self.longitude, other.latitude, other.longitude)

    def distance_km_to(self, other: "GeoPoint") -> float:
        """Distance to ``other`` in kilometers."""
        return distance_km(self.latitude, self.longitude, other.latitude, other.longitude)

    def bearing_to(self, other: "GeoPoint") -> float:
        return bearing_degrees(self.latitude, self.longitude, other.latitude, other.longitude)

    def forward(self, bearing_deg: float, dist_m: float) -> "GeoPoint":
        """Return the point reached by travelling ``dist_m`` meters along ``bearing_deg``."""
        lat, lon = destination_point(self.latitude, self.longitude, bearing_deg, dist_m)
        return GeoPoint(lat, lon)

    def midpoint(self, other: "GeoPoint") -> "GeoPoint":
        """Arithmetic midpoint in degree space, used for route detours."""
        return GeoPoint(
            (self.latitude + other.latitude) / 2,
            (self.longitude + other.longitude) / 2,
        )

    def as_dict(self) -> dict[str, float]:
        return {"latitude": self.latitude, "longitude": self.longitude}
