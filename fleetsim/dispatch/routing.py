"""Route planning for dispatch: waypoint routes, safety scoring and ETA estimation.

Routes are short waypoint lists with distances in kilometers and times in minutes, computed at
an assumed cruise speed (50 km/h unless the drone reports its own average). Detour routes add
one intermediate waypoint offset from the straight-line midpoint.

Safety score (0–100, higher is safer):
    −10 beyond 50 km, another −20 beyond 100 km
    −5 average altitude above 80 m, another −10 above 100 m
    −5 more than three waypoints; −15 hard / −5 medium difficulty
    weather: −10 wind above 20 km/h, −20 poor visibility, −15 any precipitation
    emergency mode: +10 direct routes, +15 routes under 30 minutes
"""

from collections.abc import Callable
from dataclasses import dataclass, field, replace
import math
import time

from fleetsim.geo import GeoPoint

DEFAULT_SPEED_KMH = 50.0
DEFAULT_ALTITUDE_M = 50.0
ARC_OFFSET_DEG = 0.01
WEATHER_OFFSET_DEG = 0.005
MIN_EFFECTIVE_SPEED_KMH = 20.0
LOW_BATTERY_REROUTE_LEVEL = 30.0
HIGH_WIND_KMH = 30.0


@dataclass(frozen=True)
class Waypoint:
    latitude: float
    longitude: float
    altitude: float = DEFAULT_ALTITUDE_M
    label: str = ""
    eta: float | None = None

    @property
    def point(self) -> GeoPoint:
        return GeoPoint(self.latitude, self.longitude)

    def as_dict(self) -> dict[str, object]:
        return {
            "lat": self.latitude,
            "lng": self.longitude,
            "altitude": self.altitude,
            "waypoint": self.label,
            "estimatedTime": self.eta,
        }


@dataclass(frozen=True)
class WeatherConditions:
    wind_speed_kmh: float = 15.0
    visibility: str = "good"
    precipitation: str = "none"
    turbulence: str = "low"


@dataclass(frozen=True)
class RiskFactor:
    type: str
    severity: str
    description: str


@dataclass(frozen=True)
class Route:
    """A candidate flight route.

    Attributes:
        route_id (str): Stable name, e.g. ``direct`` or ``northern-arc``.
        kind (str): ``direct``, ``alternative``, ``weather-optimized`` or ``emergency``.
        waypoints (tuple[Waypoint, ...]): Ordered waypoints.
        distance_km (float): Total great-circle length.
        estimated_time_minutes (float): Flight time at the planning speed; never negative.
        safety_score (float): 0–100.
    """

    route_id: str
    kind: str
    waypoints: tuple[Waypoint, ...]
    distance_km: float
    estimated_time_minutes: float
    fuel_consumption: float = 0.0
    difficulty: str = "easy"
    safety_score: float = 0.0
    risk_factors: tuple[RiskFactor, ...] = ()
    weather: WeatherConditions | None = None

    @property
    def average_altitude(self) -> float:
        if not self.waypoints:
            return DEFAULT_ALTITUDE_M
        return sum(wp.altitude for wp in self.waypoints) / len(self.waypoints)

    def as_dict(self) -> dict[str, object]:
        return {
            "routeId": self.route_id,
            "type": self.kind,
            "optimizedRoute": [wp.as_dict() for wp in self.waypoints],
            "totalDistance": self.distance_km,
            "estimatedTime": self.estimated_time_minutes,
            "safetyScore": self.safety_score,
        }


@dataclass(frozen=True)
class RouteAdjustment:
    route: Route
    adjustments: tuple[str, ...] = ()
    original: Route | None = None

    @property
    def changed(self) -> bool:
        return bool(self.adjustments)


@dataclass(frozen=True)
class Eta:
    eta: float
    estimated_time_minutes: int
    effective_speed_kmh: float
    wind_effect: str


def _path_length_km(points: list[GeoPoint]) -> float:
    return sum(a.distance_km_to(b) for a, b in zip(points, points[1:]))


@dataclass
class RoutePlanner:
    """Builds and scores routes.

    Attributes:
        speed_kmh: Planning cruise speed.
        clock: Source of the current epoch time for waypoint ETAs.
    """

    speed_kmh: float = DEFAULT_SPEED_KMH
    clock: Callable[[], float] = field(default=time.time)

    def minutes_for(self, distance_km: float, speed_kmh: float | None = None) -> float:
        speed = speed_kmh or self.speed_kmh
        return max(0.0, distance_km / speed * 60.0)

    def direct_route(self, start: GeoPoint, end: GeoPoint, altitude: float = DEFAULT_ALTITUDE_M) -> Route:
        distance = start.distance_km_to(end)
        return Route(
            route_id="direct",
            kind="direct",
            waypoints=(
                Waypoint(start.latitude, start.longitude, altitude, "start"),
                Waypoint(end.latitude, end.longitude, altitude, "end"),
            ),
            distance_km=distance,
            estimated_time_minutes=self.minutes_for(distance),
            fuel_consumption=distance * 0.1,
        )

    def route_with_waypoint(
        self, start: GeoPoint, end: GeoPoint, via: Waypoint, route_id: str, kind: str = "alternative"
    ) -> Route:
        distance = _path_length_km([start, via.point, end])
        return Route(
            route_id=route_id,
            kind=kind,
            waypoints=(
                Waypoint(start.latitude, start.longitude, DEFAULT_ALTITUDE_M, "start"),
                replace(via, label="intermediate"),
                Waypoint(end.latitude, end.longitude, DEFAULT_ALTITUDE_M, "end"),
            ),
            distance_km=distance,
            estimated_time_minutes=self.minutes_for(distance),
            fuel_consumption=distance * 0.12,
            difficulty="medium",
        )

    def alternative_routes(self, start: GeoPoint, end: GeoPoint) -> list[Route]:
        mid = start.midpoint(end)
        north = Waypoint(mid.latitude + ARC_OFFSET_DEG, mid.longitude, 60.0)
        south = Waypoint(mid.latitude - ARC_OFFSET_DEG, mid.longitude, 60.0)
        high = replace(self.direct_route(start, end, altitude=100.0), route_id="high-altitude", kind="high-altitude")
        return [
            self.route_with_waypoint(start, end, north, "northern-arc"),
            self.route_with_waypoint(start, end, south, "southern-arc"),
            high,
        ]

    def weather_optimized_route(self, start: GeoPoint, end: GeoPoint, avoid_weather: bool = True) -> Route:
        if not avoid_weather:
            return replace(self.direct_route(start, end), route_id="weather-optimized", kind="weather-optimized")
        mid = start.midpoint(end)
        via = Waypoint(mid.latitude + WEATHER_OFFSET_DEG, mid.longitude + WEATHER_OFFSET_DEG, 70.0)
        route = self.route_with_waypoint(start, end, via, "weather-optimized", kind="weather-optimized")
        return replace(route, weather=WeatherConditions())

    def route_options(
        self, start: GeoPoint, end: GeoPoint, emergency_mode: bool = False, avoid_weather: bool = True
    ) -> list[Route]:
        """All candidate routes, scored and sorted best first.

        In emergency mode routes are ranked by 0.3 × safety + 0.7 × (100 − minutes),
        otherwise by safety alone.
        """
        routes = [
            self.direct_route(start, end),
            *self.alternative_routes(start, end),
            self.weather_optimized_route(start, end, avoid_weather),
        ]
        scored = [self.score(route, emergency_mode) for route in routes]
        if emergency_mode:
            return sorted(
                scored,
                key=lambda r: r.safety_score * 0.3 + (100 - r.estimated_time_minutes) * 0.7,
                reverse=True,
            )
        return sorted(scored, key=lambda r: r.safety_score, reverse=True)

    def score(self, route: Route, emergency_mode: bool = False) -> Route:
        return replace(
            route,
            safety_score=self.safety_score(route, emergency_mode),
            risk_factors=tuple(self.risk_factors(route)),
        )

    @staticmethod
    def safety_score(route: Route, emergency_mode: bool = False) -> float:
        score = 100.0
        if route.distance_km > 50:
            score -= 10
        if route.distance_km > 100:
            score -= 20

        if route.average_altitude > 80:
            score -= 5
        if route.average_altitude > 100:
            score -= 10

        if len(route.waypoints) > 3:
            score -= 5
        if route.difficulty == "hard":
            score -= 15
        elif route.difficulty == "medium":
            score -= 5

        if route.weather is not None:
            if route.weather.wind_speed_kmh > 20:
                score -= 10
            if route.weather.visibility == "poor":
                score -= 20
            if route.weather.precipitation != "none":
                score -= 15

        if emergency_mode:
            if route.kind == "direct":
                score += 10
            if route.estimated_time_minutes < 30:
                score += 15

        return max(0.0, min(100.0, score))

    @staticmethod
    def risk_factors(route: Route) -> list[RiskFactor]:
        risks = []
        if route.distance_km > 100:
            risks.append(RiskFactor("long_distance", "medium", "Long distance flight increases battery risk"))
        if route.waypoints and max(wp.altitude for wp in route.waypoints) > 100:
            risks.append(RiskFactor("high_altitude", "low", "High altitude flight"))
        if len(route.waypoints) > 4:
            risks.append(RiskFactor("complex_route", "low", "Multiple waypoints increase navigation complexity"))
        if route.weather is not None:
            if route.weather.wind_speed_kmh > 25:
                risks.append(RiskFactor("high_wind", "high", "High wind speeds detected"))
            if route.weather.precipitation != "none":
                risks.append(RiskFactor("precipitation", "medium", "Precipitation along route"))
        return risks

    def emergency_route(
        self,
        drone_location: GeoPoint,
        pickup: GeoPoint,
        delivery: GeoPoint,
        speed_kmh: float | None = None,
    ) -> Route:
        """Route from the drone's position via the pickup to the delivery point.

        Each waypoint carries an ETA spread evenly over the total flight time.
        """
        now = self.clock()
        distance = drone_location.distance_km_to(pickup) + pickup.distance_km_to(delivery)
        minutes = self.minutes_for(distance, speed_kmh)
        stops = [(drone_location, "drone_current"), (pickup, "pickup"), (delivery, "delivery")]
        waypoints = tuple(
            Waypoint(
                point.latitude,
                point.longitude,
                DEFAULT_ALTITUDE_M,
                label,
                now + (minutes / len(stops) * (index + 1)) * 60.0,
            )
            for index, (point, label) in enumerate(stops)
        )
        route = Route(
            route_id="emergency",
            kind="emergency",
            waypoints=waypoints,
            distance_km=distance,
            estimated_time_minutes=minutes,
            fuel_consumption=distance * 0.1,
        )
        return self.score(route, emergency_mode=True)

    def adjust_route(
        self,
        current: Route | None,
        drone_location: GeoPoint,
        target: GeoPoint,
        battery_level: float | None = None,
        wind_speed_kmh: float | None = None,
        obstacle_detected: bool = False,
        emergency_mode: bool = False,
    ) -> RouteAdjustment:
        """Adapt ``current`` to in-flight conditions.

        Low battery switches to the direct route when it is shorter, high wind lowers every
        waypoint by 20 m (not below 30 m), and an obstacle swaps in the first alternative
        whose safety score exceeds 80.
        """
        adjusted = current or self.direct_route(drone_location, target)
        adjustments: list[str] = []

        if battery_level is not None and battery_level < LOW_BATTERY_REROUTE_LEVEL:
            direct = self.direct_route(drone_location, target)
            if current is None or direct.distance_km < current.distance_km:
                adjusted = direct
                adjustments.append("Switched to direct route due to low battery")

        if wind_speed_kmh is not None and wind_speed_kmh > HIGH_WIND_KMH:
            adjusted = replace(
                adjusted,
                waypoints=tuple(replace(wp, altitude=max(30.0, wp.altitude - 20.0)) for wp in adjusted.waypoints),
            )
            adjustments.append("Reduced altitude due to high winds")

        if obstacle_detected:
            for alternative in self.alternative_routes(drone_location, target):
                if self.safety_score(alternative, emergency_mode) > 80:
                    adjusted = alternative
                    adjustments.append("Route changed to avoid detected obstacle")
                    break

        return RouteAdjustment(adjusted, tuple(adjustments), current)

    def eta(
        self,
        route: Route,
        speed_kmh: float | None = None,
        wind_speed_kmh: float = 0.0,
        wind_direction: float = 0.0,
        heading: float = 0.0,
    ) -> Eta:
        """Arrival estimate with a head/tail wind correction (minimum 20 km/h effective)."""
        wind_effect = wind_speed_kmh * math.cos(math.radians(wind_direction - heading))
        effective = max(MIN_EFFECTIVE_SPEED_KMH, (speed_kmh or self.speed_kmh) + wind_effect)
        minutes = route.distance_km / effective * 60.0
        return Eta(
            eta=self.clock() + minutes * 60.0,
            estimated_time_minutes=round(minutes),
            effective_speed_kmh=effective,
            wind_effect="tailwind" if wind_effect > 0 else "headwind",
        )
