"""Configuration objects for the simulation, dispatch and tracking loops.

Configuration is plain data. The owning process builds these objects (or takes the defaults)
and passes them to the component constructors.
"""

from dataclasses import dataclass, field

from fleetsim.energy import EMERGENCY_DRAIN_RATE, NORMAL_DRAIN_RATE
from fleetsim.geo import DEFAULT_CENTER, GeofenceConfig, GeoPoint
from fleetsim.store.records import DroneStatus
from fleetsim.vehicles import ALERT_TTL_SECONDS, FLIGHT_PATH_LIMIT


@dataclass
class SimulationConfig:
    """Configuration for the simulation scheduler."""

    update_interval: float = 2.0  # seconds
    max_workers: int = 4
    home_base: GeoPoint = DEFAULT_CENTER
    geofence: GeofenceConfig = field(default_factory=GeofenceConfig)
    mission_dwell: float = 30.0  # simulated seconds hovering at the destination
    alert_ttl: float = ALERT_TTL_SECONDS
    flight_path_limit: int = FLIGHT_PATH_LIMIT
    random_failure_rate: float = 0.01  # per drone per tick
    normal_drain_rate: float = NORMAL_DRAIN_RATE
    emergency_drain_rate: float = EMERGENCY_DRAIN_RATE
    excluded_statuses: frozenset[DroneStatus] = frozenset(
        {DroneStatus.OFFLINE, DroneStatus.CHARGING, DroneStatus.CRITICAL_BATTERY}
    )

    def __post_init__(self):
        if self.update_interval <= 0:
            msg = f"update_interval must be positive, got {self.update_interval}"
            raise ValueError(msg)
        if self.max_workers < 1:
            msg = f"max_workers must be at least 1, got {self.max_workers}"
            raise ValueError(msg)
        if not 0.0 <= self.random_failure_rate <= 1.0:
            msg = f"random_failure_rate must be a probability, got {self.random_failure_rate}"
            raise ValueError(msg)


@dataclass
class DispatchConfig:
    """Eligibility and planning parameters for emergency dispatch."""

    min_battery: float = 30.0
    range_safety_factor: float = 1.5
    default_speed_kmh: float = 50.0
    eligible_statuses: frozenset[DroneStatus] = frozenset(
        {DroneStatus.AVAILABLE, DroneStatus.EMERGENCY_STANDBY}
    )
    ground_staff: tuple[str, ...] = ("ground-support",)


@dataclass
class TrackingConfig:
    """Intervals and thresholds for live tracking of emergency orders."""

    interval: float = 10.0  # seconds
    delay_threshold: float = 15 * 60.0
    communication_timeout: float = 60.0

    def __post_init__(self):
        if self.interval <= 0:
            msg = f"interval must be positive, got {self.interval}"
            raise ValueError(msg)
