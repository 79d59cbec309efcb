"""Telemetry capture and fan-out.

A TelemetrySample is an immutable snapshot of one drone at one tick. The recorder hands each
sample to the persistence sink and publishes it on the live channels. Neither collaborator may
break the tick: sink errors are logged as PersistenceFailure and broadcast errors are logged
and dropped.
"""

from dataclasses import dataclass, replace
import logging
import random
from typing import Any

from fleetsim.energy import BatteryState
from fleetsim.errors import PersistenceFailure
from fleetsim.geo import GeofenceStatus
from fleetsim.store.protocols import RealtimeBroadcaster, TelemetrySink
from fleetsim.vehicles import Alert, DroneMode, DroneSimState, Position, Velocity

logger = logging.getLogger(__name__)

TELEMETRY_CHANNEL = "drone-telemetry-update"


def drone_channel(drone_id: str) -> str:
    return f"drone-{drone_id}"


@dataclass(frozen=True)
class SensorReading:
    gps_accuracy_m: float
    satellites: int
    wind_speed: float
    wind_direction: float
    temperature_c: float
    humidity: float

    @classmethod
    def sample(cls, rng: random.Random) -> "SensorReading":
        return cls(
            gps_accuracy_m=2.0 + rng.random() * 2.0,
            satellites=8 + rng.randrange(4),
            wind_speed=rng.random() * 10.0,
            wind_direction=rng.random() * 360.0,
            temperature_c=15.0 + rng.random() * 15.0,
            humidity=40.0 + rng.random() * 40.0,
        )

    def as_dict(self) -> dict[str, Any]:
        return {
            "gps": {"accuracy": self.gps_accuracy_m, "satellites": self.satellites},
            "weather": {
                "windSpeed": self.wind_speed,
                "windDirection": self.wind_direction,
                "temperature": self.temperature_c,
                "humidity": self.humidity,
            },
        }


@dataclass(frozen=True)
class TelemetrySample:
    drone_id: str
    order_id: str | None
    timestamp: float
    position: Position
    velocity: Velocity
    battery: BatteryState
    mode: DroneMode
    emergency_mode: bool
    geofence_status: GeofenceStatus
    alerts: tuple[Alert, ...]
    sensors: SensorReading

    def to_dict(self) -> dict[str, Any]:
        return {
            "droneId": self.drone_id,
            "orderId": self.order_id,
            "timestamp": self.timestamp,
            "position": self.position.as_dict(),
            "velocity": self.velocity.as_dict(),
            "battery": self.battery.as_dict(),
            "flightStatus": self.mode.value,
            "emergencyMode": self.emergency_mode,
            "geofenceStatus": self.geofence_status.value,
            "alerts": [alert.as_dict() for alert in self.alerts],
            "sensors": self.sensors.as_dict(),
        }


class TelemetryRecorder:
    """Packages drone state into samples and hands them to the collaborators."""

    def __init__(
        self,
        sink: TelemetrySink | None = None,
        broadcaster: RealtimeBroadcaster | None = None,
        rng: random.Random | None = None,
    ):
        self.sink = sink
        self.broadcaster = broadcaster
        self._rng = rng or random.Random()

    def capture(self, state: DroneSimState, now: float) -> TelemetrySample:
        return TelemetrySample(
            drone_id=state.drone_id,
            order_id=state.order_id,
            timestamp=now,
            position=replace(state.position),
            velocity=replace(state.velocity),
            battery=state.battery,
            mode=state.mode,
            emergency_mode=state.emergency_mode,
            geofence_status=state.geofence_status,
            alerts=tuple(state.active_alerts),
            sensors=SensorReading.sample(self._rng),
        )

    def emit(self, sample: TelemetrySample) -> None:
        self.record(sample)
        self.publish(sample)

    def record(self, sample: TelemetrySample) -> bool:
        if self.sink is None:
            return False
        try:
            self.sink.record(sample)
        except Exception as exc:
            failure = PersistenceFailure("telemetry", exc)
            logger.error("%s (drone %s)", failure, sample.drone_id)
            return False
        return True

    def publish(self, sample: TelemetrySample) -> None:
        if self.broadcaster is None:
            return
        payload = sample.to_dict()
        for channel in (TELEMETRY_CHANNEL, drone_channel(sample.drone_id)):
            try:
                self.broadcaster.publish(channel, payload)
            except Exception:
                logger.exception("Broadcast on %s failed", channel)
