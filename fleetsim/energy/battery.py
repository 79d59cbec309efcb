"""Battery drain model for simulated drones.

Drones drain a fixed percentage per minute while airborne, faster in emergency mode. Charging
happens outside the simulation (drones land and are charged externally), so the model only
ever lowers the charge level.

Alert bands:
    level < 20 %  raises a ``battery_low`` alert (severity critical), once while active
    level < 10 %  forces the drone into the ``emergency`` flight mode and sets emergency mode
"""

from dataclasses import dataclass, replace
import logging
import random
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from fleetsim.vehicles.drone import DroneSimState

logger = logging.getLogger(__name__)

NORMAL_DRAIN_RATE = 0.5  # %/minute
EMERGENCY_DRAIN_RATE = 0.8  # %/minute
LOW_BATTERY_LEVEL = 20.0
CRITICAL_BATTERY_LEVEL = 10.0

BASE_VOLTAGE = 12.0
VOLTAGE_SPAN = 2.0
OPERATING_TEMPERATURE_C = (20.0, 35.0)

BATTERY_LOW_ALERT = "battery_low"


def voltage_for(level: float) -> float:
    """Pack voltage for a charge level: 12 V empty, 14 V full."""
    return BASE_VOLTAGE + (level / 100.0) * VOLTAGE_SPAN


@dataclass(frozen=True)
class BatteryState:
    """Immutable snapshot of a drone battery.

    Attributes:
        level (float): Charge percentage in [0, 100].
        voltage (float): Pack voltage.
        temperature_c (float): Pack temperature in °C.

    Raises:
        ValueError: If level is outside [0, 100].
    """

    level: float
    voltage: float = BASE_VOLTAGE + VOLTAGE_SPAN
    temperature_c: float = 25.0

    def __post_init__(self):
        if not 0.0 <= self.level <= 100.0:
            msg = f"Battery level must be within [0, 100], got {self.level}"
            raise ValueError(msg)

    @classmethod
    def at_level(cls, level: float, temperature_c: float = 25.0) -> "BatteryState":
        level = min(100.0, max(0.0, float(level)))
        return cls(level=level, voltage=voltage_for(level), temperature_c=temperature_c)

    @property
    def is_low(self) -> bool:
        return self.level < LOW_BATTERY_LEVEL

    @property
    def is_critical(self) -> bool:
        return self.level < CRITICAL_BATTERY_LEVEL

    @property
    def is_empty(self) -> bool:
        return self.level <= 0.0

    def as_dict(self) -> dict[str, float]:
        return {"level": self.level, "voltage": self.voltage, "temperature": self.temperature_c}


class BatteryModel:
    """Drains batteries and derives the alerts and mode changes tied to charge level."""

    def __init__(
        self,
        normal_rate: float = NORMAL_DRAIN_RATE,
        emergency_rate: float = EMERGENCY_DRAIN_RATE,
        rng: random.Random | None = None,
    ):
        if normal_rate < 0 or emergency_rate < 0:
            msg = "Drain rates cannot be negative"
            raise ValueError(msg)
        self.normal_rate = normal_rate
        self.emergency_rate = emergency_rate
        self._rng = rng or random.Random()

    def drain_rate(self, emergency_mode: bool) -> float:
        return self.emergency_rate if emergency_mode else self.normal_rate

    def drain(self, battery: BatteryState, delta_minutes: float, emergency_mode: bool) -> BatteryState:
        """Return the battery after ``delta_minutes`` of flight.

        Non-positive ``delta_minutes`` leaves the battery untouched.
        """
        if delta_minutes <= 0:
            return battery
        level = max(0.0, battery.level - self.drain_rate(emergency_mode) * delta_minutes)
        low, high = OPERATING_TEMPERATURE_C
        return replace(
            battery,
            level=level,
            voltage=voltage_for(level),
            temperature_c=low + self._rng.random() * (high - low),
        )

    def apply(self, state: "DroneSimState", delta_minutes: float, now: float) -> None:
        """Drain ``state``'s battery and apply the low/critical rules in place.

        Grounded (idle) drones are not drained.
        """
        from fleetsim.vehicles.drone import DroneMode

        if state.mode is DroneMode.IDLE:
            return

        state.battery = self.drain(state.battery, delta_minutes, state.emergency_mode)
        level = state.battery.level

        if level < LOW_BATTERY_LEVEL:
            state.raise_alert(
                BATTERY_LOW_ALERT,
                f"Battery level critical: {level:.1f}%",
                "critical",
                now,
            )

        if level < CRITICAL_BATTERY_LEVEL and state.mode is not DroneMode.EMERGENCY:
            logger.warning("Drone %s battery at %.1f%%, forcing emergency landing", state.drone_id, level)
            state.transition_to(DroneMode.EMERGENCY)
            state.emergency_mode = True
