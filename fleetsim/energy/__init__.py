"""Energy management for simulated drones.

Components:
    BatteryState: Immutable battery snapshot (level, voltage, temperature)
    BatteryModel: Flight drain model with low/critical alert rules
"""

from .battery import (
    BATTERY_LOW_ALERT,
    CRITICAL_BATTERY_LEVEL,
    EMERGENCY_DRAIN_RATE,
    LOW_BATTERY_LEVEL,
    NORMAL_DRAIN_RATE,
    BatteryModel,
    BatteryState,
    voltage_for,
)

__all__ = [
    "BATTERY_LOW_ALERT",
    "CRITICAL_BATTERY_LEVEL",
    "EMERGENCY_DRAIN_RATE",
    "LOW_BATTERY_LEVEL",
    "NORMAL_DRAIN_RATE",
    "BatteryModel",
    "BatteryState",
    "voltage_for",
]
