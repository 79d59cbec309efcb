from .recorder import (
    TELEMETRY_CHANNEL,
    SensorReading,
    TelemetryRecorder,
    TelemetrySample,
    drone_channel,
)

__all__ = [
    "TELEMETRY_CHANNEL",
    "SensorReading",
    "TelemetryRecorder",
    "TelemetrySample",
    "drone_channel",
]
