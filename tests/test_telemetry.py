"""
Tests for telemetry capture and fan-out.
"""

import unittest

from fleetsim.telemetry import TELEMETRY_CHANNEL, TelemetryRecorder, drone_channel
from fleetsim.store import InMemoryTelemetrySink, RecordingBroadcaster
from fleetsim.vehicles import DroneMode

from fleet_fixtures import make_state, seeded_rng


class FailingSink:
    def record(self, sample):
        raise OSError("disk full")


class FailingBroadcaster:
    def publish(self, channel, payload):
        raise ConnectionError("broker down")


class TestTelemetryRecorder(unittest.TestCase):
    """Test TelemetryRecorder class."""

    def setUp(self):
        self.sink = InMemoryTelemetrySink()
        self.broadcaster = RecordingBroadcaster()
        self.recorder = TelemetryRecorder(self.sink, self.broadcaster, seeded_rng())

    def test_sample_is_a_snapshot(self):
        state = make_state(altitude=50.0, mode=DroneMode.FLYING, order_id="o1")
        state.raise_alert("weather_warning", "Strong winds detected", "warning", 3.0)
        sample = self.recorder.capture(state, now=10.0)

        state.position.altitude = 12.0
        state.velocity.speed = 9.0
        state.alerts.clear()

        self.assertEqual(sample.position.altitude, 50.0)
        self.assertEqual(sample.velocity.speed, 0.0)
        self.assertEqual([alert.type for alert in sample.alerts], ["weather_warning"])
        self.assertEqual(sample.order_id, "o1")
        self.assertIs(sample.mode, DroneMode.FLYING)

    def test_sensor_readings_in_range(self):
        for _ in range(20):
            sensors = self.recorder.capture(make_state(), now=1.0).sensors
            self.assertTrue(2.0 <= sensors.gps_accuracy_m <= 4.0)
            self.assertIn(sensors.satellites, range(8, 12))
            self.assertTrue(0.0 <= sensors.wind_direction < 360.0)

    def test_to_dict(self):
        payload = self.recorder.capture(make_state(drone_id="d9"), now=2.0).to_dict()
        self.assertEqual(payload["droneId"], "d9")
        self.assertEqual(payload["flightStatus"], "idle")
        self.assertEqual(payload["geofenceStatus"], "inside")
        self.assertEqual(set(payload["battery"]), {"level", "voltage", "temperature"})
        self.assertIn("gps", payload["sensors"])

    def test_emit_records_and_publishes(self):
        sample = self.recorder.capture(make_state(drone_id="d1"), now=1.0)
        self.recorder.emit(sample)
        self.assertEqual(self.sink.for_drone("d1"), [sample])
        channels = [channel for channel, _ in self.broadcaster.messages]
        self.assertEqual(channels, [TELEMETRY_CHANNEL, drone_channel("d1")])
        self.assertEqual(drone_channel("d1"), "drone-d1")

    def test_sink_failure_is_logged(self):
        recorder = TelemetryRecorder(FailingSink(), self.broadcaster, seeded_rng())
        sample = recorder.capture(make_state(), now=1.0)
        with self.assertLogs("fleetsim.telemetry.recorder", level="ERROR") as logs:
            recorder.emit(sample)
        self.assertIn("disk full", logs.output[0])
        self.assertEqual(len(self.broadcaster.messages), 2)

    def test_broadcast_failure_is_logged(self):
        recorder = TelemetryRecorder(self.sink, FailingBroadcaster(), seeded_rng())
        sample = recorder.capture(make_state(), now=1.0)
        with self.assertLogs("fleetsim.telemetry.recorder", level="ERROR"):
            recorder.emit(sample)
        self.assertEqual(len(self.sink.samples), 1)


if __name__ == "__main__":
    unittest.main()
