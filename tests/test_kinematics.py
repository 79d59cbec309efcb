"""
Tests for the per-tick motion model.
"""

import unittest

from fleetsim.geo import GeoPoint
from fleetsim.vehicles import (
    CRUISE_ALTITUDE_M,
    EMERGENCY_MAX_SPEED,
    FLIGHT_PATH_LIMIT,
    DroneMode,
    KinematicEngine,
)

from fleet_fixtures import BASE, make_state, seeded_rng


class TestMovement(unittest.TestCase):
    """Test movement toward a destination."""

    def setUp(self):
        self.engine = KinematicEngine(seeded_rng())

    def test_one_tick_toward_destination(self):
        start = GeoPoint(40.0, -74.0)
        target = GeoPoint(40.0, -73.99)
        state = make_state(location=start, altitude=50.0, mode=DroneMode.FLYING, destination=target)

        self.assertTrue(self.engine.advance(state, 5.0, now=5.0))

        moved = start.distance_to(state.position.point)
        self.assertLessEqual(moved, 75.0 + 1e-6)
        self.assertGreater(moved, 70.0)
        self.assertLess(state.position.point.distance_to(target), start.distance_to(target))
        self.assertGreater(state.position.point.distance_to(target), 10.0)
        self.assertIs(state.mode, DroneMode.FLYING)
        self.assertAlmostEqual(state.velocity.speed, 15.0)

    def test_emergency_mode_flies_faster(self):
        target = BASE.forward(90.0, 5_000.0)
        state = make_state(altitude=50.0, mode=DroneMode.FLYING, destination=target, emergency_mode=True)
        self.engine.advance(state, 2.0, now=2.0)
        self.assertAlmostEqual(state.velocity.speed, EMERGENCY_MAX_SPEED)
        self.assertAlmostEqual(BASE.distance_to(state.position.point), 50.0, places=3)

    def test_speed_capped_by_remaining_distance(self):
        target = BASE.forward(0.0, 40.0)
        state = make_state(altitude=50.0, mode=DroneMode.FLYING, destination=target)
        self.engine.advance(state, 5.0, now=5.0)
        self.assertIs(state.mode, DroneMode.DELIVERING)
        self.assertLess(state.position.point.distance_to(target), 10.0)

    def test_arrival_within_threshold_before_moving(self):
        target = BASE.forward(0.0, 5.0)
        state = make_state(altitude=50.0, mode=DroneMode.FLYING, destination=target)
        self.engine.advance(state, 1.0, now=1.0)
        self.assertIs(state.mode, DroneMode.DELIVERING)
        self.assertEqual(state.velocity.speed, 0.0)

    def test_patrol_without_destination(self):
        state = make_state(altitude=50.0, mode=DroneMode.FLYING)
        self.engine.advance(state, 4.0, now=4.0)
        self.assertAlmostEqual(BASE.distance_to(state.position.point), 20.0, places=3)
        self.assertIs(state.mode, DroneMode.FLYING)

    def test_non_positive_dt_is_noop(self):
        state = make_state(altitude=50.0, mode=DroneMode.FLYING, destination=BASE.forward(0.0, 500.0))
        self.assertFalse(self.engine.advance(state, 0.0, now=1.0))
        self.assertFalse(self.engine.advance(state, -2.0, now=1.0))
        self.assertEqual(state.position.point, BASE)
        self.assertEqual(len(state.flight_path), 0)


class TestFlightPhases(unittest.TestCase):
    """Test the mode handlers."""

    def setUp(self):
        self.engine = KinematicEngine(seeded_rng())

    def test_takeoff_sequence(self):
        state = make_state(destination=BASE.forward(0.0, 1_000.0))
        self.engine.advance(state, 5.0, now=5.0)
        self.assertIs(state.mode, DroneMode.TAKEOFF)
        self.assertEqual(state.position.altitude, 0.0)

        for tick in range(4):
            self.engine.advance(state, 5.0, now=10.0 + tick * 5)
            self.assertIs(state.mode, DroneMode.TAKEOFF)
        self.assertAlmostEqual(state.position.altitude, 40.0)

        self.engine.advance(state, 5.0, now=30.0)
        self.assertIs(state.mode, DroneMode.FLYING)
        self.assertEqual(state.position.altitude, CRUISE_ALTITUDE_M)

    def test_idle_without_destination_stays_put(self):
        state = make_state()
        self.engine.advance(state, 5.0, now=5.0)
        self.assertIs(state.mode, DroneMode.IDLE)
        self.assertEqual(state.position.point, BASE)

    def test_delivering_hovers(self):
        state = make_state(altitude=50.0, mode=DroneMode.DELIVERING, destination=BASE)
        self.engine.advance(state, 5.0, now=5.0)
        self.assertIs(state.mode, DroneMode.DELIVERING)
        self.assertEqual(state.velocity.speed, 0.0)

    def test_returning_lands_at_home(self):
        home = BASE.forward(270.0, 30.0)
        state = make_state(altitude=50.0, mode=DroneMode.RETURNING, home_base=home)
        self.engine.advance(state, 5.0, now=5.0)
        self.assertIs(state.mode, DroneMode.LANDING)
        self.assertIsNone(state.destination)

    def test_landing_descends_to_idle(self):
        state = make_state(altitude=3.0, mode=DroneMode.LANDING)
        self.engine.advance(state, 1.0, now=1.0)
        self.assertAlmostEqual(state.position.altitude, 1.5)
        self.assertIs(state.mode, DroneMode.LANDING)
        self.engine.advance(state, 1.0, now=2.0)
        self.assertEqual(state.position.altitude, 0.0)
        self.assertIs(state.mode, DroneMode.IDLE)
        self.assertEqual(state.velocity.vertical_speed, 0.0)

    def test_emergency_descends_fast_and_resets(self):
        state = make_state(
            altitude=9.0,
            mode=DroneMode.EMERGENCY,
            emergency_mode=True,
            destination=BASE.forward(0.0, 1_000.0),
        )
        self.engine.advance(state, 1.0, now=1.0)
        self.assertAlmostEqual(state.position.altitude, 6.0)
        self.engine.advance(state, 2.0, now=3.0)
        self.assertIs(state.mode, DroneMode.IDLE)
        self.assertFalse(state.emergency_mode)
        self.assertIsNone(state.destination)

        self.engine.advance(state, 1.0, now=4.0)
        self.assertIs(state.mode, DroneMode.IDLE)

    def test_flight_path_is_bounded(self):
        state = make_state(altitude=50.0, mode=DroneMode.FLYING)
        for tick in range(FLIGHT_PATH_LIMIT * 3):
            self.engine.advance(state, 1.0, now=float(tick + 1))
            self.assertLessEqual(len(state.flight_path), FLIGHT_PATH_LIMIT)
        self.assertEqual(len(state.flight_path), FLIGHT_PATH_LIMIT)
        self.assertEqual(state.flight_path[-1].timestamp, float(FLIGHT_PATH_LIMIT * 3))
        self.assertEqual(state.flight_path[0].timestamp, float(FLIGHT_PATH_LIMIT * 2 + 1))


if __name__ == "__main__":
    unittest.main()
