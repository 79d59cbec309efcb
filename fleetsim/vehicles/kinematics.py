"""Per-tick motion model for simulated drones.

The engine advances one DroneSimState by ``dt`` seconds according to its flight mode. Each
mode has a handler; the handler table must cover every DroneMode, which is checked at
construction time.

Movement toward a destination:
    distance, bearing = GeoMath(current, destination)
    speed = min(max_speed, distance / dt)
    position = destination_point(current, bearing, speed * dt)

Arrival is declared within ARRIVAL_THRESHOLD_M of the destination.
"""

from collections.abc import Callable
import logging
import random

from .drone import DroneMode, DroneSimState

logger = logging.getLogger(__name__)

CRUISE_ALTITUDE_M = 50.0
CLIMB_RATE = 2.0  # m/s
LANDING_DESCENT_RATE = 1.5  # m/s
EMERGENCY_DESCENT_RATE = 3.0  # m/s
NORMAL_MAX_SPEED = 15.0  # m/s
EMERGENCY_MAX_SPEED = 25.0  # m/s
PATROL_SPEED = 5.0  # m/s
PATROL_TURN_PROBABILITY = 0.1
ARRIVAL_THRESHOLD_M = 10.0

ModeHandler = Callable[[DroneSimState, float], None]


class KinematicEngine:
    """Advances position, altitude and velocity of a drone for one tick."""

    def __init__(self, rng: random.Random | None = None):
        self._rng = rng or random.Random()
        self._on_actions: dict[DroneMode, ModeHandler] = {
            DroneMode.IDLE: self.on_idle,
            DroneMode.TAKEOFF: self.on_takeoff,
            DroneMode.FLYING: self.on_flying,
            DroneMode.DELIVERING: self.on_delivering,
            DroneMode.RETURNING: self.on_returning,
            DroneMode.LANDING: self.on_landing,
            DroneMode.EMERGENCY: self.on_emergency,
        }
        missing = set(DroneMode) - set(self._on_actions)
        if missing:
            msg = f"No kinematic handler for modes: {sorted(m.name for m in missing)}"
            raise RuntimeError(msg)

    @staticmethod
    def max_speed(state: DroneSimState) -> float:
        return EMERGENCY_MAX_SPEED if state.emergency_mode else NORMAL_MAX_SPEED

    def advance(self, state: DroneSimState, dt: float, now: float) -> bool:
        """Advance ``state`` by ``dt`` seconds and append a flight-path point.

        A non-positive ``dt`` is a clock anomaly and leaves the state untouched.

        Returns:
            bool: True if the state was advanced.
        """
        if dt <= 0:
            logger.debug("Skipping tick for drone %s with dt=%.3f", state.drone_id, dt)
            return False
        self._on_actions[state.mode](state, dt)
        state.record_flight_point(now)
        return True

    def on_idle(self, state: DroneSimState, dt: float) -> None:
        state.velocity.stop()
        if state.destination is not None:
            state.transition_to(DroneMode.TAKEOFF)

    def on_takeoff(self, state: DroneSimState, dt: float) -> None:
        state.position.altitude += CLIMB_RATE * dt
        state.velocity.vertical_speed = CLIMB_RATE
        if state.position.altitude >= CRUISE_ALTITUDE_M:
            state.position.altitude = CRUISE_ALTITUDE_M
            state.velocity.vertical_speed = 0.0
            state.transition_to(DroneMode.FLYING)

    def on_flying(self, state: DroneSimState, dt: float) -> None:
        if state.destination is None:
            self.patrol(state, dt)
            return
        if self.move_towards(state, dt):
            state.transition_to(DroneMode.DELIVERING)

    def on_delivering(self, state: DroneSimState, dt: float) -> None:
        state.velocity.stop()

    def on_returning(self, state: DroneSimState, dt: float) -> None:
        if state.destination is None:
            state.destination = state.home_base
        if self.move_towards(state, dt):
            state.destination = None
            state.transition_to(DroneMode.LANDING)

    def on_landing(self, state: DroneSimState, dt: float) -> None:
        self._descend(state, dt, LANDING_DESCENT_RATE)

    def on_emergency(self, state: DroneSimState, dt: float) -> None:
        state.velocity.speed = 0.0
        self._descend(state, dt, EMERGENCY_DESCENT_RATE)
        if state.mode is DroneMode.IDLE:
            state.destination = None
            state.emergency_mode = False

    def _descend(self, state: DroneSimState, dt: float, rate: float) -> None:
        state.position.altitude -= rate * dt
        state.velocity.vertical_speed = -rate
        if state.position.altitude <= 0:
            state.position.altitude = 0.0
            state.velocity.stop()
            state.transition_to(DroneMode.IDLE)

    def move_towards(self, state: DroneSimState, dt: float) -> bool:
        """Move toward ``state.destination``; return True once within the arrival threshold."""
        current = state.position.point
        target = state.destination
        distance = current.distance_to(target)
        if distance < ARRIVAL_THRESHOLD_M:
            state.velocity.speed = 0.0
            return True

        bearing = current.bearing_to(target)
        speed = min(self.max_speed(state), distance / dt)
        state.velocity.speed = speed
        state.velocity.heading = bearing
        state.position.move_to(current.forward(bearing, speed * dt))

        if state.position.point.distance_to(target) < ARRIVAL_THRESHOLD_M:
            state.velocity.speed = 0.0
            return True
        return False

    def patrol(self, state: DroneSimState, dt: float) -> None:
        """Fly at patrol speed, occasionally picking a new random heading."""
        state.velocity.speed = PATROL_SPEED
        if self._rng.random() < PATROL_TURN_PROBABILITY:
            state.velocity.heading = self._rng.random() * 360.0
        state.position.move_to(state.position.point.forward(state.velocity.heading, PATROL_SPEED * dt))
