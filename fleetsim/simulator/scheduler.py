"""Fixed-tick simulation scheduler for the active drone fleet.

The scheduler owns the registry of DroneSimState objects, one per actively simulated drone,
and advances all of them once per tick. Drones are independent of each other, so a tick fans
the per-drone work out to a thread pool; work on any single drone is serialised through its
entry in a KeyedLocks table that is shared with the dispatcher.

Per-drone tick pipeline:
    1. Copy the committed state (a failed step never leaves a half-applied tick behind)
    2. Expire old alerts
    3. KinematicEngine.advance with dt = now - last_tick_at (dt <= 0 is a no-op)
    4. BatteryModel.apply, random in-flight anomalies
    5. GeofenceMonitor.update
    6. Commit the copy, capture a telemetry sample, sync the drone record
    7. Emit the sample to the sink and the live channels

Deferred work (mission completion after the delivery dwell) runs on a DeferredActions
registry that is advanced by the elapsed time between ticks, so stop() can cancel all of it.

Events:
    simulation_started, simulation_stopped, drone_added, drone_removed, mission_completed,
    tick_error. Handlers are called synchronously as ``handler(event_name, data)``.
"""

from collections import deque
from collections.abc import Callable
from concurrent.futures import ThreadPoolExecutor, wait
import copy
import logging
import random
import threading
import time
from typing import Any, TypeVar

from fleetsim.config import SimulationConfig
from fleetsim.energy import BatteryModel, BatteryState
from fleetsim.errors import DroneNotFound, PersistenceFailure, TickStepFailure
from fleetsim.geo import GeofenceMonitor, GeoPoint
from fleetsim.state import KeyedLocks
from fleetsim.store import (
    AssignmentStatus,
    DroneRecord,
    DroneRepository,
    DroneStatus,
    EmergencyState,
    OrderPriority,
    OrderRepository,
    OrderStatus,
)
from fleetsim.telemetry import TelemetryRecorder, TelemetrySample
from fleetsim.timer import DeferredActions, IntervalJob
from fleetsim.vehicles import CRUISE_ALTITUDE_M, DroneMode, DroneSimState, KinematicEngine, Position

logger = logging.getLogger(__name__)

T = TypeVar("T")

ANOMALIES = (
    ("weather_warning", "Strong winds detected"),
    ("obstacle_detected", "Obstacle detected in flight path"),
    ("system_failure", "Minor system malfunction detected"),
)

# Statuses the simulation may overwrite from the flight mode. Anything else was set by the
# dispatcher or an operator and is left alone.
SIMULATION_OWNED_STATUSES = frozenset({DroneStatus.AVAILABLE, DroneStatus.IN_FLIGHT})


def status_for_mode(mode: DroneMode) -> DroneStatus:
    if mode is DroneMode.IDLE:
        return DroneStatus.AVAILABLE
    if mode is DroneMode.EMERGENCY:
        return DroneStatus.MAINTENANCE
    return DroneStatus.IN_FLIGHT


def mission_timer_id(drone_id: str) -> str:
    return f"mission:{drone_id}"


class SimulationScheduler:
    """Drives the per-drone simulation on a fixed interval.

    Args:
        drones: Repository the active set is loaded from and synced back to.
        recorder: Telemetry recorder; a recorder without collaborators is used if None.
        config: Simulation configuration. Uses defaults if None.
        orders: Order repository, needed to mark deliveries complete.
        locks: Per-drone and per-order locks; pass the dispatcher's table so both agree on one lock
            per drone and per order.
        clock: Returns the current epoch time in seconds.
        rng: Random source for patrol headings, anomalies and sensor noise.
    """

    def __init__(
        self,
        drones: DroneRepository,
        recorder: TelemetryRecorder | None = None,
        config: SimulationConfig | None = None,
        *,
        orders: OrderRepository | None = None,
        locks: KeyedLocks | None = None,
        clock: Callable[[], float] = time.time,
        rng: random.Random | None = None,
        kinematics: KinematicEngine | None = None,
        battery: BatteryModel | None = None,
        geofence: GeofenceMonitor | None = None,
    ):
        self.config = config or SimulationConfig()
        self.drones = drones
        self.orders = orders
        self.locks = locks or KeyedLocks()
        self.clock = clock
        self._rng = rng or random.Random()
        self.recorder = recorder or TelemetryRecorder(rng=self._rng)
        self.kinematics = kinematics or KinematicEngine(self._rng)
        self.battery = battery or BatteryModel(
            self.config.normal_drain_rate, self.config.emergency_drain_rate, self._rng
        )
        self.geofence = geofence or GeofenceMonitor(self.config.geofence)

        # Thread-safe drone registry
        self._states: dict[str, DroneSimState] = {}
        self._states_lock = threading.RLock()

        self.running = False
        self.deferred = DeferredActions()
        self.executor: ThreadPoolExecutor | None = None
        self._loop: IntervalJob | None = None
        self._tick_lock = threading.RLock()
        self._last_tick_at: float | None = None

        self.event_handlers: dict[str, list[Callable[[str, Any], None]]] = {}

    # ------------------------------------------------------------------ lifecycle

    def start(self, background: bool = True) -> None:
        """Load every drone not in an excluded status and start ticking.

        Args:
            background: Run the tick loop on its own thread. With False the caller drives the
                simulation by calling :meth:`tick`.
        """
        with self._states_lock:
            if self.running:
                return
            self.running = True

        # Drones still landing from a previous run resume from now, not from the last tick.
        now = self.clock()
        for drone_id in self.drone_ids():
            try:
                self._update(drone_id, lambda state: setattr(state, "last_tick_at", now))
            except DroneNotFound:
                continue

        excluded = self.config.excluded_statuses
        loaded = 0
        for record in self.drones.find(lambda drone: drone.status not in excluded):
            if self._insert(record) is not None:
                loaded += 1

        self.executor = ThreadPoolExecutor(
            max_workers=self.config.max_workers, thread_name_prefix="FleetSimWorker"
        )
        self._last_tick_at = now
        if background:
            self._loop = IntervalJob(self.config.update_interval, self.tick, name="FleetSimTick")
            self._loop.start()

        logger.info("Simulation started with %d drones", loaded)
        self.emit_event("simulation_started", {"timestamp": self._last_tick_at, "drones": loaded})

    def stop(self) -> None:
        """Command every airborne drone to land and halt the tick loop.

        States are kept until the drones report idle; further manual ticks continue the
        descent and drop landed drones. Pending deferred work is cancelled.
        """
        with self._states_lock:
            if not self.running:
                return
            self.running = False

        if self._loop is not None:
            self._loop.cancel()
            self._loop = None

        with self._tick_lock:
            cancelled = self.deferred.cancel_all()
            now = self.clock()
            landing = 0
            for drone_id in self.drone_ids():
                try:
                    if self._update(drone_id, lambda state: self._command_landing(state, now)):
                        landing += 1
                except DroneNotFound:
                    continue
            if self.executor is not None:
                self.executor.shutdown(wait=True)
                self.executor = None

        logger.info("Simulation stopped; %d drones landing, %d deferred actions cancelled", landing, cancelled)
        self.emit_event("simulation_stopped", {"timestamp": now, "landing": landing})

    def _command_landing(self, state: DroneSimState, now: float) -> bool:
        if not state.airborne or state.mode in (DroneMode.LANDING, DroneMode.EMERGENCY):
            return False
        state.destination = None
        state.transition_to(DroneMode.LANDING)
        self._sync_record(state, now)
        return True

    # ------------------------------------------------------------------ registry

    def add_drone(self, drone_id: str) -> DroneSimState:
        """Start simulating ``drone_id``, seeded from its record and any active assignment.

        Adding a drone that is already simulated leaves its state untouched.

        Raises:
            DroneNotFound: If the repository has no such drone.
        """
        record = self.drones.get(drone_id)
        state = self._insert(record)
        if state is None:
            logger.debug("Drone %s is already simulated", drone_id)
            return self.query(drone_id)
        return copy.deepcopy(state)

    def _insert(self, record: DroneRecord) -> DroneSimState | None:
        state = self._new_state(record, self.clock())
        with self._states_lock:
            if record.drone_id in self._states:
                return None
            self._states[record.drone_id] = state
            total = len(self._states)
        logger.info("Added drone %s to simulation (mode=%s)", record.drone_id, state.mode.value)
        self.emit_event("drone_added", {"drone_id": record.drone_id, "total_drones": total})
        return state

    def _new_state(self, record: DroneRecord, now: float) -> DroneSimState:
        state = DroneSimState(
            drone_id=record.drone_id,
            position=Position(record.location.latitude, record.location.longitude, 0.0),
            battery=BatteryState.at_level(record.battery_level),
            home_base=record.home_base or self.config.home_base,
            model=record.model,
            last_tick_at=now,
            flight_path=deque(maxlen=self.config.flight_path_limit),
        )
        assignment = record.assignment
        if assignment is not None and assignment.active and assignment.delivery_location is not None:
            state.mode = DroneMode.FLYING
            state.position.altitude = CRUISE_ALTITUDE_M
            state.destination = assignment.delivery_location
            state.order_id = assignment.order_id
            state.emergency_mode = assignment.priority is OrderPriority.EMERGENCY
        return state

    def remove_drone(self, drone_id: str) -> bool:
        """Drop ``drone_id`` from the active set without landing it.

        Returns:
            bool: True if the drone was being simulated.
        """
        with self.locks.hold(drone_id):
            with self._states_lock:
                removed = self._states.pop(drone_id, None)
                total = len(self._states)
        if removed is None:
            return False
        self.deferred.cancel(mission_timer_id(drone_id))
        logger.info("Removed drone %s from simulation", drone_id)
        self.emit_event("drone_removed", {"drone_id": drone_id, "total_drones": total})
        return True

    def drone_ids(self) -> list[str]:
        with self._states_lock:
            return list(self._states)

    def query(self, drone_id: str) -> DroneSimState | None:
        """Return a copy of the drone's state, or None if it is not simulated."""
        with self._states_lock:
            state = self._states.get(drone_id)
            return None if state is None else copy.deepcopy(state)

    def query_all(self) -> list[DroneSimState]:
        with self._states_lock:
            return [copy.deepcopy(state) for state in self._states.values()]

    def __contains__(self, drone_id: str) -> bool:
        with self._states_lock:
            return drone_id in self._states

    def __len__(self) -> int:
        with self._states_lock:
            return len(self._states)

    def _update(self, drone_id: str, mutate: Callable[[DroneSimState], T]) -> T:
        """Apply ``mutate`` to a copy of the drone's state and commit it under the drone lock.

        Raises:
            DroneNotFound: If the drone is not simulated.
        """
        with self.locks.hold(drone_id):
            with self._states_lock:
                current = self._states.get(drone_id)
            if current is None:
                raise DroneNotFound(drone_id)
            state = copy.deepcopy(current)
            result = mutate(state)
            with self._states_lock:
                if drone_id in self._states:
                    self._states[drone_id] = state
            return result

    # ------------------------------------------------------------------ commands

    def set_emergency_mode(self, drone_id: str, enabled: bool) -> bool:
        """Toggle emergency mode on a live drone.

        A drone in the emergency flight mode keeps the flag until it has landed.

        Returns:
            bool: The resulting flag value.
        """

        def toggle(state: DroneSimState) -> bool:
            if state.mode is DroneMode.EMERGENCY and not enabled:
                logger.warning("Drone %s is in an emergency landing; keeping emergency mode", drone_id)
                return True
            state.emergency_mode = enabled
            return enabled

        return self._update(drone_id, toggle)

    def assign_mission(
        self,
        drone_id: str,
        destination: GeoPoint,
        order_id: str | None = None,
        emergency: bool = False,
    ) -> bool:
        """Send a live drone to ``destination``.

        Idle drones take off on the next tick, landing drones take off again once down, and
        drones hovering or returning turn back into flight.

        Returns:
            bool: False if the drone is in an emergency landing and cannot take the mission.
        """

        def assign(state: DroneSimState) -> bool:
            if state.mode is DroneMode.EMERGENCY:
                logger.warning("Drone %s is in an emergency landing; mission refused", drone_id)
                return False
            state.destination = destination
            state.order_id = order_id
            state.emergency_mode = emergency
            if state.mode in (DroneMode.DELIVERING, DroneMode.RETURNING):
                state.transition_to(DroneMode.FLYING)
            return True

        self.deferred.cancel(mission_timer_id(drone_id))
        accepted = self._update(drone_id, assign)
        if accepted:
            logger.info("Drone %s assigned to %s (order=%s, emergency=%s)", drone_id, destination, order_id, emergency)
        return accepted

    def recall(self, drone_id: str) -> bool:
        """Abandon the drone's current mission and send it home.

        Returns:
            bool: True if the drone is now returning or already on the ground.
        """

        def send_home(state: DroneSimState) -> bool:
            state.order_id = None
            if state.mode is DroneMode.IDLE:
                state.destination = None
                state.emergency_mode = False
                return True
            if state.mode in (DroneMode.LANDING, DroneMode.EMERGENCY):
                return False
            state.emergency_mode = False
            state.destination = state.home_base
            if state.mode is not DroneMode.RETURNING:
                state.transition_to(DroneMode.RETURNING)
            return True

        self.deferred.cancel(mission_timer_id(drone_id))
        return self._update(drone_id, send_home)

    # ------------------------------------------------------------------ ticking

    def tick(self) -> list[TelemetrySample]:
        """Advance every active drone once.

        A failure on one drone is logged and reported as a ``tick_error`` event; the other
        drones still advance.

        Returns:
            list[TelemetrySample]: Samples of the drones that advanced successfully.
        """
        with self._tick_lock:
            now = self.clock()
            if self._last_tick_at is not None:
                self.deferred.advance(now - self._last_tick_at)
            self._last_tick_at = now

            drone_ids = self.drone_ids()
            if self.executor is not None:
                futures = [self.executor.submit(self._tick_drone, drone_id, now) for drone_id in drone_ids]
                wait(futures)
                results = [future.result() for future in futures]
            else:
                results = [self._tick_drone(drone_id, now) for drone_id in drone_ids]

            if not self.running:
                self._prune_idle()

        return [sample for sample in results if sample is not None]

    def _tick_drone(self, drone_id: str, now: float) -> TelemetrySample | None:
        try:
            with self.locks.hold(drone_id):
                with self._states_lock:
                    current = self._states.get(drone_id)
                if current is None:
                    return None

                state = copy.deepcopy(current)
                previous_mode = state.mode
                self._advance(state, now)

                with self._states_lock:
                    if drone_id not in self._states:
                        return None
                    self._states[drone_id] = state

                if state.mode is DroneMode.DELIVERING and previous_mode is not DroneMode.DELIVERING:
                    self._schedule_completion(state)

                sample = self.recorder.capture(state, now)
                self._sync_record(state, now)
        except Exception as exc:
            failure = TickStepFailure(drone_id, exc)
            logger.error("%s", failure, exc_info=exc)
            self.emit_event("tick_error", {"drone_id": drone_id, "error": str(exc), "timestamp": now})
            return None

        self.recorder.emit(sample)
        return sample

    def _advance(self, state: DroneSimState, now: float) -> None:
        dt = now - state.last_tick_at
        state.expire_alerts(now, self.config.alert_ttl)
        if self.kinematics.advance(state, dt, now):
            self.battery.apply(state, dt / 60.0, now)
            self._raise_random_anomaly(state, now)
            state.last_tick_at = now
        self.geofence.update(state, now)

    def _raise_random_anomaly(self, state: DroneSimState, now: float) -> None:
        if not state.airborne or self._rng.random() >= self.config.random_failure_rate:
            return
        alert_type, message = self._rng.choice(ANOMALIES)
        if state.raise_alert(alert_type, message, "warning", now):
            logger.info("Drone %s: %s", state.drone_id, message)

    def _prune_idle(self) -> None:
        with self._states_lock:
            landed = [drone_id for drone_id, state in self._states.items() if state.mode is DroneMode.IDLE]
        for drone_id in landed:
            self.remove_drone(drone_id)

    def _sync_record(self, state: DroneSimState, now: float) -> None:
        try:
            record = self.drones.get(state.drone_id)
        except DroneNotFound:
            logger.warning("Drone %s has no record to sync", state.drone_id)
            return
        record.location = state.position.point
        record.battery_level = state.battery.level
        record.last_seen = now
        if record.status in SIMULATION_OWNED_STATUSES:
            record.status = status_for_mode(state.mode)
        try:
            self.drones.save(record)
        except Exception as exc:
            logger.error("%s", PersistenceFailure("drones", exc))

    # ------------------------------------------------------------------ missions

    def _schedule_completion(self, state: DroneSimState) -> None:
        drone_id, order_id = state.drone_id, state.order_id
        self.deferred.schedule(
            self.config.mission_dwell,
            lambda: self.complete_mission(drone_id, order_id),
            timer_id=mission_timer_id(drone_id),
        )
        logger.info("Drone %s delivering; completion in %.0fs", drone_id, self.config.mission_dwell)

    def complete_mission(self, drone_id: str, order_id: str | None) -> bool:
        """Finish the delivery at the current destination and send the drone home.

        Marks the drone's assignment completed and the order delivered, then switches the
        drone to returning. Does nothing if the drone is no longer delivering.

        Returns:
            bool: True if the mission was completed.
        """
        now = self.clock()

        def finish(state: DroneSimState) -> bool:
            if state.mode is not DroneMode.DELIVERING:
                return False
            self._complete_assignment(drone_id, now)
            if order_id is not None:
                self._mark_delivered(order_id, drone_id, state.position.point, now)
            state.order_id = None
            state.destination = state.home_base
            state.transition_to(DroneMode.RETURNING)
            return True

        try:
            completed = self._update(drone_id, finish)
        except DroneNotFound:
            logger.debug("Drone %s left the simulation before completing its mission", drone_id)
            return False
        if completed:
            logger.info("Drone %s completed mission for order %s", drone_id, order_id)
            self.emit_event("mission_completed", {"drone_id": drone_id, "order_id": order_id, "timestamp": now})
        return completed

    def _complete_assignment(self, drone_id: str, now: float) -> None:
        try:
            record = self.drones.get(drone_id)
        except DroneNotFound:
            logger.warning("Drone %s has no record to complete", drone_id)
            return
        if record.assignment is not None and record.assignment.active:
            record.assignment.status = AssignmentStatus.COMPLETED
            record.assignment.completed_at = now
        if record.status is DroneStatus.EMERGENCY_ASSIGNED:
            record.status = DroneStatus.IN_FLIGHT
        try:
            self.drones.save(record)
        except Exception as exc:
            logger.error("%s", PersistenceFailure("drones", exc))

    def _mark_delivered(self, order_id: str, drone_id: str, location: GeoPoint, now: float) -> None:
        if self.orders is None:
            return
        with self.locks.hold_orders(order_id):
            try:
                order = self.orders.get(order_id)
            except LookupError:
                logger.warning("Order %s not found when completing delivery", order_id)
                return
            if order.is_terminal:
                return
            if order.drone_id is not None and order.drone_id != drone_id:
                logger.warning("Order %s moved to drone %s; ignoring delivery by %s", order_id, order.drone_id, drone_id)
                return
            order.status = OrderStatus.DELIVERED
            order.delivered_at = now
            order.record(OrderStatus.DELIVERED.value, f"Delivered by drone {drone_id}", now, location)
            if order.emergency.state in (EmergencyState.ASSIGNED, EmergencyState.FAILOVER):
                order.transition_emergency(EmergencyState.DELIVERED)
            order.tracking.is_live_tracking = False
            try:
                self.orders.save(order)
            except Exception as exc:
                logger.error("%s", PersistenceFailure("orders", exc))

    # ------------------------------------------------------------------ events

    def register_event_handler(self, event_name: str, handler: Callable[[str, Any], None]) -> None:
        """Register ``handler(event_name, data)`` for ``event_name``."""
        self.event_handlers.setdefault(event_name, []).append(handler)

    def emit_event(self, event_name: str, data: Any) -> None:
        for handler in list(self.event_handlers.get(event_name, ())):
            try:
                handler(event_name, data)
            except Exception:
                logger.exception("Error in event handler for %s", event_name)
