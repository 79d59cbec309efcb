"""Emergency dispatch: drone selection, pausing of competing work, and failover.

Every dispatcher operation runs in two phases. The plan phase reads the stores, scores the
fleet and computes the route without writing anything, so a NoCandidateDrone leaves no trace.
The commit phase takes the per-drone locks of every drone it touches (shared with the
simulation scheduler, acquired in sorted order), then the locks of the orders it touches. It
re-reads those orders under their locks and writes drone status, assignment and order together.

Broadcast channels:
    emergency-assignment        a drone was assigned to an emergency order
    emergency-failover          an order moved to a backup drone
    emergency-ground-support    no backup drone exists; manual intervention required
    emergency-dashboard-update  any change to an emergency order
"""

from collections.abc import Callable, Iterable, Mapping
import logging
import threading
import time
from typing import Any

from fleetsim.config import DispatchConfig
from fleetsim.errors import DroneNotFound, IllegalTransition, NoCandidateDrone
from fleetsim.simulator import SimulationScheduler
from fleetsim.state import KeyedLocks
from fleetsim.store import (
    Assignment,
    AssignmentStatus,
    DroneRecord,
    DroneRepository,
    DroneStatus,
    EmergencyState,
    NotificationGateway,
    OrderPriority,
    OrderRecord,
    OrderRepository,
    OrderStatus,
    RealtimeBroadcaster,
)

from .models import DispatchCandidate, DispatchResult, FailoverReason, FailoverResult
from .routing import Route, RoutePlanner
from .scoring import DroneScoringEngine

logger = logging.getLogger(__name__)

ASSIGNMENT_CHANNEL = "emergency-assignment"
FAILOVER_CHANNEL = "emergency-failover"
GROUND_SUPPORT_CHANNEL = "emergency-ground-support"
DASHBOARD_CHANNEL = "emergency-dashboard-update"

PAUSABLE_ORDER_STATUSES = frozenset({OrderStatus.PROCESSING, OrderStatus.IN_TRANSIT})
PAUSABLE_PRIORITIES = frozenset({OrderPriority.NORMAL, OrderPriority.HIGH})


class EmergencyDispatcher:
    """Assigns drones to emergency orders and reassigns them on failover.

    Args:
        drones: Drone repository.
        orders: Order repository.
        broadcaster: Live fan-out for dashboard updates.
        notifier: Notification gateway for ground staff and emergency contacts.
        scheduler: Running simulation, if any. Live battery and position override the stored
            record, and assigned drones are sent out through it.
        config: Dispatch configuration. Uses defaults if None.
        locks: Per-drone and per-order locks. Defaults to the scheduler's table so both components
            agree.
        clock: Returns the current epoch time in seconds.
    """

    def __init__(
        self,
        drones: DroneRepository,
        orders: OrderRepository,
        broadcaster: RealtimeBroadcaster | None = None,
        notifier: NotificationGateway | None = None,
        scheduler: SimulationScheduler | None = None,
        config: DispatchConfig | None = None,
        *,
        scoring: DroneScoringEngine | None = None,
        planner: RoutePlanner | None = None,
        locks: KeyedLocks | None = None,
        clock: Callable[[], float] = time.time,
    ):
        self.drones = drones
        self.orders = orders
        self.broadcaster = broadcaster
        self.notifier = notifier
        self.scheduler = scheduler
        self.config = config or DispatchConfig()
        self.clock = clock
        self.scoring = scoring or DroneScoringEngine(self.config)
        self.planner = planner or RoutePlanner(self.config.default_speed_kmh, clock)
        if locks is None:
            locks = scheduler.locks if scheduler is not None else KeyedLocks()
        self.locks = locks
        self._dispatch_lock = threading.RLock()

    # ------------------------------------------------------------------ live view

    def live_view(self, drone: DroneRecord) -> DroneRecord:
        """Overlay simulated battery and position on a drone record copy."""
        if self.scheduler is None:
            return drone
        state = self.scheduler.query(drone.drone_id)
        if state is not None:
            drone.battery_level = state.battery.level
            drone.location = state.position.point
        return drone

    def live_drones(self) -> list[DroneRecord]:
        return [self.live_view(drone) for drone in self.drones.find()]

    # ------------------------------------------------------------------ assign

    def assign(self, order_id: str, requesting_user: str = "system", reason: str = "") -> DispatchResult:
        """Declare ``order_id`` an emergency and dispatch the best drone to it.

        Competing normal/high-priority deliveries whose drones are in flight are paused and
        their drones freed; those drones take part in the selection. Every order touched is
        re-read under its order lock before it is written, so a delivery completed meanwhile
        is neither paused nor reopened.

        Raises:
            OrderNotFound: If the order does not exist.
            IllegalTransition: If the order is already past emergency assignment.
            NoCandidateDrone: If no drone is eligible. Nothing has been written in that case.
        """
        with self._dispatch_lock:
            now = self.clock()
            order = self.orders.get(order_id)
            self._check_assignable(order)

            competing = self._competing_orders(order_id)
            freed = {other.drone_id for other in competing}
            pool = []
            for drone in self.live_drones():
                if drone.drone_id in freed:
                    drone.status = DroneStatus.AVAILABLE
                pool.append(drone)
            candidate = self.scoring.select(pool, order)
            route = self._plan_route(candidate, order)

            with self.locks.hold(candidate.drone_id, *freed):
                with self.locks.hold_orders(order_id, *(other.order_id for other in competing)):
                    order = self.orders.get(order_id)
                    self._check_assignable(order)
                    competing = [other for other in map(self._still_competing, competing) if other is not None]
                    freed = {other.drone_id for other in competing}

                    drone = self.live_view(self.drones.get(candidate.drone_id))
                    if drone.drone_id not in freed and not self.scoring.is_eligible(drone, order):
                        logger.warning("Drone %s changed while dispatching order %s", drone.drone_id, order_id)
                        raise NoCandidateDrone(order_id)

                    paused = [self._pause(other, order_id, candidate.drone_id, now) for other in competing]
                    drone = self._commit_drone(drone.drone_id, order, now)

                    if order.emergency.state is EmergencyState.NORMAL:
                        order.transition_emergency(EmergencyState.PENDING)
                    order.is_emergency = True
                    order.priority = OrderPriority.EMERGENCY
                    order.emergency.reason = reason
                    order.emergency.approved_by = requesting_user
                    order.emergency.approved_at = now
                    self._attach(order, drone, route, now)
                    order.tracking.is_live_tracking = True
                    order.tracking.tracking_started = now
                    order.record("emergency_assigned", f"Emergency drone {drone.drone_id} assigned", now, drone.location)
                    order.transition_emergency(EmergencyState.ASSIGNED)
                    self.orders.save(order)

                self._send_out(drone.drone_id, order)

        logger.info(
            "Order %s dispatched to drone %s (score %.1f, %d orders paused, ETA %.1f min)",
            order_id,
            drone.drone_id,
            candidate.score,
            len(paused),
            route.estimated_time_minutes,
        )
        payload = {
            "orderId": order_id,
            "droneId": drone.drone_id,
            "pausedOrders": paused,
            "estimatedTime": route.estimated_time_minutes,
            "route": route.as_dict(),
        }
        self._broadcast(ASSIGNMENT_CHANNEL, payload)
        self._broadcast(DASHBOARD_CHANNEL, {"type": "emergency_assigned", **payload})
        return DispatchResult(order, drone, tuple(paused), route, route.estimated_time_minutes)

    @staticmethod
    def _check_assignable(order: OrderRecord) -> None:
        if order.is_terminal or not (
            order.emergency.state is EmergencyState.PENDING
            or order.can_transition_emergency(EmergencyState.PENDING)
        ):
            raise IllegalTransition(order.emergency.state, EmergencyState.ASSIGNED)

    @staticmethod
    def _is_pausable(order: OrderRecord) -> bool:
        return (
            order.status in PAUSABLE_ORDER_STATUSES
            and order.priority in PAUSABLE_PRIORITIES
            and not order.is_emergency
            and order.drone_id is not None
        )

    def _competing_orders(self, order_id: str) -> list[OrderRecord]:
        candidates = self.orders.find(lambda other: other.order_id != order_id and self._is_pausable(other))
        in_flight = {
            drone.drone_id for drone in self.drones.find(lambda drone: drone.status is DroneStatus.IN_FLIGHT)
        }
        return [other for other in candidates if other.drone_id in in_flight]

    def _still_competing(self, planned: OrderRecord) -> OrderRecord | None:
        """Re-read a competing order under its lock; None if it no longer needs pausing."""
        try:
            order = self.orders.get(planned.order_id)
            drone = self.drones.get(planned.drone_id)
        except LookupError:
            return None
        unchanged = order.drone_id == planned.drone_id and drone.status is DroneStatus.IN_FLIGHT
        if not (unchanged and self._is_pausable(order)):
            logger.info("Order %s changed while dispatching; not pausing it", planned.order_id)
            return None
        return order

    def _pause(self, order: OrderRecord, emergency_order_id: str, selected_drone_id: str, now: float) -> str:
        drone_id = order.drone_id
        order.status = OrderStatus.PROCESSING
        order.drone_id = None
        order.record("paused_for_emergency", f"Delivery paused for emergency order {emergency_order_id}", now)
        self.orders.save(order)

        drone = self.drones.get(drone_id)
        drone.status = DroneStatus.AVAILABLE
        if drone.assignment is not None and drone.assignment.order_id == order.order_id:
            drone.assignment.status = AssignmentStatus.CANCELLED
        self.drones.save(drone)
        if drone_id != selected_drone_id:
            self._recall(drone_id)
        logger.info("Paused order %s and freed drone %s", order.order_id, drone_id)
        return order.order_id

    # ------------------------------------------------------------------ failover

    def failover(self, order_id: str, reason: FailoverReason) -> FailoverResult:
        """Move an emergency order to the best drone other than its current one.

        The old drone is retired to ``critical_battery`` or ``maintenance`` depending on
        ``reason``. When no backup exists the order is left as it is and ground staff are
        notified; the result then has ``requires_manual_intervention`` set.

        Raises:
            OrderNotFound: If the order does not exist.
            IllegalTransition: If the order is not in an assigned emergency state.
        """
        with self._dispatch_lock:
            now = self.clock()
            order = self.orders.get(order_id)
            self._check_failover(order)

            old_drone_id = order.drone_id
            exclude = (old_drone_id,) if old_drone_id else ()
            try:
                candidate = self.scoring.select(self.live_drones(), order, exclude)
                route = self._plan_route(candidate, order)
                with self.locks.hold(old_drone_id, candidate.drone_id):
                    with self.locks.hold_orders(order_id):
                        # The old drone may have delivered since the plan was made.
                        order = self.orders.get(order_id)
                        self._check_failover(order)
                        drone = self.live_view(self.drones.get(candidate.drone_id))
                        if not self.scoring.is_eligible(drone, order):
                            raise NoCandidateDrone(order_id, exclude)

                        if old_drone_id is not None:
                            self._retire(old_drone_id, order_id, reason)
                        drone = self._commit_drone(drone.drone_id, order, now)

                        self._attach(order, drone, route, now)
                        order.emergency.failover_count += 1
                        order.emergency.last_failover_reason = reason.value
                        order.record(
                            "emergency_failover",
                            f"Failover from drone {old_drone_id} to {drone.drone_id}: {reason.value}",
                            now,
                            drone.location,
                        )
                        order.transition_emergency(EmergencyState.FAILOVER)
                        self.orders.save(order)

                    self._send_out(drone.drone_id, order)
            except NoCandidateDrone as exc:
                return self._require_manual_intervention(order, reason, exc)

        message = f"Emergency order {order_id} reassigned from drone {old_drone_id} to {drone.drone_id} ({reason.value})"
        logger.warning(message)
        payload = {
            "orderId": order_id,
            "oldDroneId": old_drone_id,
            "newDroneId": drone.drone_id,
            "reason": reason.value,
            "estimatedTime": route.estimated_time_minutes,
        }
        self._broadcast(FAILOVER_CHANNEL, payload)
        self._broadcast(DASHBOARD_CHANNEL, {"type": "emergency_failover", **payload})
        self._notify(self.config.ground_staff, message, "high")
        return FailoverResult(
            order_id=order_id,
            reason=reason,
            success=True,
            old_drone_id=old_drone_id,
            new_drone_id=drone.drone_id,
            route=route,
            message=message,
        )

    @staticmethod
    def _check_failover(order: OrderRecord) -> None:
        if order.is_terminal or not order.can_transition_emergency(EmergencyState.FAILOVER):
            raise IllegalTransition(order.emergency.state, EmergencyState.FAILOVER)

    def _retire(self, drone_id: str, order_id: str, reason: FailoverReason) -> None:
        try:
            drone = self.drones.get(drone_id)
        except DroneNotFound:
            logger.warning("Retiring unknown drone %s", drone_id)
            return
        if reason is FailoverReason.CRITICAL_BATTERY:
            drone.status = DroneStatus.CRITICAL_BATTERY
        else:
            drone.status = DroneStatus.MAINTENANCE
        if drone.assignment is not None and drone.assignment.order_id == order_id:
            drone.assignment.status = AssignmentStatus.CANCELLED
        self.drones.save(drone)
        self._recall(drone_id)
        logger.info("Retired drone %s to %s", drone_id, drone.status.value)

    def _require_manual_intervention(
        self, order: OrderRecord, reason: FailoverReason, exc: NoCandidateDrone
    ) -> FailoverResult:
        message = f"No backup drone available for emergency order {order.order_id}; manual intervention required"
        logger.warning("%s (%s)", message, reason.value)
        payload = {
            "orderId": order.order_id,
            "droneId": order.drone_id,
            "reason": reason.value,
            "requiresManualIntervention": True,
            "message": message,
        }
        self._broadcast(GROUND_SUPPORT_CHANNEL, payload)
        self._broadcast(DASHBOARD_CHANNEL, {"type": "failover_failed", **payload})
        self._notify(self.config.ground_staff, message, "critical")
        return FailoverResult(
            order_id=order.order_id,
            reason=reason,
            success=False,
            old_drone_id=order.drone_id,
            requires_manual_intervention=True,
            message=str(exc),
        )

    # ------------------------------------------------------------------ other order actions

    def notify_emergency_contacts(self, order_id: str, message: str) -> int:
        """Notify every contact on the order that has not been notified yet.

        Returns:
            int: Number of contacts notified.
        """
        with self._dispatch_lock, self.locks.hold_orders(order_id):
            now = self.clock()
            order = self.orders.get(order_id)
            pending = [contact for contact in order.tracking.contacts if not contact.notified]
            if not pending:
                return 0
            self._notify([contact.phone for contact in pending], message, "high")
            for contact in pending:
                contact.notified = True
                contact.notified_at = now
            self.orders.save(order)
        logger.info("Notified %d emergency contacts for order %s", len(pending), order_id)
        return len(pending)

    def fail(self, order_id: str, reason: str) -> OrderRecord:
        """Mark an emergency order failed and release its drone.

        Raises:
            OrderNotFound: If the order does not exist.
            IllegalTransition: If the order cannot fail from its current emergency state.
        """
        with self._dispatch_lock:
            now = self.clock()
            order = self.orders.get(order_id)
            if order.is_terminal or not order.can_transition_emergency(EmergencyState.FAILED):
                raise IllegalTransition(order.emergency.state, EmergencyState.FAILED)

            drone_id = order.drone_id
            with self.locks.hold(drone_id), self.locks.hold_orders(order_id):
                order = self.orders.get(order_id)
                if order.is_terminal or not order.can_transition_emergency(EmergencyState.FAILED):
                    raise IllegalTransition(order.emergency.state, EmergencyState.FAILED)
                if drone_id is not None:
                    self._release(drone_id, order_id)
                order.status = OrderStatus.FAILED
                order.tracking.is_live_tracking = False
                order.record(OrderStatus.FAILED.value, reason, now)
                order.transition_emergency(EmergencyState.FAILED)
                self.orders.save(order)

        logger.warning("Emergency order %s failed: %s", order_id, reason)
        self._broadcast(DASHBOARD_CHANNEL, {"type": "emergency_failed", "orderId": order_id, "reason": reason})
        return order

    def _release(self, drone_id: str, order_id: str) -> None:
        try:
            drone = self.drones.get(drone_id)
        except DroneNotFound:
            logger.warning("Releasing unknown drone %s", drone_id)
            return
        if drone.assignment is not None and drone.assignment.order_id == order_id:
            drone.assignment.status = AssignmentStatus.CANCELLED
        if drone.status is DroneStatus.EMERGENCY_ASSIGNED:
            drone.status = DroneStatus.AVAILABLE
        self.drones.save(drone)
        self._recall(drone_id)

    # ------------------------------------------------------------------ helpers

    def _plan_route(self, candidate: DispatchCandidate, order: OrderRecord) -> Route:
        speed = candidate.drone.average_speed or self.config.default_speed_kmh
        return self.planner.emergency_route(candidate.drone.location, order.pickup, order.delivery, speed)

    def _commit_drone(self, drone_id: str, order: OrderRecord, now: float) -> DroneRecord:
        drone = self.drones.get(drone_id)
        drone.status = DroneStatus.EMERGENCY_ASSIGNED
        drone.assignment = Assignment(
            order_id=order.order_id,
            drone_id=drone_id,
            assigned_at=now,
            priority=OrderPriority.EMERGENCY,
            status=AssignmentStatus.ASSIGNED,
            delivery_location=order.delivery,
        )
        self.drones.save(drone)
        return self.live_view(drone)

    @staticmethod
    def _attach(order: OrderRecord, drone: DroneRecord, route: Route, now: float) -> None:
        order.drone_id = drone.drone_id
        order.status = OrderStatus.PROCESSING
        order.route = route
        order.estimated_delivery = now + route.estimated_time_minutes * 60.0

    def _send_out(self, drone_id: str, order: OrderRecord) -> None:
        if self.scheduler is None:
            return
        if drone_id in self.scheduler:
            self.scheduler.assign_mission(drone_id, order.delivery, order.order_id, emergency=True)
        else:
            self.scheduler.add_drone(drone_id)

    def _recall(self, drone_id: str) -> None:
        if self.scheduler is not None and drone_id in self.scheduler:
            self.scheduler.recall(drone_id)

    def _broadcast(self, channel: str, payload: Mapping[str, Any]) -> None:
        if self.broadcaster is None:
            return
        try:
            self.broadcaster.publish(channel, payload)
        except Exception:
            logger.exception("Broadcast on %s failed", channel)

    def _notify(self, recipients: Iterable[str], message: str, severity: str) -> None:
        if self.notifier is None:
            return
        try:
            self.notifier.notify(recipients, message, severity)
        except Exception:
            logger.exception("Notification failed: %s", message)
