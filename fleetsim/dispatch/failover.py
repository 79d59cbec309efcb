"""Live tracking of emergency orders with automatic failover.

Each tracked order has its own TrackingSession and its own interval job (10 s by default), so
sessions never wait on each other. A check reads the assigned drone's telemetry, preferring
the live simulation over the stored record, and then:

    battery <= drone critical threshold   alert critical_battery, fail over
    now - estimated_delivery > 15 min     alert delivery_delayed, fail over
    no telemetry for more than 60 s       alert communication_lost only

At most one failover happens per check, and a battery breach takes precedence over a delay.
Progress along the route is the index of the nearest route waypoint.
"""

from collections.abc import Callable, Mapping
import copy
import logging
import threading
from typing import Any

import numpy as np

from fleetsim.config import TrackingConfig
from fleetsim.errors import DroneNotFound, IllegalTransition, OrderNotFound
from fleetsim.geo import GeoPoint
from fleetsim.store import DroneRecord, OrderRecord
from fleetsim.timer import IntervalJob

from .emergency import DASHBOARD_CHANNEL, EmergencyDispatcher
from .models import FailoverReason, Progress, TrackingAlert, TrackingSession, TrackingUpdate
from .routing import Route

logger = logging.getLogger(__name__)


def order_channel(order_id: str) -> str:
    return f"emergency-order-{order_id}"


def route_progress(route: Route, location: GeoPoint) -> Progress:
    """Progress of a drone at ``location`` along ``route``, from its nearest waypoint."""
    waypoints = route.waypoints
    if not waypoints:
        return Progress(percentage=0.0)
    distances = np.array([location.distance_km_to(wp.point) for wp in waypoints])
    nearest = int(np.argmin(distances))
    last = len(waypoints) - 1
    percentage = 100.0 if last == 0 else nearest / last * 100.0
    if nearest < last:
        upcoming = waypoints[nearest + 1]
        ahead = waypoints[nearest + 1 :]
        legs = np.array([a.point.distance_km_to(b.point) for a, b in zip(ahead, ahead[1:])])
        remaining = location.distance_km_to(upcoming.point) + float(legs.sum())
    else:
        upcoming = None
        remaining = float(distances[nearest])
    return Progress(
        percentage=percentage,
        current_waypoint=waypoints[nearest],
        next_waypoint=upcoming,
        remaining_distance_km=remaining,
    )


class FailoverMonitor:
    """Runs one tracking session per emergency order.

    Args:
        dispatcher: Performs failovers; its repositories, scheduler, broadcaster, planner
            and clock are shared.
        config: Tracking configuration. Uses defaults if None.
    """

    def __init__(self, dispatcher: EmergencyDispatcher, config: TrackingConfig | None = None):
        self.dispatcher = dispatcher
        self.config = config or TrackingConfig()
        self.orders = dispatcher.orders
        self.drones = dispatcher.drones
        self.scheduler = dispatcher.scheduler
        self.planner = dispatcher.planner
        self.locks = dispatcher.locks
        self.clock: Callable[[], float] = dispatcher.clock

        self._sessions: dict[str, TrackingSession] = {}
        self._jobs: dict[str, IntervalJob] = {}
        self._lock = threading.RLock()

    # ------------------------------------------------------------------ sessions

    def start_tracking(self, order_id: str, background: bool = True) -> TrackingSession:
        """Begin live tracking of ``order_id``.

        Starting an order that is already tracked returns the existing session.

        Raises:
            OrderNotFound: If the order does not exist.
        """
        now = self.clock()
        order = self.orders.get(order_id)
        with self._lock:
            existing = self._sessions.get(order_id)
            if existing is not None:
                return copy.deepcopy(existing)
            session = TrackingSession(order_id, order.drone_id, now)
            self._sessions[order_id] = session
            if background:
                job = IntervalJob(self.config.interval, lambda: self._tick(order_id), name=f"tracking-{order_id}")
                self._jobs[order_id] = job
                job.start()

        with self.locks.hold_orders(order_id):
            order = self.orders.get(order_id)
            if not order.is_terminal:
                order.tracking.is_live_tracking = True
                order.tracking.tracking_started = now
                self.orders.save(order)
        logger.info("Started tracking order %s (drone %s)", order_id, order.drone_id)
        return copy.deepcopy(session)

    def stop_tracking(self, order_id: str) -> bool:
        """Stop tracking ``order_id`` and discard its session.

        Returns:
            bool: True if the order was being tracked.
        """
        with self._lock:
            session = self._sessions.pop(order_id, None)
            job = self._jobs.pop(order_id, None)
        if job is not None:
            job.cancel()
        if session is None:
            return False

        with self.locks.hold_orders(order_id):
            try:
                order = self.orders.get(order_id)
            except OrderNotFound:
                logger.info("Stopped tracking order %s (order no longer exists)", order_id)
                return True
            order.tracking.is_live_tracking = False
            self.orders.save(order)
        logger.info("Stopped tracking order %s after %d updates", order_id, session.update_count)
        return True

    def shutdown(self) -> None:
        with self._lock:
            order_ids = list(self._sessions)
        for order_id in order_ids:
            self.stop_tracking(order_id)

    def is_tracking(self, order_id: str) -> bool:
        with self._lock:
            return order_id in self._sessions

    def active_sessions(self) -> list[TrackingSession]:
        with self._lock:
            return [copy.deepcopy(session) for session in self._sessions.values()]

    def tracking_status(self, order_id: str) -> dict[str, Any] | None:
        with self._lock:
            session = self._sessions.get(order_id)
            if session is None:
                return None
            return {
                "orderId": session.order_id,
                "droneId": session.drone_id,
                "startedAt": session.started_at,
                "lastUpdateAt": session.last_update_at,
                "updateCount": session.update_count,
                "duration": session.duration(self.clock()),
                "failovers": len(session.failovers),
                "isActive": True,
            }

    # ------------------------------------------------------------------ checks

    def _tick(self, order_id: str) -> None:
        if self.is_tracking(order_id):
            self.check(order_id)

    def check(self, order_id: str) -> TrackingUpdate:
        """Run one tracking pass for ``order_id``.

        The order's tracking fields are saved before any failover runs. They are written to a
        copy re-read under the order lock, after the drone telemetry has been gathered, so a
        delivery completed in between is never undone. A terminal or missing order ends the
        session.
        """
        now = self.clock()
        try:
            order = self.orders.get(order_id)
        except OrderNotFound:
            return self._order_gone(order_id, now)
        if order.is_terminal:
            return self._order_finished(order, now)

        drone, last_seen = self._telemetry(order.drone_id)
        location = drone.location if drone is not None else None
        battery = drone.battery_level if drone is not None else None

        progress = None
        adjustments: tuple[str, ...] = ()
        with self.locks.hold_orders(order_id):
            try:
                order = self.orders.get(order_id)
            except OrderNotFound:
                order = None
            if order is not None and not order.is_terminal:
                if location is not None:
                    order.tracking.last_location = location
                    order.tracking.last_location_update = now
                    if order.route is not None:
                        progress = route_progress(order.route, location)
                        if drone.battery_level < drone.thresholds.emergency:
                            adjustment = self.planner.adjust_route(
                                order.route,
                                location,
                                order.delivery,
                                battery_level=drone.battery_level,
                                emergency_mode=True,
                            )
                            if adjustment.changed:
                                order.route = adjustment.route
                                adjustments = adjustment.adjustments
                self.orders.save(order)
        if order is None:
            return self._order_gone(order_id, now)
        if order.is_terminal:
            return self._order_finished(order, now)

        alerts = []
        battery_breach = drone is not None and drone.battery_level <= drone.thresholds.critical
        if battery_breach:
            alerts.append(
                TrackingAlert("critical_battery", "critical", f"Drone battery critical: {drone.battery_level:.1f}%")
            )
        if last_seen is not None and now - last_seen > self.config.communication_timeout:
            alerts.append(
                TrackingAlert("communication_lost", "high", f"No telemetry for {now - last_seen:.0f}s")
            )
        delayed = order.estimated_delivery is not None and now - order.estimated_delivery > self.config.delay_threshold
        if delayed:
            alerts.append(
                TrackingAlert(
                    "delivery_delayed",
                    "high",
                    f"Delivery overdue by {(now - order.estimated_delivery) / 60.0:.0f} minutes",
                )
            )

        failover = None
        reason = None
        if battery_breach:
            reason = FailoverReason.CRITICAL_BATTERY
        elif delayed:
            reason = FailoverReason.DELAYED_DELIVERY
        if reason is not None:
            try:
                failover = self.dispatcher.failover(order_id, reason)
            except IllegalTransition:
                logger.info("Order %s left its assigned state before failover; skipping", order_id)

        with self._lock:
            session = self._sessions.get(order_id)
            if session is not None:
                session.last_update_at = now
                session.update_count += 1
                if failover is not None:
                    session.failovers.append(failover)
                    if failover.success:
                        session.drone_id = failover.new_drone_id

        drone_id = order.drone_id
        if failover is not None and failover.success:
            drone_id = failover.new_drone_id
        update = TrackingUpdate(
            order_id=order_id,
            drone_id=drone_id,
            timestamp=now,
            location=location,
            battery_level=battery,
            progress=progress,
            alerts=tuple(alerts),
            failover=failover,
            route_adjustments=adjustments,
        )
        for alert in alerts:
            logger.warning("Order %s: %s", order_id, alert.message)
        payload = update.as_dict()
        self._broadcast(order_channel(order_id), payload)
        self._broadcast(DASHBOARD_CHANNEL, {"type": "tracking_update", **payload})
        return update

    def _order_gone(self, order_id: str, now: float) -> TrackingUpdate:
        logger.warning("Tracked order %s disappeared", order_id)
        self.stop_tracking(order_id)
        return TrackingUpdate(order_id, None, now, stopped=True)

    def _order_finished(self, order: OrderRecord, now: float) -> TrackingUpdate:
        self.stop_tracking(order.order_id)
        return TrackingUpdate(order.order_id, order.drone_id, now, stopped=True)

    def _telemetry(self, drone_id: str | None) -> tuple[DroneRecord | None, float | None]:
        """Current view of the drone and the time it last reported."""
        if drone_id is None:
            return None, None
        try:
            drone = self.drones.get(drone_id)
        except DroneNotFound:
            logger.warning("Tracked drone %s has no record", drone_id)
            return None, None
        last_seen = drone.last_seen
        if self.scheduler is not None:
            state = self.scheduler.query(drone_id)
            if state is not None:
                drone.battery_level = state.battery.level
                drone.location = state.position.point
                last_seen = max(last_seen or 0.0, state.last_tick_at)
        return drone, last_seen

    def _broadcast(self, channel: str, payload: Mapping[str, Any]) -> None:
        broadcaster = self.dispatcher.broadcaster
        if broadcaster is None:
            return
        try:
            broadcaster.publish(channel, payload)
        except Exception:
            logger.exception("Broadcast on %s failed", channel)
