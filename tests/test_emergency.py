"""
Tests for emergency dispatch, pausing and failover.
"""

import unittest

from fleetsim.config import SimulationConfig
from fleetsim.dispatch import (
    ASSIGNMENT_CHANNEL,
    DASHBOARD_CHANNEL,
    FAILOVER_CHANNEL,
    GROUND_SUPPORT_CHANNEL,
    EmergencyDispatcher,
    FailoverReason,
)
from fleetsim.errors import IllegalTransition, NoCandidateDrone
from fleetsim.simulator import SimulationScheduler
from fleetsim.store import (
    Assignment,
    AssignmentStatus,
    DroneStatus,
    EmergencyContact,
    EmergencyState,
    LoggingNotificationGateway,
    OrderPriority,
    OrderStatus,
    RecordingBroadcaster,
)
from fleetsim.vehicles import DroneMode

from fleet_fixtures import (
    BASE,
    HookedDroneRepository,
    HookedOrderRepository,
    ManualClock,
    make_drone,
    make_order,
    seeded_rng,
)


def busy_drone(drone_id, order_id, location, **overrides):
    assignment = Assignment(order_id, drone_id, assigned_at=0.0, delivery_location=location.forward(0.0, 3_000.0))
    return make_drone(drone_id, location, status=DroneStatus.IN_FLIGHT, assignment=assignment, **overrides)


def delivery_order(order_id, drone_id, priority=OrderPriority.NORMAL, **overrides):
    return make_order(order_id, status=OrderStatus.IN_TRANSIT, priority=priority, drone_id=drone_id, **overrides)


def mark_delivered(orders, order_id):
    order = orders.get(order_id)
    order.status = OrderStatus.DELIVERED
    order.transition_emergency(EmergencyState.DELIVERED)
    order.tracking.is_live_tracking = False
    orders.save(order)


class DispatcherTestCase(unittest.TestCase):
    def setUp(self):
        self.clock = ManualClock()
        self.drones = HookedDroneRepository()
        self.orders = HookedOrderRepository([make_order("o1")])
        self.broadcaster = RecordingBroadcaster()
        self.notifier = LoggingNotificationGateway()
        self.dispatcher = EmergencyDispatcher(
            self.drones, self.orders, self.broadcaster, self.notifier, clock=self.clock
        )

    def snapshot(self):
        return self.drones.find(), self.orders.find()


class TestAssign(DispatcherTestCase):
    """Test emergency assignment."""

    def test_assigns_best_drone(self):
        self.drones.save(make_drone("d1", BASE.forward(90.0, 1_000.0)))
        self.drones.save(make_drone("d2", BASE.forward(90.0, 20_000.0)))

        result = self.dispatcher.assign("o1", requesting_user="dispatcher-7", reason="cardiac kit")

        self.assertEqual(result.assigned_drone.drone_id, "d1")
        self.assertEqual(result.paused_orders, ())

        drone = self.drones.get("d1")
        self.assertIs(drone.status, DroneStatus.EMERGENCY_ASSIGNED)
        self.assertEqual(drone.assignment.order_id, "o1")
        self.assertIs(drone.assignment.priority, OrderPriority.EMERGENCY)
        self.assertIs(drone.assignment.status, AssignmentStatus.ASSIGNED)
        self.assertIs(self.drones.get("d2").status, DroneStatus.AVAILABLE)

        order = self.orders.get("o1")
        self.assertEqual(drone.assignment.delivery_location, order.delivery)
        self.assertEqual(order.drone_id, "d1")
        self.assertIs(order.status, OrderStatus.PROCESSING)
        self.assertTrue(order.is_emergency)
        self.assertIs(order.priority, OrderPriority.EMERGENCY)
        self.assertIs(order.emergency.state, EmergencyState.ASSIGNED)
        self.assertEqual(order.emergency.approved_by, "dispatcher-7")
        self.assertEqual(order.emergency.reason, "cardiac kit")
        self.assertEqual(order.emergency.approved_at, 1_000.0)
        self.assertTrue(order.tracking.is_live_tracking)
        self.assertEqual(order.route.kind, "emergency")
        self.assertAlmostEqual(order.estimated_delivery, 1_000.0 + result.route.estimated_time_minutes * 60.0)
        self.assertEqual(order.tracking_history[-1].status, "emergency_assigned")

        self.assertEqual([payload["droneId"] for payload in self.broadcaster.on(ASSIGNMENT_CHANNEL)], ["d1"])
        self.assertEqual(self.broadcaster.on(DASHBOARD_CHANNEL)[0]["type"], "emergency_assigned")

    def test_route_runs_through_pickup(self):
        self.drones.save(make_drone("d1", BASE.forward(90.0, 1_000.0)))
        route = self.dispatcher.assign("o1").route
        self.assertEqual([wp.label for wp in route.waypoints], ["drone_current", "pickup", "delivery"])
        self.assertAlmostEqual(route.distance_km, 3.0, places=2)

    def test_pauses_competing_deliveries(self):
        self.drones.save(make_drone("d1", BASE.forward(90.0, 10_000.0)))
        self.drones.save(busy_drone("busy", "o-normal", BASE.forward(0.0, 500.0)))
        self.drones.save(busy_drone("busy2", "o-high", BASE.forward(0.0, 30_000.0)))
        self.drones.save(busy_drone("em", "o-urgent", BASE.forward(0.0, 700.0)))
        self.drones.save(make_drone("parked", BASE.forward(0.0, 900.0)))
        self.orders.save(delivery_order("o-normal", "busy"))
        self.orders.save(delivery_order("o-high", "busy2", OrderPriority.HIGH))
        self.orders.save(delivery_order("o-urgent", "em", OrderPriority.EMERGENCY, is_emergency=True))
        self.orders.save(make_order("o-parked", status=OrderStatus.PROCESSING, drone_id="parked"))

        result = self.dispatcher.assign("o1")

        self.assertEqual(result.assigned_drone.drone_id, "busy")
        self.assertCountEqual(result.paused_orders, ["o-normal", "o-high"])
        for order_id in result.paused_orders:
            order = self.orders.get(order_id)
            self.assertIs(order.status, OrderStatus.PROCESSING)
            self.assertIsNone(order.drone_id)
            self.assertEqual(order.tracking_history[-1].status, "paused_for_emergency")
            active = self.drones.find(
                lambda drone, oid=order_id: drone.assignment is not None
                and drone.assignment.order_id == oid
                and drone.assignment.active
            )
            self.assertEqual(active, [])

        freed = self.drones.get("busy2")
        self.assertIs(freed.status, DroneStatus.AVAILABLE)
        self.assertIs(freed.assignment.status, AssignmentStatus.CANCELLED)
        self.assertIs(self.drones.get("busy").status, DroneStatus.EMERGENCY_ASSIGNED)

        urgent = self.orders.get("o-urgent")
        self.assertEqual(urgent.drone_id, "em")
        self.assertIs(urgent.status, OrderStatus.IN_TRANSIT)
        self.assertEqual(self.orders.get("o-parked").drone_id, "parked")

    def finish_delivery(self, order_id, drone_id):
        order = self.orders.get(order_id)
        order.status = OrderStatus.DELIVERED
        order.record("delivered", f"Delivered by drone {drone_id}", self.clock.now)
        self.orders.save(order)
        drone = self.drones.get(drone_id)
        drone.assignment.status = AssignmentStatus.COMPLETED
        self.drones.save(drone)

    def test_delivery_finished_while_planning_is_not_paused(self):
        self.drones.save(make_drone("d1", BASE.forward(90.0, 1_000.0)))
        self.drones.save(busy_drone("busy", "o-normal", BASE.forward(0.0, 20_000.0)))
        self.orders.save(delivery_order("o-normal", "busy"))
        self.orders.hooks["find"] = lambda: self.finish_delivery("o-normal", "busy")

        result = self.dispatcher.assign("o1")

        self.assertEqual(result.assigned_drone.drone_id, "d1")
        self.assertEqual(result.paused_orders, ())
        delivered = self.orders.get("o-normal")
        self.assertIs(delivered.status, OrderStatus.DELIVERED)
        self.assertEqual(delivered.drone_id, "busy")
        self.assertEqual(delivered.tracking_history[-1].status, "delivered")
        busy = self.drones.get("busy")
        self.assertIs(busy.status, DroneStatus.IN_FLIGHT)
        self.assertIs(busy.assignment.status, AssignmentStatus.COMPLETED)

    def test_freed_drone_that_finished_meanwhile_is_not_taken(self):
        self.drones.save(make_drone("d1", BASE.forward(90.0, 20_000.0)))
        self.drones.save(busy_drone("busy", "o-normal", BASE.forward(0.0, 500.0)))
        self.orders.save(delivery_order("o-normal", "busy"))
        self.orders.hooks["find"] = lambda: self.finish_delivery("o-normal", "busy")

        with self.assertRaises(NoCandidateDrone):
            self.dispatcher.assign("o1")

        order = self.orders.get("o1")
        self.assertIs(order.emergency.state, EmergencyState.NORMAL)
        self.assertIsNone(order.drone_id)
        self.assertIs(self.orders.get("o-normal").status, OrderStatus.DELIVERED)
        self.assertIs(self.drones.get("busy").status, DroneStatus.IN_FLIGHT)
        self.assertIs(self.drones.get("d1").status, DroneStatus.AVAILABLE)

    def test_no_candidate_writes_nothing(self):
        self.drones.save(make_drone("d1", battery_level=20.0))
        self.drones.save(busy_drone("busy", "o-normal", BASE, battery_level=15.0))
        self.orders.save(delivery_order("o-normal", "busy"))
        before = self.snapshot()

        with self.assertRaises(NoCandidateDrone):
            self.dispatcher.assign("o1")

        self.assertEqual(self.snapshot(), before)
        self.assertEqual(self.broadcaster.messages, [])

    def test_cannot_assign_twice(self):
        self.drones.save(make_drone("d1"))
        self.drones.save(make_drone("d2"))
        self.dispatcher.assign("o1")
        with self.assertRaises(IllegalTransition):
            self.dispatcher.assign("o1")
        self.assertIs(self.drones.get("d2").status, DroneStatus.AVAILABLE)

    def test_terminal_order_rejected(self):
        self.drones.save(make_drone("d1"))
        self.orders.save(make_order("done", status=OrderStatus.DELIVERED))
        with self.assertRaises(IllegalTransition):
            self.dispatcher.assign("done")


class TestFailover(DispatcherTestCase):
    """Test reassignment to a backup drone."""

    def setUp(self):
        super().setUp()
        self.drones.save(make_drone("d1", BASE.forward(90.0, 1_000.0)))

    def test_moves_order_to_backup(self):
        self.drones.save(make_drone("d2", BASE.forward(90.0, 5_000.0)))
        self.dispatcher.assign("o1")
        self.clock.advance(60.0)

        result = self.dispatcher.failover("o1", FailoverReason.CRITICAL_BATTERY)

        self.assertTrue(result.success)
        self.assertFalse(result.requires_manual_intervention)
        self.assertEqual((result.old_drone_id, result.new_drone_id), ("d1", "d2"))

        old = self.drones.get("d1")
        self.assertIs(old.status, DroneStatus.CRITICAL_BATTERY)
        self.assertIs(old.assignment.status, AssignmentStatus.CANCELLED)
        new = self.drones.get("d2")
        self.assertIs(new.status, DroneStatus.EMERGENCY_ASSIGNED)
        self.assertEqual(new.assignment.order_id, "o1")

        order = self.orders.get("o1")
        self.assertEqual(order.drone_id, "d2")
        self.assertIs(order.emergency.state, EmergencyState.FAILOVER)
        self.assertEqual(order.emergency.failover_count, 1)
        self.assertEqual(order.emergency.last_failover_reason, "critical_battery")
        self.assertEqual(order.tracking_history[-1].status, "emergency_failover")
        self.assertAlmostEqual(order.estimated_delivery, 1_060.0 + result.route.estimated_time_minutes * 60.0)

        self.assertEqual(self.broadcaster.on(FAILOVER_CHANNEL)[0]["newDroneId"], "d2")
        self.assertEqual(self.notifier.sent[-1][0], ("ground-support",))
        self.assertEqual(self.notifier.sent[-1][2], "high")

    def test_repeated_failover(self):
        self.drones.save(make_drone("d2", BASE.forward(90.0, 5_000.0)))
        self.drones.save(make_drone("d3", BASE.forward(90.0, 9_000.0)))
        self.dispatcher.assign("o1")

        self.dispatcher.failover("o1", FailoverReason.CRITICAL_BATTERY)
        result = self.dispatcher.failover("o1", FailoverReason.DELAYED_DELIVERY)

        self.assertEqual((result.old_drone_id, result.new_drone_id), ("d2", "d3"))
        self.assertIs(self.drones.get("d2").status, DroneStatus.MAINTENANCE)
        order = self.orders.get("o1")
        self.assertEqual(order.emergency.failover_count, 2)
        self.assertIs(order.emergency.state, EmergencyState.FAILOVER)

    def test_without_backup_requires_manual_intervention(self):
        self.dispatcher.assign("o1")
        before = self.snapshot()

        result = self.dispatcher.failover("o1", FailoverReason.DELAYED_DELIVERY)

        self.assertFalse(result.success)
        self.assertTrue(result.requires_manual_intervention)
        self.assertEqual(result.old_drone_id, "d1")
        self.assertIsNone(result.new_drone_id)
        self.assertEqual(self.snapshot(), before)

        alerts = self.broadcaster.on(GROUND_SUPPORT_CHANNEL)
        self.assertEqual(len(alerts), 1)
        self.assertTrue(alerts[0]["requiresManualIntervention"])
        self.assertEqual(self.notifier.sent[-1][2], "critical")

    def test_delivery_during_planning_cancels_failover(self):
        self.drones.save(make_drone("d2", BASE.forward(90.0, 5_000.0)))
        self.dispatcher.assign("o1")
        self.drones.hooks["find"] = lambda: mark_delivered(self.orders, "o1")

        with self.assertRaises(IllegalTransition):
            self.dispatcher.failover("o1", FailoverReason.CRITICAL_BATTERY)

        order = self.orders.get("o1")
        self.assertIs(order.status, OrderStatus.DELIVERED)
        self.assertEqual(order.drone_id, "d1")
        self.assertEqual(order.emergency.failover_count, 0)
        self.assertIs(self.drones.get("d1").status, DroneStatus.EMERGENCY_ASSIGNED)
        self.assertIs(self.drones.get("d2").status, DroneStatus.AVAILABLE)
        self.assertIsNone(self.drones.get("d2").assignment)
        self.assertEqual(self.broadcaster.on(FAILOVER_CHANNEL), [])

    def test_requires_assigned_emergency(self):
        with self.assertRaises(IllegalTransition):
            self.dispatcher.failover("o1", FailoverReason.CRITICAL_BATTERY)


class TestOrderActions(DispatcherTestCase):
    def setUp(self):
        super().setUp()
        self.drones.save(make_drone("d1"))

    def test_fail_releases_drone(self):
        self.dispatcher.assign("o1")

        order = self.dispatcher.fail("o1", "Severe weather")

        self.assertIs(order.status, OrderStatus.FAILED)
        self.assertIs(order.emergency.state, EmergencyState.FAILED)
        self.assertFalse(order.tracking.is_live_tracking)
        self.assertEqual(self.orders.get("o1").tracking_history[-1].notes, "Severe weather")
        drone = self.drones.get("d1")
        self.assertIs(drone.status, DroneStatus.AVAILABLE)
        self.assertIs(drone.assignment.status, AssignmentStatus.CANCELLED)
        self.assertEqual(self.broadcaster.on(DASHBOARD_CHANNEL)[-1]["type"], "emergency_failed")

        with self.assertRaises(IllegalTransition):
            self.dispatcher.fail("o1", "again")

    def test_fail_after_delivery_keeps_delivery(self):
        self.dispatcher.assign("o1")
        self.orders.hooks["get"] = lambda: mark_delivered(self.orders, "o1")

        with self.assertRaises(IllegalTransition):
            self.dispatcher.fail("o1", "Severe weather")

        self.assertIs(self.orders.get("o1").status, OrderStatus.DELIVERED)
        drone = self.drones.get("d1")
        self.assertIs(drone.status, DroneStatus.EMERGENCY_ASSIGNED)
        self.assertIs(drone.assignment.status, AssignmentStatus.ASSIGNED)

    def test_contacts_notified_once(self):
        order = self.orders.get("o1")
        order.tracking.contacts = [
            EmergencyContact("Ana", "+15550001", "daughter"),
            EmergencyContact("Lee", "+15550002", "doctor", notified=True, notified_at=1.0),
        ]
        self.orders.save(order)

        self.assertEqual(self.dispatcher.notify_emergency_contacts("o1", "Drone is on its way"), 1)
        self.assertEqual(self.dispatcher.notify_emergency_contacts("o1", "Drone is on its way"), 0)

        self.assertEqual(self.notifier.sent, [(("+15550001",), "Drone is on its way", "high")])
        contact = self.orders.get("o1").tracking.contacts[0]
        self.assertTrue(contact.notified)
        self.assertEqual(contact.notified_at, 1_000.0)


class TestWithScheduler(DispatcherTestCase):
    """Test dispatch against a running simulation."""

    def setUp(self):
        super().setUp()
        self.scheduler = SimulationScheduler(
            self.drones,
            config=SimulationConfig(random_failure_rate=0.0),
            orders=self.orders,
            clock=self.clock,
            rng=seeded_rng(),
        )
        self.addCleanup(self.scheduler.stop)
        self.dispatcher = EmergencyDispatcher(
            self.drones, self.orders, self.broadcaster, self.notifier, self.scheduler, clock=self.clock
        )

    def test_shares_scheduler_locks(self):
        self.assertIs(self.dispatcher.locks, self.scheduler.locks)

    def test_assigned_drone_receives_mission(self):
        self.drones.save(make_drone("d1"))
        self.scheduler.start(background=False)

        self.dispatcher.assign("o1")

        state = self.scheduler.query("d1")
        self.assertEqual(state.destination, self.orders.get("o1").delivery)
        self.assertEqual(state.order_id, "o1")
        self.assertTrue(state.emergency_mode)

    def test_unsimulated_drone_is_added(self):
        self.drones.save(make_drone("d1"))

        self.dispatcher.assign("o1")

        state = self.scheduler.query("d1")
        self.assertIsNotNone(state)
        self.assertEqual(state.order_id, "o1")
        self.assertTrue(state.emergency_mode)

    def test_tick_during_planning_keeps_committed_assignment(self):
        self.drones.save(make_drone("d1"))
        self.scheduler.start(background=False)

        def tick():
            self.clock.advance(5.0)
            self.scheduler.tick()

        self.drones.hooks["find"] = tick

        self.dispatcher.assign("o1")
        tick()

        drone = self.drones.get("d1")
        self.assertIs(drone.status, DroneStatus.EMERGENCY_ASSIGNED)
        self.assertEqual(drone.assignment.order_id, "o1")
        self.assertIs(drone.assignment.status, AssignmentStatus.ASSIGNED)
        self.assertEqual(drone.last_seen, self.clock.now)
        self.assertEqual(self.orders.get("o1").drone_id, "d1")
        state = self.scheduler.query("d1")
        self.assertIs(state.mode, DroneMode.TAKEOFF)
        self.assertEqual(state.order_id, "o1")

    def test_mission_completed_during_failover_planning(self):
        self.drones.save(make_drone("d1", BASE.forward(90.0, 1_000.0)))
        self.drones.save(make_drone("d2", BASE.forward(90.0, 5_000.0)))
        self.scheduler.start(background=False)
        self.dispatcher.assign("o1")
        for _ in range(60):
            self.clock.advance(5.0)
            self.scheduler.tick()
            if self.scheduler.query("d1").mode is DroneMode.DELIVERING:
                break
        self.assertIs(self.scheduler.query("d1").mode, DroneMode.DELIVERING)
        self.drones.hooks["find"] = lambda: self.scheduler.complete_mission("d1", "o1")

        with self.assertRaises(IllegalTransition):
            self.dispatcher.failover("o1", FailoverReason.DELAYED_DELIVERY)

        order = self.orders.get("o1")
        self.assertIs(order.status, OrderStatus.DELIVERED)
        self.assertIs(order.emergency.state, EmergencyState.DELIVERED)
        self.assertEqual(order.drone_id, "d1")
        retired = self.drones.get("d1")
        self.assertIs(retired.status, DroneStatus.IN_FLIGHT)
        self.assertIs(retired.assignment.status, AssignmentStatus.COMPLETED)
        backup = self.drones.get("d2")
        self.assertIs(backup.status, DroneStatus.AVAILABLE)
        self.assertIsNone(backup.assignment)
        self.assertIsNone(self.scheduler.query("d2").destination)
        self.assertIs(self.scheduler.query("d1").mode, DroneMode.RETURNING)

    def test_simulated_battery_overrides_record(self):
        self.drones.save(make_drone("d1"))
        self.scheduler.start(background=False)
        stale = self.drones.get("d1")
        stale.battery_level = 20.0
        self.drones.save(stale)

        result = self.dispatcher.assign("o1")

        self.assertEqual(result.assigned_drone.drone_id, "d1")
        self.assertEqual(result.assigned_drone.battery_level, 90.0)


if __name__ == "__main__":
    unittest.main()
