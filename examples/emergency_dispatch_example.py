"""
Emergency dispatch example: a small fleet, one paused delivery, one failover.

The simulation runs on a simulated clock and is ticked by hand, so the example finishes in
well under a second.
"""

import random

from rich.console import Console
from rich.panel import Panel
from rich.table import Table

from fleetsim import SimulationConfig, configure_logging
from fleetsim.dispatch import EmergencyDispatcher, FailoverMonitor, FailoverReason
from fleetsim.geo import DEFAULT_CENTER
from fleetsim.simulator import SimulationScheduler
from fleetsim.store import (
    Assignment,
    DroneRecord,
    DroneStatus,
    EmergencyContact,
    InMemoryDroneRepository,
    InMemoryOrderRepository,
    InMemoryTelemetrySink,
    LoggingNotificationGateway,
    OrderPriority,
    OrderRecord,
    OrderStatus,
    RecordingBroadcaster,
)
from fleetsim.telemetry import TelemetryRecorder

STEP_SECONDS = 5.0


class SimClock:
    def __init__(self, start: float = 1_700_000_000.0):
        self.now = start

    def __call__(self) -> float:
        return self.now


def build_fleet() -> InMemoryDroneRepository:
    def drone(drone_id, bearing, meters, **kwargs):
        return DroneRecord(
            drone_id=drone_id,
            model="DJI-M300",
            status=kwargs.pop("status", DroneStatus.AVAILABLE),
            battery_level=kwargs.pop("battery_level", 90.0),
            location=DEFAULT_CENTER.forward(bearing, meters),
            max_payload=5.0,
            max_range=40.0,
            reliability=kwargs.pop("reliability", 95.0),
            average_speed=54.0,
            **kwargs,
        )

    courier_drop = DEFAULT_CENTER.forward(45.0, 4_000.0)
    return InMemoryDroneRepository(
        [
            drone(
                "courier-1",
                0.0,
                600.0,
                status=DroneStatus.IN_FLIGHT,
                assignment=Assignment("parcel-7", "courier-1", 0.0, delivery_location=courier_drop),
            ),
            drone("standby-2", 90.0, 3_000.0, status=DroneStatus.EMERGENCY_STANDBY),
            drone("spare-3", 180.0, 6_000.0, reliability=80.0),
            drone("dock-4", 270.0, 1_000.0, status=DroneStatus.CHARGING),
        ]
    )


def build_orders() -> InMemoryOrderRepository:
    parcel = OrderRecord(
        order_id="parcel-7",
        pickup=DEFAULT_CENTER,
        delivery=DEFAULT_CENTER.forward(45.0, 4_000.0),
        total_weight=1.0,
        status=OrderStatus.IN_TRANSIT,
        drone_id="courier-1",
    )
    defib = OrderRecord(
        order_id="aed-1",
        pickup=DEFAULT_CENTER.forward(10.0, 300.0),
        delivery=DEFAULT_CENTER.forward(20.0, 2_500.0),
        total_weight=2.5,
        priority=OrderPriority.HIGH,
    )
    defib.tracking.contacts.append(EmergencyContact("Dana Ortiz", "+1-555-0142", "caller"))
    return InMemoryOrderRepository([parcel, defib])


def fleet_panel(scheduler: SimulationScheduler, drones: InMemoryDroneRepository) -> Panel:
    t = Table.grid(padding=(0, 2))
    t.add_row("[b]Drone[/b]", "[b]Status[/b]", "[b]Mode[/b]", "[b]Battery[/b]", "[b]Order[/b]")
    for record in drones.find():
        state = scheduler.query(record.drone_id)
        mode = state.mode.value if state else "-"
        battery = state.battery.level if state else record.battery_level
        order = record.assignment.order_id if record.assignment and record.assignment.active else "-"
        t.add_row(record.drone_id, record.status.value, mode, f"{battery:.1f}%", order)
    return Panel(t, title="Fleet", padding=(1, 2))


def main():
    configure_logging("INFO")
    console = Console()
    clock = SimClock()
    rng = random.Random(42)

    drones = build_fleet()
    orders = build_orders()
    broadcaster = RecordingBroadcaster()
    notifier = LoggingNotificationGateway()

    scheduler = SimulationScheduler(
        drones,
        TelemetryRecorder(InMemoryTelemetrySink(), broadcaster, rng),
        SimulationConfig(random_failure_rate=0.0),
        orders=orders,
        clock=clock,
        rng=rng,
    )
    dispatcher = EmergencyDispatcher(drones, orders, broadcaster, notifier, scheduler, clock=clock)
    monitor = FailoverMonitor(dispatcher)

    scheduler.start(background=False)
    for _ in range(6):
        clock.now += STEP_SECONDS
        scheduler.tick()

    result = dispatcher.assign("aed-1", requesting_user="dispatcher-7", reason="Cardiac arrest reported")
    console.print(
        f"Assigned [b]{result.assigned_drone.drone_id}[/b] to aed-1, "
        f"ETA {result.estimated_time_minutes:.1f} min, paused: {', '.join(result.paused_orders) or 'none'}"
    )
    dispatcher.notify_emergency_contacts("aed-1", "A defibrillator drone is on its way")
    monitor.start_tracking("aed-1", background=False)

    for step in range(12):
        clock.now += STEP_SECONDS
        scheduler.tick()
        if step % 4 == 3:
            update = monitor.check("aed-1")
            console.print(f"Tracking aed-1: {update.progress.percentage:.0f}% via {update.drone_id}")
    console.print(fleet_panel(scheduler, drones))

    failover = dispatcher.failover("aed-1", FailoverReason.CRITICAL_BATTERY)
    console.print(f"Failover: {failover.message}")

    for _ in range(120):
        clock.now += STEP_SECONDS
        scheduler.tick()
        if orders.get("aed-1").is_terminal:
            break
    monitor.check("aed-1")

    console.print(f"aed-1 is {orders.get('aed-1').status.value}")
    console.print(fleet_panel(scheduler, drones))
    scheduler.stop()
    console.print(f"{len(broadcaster.messages)} messages broadcast, {len(notifier.sent)} notifications sent")


if __name__ == "__main__":
    main()
