"""Drone fleet simulation, emergency dispatch and failover.

fleetsim advances a fleet of simulated delivery drones on a fixed tick and dispatches drones
to emergency orders, moving a delivery to a backup drone when its drone runs low on battery or
the delivery falls behind schedule. Persistence, live fan-out and notifications are external
collaborators reached through small protocols (``fleetsim.store``).

Framework Components:
    Simulation (fleetsim.simulator, fleetsim.vehicles, fleetsim.energy, fleetsim.geo):
        • SimulationScheduler: owns the active drones and drives the per-drone tick
        • KinematicEngine: flight-mode state machine and movement toward a destination
        • BatteryModel: drain while airborne, low and critical battery rules
        • GeofenceMonitor: inside / warning / violation classification

    Telemetry (fleetsim.telemetry):
        • TelemetryRecorder: immutable per-tick samples to the sink and live channels

    Dispatch (fleetsim.dispatch):
        • DroneScoringEngine: eligibility filter and weighted drone score
        • RoutePlanner: emergency routes, route options, safety scores, ETAs
        • EmergencyDispatcher: assignment, pausing of competing work, failover
        • FailoverMonitor: live tracking of emergency orders

Wiring:
    >>> from fleetsim.store import InMemoryDroneRepository, InMemoryOrderRepository
    >>> from fleetsim.simulator import SimulationScheduler
    >>> from fleetsim.dispatch import EmergencyDispatcher, FailoverMonitor
    >>> drones, orders = InMemoryDroneRepository(), InMemoryOrderRepository()
    >>> scheduler = SimulationScheduler(drones, orders=orders)
    >>> dispatcher = EmergencyDispatcher(drones, orders, scheduler=scheduler)
    >>> monitor = FailoverMonitor(dispatcher)
"""

from .config import DispatchConfig, SimulationConfig, TrackingConfig
from .errors import (
    DroneNotFound,
    FleetSimError,
    IllegalTransition,
    NoCandidateDrone,
    OrderNotFound,
    PersistenceFailure,
    TickStepFailure,
)
from .log import configure_logging

__version__ = "0.1.0"

__all__ = [
    "DispatchConfig",
    "DroneNotFound",
    "FleetSimError",
    "IllegalTransition",
    "NoCandidateDrone",
    "OrderNotFound",
    "PersistenceFailure",
    "SimulationConfig",
    "TickStepFailure",
    "TrackingConfig",
    "configure_logging",
]
