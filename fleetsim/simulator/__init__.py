from .scheduler import (
    ANOMALIES,
    SIMULATION_OWNED_STATUSES,
    SimulationScheduler,
    mission_timer_id,
    status_for_mode,
)

__all__ = [
    "ANOMALIES",
    "SIMULATION_OWNED_STATUSES",
    "SimulationScheduler",
    "mission_timer_id",
    "status_for_mode",
]
