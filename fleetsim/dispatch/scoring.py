"""Weighted scoring and selection of drones for a delivery.

Score (0–100, higher is better):
    battery      (battery_level / 100) × 40
    distance     max(0, (50 − km_to_pickup) / 50) × 30
    reliability  (reliability / 100) × 20
    payload      min(1, max_payload / order_weight) × 10

Eligibility is a pre-filter and does not contribute to the score: enough payload, battery at
least 30 %, range covering the delivery leg with a 50 % buffer, an assignable status, and
emergency capability.
"""

from collections.abc import Iterable
import logging

from fleetsim.config import DispatchConfig
from fleetsim.errors import NoCandidateDrone
from fleetsim.store import DroneRecord, OrderRecord

from .models import DispatchCandidate

logger = logging.getLogger(__name__)

BATTERY_WEIGHT = 40.0
DISTANCE_WEIGHT = 30.0
RELIABILITY_WEIGHT = 20.0
PAYLOAD_WEIGHT = 10.0
DISTANCE_CAP_KM = 50.0


class DroneScoringEngine:
    """Pure scoring over drone and order records."""

    def __init__(self, config: DispatchConfig | None = None):
        self.config = config or DispatchConfig()

    def is_eligible(self, drone: DroneRecord, order: OrderRecord) -> bool:
        return (
            drone.status in self.config.eligible_statuses
            and drone.emergency_capable
            and drone.max_payload >= order.total_weight
            and drone.battery_level >= self.config.min_battery
            and drone.max_range >= order.delivery_distance_km * self.config.range_safety_factor
        )

    @staticmethod
    def score(drone: DroneRecord, order: OrderRecord) -> float:
        distance_km = drone.location.distance_km_to(order.pickup)
        battery_score = (drone.battery_level / 100.0) * BATTERY_WEIGHT
        distance_score = max(0.0, (DISTANCE_CAP_KM - distance_km) / DISTANCE_CAP_KM) * DISTANCE_WEIGHT
        reliability_score = (drone.reliability / 100.0) * RELIABILITY_WEIGHT
        if order.total_weight > 0:
            payload_score = min(1.0, drone.max_payload / order.total_weight) * PAYLOAD_WEIGHT
        else:
            payload_score = PAYLOAD_WEIGHT
        return battery_score + distance_score + reliability_score + payload_score

    def candidate(self, drone: DroneRecord, order: OrderRecord) -> DispatchCandidate:
        distance_km = drone.location.distance_km_to(order.pickup)
        speed = drone.average_speed or self.config.default_speed_kmh
        return DispatchCandidate(
            drone=drone,
            score=self.score(drone, order),
            distance_to_pickup_km=distance_km,
            estimated_time_minutes=distance_km / speed * 60.0,
        )

    def rank(
        self,
        drones: Iterable[DroneRecord],
        order: OrderRecord,
        exclude: Iterable[str] = (),
    ) -> list[DispatchCandidate]:
        """Eligible candidates, best first."""
        excluded = set(exclude)
        candidates = [
            self.candidate(drone, order)
            for drone in drones
            if drone.drone_id not in excluded and self.is_eligible(drone, order)
        ]
        return sorted(candidates, key=DispatchCandidate.sort_key)

    def select(
        self,
        drones: Iterable[DroneRecord],
        order: OrderRecord,
        exclude: Iterable[str] = (),
    ) -> DispatchCandidate:
        """Return the best candidate.

        Raises:
            NoCandidateDrone: If no drone passes the eligibility filter.
        """
        exclude = tuple(exclude)
        ranked = self.rank(drones, order, exclude)
        if not ranked:
            logger.warning("No eligible drone for order %s", order.order_id)
            raise NoCandidateDrone(order.order_id, exclude)
        best = ranked[0]
        logger.debug(
            "Selected drone %s for order %s (score %.1f of %d candidates)",
            best.drone_id,
            order.order_id,
            best.score,
            len(ranked),
        )
        return best
