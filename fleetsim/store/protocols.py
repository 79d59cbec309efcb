"""Contracts for the collaborators the core depends on but does not implement.

The owning process supplies objects that satisfy these protocols (database repositories, a
telemetry store, a pub/sub fan-out, a notification service). The in-memory implementations in
``memory`` satisfy them for tests and demos.
"""

from collections.abc import Callable, Iterable, Mapping
from typing import TYPE_CHECKING, Any, Protocol, runtime_checkable

from .records import DroneRecord, OrderRecord

if TYPE_CHECKING:
    from fleetsim.telemetry import TelemetrySample


@runtime_checkable
class DroneRepository(Protocol):
    """Read/write access to drone records."""

    def find(self, predicate: Callable[[DroneRecord], bool] | None = None) -> list[DroneRecord]:
        """Return copies of all records matching ``predicate`` (all records when None)."""
        ...

    def get(self, drone_id: str) -> DroneRecord:
        """Return a copy of one record.

        Raises:
            DroneNotFound: If no record has ``drone_id``.
        """
        ...

    def save(self, drone: DroneRecord) -> None: ...


@runtime_checkable
class OrderRepository(Protocol):
    """Read/write access to order records."""

    def find(self, predicate: Callable[[OrderRecord], bool] | None = None) -> list[OrderRecord]: ...

    def get(self, order_id: str) -> OrderRecord:
        """Return a copy of one record.

        Raises:
            OrderNotFound: If no record has ``order_id``.
        """
        ...

    def save(self, order: OrderRecord) -> None: ...


@runtime_checkable
class TelemetrySink(Protocol):
    def record(self, sample: "TelemetrySample") -> None: ...


@runtime_checkable
class RealtimeBroadcaster(Protocol):
    """Fire-and-forget fan-out to live subscribers."""

    def publish(self, channel: str, payload: Mapping[str, Any]) -> None: ...


@runtime_checkable
class NotificationGateway(Protocol):
    """Best-effort delivery of operator and customer notifications."""

    def notify(self, recipients: Iterable[str], message: str, severity: str) -> None: ...
