"""In-memory collaborators for tests, demos and single-process deployments.

Repositories hand out deep copies so that callers never mutate stored records in place; a
change becomes visible to other readers only after ``save``.
"""

from collections.abc import Callable, Iterable, Mapping
import copy
import logging
import threading
from typing import TYPE_CHECKING, Any, Generic, TypeVar

from fleetsim.errors import DroneNotFound, OrderNotFound

from .records import DroneRecord, OrderRecord

if TYPE_CHECKING:
    from fleetsim.telemetry import TelemetrySample

logger = logging.getLogger(__name__)

RecordT = TypeVar("RecordT")


class _InMemoryRepository(Generic[RecordT]):
    _not_found: Callable[[str], LookupError]

    def __init__(self, records: Iterable[RecordT] = ()):
        self._records: dict[str, RecordT] = {}
        self._lock = threading.RLock()
        for record in records:
            self.save(record)

    @staticmethod
    def _key(record: RecordT) -> str:
        raise NotImplementedError

    def find(self, predicate: Callable[[RecordT], bool] | None = None) -> list[RecordT]:
        with self._lock:
            return [
                copy.deepcopy(record)
                for record in self._records.values()
                if predicate is None or predicate(record)
            ]

    def get(self, key: str) -> RecordT:
        with self._lock:
            record = self._records.get(key)
            if record is None:
                raise self._not_found(key)
            return copy.deepcopy(record)

    def save(self, record: RecordT) -> None:
        with self._lock:
            self._records[self._key(record)] = copy.deepcopy(record)

    def __contains__(self, key: str) -> bool:
        with self._lock:
            return key in self._records

    def __len__(self) -> int:
        with self._lock:
            return len(self._records)


class InMemoryDroneRepository(_InMemoryRepository[DroneRecord]):
    _not_found = DroneNotFound

    @staticmethod
    def _key(record: DroneRecord) -> str:
        return record.drone_id


class InMemoryOrderRepository(_InMemoryRepository[OrderRecord]):
    _not_found = OrderNotFound

    @staticmethod
    def _key(record: OrderRecord) -> str:
        return record.order_id


class InMemoryTelemetrySink:
    """Keeps every recorded sample in arrival order."""

    def __init__(self):
        self._samples: list["TelemetrySample"] = []
        self._lock = threading.Lock()

    def record(self, sample: "TelemetrySample") -> None:
        with self._lock:
            self._samples.append(sample)

    @property
    def samples(self) -> list["TelemetrySample"]:
        with self._lock:
            return list(self._samples)

    def for_drone(self, drone_id: str) -> list["TelemetrySample"]:
        return [sample for sample in self.samples if sample.drone_id == drone_id]


class RecordingBroadcaster:
    """Collects published messages as ``(channel, payload)`` pairs."""

    def __init__(self):
        self.messages: list[tuple[str, Mapping[str, Any]]] = []
        self._lock = threading.Lock()

    def publish(self, channel: str, payload: Mapping[str, Any]) -> None:
        with self._lock:
            self.messages.append((channel, payload))

    def on(self, channel: str) -> list[Mapping[str, Any]]:
        with self._lock:
            return [payload for name, payload in self.messages if name == channel]


class LoggingNotificationGateway:
    """Logs notifications instead of delivering them, keeping a copy of each."""

    def __init__(self):
        self.sent: list[tuple[tuple[str, ...], str, str]] = []

    def notify(self, recipients: Iterable[str], message: str, severity: str) -> None:
        recipients = tuple(recipients)
        self.sent.append((recipients, message, severity))
        level = logging.WARNING if severity in ("high", "critical") else logging.INFO
        logger.log(level, "Notify %s [%s]: %s", ", ".join(recipients), severity, message)
