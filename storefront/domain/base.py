"""Building blocks shared by the order and inventory models."""

from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, ClassVar


def utcnow() -> datetime:
    """Return the current time as an aware UTC datetime."""
    return datetime.now(timezone.utc)


@dataclass(frozen=True)
class ValueObject:
    """Immutable value compared by its fields."""


@dataclass
class Entity:
    """Object with an identity that survives changes to its fields.

    Attributes:
        id: Product id or order id.
    """

    id: Any

    def __eq__(self, other: object) -> bool:
        return type(other) is type(self) and self.id == other.id

    def __hash__(self) -> int:
        return hash((type(self).__name__, self.id))


@dataclass(frozen=True)
class DomainEvent:
    """Something that happened to an order.

    Subclasses set event_type and list their own fields in log_fields.
    """

    event_type: ClassVar[str]

    order_id: str
    occurred_at: datetime = field(default_factory=utcnow)

    def log_fields(self) -> dict[str, Any]:
        return {}


@dataclass(kw_only=True)
class AggregateRoot(Entity):
    """Entity whose changes are versioned and announced as events.

    Attributes:
        version: Bumped on every change; stores compare it to detect writes.
        created_at: Creation time.
        updated_at: Time of the last change.
    """

    version: int = field(default=1, compare=False)
    created_at: datetime = field(default_factory=utcnow, compare=False)
    updated_at: datetime = field(default_factory=utcnow, compare=False)
    _pending_events: list[DomainEvent] = field(
        default_factory=list, init=False, repr=False, compare=False
    )

    def _record_event(self, event: DomainEvent) -> None:
        self._pending_events.append(event)

    def collect_events(self) -> list[DomainEvent]:
        """Return and forget the events recorded since the last call."""
        events, self._pending_events = self._pending_events, []
        return events

    def _touch(self, at: datetime | None = None) -> None:
        self.updated_at = at or utcnow()
        self.version += 1
