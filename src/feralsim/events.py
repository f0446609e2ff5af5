from __future__ import annotations

import heapq
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, List, Optional, Tuple


class EventKind(str, Enum):
    ENCOUNTER_END = "encounter-end"
    PERIODIC_TICK = "periodic-tick"
    BUFF_EXPIRE = "buff-expire"
    RESOURCE_TICK = "resource-tick"
    CAST_COMPLETE = "cast-complete"
    SWING = "swing"
    ABILITY_READY = "ability-ready"
    GCD_END = "gcd-end"


# Lower fires first at equal timestamps. A final periodic tick lands before its buff expires,
# and expirations settle state before any decision.
EVENT_PRIORITY: Dict[EventKind, int] = {
    EventKind.ENCOUNTER_END: 0,
    EventKind.PERIODIC_TICK: 1,
    EventKind.BUFF_EXPIRE: 2,
    EventKind.RESOURCE_TICK: 3,
    EventKind.CAST_COMPLETE: 4,
    EventKind.SWING: 5,
    EventKind.ABILITY_READY: 6,
    EventKind.GCD_END: 7,
}

EPS = 1e-9


class InternalConsistencyError(RuntimeError):
    """A trial reached an impossible state. Aborts that trial only."""

    def __init__(self, message: str, at: float | None = None, event: "ScheduledEvent | None" = None):
        self.at = at
        self.event = event
        prefix = f"[t={at:.3f}] " if at is not None else ""
        super().__init__(f"{prefix}{message}")

    def to_dict(self) -> Dict[str, Any]:
        return {
            "message": str(self),
            "at": self.at,
            "event": self.event.kind.value if self.event is not None else None,
        }


@dataclass(slots=True, frozen=True)
class ScheduledEvent:
    at: float
    kind: EventKind
    sequence: int
    payload: Dict[str, Any] = field(default_factory=dict)

    @property
    def sort_key(self) -> Tuple[float, int, int]:
        return (self.at, EVENT_PRIORITY[self.kind], self.sequence)


class EventQueue:
    """Min-heap of :class:`ScheduledEvent` ordered by (time, kind priority, insertion)."""

    def __init__(self) -> None:
        self._heap: List[Tuple[float, int, int, ScheduledEvent]] = []
        self._sequence = 0
        self.last_time = 0.0

    def __len__(self) -> int:
        return len(self._heap)

    def __bool__(self) -> bool:
        return bool(self._heap)

    def push(self, at: float, kind: EventKind, payload: Optional[Dict[str, Any]] = None) -> ScheduledEvent:
        if at < self.last_time - EPS:
            raise InternalConsistencyError(
                f"Cannot schedule {kind.value} at {at:.6f}, clock is already at {self.last_time:.6f}.",
                at=self.last_time,
            )
        event = ScheduledEvent(at=max(at, self.last_time), kind=kind, sequence=self._sequence, payload=dict(payload or {}))
        self._sequence += 1
        heapq.heappush(self._heap, (*event.sort_key, event))
        return event

    def pop(self) -> ScheduledEvent:
        if not self._heap:
            raise IndexError("pop from empty EventQueue")
        *_, event = heapq.heappop(self._heap)
        if event.at < self.last_time - EPS:
            raise InternalConsistencyError("Event queue returned an event from the past.", at=self.last_time, event=event)
        self.last_time = event.at
        return event

    def peek(self) -> ScheduledEvent | None:
        if not self._heap:
            return None
        return self._heap[0][-1]

    def pending(self, kind: EventKind) -> List[ScheduledEvent]:
        return sorted((item[-1] for item in self._heap if item[-1].kind is kind), key=lambda event: event.sort_key)

    def clear(self) -> None:
        self._heap.clear()
