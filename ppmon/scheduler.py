"""Time-ordered queue of events processed by the monitor."""

from __future__ import annotations

import heapq
import itertools
import threading
import time
from dataclasses import dataclass
from datetime import datetime
from enum import Enum
from typing import Callable, Iterator


class EventKind(Enum):
    """Kinds of scheduled events; the value is the wire tag."""

    SERVICE_SCHEDULE = "ServiceSchedule"
    SERVICE_RESTART = "ServiceRestart"
    WATCH_SERVICE_RESTART = "WatchServiceRestart"
    SYSINFO = "Sysinfo"
    CLOCK_CHECK = "ClockCheck"

    @property
    def has_service(self) -> bool:
        return self in (
            EventKind.SERVICE_SCHEDULE,
            EventKind.SERVICE_RESTART,
            EventKind.WATCH_SERVICE_RESTART,
        )

    @property
    def label(self) -> str:
        return _LABELS[self]


_LABELS = {
    EventKind.SERVICE_SCHEDULE: "schedule",
    EventKind.SERVICE_RESTART: "restart",
    EventKind.WATCH_SERVICE_RESTART: "watch",
    EventKind.SYSINFO: "stats",
    EventKind.CLOCK_CHECK: "clock check",
}


@dataclass(frozen=True)
class SchedulerEvent:
    """An event due at a monotonic instant (seconds)."""

    kind: EventKind
    instant: float
    service_id: int | None = None
    date_time: datetime | None = None

    def __post_init__(self) -> None:
        if self.kind.has_service and self.service_id is None:
            raise ValueError(f"{self.kind.value} event requires a service id")
        if not self.kind.has_service and self.service_id is not None:
            raise ValueError(f"{self.kind.value} event takes no service id")

    def is_source_eq(self, other: "SchedulerEvent") -> bool:
        """True when both events come from the same source (kind and service)."""
        return self.kind is other.kind and self.service_id == other.service_id


class Scheduler:
    """Thread-safe priority queue; earliest instant first."""

    def __init__(self, clock: Callable[[], float] = time.monotonic) -> None:
        self._clock = clock
        self._lock = threading.Lock()
        self._heap: list[tuple[float, int, SchedulerEvent]] = []
        self._counter = itertools.count()

    def __len__(self) -> int:
        with self._lock:
            return len(self._heap)

    def enqueue(self, event: SchedulerEvent) -> bool:
        """Replace events from the same source with event.

        Returns True when event is now the earliest in the queue.
        """
        with self._lock:
            self._heap = [e for e in self._heap if not e[2].is_source_eq(event)]
            heapq.heapify(self._heap)
            heapq.heappush(self._heap, (event.instant, next(self._counter), event))
            return self._heap[0][0] == event.instant

    def schedule(self, service_id: int, date_time: datetime) -> bool:
        """Enqueue a scheduled run of a service at a wall-clock time."""
        delay = (date_time - datetime.now(date_time.tzinfo)).total_seconds()
        return self.enqueue(
            SchedulerEvent(
                EventKind.SERVICE_SCHEDULE,
                self._clock() + delay,
                service_id,
                date_time,
            )
        )

    def remove(self, service_id: int) -> None:
        """Drop every event bound to the service."""
        with self._lock:
            self._heap = [e for e in self._heap if e[2].service_id != service_id]
            heapq.heapify(self._heap)

    def peek(self) -> float | None:
        """Seconds until the next event (never negative), or None if empty."""
        with self._lock:
            if not self._heap:
                return None
            return max(0.0, self._heap[0][0] - self._clock())

    def due(self) -> Iterator[SchedulerEvent]:
        """Pop, one by one, the events due at the time of this call."""
        return self._drain(self._clock())

    def _drain(self, now: float) -> Iterator[SchedulerEvent]:
        while True:
            with self._lock:
                if not self._heap or self._heap[0][0] > now:
                    return
                event = heapq.heappop(self._heap)[2]
            yield event

    def dump(self) -> list[SchedulerEvent]:
        """All queued events, earliest first."""
        with self._lock:
            return [entry[2] for entry in sorted(self._heap)]

    def clear(self) -> None:
        with self._lock:
            self._heap.clear()