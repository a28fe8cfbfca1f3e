"""
Event scheduling for the backtest replay loop.

Implements a single, total, causally valid order over the heterogeneous
events of a simulation:
- Typed event definitions with a per-type priority
- Binary-heap priority queue (timestamp, priority, insertion sequence)
- History of processed events for post-run integrity checks
- Chronological-order validation (look-ahead bias detection)
"""

from __future__ import annotations

import heapq
import itertools
import logging
from collections import Counter
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Iterable

from quant_backtester.core.exceptions import LookAheadBiasError

logger = logging.getLogger(__name__)


class EventType(str, Enum):
    """Event type enumeration for simulation events."""

    MARKET_DATA = "market.data"
    SIGNAL = "strategy.signal"
    ORDER = "execution.order"
    FILL = "execution.fill"


class EventPriority(int, Enum):
    """Tie-break between events sharing a timestamp.

    Lower value is processed first and mirrors causal dependency within one
    instant: data arrives, a signal is formed, an order placed, then filled.
    """

    MARKET_DATA = 1
    SIGNAL = 2
    ORDER = 3
    FILL = 4


_DEFAULT_PRIORITY: dict[EventType, EventPriority] = {
    EventType.MARKET_DATA: EventPriority.MARKET_DATA,
    EventType.SIGNAL: EventPriority.SIGNAL,
    EventType.ORDER: EventPriority.ORDER,
    EventType.FILL: EventPriority.FILL,
}


@dataclass
class BacktestEvent:
    """Event in the backtest event queue.

    Attributes:
        event_type: Type of the event.
        timestamp: Simulated time the event belongs to.
        data: Event payload (bar, signal, order or fill).
        symbol: Symbol the event concerns, if any.
        priority: Ordering priority; defaults from the event type.
    """

    event_type: EventType
    timestamp: datetime
    data: Any = None
    symbol: str | None = None
    priority: int | None = None

    def __post_init__(self) -> None:
        if self.priority is None:
            self.priority = int(_DEFAULT_PRIORITY[self.event_type])

    def to_dict(self) -> dict[str, Any]:
        """Convert event to dictionary for logging."""
        return {
            "event_type": self.event_type.value,
            "timestamp": self.timestamp.isoformat(),
            "symbol": self.symbol,
            "priority": self.priority,
        }


@dataclass(order=True)
class _QueueEntry:
    timestamp: datetime
    priority: int
    sequence: int
    event: BacktestEvent = field(compare=False)


class EventScheduler:
    """Time-ordered priority queue of backtest events.

    Events are ordered by timestamp, then by priority, then by insertion
    sequence, so equal keys replay in the order they were pushed.
    """

    def __init__(self, track_history: bool = True) -> None:
        """Initialize the scheduler.

        Args:
            track_history: Keep popped events for ``validate_chronological_order``.
        """
        self._heap: list[_QueueEntry] = []
        self._sequence = itertools.count()
        self._track_history = track_history
        self._processed: list[BacktestEvent] = []
        self._processed_count = 0
        self._last_popped: datetime | None = None

    def __len__(self) -> int:
        return len(self._heap)

    def is_empty(self) -> bool:
        """Check whether no events are pending."""
        return not self._heap

    def push(self, event: BacktestEvent) -> None:
        """Insert an event in sorted position."""
        if self._last_popped is not None and event.timestamp < self._last_popped:
            logger.warning(
                f"Event {event.event_type.value} at {event.timestamp.isoformat()} "
                f"is earlier than last processed event at {self._last_popped.isoformat()}"
            )
        heapq.heappush(
            self._heap,
            _QueueEntry(event.timestamp, event.priority, next(self._sequence), event),
        )

    def push_many(self, events: Iterable[BacktestEvent]) -> None:
        """Insert several events."""
        for event in events:
            self.push(event)

    def pop(self) -> BacktestEvent | None:
        """Remove and return the earliest event, or None when empty."""
        if not self._heap:
            return None
        event = heapq.heappop(self._heap).event
        self._processed_count += 1
        self._last_popped = event.timestamp
        if self._track_history:
            self._processed.append(event)
        return event

    def peek(self) -> BacktestEvent | None:
        """Return the earliest event without removing it."""
        return self._heap[0].event if self._heap else None

    def clear(self) -> None:
        """Drop pending events and history."""
        self._heap.clear()
        self._processed.clear()
        self._processed_count = 0
        self._last_popped = None

    @property
    def processed_events(self) -> list[BacktestEvent]:
        """Events popped so far, in processing order."""
        return list(self._processed)

    def pending_events(self) -> list[BacktestEvent]:
        """Pending events in the order they would be popped."""
        return [entry.event for entry in sorted(self._heap)]

    def get_events_by_type(self, event_type: EventType) -> list[BacktestEvent]:
        """Pending events of one type, in pop order."""
        return [e for e in self.pending_events() if e.event_type == event_type]

    def validate_chronological_order(self) -> bool:
        """Check that processed and pending events never go back in time.

        Returns:
            True when every adjacent pair has non-decreasing timestamps.

        Raises:
            LookAheadBiasError: On the first pair out of order.
        """
        timeline = self._processed + self.pending_events()
        for index in range(1, len(timeline)):
            previous = timeline[index - 1].timestamp
            current = timeline[index].timestamp
            if current < previous:
                raise LookAheadBiasError(
                    "Events out of chronological order",
                    previous_timestamp=previous,
                    current_timestamp=current,
                    index=index,
                )
        return True

    def get_stats(self) -> dict[str, Any]:
        """Get queue statistics."""
        by_type = Counter(e.event_type.value for e in self._processed)
        by_type.update(entry.event.event_type.value for entry in self._heap)
        return {
            "total": self._processed_count + len(self._heap),
            "processed": self._processed_count,
            "pending": len(self._heap),
            "events_by_type": dict(by_type),
        }
