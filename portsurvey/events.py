"""
Port Survey - Discovery Event System.

Structured events published by the discovery engine. The CLI subscribes a
ConsoleEventPrinter; tests and embedding code subscribe their own
callbacks.

Event Flow:
    batch_started -> (progress* -> target_complete | target_failed)* ->
    batch_complete

stats_updated follows every target outcome with the running counters.
"""

import logging
import threading
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Callable, Dict, List, Optional, Tuple

logger = logging.getLogger(__name__)


class EventType(str, Enum):
    """Discovery event types."""
    # Batch lifecycle
    BATCH_STARTED = "batch_started"
    BATCH_COMPLETE = "batch_complete"

    # Per target
    PROGRESS = "progress"
    TARGET_COMPLETE = "target_complete"
    TARGET_FAILED = "target_failed"

    # Aggregated counters
    STATS_UPDATED = "stats_updated"


@dataclass
class DiscoveryStats:
    """Running batch counters."""
    total: int = 0
    completed: int = 0
    failed: int = 0
    current_target: str = ""
    status: str = "Ready"

    @property
    def remaining(self) -> int:
        return max(0, self.total - self.completed - self.failed)


@dataclass
class DiscoveryEvent:
    """
    Event emitted by the discovery engine.

    All events have a type, timestamp, and event-specific data.
    """
    event_type: EventType
    timestamp: datetime = field(default_factory=datetime.now)
    data: Dict[str, Any] = field(default_factory=dict)

    @property
    def text(self) -> str:
        return self.data.get("text", "")

    @property
    def target(self) -> str:
        return self.data.get("target", "")


EventCallback = Callable[[DiscoveryEvent], None]


class EventEmitter:
    """
    Event emitter for the discovery engine.

    Emission is serialized with a lock, so listeners see events in publish
    order even when several targets run concurrently.

    Usage:
        emitter = EventEmitter()
        emitter.subscribe(my_handler)
        emitter.subscribe(failures, EventType.TARGET_FAILED)
        emitter.emit(EventType.PROGRESS, text="Connecting")
    """

    def __init__(self):
        self._listeners: List[Tuple[EventCallback, Optional[EventType]]] = []
        self._stats = DiscoveryStats()
        self._lock = threading.RLock()

    @property
    def stats(self) -> DiscoveryStats:
        return self._stats

    def subscribe(
        self,
        callback: EventCallback,
        event_type: Optional[EventType] = None
    ) -> None:
        """
        Subscribe to events.

        Args:
            callback: Function to call with DiscoveryEvent
            event_type: If specified, only receive this event type
        """
        with self._lock:
            self._listeners.append((callback, event_type))

    def unsubscribe(self, callback: EventCallback) -> None:
        with self._lock:
            self._listeners = [
                (cb, et) for cb, et in self._listeners if cb != callback
            ]

    def clear(self) -> None:
        """Remove all listeners."""
        with self._lock:
            self._listeners.clear()

    def emit(self, event_type: EventType, **data) -> DiscoveryEvent:
        """Deliver an event to every matching listener and return it."""
        event = DiscoveryEvent(
            event_type=event_type,
            timestamp=datetime.now(),
            data=data
        )

        with self._lock:
            for callback, filter_type in list(self._listeners):
                if filter_type is None or filter_type == event_type:
                    try:
                        callback(event)
                    except Exception:
                        logger.exception("Event listener failed on %s", event_type.value)

        return event

    # =========================================================================
    # Convenience methods for common events
    # =========================================================================

    def batch_started(self, total: int) -> None:
        self._stats = DiscoveryStats(total=total, status="Running")
        self.emit(EventType.BATCH_STARTED, total=total)

    def progress(self, text: str, target: str = "") -> None:
        if target:
            self._stats.current_target = target
        self.emit(EventType.PROGRESS, text=text, target=target)

    def target_complete(self, target: str, hostname: str) -> None:
        self._stats.completed += 1
        self.emit(EventType.TARGET_COMPLETE, target=target, hostname=hostname)
        self._emit_stats_update()

    def target_failed(self, target: str, error: str) -> None:
        self._stats.failed += 1
        self.emit(EventType.TARGET_FAILED, target=target, error=error)
        self._emit_stats_update()

    def batch_complete(self, success: int, errors: int, duration_seconds: float = 0.0) -> None:
        self._stats.status = "Complete"
        self._stats.current_target = ""
        self.emit(
            EventType.BATCH_COMPLETE,
            success=success,
            errors=errors,
            duration_seconds=duration_seconds,
        )

    def _emit_stats_update(self) -> None:
        self.emit(
            EventType.STATS_UPDATED,
            total=self._stats.total,
            completed=self._stats.completed,
            failed=self._stats.failed,
            remaining=self._stats.remaining,
            current_target=self._stats.current_target,
            status=self._stats.status,
        )


# =========================================================================
# Console Event Printer (for CLI)
# =========================================================================

class ConsoleEventPrinter:
    """
    Prints discovery events to the console.

    Usage:
        printer = ConsoleEventPrinter(verbose=True, color=True)
        emitter.subscribe(printer.handle_event)
    """

    # ANSI color codes
    COLORS = {
        "reset": "\033[0m",
        "bold": "\033[1m",
        "dim": "\033[2m",
        "red": "\033[31m",
        "green": "\033[32m",
        "yellow": "\033[33m",
        "blue": "\033[34m",
        "cyan": "\033[36m",
    }

    def __init__(
        self,
        verbose: bool = False,
        color: bool = True,
        show_timestamps: bool = False,
    ):
        self.verbose = verbose
        self.color = color
        self.show_timestamps = show_timestamps

    def _c(self, text: str, *colors: str) -> str:
        """Apply colors if enabled."""
        if not self.color:
            return text
        codes = "".join(self.COLORS.get(c, "") for c in colors)
        return f"{codes}{text}{self.COLORS['reset']}"

    def _timestamp(self, event: DiscoveryEvent) -> str:
        if not self.show_timestamps:
            return ""
        return f"[{event.timestamp.strftime('%H:%M:%S')}] "

    def handle_event(self, event: DiscoveryEvent) -> None:
        handler = getattr(self, f"_handle_{event.event_type.value}", None)
        if handler:
            handler(event)
        elif self.verbose:
            print(f"{self._timestamp(event)}[{event.event_type.value}] {event.data}")

    def _handle_batch_started(self, event: DiscoveryEvent) -> None:
        print()
        print(self._c("=" * 60, "cyan", "bold"))
        print(self._c("PORT DISCOVERY STARTED", "cyan", "bold"))
        print(self._c("=" * 60, "cyan", "bold"))
        print(f"Targets: {event.data['total']}")
        print()

    def _handle_progress(self, event: DiscoveryEvent) -> None:
        print(f"{self._timestamp(event)}  {self._c(event.text, 'dim')}")

    def _handle_target_complete(self, event: DiscoveryEvent) -> None:
        data = event.data
        status = self._c("OK", "green", "bold")
        print(f"{self._timestamp(event)}  {status}: {data['target']} ({data['hostname']})")

    def _handle_target_failed(self, event: DiscoveryEvent) -> None:
        data = event.data
        status = self._c("FAILED", "red", "bold")
        error = data.get('error', 'Unknown error')

        if len(error) > 60 and not self.verbose:
            error = error[:57] + "..."

        print(f"{self._timestamp(event)}  {status}: {data['target']} - {error}")

    def _handle_batch_complete(self, event: DiscoveryEvent) -> None:
        data = event.data
        print()
        print(self._c("#" * 60, "green", "bold"))
        print(self._c("DISCOVERY COMPLETE", "green", "bold"))
        print(self._c("#" * 60, "green", "bold"))
        print(f"Successful: {self._c(str(data['success']), 'green')}")
        print(f"Failed: {self._c(str(data['errors']), 'red')}")
        if data.get('duration_seconds'):
            print(f"Duration: {data['duration_seconds']:.1f}s")
        print()

    def _handle_stats_updated(self, event: DiscoveryEvent) -> None:
        """Counters are shown in the batch summary."""
        pass
