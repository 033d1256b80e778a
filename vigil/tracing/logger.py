"""Tracing and logging for Vigil components."""

import logging
import sys
from collections import deque
from datetime import datetime, timezone
from typing import Any

MAX_RETAINED_EVENTS = 1000


class EventTracer:
    """Tracer for component lifecycle events.

    Events are logged and kept in a bounded in-memory buffer so that
    operators and tests can inspect what the engine did recently.
    """

    def __init__(self, name: str = "vigil", max_events: int = MAX_RETAINED_EVENTS):
        self.logger = logging.getLogger(name)
        self._setup_handler()
        self.events: deque[dict[str, Any]] = deque(maxlen=max_events)

    def _setup_handler(self) -> None:
        # stdout is reserved for CLI output.
        if not self.logger.handlers:
            handler = logging.StreamHandler(sys.stderr)
            formatter = logging.Formatter(
                "[%(asctime)s] %(levelname)s - %(name)s - %(message)s",
                datefmt="%H:%M:%S",
            )
            handler.setFormatter(formatter)
            self.logger.addHandler(handler)
            self.logger.setLevel(logging.INFO)

    def log(
        self,
        event_type: str,
        component: str,
        message: str,
        data: dict[str, Any] | None = None,
        level: int = logging.INFO,
    ) -> None:
        """Log a component event.

        Args:
            event_type: Type of event (e.g., "register", "collect", "job_failed").
            component: Emitting component (e.g., "registry:tenant-1", "scheduler").
            message: Human-readable message.
            data: Optional additional data.
            level: Logging level for the console line.
        """
        event = {
            "timestamp": datetime.now(timezone.utc).isoformat(),
            "event_type": event_type,
            "component": component,
            "message": message,
            "data": data or {},
        }
        self.events.append(event)

        log_msg = f"[{component}] {event_type}: {message}"
        if data:
            log_msg += f" | {data}"
        self.logger.log(level, log_msg)

    def get_events(
        self,
        component: str | None = None,
        event_type: str | None = None,
    ) -> list[dict[str, Any]]:
        """Get logged events, optionally filtered by component and type."""
        events = list(self.events)
        if component:
            events = [e for e in events if e["component"] == component]
        if event_type:
            events = [e for e in events if e["event_type"] == event_type]
        return events

    def clear(self) -> None:
        """Clear all logged events."""
        self.events.clear()


# Global tracer instance
_tracer: EventTracer | None = None


def setup_tracing(log_level: str = "INFO") -> EventTracer:
    """Setup global tracing.

    Args:
        log_level: Logging level (DEBUG, INFO, WARNING, ERROR).

    Returns:
        The configured EventTracer instance.
    """
    global _tracer
    _tracer = EventTracer()
    _tracer.logger.setLevel(getattr(logging, log_level.upper()))
    return _tracer


def get_tracer() -> EventTracer:
    """Get the global tracer instance."""
    global _tracer
    if _tracer is None:
        _tracer = EventTracer()
    return _tracer


def log_event(
    event_type: str,
    component: str,
    message: str,
    data: dict[str, Any] | None = None,
    level: int = logging.INFO,
) -> None:
    """Log a component event using the global tracer."""
    get_tracer().log(event_type, component, message, data, level)
