"""Tracing and logging for Vigil components."""

from .logger import EventTracer, get_tracer, log_event, setup_tracing

__all__ = [
    "EventTracer",
    "get_tracer",
    "setup_tracing",
    "log_event",
]
