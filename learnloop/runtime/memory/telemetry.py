"""
Telemetry Collection - Learning loop span tracking

WHAT: Lightweight spans around request processing and reasoning calls
WHERE: learnloop/runtime/memory/telemetry.py - observability layer
WHO: AgentLoop wrapping each request and each structured reasoning call
TIME: Zero-overhead when disabled, <0.1ms overhead when enabled

Every span records ``duration_ms`` and ``success`` on exit, plus ``error``
(the exception type name) when the block raised. Callers attach
call-specific attributes (request id, learning mode, learnings stored...)
while the span is open; attributes set explicitly are never overwritten on exit.

Span names are the ``SPAN_*`` constants below; one request produces
classify, respond, extract (and resolve_conflicts) spans nested inside
process_request, and every reflection pass produces one reflect span.
"""

from __future__ import annotations

import logging
import time
from typing import Any, Dict, Optional

telemetry_logger = logging.getLogger("learnloop.telemetry")

SPAN_PROCESS_REQUEST = "learnloop.process_request"
SPAN_CLASSIFY = "learnloop.classify"
SPAN_RESPOND = "learnloop.respond"
SPAN_EXTRACT = "learnloop.extract"
SPAN_RESOLVE_CONFLICTS = "learnloop.resolve_conflicts"
SPAN_REFLECT = "learnloop.reflect"


class TelemetrySpan:
    """One timed unit of loop work; emitted to its client when the block exits."""

    __slots__ = ("_client", "name", "attributes", "_start")

    def __init__(
        self,
        client: "TelemetryClient",
        name: str,
        attributes: Optional[Dict[str, Any]] = None,
    ) -> None:
        self._client = client
        self.name = name
        self.attributes: Dict[str, Any] = dict(attributes or {})
        self._start = 0.0

    def __enter__(self) -> "TelemetrySpan":
        self._start = time.perf_counter()
        return self

    def set_attribute(self, key: str, value: Any) -> None:
        self.attributes[key] = value

    def update(self, **attributes: Any) -> None:
        self.attributes.update(attributes)

    def mark_failed(self, error: BaseException) -> None:
        """Record a failure that the caller handles without letting it leave the span."""
        self.update(success=False, error=type(error).__name__)

    def __exit__(self, exc_type, exc, exc_tb) -> bool:
        self.attributes.setdefault("success", exc is None)
        if exc is not None:
            self.attributes.setdefault("error", type(exc).__name__)
        self.attributes["duration_ms"] = (time.perf_counter() - self._start) * 1000.0
        self._client.emit_span(self.name, self.attributes)
        return False


class TelemetryClient:
    """Span factory; subclasses decide where finished spans go."""

    def span(self, name: str, *, attributes: Optional[Dict[str, Any]] = None) -> TelemetrySpan:
        return TelemetrySpan(self, name, attributes)

    def emit_span(self, name: str, attributes: Dict[str, Any]) -> None:
        raise NotImplementedError


class NoOpTelemetryClient(TelemetryClient):
    """Default client: spans are timed but dropped."""

    def emit_span(self, name: str, attributes: Dict[str, Any]) -> None:
        return None


class LoggingTelemetryClient(TelemetryClient):
    """Emits each finished span as one record on the ``learnloop.telemetry`` logger."""

    def __init__(self, level: int = logging.DEBUG) -> None:
        self.level = level

    def emit_span(self, name: str, attributes: Dict[str, Any]) -> None:
        if not telemetry_logger.isEnabledFor(self.level):
            return
        payload = {k: attributes[k] for k in sorted(attributes)}
        telemetry_logger.log(self.level, f"[telemetry] {name}: {payload}")


__all__ = [
    "SPAN_CLASSIFY",
    "SPAN_EXTRACT",
    "SPAN_PROCESS_REQUEST",
    "SPAN_REFLECT",
    "SPAN_RESOLVE_CONFLICTS",
    "SPAN_RESPOND",
    "LoggingTelemetryClient",
    "NoOpTelemetryClient",
    "TelemetryClient",
    "TelemetrySpan",
]
