"""
Telemetry sinks for run observability.

Spans nest through their `parent`, giving the job -> turn -> model_call /
tool_batch -> tool_exec -> session_retry hierarchy. Sinks never raise into the
run loop. `OpenTelemetrySink` can be used when `opentelemetry-api` is
installed.
"""

from __future__ import annotations

import time
import uuid
from dataclasses import dataclass, field
from typing import Any, Literal, Protocol

from ..llms.types import JSONValue

SpanKind = Literal[
    "job",
    "triage",
    "turn",
    "model_call",
    "tool_batch",
    "tool_exec",
    "session_retry",
    "post_process",
]


@dataclass(frozen=True, slots=True)
class TelemetryEvent:
    """
    Point-in-time telemetry event.

    Attributes:
        name: Event name, e.g. `agent.steer.injected`.
        timestamp_ms: Epoch milliseconds at emission time.
        attributes: JSON-safe event attributes.
    """

    name: str
    timestamp_ms: int
    attributes: dict[str, JSONValue] = field(default_factory=dict)


@dataclass(frozen=True, slots=True)
class TelemetrySpan:
    """
    Started telemetry span.

    Attributes:
        name: Span name.
        kind: Position of the span in the run hierarchy.
        span_id: Unique span id.
        trace_id: Trace the span belongs to (the job id for run spans).
        parent_span_id: Id of the enclosing span, if any.
        started_at_ms: Span start timestamp.
        attributes: JSON-safe span attributes.
        native_span: Optional backend-native span object.
    """

    name: str
    kind: SpanKind
    span_id: str
    trace_id: str | None = None
    parent_span_id: str | None = None
    started_at_ms: int = 0
    attributes: dict[str, JSONValue] = field(default_factory=dict)
    native_span: Any = None


class TelemetrySink(Protocol):
    """Protocol implemented by telemetry backends."""

    def record_event(self, event: TelemetryEvent) -> None:
        """Record a single event."""
        ...

    def start_span(
        self,
        name: str,
        *,
        kind: SpanKind,
        trace_id: str | None = None,
        parent: TelemetrySpan | None = None,
        attributes: dict[str, JSONValue] | None = None,
    ) -> TelemetrySpan | None:
        """
        Start a span when the backend supports spans.

        Args:
            name: Span name.
            kind: Span kind in the run hierarchy.
            trace_id: Trace identifier; inherited from `parent` when omitted.
            parent: Enclosing span.
            attributes: Optional initial span attributes.

        Returns:
            Span wrapper or `None` when unsupported.
        """
        ...

    def end_span(
        self,
        span: TelemetrySpan | None,
        *,
        status: str,
        error: str | None = None,
        attributes: dict[str, JSONValue] | None = None,
    ) -> None:
        """
        End a span. A failed span is ended with `status="error"`.

        Args:
            span: Span returned from `start_span`.
            status: Terminal status string (`ok`/`error`).
            error: Optional error detail string.
            attributes: Optional final span attributes.
        """
        ...

    def increment_counter(
        self,
        name: str,
        value: int = 1,
        *,
        attributes: dict[str, JSONValue] | None = None,
    ) -> None:
        """Increment a named counter."""
        ...

    def record_histogram(
        self,
        name: str,
        value: float,
        *,
        attributes: dict[str, JSONValue] | None = None,
    ) -> None:
        """Record a histogram measurement."""
        ...


def _new_span(
    name: str,
    kind: SpanKind,
    trace_id: str | None,
    parent: TelemetrySpan | None,
    attributes: dict[str, JSONValue] | None,
    native_span: Any = None,
) -> TelemetrySpan:
    return TelemetrySpan(
        name=name,
        kind=kind,
        span_id=uuid.uuid4().hex[:16],
        trace_id=trace_id if trace_id is not None else (parent.trace_id if parent else None),
        parent_span_id=parent.span_id if parent is not None else None,
        started_at_ms=now_ms(),
        attributes=dict(attributes or {}),
        native_span=native_span,
    )


@dataclass(slots=True)
class NullTelemetrySink:
    """No-op telemetry sink used as safe default."""

    def record_event(self, event: TelemetryEvent) -> None:
        _ = event
        return None

    def start_span(
        self,
        name: str,
        *,
        kind: SpanKind,
        trace_id: str | None = None,
        parent: TelemetrySpan | None = None,
        attributes: dict[str, JSONValue] | None = None,
    ) -> TelemetrySpan | None:
        _ = (name, kind, trace_id, parent, attributes)
        return None

    def end_span(
        self,
        span: TelemetrySpan | None,
        *,
        status: str,
        error: str | None = None,
        attributes: dict[str, JSONValue] | None = None,
    ) -> None:
        _ = (span, status, error, attributes)
        return None

    def increment_counter(
        self,
        name: str,
        value: int = 1,
        *,
        attributes: dict[str, JSONValue] | None = None,
    ) -> None:
        _ = (name, value, attributes)
        return None

    def record_histogram(
        self,
        name: str,
        value: float,
        *,
        attributes: dict[str, JSONValue] | None = None,
    ) -> None:
        _ = (name, value, attributes)
        return None


@dataclass(slots=True)
class InMemoryTelemetrySink:
    """Test/debug telemetry sink that stores emitted measurements."""

    _events: list[TelemetryEvent] = field(default_factory=list)
    _spans_closed: list[dict[str, Any]] = field(default_factory=list)
    _counters: list[dict[str, Any]] = field(default_factory=list)
    _histograms: list[dict[str, Any]] = field(default_factory=list)

    def record_event(self, event: TelemetryEvent) -> None:
        self._events.append(event)

    def start_span(
        self,
        name: str,
        *,
        kind: SpanKind,
        trace_id: str | None = None,
        parent: TelemetrySpan | None = None,
        attributes: dict[str, JSONValue] | None = None,
    ) -> TelemetrySpan:
        return _new_span(name, kind, trace_id, parent, attributes)

    def end_span(
        self,
        span: TelemetrySpan | None,
        *,
        status: str,
        error: str | None = None,
        attributes: dict[str, JSONValue] | None = None,
    ) -> None:
        if span is None:
            return None
        self._spans_closed.append(
            {
                "name": span.name,
                "kind": span.kind,
                "span_id": span.span_id,
                "trace_id": span.trace_id,
                "parent_span_id": span.parent_span_id,
                "started_at_ms": span.started_at_ms,
                "ended_at_ms": now_ms(),
                "status": status,
                "error": error,
                "attributes": {
                    **span.attributes,
                    **dict(attributes or {}),
                },
            }
        )
        return None

    def increment_counter(
        self,
        name: str,
        value: int = 1,
        *,
        attributes: dict[str, JSONValue] | None = None,
    ) -> None:
        self._counters.append(
            {
                "name": name,
                "value": int(value),
                "attributes": dict(attributes or {}),
                "timestamp_ms": now_ms(),
            }
        )

    def record_histogram(
        self,
        name: str,
        value: float,
        *,
        attributes: dict[str, JSONValue] | None = None,
    ) -> None:
        self._histograms.append(
            {
                "name": name,
                "value": float(value),
                "attributes": dict(attributes or {}),
                "timestamp_ms": now_ms(),
            }
        )

    def events(self) -> list[TelemetryEvent]:
        return list(self._events)

    def spans(self, kind: SpanKind | None = None) -> list[dict[str, Any]]:
        """
        Return closed span records in close order.

        Args:
            kind: Only return spans of this kind when given.
        """
        if kind is None:
            return list(self._spans_closed)
        return [s for s in self._spans_closed if s["kind"] == kind]

    def counters(self) -> list[dict[str, Any]]:
        return list(self._counters)

    def histograms(self) -> list[dict[str, Any]]:
        return list(self._histograms)


@dataclass(slots=True)
class OpenTelemetrySink:
    """
    OpenTelemetry sink using the global tracer/meter providers.

    Imports are lazy so agentrun runs without OTel installed. Parent spans are
    propagated through the native span context.
    """

    tracer_name: str = "agentrun.core"
    meter_name: str = "agentrun.core"

    _tracer: Any = field(default=None, init=False, repr=False)
    _meter: Any = field(default=None, init=False, repr=False)
    _counters: dict[str, Any] = field(default_factory=dict, init=False, repr=False)
    _histograms: dict[str, Any] = field(default_factory=dict, init=False, repr=False)

    def _ensure_clients(self) -> None:
        if self._tracer is not None and self._meter is not None:
            return
        try:
            from opentelemetry import metrics, trace
        except Exception as e:
            raise RuntimeError("OpenTelemetrySink requires 'opentelemetry-api'") from e

        self._tracer = trace.get_tracer(self.tracer_name)
        self._meter = metrics.get_meter(self.meter_name)

    def _attr(self, value: dict[str, JSONValue] | None) -> dict[str, Any]:
        return {str(key): _to_attr(item) for key, item in (value or {}).items() if item is not None}

    def record_event(self, event: TelemetryEvent) -> None:
        self.increment_counter(
            "agent.events",
            value=1,
            attributes={"event_name": event.name, **event.attributes},
        )

    def start_span(
        self,
        name: str,
        *,
        kind: SpanKind,
        trace_id: str | None = None,
        parent: TelemetrySpan | None = None,
        attributes: dict[str, JSONValue] | None = None,
    ) -> TelemetrySpan | None:
        try:
            self._ensure_clients()
            from opentelemetry import trace

            context = None
            if parent is not None and parent.native_span is not None:
                context = trace.set_span_in_context(parent.native_span)
            native = self._tracer.start_span(name=name, context=context)
            native.set_attribute("agentrun.span_kind", kind)
            if trace_id is not None:
                native.set_attribute("agentrun.trace_id", trace_id)
            attr = self._attr(attributes)
            if attr:
                native.set_attributes(attr)
            return _new_span(name, kind, trace_id, parent, attributes, native_span=native)
        except Exception:
            return None

    def end_span(
        self,
        span: TelemetrySpan | None,
        *,
        status: str,
        error: str | None = None,
        attributes: dict[str, JSONValue] | None = None,
    ) -> None:
        if span is None or span.native_span is None:
            return None
        try:
            from opentelemetry.trace import Status, StatusCode

            native = span.native_span
            attr = self._attr(attributes)
            if attr:
                native.set_attributes(attr)
            if error:
                native.record_exception(Exception(error))
            if status == "ok":
                native.set_status(Status(StatusCode.OK))
            else:
                native.set_status(Status(StatusCode.ERROR, error or status))
            native.end()
        except Exception:
            return None

    def increment_counter(
        self,
        name: str,
        value: int = 1,
        *,
        attributes: dict[str, JSONValue] | None = None,
    ) -> None:
        try:
            self._ensure_clients()
            counter = self._counters.get(name)
            if counter is None:
                counter = self._meter.create_counter(name)
                self._counters[name] = counter
            counter.add(int(value), attributes=self._attr(attributes))
        except Exception:
            return None

    def record_histogram(
        self,
        name: str,
        value: float,
        *,
        attributes: dict[str, JSONValue] | None = None,
    ) -> None:
        try:
            self._ensure_clients()
            histogram = self._histograms.get(name)
            if histogram is None:
                histogram = self._meter.create_histogram(name)
                self._histograms[name] = histogram
            histogram.record(float(value), attributes=self._attr(attributes))
        except Exception:
            return None


def now_ms() -> int:
    """Return current Unix epoch time in milliseconds."""
    return int(time.time() * 1000)


def _to_attr(value: JSONValue) -> Any:
    """Convert JSON-safe values into OpenTelemetry attribute-compatible values."""
    if isinstance(value, (str, int, float, bool)):
        return value
    if isinstance(value, list):
        return tuple(str(item) if isinstance(item, (dict, list)) else item for item in value)
    return str(value)
