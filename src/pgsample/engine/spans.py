# src/pgsample/engine/spans.py
"""OpenTelemetry span factory for the sampling engine.

Provides structured span creation for sync requests.
Falls back to no-op mode when no tracer is configured.

Span Hierarchy:
    sync
    ├── getDatabaseInfo
    ├── getRecentQueries
    ├── syncSchema
    ├── resolveDependencies
    │   └── serialize
    └── checkPrivilege

Spans record exceptions and set an ERROR status when the body raises.
"""

from collections.abc import Iterator
from contextlib import contextmanager
from typing import TYPE_CHECKING, Any

if TYPE_CHECKING:
    from opentelemetry.trace import Span, Tracer

    from pgsample.contracts.results import ResolutionOptions


class NoOpSpan:
    """No-op span for when tracing is disabled."""

    def set_attribute(self, key: str, value: Any) -> None:
        """No-op."""
        pass

    def set_status(self, status: Any) -> None:
        """No-op."""
        pass

    def record_exception(self, exception: Exception) -> None:
        """No-op."""
        pass

    def is_recording(self) -> bool:
        """Always False for no-op."""
        return False


def mark_error(span: "Span | NoOpSpan", error_type: str) -> None:
    """Set an ERROR status carrying the public error type."""
    if not span.is_recording():
        return
    from opentelemetry.trace import Status, StatusCode

    span.set_status(Status(StatusCode.ERROR, error_type))


def mark_ok(span: "Span | NoOpSpan") -> None:
    if not span.is_recording():
        return
    from opentelemetry.trace import Status, StatusCode

    span.set_status(Status(StatusCode.OK))


class SpanFactory:
    """Factory for creating OpenTelemetry spans.

    When no tracer is provided, all span methods return no-op contexts.

    Example:
        factory = SpanFactory(tracer=opentelemetry.trace.get_tracer("pgsample"))

        with factory.sync_span("public", options) as span:
            with factory.step_span("getDatabaseInfo"):
                ...
    """

    # Singleton no-op span to avoid repeated allocations
    _NOOP_SPAN = NoOpSpan()

    def __init__(self, tracer: "Tracer | None" = None) -> None:
        """Initialize with optional tracer.

        Args:
            tracer: OpenTelemetry tracer. If None, spans are no-ops.
        """
        self._tracer = tracer

    @property
    def enabled(self) -> bool:
        """Whether tracing is enabled."""
        return self._tracer is not None

    @contextmanager
    def sync_span(
        self,
        schema: str,
        options: "ResolutionOptions",
        *,
        db_host: str | None = None,
    ) -> Iterator["Span | NoOpSpan"]:
        """Create the root span for one sync request.

        Args:
            schema: Schema being synced
            options: Sampling options of the request
            db_host: Target host name (never the full URL)

        Yields:
            Span or NoOpSpan if tracing disabled (never None - uniform interface)
        """
        if self._tracer is None:
            yield self._NOOP_SPAN
            return

        with self._tracer.start_as_current_span("sync") as span:
            span.set_attribute("db.schema", schema)
            span.set_attribute("requiredRows", options.required_rows)
            span.set_attribute("maxRows", options.max_rows)
            span.set_attribute("seed", options.seed)
            if db_host:
                span.set_attribute("db.host", db_host)
            yield span

    @contextmanager
    def step_span(self, name: str, **attributes: str | int | float | bool) -> Iterator["Span | NoOpSpan"]:
        """Create a span for one step of a sync (getDatabaseInfo, syncSchema, ...).

        Yields:
            Span or NoOpSpan
        """
        if self._tracer is None:
            yield self._NOOP_SPAN
            return

        with self._tracer.start_as_current_span(name) as span:
            for key, value in attributes.items():
                span.set_attribute(key, value)
            yield span

    @contextmanager
    def resolve_span(self, table_count: int, edge_count: int) -> Iterator["Span | NoOpSpan"]:
        """Create a span for dependency resolution over the FK graph.

        Yields:
            Span or NoOpSpan
        """
        if self._tracer is None:
            yield self._NOOP_SPAN
            return

        with self._tracer.start_as_current_span("resolveDependencies") as span:
            span.set_attribute("graph.tables", table_count)
            span.set_attribute("graph.edges", edge_count)
            yield span

    @contextmanager
    def serialize_span(self, table_count: int, row_count: int) -> Iterator["Span | NoOpSpan"]:
        """Create a span for rendering the closure as SQL.

        Yields:
            Span or NoOpSpan
        """
        if self._tracer is None:
            yield self._NOOP_SPAN
            return

        with self._tracer.start_as_current_span("serialize") as span:
            span.set_attribute("closure.tables", table_count)
            span.set_attribute("closure.rows", row_count)
            yield span
