"""OpenTelemetry span wrappers for maintenance operations.

forgedb never installs a TracerProvider itself. When the host process has
one configured, every cleanup, statistics call and verification check shows
up as a span; otherwise the API's no-op tracer makes these wrappers free.
"""

from __future__ import annotations

import functools

from opentelemetry import trace

_TRACER_NAME = "forgedb"


def get_tracer(name: str = _TRACER_NAME) -> trace.Tracer:
    """Get a tracer from the current provider."""
    return trace.get_tracer(name)


class maintenance_span:
    """Create a span named ``forgedb.<operation>``.

    Usable as a context manager::

        with maintenance_span("cleanup", table="public.api_usage_logs"):
            ...

    or as a decorator on async functions. Keyword arguments become
    ``forgedb.<key>`` span attributes. Exceptions are recorded on the span
    and the status is set to ERROR before the exception propagates.
    """

    def __init__(self, operation: str, **attributes: str | int | bool) -> None:
        self._operation = operation
        self._attributes = attributes
        self._span: trace.Span | None = None
        self._token: object | None = None

    def __enter__(self) -> trace.Span:
        tracer = get_tracer()
        self._span = tracer.start_span(f"forgedb.{self._operation}")
        for key, value in self._attributes.items():
            self._span.set_attribute(f"forgedb.{key}", value)
        self._token = trace.context_api.attach(trace.set_span_in_context(self._span))
        return self._span

    def __exit__(self, exc_type, exc_val, exc_tb) -> None:  # noqa: ANN001
        if self._span is None:
            return
        if exc_val is not None:
            self._span.set_status(trace.StatusCode.ERROR, str(exc_val))
            self._span.record_exception(exc_val)
        self._span.end()
        if self._token is not None:
            trace.context_api.detach(self._token)

    def __call__(self, func):  # noqa: ANN001, ANN204
        # Fresh instance per call so concurrent invocations never share span state.
        operation = self._operation
        attributes = self._attributes

        @functools.wraps(func)
        async def _wrapper(*args, **kwargs):  # noqa: ANN002, ANN003, ANN202
            with maintenance_span(operation, **attributes):
                return await func(*args, **kwargs)

        return _wrapper
