from __future__ import annotations

"""
clusterkit.observability.tracing
================================

OpenTelemetry instrumentation.

- `setup_tracing()` configures a service-wide tracer provider (SDK).
- `trace()` decorates sync/async callables with a span.
- Without `setup_tracing()` the API tracer is a no-op, so library code can
  always create spans.

Usage:
    setup_tracing(service_name="clusterkit-scheduler", otlp_endpoint="http://otelcol:4317")

    @trace("offers.pass")
    async def resource_offers(...): ...
"""

import functools
import inspect
from collections.abc import Callable
from typing import Any, TypeVar, cast

from opentelemetry import trace as otel_trace
from opentelemetry.sdk.resources import Resource
from opentelemetry.sdk.trace import TracerProvider
from opentelemetry.sdk.trace.export import BatchSpanProcessor
from opentelemetry.sdk.trace.sampling import TraceIdRatioBased

from ..core.log import get_logger

__all__ = ["setup_tracing", "trace"]

_log = get_logger("observability.tracing")
_F = TypeVar("_F", bound=Callable[..., Any])
_TRACER_NAME = "clusterkit"


def setup_tracing(
    *,
    service_name: str,
    otlp_endpoint: str | None = None,
    ratio: float = 1.0,
) -> TracerProvider:
    """
    Configure the global tracer provider.

    Args:
        service_name: logical service name for resources.
        otlp_endpoint: OTLP gRPC endpoint; requires the `otlp` extra
                       (opentelemetry-exporter-otlp-proto-grpc).
        ratio: sampling ratio in [0.0..1.0].
    """
    if not (0.0 <= ratio <= 1.0):
        raise ValueError("ratio must be within [0.0, 1.0]")
    provider = TracerProvider(
        resource=Resource.create({"service.name": service_name}),
        sampler=TraceIdRatioBased(ratio),
    )
    if otlp_endpoint:
        from opentelemetry.exporter.otlp.proto.grpc.trace_exporter import OTLPSpanExporter

        provider.add_span_processor(BatchSpanProcessor(OTLPSpanExporter(endpoint=otlp_endpoint, insecure=True)))
        _log.info("otel tracing configured (otlp)", event="tracing.configured", endpoint=otlp_endpoint)
    otel_trace.set_tracer_provider(provider)
    return provider


def trace(name: str) -> Callable[[_F], _F]:
    """Wrap a sync or async callable in a span named `name`."""

    def _decorator(func: _F) -> _F:
        tracer = otel_trace.get_tracer(_TRACER_NAME)

        if inspect.iscoroutinefunction(func):

            @functools.wraps(func)
            async def _aw(*args: Any, **kwargs: Any):
                with tracer.start_as_current_span(name):
                    return await func(*args, **kwargs)

            return cast(_F, _aw)

        @functools.wraps(func)
        def _sw(*args: Any, **kwargs: Any):
            with tracer.start_as_current_span(name):
                return func(*args, **kwargs)

        return cast(_F, _sw)

    return _decorator
