"""Tracing for ``tools/call`` dispatch.

The server records one span per call with :func:`get_tracer`; until
``toolmesh serve`` finds ``telemetry.enabled`` in its settings and calls
:func:`configure_telemetry`, the OpenTelemetry API hands back no-op tracers.
Exporting needs the ``otel`` extra (``pip install toolmesh[otel]``).
"""

from __future__ import annotations

import sys
from typing import TYPE_CHECKING

from opentelemetry import trace

if TYPE_CHECKING:
    from toolmesh.config import TelemetrySettings

ATTR_TOOL_NAME = "toolmesh.tool.name"
ATTR_TOOL_NAMESPACE = "toolmesh.tool.namespace"
ATTR_TOOL_IS_ERROR = "toolmesh.tool.is_error"
ATTR_TOOL_ERROR_KIND = "toolmesh.tool.error_kind"
ATTR_RPC_METHOD = "rpc.method"

_INSTRUMENTATION_NAME = "toolmesh"
_INSTALL_HINT = "Install it with: pip install toolmesh[otel]"


def get_tracer(name: str | None = None) -> trace.Tracer:
    return trace.get_tracer(name or _INSTRUMENTATION_NAME)


def configure_telemetry(settings: TelemetrySettings, service_name: str = _INSTRUMENTATION_NAME) -> None:
    """Install a global tracer provider exporting as *settings* asks.

    Console spans go to stderr because stdout carries the protocol stream.

    Raises:
        ImportError: If the SDK, or the OTLP exporter when
            ``otlp_endpoint`` is set, is not installed.
    """
    try:
        from opentelemetry.sdk.resources import Resource  # pyright: ignore[reportMissingImports]
        from opentelemetry.sdk.trace import TracerProvider  # pyright: ignore[reportMissingImports]
        from opentelemetry.sdk.trace.export import (  # pyright: ignore[reportMissingImports]
            BatchSpanProcessor,
            ConsoleSpanExporter,
            SimpleSpanProcessor,
        )
    except ImportError as exc:
        raise ImportError(f"opentelemetry-sdk is required for tracing. {_INSTALL_HINT}") from exc

    provider = TracerProvider(resource=Resource.create({"service.name": service_name}))
    if settings.export_to_console:
        provider.add_span_processor(SimpleSpanProcessor(ConsoleSpanExporter(out=sys.stderr)))
    if settings.otlp_endpoint:
        try:
            from opentelemetry.exporter.otlp.proto.grpc.trace_exporter import (  # pyright: ignore[reportMissingImports]
                OTLPSpanExporter,
            )
        except ImportError as exc:
            raise ImportError(f"opentelemetry-exporter-otlp is required for OTLP export. {_INSTALL_HINT}") from exc
        provider.add_span_processor(BatchSpanProcessor(OTLPSpanExporter(endpoint=settings.otlp_endpoint)))

    trace.set_tracer_provider(provider)
