"""Tracing for agentdesk.

- @observe decorator for span creation around sync and async calls
- OpenTelemetry setup with OTLP or Langfuse export
- Token usage aggregation across a root span
"""

from .observe import observe


# Lazy imports so @observe works without the OpenTelemetry SDK configured
def setup_telemetry(*args, **kwargs):
    """Set up OpenTelemetry tracing."""
    from .otel_setup import setup_telemetry as _setup_telemetry
    return _setup_telemetry(*args, **kwargs)


def get_tracer(*args, **kwargs):
    """Get an OpenTelemetry tracer."""
    from .otel_setup import get_tracer as _get_tracer
    return _get_tracer(*args, **kwargs)


def __getattr__(name):
    if name == "TelemetryTarget":
        from .otel_setup import TelemetryTarget
        return TelemetryTarget
    raise AttributeError(f"module '{__name__}' has no attribute '{name}'")


__all__ = ["observe", "setup_telemetry", "get_tracer", "TelemetryTarget"]
