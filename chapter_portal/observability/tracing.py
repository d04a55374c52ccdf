"""
Minimal OpenTelemetry tracing bootstrap.
- Initializes a TracerProvider with a Console exporter.
- Instruments the FastAPI app when one is passed.
- Idempotent: safe to call multiple times.
"""
from __future__ import annotations

from opentelemetry import trace
from opentelemetry.instrumentation.fastapi import FastAPIInstrumentor
from opentelemetry.sdk.resources import Resource
from opentelemetry.sdk.trace import TracerProvider
from opentelemetry.sdk.trace.export import BatchSpanProcessor, ConsoleSpanExporter

_OTEL_INITIALIZED = False


def init_tracing(app=None, service_name: str = "chapter-portal"):
    """Initialize OpenTelemetry tracing and instrument the app."""
    global _OTEL_INITIALIZED
    if not _OTEL_INITIALIZED:
        provider = TracerProvider(resource=Resource.create({"service.name": service_name}))
        provider.add_span_processor(BatchSpanProcessor(ConsoleSpanExporter()))
        trace.set_tracer_provider(provider)
        _OTEL_INITIALIZED = True

    if app is not None:
        FastAPIInstrumentor.instrument_app(app)

    return trace.get_tracer(service_name)
