from __future__ import annotations

import os
from typing import Any

from opentelemetry import trace
from opentelemetry.exporter.otlp.proto.http.trace_exporter import OTLPSpanExporter
from opentelemetry.sdk.resources import Resource
from opentelemetry.sdk.trace import TracerProvider
from opentelemetry.sdk.trace.export import (
    BatchSpanProcessor,
    ConsoleSpanExporter,
    SimpleSpanProcessor,
    SpanProcessor,
)
from opentelemetry.sdk.trace.export.in_memory_span_exporter import InMemorySpanExporter
from opentelemetry.trace import Status, StatusCode

SERVICE_NAME = "humans-crm-api"

# Request headers copied onto the server span, keyed by the lower-cased ASGI header name.
REQUEST_HEADER_ATTRIBUTES: dict[bytes, str] = {
    b"x-correlation-id": "correlation_id",
    b"x-colleague-id": "crm.actor_id",
}

_provider: TracerProvider | None = None
_exporters_installed = False


def _provider_for(service_name: str) -> TracerProvider:
    global _provider

    if _provider is None:
        _provider = TracerProvider(
            resource=Resource.create(
                {
                    "service.name": service_name,
                    "service.version": os.getenv("APP_VERSION", "0.1.0"),
                }
            )
        )
        trace.set_tracer_provider(_provider)
    return _provider


def _exporter_processors() -> list[SpanProcessor]:
    processors: list[SpanProcessor] = []
    endpoint = os.getenv("OTEL_EXPORTER_OTLP_ENDPOINT")
    if endpoint:
        processors.append(BatchSpanProcessor(OTLPSpanExporter(endpoint=endpoint)))
    if os.getenv("OTEL_CONSOLE_EXPORTER", "false").lower() == "true":
        processors.append(SimpleSpanProcessor(ConsoleSpanExporter()))
    return processors


def setup_otel(service_name: str = SERVICE_NAME, enable: bool = True) -> TracerProvider | None:
    """Install the SDK tracer provider once.

    Exporters are picked from the environment: ``OTEL_EXPORTER_OTLP_ENDPOINT`` ships spans
    over OTLP/HTTP, ``OTEL_CONSOLE_EXPORTER=true`` prints them. With neither set spans are
    still created, so in-memory exporters attached by tests see them.
    """
    global _exporters_installed

    if not enable:
        return None
    provider = _provider_for(service_name)
    if not _exporters_installed:
        for processor in _exporter_processors():
            provider.add_span_processor(processor)
        _exporters_installed = True
    return provider


def setup_inmemory_otel(service_name: str = SERVICE_NAME) -> InMemorySpanExporter:
    exporter = InMemorySpanExporter()
    _provider_for(service_name).add_span_processor(SimpleSpanProcessor(exporter))
    return exporter


def get_tracer(name: str) -> trace.Tracer:
    return trace.get_tracer(name)


def mark_span_error(span: trace.Span, exc: Exception) -> None:
    """Flag a span as failed with the CRM error code of ``exc``."""
    code = getattr(exc, "code", type(exc).__name__)
    span.set_attribute("crm.error_code", code)
    span.set_status(Status(StatusCode.ERROR, code))


def get_fastapi_server_request_hook():
    def server_request_hook(span, scope: dict[str, Any]) -> None:  # type: ignore[no-untyped-def]
        if span is None or not span.is_recording():
            return
        for name, value in scope.get("headers", []):
            attribute = REQUEST_HEADER_ATTRIBUTES.get(name.lower())
            if attribute and value:
                span.set_attribute(attribute, value.decode("utf-8"))

    return server_request_hook
