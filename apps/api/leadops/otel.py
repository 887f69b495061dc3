from __future__ import annotations

from typing import Any

from opentelemetry import trace
from opentelemetry.exporter.otlp.proto.http.trace_exporter import OTLPSpanExporter
from opentelemetry.sdk.resources import Resource
from opentelemetry.sdk.trace import TracerProvider
from opentelemetry.sdk.trace.export import (
    BatchSpanProcessor,
    ConsoleSpanExporter,
    SimpleSpanProcessor,
)
from opentelemetry.sdk.trace.export.in_memory_span_exporter import InMemorySpanExporter

from leadops.context import normalize_correlation_id
from leadops.core.config import Settings, get_settings


_exporters_configured = False
_provider: TracerProvider | None = None

# first matching prefix wins
_SURFACES: tuple[tuple[str, str], ...] = (
    ("/api/webhooks/", "webhook"),
    ("/api/jobs/", "job"),
    ("/api/settings/", "settings"),
    ("/api/team/", "team"),
    ("/api/followups/", "followups"),
)


def _get_or_create_provider(service_name: str, service_version: str) -> TracerProvider:
    global _provider

    if _provider is not None:
        return _provider

    resource = Resource.create({"service.name": service_name, "service.version": service_version})
    provider = TracerProvider(resource=resource)
    trace.set_tracer_provider(provider)
    _provider = provider
    return provider


def configure_tracing(settings: Settings | None = None) -> TracerProvider | None:
    """Install the SDK provider and its exporters once, when tracing is enabled."""
    global _exporters_configured

    settings = settings or get_settings()
    if not settings.otel_enabled:
        return None

    provider = _get_or_create_provider(settings.otel_service_name, settings.app_version)
    if _exporters_configured:
        return provider

    if settings.otel_exporter_otlp_endpoint:
        provider.add_span_processor(
            BatchSpanProcessor(OTLPSpanExporter(endpoint=settings.otel_exporter_otlp_endpoint))
        )
    if settings.otel_console_exporter:
        provider.add_span_processor(SimpleSpanProcessor(ConsoleSpanExporter()))

    _exporters_configured = True
    return provider


def setup_inmemory_otel(service_name: str = "leadops-api") -> InMemorySpanExporter:
    provider = _get_or_create_provider(service_name, get_settings().app_version)
    exporter = InMemorySpanExporter()
    provider.add_span_processor(SimpleSpanProcessor(exporter))
    return exporter


def resolve_surface(path: str) -> str:
    for prefix, surface in _SURFACES:
        if path.startswith(prefix):
            return surface
    return "system"


def server_request_hook(span: Any, scope: dict[str, Any]) -> None:
    """Tag server spans with the request's correlation id and which API surface it hit."""
    if span is None or not span.is_recording():
        return
    span.set_attribute("leadops.surface", resolve_surface(str(scope.get("path", ""))))
    headers = dict(scope.get("headers", []))
    correlation_id = normalize_correlation_id(headers.get(b"x-correlation-id"))
    if correlation_id:
        span.set_attribute("correlation_id", correlation_id)
