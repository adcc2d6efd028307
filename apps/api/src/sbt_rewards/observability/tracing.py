from __future__ import annotations

import os
from typing import Dict

from fastapi import FastAPI
from opentelemetry import trace
from opentelemetry.exporter.otlp.proto.http.trace_exporter import OTLPSpanExporter
from opentelemetry.instrumentation.fastapi import FastAPIInstrumentor
from opentelemetry.instrumentation.logging import LoggingInstrumentor
from opentelemetry.sdk.resources import Resource
from opentelemetry.sdk.trace import TracerProvider
from opentelemetry.sdk.trace.export import BatchSpanProcessor
from opentelemetry.sdk.trace.sampling import ParentBased, TraceIdRatioBased
from opentelemetry.semconv.resource import ResourceAttributes

# Probes hit these every few seconds; they would drown out mint spans.
_EXCLUDED_URLS = "healthz,readyz"

_provider: TracerProvider | None = None


def _otlp_headers() -> Dict[str, str] | None:
    raw = os.getenv("OTEL_EXPORTER_OTLP_HEADERS")
    if not raw:
        return None
    pairs = (pair.split("=", 1) for pair in raw.split(",") if "=" in pair)
    return {key.strip(): value.strip() for key, value in pairs}


def _build_provider(*, service_name: str, service_version: str, environment: str, sample_ratio: float) -> TracerProvider:
    resource = Resource.create(
        {
            ResourceAttributes.SERVICE_NAME: service_name,
            ResourceAttributes.SERVICE_VERSION: service_version,
            ResourceAttributes.DEPLOYMENT_ENVIRONMENT: environment,
        }
    )
    provider = TracerProvider(resource=resource, sampler=ParentBased(TraceIdRatioBased(sample_ratio)))

    endpoint = os.getenv("OTEL_EXPORTER_OTLP_ENDPOINT")
    if endpoint:
        provider.add_span_processor(BatchSpanProcessor(OTLPSpanExporter(endpoint=endpoint, headers=_otlp_headers())))
    return provider


def configure_tracing(
    app: FastAPI,
    *,
    service_name: str,
    service_version: str,
    environment: str,
    sample_ratio: float = 1.0,
) -> None:
    """Install the tracer provider once per process and instrument ``app``.

    Spans (including the ``sbt.mint`` span around each pipeline run) leave the
    process only when ``OTEL_EXPORTER_OTLP_ENDPOINT`` is set; trace ids reach the
    structured logs either way.
    """

    global _provider

    if _provider is None:
        _provider = _build_provider(
            service_name=service_name,
            service_version=service_version,
            environment=environment,
            sample_ratio=sample_ratio,
        )
        trace.set_tracer_provider(_provider)
        LoggingInstrumentor().instrument(set_logging_format=False)

    FastAPIInstrumentor.instrument_app(app, tracer_provider=_provider, excluded_urls=_EXCLUDED_URLS)


__all__ = ["configure_tracing"]
