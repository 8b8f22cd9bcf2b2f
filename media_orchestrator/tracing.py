"""
OpenTelemetry Tracing
=====================
Two instrumentation points: one span per task-group run (`traced_group`) and
one child span per provider exchange (`traced_provider_call`, opened by every
adapter submit and poll).

Until configure_tracing() installs a TracerProvider the OTEL API tracer is
used, which records nothing.

    from media_orchestrator.tracing import configure_tracing, TracingConfig
    configure_tracing(TracingConfig(enabled=True, otlp_endpoint="http://localhost:4317"))
    ...
    shutdown_tracing()
"""
from __future__ import annotations

import logging
from contextlib import contextmanager
from dataclasses import dataclass
from typing import Iterator, Optional

from opentelemetry import trace
from opentelemetry.sdk.resources import Resource
from opentelemetry.sdk.trace import SpanProcessor, TracerProvider
from opentelemetry.sdk.trace.export import (
    BatchSpanProcessor, ConsoleSpanExporter, SimpleSpanProcessor,
)
from opentelemetry.sdk.trace.sampling import TraceIdRatioBased

logger = logging.getLogger("media_orchestrator.tracing")

# process-wide; tests reset both
_tracer = None
_provider: Optional[TracerProvider] = None


@dataclass
class TracingConfig:
    enabled: bool = False
    service_name: str = "media-orchestrator"
    otlp_endpoint: Optional[str] = None   # unset: spans go to the console
    sample_rate: float = 1.0


def _span_processor(cfg: TracingConfig) -> SpanProcessor:
    if cfg.otlp_endpoint:
        # exporter ships in the optional "tracing" extra
        from opentelemetry.exporter.otlp.proto.grpc.trace_exporter import OTLPSpanExporter
        logger.info(f"Exporting spans to {cfg.otlp_endpoint}")
        return BatchSpanProcessor(OTLPSpanExporter(endpoint=cfg.otlp_endpoint, insecure=True))
    logger.info("Printing spans to the console")
    return SimpleSpanProcessor(ConsoleSpanExporter())


def configure_tracing(cfg: TracingConfig) -> None:
    """Install (or, when disabled, bypass) the SDK TracerProvider."""
    global _tracer, _provider

    if not cfg.enabled:
        _provider = None
        _tracer = trace.get_tracer("media_orchestrator")
        return

    _provider = TracerProvider(
        resource=Resource.create({"service.name": cfg.service_name}),
        sampler=TraceIdRatioBased(cfg.sample_rate),
    )
    _provider.add_span_processor(_span_processor(cfg))
    trace.set_tracer_provider(_provider)
    _tracer = _provider.get_tracer(cfg.service_name)


def shutdown_tracing() -> None:
    """Flush pending spans; a no-op when tracing was never enabled."""
    global _tracer, _provider
    if _provider is not None:
        _provider.shutdown()
    _provider = None
    _tracer = None


def get_tracer():
    global _tracer
    if _tracer is None:
        _tracer = trace.get_tracer("media_orchestrator")
    return _tracer


@contextmanager
def _span(name: str, attributes: dict) -> Iterator:
    with get_tracer().start_as_current_span(name, attributes=attributes) as span:
        yield span


def traced_group(group_id: str, model_id: str):
    """Span for one task group's submit-and-poll run."""
    return _span(f"group:{group_id}", {"group.id": group_id, "group.model": model_id})


def traced_provider_call(provider: str, call_type: str):
    """Span for a single provider HTTP exchange (`submit` or `poll`)."""
    return _span(f"provider_call:{call_type}",
                 {"provider.name": provider, "provider.call_type": call_type})
