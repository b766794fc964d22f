"""
OpenTelemetry tracing bootstrap.

Installs a process-wide TracerProvider tagged with the service name, version
and environment. Modules obtain tracers through ``trace.get_tracer`` and keep
working against the no-op provider when tracing is disabled.
"""

import logging
import os
import socket
from typing import Optional

from opentelemetry import trace
from opentelemetry.sdk.resources import Resource
from opentelemetry.sdk.trace import TracerProvider
from opentelemetry.sdk.trace.export import BatchSpanProcessor, ConsoleSpanExporter

from .config import Settings

logger = logging.getLogger(__name__)

_tracer_provider: Optional[TracerProvider] = None


def _create_resource(settings: Settings) -> Resource:
    return Resource.create(
        {
            "service.name": settings.OTEL_SERVICE_NAME,
            "service.version": settings.OTEL_SERVICE_VERSION,
            "deployment.environment": settings.ENVIRONMENT,
            "host.name": socket.gethostname(),
            "process.pid": os.getpid(),
        }
    )


def init_tracing(settings: Settings) -> bool:
    """
    Install the tracer provider once per process.

    Returns:
        True if a provider is installed after the call
    """
    global _tracer_provider

    if not settings.OTEL_ENABLED:
        logger.info("Tracing disabled by configuration")
        return False
    if _tracer_provider is not None:
        return True

    provider = TracerProvider(resource=_create_resource(settings))
    if settings.OTEL_CONSOLE_EXPORT:
        provider.add_span_processor(BatchSpanProcessor(ConsoleSpanExporter()))

    trace.set_tracer_provider(provider)
    _tracer_provider = provider
    logger.info(f"Tracing initialized for {settings.OTEL_SERVICE_NAME}")
    return True


def shutdown_tracing() -> None:
    """Flush pending spans and release the provider."""
    global _tracer_provider

    if _tracer_provider is None:
        return
    try:
        _tracer_provider.shutdown()
    except Exception as e:
        logger.warning(f"Tracer provider shutdown failed: {e}")
    _tracer_provider = None
