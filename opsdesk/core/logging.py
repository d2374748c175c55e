"""Logging and tracing setup for the opsdesk service."""

from __future__ import annotations

import logging
from logging.config import dictConfig
from typing import Any

from opentelemetry import trace
from opentelemetry.exporter.otlp.proto.http.trace_exporter import OTLPSpanExporter
from opentelemetry.sdk.resources import Resource
from opentelemetry.sdk.trace import TracerProvider
from opentelemetry.sdk.trace.export import BatchSpanProcessor

from opsdesk.core.config import Settings

_TRACER_INITIALISED = False


def parse_pairs(raw: str | None) -> dict[str, str]:
    """Parse ``key=value`` pairs separated by commas. Malformed items are skipped."""

    if not raw:
        return {}
    pairs: dict[str, str] = {}
    for item in raw.split(","):
        key, sep, value = item.partition("=")
        if sep and key.strip():
            pairs[key.strip()] = value.strip()
    return pairs


# OTLP header strings use the same ``key=value,...`` format.
parse_headers = parse_pairs


def _level(name: str, default: int = logging.INFO) -> int:
    value = logging.getLevelName(name.strip().upper())
    return value if isinstance(value, int) else default


def build_logging_config(settings: Settings) -> dict[str, Any]:
    root_level = _level(settings.log_level)
    loggers = {
        name: {"level": _level(level, root_level)}
        for name, level in parse_pairs(settings.log_levels).items()
    }
    return {
        "version": 1,
        "disable_existing_loggers": False,
        "formatters": {"default": {"format": settings.log_format}},
        "handlers": {
            "default": {
                "class": "logging.StreamHandler",
                "formatter": "default",
            }
        },
        "loggers": loggers,
        "root": {"handlers": ["default"], "level": root_level},
    }


def configure_logging(settings: Settings) -> logging.Logger:
    """Install the stream handler and per-logger overrides, e.g. ``opsdesk.access=DEBUG``."""

    dictConfig(build_logging_config(settings))
    logger = logging.getLogger(settings.app_name)
    logger.setLevel(_level(settings.log_level))
    return logger


def init_tracer(settings: Settings) -> TracerProvider | None:
    """Install an OTLP/HTTP tracer provider once, when tracing is enabled."""

    global _TRACER_INITIALISED

    if _TRACER_INITIALISED or not settings.otel_enabled:
        return None

    resource = Resource.create(
        {
            "service.name": settings.otel_service_name,
            "deployment.environment": settings.environment,
        }
    )
    provider = TracerProvider(resource=resource)

    exporter_kwargs: dict[str, Any] = {}
    if settings.otel_exporter_otlp_endpoint:
        exporter_kwargs["endpoint"] = settings.otel_exporter_otlp_endpoint
    headers = parse_headers(settings.otel_exporter_otlp_headers)
    if headers:
        exporter_kwargs["headers"] = headers
    provider.add_span_processor(BatchSpanProcessor(OTLPSpanExporter(**exporter_kwargs)))

    trace.set_tracer_provider(provider)
    _TRACER_INITIALISED = True
    logging.getLogger(__name__).info("Tracing enabled for %s", settings.otel_service_name)
    return provider


def shutdown_tracer(provider: TracerProvider | None) -> None:
    global _TRACER_INITIALISED

    if provider is None:
        return
    provider.shutdown()
    _TRACER_INITIALISED = False
