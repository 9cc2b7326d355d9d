"""Structured logging configuration.

Provides:
- structlog setup (console output in debug, JSON otherwise)
- optional OpenTelemetry log export when an OTLP endpoint is configured
- timing context managers for matching runs, detection passes and sweeps
- a helper for logging isolated per-entity failures with full context
"""

import logging
import sys
import time
from collections.abc import AsyncIterator, Iterator
from contextlib import asynccontextmanager, contextmanager
from typing import Any

import structlog
from structlog.stdlib import BoundLogger
from structlog.types import Processor

from ledgermatch.config import parse_key_value_pairs, settings


def _build_processors() -> list[Processor]:
    return [
        structlog.contextvars.merge_contextvars,
        structlog.processors.add_log_level,
        structlog.processors.format_exc_info,
        structlog.processors.TimeStamper(fmt="iso"),
    ]


def _select_renderer() -> Processor:
    if settings.debug:
        return structlog.dev.ConsoleRenderer()
    return structlog.processors.JSONRenderer()


def _otlp_logs_endpoint(endpoint: str) -> str:
    trimmed = endpoint.rstrip("/")
    if trimmed.endswith("/v1/logs"):
        return trimmed
    return f"{trimmed}/v1/logs"


def _configure_otel_logging() -> None:
    if not settings.otel_exporter_otlp_endpoint:
        return

    try:
        from opentelemetry._logs import set_logger_provider
        from opentelemetry.exporter.otlp.proto.http._log_exporter import OTLPLogExporter
        from opentelemetry.sdk._logs import LoggerProvider, LoggingHandler
        from opentelemetry.sdk._logs.export import BatchLogRecordProcessor
        from opentelemetry.sdk.resources import Resource
    except ImportError:  # pragma: no cover - otel extra not installed
        logging.getLogger(__name__).warning(
            "OTEL endpoint configured but the otel extra is not installed",
        )
        return

    resource_attributes = {"service.name": settings.otel_service_name}
    resource_attributes.update(parse_key_value_pairs(settings.otel_resource_attributes))

    provider = LoggerProvider(resource=Resource.create(resource_attributes))
    exporter = OTLPLogExporter(endpoint=_otlp_logs_endpoint(settings.otel_exporter_otlp_endpoint))
    provider.add_log_record_processor(BatchLogRecordProcessor(exporter))
    set_logger_provider(provider)

    logging.getLogger().addHandler(LoggingHandler(level=logging.INFO, logger_provider=provider))


def configure_logging() -> None:
    """Configure structlog for structured logging and optional OTEL export."""
    processors = _build_processors()

    structlog.configure(
        processors=processors + [structlog.stdlib.ProcessorFormatter.wrap_for_formatter],
        logger_factory=structlog.stdlib.LoggerFactory(),
        cache_logger_on_first_use=True,
    )

    handler = logging.StreamHandler(sys.stdout)
    handler.setFormatter(
        structlog.stdlib.ProcessorFormatter(
            processor=_select_renderer(),
            foreign_pre_chain=processors,
        )
    )

    logging.basicConfig(
        handlers=[handler],
        level=logging.DEBUG if settings.debug else logging.INFO,
    )

    _configure_otel_logging()


def get_logger(name: str | None = None) -> BoundLogger:
    """Get a structured logger."""
    return structlog.get_logger(name)


# =============================================================================
# Timing Utilities
# =============================================================================


def _emit_timing(
    log: BoundLogger,
    level: str,
    operation: str,
    started: float,
    context: dict[str, Any],
    result_context: dict[str, Any],
) -> None:
    duration_ms = round((time.perf_counter() - started) * 1000, 2)
    result_context["duration_ms"] = duration_ms
    extra = {k: v for k, v in result_context.items() if k != "duration_ms"}

    log_method = getattr(log, level, log.info)
    log_method(
        f"{operation} completed",
        operation=operation,
        duration_ms=duration_ms,
        **context,
        **extra,
    )


@contextmanager
def log_timing(
    operation: str,
    logger: BoundLogger | None = None,
    level: str = "info",
    **context: Any,
) -> Iterator[dict[str, Any]]:
    """Log how long a synchronous block took.

    Usage:
        with log_timing("match_transactions", logger=logger, session_id=sid) as timing:
            result = match(...)
            timing["matched"] = len(result.matched_pairs)

    The yielded dict may be filled with extra context during the block; it
    receives ``duration_ms`` once the block exits.
    """
    log = logger or get_logger(__name__)
    started = time.perf_counter()
    result_context: dict[str, Any] = {}
    try:
        yield result_context
    finally:
        _emit_timing(log, level, operation, started, context, result_context)


@asynccontextmanager
async def async_log_timing(
    operation: str,
    logger: BoundLogger | None = None,
    level: str = "info",
    **context: Any,
) -> AsyncIterator[dict[str, Any]]:
    """Async variant of :func:`log_timing`.

    Usage:
        async with async_log_timing("detect_patterns", logger=logger, user_id=uid):
            await detect_and_persist_patterns(db, user_id=uid)
    """
    log = logger or get_logger(__name__)
    started = time.perf_counter()
    result_context: dict[str, Any] = {}
    try:
        yield result_context
    finally:
        _emit_timing(log, level, operation, started, context, result_context)


# =============================================================================
# Exception Logging Helpers
# =============================================================================


def log_exception(
    logger: BoundLogger,
    exc: BaseException,
    context: str,
    *,
    level: str = "error",
    include_traceback: bool = True,
    **extra: Any,
) -> None:
    """Log an exception with full context.

    Usage:
        except SQLAlchemyError as exc:
            log_exception(logger, exc, "Pattern upsert failed", merchant_key=key)

    Args:
        logger: Logger instance
        exc: The exception to log
        context: Human-readable context message
        level: Log level (default: error)
        include_traceback: Whether to include full traceback (default: True)
        **extra: Additional context to include
    """
    log_method = getattr(logger, level, logger.error)

    log_kwargs: dict[str, Any] = {
        "error": str(exc),
        "error_type": type(exc).__name__,
        "error_module": type(exc).__module__,
        **extra,
    }

    if include_traceback:
        log_method(context, exc_info=exc, **log_kwargs)
    else:
        log_method(context, **log_kwargs)
