"""Structured logging for the reconciliation service.

Log lines are structlog events with keyword context. In debug they render
for the console, otherwise as JSON. When an OTLP endpoint is configured the
same records are also exported through OpenTelemetry.
"""

import logging
import sys
import time
from collections.abc import AsyncIterator, Awaitable, Callable
from contextlib import asynccontextmanager
from functools import wraps
from typing import Any, ParamSpec, TypeVar

import structlog
from structlog.stdlib import BoundLogger
from structlog.types import Processor

from bankrec.config import parse_key_value_pairs, settings

P = ParamSpec("P")
T = TypeVar("T")

SHARED_PROCESSORS: list[Processor] = [
    structlog.contextvars.merge_contextvars,
    structlog.processors.add_log_level,
    structlog.processors.format_exc_info,
    structlog.processors.TimeStamper(fmt="iso"),
]


def _elapsed_ms(start: float) -> float:
    return round((time.perf_counter() - start) * 1000, 2)


def _otlp_logs_url(endpoint: str) -> str:
    base = endpoint.rstrip("/")
    return base if base.endswith("/v1/logs") else f"{base}/v1/logs"


def _attach_otel_handler() -> None:
    endpoint = settings.otel_exporter_otlp_endpoint
    if not endpoint:
        return

    try:
        from opentelemetry._logs import set_logger_provider
        from opentelemetry.exporter.otlp.proto.http._log_exporter import OTLPLogExporter
        from opentelemetry.sdk._logs import LoggerProvider, LoggingHandler
        from opentelemetry.sdk._logs.export import BatchLogRecordProcessor
        from opentelemetry.sdk.resources import Resource
    except ImportError:  # pragma: no cover - exporter is an optional extra
        logging.getLogger(__name__).warning("OTEL log exporter not installed", exc_info=True)
        return

    attributes = {
        "service.name": settings.otel_service_name,
        **parse_key_value_pairs(settings.otel_resource_attributes),
    }
    provider = LoggerProvider(resource=Resource.create(attributes))
    provider.add_log_record_processor(BatchLogRecordProcessor(OTLPLogExporter(endpoint=_otlp_logs_url(endpoint))))
    set_logger_provider(provider)
    logging.getLogger().addHandler(LoggingHandler(level=logging.INFO, logger_provider=provider))


def configure_logging() -> None:
    """Route structlog and stdlib logging through one formatter. Call once at startup."""
    renderer: Processor = structlog.dev.ConsoleRenderer() if settings.debug else structlog.processors.JSONRenderer()

    structlog.configure(
        processors=[*SHARED_PROCESSORS, structlog.stdlib.ProcessorFormatter.wrap_for_formatter],
        logger_factory=structlog.stdlib.LoggerFactory(),
        cache_logger_on_first_use=True,
    )

    handler = logging.StreamHandler(sys.stdout)
    handler.setFormatter(structlog.stdlib.ProcessorFormatter(processor=renderer, foreign_pre_chain=SHARED_PROCESSORS))
    logging.basicConfig(handlers=[handler], level=logging.DEBUG if settings.debug else logging.INFO)

    _attach_otel_handler()


def get_logger(name: str | None = None) -> BoundLogger:
    return structlog.get_logger(name)


@asynccontextmanager
async def async_log_timing(
    operation: str,
    logger: BoundLogger | None = None,
    **context: Any,
) -> AsyncIterator[dict[str, Any]]:
    """Log the duration of a resolve or reconciliation step.

    Keys the caller writes into the yielded dict are added to the event:

        async with async_log_timing("resolve_transaction", logger, transaction_id=str(txn.id)) as timing:
            ...
            timing["candidates"] = len(ranked)
    """
    log = logger or get_logger(__name__)
    start = time.perf_counter()
    outcome: dict[str, Any] = {}
    try:
        yield outcome
    finally:
        log.info(f"{operation} completed", operation=operation, duration_ms=_elapsed_ms(start), **context, **outcome)


def log_external_api(
    service: str,
    *,
    logger: BoundLogger | None = None,
) -> Callable[[Callable[P, Awaitable[T]]], Callable[P, Awaitable[T]]]:
    """Wrap an async collaborator call with success/failure logging and timing.

    Errors are logged and re-raised unchanged; mapping them to domain errors
    is the caller's job.
    """

    def decorator(func: Callable[P, Awaitable[T]]) -> Callable[P, Awaitable[T]]:
        log = logger or get_logger(func.__module__)

        @wraps(func)
        async def wrapper(*args: P.args, **kwargs: P.kwargs) -> T:
            start = time.perf_counter()
            try:
                result = await func(*args, **kwargs)
            except Exception as exc:
                log.error(
                    f"Call to {service} failed",
                    service=service,
                    function=func.__name__,
                    duration_ms=_elapsed_ms(start),
                    error=str(exc),
                    error_type=type(exc).__name__,
                )
                raise
            log.info(f"Call to {service}", service=service, function=func.__name__, duration_ms=_elapsed_ms(start))
            return result

        return wrapper

    return decorator


def log_exception(
    logger: BoundLogger,
    exc: BaseException,
    context: str,
    *,
    level: str = "error",
    include_traceback: bool = True,
    **extra: Any,
) -> None:
    """Log ``exc`` with its type under the message ``context``.

        except re.error as exc:
            log_exception(logger, exc, "Skipping rule with invalid pattern", rule_id=str(rule.id))
    """
    log_method = getattr(logger, level, logger.error)
    fields = {"error": str(exc), "error_type": type(exc).__name__, **extra}
    if include_traceback:
        log_method(context, exc_info=exc, **fields)
    else:
        log_method(context, **fields)
