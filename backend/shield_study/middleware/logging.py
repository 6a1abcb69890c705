"""Structured logging configuration and request middleware with correlation IDs."""
import structlog
import uuid
import logging
from fastapi import Request
from starlette.middleware.base import BaseHTTPMiddleware
from typing import Callable, Optional
import time

# Pref consulted for log verbosity (python logging levels)
PREF_LOGGING_LEVEL = "shield.testing.logging.level"


def configure_logging(level: int = logging.WARNING) -> None:
    """Configure structlog with JSON output filtered at `level`."""
    structlog.configure(
        processors=[
            structlog.contextvars.merge_contextvars,
            structlog.processors.add_log_level,
            structlog.processors.TimeStamper(fmt="iso"),
            structlog.processors.JSONRenderer()
        ],
        wrapper_class=structlog.make_filtering_bound_logger(level),
        context_class=dict,
        logger_factory=structlog.PrintLoggerFactory(),
        cache_logger_on_first_use=False
    )


configure_logging()

logger = structlog.get_logger()


class LoggingMiddleware(BaseHTTPMiddleware):
    """
    Middleware to add correlation IDs and log all requests.

    Adds a unique trace_id to each lifecycle request so the coordinator's
    log lines can be tied back to the host event that caused them.
    """

    async def dispatch(self, request: Request, call_next: Callable):
        # Generate correlation ID
        trace_id = str(uuid.uuid4())
        request.state.trace_id = trace_id

        # Bind trace_id to structlog context
        structlog.contextvars.clear_contextvars()
        structlog.contextvars.bind_contextvars(trace_id=trace_id)

        logger.info(
            "request_started",
            method=request.method,
            path=request.url.path,
            client_ip=request.client.host if request.client else None
        )

        start_time = time.time()
        try:
            response = await call_next(request)
            latency_ms = int((time.time() - start_time) * 1000)

            logger.info(
                "request_completed",
                status_code=response.status_code,
                latency_ms=latency_ms
            )

            response.headers["X-Trace-ID"] = trace_id

            return response

        except Exception as e:
            latency_ms = int((time.time() - start_time) * 1000)

            logger.error(
                "request_failed",
                error=str(e),
                error_type=type(e).__name__,
                latency_ms=latency_ms
            )
            raise


def get_logger(name: Optional[str] = None):
    """Get configured structured logger, optionally bound to a logger name."""
    if name:
        return logger.bind(logger_name=name)
    return logger


def study_logger_name(study_name: str) -> str:
    """Logger name used by a study's coordinator."""
    return f"shield-study-{study_name}"
