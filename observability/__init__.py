"""Logging and tracing for the triage worker.

setup_logging / job_context:
    Console + rotating file logging with job_id/report_id on every record.

setup_tracing / trace_operation:
    Optional Logfire spans and pydantic-ai instrumentation.

Enable tracing via configuration:
    ENABLE_LOGFIRE=true
    LOGFIRE_TOKEN=your-token  # Optional

Example:
    >>> from observability import setup_logging, setup_tracing, trace_operation
    >>> setup_logging(config)
    >>> setup_tracing(enabled=config.enable_logfire, token=config.logfire_token)
"""

from observability.logging import setup_logging, job_context
from observability.tracing import setup_tracing, trace_operation, TracingContext

__all__ = [
    "setup_logging",
    "job_context",
    "setup_tracing",
    "trace_operation",
    "TracingContext",
]
