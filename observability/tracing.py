"""Optional tracing with Logfire/OpenTelemetry.

When enabled, every remote model call made through pydantic-ai is
instrumented automatically and each classification job runs inside a
``trace_operation`` span, so a slow report can be followed from dequeue to
model response.

Requirements:
    pip install logfire

Enable via configuration:
    ENABLE_LOGFIRE=true
    LOGFIRE_TOKEN=your-token  # Optional for cloud dashboard

Usage:
    >>> from observability.tracing import setup_tracing, trace_operation
    >>> setup_tracing(enabled=True, service_name="civic-triage")
    >>> with trace_operation("process_report", {"report_id": rid}) as attrs:
    ...     attrs["final_category"] = "Other"
"""

import logging
import time
from contextlib import contextmanager
from dataclasses import dataclass, field
from typing import Any, Generator

logger = logging.getLogger(__name__)


@dataclass
class TracingContext:
    """Process-wide tracing state."""
    enabled: bool = False
    service_name: str = "civic-triage"
    token: str = ""
    _logfire_configured: bool = field(default=False, init=False)


_context = TracingContext()


def setup_tracing(
    enabled: bool = False,
    service_name: str = "civic-triage",
    token: str = "",
) -> TracingContext:
    """Configure Logfire and instrument pydantic-ai.

    Missing or failing Logfire leaves tracing disabled; the worker runs
    either way.
    """
    _context.enabled = enabled
    _context.service_name = service_name
    _context.token = token

    if not enabled:
        logger.debug("Tracing disabled")
        return _context

    try:
        import logfire

        logfire.configure(service_name=service_name, token=token or None)
        logfire.instrument_pydantic_ai()
        _context._logfire_configured = True
        logger.info("Logfire tracing enabled | service=%s", service_name)
    except ImportError:
        logger.warning("Logfire not installed. Tracing disabled.")
        _context.enabled = False
    except Exception as e:
        logger.error("Failed to configure Logfire: %s", e)
        _context.enabled = False

    return _context


@contextmanager
def trace_operation(
    name: str,
    attributes: dict[str, Any] | None = None,
) -> Generator[dict[str, Any], None, None]:
    """Span around an operation.

    Yields a dict; anything put into it is attached to the span when the
    block exits. Without Logfire this only logs the duration.
    """
    start = time.monotonic()
    result_attrs: dict[str, Any] = {}
    try:
        if _context.enabled and _context._logfire_configured:
            import logfire

            with logfire.span(name, **(attributes or {})) as span:
                try:
                    yield result_attrs
                finally:
                    for key, value in result_attrs.items():
                        span.set_attribute(key, value)
        else:
            yield result_attrs
    finally:
        logger.debug("Operation complete | name=%s duration=%.2fs", name, time.monotonic() - start)
