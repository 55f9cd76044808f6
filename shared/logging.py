"""
Shared logging configuration for the Astronomer gateway.

Log events are rendered as JSON lines, or as coloured console lines when the
gateway runs from a developer checkout. Each event carries the request id of
the boundary call and the endpoint id of the fetch it belongs to.
"""

import sys
import structlog
import logging
import uuid
from typing import Any, Dict, Optional
from contextvars import ContextVar

# Context variables for request correlation
request_id_var: ContextVar[Optional[str]] = ContextVar('request_id', default=None)
endpoint_id_var: ContextVar[Optional[str]] = ContextVar('endpoint_id', default=None)


def configure_logging(service_name: str, log_level: str = "info", json_logs: bool = True) -> None:
    """Configure structured logging for the gateway."""

    renderer = structlog.processors.JSONRenderer() if json_logs else structlog.dev.ConsoleRenderer()

    structlog.configure(
        processors=[
            structlog.stdlib.filter_by_level,
            structlog.stdlib.add_logger_name,
            structlog.stdlib.add_log_level,
            structlog.stdlib.PositionalArgumentsFormatter(),
            structlog.processors.TimeStamper(fmt="iso", utc=True),
            structlog.processors.StackInfoRenderer(),
            structlog.processors.format_exc_info,
            structlog.processors.UnicodeDecoder(),
            add_component,
            add_correlation_context,
            renderer,
        ],
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        wrapper_class=structlog.stdlib.BoundLogger,
        cache_logger_on_first_use=True,
    )

    logging.basicConfig(
        format="%(message)s",
        stream=sys.stdout,
        level=getattr(logging, log_level.upper()),
        force=True,
    )
    logging.getLogger(service_name).setLevel(getattr(logging, log_level.upper()))


def add_component(logger: Any, method_name: str, event_dict: Dict[str, Any]) -> Dict[str, Any]:
    """Split "gateway.cache" style logger names into service and component."""
    logger_name = event_dict.get("logger", "")
    if "." in logger_name:
        service, component = logger_name.split(".", 1)
        event_dict["service"] = service
        event_dict["component"] = component

    return event_dict


def add_correlation_context(logger: Any, method_name: str, event_dict: Dict[str, Any]) -> Dict[str, Any]:
    """Attach request and endpoint ids from the current context."""
    request_id = request_id_var.get()
    if request_id:
        event_dict["request_id"] = request_id

    # Explicit endpoint_id keyword arguments win
    endpoint_id = endpoint_id_var.get()
    if endpoint_id:
        event_dict.setdefault("endpoint_id", endpoint_id)

    return event_dict


def set_request_id(request_id: Optional[str] = None) -> str:
    """Set request ID in context."""
    if request_id is None:
        request_id = str(uuid.uuid4())
    request_id_var.set(request_id)
    return request_id


def set_endpoint_id(endpoint_id: Optional[str]) -> None:
    endpoint_id_var.set(endpoint_id)


def clear_context():
    """Clear all context variables."""
    request_id_var.set(None)
    endpoint_id_var.set(None)


def get_logger(name: str) -> structlog.BoundLogger:
    """Get a structured logger instance."""
    return structlog.get_logger(name)
