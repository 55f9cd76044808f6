"""
Request validation against the endpoint registry.
"""

import math
import re
from datetime import date
from numbers import Real
from typing import Any, Mapping, Optional

from shared.logging import get_logger
from ..domain.results import ValidationError
from ..registry import EndpointRegistry, ParamSpec


DATE_FORMAT = re.compile(r"\d{4}-\d{2}-\d{2}", re.ASCII)


class RequestValidator:
    """Checks request shape before any cache, limiter or network state is touched.

    Validation is pure: it reads the registry and the given params and never
    mutates anything. Parameters that the schema does not declare pass through
    unless the descriptor sets ``allow_unlisted_params`` to false.
    """

    def __init__(self, registry: EndpointRegistry):
        self.registry = registry
        self.logger = get_logger("gateway.validator")

    def validate(self, endpoint_id: str, params: Optional[Mapping[str, Any]]) -> Optional[ValidationError]:
        """Return None when the request is acceptable, otherwise a ValidationError."""
        descriptor = self.registry.get(endpoint_id)
        if descriptor is None:
            return self._reject(endpoint_id, f"Unknown endpoint: {endpoint_id}")

        params = params or {}

        for name, spec in descriptor.param_schema.items():
            if spec.required and params.get(name) is None:
                return self._reject(endpoint_id, f"Missing required parameter: {name}")

        for name, value in params.items():
            # Names are echoed in reasons and must encode
            if not _is_encodable(name):
                return self._reject(endpoint_id, "Parameter names must be valid UTF-8 text")
            spec = descriptor.param_schema.get(name)
            if spec is None:
                if not descriptor.allow_unlisted_params:
                    return self._reject(endpoint_id, f"Unexpected parameter: {name}")
                if isinstance(value, str) and not _is_encodable(value):
                    return self._reject(endpoint_id, f"Parameter {name} has invalid format")
                continue
            if value is None:
                continue
            reason = check_param(name, value, spec)
            if reason:
                return self._reject(endpoint_id, reason)

        return None

    def _reject(self, endpoint_id: str, reason: str) -> ValidationError:
        self.logger.info("Request rejected by validator", endpoint_id=endpoint_id, reason=reason)
        return ValidationError(reason)


def check_param(name: str, value: Any, spec: ParamSpec) -> Optional[str]:
    """Check one present parameter value; returns a reason string on failure."""
    if spec.type == "number":
        # bool is an int subclass and must not pass as a number
        if isinstance(value, bool) or not isinstance(value, Real):
            return f"Parameter {name} must be a number"
        if isinstance(value, float) and not math.isfinite(value):
            return f"Parameter {name} must be a finite number"
        if spec.min is not None and value < spec.min:
            return f"Parameter {name} must be >= {_format_bound(spec.min)}"
        if spec.max is not None and value > spec.max:
            return f"Parameter {name} must be <= {_format_bound(spec.max)}"
        return None

    if spec.type == "boolean":
        if not isinstance(value, bool):
            return f"Parameter {name} must be a boolean"
        return None

    if not isinstance(value, str):
        return f"Parameter {name} must be a string"

    if not _is_encodable(value):
        return f"Parameter {name} has invalid format"

    if spec.pattern is not None and spec.pattern.fullmatch(value) is None:
        return f"Parameter {name} has invalid format"

    if spec.type == "date" and not _is_calendar_date(value):
        return f"Parameter {name} must be a date (YYYY-MM-DD)"

    return None


def _is_calendar_date(value: str) -> bool:
    if DATE_FORMAT.fullmatch(value) is None:
        return False
    try:
        date.fromisoformat(value)
    except ValueError:
        return False
    return True


def _is_encodable(text: str) -> bool:
    try:
        text.encode("utf-8")
    except UnicodeEncodeError:
        return False
    return True


def _format_bound(bound: float) -> str:
    return str(int(bound)) if float(bound).is_integer() else str(bound)
