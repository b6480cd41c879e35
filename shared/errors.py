"""
Shared error handling for the Observer Access service.
"""

from typing import Dict, Any, List, Optional
from pydantic import BaseModel, Field

from opentelemetry import trace


class ErrorResponse(BaseModel):
    """Standard error response format."""

    trace_id: Optional[str] = None
    code: str
    message: str
    details: Dict[str, Any] = Field(default_factory=dict)


class AccessLayerException(Exception):
    """Base exception for Observer Access errors."""

    status_code = 400

    def __init__(self, code: str, message: str, details: Optional[Dict[str, Any]] = None):
        self.code = code
        self.message = message
        self.details = details or {}
        super().__init__(message)

    def to_response(self) -> ErrorResponse:
        """Convert to error response."""
        # Get trace ID from current span
        trace_id = None
        current_span = trace.get_current_span()
        if current_span and current_span.is_recording():
            span_context = current_span.get_span_context()
            if span_context.trace_id != 0:
                trace_id = f"{span_context.trace_id:032x}"

        return ErrorResponse(
            trace_id=trace_id,
            code=self.code,
            message=self.message,
            details=self.details
        )


class ConfigurationError(AccessLayerException):
    """Rule-set failed structural or schema validation."""

    status_code = 422

    def __init__(self, errors: List[str], message: str = "Invalid rule configuration"):
        self.errors = list(errors)
        super().__init__("CONFIGURATION_ERROR", message, {"errors": self.errors})


class InvalidRuleNameError(AccessLayerException):
    """Rule name is unusable after sanitization."""

    def __init__(self, message: str, raw_name: Optional[str] = None):
        super().__init__("INVALID_RULE_NAME", message, {"raw_name": raw_name})


class UnknownRuleError(AccessLayerException):
    """Rule name does not resolve to a registered rule."""

    status_code = 404

    def __init__(self, rule_name: str, available: Optional[List[str]] = None):
        self.rule_name = rule_name
        super().__init__(
            "UNKNOWN_RULE",
            f"Rule not found: {rule_name}",
            {"rule_name": rule_name, "available": list(available or [])}
        )


class RuleExecutionError(AccessLayerException):
    """A single rule raised while contributing to one evaluation phase."""

    status_code = 500

    def __init__(self, rule_name: str, phase: str, cause: Exception):
        self.rule_name = rule_name
        self.phase = phase
        self.cause = cause
        super().__init__(
            "RULE_EXECUTION_ERROR",
            f"Rule '{rule_name}' failed during {phase} phase: {cause}",
            {"rule_name": rule_name, "phase": phase, "error_type": type(cause).__name__}
        )


class PersistenceConflictError(AccessLayerException):
    """Observer record changed between read and write."""

    status_code = 409

    def __init__(self, observer_id: int, expected_version: int, actual_version: Optional[int] = None):
        self.observer_id = observer_id
        self.expected_version = expected_version
        self.actual_version = actual_version
        super().__init__(
            "PERSISTENCE_CONFLICT",
            f"Observer {observer_id} was modified concurrently",
            {
                "observer_id": observer_id,
                "expected_version": expected_version,
                "actual_version": actual_version,
            }
        )


class NotFoundError(AccessLayerException):
    """Requested entity does not exist."""

    status_code = 404

    def __init__(self, message: str = "Not found", details: Optional[Dict[str, Any]] = None):
        super().__init__("NOT_FOUND", message, details)


class ServiceError(AccessLayerException):
    """Service-related errors."""

    status_code = 503

    def __init__(self, message: str = "Service error", details: Optional[Dict[str, Any]] = None):
        super().__init__("SERVICE_ERROR", message, details)
