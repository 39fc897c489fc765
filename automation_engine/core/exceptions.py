"""Custom exceptions for the workflow automation engine."""

import logging
from typing import Any

logger = logging.getLogger(__name__)

# Exception type → safe user-facing message mapping
_SAFE_MESSAGES: dict[str, str] = {
    "NotFoundError": "The requested resource was not found.",
    "WorkflowDisabledError": "This workflow is disabled.",
    "InvalidCronExpressionError": "The workflow schedule is invalid.",
    "ConfigurationError": "The workflow configuration is invalid.",
    "ActionExecutionError": "A workflow action failed. Please try again.",
    "ValueError": "The provided value is invalid.",
}

_DEFAULT_MESSAGE = "An error occurred. Please try again."


def sanitize_error(e: Exception) -> str:
    """Map an exception to a safe, user-facing error message.

    Walks the exception's MRO so subclasses inherit the message of their
    closest mapped ancestor.

    Args:
        e: The exception to sanitize.

    Returns:
        A safe, generic error message string.
    """
    for cls in type(e).__mro__:
        safe_msg = _SAFE_MESSAGES.get(cls.__name__)
        if safe_msg:
            return safe_msg

    return _DEFAULT_MESSAGE


class AutomationException(Exception):
    """Base exception for all automation-engine errors."""

    def __init__(
        self,
        message: str,
        code: str,
        status_code: int = 400,
        details: dict[str, Any] | None = None,
    ) -> None:
        """Initialize automation exception.

        Args:
            message: Human-readable error message.
            code: Machine-readable error code.
            status_code: HTTP status code.
            details: Additional error details.
        """
        super().__init__(message)
        self.message = message
        self.code = code
        self.status_code = status_code
        self.details = details or {}


class NotFoundError(AutomationException):
    """Resource not found error (404)."""

    def __init__(self, resource: str, resource_id: str | None = None) -> None:
        """Initialize not found error.

        Args:
            resource: Name of the resource that was not found.
            resource_id: Optional ID of the resource.
        """
        message = f"{resource} not found"
        if resource_id:
            message = f"{resource} not found: {resource_id}"
        super().__init__(
            message=message,
            code="NOT_FOUND",
            status_code=404,
            details={"resource": resource, "resource_id": resource_id},
        )


class WorkflowNotFoundError(NotFoundError):
    """Workflow not found error (404)."""

    def __init__(self, workflow_id: str) -> None:
        """Initialize workflow not found error.

        Args:
            workflow_id: The ID of the workflow that was not found.
        """
        super().__init__(resource="Workflow", resource_id=workflow_id)


class ExecutionNotFoundError(NotFoundError):
    """Workflow execution not found error (404)."""

    def __init__(self, execution_id: str) -> None:
        super().__init__(resource="Execution", resource_id=execution_id)


class WorkflowDisabledError(AutomationException):
    """Raised when a disabled workflow is asked to run (409)."""

    def __init__(self, workflow_id: str) -> None:
        super().__init__(
            message=f"Workflow is disabled: {workflow_id}",
            code="WORKFLOW_DISABLED",
            status_code=409,
            details={"workflow_id": workflow_id},
        )


# ---------------------------------------------------------------------------
# Configuration errors -- fatal, never retried
# ---------------------------------------------------------------------------


class ConfigurationError(AutomationException):
    """A workflow definition cannot be scheduled or dispatched as written.

    Configuration errors are raised synchronously to the caller and are
    never retried by the engine.
    """

    def __init__(
        self,
        message: str,
        code: str = "CONFIGURATION_ERROR",
        details: dict[str, Any] | None = None,
    ) -> None:
        super().__init__(message=message, code=code, status_code=422, details=details)


class InvalidCronExpressionError(ConfigurationError):
    """Cron expression (or its timezone) could not be parsed."""

    def __init__(self, expression: str, reason: str | None = None) -> None:
        """Initialize invalid cron error.

        Args:
            expression: The offending cron expression.
            reason: Parser message, if any.
        """
        super().__init__(
            message=f"Invalid cron expression: {expression}",
            code="INVALID_CRON_EXPRESSION",
            details={"expression": expression, "reason": reason},
        )


class HandlerNotFoundError(ConfigurationError):
    """No action handler is registered for an action type."""

    def __init__(self, action_type: str) -> None:
        super().__init__(
            message=f"No handler registered for action type: {action_type}",
            code="HANDLER_NOT_FOUND",
            details={"action_type": action_type},
        )


class ActionConfigError(ConfigurationError):
    """An action's ``config`` is missing a required field or names an unknown target."""

    def __init__(self, message: str, field: str | None = None) -> None:
        """Initialize action config error.

        Args:
            message: Error message.
            field: Name of the offending config field.
        """
        details = {"field": field} if field else {}
        super().__init__(message=message, code="ACTION_CONFIG_ERROR", details=details)


class UnknownAnalysisTypeError(ConfigurationError):
    """``ai_analysis`` action names an analysis that is not registered."""

    def __init__(self, analysis_type: str) -> None:
        super().__init__(
            message=f"Unknown analysis type: {analysis_type}",
            code="UNKNOWN_ANALYSIS_TYPE",
            details={"analysis_type": analysis_type},
        )


# ---------------------------------------------------------------------------
# Runtime errors -- recoverable through an action's retry config
# ---------------------------------------------------------------------------


class ActionExecutionError(AutomationException):
    """An action handler failed at runtime (502).

    Network failures, missing recipient data and non-2xx responses from
    downstream services all surface as this error.
    """

    def __init__(
        self,
        message: str,
        action_type: str | None = None,
        details: dict[str, Any] | None = None,
    ) -> None:
        """Initialize action execution error.

        Args:
            message: Error message.
            action_type: The action type whose handler failed.
            details: Additional error details.
        """
        error_details = details or {}
        if action_type:
            error_details["action_type"] = action_type
        super().__init__(
            message=message,
            code="ACTION_EXECUTION_ERROR",
            status_code=502,
            details=error_details,
        )
