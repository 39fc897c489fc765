"""Tests for the exception hierarchy and error sanitisation."""

from automation_engine.core.exceptions import (
    ActionConfigError,
    ActionExecutionError,
    AutomationException,
    ConfigurationError,
    ExecutionNotFoundError,
    HandlerNotFoundError,
    InvalidCronExpressionError,
    NotFoundError,
    UnknownAnalysisTypeError,
    WorkflowDisabledError,
    WorkflowNotFoundError,
    sanitize_error,
)


class TestHierarchy:
    """Codes, status codes and messages."""

    def test_not_found_errors(self) -> None:
        error = WorkflowNotFoundError("wf-1")
        assert isinstance(error, NotFoundError)
        assert error.status_code == 404
        assert error.code == "NOT_FOUND"
        assert error.message == "Workflow not found: wf-1"
        assert ExecutionNotFoundError("exec_1").message == "Execution not found: exec_1"

    def test_configuration_errors(self) -> None:
        for error in (
            InvalidCronExpressionError("* *", "expected 5 fields"),
            HandlerNotFoundError("sms"),
            ActionConfigError("missing table", field="table"),
            UnknownAnalysisTypeError("horoscope"),
        ):
            assert isinstance(error, ConfigurationError)
            assert error.status_code == 422
        assert HandlerNotFoundError("sms").message == "No handler registered for action type: sms"
        assert UnknownAnalysisTypeError("horoscope").message == "Unknown analysis type: horoscope"

    def test_action_execution_error_details(self) -> None:
        error = ActionExecutionError("boom", action_type="webhook", details={"status": 503})
        assert not isinstance(error, ConfigurationError)
        assert error.status_code == 502
        assert error.details == {"status": 503, "action_type": "webhook"}

    def test_disabled_error(self) -> None:
        error = WorkflowDisabledError("wf-1")
        assert isinstance(error, AutomationException)
        assert error.status_code == 409
        assert error.code == "WORKFLOW_DISABLED"


class TestSanitizeError:
    """Tests for sanitize_error."""

    def test_maps_through_mro(self) -> None:
        assert sanitize_error(WorkflowNotFoundError("wf")) == "The requested resource was not found."
        assert sanitize_error(HandlerNotFoundError("x")) == "The workflow configuration is invalid."
        assert sanitize_error(InvalidCronExpressionError("x")) == "The workflow schedule is invalid."

    def test_unknown_exception_gets_default(self) -> None:
        assert sanitize_error(RuntimeError("db password=hunter2")) == (
            "An error occurred. Please try again."
        )
