"""Tests for placeholder interpolation in action configs."""

from datetime import UTC, datetime

from automation_engine.workflows.models import EventContext, UserContext
from automation_engine.workflows.templating import (
    build_variables,
    interpolate,
    interpolate_values,
)


def _make_context(**event_data: object) -> EventContext:
    return EventContext(
        event_type="goal_achieved",
        event_data=event_data,
        timestamp=datetime(2024, 1, 15, 12, 0, tzinfo=UTC),
    )


class TestBuildVariables:
    """Tests for build_variables."""

    def test_user_attributes_in_both_cases(self, user: UserContext) -> None:
        variables = build_variables(_make_context(), user)
        assert variables["user.userId"] == "user-1"
        assert variables["user.user_id"] == "user-1"
        assert variables["user.email"] == "alex@example.com"

    def test_event_data_keys(self) -> None:
        variables = build_variables(_make_context(goalType="strength"), None)
        assert variables == {"event.goalType": "strength"}

    def test_timestamp_only_when_requested(self) -> None:
        context = _make_context()
        assert "event.timestamp" not in build_variables(context, None)
        variables = build_variables(context, None, include_timestamp=True)
        assert variables["event.timestamp"] == "2024-01-15T12:00:00+00:00"

    def test_event_data_timestamp_wins(self) -> None:
        variables = build_variables(_make_context(timestamp="custom"), None, include_timestamp=True)
        assert variables["event.timestamp"] == "custom"


class TestInterpolate:
    """Tests for interpolate and interpolate_values."""

    def test_replaces_known_placeholders(self, user: UserContext) -> None:
        variables = build_variables(_make_context(goalType="strength"), user)
        result = interpolate("{{user.name}} hit a {{event.goalType}} goal", variables)
        assert result == "Alex hit a strength goal"

    def test_unknown_placeholder_left_verbatim(self) -> None:
        assert interpolate("Hi {{user.name}}", {}) == "Hi {{user.name}}"

    def test_empty_and_none_values_left_verbatim(self) -> None:
        variables = {"event.a": "", "event.b": None}
        assert interpolate("{{event.a}}/{{event.b}}", variables) == "{{event.a}}/{{event.b}}"

    def test_zero_is_rendered(self) -> None:
        assert interpolate("{{event.count}} left", {"event.count": 0}) == "0 left"

    def test_only_user_and_event_namespaces(self) -> None:
        variables = {"config.secret": "x"}
        assert interpolate("{{config.secret}}", variables) == "{{config.secret}}"

    def test_no_expression_evaluation(self) -> None:
        template = "{{user.name.upper()}} {{ user.name }}"
        assert interpolate(template, {"user.name": "Alex"}) == template

    def test_empty_template(self) -> None:
        assert interpolate("", {"user.name": "Alex"}) == ""

    def test_values_one_level_deep(self, user: UserContext) -> None:
        variables = build_variables(_make_context(), user)
        data = {
            "user_id": "{{user.userId}}",
            "attempts": 2,
            "metadata": {"owner": "{{user.userId}}"},
        }
        result = interpolate_values(data, variables)
        assert result["user_id"] == "user-1"
        assert result["attempts"] == 2
        assert result["metadata"] == {"owner": "{{user.userId}}"}

    def test_values_none(self) -> None:
        assert interpolate_values(None, {}) == {}
