"""Tests for condition evaluation.

Covers:
- Empty condition lists and AND/OR grouping
- User property resolution including computed fields
- Date and custom fields against an injected clock
- Operator semantics for missing values, booleans and collections
- Pre-built condition templates
"""

from __future__ import annotations

from datetime import UTC, datetime
from typing import Any

import pytest

from automation_engine.workflows.conditions import (
    NEVER_WORKED_OUT_DAYS,
    ConditionEvaluator,
    ConditionTemplates,
    compare_values,
)
from automation_engine.workflows.models import (
    ConditionOperator,
    ConditionType,
    EventContext,
    UserContext,
    WorkflowCondition,
)
from tests.conftest import FIXED_NOW

# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def _make_condition(
    *,
    field: str,
    operator: str = "equals",
    value: Any = None,
    condition_type: str = "data_condition",
    logic: str = "and",
) -> WorkflowCondition:
    """Build a WorkflowCondition with sensible defaults."""
    return WorkflowCondition(
        type=condition_type,
        operator=operator,
        field=field,
        value=value,
        logic=logic,
    )


def _make_context(**event_data: Any) -> EventContext:
    return EventContext(event_type="test_event", event_data=event_data)


def _evaluator(now: datetime = FIXED_NOW) -> ConditionEvaluator:
    return ConditionEvaluator(clock=lambda: now)


# ---------------------------------------------------------------------------
# Grouping
# ---------------------------------------------------------------------------


class TestGrouping:
    """Tests for ConditionEvaluator.evaluate."""

    def test_empty_conditions_pass(self) -> None:
        assert _evaluator().evaluate([], _make_context()) is True

    def test_and_conditions_all_required(self) -> None:
        conditions = [
            _make_condition(field="plan", value="pro"),
            _make_condition(field="seats", operator="greater_than", value=5),
        ]
        assert _evaluator().evaluate(conditions, _make_context(plan="pro", seats=10)) is True
        assert _evaluator().evaluate(conditions, _make_context(plan="pro", seats=2)) is False

    def test_or_group_needs_one_member(self) -> None:
        """A and (B or C)."""
        conditions = [
            _make_condition(field="a", value=1),
            _make_condition(field="b", value=1, logic="or"),
            _make_condition(field="c", value=1, logic="or"),
        ]
        evaluator = _evaluator()
        assert evaluator.evaluate(conditions, _make_context(a=1, b=0, c=1)) is True
        assert evaluator.evaluate(conditions, _make_context(a=1, b=0, c=0)) is False
        assert evaluator.evaluate(conditions, _make_context(a=0, b=1, c=1)) is False

    def test_null_logic_joins_and_group(self) -> None:
        condition = WorkflowCondition.model_validate(
            {
                "type": "data_condition",
                "operator": "equals",
                "field": "plan",
                "value": "pro",
                "logic": None,
            }
        )
        assert condition.logic is None

        evaluator = _evaluator()
        assert evaluator.evaluate([condition], _make_context(plan="pro")) is True
        assert evaluator.evaluate([condition], _make_context(plan="free")) is False

    def test_resolution_error_fails_condition(self, monkeypatch: pytest.MonkeyPatch) -> None:
        evaluator = _evaluator()

        def _boom(*args: Any, **kwargs: Any) -> Any:
            raise RuntimeError("lookup failed")

        monkeypatch.setattr(evaluator, "resolve_field", _boom)
        condition = _make_condition(field="x", operator="not_equals", value=1)
        assert evaluator.evaluate_condition(condition, _make_context()) is False


# ---------------------------------------------------------------------------
# Field resolution
# ---------------------------------------------------------------------------


class TestUserProperties:
    """Tests for user_property conditions."""

    def test_days_since_last_workout(self, user: UserContext) -> None:
        condition = _make_condition(
            condition_type="user_property",
            field="days_since_last_workout",
            operator="equals",
            value=3,
        )
        assert _evaluator().evaluate_condition(condition, _make_context(), user) is True

    def test_days_since_last_workout_never_worked_out(self) -> None:
        newcomer = UserContext(user_id="user-2", email="new@example.com")
        value = _evaluator().resolve_field(
            ConditionType.USER_PROPERTY, "days_since_last_workout", _make_context(), newcomer
        )
        assert value == NEVER_WORKED_OUT_DAYS

    def test_workouts_last_week_defaults_to_zero(self) -> None:
        newcomer = UserContext(user_id="user-2", email="new@example.com")
        value = _evaluator().resolve_field(
            ConditionType.USER_PROPERTY, "workouts_last_week", _make_context(), newcomer
        )
        assert value == 0

    def test_top_level_attribute_by_either_name(self, user: UserContext) -> None:
        evaluator = _evaluator()
        for field in ("subscription_tier", "subscriptionTier"):
            value = evaluator.resolve_field(
                ConditionType.USER_PROPERTY, field, _make_context(), user
            )
            assert value == "premium"

    def test_properties_fallback_and_dot_path(self, user: UserContext) -> None:
        evaluator = _evaluator()
        assert (
            evaluator.resolve_field(
                ConditionType.USER_PROPERTY, "currentStreak", _make_context(), user
            )
            == 4
        )
        assert (
            evaluator.resolve_field(
                ConditionType.USER_PROPERTY, "properties.totalWorkouts", _make_context(), user
            )
            == 41
        )

    def test_no_user_resolves_none(self) -> None:
        condition = _make_condition(
            condition_type="user_property", field="email", operator="equals", value="x"
        )
        assert _evaluator().evaluate_condition(condition, _make_context(), None) is False


class TestDateAndCustomFields:
    """Tests for date_range and custom conditions."""

    def test_current_day_counts_from_sunday(self) -> None:
        sunday = datetime(2024, 1, 14, 10, 0, tzinfo=UTC)
        monday = datetime(2024, 1, 15, 10, 0, tzinfo=UTC)
        assert (
            _evaluator(sunday).resolve_field(
                ConditionType.DATE_RANGE, "current_day", _make_context(), None
            )
            == 0
        )
        assert (
            _evaluator(monday).resolve_field(
                ConditionType.DATE_RANGE, "current_day", _make_context(), None
            )
            == 1
        )

    def test_current_hour_and_date(self) -> None:
        evaluator = _evaluator()
        assert (
            evaluator.resolve_field(ConditionType.DATE_RANGE, "current_hour", _make_context(), None)
            == 12
        )
        assert (
            evaluator.resolve_field(ConditionType.DATE_RANGE, "current_date", _make_context(), None)
            == "2024-01-15"
        )

    def test_is_weekend(self) -> None:
        saturday = datetime(2024, 1, 13, 10, 0, tzinfo=UTC)
        condition = ConditionTemplates.is_weekend()
        assert _evaluator(saturday).evaluate_condition(condition, _make_context()) is True
        assert _evaluator().evaluate_condition(condition, _make_context()) is False

    def test_subscription_active(self, user: UserContext) -> None:
        free_user = user.model_copy(update={"subscription_tier": "free"})
        evaluator = _evaluator()
        assert (
            evaluator.resolve_field(ConditionType.CUSTOM, "subscription_active", _make_context(), user)
            is True
        )
        assert (
            evaluator.resolve_field(
                ConditionType.CUSTOM, "subscription_active", _make_context(), free_user
            )
            is False
        )

    def test_account_age_days(self, user: UserContext) -> None:
        value = _evaluator().resolve_field(
            ConditionType.CUSTOM, "account_age_days", _make_context(), user
        )
        assert value == 45

    def test_unknown_custom_field(self, user: UserContext) -> None:
        value = _evaluator().resolve_field(ConditionType.CUSTOM, "mystery", _make_context(), user)
        assert value is None


# ---------------------------------------------------------------------------
# Operators
# ---------------------------------------------------------------------------


class TestCompareValues:
    """Tests for compare_values."""

    def test_missing_value_never_matches_comparisons(self) -> None:
        for operator in (
            ConditionOperator.EQUALS,
            ConditionOperator.GREATER_THAN,
            ConditionOperator.LESS_THAN,
            ConditionOperator.CONTAINS,
            ConditionOperator.IN,
        ):
            assert compare_values(None, 5, operator) is False

    def test_missing_value_satisfies_negations(self) -> None:
        assert compare_values(None, 5, ConditionOperator.NOT_EQUALS) is True
        assert compare_values(None, [1, 2], ConditionOperator.NOT_IN) is True

    def test_booleans_are_not_numbers(self) -> None:
        assert compare_values(True, 1, ConditionOperator.EQUALS) is False
        assert compare_values(True, True, ConditionOperator.EQUALS) is True

    def test_numeric_strings_compare_numerically(self) -> None:
        assert compare_values("10", 9, ConditionOperator.GREATER_THAN) is True
        assert compare_values("abc", 9, ConditionOperator.GREATER_THAN) is False

    def test_contains_is_case_insensitive_for_strings(self) -> None:
        assert compare_values("Marathon Training", "marathon", ConditionOperator.CONTAINS) is True

    def test_contains_on_lists(self) -> None:
        assert compare_values(["a", "b"], "b", ConditionOperator.CONTAINS) is True
        assert compare_values(["a", "b"], "c", ConditionOperator.CONTAINS) is False

    def test_in_and_not_in(self) -> None:
        assert compare_values("basic", ["basic", "premium"], ConditionOperator.IN) is True
        assert compare_values("free", ["basic", "premium"], ConditionOperator.IN) is False
        assert compare_values("free", ["basic", "premium"], ConditionOperator.NOT_IN) is True

    def test_in_with_non_list_operand(self) -> None:
        assert compare_values("a", "abc", ConditionOperator.IN) is False
        assert compare_values("a", "abc", ConditionOperator.NOT_IN) is True


# ---------------------------------------------------------------------------
# Templates
# ---------------------------------------------------------------------------


class TestConditionTemplates:
    """Tests for ConditionTemplates."""

    def test_business_hours(self) -> None:
        conditions = ConditionTemplates.is_during_business_hours()
        assert len(conditions) == 2
        at_ten = datetime(2024, 1, 15, 10, 0, tzinfo=UTC)
        at_five = datetime(2024, 1, 15, 17, 0, tzinfo=UTC)
        assert _evaluator(at_ten).evaluate(conditions, _make_context()) is True
        assert _evaluator(at_five).evaluate(conditions, _make_context()) is False

    def test_active_and_inactive_user(self, user: UserContext) -> None:
        evaluator = _evaluator()
        assert evaluator.evaluate([ConditionTemplates.is_active_user(7)], _make_context(), user)
        assert not evaluator.evaluate(
            [ConditionTemplates.is_inactive_user(7)], _make_context(), user
        )

    def test_premium_user(self, user: UserContext) -> None:
        assert _evaluator().evaluate([ConditionTemplates.is_premium_user()], _make_context(), user)
