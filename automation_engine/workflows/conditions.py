"""Condition evaluation for workflow gating.

Conditions are grouped by their ``logic`` flag: every AND condition must
hold, and at least one OR condition must hold when any exist.  Evaluation
never raises; fields that cannot be resolved evaluate to ``None`` and never
equal, exceed or undercut a non-``None`` value.
"""

from __future__ import annotations

import logging
import math
from collections.abc import Callable
from datetime import UTC, date, datetime
from typing import Any

from automation_engine.workflows.models import (
    ConditionOperator,
    ConditionType,
    EventContext,
    UserContext,
    WorkflowCondition,
)

logger = logging.getLogger(__name__)

# Returned for days_since_last_workout when the user has never worked out
NEVER_WORKED_OUT_DAYS = 999

_SECONDS_PER_DAY = 60 * 60 * 24


Clock = Callable[[], datetime]


def _default_clock() -> datetime:
    return datetime.now(UTC)


def _parse_datetime(value: Any) -> datetime | None:
    """Coerce an ISO string, date or datetime into an aware datetime."""
    if isinstance(value, datetime):
        parsed = value
    elif isinstance(value, date):
        parsed = datetime(value.year, value.month, value.day)
    elif isinstance(value, str) and value:
        try:
            parsed = datetime.fromisoformat(value.replace("Z", "+00:00"))
        except ValueError:
            return None
    else:
        return None
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=UTC)
    return parsed


def _whole_days_between(earlier: datetime, later: datetime) -> int:
    return math.floor((later - earlier).total_seconds() / _SECONDS_PER_DAY)


def _to_number(value: Any) -> float | None:
    """Numeric coercion; ``None`` when the value has no numeric reading."""
    if value is None:
        return None
    if isinstance(value, bool):
        return float(value)
    if isinstance(value, int | float):
        return None if isinstance(value, float) and math.isnan(value) else float(value)
    if isinstance(value, str):
        try:
            return float(value.strip())
        except ValueError:
            return None
    return None


def _strict_equals(actual: Any, expected: Any) -> bool:
    """Equality that does not conflate booleans with numbers."""
    if isinstance(actual, bool) != isinstance(expected, bool):
        return False
    return actual == expected


def _walk_path(root: Any, path: str) -> Any:
    current = root
    for part in path.split("."):
        if isinstance(current, UserContext):
            current = current.lookup_table().get(part)
        elif isinstance(current, dict):
            current = current.get(part)
        else:
            return None
        if current is None:
            return None
    return current


class ConditionEvaluator:
    """Evaluates workflow conditions against an event and optional user.

    Args:
        clock: Returns "now"; injected so date-based fields are testable.
    """

    def __init__(self, clock: Clock | None = None) -> None:
        self._clock = clock or _default_clock

    def evaluate(
        self,
        conditions: list[WorkflowCondition],
        context: EventContext,
        user: UserContext | None = None,
    ) -> bool:
        """Decide whether the combined condition set holds.

        Args:
            conditions: Ordered conditions (may be empty).
            context: Event context of the firing.
            user: User the workflow runs for, if any.

        Returns:
            ``True`` when the AND-group and the OR-group are both satisfied.
        """
        if not conditions:
            return True

        and_conditions = [c for c in conditions if c.logic != "or"]
        or_conditions = [c for c in conditions if c.logic == "or"]

        and_result = all(self.evaluate_condition(c, context, user) for c in and_conditions)
        or_result = not or_conditions or any(
            self.evaluate_condition(c, context, user) for c in or_conditions
        )
        return and_result and or_result

    def evaluate_condition(
        self,
        condition: WorkflowCondition,
        context: EventContext,
        user: UserContext | None = None,
    ) -> bool:
        """Evaluate a single condition; unexpected errors fail the condition."""
        try:
            actual = self.resolve_field(condition.type, condition.field, context, user)
            return compare_values(actual, condition.value, condition.operator)
        except Exception:
            logger.warning(
                "Condition evaluation failed; treating as not met",
                extra={"condition_type": condition.type.value, "field": condition.field},
                exc_info=True,
            )
            return False

    # ------------------------------------------------------------------
    # Field resolution
    # ------------------------------------------------------------------

    def resolve_field(
        self,
        condition_type: ConditionType,
        field: str,
        context: EventContext,
        user: UserContext | None,
    ) -> Any:
        """Resolve *field* to its current value for the given condition type."""
        if condition_type == ConditionType.USER_PROPERTY:
            return self._user_property(field, user)
        if condition_type == ConditionType.DATE_RANGE:
            return self._date_field(field)
        if condition_type == ConditionType.DATA_CONDITION:
            return context.event_data.get(field)
        if condition_type == ConditionType.CUSTOM:
            return self._custom_field(field, user)
        return None

    def _user_property(self, field: str, user: UserContext | None) -> Any:
        if user is None:
            return None

        if "." in field:
            return _walk_path(user, field)

        if field == "days_since_last_workout":
            last_workout = _parse_datetime(user.properties.get("lastWorkoutDate"))
            if last_workout is None:
                return NEVER_WORKED_OUT_DAYS
            return _whole_days_between(last_workout, self._clock())

        if field == "workouts_last_week":
            return user.properties.get("workoutsLastWeek") or 0

        value = user.lookup_table().get(field)
        if value is None:
            value = user.properties.get(field)
        return value

    def _date_field(self, field: str) -> Any:
        now = self._clock()
        if field == "current_hour":
            return now.hour
        if field == "current_day":
            return now.isoweekday() % 7  # 0=Sun .. 6=Sat
        if field == "current_date":
            return now.date().isoformat()
        return None

    def _custom_field(self, field: str, user: UserContext | None) -> Any:
        if field == "is_weekend":
            return self._clock().isoweekday() in (6, 7)
        if field == "subscription_active":
            return user is not None and user.subscription_tier != "free"
        if field == "account_age_days":
            if user is None:
                return 0
            return _whole_days_between(user.joined_at, self._clock())
        if field == "streak_length":
            return (user.properties.get("currentStreak") if user else None) or 0
        if field == "total_workouts":
            return (user.properties.get("totalWorkouts") if user else None) or 0
        return None


def compare_values(actual: Any, expected: Any, operator: ConditionOperator) -> bool:
    """Apply *operator* between a resolved value and the condition operand.

    ``None`` is neither equal to, greater than nor less than any non-``None``
    operand.
    """
    if operator == ConditionOperator.EQUALS:
        return _strict_equals(actual, expected)

    if operator == ConditionOperator.NOT_EQUALS:
        return not _strict_equals(actual, expected)

    if operator in (ConditionOperator.GREATER_THAN, ConditionOperator.LESS_THAN):
        left, right = _to_number(actual), _to_number(expected)
        if left is None or right is None:
            return False
        return left > right if operator == ConditionOperator.GREATER_THAN else left < right

    if operator == ConditionOperator.CONTAINS:
        if isinstance(actual, str) and isinstance(expected, str):
            return expected.lower() in actual.lower()
        if isinstance(actual, list | tuple | set):
            return any(_strict_equals(item, expected) for item in actual)
        return False

    if operator == ConditionOperator.IN:
        if not isinstance(expected, list | tuple | set):
            return False
        return any(_strict_equals(actual, item) for item in expected)

    if operator == ConditionOperator.NOT_IN:
        if not isinstance(expected, list | tuple | set):
            return True
        return not any(_strict_equals(actual, item) for item in expected)

    logger.warning("Unknown condition operator: %s", operator)
    return False


# ---------------------------------------------------------------------------
# Pre-built conditions for common use cases
# ---------------------------------------------------------------------------


class ConditionTemplates:
    """Factories for frequently used conditions."""

    # -- engagement -------------------------------------------------------

    @staticmethod
    def is_active_user(days: int = 7) -> WorkflowCondition:
        return WorkflowCondition(
            type=ConditionType.USER_PROPERTY,
            operator=ConditionOperator.LESS_THAN,
            field="days_since_last_workout",
            value=days,
        )

    @staticmethod
    def is_inactive_user(days: int = 7) -> WorkflowCondition:
        return WorkflowCondition(
            type=ConditionType.USER_PROPERTY,
            operator=ConditionOperator.GREATER_THAN,
            field="days_since_last_workout",
            value=days,
        )

    @staticmethod
    def has_minimum_workouts(count: int = 1) -> WorkflowCondition:
        return WorkflowCondition(
            type=ConditionType.USER_PROPERTY,
            operator=ConditionOperator.GREATER_THAN,
            field="workouts_last_week",
            value=count - 1,
        )

    @staticmethod
    def is_premium_user() -> WorkflowCondition:
        return WorkflowCondition(
            type=ConditionType.USER_PROPERTY,
            operator=ConditionOperator.IN,
            field="subscriptionTier",
            value=["basic", "premium"],
        )

    # -- time -------------------------------------------------------------

    @staticmethod
    def is_weekend() -> WorkflowCondition:
        return WorkflowCondition(
            type=ConditionType.CUSTOM,
            operator=ConditionOperator.EQUALS,
            field="is_weekend",
            value=True,
        )

    @staticmethod
    def is_during_business_hours(
        start_hour: int = 9, end_hour: int = 17
    ) -> list[WorkflowCondition]:
        """Hours in ``[start_hour, end_hour)``."""
        return [
            WorkflowCondition(
                type=ConditionType.DATE_RANGE,
                operator=ConditionOperator.GREATER_THAN,
                field="current_hour",
                value=start_hour - 1,
            ),
            WorkflowCondition(
                type=ConditionType.DATE_RANGE,
                operator=ConditionOperator.LESS_THAN,
                field="current_hour",
                value=end_hour,
            ),
        ]

    @staticmethod
    def is_new_user(days: int = 7) -> WorkflowCondition:
        return WorkflowCondition(
            type=ConditionType.CUSTOM,
            operator=ConditionOperator.LESS_THAN,
            field="account_age_days",
            value=days,
        )

    # -- achievements -----------------------------------------------------

    @staticmethod
    def has_active_streak(min_days: int = 3) -> WorkflowCondition:
        return WorkflowCondition(
            type=ConditionType.CUSTOM,
            operator=ConditionOperator.GREATER_THAN,
            field="streak_length",
            value=min_days - 1,
        )

    @staticmethod
    def is_experienced_user(min_workouts: int = 50) -> WorkflowCondition:
        return WorkflowCondition(
            type=ConditionType.CUSTOM,
            operator=ConditionOperator.GREATER_THAN,
            field="total_workouts",
            value=min_workouts - 1,
        )

    # -- event data -------------------------------------------------------

    @staticmethod
    def is_specific_goal_type(goal_type: str) -> WorkflowCondition:
        return WorkflowCondition(
            type=ConditionType.DATA_CONDITION,
            operator=ConditionOperator.EQUALS,
            field="goalType",
            value=goal_type,
        )

    @staticmethod
    def is_high_value_action(threshold: float = 100) -> WorkflowCondition:
        return WorkflowCondition(
            type=ConditionType.DATA_CONDITION,
            operator=ConditionOperator.GREATER_THAN,
            field="actionValue",
            value=threshold,
        )

    # -- compound ---------------------------------------------------------

    @classmethod
    def build_engagement_condition(
        cls, workout_days: int = 7, min_workouts: int = 1
    ) -> list[WorkflowCondition]:
        return [cls.is_active_user(workout_days), cls.has_minimum_workouts(min_workouts)]

    @classmethod
    def build_retention_condition(
        cls, inactive_days: int = 7, max_inactive_days: int = 30
    ) -> list[WorkflowCondition]:
        return [cls.is_inactive_user(inactive_days), cls.is_active_user(max_inactive_days)]

    @classmethod
    def build_premium_upsell_condition(
        cls, min_workouts: int = 10, min_days: int = 14
    ) -> list[WorkflowCondition]:
        return [
            WorkflowCondition(
                type=ConditionType.USER_PROPERTY,
                operator=ConditionOperator.EQUALS,
                field="subscriptionTier",
                value="free",
            ),
            cls.is_experienced_user(min_workouts),
            WorkflowCondition(
                type=ConditionType.CUSTOM,
                operator=ConditionOperator.GREATER_THAN,
                field="account_age_days",
                value=min_days,
            ),
        ]
