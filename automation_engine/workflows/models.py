"""Pydantic models for declarative workflow definitions and their executions.

Definitions describe *what* should happen -- a trigger, an optional condition
set and an ordered list of actions -- and are authored as JSON documents with
camelCase keys (``retryConfig``, ``eventType``, ``subscriptionTier`` ...).
Python code uses the snake_case attribute names; both spellings are accepted
on input.

Execution models (:class:`WorkflowExecution`, :class:`ActionExecution`) are
mutable records the engine fills in while a run progresses.
"""

from __future__ import annotations

import copy
import enum
from datetime import UTC, datetime
from typing import Any, Literal

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator
from pydantic.alias_generators import to_camel


def utcnow() -> datetime:
    """Timezone-aware current UTC time."""
    return datetime.now(UTC)


def ensure_aware(value: datetime) -> datetime:
    """Treat naive datetimes as UTC."""
    if value.tzinfo is None:
        return value.replace(tzinfo=UTC)
    return value


class CamelModel(BaseModel):
    """Base model that reads and writes camelCase JSON keys."""

    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
    )

    def to_json_dict(self) -> dict[str, Any]:
        """Serialise to a JSON-compatible dict using camelCase keys."""
        return self.model_dump(mode="json", by_alias=True, exclude_none=True)


# ---------------------------------------------------------------------------
# Enums
# ---------------------------------------------------------------------------


class TriggerType(str, enum.Enum):
    """How a workflow is bound to the outside world."""

    EVENT = "event"
    SCHEDULE = "schedule"
    WEBHOOK = "webhook"
    MANUAL = "manual"


class ConditionType(str, enum.Enum):
    """Where a condition's field is resolved from."""

    USER_PROPERTY = "user_property"
    DATE_RANGE = "date_range"
    DATA_CONDITION = "data_condition"
    CUSTOM = "custom"


class ConditionOperator(str, enum.Enum):
    """Comparison applied between the resolved field and the condition value."""

    EQUALS = "equals"
    NOT_EQUALS = "not_equals"
    GREATER_THAN = "greater_than"
    LESS_THAN = "less_than"
    CONTAINS = "contains"
    IN = "in"
    NOT_IN = "not_in"


class ActionType(str, enum.Enum):
    """Built-in action types. Additional types may be registered at startup."""

    EMAIL = "email"
    NOTIFICATION = "notification"
    DATABASE = "database"
    AI_ANALYSIS = "ai_analysis"
    WEBHOOK = "webhook"
    CUSTOM = "custom"


class ExecutionStatus(str, enum.Enum):
    """Lifecycle of a workflow run: pending -> running -> terminal."""

    PENDING = "pending"
    RUNNING = "running"
    COMPLETED = "completed"
    FAILED = "failed"
    CANCELLED = "cancelled"

    @property
    def is_terminal(self) -> bool:
        return self in (
            ExecutionStatus.COMPLETED,
            ExecutionStatus.FAILED,
            ExecutionStatus.CANCELLED,
        )


class ActionStatus(str, enum.Enum):
    """Lifecycle of one action within a run."""

    PENDING = "pending"
    RUNNING = "running"
    COMPLETED = "completed"
    FAILED = "failed"
    SKIPPED = "skipped"


# ---------------------------------------------------------------------------
# Definition models
# ---------------------------------------------------------------------------


class WorkflowTrigger(CamelModel):
    """Describes *how* a workflow fires.

    Exactly one binding mechanism is active per workflow:

    * **event** -- ``config.eventType`` names the event to listen for.
    * **schedule** -- ``config.cron`` is a 5-field cron expression;
      ``config.timezone`` is an optional IANA zone (default ``"UTC"``).
    * **webhook** -- ``config.webhookId`` is the opaque inbound webhook id.
    * **manual** -- no configuration; only fired on explicit request.
    """

    type: TriggerType
    config: dict[str, Any] = Field(default_factory=dict)

    @model_validator(mode="after")
    def _check_config(self) -> WorkflowTrigger:
        required = {
            TriggerType.EVENT: "eventType",
            TriggerType.SCHEDULE: "cron",
            TriggerType.WEBHOOK: "webhookId",
        }.get(self.type)
        if required and not self.config.get(required):
            raise ValueError(f"{self.type.value} trigger requires config.{required}")
        return self

    @property
    def event_type(self) -> str | None:
        return self.config.get("eventType") if self.type == TriggerType.EVENT else None

    @property
    def cron(self) -> str | None:
        return self.config.get("cron") if self.type == TriggerType.SCHEDULE else None

    @property
    def timezone(self) -> str | None:
        return self.config.get("timezone") if self.type == TriggerType.SCHEDULE else None

    @property
    def webhook_id(self) -> str | None:
        return self.config.get("webhookId") if self.type == TriggerType.WEBHOOK else None


class WorkflowCondition(CamelModel):
    """One predicate gating a workflow's actions.

    Attributes:
        type: Where ``field`` is resolved from.
        operator: Comparison between the resolved value and ``value``.
        field: Key to resolve; dot paths are allowed for nested lookups.
        value: The comparison operand.
        logic: ``"or"`` conditions form an OR-group, everything else is ANDed.
    """

    type: ConditionType
    operator: ConditionOperator
    field: str
    value: Any = None
    logic: Literal["and", "or"] | None = "and"


class RetryConfig(CamelModel):
    """Retry policy for a single action.

    Delay before retry *n* (1-based) is ``backoff_ms * backoff_multiplier ** (n - 1)``.
    """

    max_attempts: int = Field(default=3, ge=1)
    backoff_ms: float = Field(default=1000, ge=0)
    backoff_multiplier: float = Field(default=2.0, ge=1.0)

    def delay_for_retry(self, retry_number: int) -> float:
        """Backoff in milliseconds before the given retry (1 = first retry)."""
        return self.backoff_ms * self.backoff_multiplier ** (retry_number - 1)


class WorkflowAction(CamelModel):
    """A single side-effecting step.

    ``type`` is usually one of :class:`ActionType`; any string is accepted so
    that handlers registered at startup can introduce their own types.
    """

    id: str
    type: str
    config: dict[str, Any] = Field(default_factory=dict)
    retry_config: RetryConfig | None = None


class WorkflowDefinition(CamelModel):
    """Complete declarative workflow.

    Only ``enabled`` and ``updated_at`` change after creation; a disabled
    workflow never fires.
    """

    id: str
    name: str
    description: str | None = None
    enabled: bool = True
    trigger: WorkflowTrigger
    conditions: list[WorkflowCondition] = Field(default_factory=list)
    actions: list[WorkflowAction] = Field(..., min_length=1)
    metadata: dict[str, Any] = Field(default_factory=dict)
    created_at: datetime = Field(default_factory=utcnow)
    updated_at: datetime = Field(default_factory=utcnow)

    @field_validator("created_at", "updated_at")
    @classmethod
    def normalise_timestamps(cls, v: datetime) -> datetime:
        return ensure_aware(v)


# ---------------------------------------------------------------------------
# Runtime context
# ---------------------------------------------------------------------------


class UserContext(CamelModel):
    """Read-only view of a user, owned by an external user store.

    ``properties`` carries denormalised/computed fields such as
    ``workoutsLastWeek``, ``lastWorkoutDate``, ``currentStreak`` and
    ``totalWorkouts``.
    """

    user_id: str
    email: str = ""
    name: str | None = None
    subscription_tier: Literal["free", "basic", "premium"] = "free"
    joined_at: datetime = Field(default_factory=utcnow)
    last_active_at: datetime = Field(default_factory=utcnow)
    properties: dict[str, Any] = Field(default_factory=dict)

    @field_validator("joined_at", "last_active_at")
    @classmethod
    def normalise_timestamps(cls, v: datetime) -> datetime:
        return ensure_aware(v)

    def lookup_table(self) -> dict[str, Any]:
        """Flat attribute table addressable by snake_case or camelCase name."""
        table = self.model_dump()
        table.update(self.model_dump(by_alias=True))
        return table


class EventContext(CamelModel):
    """Immutable snapshot passed through one firing."""

    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
        frozen=True,
    )

    event_type: str
    event_data: dict[str, Any] = Field(default_factory=dict)
    timestamp: datetime = Field(default_factory=utcnow)
    source: str = "manual"
    user: UserContext | None = None

    @field_validator("timestamp")
    @classmethod
    def normalise_timestamp(cls, v: datetime) -> datetime:
        return ensure_aware(v)


# ---------------------------------------------------------------------------
# Execution records
# ---------------------------------------------------------------------------


class ActionExecution(CamelModel):
    """Outcome of one action within a workflow run.

    ``duration`` is in milliseconds.
    """

    action_id: str
    status: ActionStatus = ActionStatus.PENDING
    result: Any = None
    error: str | None = None
    attempts: int = 0
    executed_at: datetime | None = None
    duration: float | None = None


class WorkflowExecution(CamelModel):
    """One engine run of a workflow against one event/user context.

    Created at the start of a run and mutated in place as actions complete.
    ``duration`` is in milliseconds.
    """

    id: str
    workflow_id: str
    triggered_by: WorkflowTrigger
    status: ExecutionStatus = ExecutionStatus.PENDING
    context: EventContext
    executed_actions: list[ActionExecution] = Field(default_factory=list)
    error: str | None = None
    started_at: datetime = Field(default_factory=utcnow)
    completed_at: datetime | None = None
    duration: float | None = None

    def complete(self) -> None:
        """Stamp ``completed_at`` and ``duration``."""
        self.completed_at = utcnow()
        self.duration = (self.completed_at - self.started_at).total_seconds() * 1000


# ---------------------------------------------------------------------------
# Templates
# ---------------------------------------------------------------------------


class WorkflowTemplate(CamelModel):
    """A pre-built workflow blueprint with a whitelist of customisable paths.

    ``workflow`` is a definition document without ``id`` and timestamps.
    ``configurable`` lists dot paths (``"actions.0.config.template"``) that
    :meth:`instantiate` is allowed to override.
    """

    id: str
    name: str
    description: str
    category: Literal["user_engagement", "retention", "analytics", "moderation", "growth"]
    workflow: dict[str, Any]
    configurable: list[str] = Field(default_factory=list)

    def instantiate(
        self,
        workflow_id: str,
        overrides: dict[str, Any] | None = None,
    ) -> WorkflowDefinition:
        """Build a :class:`WorkflowDefinition` from this template.

        Args:
            workflow_id: Id for the new workflow.
            overrides: Mapping of dot path to replacement value. Every path
                must appear in ``configurable``.

        Returns:
            The validated workflow definition.

        Raises:
            ValueError: If an override targets a path that is not configurable
                or does not exist in the template.
        """
        document = copy.deepcopy(self.workflow)
        for path, value in (overrides or {}).items():
            if path not in self.configurable:
                raise ValueError(f"Path is not configurable on template {self.id}: {path}")
            _set_path(document, path, value)
        document["id"] = workflow_id
        return WorkflowDefinition.model_validate(document)


def _set_path(document: Any, path: str, value: Any) -> None:
    parts = path.split(".")
    target = document
    for part in parts[:-1]:
        target = target[int(part)] if isinstance(target, list) else target[part]
    last = parts[-1]
    if isinstance(target, list):
        target[int(last)] = value
    elif last in target:
        target[last] = value
    else:
        raise ValueError(f"Template has no value at {path}")
