"""Workflow automation for user-lifecycle events.

Provides the declarative workflow models, the condition evaluator and
action executor, the engine that runs a workflow for one event/user
context, and the trigger manager and scheduler that decide when workflows
fire.
"""

from automation_engine.workflows.actions import ActionExecutor, CustomFunctionRegistry
from automation_engine.workflows.conditions import ConditionEvaluator, ConditionTemplates
from automation_engine.workflows.engine import ExecutionRegistry, WorkflowEngine
from automation_engine.workflows.models import (
    ActionExecution,
    ActionStatus,
    ActionType,
    ConditionOperator,
    ConditionType,
    EventContext,
    ExecutionStatus,
    RetryConfig,
    TriggerType,
    UserContext,
    WorkflowAction,
    WorkflowCondition,
    WorkflowDefinition,
    WorkflowExecution,
    WorkflowTemplate,
    WorkflowTrigger,
)
from automation_engine.workflows.prebuilt import get_prebuilt_templates
from automation_engine.workflows.scheduler import CronExpressions, WorkflowScheduler
from automation_engine.workflows.triggers import (
    AchievementEventHandler,
    TriggerManager,
    WebhookConfig,
    WebhookConfigs,
)

__all__ = [
    "AchievementEventHandler",
    "ActionExecution",
    "ActionExecutor",
    "ActionStatus",
    "ActionType",
    "ConditionEvaluator",
    "ConditionOperator",
    "ConditionTemplates",
    "ConditionType",
    "CronExpressions",
    "CustomFunctionRegistry",
    "EventContext",
    "ExecutionRegistry",
    "ExecutionStatus",
    "RetryConfig",
    "TriggerManager",
    "TriggerType",
    "UserContext",
    "WebhookConfig",
    "WebhookConfigs",
    "WorkflowAction",
    "WorkflowCondition",
    "WorkflowDefinition",
    "WorkflowEngine",
    "WorkflowExecution",
    "WorkflowScheduler",
    "WorkflowTemplate",
    "WorkflowTrigger",
    "get_prebuilt_templates",
]
