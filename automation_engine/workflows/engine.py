"""Workflow engine: one run of one workflow for one event/user context.

A run evaluates the workflow's conditions, executes its actions strictly in
declared order with per-action retry, and records everything in a
:class:`WorkflowExecution` kept in an in-memory :class:`ExecutionRegistry`.

Failure policy:

* an action that fails and has **no** ``retry_config`` aborts the run:
  later actions are never attempted and the run is ``failed``;
* an action that still fails after exhausting its retries does **not**
  abort the run; the run completes;
* configuration errors (unknown action type, missing required config) are
  never retried and always abort.
"""

from __future__ import annotations

import asyncio
import logging
import threading
import uuid
from collections.abc import Awaitable, Callable
from datetime import timedelta

from automation_engine.core.exceptions import ConfigurationError, WorkflowDisabledError
from automation_engine.workflows.actions import ActionExecutor
from automation_engine.workflows.conditions import ConditionEvaluator
from automation_engine.workflows.models import (
    ActionExecution,
    ActionStatus,
    EventContext,
    ExecutionStatus,
    UserContext,
    WorkflowAction,
    WorkflowDefinition,
    WorkflowExecution,
    utcnow,
)

logger = logging.getLogger(__name__)

Sleep = Callable[[float], Awaitable[None]]


class ExecutionRegistry:
    """Thread-safe ``execution_id -> WorkflowExecution`` map."""

    def __init__(self) -> None:
        self._executions: dict[str, WorkflowExecution] = {}
        self._lock = threading.Lock()

    def add(self, execution: WorkflowExecution) -> None:
        with self._lock:
            self._executions[execution.id] = execution

    def get(self, execution_id: str) -> WorkflowExecution | None:
        with self._lock:
            return self._executions.get(execution_id)

    def for_workflow(self, workflow_id: str) -> list[WorkflowExecution]:
        """Executions of one workflow, newest first."""
        with self._lock:
            matches = [e for e in self._executions.values() if e.workflow_id == workflow_id]
        # Insertion order breaks ties between identical start times.
        ordered = sorted(enumerate(matches), key=lambda p: (p[1].started_at, p[0]), reverse=True)
        return [execution for _, execution in ordered]

    def all(self) -> list[WorkflowExecution]:
        with self._lock:
            return list(self._executions.values())

    def purge_started_before(self, cutoff_hours: float) -> int:
        """Drop executions started at or before ``now - cutoff_hours``.

        Returns:
            Number of executions removed.
        """
        cutoff = utcnow() - timedelta(hours=cutoff_hours)
        with self._lock:
            stale = [eid for eid, e in self._executions.items() if e.started_at <= cutoff]
            for eid in stale:
                del self._executions[eid]
        return len(stale)

    def __len__(self) -> int:
        with self._lock:
            return len(self._executions)


class WorkflowEngine:
    """Executes workflow definitions.

    The engine is an ordinary object owned by its caller; construct one per
    application and share it between the scheduler and the HTTP layer.

    Args:
        action_executor: Dispatcher for actions. Defaults to an executor
            with the built-in handlers.
        condition_evaluator: Condition gate. Defaults to a wall-clock evaluator.
        registry: Execution history store.
        sleep: Awaitable used between retries; replaced in tests.
    """

    def __init__(
        self,
        action_executor: ActionExecutor | None = None,
        condition_evaluator: ConditionEvaluator | None = None,
        registry: ExecutionRegistry | None = None,
        sleep: Sleep | None = None,
    ) -> None:
        self.action_executor = action_executor or ActionExecutor()
        self.condition_evaluator = condition_evaluator or ConditionEvaluator()
        self.registry = registry or ExecutionRegistry()
        self._sleep = sleep
        self._cancel_flags: dict[str, asyncio.Event] = {}

    # ------------------------------------------------------------------
    # Run
    # ------------------------------------------------------------------

    async def execute_workflow(
        self,
        workflow: WorkflowDefinition,
        context: EventContext,
        user: UserContext | None = None,
    ) -> WorkflowExecution:
        """Run *workflow* once for *context* and *user*.

        Args:
            workflow: The definition to run.
            context: Event context of the firing.
            user: User the run is for; falls back to ``context.user``.

        Returns:
            The finished execution record (also kept in :attr:`registry`).

        Raises:
            WorkflowDisabledError: If ``workflow.enabled`` is false.
        """
        if not workflow.enabled:
            raise WorkflowDisabledError(workflow.id)

        user = user or context.user
        execution = WorkflowExecution(
            id=f"exec_{uuid.uuid4().hex}",
            workflow_id=workflow.id,
            triggered_by=workflow.trigger,
            status=ExecutionStatus.RUNNING,
            context=context.model_copy(update={"user": user}),
        )
        self.registry.add(execution)
        cancel_flag = asyncio.Event()
        self._cancel_flags[execution.id] = cancel_flag

        logger.info(
            "Workflow execution started",
            extra={
                "execution_id": execution.id,
                "workflow_id": workflow.id,
                "event_type": context.event_type,
                "user_id": user.user_id if user else None,
            },
        )

        try:
            await self._run(workflow, execution, context, user, cancel_flag)
        except asyncio.CancelledError:
            execution.status = ExecutionStatus.CANCELLED
            raise
        except Exception as exc:
            logger.exception(
                "Workflow %s execution %s crashed", workflow.id, execution.id
            )
            execution.status = ExecutionStatus.FAILED
            execution.error = str(exc) or type(exc).__name__
        finally:
            self._cancel_flags.pop(execution.id, None)
            execution.complete()

        logger.info(
            "Workflow execution finished",
            extra={
                "execution_id": execution.id,
                "workflow_id": workflow.id,
                "status": execution.status.value,
                "duration_ms": execution.duration,
            },
        )
        return execution

    async def _run(
        self,
        workflow: WorkflowDefinition,
        execution: WorkflowExecution,
        context: EventContext,
        user: UserContext | None,
        cancel_flag: asyncio.Event,
    ) -> None:
        if workflow.conditions and not self.condition_evaluator.evaluate(
            workflow.conditions, context, user
        ):
            logger.info("Conditions not met for workflow %s; skipping actions", workflow.id)
            execution.executed_actions = [
                ActionExecution(action_id=action.id, status=ActionStatus.SKIPPED, attempts=0)
                for action in workflow.actions
            ]
            execution.status = ExecutionStatus.COMPLETED
            return

        for action in workflow.actions:
            if cancel_flag.is_set():
                execution.status = ExecutionStatus.CANCELLED
                return

            record, fatal = await self._execute_action(action, context, user, cancel_flag)
            execution.executed_actions.append(record)

            if cancel_flag.is_set():
                execution.status = ExecutionStatus.CANCELLED
                return

            if record.status == ActionStatus.FAILED and (fatal or action.retry_config is None):
                logger.warning(
                    "Workflow %s aborted at action %s: %s",
                    workflow.id,
                    action.id,
                    record.error,
                )
                execution.status = ExecutionStatus.FAILED
                execution.error = record.error
                return

        execution.status = ExecutionStatus.COMPLETED

    async def _execute_action(
        self,
        action: WorkflowAction,
        context: EventContext,
        user: UserContext | None,
        cancel_flag: asyncio.Event,
    ) -> tuple[ActionExecution, bool]:
        """Run one action with its retry policy.

        Returns:
            ``(record, fatal)`` where *fatal* marks a configuration error.
        """
        record = ActionExecution(
            action_id=action.id,
            status=ActionStatus.RUNNING,
            executed_at=utcnow(),
        )
        loop = asyncio.get_running_loop()
        started = loop.time()
        retry_config = action.retry_config
        max_attempts = retry_config.max_attempts if retry_config is not None else 1
        fatal = False

        for attempt in range(1, max_attempts + 1):
            if attempt > 1 and retry_config is not None:
                delay_ms = retry_config.delay_for_retry(attempt - 1)
                logger.info(
                    "Retrying action %s (attempt %d/%d) in %.0fms",
                    action.id,
                    attempt,
                    max_attempts,
                    delay_ms,
                )
                if await self._backoff(delay_ms / 1000, cancel_flag):
                    break

            record.attempts = attempt
            try:
                record.result = await self.action_executor.execute(action, context, user)
            except ConfigurationError as exc:
                record.error = exc.message
                fatal = True
                break
            except Exception as exc:
                record.error = str(exc) or type(exc).__name__
                logger.warning(
                    "Action %s failed on attempt %d/%d: %s",
                    action.id,
                    attempt,
                    max_attempts,
                    record.error,
                )
            else:
                record.status = ActionStatus.COMPLETED
                record.error = None
                break

        if record.status != ActionStatus.COMPLETED:
            record.status = ActionStatus.FAILED
        record.duration = (loop.time() - started) * 1000
        return record, fatal

    async def _backoff(self, seconds: float, cancel_flag: asyncio.Event) -> bool:
        """Sleep before a retry. Returns ``True`` if the run was cancelled meanwhile."""
        if self._sleep is not None:
            await self._sleep(seconds)
            return cancel_flag.is_set()
        try:
            await asyncio.wait_for(cancel_flag.wait(), timeout=seconds)
        except TimeoutError:
            return False
        return True

    # ------------------------------------------------------------------
    # History
    # ------------------------------------------------------------------

    def cancel_execution(self, execution_id: str) -> bool:
        """Request cancellation of a running execution.

        Cancellation is observed between actions and during retry backoff; an
        in-flight handler call always runs to completion.

        Returns:
            ``True`` if the execution was running and has been flagged.
        """
        execution = self.registry.get(execution_id)
        flag = self._cancel_flags.get(execution_id)
        if execution is None or flag is None or execution.status.is_terminal:
            return False
        flag.set()
        return True

    def get_execution(self, execution_id: str) -> WorkflowExecution | None:
        return self.registry.get(execution_id)

    def get_workflow_executions(self, workflow_id: str) -> list[WorkflowExecution]:
        """All recorded executions of a workflow, newest first."""
        return self.registry.for_workflow(workflow_id)

    def cleanup_executions(self, older_than_hours: float = 24) -> int:
        """Purge executions started more than *older_than_hours* ago.

        Returns:
            Number of executions removed.
        """
        removed = self.registry.purge_started_before(older_than_hours)
        if removed:
            logger.info("Purged %d workflow executions", removed)
        return removed
