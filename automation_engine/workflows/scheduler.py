"""Workflow scheduler: binds workflow triggers to their firing sources.

Cron-triggered workflows become APScheduler jobs; event- and
webhook-triggered workflows are kept in registries that
:meth:`WorkflowScheduler.dispatch` and :meth:`WorkflowScheduler.handle_webhook`
consult.  Each firing fans out to the engine with per-target isolation: a
failing run is logged and never stops the others.
"""

from __future__ import annotations

import asyncio
import logging
import re
from collections.abc import Awaitable, Callable, Mapping
from datetime import UTC, datetime
from typing import Any
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from apscheduler.schedulers.asyncio import AsyncIOScheduler
from apscheduler.schedulers.base import STATE_STOPPED
from apscheduler.triggers.cron import CronTrigger

from automation_engine.core.config import Settings, get_settings
from automation_engine.core.exceptions import (
    InvalidCronExpressionError,
    WorkflowNotFoundError,
)
from automation_engine.workflows.engine import WorkflowEngine
from automation_engine.workflows.models import (
    EventContext,
    TriggerType,
    UserContext,
    WorkflowDefinition,
    WorkflowExecution,
)
from automation_engine.workflows.stores import TargetUserResolver, WorkflowStore
from automation_engine.workflows.triggers import TriggerManager

logger = logging.getLogger(__name__)

SCHEDULED_EVENT_TYPE = "scheduled_workflow"
WEBHOOK_EVENT_TYPE = "webhook_received"

_JOB_PREFIX = "workflow:"

# Crontab numbers days of the week from Sunday (0 or 7); APScheduler 3 from Monday.
_CRONTAB_WEEKDAYS = ("sun", "mon", "tue", "wed", "thu", "fri", "sat", "sun")
_NUMERIC_DOW = re.compile(r"^(\*|\d+)(?:-(\d+))?(?:/(\d+))?$")


def _translate_day_of_week(field: str) -> str:
    """Rewrite a crontab day-of-week field in APScheduler's vocabulary."""
    if field in ("*", "?"):
        return "*"

    names: list[str] = []
    for part in field.split(","):
        match = _NUMERIC_DOW.match(part)
        if match is None:
            # Named days (mon-fri) mean the same thing in both dialects.
            names.append(part.lower())
            continue
        start, end, step = match.groups()
        if start == "*":
            low, high = 0, 6
        else:
            low = int(start)
            high = int(end) if end is not None else (6 if step else low)
        if not 0 <= low <= 7 or not 0 <= high <= 7 or low > high:
            raise ValueError(f"day-of-week value out of range: {part!r}")
        names.extend(_CRONTAB_WEEKDAYS[day] for day in range(low, high + 1, int(step or 1)))

    return ",".join(dict.fromkeys(names))


def _resolve_timezone(name: str | None, default: str) -> ZoneInfo:
    try:
        return ZoneInfo(name or default)
    except (ZoneInfoNotFoundError, ValueError) as exc:
        raise InvalidCronExpressionError(name or default, f"unknown timezone: {exc}") from exc


def build_cron_trigger(
    expression: str,
    timezone: str | None = None,
    default_timezone: str = "UTC",
) -> CronTrigger:
    """Build a :class:`CronTrigger` from a standard 5-field crontab expression.

    Raises:
        InvalidCronExpressionError: On a malformed expression or unknown timezone.
    """
    tz = _resolve_timezone(timezone, default_timezone)
    fields = expression.split()
    if len(fields) != 5:
        raise InvalidCronExpressionError(
            expression, f"expected 5 fields, got {len(fields)}"
        )
    minute, hour, day, month, day_of_week = fields
    try:
        return CronTrigger(
            minute=minute,
            hour=hour,
            day="last" if day.upper() == "L" else day,
            month=month,
            day_of_week=_translate_day_of_week(day_of_week),
            timezone=tz,
        )
    except ValueError as exc:
        raise InvalidCronExpressionError(expression, str(exc)) from exc


class WorkflowScheduler:
    """Owns the firing side of every workflow trigger.

    Args:
        engine: Engine that runs the workflows.
        workflow_store: Source of definitions for manual and webhook firings.
        target_users: Picks the users a scheduled firing runs for. Without
            one, a scheduled workflow runs once with no user.
        settings: Concurrency limit and default timezone.
        scheduler: APScheduler instance; a fresh ``AsyncIOScheduler`` by default.
    """

    def __init__(
        self,
        engine: WorkflowEngine,
        workflow_store: WorkflowStore | None = None,
        target_users: TargetUserResolver | None = None,
        settings: Settings | None = None,
        scheduler: AsyncIOScheduler | None = None,
    ) -> None:
        self.engine = engine
        self._store = workflow_store
        self._target_users = target_users
        self._settings = settings or get_settings()
        self._scheduler = scheduler or AsyncIOScheduler(
            timezone=ZoneInfo(self._settings.SCHEDULER_TIMEZONE)
        )
        self._semaphore = asyncio.Semaphore(self._settings.MAX_CONCURRENT_EXECUTIONS)

        self._cron_workflows: dict[str, WorkflowDefinition] = {}
        self._cron_triggers: dict[str, CronTrigger] = {}
        self._event_listeners: dict[str, list[WorkflowDefinition]] = {}
        self._webhook_workflows: dict[str, list[WorkflowDefinition]] = {}

    # ------------------------------------------------------------------
    # Registration
    # ------------------------------------------------------------------

    def schedule_workflow(self, workflow: WorkflowDefinition) -> None:
        """Register *workflow* with the firing source its trigger names.

        Disabled workflows are ignored.  Re-scheduling a workflow replaces
        its previous registration.

        Raises:
            InvalidCronExpressionError: For an unparseable cron trigger.
        """
        if not workflow.enabled:
            logger.info("Workflow %s is disabled; not scheduling", workflow.id)
            return

        trigger = workflow.trigger
        if trigger.type == TriggerType.SCHEDULE:
            cron_trigger = build_cron_trigger(
                trigger.cron or "", trigger.timezone, self._settings.SCHEDULER_TIMEZONE
            )
            self.unschedule_workflow(workflow.id)
            self._scheduler.add_job(
                self._run_scheduled,
                trigger=cron_trigger,
                args=[workflow.id],
                id=f"{_JOB_PREFIX}{workflow.id}",
                name=workflow.name,
                replace_existing=True,
            )
            self._cron_workflows[workflow.id] = workflow
            self._cron_triggers[workflow.id] = cron_trigger
            logger.info(
                "Scheduled workflow %s",
                workflow.id,
                extra={"cron": trigger.cron, "timezone": str(cron_trigger.timezone)},
            )
        elif trigger.type == TriggerType.EVENT:
            self.unschedule_workflow(workflow.id)
            self._event_listeners.setdefault(trigger.event_type or "", []).append(workflow)
            logger.info("Workflow %s listening for %s", workflow.id, trigger.event_type)
        elif trigger.type == TriggerType.WEBHOOK:
            self.unschedule_workflow(workflow.id)
            self._webhook_workflows.setdefault(trigger.webhook_id or "", []).append(workflow)
            logger.info("Workflow %s bound to webhook %s", workflow.id, trigger.webhook_id)
        else:
            logger.debug("Workflow %s is manual; nothing to schedule", workflow.id)

    def unschedule_workflow(self, workflow_id: str) -> None:
        """Remove every registration of *workflow_id*. Unknown ids are a no-op."""
        if self._cron_workflows.pop(workflow_id, None) is not None:
            self._cron_triggers.pop(workflow_id, None)
            job_id = f"{_JOB_PREFIX}{workflow_id}"
            if self._scheduler.get_job(job_id) is not None:
                self._scheduler.remove_job(job_id)

        for registry in (self._event_listeners, self._webhook_workflows):
            for key in list(registry):
                remaining = [w for w in registry[key] if w.id != workflow_id]
                if remaining:
                    registry[key] = remaining
                else:
                    del registry[key]

    def schedule_job(
        self,
        job_id: str,
        func: Callable[[], Awaitable[Any]],
        cron: str,
        name: str | None = None,
    ) -> None:
        """Add a maintenance job (system events, execution cleanup, ...)."""
        self._scheduler.add_job(
            func,
            trigger=build_cron_trigger(cron, None, self._settings.SCHEDULER_TIMEZONE),
            id=job_id,
            name=name or job_id,
            replace_existing=True,
        )
        logger.info("Scheduled job %s (%s)", job_id, cron)

    # ------------------------------------------------------------------
    # Firing
    # ------------------------------------------------------------------

    async def _run_scheduled(self, workflow_id: str) -> list[WorkflowExecution]:
        workflow = self._cron_workflows.get(workflow_id)
        if workflow is None or not workflow.enabled:
            return []

        context = EventContext(
            event_type=SCHEDULED_EVENT_TYPE,
            event_data={
                "triggeredBy": "schedule",
                "workflowId": workflow.id,
                "cronExpression": workflow.trigger.cron,
            },
            source="scheduler",
        )

        if self._target_users is None:
            targets: list[UserContext | None] = [None]
        else:
            try:
                targets = list(await self._target_users.resolve(workflow))
            except Exception:
                logger.exception("Resolving target users failed for workflow %s", workflow.id)
                return []

        logger.info(
            "Scheduled workflow %s firing for %d targets", workflow.id, len(targets)
        )
        return await self._fan_out([(workflow, user) for user in targets], context)

    async def run_scheduled_workflow(self, workflow_id: str) -> list[WorkflowExecution]:
        """Fire a cron-scheduled workflow now, as its job would."""
        return await self._run_scheduled(workflow_id)

    async def _fan_out(
        self,
        runs: list[tuple[WorkflowDefinition, UserContext | None]],
        context: EventContext,
    ) -> list[WorkflowExecution]:
        async def _one(
            workflow: WorkflowDefinition, user: UserContext | None
        ) -> WorkflowExecution | None:
            async with self._semaphore:
                try:
                    return await self.engine.execute_workflow(workflow, context, user)
                except Exception:
                    logger.exception(
                        "Workflow %s failed for user %s",
                        workflow.id,
                        user.user_id if user else None,
                    )
                    return None

        results = await asyncio.gather(*(_one(w, u) for w, u in runs))
        return [r for r in results if r is not None]

    async def trigger_event(
        self,
        event_type: str,
        event_data: dict[str, Any],
        user: UserContext | None = None,
    ) -> list[WorkflowExecution]:
        """Run every enabled workflow listening for *event_type*."""
        context = EventContext(
            event_type=event_type,
            event_data=event_data,
            source="event_trigger",
            user=user,
        )
        return await self.dispatch(context)

    async def dispatch(self, context: EventContext) -> list[WorkflowExecution]:
        """Run the workflows listening for ``context.event_type`` with an existing context."""
        workflows = [w for w in self._event_listeners.get(context.event_type, []) if w.enabled]
        if not workflows:
            return []
        return await self._fan_out([(w, context.user) for w in workflows], context)

    def connect(self, trigger_manager: TriggerManager, event_type: str) -> None:
        """Forward *event_type* events from *trigger_manager* to :meth:`dispatch`."""
        trigger_manager.register_event_handler(event_type, _DispatchHandler(self))

    async def trigger_workflow_manually(
        self,
        workflow_id: str,
        context: EventContext,
        user: UserContext | None = None,
    ) -> WorkflowExecution:
        """Run one workflow on demand.

        Raises:
            WorkflowNotFoundError: If the store has no such workflow.
            WorkflowDisabledError: If the workflow is disabled.
        """
        workflow = await self._store.get_workflow(workflow_id) if self._store else None
        if workflow is None:
            raise WorkflowNotFoundError(workflow_id)
        return await self.engine.execute_workflow(workflow, context, user)

    async def handle_webhook(
        self,
        webhook_id: str,
        payload: dict[str, Any],
        headers: Mapping[str, str],
    ) -> list[WorkflowExecution]:
        """Run the enabled workflows bound to *webhook_id*."""
        workflows: list[WorkflowDefinition] = list(self._webhook_workflows.get(webhook_id, []))
        if self._store is not None:
            known = {w.id for w in workflows}
            workflows.extend(
                w for w in await self._store.find_by_webhook_id(webhook_id) if w.id not in known
            )
        workflows = [w for w in workflows if w.enabled]
        if not workflows:
            logger.info("No workflows bound to webhook %s", webhook_id)
            return []

        context = EventContext(
            event_type=WEBHOOK_EVENT_TYPE,
            event_data={"webhookId": webhook_id, "payload": payload, "headers": dict(headers)},
            source="webhook",
        )
        return await self._fan_out([(w, None) for w in workflows], context)

    # ------------------------------------------------------------------
    # Introspection
    # ------------------------------------------------------------------

    def _localise(self, workflow_id: str, now: datetime) -> tuple[CronTrigger, datetime] | None:
        trigger = self._cron_triggers.get(workflow_id)
        if trigger is None:
            return None
        if now.tzinfo is None:
            now = now.replace(tzinfo=UTC)
        return trigger, now.astimezone(trigger.timezone)

    def next_fire_time(self, workflow_id: str, now: datetime | None = None) -> datetime | None:
        """Next time at or after *now* the workflow's cron trigger fires."""
        resolved = self._localise(workflow_id, now or datetime.now(UTC))
        if resolved is None:
            return None
        trigger, local_now = resolved
        return trigger.get_next_fire_time(None, local_now)

    def is_due(self, workflow_id: str, now: datetime) -> bool:
        """Whether the workflow's cron trigger matches the minute containing *now*."""
        resolved = self._localise(workflow_id, now)
        if resolved is None:
            return False
        trigger, local_now = resolved
        minute = local_now.replace(second=0, microsecond=0)
        return trigger.get_next_fire_time(None, minute) == minute

    def get_scheduled_workflows(self) -> list[dict[str, Any]]:
        scheduled = []
        for workflow_id, workflow in self._cron_workflows.items():
            job = self._scheduler.get_job(f"{_JOB_PREFIX}{workflow_id}")
            next_run = getattr(job, "next_run_time", None) if job is not None else None
            scheduled.append(
                {
                    "workflowId": workflow_id,
                    "cronExpression": workflow.trigger.cron,
                    "nextExecution": next_run or self.next_fire_time(workflow_id),
                }
            )
        return scheduled

    def get_event_listeners(self) -> list[dict[str, Any]]:
        return [
            {"eventType": event_type, "workflowCount": sum(1 for w in workflows if w.enabled)}
            for event_type, workflows in self._event_listeners.items()
        ]

    def get_webhook_bindings(self) -> dict[str, list[str]]:
        return {
            hook: [w.id for w in workflows] for hook, workflows in self._webhook_workflows.items()
        }

    def validate_all_schedules(self) -> list[dict[str, Any]]:
        """Check that every cron workflow still has a live job."""
        results = []
        for workflow_id in self._cron_workflows:
            job = self._scheduler.get_job(f"{_JOB_PREFIX}{workflow_id}")
            results.append(
                {
                    "workflowId": workflow_id,
                    "valid": job is not None,
                    "error": None if job is not None else "Job missing from scheduler",
                }
            )
        return results

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    @property
    def running(self) -> bool:
        return bool(self._scheduler.running)

    def start(self) -> None:
        if not self._scheduler.running:
            self._scheduler.start()
            logger.info("Workflow scheduler started")

    async def stop(self) -> None:
        """Stop firing, drop every job and clear all registrations.

        Safe to call repeatedly.  APScheduler queues its shutdown on the
        event loop, so one loop iteration is yielded for it to complete.
        """
        self._scheduler.remove_all_jobs()
        if self._scheduler.state != STATE_STOPPED:
            self._scheduler.shutdown(wait=False)
            await asyncio.sleep(0)
            logger.info("Workflow scheduler stopped")
        self._cron_workflows.clear()
        self._cron_triggers.clear()
        self._event_listeners.clear()
        self._webhook_workflows.clear()


class _DispatchHandler:
    """Event handler adapter forwarding events into a scheduler."""

    def __init__(self, scheduler: WorkflowScheduler) -> None:
        self._scheduler = scheduler

    async def handle(self, context: EventContext) -> None:
        await self._scheduler.dispatch(context)


class CronExpressions:
    """Common crontab expressions."""

    EVERY_MINUTE = "* * * * *"
    EVERY_5_MINUTES = "*/5 * * * *"
    EVERY_15_MINUTES = "*/15 * * * *"
    EVERY_30_MINUTES = "*/30 * * * *"
    HOURLY = "0 * * * *"
    EVERY_DAY_AT_9AM = "0 9 * * *"
    EVERY_DAY_AT_6PM = "0 18 * * *"
    EVERY_DAY_AT_MIDNIGHT = "0 0 * * *"
    EVERY_MONDAY_AT_9AM = "0 9 * * 1"
    EVERY_FRIDAY_AT_5PM = "0 17 * * 5"
    EVERY_WEEKEND = "0 10 * * 0,6"

    @staticmethod
    def daily_at(hour: int, minute: int = 0) -> str:
        return f"{minute} {hour} * * *"

    @staticmethod
    def weekly_on(day: int, hour: int = 9, minute: int = 0) -> str:
        return f"{minute} {hour} * * {day}"

    @staticmethod
    def monthly_on_first(hour: int = 9, minute: int = 0) -> str:
        return f"{minute} {hour} 1 * *"

    @staticmethod
    def monthly_on_last(hour: int = 9, minute: int = 0) -> str:
        return f"{minute} {hour} L * *"

    @staticmethod
    def business_days_at(hour: int, minute: int = 0) -> str:
        return f"{minute} {hour} * * 1-5"

    @staticmethod
    def weekends_at(hour: int, minute: int = 0) -> str:
        return f"{minute} {hour} * * 0,6"
