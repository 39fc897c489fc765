"""FastAPI application entry point for the automation engine."""

import logging
import uuid
from contextlib import asynccontextmanager
from pathlib import Path
from typing import Any

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse

from automation_engine import __version__
from automation_engine.api.routes import health, webhooks, workflows
from automation_engine.core.config import Settings, get_settings
from automation_engine.core.exceptions import (
    AutomationException,
    ConfigurationError,
    sanitize_error,
)
from automation_engine.core.logging import configure_logging
from automation_engine.workflows.engine import WorkflowEngine
from automation_engine.workflows.scheduler import WorkflowScheduler
from automation_engine.workflows.stores import (
    AllUsersResolver,
    InMemoryUserStore,
    InMemoryWorkflowStore,
    UserStore,
    WorkflowStore,
)
from automation_engine.workflows.triggers import (
    AchievementEventHandler,
    TriggerManager,
    WebhookConfigs,
)

logger = logging.getLogger(__name__)


async def bootstrap(
    workflow_store: WorkflowStore,
    scheduler: WorkflowScheduler,
    trigger_manager: TriggerManager,
) -> int:
    """Register every stored workflow and bridge event triggers.

    Workflows with an invalid schedule are logged and skipped.

    Returns:
        Number of workflows registered.
    """
    registered = 0
    for workflow in await workflow_store.list_workflows():
        try:
            scheduler.schedule_workflow(workflow)
        except ConfigurationError as e:
            logger.error("Skipping workflow %s: %s", workflow.id, e.message)
            continue
        registered += 1

    for listener in scheduler.get_event_listeners():
        scheduler.connect(trigger_manager, listener["eventType"])

    trigger_manager.register_event_handler(
        "workout_completed", AchievementEventHandler(trigger_manager)
    )
    return registered


def create_app(
    settings: Settings | None = None,
    *,
    engine: WorkflowEngine | None = None,
    workflow_store: WorkflowStore | None = None,
    user_store: UserStore | None = None,
    trigger_manager: TriggerManager | None = None,
    scheduler: WorkflowScheduler | None = None,
) -> FastAPI:
    """Build the application and its services.

    Every service can be injected; the defaults are in-memory stores and a
    scheduler targeting every user in the user store.
    """
    settings = settings or get_settings()
    engine = engine or WorkflowEngine()
    workflow_store = workflow_store or InMemoryWorkflowStore()
    user_store = user_store or InMemoryUserStore()
    trigger_manager = trigger_manager or TriggerManager(settings)
    scheduler = scheduler or WorkflowScheduler(
        engine,
        workflow_store=workflow_store,
        target_users=AllUsersResolver(user_store),
        settings=settings,
    )

    if settings.stripe_webhook_secret:
        trigger_manager.register_webhook(
            "stripe", WebhookConfigs.stripe("stripe_event", settings.stripe_webhook_secret)
        )
    if settings.github_webhook_secret:
        trigger_manager.register_webhook(
            "github", WebhookConfigs.github("github_event", settings.github_webhook_secret)
        )

    @asynccontextmanager
    async def lifespan(_app: FastAPI) -> Any:
        """Application lifespan handler for startup and shutdown events."""
        configure_logging(settings)
        logger.info("Starting automation engine (env=%s)", settings.APP_ENV)

        count = await bootstrap(workflow_store, scheduler, trigger_manager)
        logger.info("Registered %d workflows", count)

        if settings.ENABLE_SCHEDULER:
            if settings.SYSTEM_EVENTS_ENABLED:
                scheduler.schedule_job(
                    "system_events",
                    trigger_manager.generate_system_events,
                    "* * * * *",
                    name="System calendar events",
                )

            async def _cleanup() -> None:
                engine.cleanup_executions(settings.EXECUTION_RETENTION_HOURS)

            scheduler.schedule_job(
                "execution_cleanup",
                _cleanup,
                settings.EXECUTION_CLEANUP_CRON,
                name="Execution history cleanup",
            )
            scheduler.start()
        else:
            logger.info("Background scheduler disabled (ENABLE_SCHEDULER != true)")

        yield

        logger.info("Shutting down automation engine...")
        await scheduler.stop()

    app = FastAPI(
        title="Automation Engine",
        description="Event, schedule and webhook driven workflow automation",
        version=__version__,
        lifespan=lifespan,
    )

    app.state.settings = settings
    app.state.engine = engine
    app.state.workflow_store = workflow_store
    app.state.user_store = user_store
    app.state.trigger_manager = trigger_manager
    app.state.scheduler = scheduler

    app.include_router(health.router)
    app.include_router(webhooks.router)
    app.include_router(workflows.router)

    @app.exception_handler(AutomationException)
    async def automation_exception_handler(
        request: Request, exc: AutomationException
    ) -> JSONResponse:
        """Render automation exceptions with a consistent error body."""
        request_id = str(uuid.uuid4())
        logger.warning(
            "Automation exception occurred",
            extra={
                "code": exc.code,
                "status_code": exc.status_code,
                "request_id": request_id,
                "path": request.url.path,
            },
        )
        return JSONResponse(
            status_code=exc.status_code,
            content={"detail": exc.message, "code": exc.code, "request_id": request_id},
        )

    @app.exception_handler(Exception)
    async def unhandled_exception_handler(request: Request, exc: Exception) -> JSONResponse:
        """Catch-all so internal details never reach the client."""
        request_id = str(uuid.uuid4())
        logger.exception(
            "Unhandled exception",
            extra={"request_id": request_id, "path": request.url.path},
        )
        return JSONResponse(
            status_code=500,
            content={
                "detail": sanitize_error(exc),
                "code": "INTERNAL_ERROR",
                "request_id": request_id,
            },
        )

    return app


def create_app_from_files(workflows_path: Path, settings: Settings | None = None) -> FastAPI:
    """Build an app whose workflows are loaded from a JSON file."""
    return create_app(settings, workflow_store=InMemoryWorkflowStore.from_json_file(workflows_path))


app = create_app()
