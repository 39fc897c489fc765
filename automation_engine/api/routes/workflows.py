"""API routes for manual workflow runs and execution history."""

import logging
from typing import Any

from fastapi import APIRouter
from pydantic import BaseModel, Field

from automation_engine.api.deps import Engine, Scheduler, Users
from automation_engine.core.exceptions import ExecutionNotFoundError, NotFoundError
from automation_engine.workflows.models import EventContext, UserContext

logger = logging.getLogger(__name__)

router = APIRouter(tags=["workflows"])


# ---------------------------------------------------------------------------
# Request Models
# ---------------------------------------------------------------------------


class TriggerWorkflowRequest(BaseModel):
    """Request body for manually running a workflow."""

    event_type: str = Field(
        default="manual_trigger", alias="eventType", description="Event type of the run."
    )
    event_data: dict[str, Any] = Field(
        default_factory=dict, alias="eventData", description="Event payload."
    )
    user_id: str | None = Field(
        default=None, alias="userId", description="User to run the workflow for."
    )

    model_config = {"populate_by_name": True}


# ---------------------------------------------------------------------------
# Routes
# ---------------------------------------------------------------------------


@router.post("/workflows/{workflow_id}/trigger")
async def trigger_workflow(
    workflow_id: str,
    scheduler: Scheduler,
    users: Users,
    body: TriggerWorkflowRequest | None = None,
) -> dict[str, Any]:
    """Run a workflow immediately.

    Returns:
        The finished execution record.

    Raises:
        NotFoundError: If the workflow or the requested user does not exist.
    """
    body = body or TriggerWorkflowRequest()

    user: UserContext | None = None
    if body.user_id:
        user = await users.get_user(body.user_id)
        if user is None:
            raise NotFoundError("User", body.user_id)

    context = EventContext(
        event_type=body.event_type,
        event_data=body.event_data,
        source="manual",
        user=user,
    )
    execution = await scheduler.trigger_workflow_manually(workflow_id, context, user)
    logger.info(
        "Manual workflow run finished",
        extra={
            "workflow_id": workflow_id,
            "execution_id": execution.id,
            "status": execution.status.value,
        },
    )
    return execution.to_json_dict()


@router.get("/workflows/{workflow_id}/executions")
async def list_workflow_executions(workflow_id: str, engine: Engine) -> dict[str, Any]:
    """List recorded executions of a workflow, newest first."""
    executions = engine.get_workflow_executions(workflow_id)
    return {
        "workflowId": workflow_id,
        "executions": [e.to_json_dict() for e in executions],
        "count": len(executions),
    }


@router.get("/executions/{execution_id}")
async def get_execution(execution_id: str, engine: Engine) -> dict[str, Any]:
    """Fetch one execution record.

    Raises:
        ExecutionNotFoundError: If the id is unknown or already purged.
    """
    execution = engine.get_execution(execution_id)
    if execution is None:
        raise ExecutionNotFoundError(execution_id)
    return execution.to_json_dict()
