"""FastAPI dependencies resolving the application's shared services.

Services are created once in :func:`automation_engine.main.create_app` and
kept on ``app.state``; tests replace them through ``dependency_overrides``.
"""

from typing import Annotated

from fastapi import Depends, Request

from automation_engine.workflows.engine import WorkflowEngine
from automation_engine.workflows.scheduler import WorkflowScheduler
from automation_engine.workflows.stores import UserStore
from automation_engine.workflows.triggers import TriggerManager


def get_engine(request: Request) -> WorkflowEngine:
    return request.app.state.engine


def get_scheduler(request: Request) -> WorkflowScheduler:
    return request.app.state.scheduler


def get_trigger_manager(request: Request) -> TriggerManager:
    return request.app.state.trigger_manager


def get_user_store(request: Request) -> UserStore:
    return request.app.state.user_store


Engine = Annotated[WorkflowEngine, Depends(get_engine)]
Scheduler = Annotated[WorkflowScheduler, Depends(get_scheduler)]
Triggers = Annotated[TriggerManager, Depends(get_trigger_manager)]
Users = Annotated[UserStore, Depends(get_user_store)]
