"""Interfaces to the stores that own workflow definitions and users.

Persistence lives outside this package.  The scheduler and the HTTP layer
depend only on the protocols below; the in-memory implementations back the
test-suite and single-process deployments that load definitions from JSON.
"""

from __future__ import annotations

import json
import logging
import threading
from collections.abc import Callable, Iterable
from pathlib import Path
from typing import Protocol

from automation_engine.workflows.models import (
    TriggerType,
    UserContext,
    WorkflowDefinition,
)

logger = logging.getLogger(__name__)


class WorkflowStore(Protocol):
    """Read access to workflow definitions."""

    async def get_workflow(self, workflow_id: str) -> WorkflowDefinition | None: ...

    async def list_workflows(self) -> list[WorkflowDefinition]: ...

    async def find_by_webhook_id(self, webhook_id: str) -> list[WorkflowDefinition]: ...


class UserStore(Protocol):
    """Read access to user profiles."""

    async def get_user(self, user_id: str) -> UserContext | None: ...

    async def list_users(self) -> list[UserContext]: ...


class TargetUserResolver(Protocol):
    """User-selection policy for scheduled workflows."""

    async def resolve(self, workflow: WorkflowDefinition) -> list[UserContext]: ...


class InMemoryWorkflowStore:
    """Dict-backed :class:`WorkflowStore`."""

    def __init__(self, workflows: Iterable[WorkflowDefinition] = ()) -> None:
        self._workflows: dict[str, WorkflowDefinition] = {}
        self._lock = threading.Lock()
        for workflow in workflows:
            self.save(workflow)

    @classmethod
    def from_json_file(cls, path: Path) -> InMemoryWorkflowStore:
        """Load a JSON array of workflow definitions (camelCase authoring format)."""
        raw = json.loads(path.read_text(encoding="utf-8"))
        workflows = [WorkflowDefinition.model_validate(item) for item in raw]
        logger.info("Loaded %d workflow definitions from %s", len(workflows), path)
        return cls(workflows)

    def save(self, workflow: WorkflowDefinition) -> None:
        with self._lock:
            self._workflows[workflow.id] = workflow

    def delete(self, workflow_id: str) -> None:
        with self._lock:
            self._workflows.pop(workflow_id, None)

    async def get_workflow(self, workflow_id: str) -> WorkflowDefinition | None:
        with self._lock:
            return self._workflows.get(workflow_id)

    async def list_workflows(self) -> list[WorkflowDefinition]:
        with self._lock:
            return list(self._workflows.values())

    async def find_by_webhook_id(self, webhook_id: str) -> list[WorkflowDefinition]:
        with self._lock:
            return [
                w
                for w in self._workflows.values()
                if w.trigger.type == TriggerType.WEBHOOK and w.trigger.webhook_id == webhook_id
            ]


class InMemoryUserStore:
    """Dict-backed :class:`UserStore`."""

    def __init__(self, users: Iterable[UserContext] = ()) -> None:
        self._users = {user.user_id: user for user in users}

    def save(self, user: UserContext) -> None:
        self._users[user.user_id] = user

    async def get_user(self, user_id: str) -> UserContext | None:
        return self._users.get(user_id)

    async def list_users(self) -> list[UserContext]:
        return list(self._users.values())


class AllUsersResolver:
    """Targets every user in a :class:`UserStore`, optionally filtered.

    Args:
        users: Source of users.
        predicate: Optional ``(workflow, user) -> bool`` filter.
    """

    def __init__(
        self,
        users: UserStore,
        predicate: Callable[[WorkflowDefinition, UserContext], bool] | None = None,
    ) -> None:
        self._users = users
        self._predicate = predicate

    async def resolve(self, workflow: WorkflowDefinition) -> list[UserContext]:
        users = await self._users.list_users()
        if self._predicate is None:
            return users
        return [user for user in users if self._predicate(workflow, user)]
