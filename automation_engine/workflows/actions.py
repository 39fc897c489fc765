"""Action dispatch for workflow steps.

:class:`ActionExecutor` maps an action ``type`` to an :class:`ActionHandler`
and runs it.  The built-in handlers own validation, templating and receipt
building; the actual side effect (sending an email, writing a row, calling
a model) goes through a small port that the deployment injects.  The
default ports only log, so an engine constructed without integrations can
still be exercised end to end.
"""

from __future__ import annotations

import asyncio
import logging
import uuid
from collections.abc import Awaitable, Callable
from dataclasses import dataclass, field
from typing import Any, Protocol

import httpx

from automation_engine.core.config import Settings, get_settings
from automation_engine.core.exceptions import (
    ActionConfigError,
    ActionExecutionError,
    HandlerNotFoundError,
)
from automation_engine.workflows.analysis import AnalysisOptions, AnalysisRegistry
from automation_engine.workflows.models import (
    ActionType,
    EventContext,
    UserContext,
    WorkflowAction,
    utcnow,
)
from automation_engine.workflows.templating import (
    build_variables,
    interpolate,
    interpolate_values,
)

logger = logging.getLogger(__name__)


def _receipt_id(prefix: str) -> str:
    return f"{prefix}_{uuid.uuid4().hex[:12]}"


class ActionHandler(Protocol):
    """Contract every action type implements."""

    async def execute(
        self,
        config: dict[str, Any],
        context: EventContext,
        user: UserContext | None,
    ) -> Any: ...


# ---------------------------------------------------------------------------
# Side-effect ports
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class EmailMessage:
    """A templated email ready for delivery."""

    to: str
    template: str | None
    variables: dict[str, Any] = field(default_factory=dict)


class EmailSender(Protocol):
    async def send(self, message: EmailMessage) -> None: ...


class NotificationSender(Protocol):
    async def send(self, notification: dict[str, Any]) -> None: ...


class DatabaseWriter(Protocol):
    async def write(
        self,
        table: str,
        action: str,
        data: dict[str, Any],
        conditions: dict[str, Any] | None,
    ) -> Any: ...


class LoggingEmailSender:
    """Email port that records the message in the log only."""

    async def send(self, message: EmailMessage) -> None:
        logger.info(
            "Email queued",
            extra={"recipient": message.to, "template": message.template},
        )


class LoggingNotificationSender:
    """Notification port that records the notification in the log only."""

    async def send(self, notification: dict[str, Any]) -> None:
        logger.info(
            "Notification queued",
            extra={"user_id": notification.get("userId"), "title": notification.get("title")},
        )


class LoggingDatabaseWriter:
    """Database port that echoes the requested write."""

    async def write(
        self,
        table: str,
        action: str,
        data: dict[str, Any],
        conditions: dict[str, Any] | None,
    ) -> Any:
        logger.info("Database operation %s on %s", action, table)
        return None


# ---------------------------------------------------------------------------
# Built-in handlers
# ---------------------------------------------------------------------------


class EmailActionHandler:
    """Send a templated email to the run's user."""

    def __init__(self, sender: EmailSender | None = None) -> None:
        self._sender = sender or LoggingEmailSender()

    async def execute(
        self,
        config: dict[str, Any],
        context: EventContext,
        user: UserContext | None,
    ) -> dict[str, Any]:
        if user is None or not user.email:
            raise ActionExecutionError(
                "User email is required for email actions",
                action_type=ActionType.EMAIL.value,
            )

        template = config.get("template")
        message = EmailMessage(
            to=user.email,
            template=template,
            variables={
                "userName": user.name or "there",
                "userId": user.user_id,
                "eventType": context.event_type,
                "eventData": context.event_data,
                "personalizedSubject": config.get("personalizedSubject"),
                "personalizeContent": config.get("personalizeContent"),
                "includeCharts": config.get("includeCharts"),
                "includeAchievementBadge": config.get("includeAchievementBadge"),
            },
        )
        await self._sender.send(message)

        return {
            "emailId": _receipt_id("email"),
            "sentAt": utcnow().isoformat(),
            "template": template,
            "recipient": user.email,
        }


class NotificationActionHandler:
    """Deliver an in-app/push notification with interpolated title and message."""

    def __init__(self, sender: NotificationSender | None = None) -> None:
        self._sender = sender or LoggingNotificationSender()

    async def execute(
        self,
        config: dict[str, Any],
        context: EventContext,
        user: UserContext | None,
    ) -> dict[str, Any]:
        variables = build_variables(context, user)
        notification = {
            "userId": user.user_id if user else None,
            "type": config.get("type"),
            "title": interpolate(config.get("title") or "", variables),
            "message": interpolate(config.get("message") or "", variables),
            "priority": config.get("priority", "normal"),
            "createdAt": utcnow().isoformat(),
        }
        await self._sender.send(notification)
        return {"notificationId": _receipt_id("notif"), **notification}


class DatabaseActionHandler:
    """Write an interpolated record through the database port."""

    def __init__(self, writer: DatabaseWriter | None = None) -> None:
        self._writer = writer or LoggingDatabaseWriter()

    async def execute(
        self,
        config: dict[str, Any],
        context: EventContext,
        user: UserContext | None,
    ) -> dict[str, Any]:
        table = config.get("table")
        operation = config.get("action")
        if not table or not operation:
            raise ActionConfigError(
                "Database action requires table and action",
                field="table" if not table else "action",
            )
        if not isinstance(config.get("data") or {}, dict):
            raise ActionConfigError("Database action data must be an object", field="data")

        variables = build_variables(context, user, include_timestamp=True)
        data = interpolate_values(config.get("data"), variables)
        conditions = config.get("conditions")

        written = await self._writer.write(table, operation, data, conditions)

        return {
            "table": table,
            "action": operation,
            "data": data,
            "conditions": conditions,
            "executedAt": utcnow().isoformat(),
            "success": True,
            "written": written,
        }


class AIAnalysisActionHandler:
    """Run a named analysis from the :class:`AnalysisRegistry`."""

    def __init__(self, registry: AnalysisRegistry | None = None) -> None:
        self._registry = registry or AnalysisRegistry()

    async def execute(
        self,
        config: dict[str, Any],
        context: EventContext,
        user: UserContext | None,
    ) -> dict[str, Any]:
        analysis_type = config.get("analysisType")
        if not analysis_type:
            raise ActionConfigError("AI analysis requires analysisType", field="analysisType")

        result = await self._registry.run(
            analysis_type,
            context,
            user,
            AnalysisOptions.from_config(config),
        )
        return {
            "analysisId": _receipt_id("analysis"),
            "type": analysis_type,
            "result": result,
            "executedAt": utcnow().isoformat(),
            "userId": user.user_id if user else None,
        }


class WebhookActionHandler:
    """POST (or other method) a JSON payload to an outbound URL.

    Args:
        client: Shared ``httpx.AsyncClient``; a short-lived client is created
            per call when omitted.
        timeout_seconds: Request timeout for per-call clients.
    """

    def __init__(
        self,
        client: httpx.AsyncClient | None = None,
        timeout_seconds: float = 10.0,
    ) -> None:
        self._client = client
        self._timeout = timeout_seconds

    async def execute(
        self,
        config: dict[str, Any],
        context: EventContext,
        user: UserContext | None,
    ) -> dict[str, Any]:
        url = config.get("url")
        if not url:
            raise ActionConfigError("Webhook action requires url", field="url")
        if not isinstance(config.get("payload") or {}, dict):
            raise ActionConfigError("Webhook action payload must be an object", field="payload")

        method = str(config.get("method", "POST")).upper()
        headers = {"Content-Type": "application/json", **(config.get("headers") or {})}

        variables = build_variables(context, user, include_timestamp=True)
        payload = interpolate_values(config.get("payload"), variables)
        payload["event"] = context.to_json_dict()
        payload["user"] = user.to_json_dict() if user else None
        payload["timestamp"] = context.timestamp.isoformat()

        try:
            response = await self._send(method, url, headers, payload)
        except httpx.HTTPError as e:
            raise ActionExecutionError(
                f"Webhook request to {url} failed: {e}",
                action_type=ActionType.WEBHOOK.value,
            ) from e

        if response.status_code >= 400:
            raise ActionExecutionError(
                f"Webhook {url} responded with status {response.status_code}",
                action_type=ActionType.WEBHOOK.value,
                details={"status": response.status_code},
            )

        return {
            "webhookId": _receipt_id("webhook"),
            "url": url,
            "method": method,
            "headers": headers,
            "payload": payload,
            "executedAt": utcnow().isoformat(),
            "response": {"status": response.status_code, "success": response.is_success},
        }

    async def _send(
        self,
        method: str,
        url: str,
        headers: dict[str, str],
        payload: dict[str, Any],
    ) -> httpx.Response:
        if self._client is not None:
            return await self._client.request(method, url, headers=headers, json=payload)
        async with httpx.AsyncClient(timeout=self._timeout) as client:
            return await client.request(method, url, headers=headers, json=payload)


CustomFunction = Callable[[dict[str, Any], EventContext, UserContext | None], Awaitable[Any]]


class CustomFunctionRegistry:
    """Named functions available to ``custom`` actions.

    Functions are registered in-process at startup; a ``custom`` action can
    only call what has been registered here.
    """

    def __init__(self) -> None:
        self._functions: dict[str, CustomFunction] = {}

    def register(self, name: str, func: CustomFunction) -> None:
        self._functions[name] = func

    def unregister(self, name: str) -> None:
        self._functions.pop(name, None)

    def get(self, name: str) -> CustomFunction | None:
        return self._functions.get(name)

    def names(self) -> list[str]:
        return sorted(self._functions)


class CustomActionHandler:
    """Call a registered custom function by name with its ``parameters``."""

    def __init__(self, registry: CustomFunctionRegistry | None = None) -> None:
        self.registry = registry or CustomFunctionRegistry()

    async def execute(
        self,
        config: dict[str, Any],
        context: EventContext,
        user: UserContext | None,
    ) -> dict[str, Any]:
        name = config.get("handlerFunction")
        if not name:
            raise ActionConfigError(
                "Custom action requires handlerFunction", field="handlerFunction"
            )
        func = self.registry.get(name)
        if func is None:
            raise ActionConfigError(
                f"Custom function is not registered: {name}", field="handlerFunction"
            )

        parameters = config.get("parameters") or {}
        result = await func(parameters, context, user)
        return {
            "customActionId": _receipt_id("custom"),
            "handlerFunction": name,
            "parameters": parameters,
            "executedAt": utcnow().isoformat(),
            "result": result,
        }


# ---------------------------------------------------------------------------
# Executor
# ---------------------------------------------------------------------------


class ActionExecutor:
    """Registry-based dispatcher for workflow actions.

    Args:
        settings: Source of the concurrency limit and webhook timeout.
        include_defaults: Register the built-in handlers.
        email_sender: Port for the ``email`` handler.
        notification_sender: Port for the ``notification`` handler.
        database_writer: Port for the ``database`` handler.
        analysis_registry: Analyses for the ``ai_analysis`` handler.
        http_client: Client for the ``webhook`` handler.
        custom_functions: Functions for the ``custom`` handler.
    """

    def __init__(
        self,
        settings: Settings | None = None,
        *,
        include_defaults: bool = True,
        email_sender: EmailSender | None = None,
        notification_sender: NotificationSender | None = None,
        database_writer: DatabaseWriter | None = None,
        analysis_registry: AnalysisRegistry | None = None,
        http_client: httpx.AsyncClient | None = None,
        custom_functions: CustomFunctionRegistry | None = None,
    ) -> None:
        settings = settings or get_settings()
        self._handlers: dict[str, ActionHandler] = {}
        self._slots = asyncio.Semaphore(settings.ACTION_CONCURRENCY_LIMIT)

        if include_defaults:
            self.register(ActionType.EMAIL.value, EmailActionHandler(email_sender))
            self.register(
                ActionType.NOTIFICATION.value, NotificationActionHandler(notification_sender)
            )
            self.register(ActionType.DATABASE.value, DatabaseActionHandler(database_writer))
            self.register(ActionType.AI_ANALYSIS.value, AIAnalysisActionHandler(analysis_registry))
            self.register(
                ActionType.WEBHOOK.value,
                WebhookActionHandler(http_client, timeout_seconds=settings.WEBHOOK_TIMEOUT_SECONDS),
            )
            self.register(ActionType.CUSTOM.value, CustomActionHandler(custom_functions))

    def register(self, action_type: str, handler: ActionHandler) -> None:
        """Register (or replace) the handler for *action_type*."""
        self._handlers[action_type] = handler

    def unregister(self, action_type: str) -> None:
        self._handlers.pop(action_type, None)

    def registered_types(self) -> list[str]:
        return sorted(self._handlers)

    def get_handler(self, action_type: str) -> ActionHandler:
        """Look up a handler.

        Raises:
            HandlerNotFoundError: If no handler is registered for the type.
        """
        handler = self._handlers.get(action_type)
        if handler is None:
            raise HandlerNotFoundError(action_type)
        return handler

    async def execute(
        self,
        action: WorkflowAction,
        context: EventContext,
        user: UserContext | None = None,
    ) -> Any:
        """Run one attempt of *action*.

        Returns:
            Whatever the handler returns.

        Raises:
            HandlerNotFoundError: If the action type is not registered.
            Exception: Whatever the handler raises.
        """
        handler = self.get_handler(action.type)
        async with self._slots:
            logger.debug("Executing action %s (%s)", action.id, action.type)
            return await handler.execute(action.config, context, user)
