"""Trigger management: ad-hoc events, inbound webhooks and system events.

:class:`TriggerManager` turns external signals into :class:`EventContext`
objects and fans them out to the handlers registered for the event type.
Handlers are isolated from each other -- one failing handler never stops the
rest.  The manager does not know about workflows; the scheduler subscribes
to it (see :meth:`WorkflowScheduler.connect`) to drive the engine.
"""

from __future__ import annotations

import hashlib
import hmac
import json
import logging
from collections import deque
from collections.abc import Callable, Mapping
from dataclasses import dataclass
from datetime import UTC, datetime
from typing import Any, Protocol
from zoneinfo import ZoneInfo

from pydantic import BaseModel

from automation_engine.core.config import Settings, get_settings
from automation_engine.workflows.models import EventContext, UserContext

logger = logging.getLogger(__name__)

SIGNATURE_HEADERS: tuple[str, ...] = ("x-signature", "x-hub-signature-256")

SOURCE_WEBHOOK = "webhook"
SOURCE_SYSTEM = "system"


class EventHandler(Protocol):
    """Receives every event of the type it is registered for."""

    async def handle(self, context: EventContext) -> None: ...


SignatureVerifier = Callable[[bytes, str, str], bool]
PayloadTransformer = Callable[[dict[str, Any], dict[str, str]], dict[str, Any]]


def verify_hmac_sha256(body: bytes, signature: str, secret: str) -> bool:
    """Verify an HMAC-SHA256 webhook signature.

    Accepts GitHub-style ``sha256=<hex>`` as well as a bare hex digest.

    Args:
        body: Raw request body bytes.
        signature: Value of the signature header.
        secret: Shared webhook secret.

    Returns:
        True if signature is valid, False otherwise.
    """
    if not secret or not signature:
        return False

    provided = signature.strip()
    if provided.lower().startswith("sha256="):
        provided = provided[len("sha256=") :]

    expected = hmac.new(secret.encode("utf-8"), body, hashlib.sha256).hexdigest()
    # Use constant-time comparison to prevent timing attacks
    return hmac.compare_digest(provided.lower(), expected)


def canonical_body(payload: Mapping[str, Any]) -> bytes:
    """Stable byte encoding of a parsed payload, used when no raw body is available."""
    return json.dumps(payload, separators=(",", ":"), sort_keys=True, default=str).encode("utf-8")


@dataclass
class WebhookConfig:
    """Registration of one inbound webhook.

    Attributes:
        event_type: Event emitted for each accepted delivery.
        secret: Shared secret; when set, deliveries must carry a valid signature.
        payload_transformer: ``(payload, headers) -> event_data``.
        verifier: Signature check; HMAC-SHA256 by default.
    """

    event_type: str
    secret: str | None = None
    payload_transformer: PayloadTransformer | None = None
    verifier: SignatureVerifier = verify_hmac_sha256


class WebhookResponse(BaseModel):
    """Result of an inbound webhook delivery."""

    success: bool
    message: str | None = None


class TriggerManager:
    """Ingests events and webhook deliveries and dispatches them to handlers.

    Args:
        settings: Source of the event history limit and system-event timezone.
    """

    def __init__(self, settings: Settings | None = None) -> None:
        self._settings = settings or get_settings()
        self._event_queue: deque[EventContext] = deque(maxlen=self._settings.EVENT_HISTORY_LIMIT)
        self._webhooks: dict[str, WebhookConfig] = {}
        self._handlers: dict[str, list[EventHandler]] = {}

    # ------------------------------------------------------------------
    # Events
    # ------------------------------------------------------------------

    async def trigger_event(
        self,
        event_type: str,
        event_data: dict[str, Any],
        user: UserContext | None = None,
        source: str = "manual",
    ) -> EventContext:
        """Emit an event to every handler registered for *event_type*.

        Returns:
            The context that was dispatched.
        """
        context = EventContext(
            event_type=event_type,
            event_data=event_data,
            source=source,
            user=user,
        )
        self._event_queue.append(context)
        await self._process_event(context)
        return context

    async def _process_event(self, context: EventContext) -> None:
        handlers = list(self._handlers.get(context.event_type, []))
        for handler in handlers:
            try:
                await handler.handle(context)
            except Exception:
                logger.exception(
                    "Event handler error for %s",
                    context.event_type,
                    extra={"handler": type(handler).__name__, "source": context.source},
                )

    def register_event_handler(self, event_type: str, handler: EventHandler) -> None:
        self._handlers.setdefault(event_type, []).append(handler)

    def unregister_event_handler(self, event_type: str, handler: EventHandler) -> None:
        handlers = self._handlers.get(event_type)
        if handlers and handler in handlers:
            handlers.remove(handler)
            if not handlers:
                del self._handlers[event_type]

    def get_event_handler_counts(self) -> dict[str, int]:
        return {event_type: len(handlers) for event_type, handlers in self._handlers.items()}

    def get_event_queue_size(self) -> int:
        return len(self._event_queue)

    def get_recent_events(self) -> list[EventContext]:
        return list(self._event_queue)

    def clear_event_queue(self) -> None:
        self._event_queue.clear()

    # ------------------------------------------------------------------
    # Webhooks
    # ------------------------------------------------------------------

    def register_webhook(self, webhook_id: str, config: WebhookConfig) -> str:
        """Register an inbound webhook.

        Returns:
            The path the webhook is served at.
        """
        self._webhooks[webhook_id] = config
        return f"/webhooks/{webhook_id}"

    def unregister_webhook(self, webhook_id: str) -> None:
        self._webhooks.pop(webhook_id, None)

    def get_registered_webhooks(self) -> list[str]:
        return list(self._webhooks)

    async def handle_webhook_request(
        self,
        webhook_id: str,
        payload: dict[str, Any],
        headers: Mapping[str, str],
        raw_body: bytes | None = None,
    ) -> WebhookResponse:
        """Validate, transform and emit one webhook delivery.

        Args:
            webhook_id: Registered webhook id.
            payload: Parsed JSON body.
            headers: Request headers (any case).
            raw_body: Exact request bytes for signature checks; a canonical
                JSON encoding of *payload* is signed-over when omitted.

        Returns:
            ``WebhookResponse`` describing the outcome.
        """
        config = self._webhooks.get(webhook_id)
        if config is None:
            return WebhookResponse(success=False, message="Webhook not found")

        normalised = {key.lower(): value for key, value in headers.items()}

        if config.secret and not self._validate_signature(config, payload, normalised, raw_body):
            logger.warning(
                "Webhook signature verification failed",
                extra={
                    "webhook_id": webhook_id,
                    "signature_present": any(h in normalised for h in SIGNATURE_HEADERS),
                },
            )
            return WebhookResponse(success=False, message="Invalid webhook signature")

        if config.payload_transformer is not None:
            try:
                event_data = config.payload_transformer(payload, normalised)
            except Exception:
                logger.exception("Webhook payload transform failed for %s", webhook_id)
                return WebhookResponse(success=False, message="Invalid webhook payload")
        else:
            event_data = payload

        await self.trigger_event(config.event_type, event_data, None, SOURCE_WEBHOOK)
        return WebhookResponse(success=True, message="Webhook processed successfully")

    @staticmethod
    def _validate_signature(
        config: WebhookConfig,
        payload: dict[str, Any],
        headers: Mapping[str, str],
        raw_body: bytes | None,
    ) -> bool:
        signature = next((headers[h] for h in SIGNATURE_HEADERS if headers.get(h)), None)
        if not signature:
            return False
        body = raw_body if raw_body is not None else canonical_body(payload)
        try:
            return config.verifier(body, signature, config.secret or "")
        except Exception:
            logger.warning("Webhook signature verifier raised", exc_info=True)
            return False

    # ------------------------------------------------------------------
    # System events
    # ------------------------------------------------------------------

    async def generate_system_events(self, now: datetime | None = None) -> list[str]:
        """Emit calendar events due at *now*.

        Called once a minute.  At 00:00 emits ``daily_summary``; on Mondays
        also ``weekly_review``; on the 1st of the month also
        ``monthly_report``.

        Args:
            now: Current time; defaults to the wall clock in ``SCHEDULER_TIMEZONE``.

        Returns:
            Event types emitted.
        """
        if now is None:
            now = datetime.now(ZoneInfo(self._settings.SCHEDULER_TIMEZONE))
        elif now.tzinfo is None:
            now = now.replace(tzinfo=UTC)

        emitted: list[str] = []
        if now.hour != 0 or now.minute != 0:
            return emitted

        today = now.date().isoformat()

        await self.trigger_event("daily_summary", {"date": today}, None, SOURCE_SYSTEM)
        emitted.append("daily_summary")

        if now.isoweekday() == 1:
            await self.trigger_event("weekly_review", {"weekStarting": today}, None, SOURCE_SYSTEM)
            emitted.append("weekly_review")

        if now.day == 1:
            await self.trigger_event(
                "monthly_report",
                {"month": now.month, "year": now.year},
                None,
                SOURCE_SYSTEM,
            )
            emitted.append("monthly_report")

        return emitted


# ---------------------------------------------------------------------------
# Pre-built handlers and webhook configurations
# ---------------------------------------------------------------------------

STREAK_MILESTONES: frozenset[int] = frozenset({7, 30, 100})
TOTAL_WORKOUT_MILESTONES: frozenset[int] = frozenset({10, 25, 50, 100, 250, 500})


class AchievementEventHandler:
    """Turns ``workout_completed`` events into ``achievement_unlocked`` events.

    Streak milestones use the user's ``currentStreak``; workout-count
    milestones count the completed workout on top of ``totalWorkouts``.
    """

    def __init__(self, manager: TriggerManager) -> None:
        self._manager = manager

    async def handle(self, context: EventContext) -> None:
        user = context.user
        if user is None:
            logger.debug("workout_completed without user; no achievements checked")
            return

        achievements: list[dict[str, Any]] = []

        streak = int(user.properties.get("currentStreak") or 0)
        if streak in STREAK_MILESTONES:
            achievements.append(
                {"type": "streak", "milestone": streak, "title": f"{streak} Day Streak!"}
            )

        total = int(user.properties.get("totalWorkouts") or 0) + 1
        if total in TOTAL_WORKOUT_MILESTONES:
            achievements.append(
                {
                    "type": "total_workouts",
                    "milestone": total,
                    "title": f"{total} Workouts Completed!",
                }
            )

        for achievement in achievements:
            await self._manager.trigger_event(
                "achievement_unlocked", achievement, user, SOURCE_SYSTEM
            )


def _forwarded_headers(headers: Mapping[str, str]) -> dict[str, str]:
    return {k: v for k, v in headers.items() if k.startswith("x-") or k == "user-agent"}


class WebhookConfigs:
    """Factories for common webhook providers."""

    @staticmethod
    def stripe(event_type: str, secret: str | None = None) -> WebhookConfig:
        def transform(payload: dict[str, Any], _headers: dict[str, str]) -> dict[str, Any]:
            created = payload.get("created")
            return {
                "stripeEventId": payload.get("id"),
                "eventType": payload.get("type"),
                "data": (payload.get("data") or {}).get("object"),
                "created": (
                    datetime.fromtimestamp(created, tz=UTC).isoformat()
                    if isinstance(created, int | float)
                    else None
                ),
            }

        return WebhookConfig(
            event_type=event_type,
            secret=secret if secret is not None else get_settings().stripe_webhook_secret,
            payload_transformer=transform,
        )

    @staticmethod
    def github(event_type: str, secret: str | None = None) -> WebhookConfig:
        def transform(payload: dict[str, Any], headers: dict[str, str]) -> dict[str, Any]:
            return {
                "event": headers.get("x-github-event"),
                "repository": (payload.get("repository") or {}).get("name"),
                "action": payload.get("action"),
                "sender": (payload.get("sender") or {}).get("login"),
                "data": payload,
            }

        return WebhookConfig(
            event_type=event_type,
            secret=secret if secret is not None else get_settings().github_webhook_secret,
            payload_transformer=transform,
        )

    @staticmethod
    def generic(event_type: str, secret: str | None = None) -> WebhookConfig:
        def transform(payload: dict[str, Any], headers: dict[str, str]) -> dict[str, Any]:
            return {
                **payload,
                "receivedAt": datetime.now(UTC).isoformat(),
                "headers": _forwarded_headers(headers),
            }

        return WebhookConfig(event_type=event_type, secret=secret, payload_transformer=transform)
