"""Inbound webhook endpoint.

``POST /webhooks/{webhook_id}`` verifies and emits the delivery through the
:class:`TriggerManager`, then runs the workflows bound to the webhook id.
"""

import json
import logging
from typing import Any

from fastapi import APIRouter, Request, status
from fastapi.responses import JSONResponse

from automation_engine.api.deps import Scheduler, Triggers
from automation_engine.workflows.triggers import WebhookResponse

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/webhooks", tags=["webhooks"])

_FAILURE_STATUS = {
    "Webhook not found": status.HTTP_404_NOT_FOUND,
    "Invalid webhook signature": status.HTTP_401_UNAUTHORIZED,
}


def _respond(result: WebhookResponse) -> JSONResponse:
    status_code = (
        status.HTTP_200_OK
        if result.success
        else _FAILURE_STATUS.get(result.message or "", status.HTTP_400_BAD_REQUEST)
    )
    return JSONResponse(status_code=status_code, content=result.model_dump())


@router.post("/{webhook_id}", response_model=WebhookResponse)
async def receive_webhook(
    webhook_id: str,
    request: Request,
    trigger_manager: Triggers,
    scheduler: Scheduler,
) -> JSONResponse:
    """Accept one webhook delivery.

    The raw body is used for signature verification, so the payload is
    parsed here rather than by FastAPI.

    Returns:
        ``{success, message}``; 404 for unknown webhooks, 401 for a bad
        signature and 400 for a body that is not a JSON object.
    """
    raw_body = await request.body()
    try:
        payload: Any = json.loads(raw_body) if raw_body else {}
    except json.JSONDecodeError:
        logger.warning("Webhook payload is not valid JSON", extra={"webhook_id": webhook_id})
        return _respond(WebhookResponse(success=False, message="Invalid JSON payload"))
    if not isinstance(payload, dict):
        return _respond(WebhookResponse(success=False, message="Invalid JSON payload"))

    headers = {key.lower(): value for key, value in request.headers.items()}

    if webhook_id in trigger_manager.get_registered_webhooks():
        result = await trigger_manager.handle_webhook_request(
            webhook_id, payload, headers, raw_body=raw_body
        )
        if not result.success:
            return _respond(result)
        await scheduler.handle_webhook(webhook_id, payload, headers)
        return _respond(result)

    if webhook_id in scheduler.get_webhook_bindings():
        executions = await scheduler.handle_webhook(webhook_id, payload, headers)
        logger.info(
            "Webhook %s ran %d workflows", webhook_id, len(executions)
        )
        return _respond(WebhookResponse(success=True, message="Webhook processed successfully"))

    return _respond(WebhookResponse(success=False, message="Webhook not found"))
