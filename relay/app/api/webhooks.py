"""Webhook receiving endpoints."""

from typing import Any, Dict

from fastapi import APIRouter, Depends, Request

from relay.app.api.dependencies import get_webhook_dispatcher
from relay.app.core.logging import get_logger
from relay.app.exceptions import BadRequestError
from relay.app.middleware.request_id import get_request_id
from relay.app.services.webhook_dispatcher import WebhookDispatcher

logger = get_logger(__name__)
router = APIRouter(prefix="/webhook", tags=["webhooks"])


@router.post("/{source}")
async def receive_webhook(
    source: str,
    request: Request,
    dispatcher: WebhookDispatcher = Depends(get_webhook_dispatcher),
) -> Dict[str, Any]:
    """Accept a webhook event and hand it to the source's handler."""
    try:
        payload = await request.json()
    except ValueError:
        raise BadRequestError("Request body must be valid JSON")
    if not isinstance(payload, dict):
        raise BadRequestError("Webhook payload must be a JSON object")

    logger.debug(
        f"Webhook received from '{source}'",
        extra={"request_id": get_request_id(request), "source": source},
    )
    ack = await dispatcher.dispatch(source, payload)
    return {"success": True, "source": source, **ack}
