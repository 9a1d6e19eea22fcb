"""Webhook dispatch to per-source handlers.

Handlers are registered per source (``fullstory``, ``slack``, ...). The
dispatcher only routes; what a handler does with the payload is up to the
integration behind it.
"""

import uuid
from typing import Any, Awaitable, Callable, Dict, Optional

from relay.app.core.logging import get_logger

logger = get_logger(__name__)

WebhookHandler = Callable[[Dict[str, Any]], Awaitable[Optional[Dict[str, Any]]]]


class WebhookDispatcher:
    """Routes webhook payloads to the handler registered for their source."""

    def __init__(self) -> None:
        self._handlers: Dict[str, WebhookHandler] = {}

    def register(self, source: str, handler: WebhookHandler) -> None:
        self._handlers[source.lower()] = handler

    def sources(self) -> list[str]:
        return sorted(self._handlers)

    async def dispatch(self, source: str, payload: Dict[str, Any]) -> Dict[str, Any]:
        """Hand a payload to its source handler.

        Unknown sources are acknowledged and logged so senders don't retry.

        Returns:
            Acknowledgement with the generated event ID and handler output.
        """
        event_id = str(uuid.uuid4())
        handler = self._handlers.get(source.lower())
        if handler is None:
            logger.info(
                f"No handler registered for webhook source '{source}', acknowledging",
                extra={"event_id": event_id, "source": source},
            )
            return {"eventId": event_id, "handled": False}

        result = await handler(payload)
        logger.info(
            f"Webhook from '{source}' dispatched",
            extra={"event_id": event_id, "source": source},
        )
        ack: Dict[str, Any] = {"eventId": event_id, "handled": True}
        if result:
            ack["result"] = result
        return ack
