"""Live push channels for decision notifications.

A channel is an optimisation on top of the persisted notification store:
recipients that miss a push catch up by listing their notifications.
"""

import json
import logging
from typing import Any, Dict, Optional, Protocol

import httpx
from jinja2 import Template

logger = logging.getLogger(__name__)


class RecipientUnreachable(Exception):
    """The recipient has no live connection right now."""


class PushChannel(Protocol):
    """Transport used for best-effort live delivery."""

    async def is_reachable(self, recipient_id: str) -> bool:
        ...

    async def send(self, recipient_id: str, payload: Dict[str, Any]) -> None:
        ...


class NullPushChannel:
    """No live transport configured; every recipient is unreachable."""

    async def is_reachable(self, recipient_id: str) -> bool:
        return False

    async def send(self, recipient_id: str, payload: Dict[str, Any]) -> None:
        raise RuntimeError("No push transport configured")


class WebhookPushChannel:
    """
    Forwards notifications to a realtime gateway over HTTP.

    The gateway owns the open client connections; it answers 404 or 410
    for recipients that are not connected, which counts as unreachable.
    """

    def __init__(
        self,
        url: str,
        *,
        timeout: float = 5.0,
        payload_template: Optional[str] = None,
        headers: Optional[Dict[str, str]] = None,
        client: Optional[httpx.AsyncClient] = None,
    ):
        self.url = url
        self.timeout = timeout
        self.payload_template = payload_template
        self.headers = dict(headers or {})
        self.headers["Content-Type"] = "application/json"
        self._client = client

    async def is_reachable(self, recipient_id: str) -> bool:
        # The gateway reports reachability on send
        return True

    async def send(self, recipient_id: str, payload: Dict[str, Any]) -> None:
        body = self._render(recipient_id, payload)
        if self._client is not None:
            response = await self._client.post(self.url, json=body, headers=self.headers)
        else:
            async with httpx.AsyncClient(timeout=self.timeout) as client:
                response = await client.post(self.url, json=body, headers=self.headers)

        if response.status_code in (404, 410):
            raise RecipientUnreachable(recipient_id)
        response.raise_for_status()

    def _render(self, recipient_id: str, payload: Dict[str, Any]) -> Dict[str, Any]:
        if self.payload_template:
            try:
                template = Template(self.payload_template)
                return json.loads(template.render(recipient_id=recipient_id, **payload))
            except Exception as e:
                logger.warning(f"Failed to render push payload template: {e}")
        return {"recipient_id": recipient_id, "notification": payload}
