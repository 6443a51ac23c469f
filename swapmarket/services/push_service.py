import logging
from typing import Any, Dict, Optional

import httpx

from ..core.config import Settings

logger = logging.getLogger(__name__)

GRANTED = "granted"
DENIED = "denied"
DEFAULT = "default"


class PushCapability:
    """
    Platform notification API as seen from the server.

    ``permission`` reports granted, denied or default (never asked);
    ``request_permission`` asks the user's client once and returns the outcome.
    """

    async def permission(self, user_id: str) -> str:
        raise NotImplementedError

    async def request_permission(self, user_id: str) -> str:
        raise NotImplementedError

    async def show(self, user_id: str, title: str, body: str, data: Dict[str, Any], timeout_ms: int) -> None:
        raise NotImplementedError


class HttpPushCapability(PushCapability):
    """Push capability exposed by an HTTP push gateway."""

    def __init__(self, base_url: str, timeout_ms: int = 7000, client: Optional[httpx.AsyncClient] = None):
        self.base_url = base_url.rstrip("/")
        self.client = client or httpx.AsyncClient(timeout=timeout_ms / 1000)

    async def permission(self, user_id: str) -> str:
        response = await self.client.get(f"{self.base_url}/users/{user_id}/permission")
        response.raise_for_status()
        return response.json().get("permission", DEFAULT)

    async def request_permission(self, user_id: str) -> str:
        response = await self.client.post(f"{self.base_url}/users/{user_id}/permission/request")
        response.raise_for_status()
        return response.json().get("permission", DENIED)

    async def show(self, user_id: str, title: str, body: str, data: Dict[str, Any], timeout_ms: int) -> None:
        response = await self.client.post(
            f"{self.base_url}/users/{user_id}/notifications",
            json={"title": title, "body": body, "data": data, "timeoutMs": timeout_ms},
        )
        response.raise_for_status()

    async def aclose(self) -> None:
        await self.client.aclose()


def build_push_capability(settings: Settings) -> Optional[PushCapability]:
    """Return the configured push capability, or None when there is none."""
    if not settings.push_gateway_url:
        logger.info("No push gateway configured; push alerts disabled")
        return None
    return HttpPushCapability(settings.push_gateway_url, timeout_ms=settings.push_timeout_ms)
