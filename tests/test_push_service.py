import json

import httpx
import pytest

from swapmarket.core.config import Settings
from swapmarket.services.push_service import DEFAULT, GRANTED, HttpPushCapability, build_push_capability


def gateway(requests, permission=GRANTED):
    def handler(request):
        requests.append(request)
        if request.url.path.endswith("/permission"):
            return httpx.Response(200, json={"permission": permission})
        if request.url.path.endswith("/permission/request"):
            return httpx.Response(200, json={"permission": GRANTED})
        return httpx.Response(202)

    return httpx.AsyncClient(transport=httpx.MockTransport(handler))


@pytest.mark.asyncio
async def test_http_push_capability_talks_to_gateway():
    requests = []
    push = HttpPushCapability("https://push.test/", client=gateway(requests, permission=DEFAULT))

    assert await push.permission("user-bob") == DEFAULT
    assert await push.request_permission("user-bob") == GRANTED
    await push.show("user-bob", "Trade Completed", "Done", data={"url": "https://swap.test/items/1"}, timeout_ms=7000)
    await push.aclose()

    assert [r.url.path for r in requests] == [
        "/users/user-bob/permission",
        "/users/user-bob/permission/request",
        "/users/user-bob/notifications",
    ]
    assert json.loads(requests[-1].content)["timeoutMs"] == 7000


@pytest.mark.asyncio
async def test_http_push_capability_raises_on_gateway_error():
    client = httpx.AsyncClient(transport=httpx.MockTransport(lambda request: httpx.Response(503)))
    push = HttpPushCapability("https://push.test", client=client)

    with pytest.raises(httpx.HTTPStatusError):
        await push.show("user-bob", "Title", "Body", data={}, timeout_ms=7000)
    await push.aclose()


def test_build_push_capability_needs_gateway_url():
    assert build_push_capability(Settings(push_gateway_url=None)) is None
    push = build_push_capability(Settings(push_gateway_url="https://push.test"))
    assert isinstance(push, HttpPushCapability)
