"""
Tests for ApiClient against the stub platform and scripted transports.
"""
import json

import httpx
import pytest

from harness.client import ApiClient, create_api_client
from harness.errors import ApiError, TransportError
from harness.settings import RetryPolicy


class ScriptedTransport(httpx.AsyncBaseTransport):
    """Raises the queued exceptions in order, then answers 200."""

    def __init__(self, *failures):
        self.failures = list(failures)
        self.calls = 0

    async def handle_async_request(self, request):
        self.calls += 1
        if self.failures:
            raise self.failures.pop(0)(f"scripted failure {self.calls}", request=request)
        return httpx.Response(200, json={"success": True, "data": {"attempt": self.calls}})


@pytest.mark.asyncio
async def test_get_returns_status_and_data(stub_settings, transport):
    client = create_api_client("auth", settings=stub_settings, transport=transport)

    response = await client.get("/health")

    assert response.status == 200
    assert response.data == {"status": "healthy"}


@pytest.mark.asyncio
async def test_non_2xx_raises_with_response(stub_settings, transport):
    client = create_api_client("auth", settings=stub_settings, transport=transport)

    with pytest.raises(ApiError) as exc:
        await client.get("/api/auth/profile")

    assert exc.value.response.status == 401
    assert exc.value.response.data == {"success": False, "error": "Access token required"}


@pytest.mark.asyncio
async def test_unreachable_service_raises_transport_error(stub_settings, transport):
    transport.take_down("news")
    client = create_api_client("news", settings=stub_settings, transport=transport)

    with pytest.raises(TransportError) as exc:
        await client.get("/api/news")

    assert exc.value.response is None
    assert exc.value.service == "news"


@pytest.mark.asyncio
async def test_send_never_raises_for_status(stub_settings, transport):
    client = create_api_client("course", settings=stub_settings, transport=transport)

    result = await client.send("GET", "/api/courses")

    assert not result.is_ok
    assert result.status == 401


@pytest.mark.asyncio
async def test_token_is_sent_until_cleared(helper, stub_settings, transport):
    student = await helper.create_test_user("student")
    token = await helper.get_token(student)
    client = create_api_client("auth", settings=stub_settings, transport=transport)

    client.set_auth_token(token)
    response = await client.get("/api/auth/profile")
    assert response.data["data"]["user"]["email"] == student.email

    client.clear_auth_token()
    result = await client.send("GET", "/api/auth/profile")
    assert result.status == 401


@pytest.mark.asyncio
async def test_health_check_never_raises(stub_settings, transport):
    up = create_api_client("planning", settings=stub_settings, transport=transport)
    transport.take_down("statistics")
    down = create_api_client("statistics", settings=stub_settings, transport=transport)
    nonsense = ApiClient("not a url at all", retry=RetryPolicy(attempts=0))

    assert await up.health_check() is True
    assert await down.health_check() is False
    assert await nonsense.health_check() is False


@pytest.mark.asyncio
async def test_connect_errors_are_retried():
    scripted = ScriptedTransport(httpx.ConnectError, httpx.ConnectTimeout)
    client = ApiClient("http://localhost:3003", transport=scripted, retry=RetryPolicy(attempts=2, delay_ms=0))

    response = await client.get("/api/courses")

    assert scripted.calls == 3
    assert response.data["data"]["attempt"] == 3


@pytest.mark.asyncio
async def test_retries_are_bounded():
    scripted = ScriptedTransport(httpx.ConnectError, httpx.ConnectError, httpx.ConnectError)
    client = ApiClient("http://localhost:3003", transport=scripted, retry=RetryPolicy(attempts=1, delay_ms=0))

    result = await client.send("GET", "/api/courses")

    assert scripted.calls == 2
    assert result.is_transport


@pytest.mark.asyncio
async def test_read_timeout_not_retried_for_writes():
    scripted = ScriptedTransport(httpx.ReadTimeout)
    client = ApiClient("http://localhost:3003", transport=scripted, retry=RetryPolicy(attempts=3, delay_ms=0))

    result = await client.send("POST", "/api/courses", {"title": "x"})

    assert scripted.calls == 1
    assert result.is_transport


@pytest.mark.asyncio
async def test_read_timeout_retried_for_reads():
    scripted = ScriptedTransport(httpx.ReadTimeout)
    client = ApiClient("http://localhost:3003", transport=scripted, retry=RetryPolicy(attempts=1, delay_ms=0))

    result = await client.send("GET", "/api/courses")

    assert scripted.calls == 2
    assert result.is_ok


def test_with_token_keeps_service_and_transport(stub_settings, transport):
    client = create_api_client("user", settings=stub_settings, transport=transport)
    other = client.with_token("abc")

    assert other.service == "user"
    assert other.base_url == "http://localhost:3002"
    assert other.token == "abc"
    assert client.token is None


@pytest.mark.asyncio
async def test_delete_sends_optional_body():
    seen = []

    def handler(request):
        seen.append((request.method, request.content))
        return httpx.Response(200, json={"success": True})

    client = ApiClient("http://localhost:3002", transport=httpx.MockTransport(handler), retry=RetryPolicy(attempts=0, delay_ms=0))

    await client.delete("/api/users/abc", {"reason": "cleanup"})
    await client.delete("/api/users/abc")

    assert seen[0][0] == "DELETE"
    assert json.loads(seen[0][1]) == {"reason": "cleanup"}
    assert seen[1][1] == b""
