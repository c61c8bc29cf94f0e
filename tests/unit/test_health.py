"""
Tests for the health checks and the `health` command.
"""
import httpx
import pytest

from harness import __main__ as cli
from harness.errors import TransportError
from harness.health import aggregate_health_status, check_environment, check_http_service, wait_for_services


@pytest.mark.asyncio
async def test_check_http_service_healthy(transport):
    result = await check_http_service("auth", "http://localhost:3001", transport=transport)

    assert result["status"] == "healthy"
    assert result["url"] == "http://localhost:3001"
    assert result["response_time_ms"] >= 0


@pytest.mark.asyncio
async def test_check_http_service_unreachable(transport):
    transport.take_down("news")

    result = await check_http_service("news", "http://localhost:3005", transport=transport)

    assert result["status"] == "unhealthy"
    assert "ConnectError" in result["message"]


@pytest.mark.asyncio
async def test_check_http_service_bad_status():
    def handler(request):
        return httpx.Response(503, json={"status": "starting"})

    result = await check_http_service("course", "http://localhost:3003", transport=httpx.MockTransport(handler))

    assert result["status"] == "unhealthy"
    assert "503" in result["message"]


@pytest.mark.parametrize("statuses, overall", [
    (["healthy", "healthy"], "healthy"),
    (["healthy", "unhealthy"], "degraded"),
    (["unhealthy", "unhealthy"], "unhealthy"),
    ([], "unhealthy"),
])
def test_aggregate_health_status(statuses, overall):
    dependencies = {f"dep{i}": {"status": s} for i, s in enumerate(statuses)}
    assert aggregate_health_status(dependencies) == overall


@pytest.mark.asyncio
async def test_check_environment_degraded(stub_settings, transport):
    transport.take_down("statistics")

    report = await check_environment(stub_settings, include_database=False, transport=transport)

    assert report["status"] == "degraded"
    assert set(report["dependencies"]) == set(stub_settings.services)
    assert report["dependencies"]["statistics"]["status"] == "unhealthy"


@pytest.mark.asyncio
async def test_wait_for_services_returns_once_healthy(stub_settings, transport):
    healthy = await wait_for_services(stub_settings, ["auth", "user"], attempts=2, delay=0, transport=transport)
    assert set(healthy) == {"auth", "user"}


@pytest.mark.asyncio
async def test_wait_for_services_names_what_stayed_down(stub_settings, transport):
    transport.take_down("planning")

    with pytest.raises(TransportError) as exc:
        await wait_for_services(stub_settings, ["auth", "planning"], attempts=2, delay=0, transport=transport)

    assert "planning" in str(exc.value)
    assert "auth" not in str(exc.value).split(":")[-1]


def test_cli_parser():
    args = cli.build_parser().parse_args(["health", "--wait", "--attempts", "5", "--no-db", "auth", "news"])

    assert args.command == "health"
    assert args.wait is True
    assert args.attempts == 5
    assert args.no_db is True
    assert args.services == ["auth", "news"]


def test_cli_health_exit_codes(monkeypatch, capsys):
    async def fake_check(current, services, include_database):
        return {
            "status": "degraded",
            "dependencies": {
                "auth": {"status": "healthy", "response_time_ms": 3.2, "message": "auth service is reachable"},
                "news": {"status": "unhealthy", "response_time_ms": 2000.0, "message": "news service timeout"},
            },
        }

    monkeypatch.setattr(cli, "check_environment", fake_check)
    monkeypatch.setattr(cli, "setup_logging_from_settings", lambda current: None)

    assert cli.main(["health", "--no-db"]) == 1
    out = capsys.readouterr().out
    assert "[UP] auth" in out
    assert "[DOWN] news" in out
    assert "Overall: degraded" in out
