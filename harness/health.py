"""
Health checks for the services and datastore a harness run depends on.

Every check returns a plain dict (`status`, `message`, `response_time_ms`
plus a locator) so reports can be printed or dumped as JSON unchanged.
"""
import asyncio
import logging
import time
from datetime import datetime, timezone
from typing import Optional

import httpx
from motor.motor_asyncio import AsyncIOMotorClient

from .errors import TransportError
from .settings import HarnessSettings

logger = logging.getLogger(__name__)


def _result(healthy: bool, message: str, started: float, **locator) -> dict:
    return {
        "status": "healthy" if healthy else "unhealthy",
        "message": message,
        "response_time_ms": round((time.perf_counter() - started) * 1000, 2),
        **locator,
    }


async def check_mongodb(mongo_uri: str, db_name: str, timeout_ms: int = 2000) -> dict:
    """Ping the test database. Never raises."""
    started = time.perf_counter()
    client = None
    try:
        client = AsyncIOMotorClient(mongo_uri, serverSelectionTimeoutMS=timeout_ms)
        await client[db_name].command("ping")
    except Exception as e:
        return _result(False, f"MongoDB connection failed: {e}", started, database=db_name)
    finally:
        if client is not None:
            client.close()
    return _result(True, "MongoDB connection successful", started, database=db_name)


async def check_http_service(
    service_name: str,
    service_url: str,
    endpoint: str = "/health",
    timeout: float = 2.0,
    transport: Optional[httpx.AsyncBaseTransport] = None,
) -> dict:
    """GET a service's liveness endpoint; any 2xx counts as healthy. Never raises."""
    started = time.perf_counter()
    url = f"{service_url.rstrip('/')}{endpoint}"

    try:
        async with httpx.AsyncClient(timeout=timeout, transport=transport) as client:
            response = await client.get(url)
    except httpx.TimeoutException:
        return _result(False, f"{service_name} service timeout after {timeout}s", started, url=service_url)
    except httpx.HTTPError as e:
        message = f"{service_name} service unreachable: {e.__class__.__name__}"
        return _result(False, message, started, url=service_url)

    if response.is_success:
        return _result(True, f"{service_name} service is reachable", started, url=service_url)
    message = f"{service_name} service returned status {response.status_code}"
    return _result(False, message, started, url=service_url)


def aggregate_health_status(dependencies: dict) -> str:
    """
    Overall status of a set of dependency checks.

    Returns:
        "healthy" if all dependencies are healthy
        "degraded" if some are unhealthy
        "unhealthy" if all are unhealthy (or none were checked)
    """
    statuses = {dep.get("status") for dep in dependencies.values()}
    if statuses == {"healthy"}:
        return "healthy"
    if "healthy" in statuses:
        return "degraded"
    return "unhealthy"


async def check_environment(
    current: HarnessSettings,
    services: Optional[list] = None,
    include_database: bool = True,
    transport: Optional[httpx.AsyncBaseTransport] = None,
) -> dict:
    """Check every service (or the named ones) and, optionally, MongoDB, concurrently."""
    names = services or list(current.services)
    checks = [
        check_http_service(name, current.service_url(name), transport=transport)
        for name in names
    ]
    results = await asyncio.gather(*checks)
    dependencies = dict(zip(names, results))

    if include_database:
        dependencies["mongodb"] = await check_mongodb(current.mongodb_uri, current.test_db_name)

    return {
        "status": aggregate_health_status(dependencies),
        "timestamp": datetime.now(timezone.utc).isoformat(),
        "dependencies": dependencies,
    }


async def wait_for_services(
    current: HarnessSettings,
    services: Optional[list] = None,
    attempts: int = 30,
    delay: float = 1.0,
    transport: Optional[httpx.AsyncBaseTransport] = None,
) -> dict:
    """
    Poll until every named service is healthy.

    Raises:
        TransportError naming the services still down after `attempts` rounds.
    """
    pending = list(services or current.services)
    healthy = {}

    for attempt in range(1, attempts + 1):
        report = await check_environment(current, pending, include_database=False, transport=transport)
        for name, result in report["dependencies"].items():
            if result["status"] == "healthy":
                healthy[name] = result
        pending = [name for name in pending if name not in healthy]
        if not pending:
            logger.info("All %d service(s) healthy after %d attempt(s)", len(healthy), attempt)
            return healthy
        logger.info("Waiting for %s (attempt %d/%d)", ", ".join(pending), attempt, attempts)
        if attempt < attempts:
            await asyncio.sleep(delay)

    raise TransportError(f"Services not ready after {attempts} attempt(s): {', '.join(pending)}")
