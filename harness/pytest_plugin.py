"""
pytest integration for harness suites.

Registered through the `pytest11` entry point, so installing the package is
enough to get:

* `harness` fixture: a `HarnessContext` released after every test.
* Tests marked `functional` only run with `--functional` or when `TEST_TYPE`
  is set to functional/integration/e2e in the environment.
* A test that dies on `TransportError` or `FixtureSetupError` is reported as
  skipped with an `environment:` reason instead of failed.
* The terminal summary lists security violations apart from environment
  problems, so CI can tell a regression from a flaky deployment.
"""
import logging
import os

import pytest
import pytest_asyncio

from .context import HarnessContext
from .db import DatabaseHelper
from .errors import AuthorizationViolation, FixtureSetupError, TransportError
from .settings import INTEGRATION_TEST_TYPES, load_settings

logger = logging.getLogger(__name__)

ENVIRONMENT_ERRORS = (TransportError, FixtureSetupError)

violations_key = pytest.StashKey[list]()
environment_key = pytest.StashKey[list]()


def pytest_addoption(parser):
    group = parser.getgroup("harness", "authorization harness")
    group.addoption(
        "--functional",
        action="store_true",
        default=False,
        help="run suites marked 'functional' against the live services",
    )
    group.addoption(
        "--harness-db",
        action="store_true",
        default=False,
        help="attach the MongoDB side channel (MONGODB_URI / TEST_DB_NAME)",
    )


def pytest_configure(config):
    config.addinivalue_line("markers", "security: checks an authorization invariant; failures block")
    config.addinivalue_line("markers", "functional: needs live platform services")
    config.addinivalue_line("markers", "advisory: failures are reported but never block")
    config.stash[violations_key] = []
    config.stash[environment_key] = []


def functional_enabled(config) -> bool:
    if config.getoption("--functional"):
        return True
    return os.environ.get("TEST_TYPE", "").lower() in INTEGRATION_TEST_TYPES


def pytest_collection_modifyitems(config, items):
    if functional_enabled(config):
        return
    skip_functional = pytest.mark.skip(reason="live suite: pass --functional or set TEST_TYPE=functional")
    for item in items:
        if "functional" in item.keywords:
            item.add_marker(skip_functional)


@pytest.hookimpl(hookwrapper=True)
def pytest_runtest_makereport(item, call):
    outcome = yield
    report = outcome.get_result()
    if call.excinfo is None or not report.failed:
        return

    exc = call.excinfo.value
    lineno = item.location[1] or 0
    if isinstance(exc, ENVIRONMENT_ERRORS):
        reason = f"environment: {exc.__class__.__name__}: {exc}"
        report.outcome = "skipped"
        report.longrepr = (str(item.path), lineno, reason)
        item.config.stash[environment_key].append((item.nodeid, reason))
    elif item.get_closest_marker("advisory") is not None:
        reason = f"advisory: {exc.__class__.__name__}: {exc}"
        report.outcome = "skipped"
        report.longrepr = (str(item.path), lineno, reason)
        item.config.stash[environment_key].append((item.nodeid, reason))
    elif isinstance(exc, AuthorizationViolation):
        item.config.stash[violations_key].append((item.nodeid, exc.report()))


def pytest_terminal_summary(terminalreporter, exitstatus, config):
    violations = config.stash.get(violations_key, [])
    environment = config.stash.get(environment_key, [])

    if violations:
        terminalreporter.section("security invariants violated", sep="=", red=True, bold=True)
        for nodeid, text in violations:
            terminalreporter.write_line(nodeid, red=True)
            for line in text.splitlines():
                terminalreporter.write_line(f"    {line}")
    if environment:
        terminalreporter.section("environment unavailable (advisory)", sep="-", yellow=True)
        for nodeid, reason in environment:
            terminalreporter.write_line(f"{nodeid}: {reason}")


@pytest.fixture(scope="session")
def harness_settings():
    """Settings from the process environment."""
    return load_settings()


@pytest.fixture
def harness_transport():
    """Override to route every harness client through a custom httpx transport."""
    return None


@pytest_asyncio.fixture
async def harness_database(request, harness_settings):
    """A DatabaseHelper when --harness-db is given, else None. Override to inject one."""
    if not request.config.getoption("--harness-db"):
        yield None
        return
    database = DatabaseHelper.from_settings(harness_settings)
    yield database
    await database.disconnect()


@pytest_asyncio.fixture
async def harness(harness_settings, harness_transport, harness_database):
    async with HarnessContext(
        harness_settings,
        transport=harness_transport,
        database=harness_database,
    ) as context:
        yield context
