"""
Fixtures for harness unit tests.

Every harness client is routed to the in-process stub platform, and the
datastore is an in-memory fake shared between the stub and DatabaseHelper.
"""
import pytest

from harness.auth import AuthHelper
from harness.db import DatabaseHelper
from harness.factory import TestDataFactory
from harness.settings import load_settings

from fakes import FakeMotorClient
from stub_platform import Flaws, PlatformTransport, create_platform


@pytest.fixture
def stub_settings():
    """Default localhost URLs, no retries."""
    return load_settings({"RETRY_ATTEMPTS": "0", "RETRY_DELAY": "0", "API_TIMEOUT": "5000"})


@pytest.fixture
def mongo():
    return FakeMotorClient()


@pytest.fixture
def fake_db(mongo, stub_settings):
    return mongo[stub_settings.test_db_name]


@pytest.fixture
def flaws():
    return Flaws()


@pytest.fixture
def platform(fake_db, flaws):
    return create_platform(fake_db, flaws=flaws)


@pytest.fixture
def transport(platform):
    return PlatformTransport(platform)


@pytest.fixture
def database(mongo, stub_settings):
    return DatabaseHelper.from_settings(stub_settings, client_factory=mongo.factory)


@pytest.fixture
def factory():
    return TestDataFactory(seed=1234)


@pytest.fixture
async def helper(stub_settings, transport, factory):
    auth = AuthHelper(stub_settings, transport=transport, factory=factory)
    yield auth
    await auth.cleanup()


@pytest.fixture
async def users(helper):
    """One registered user per role."""
    return await helper.create_test_user_set()


# Route the plugin's `harness` fixture to the stub as well.

@pytest.fixture
def harness_settings(stub_settings):
    return stub_settings


@pytest.fixture
def harness_transport(transport):
    return transport


@pytest.fixture
def harness_database(database):
    return database
