"""
Per-run fixture context.

    async with HarnessContext(settings) as harness:
        student = await harness.auth.create_test_user("student")
        ...

Everything created inside the block is released on exit, whether the body
passed, failed or raised.
"""
import logging
from typing import Optional

import httpx

from .auth import AuthHelper
from .client import ApiClient
from .db import DatabaseHelper
from .errors import FixtureSetupError
from .factory import TestDataFactory
from .models import TestUser
from .settings import HarnessSettings
from .settings import settings as default_settings

logger = logging.getLogger(__name__)


class HarnessContext:
    """Owns the identities and datastore handle of one test or scenario."""

    def __init__(
        self,
        settings: Optional[HarnessSettings] = None,
        *,
        transport: Optional[httpx.AsyncBaseTransport] = None,
        database: Optional[DatabaseHelper] = None,
        use_database: bool = False,
        factory: Optional[TestDataFactory] = None,
    ):
        self.settings = settings or default_settings
        self.transport = transport
        self.factory = factory or TestDataFactory()
        self.database = database
        self._owns_database = False
        if self.database is None and use_database:
            self.database = DatabaseHelper.from_settings(self.settings)
            self._owns_database = True
        self.auth = AuthHelper(self.settings, transport=transport, database=self.database, factory=self.factory)
        self._released = False

    async def __aenter__(self) -> "HarnessContext":
        if self.database is not None:
            try:
                await self.database.connect()
            except Exception as e:
                raise FixtureSetupError(f"Test database is not reachable: {e}") from e
        return self

    async def __aexit__(self, exc_type, exc, tb) -> bool:
        await self.release()
        return False

    def client(self, service: str, token: Optional[str] = None) -> ApiClient:
        return self.auth.client(service, token)

    async def create_user(self, role: str = "student", overrides: Optional[dict] = None) -> TestUser:
        return await self.auth.create_test_user(role, overrides)

    async def user_set(self) -> dict[str, TestUser]:
        return await self.auth.create_test_user_set()

    async def authenticated_client(self, service: str, user_or_role) -> ApiClient:
        return await self.auth.create_authenticated_client(service, user_or_role)

    async def release(self) -> None:
        """Delete created users, optionally wipe the test database, close handles. Never raises."""
        if self._released:
            return
        self._released = True

        await self.auth.cleanup()

        if self.database is None:
            return
        if self.settings.db_cleanup:
            await self.database.cleanup_test_data(silent=True)
        if self._owns_database:
            try:
                await self.database.disconnect()
            except Exception as e:
                logger.warning("Closing the test database failed (ignored): %s", e)
