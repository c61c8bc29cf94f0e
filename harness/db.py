"""
Direct MongoDB access for out-of-band state changes.

Scenarios use this to change a user behind the services' backs (deactivate,
delete) and then check that every service notices. Nothing here goes through
business rules.
"""
import logging
from datetime import datetime, timezone
from typing import Any, Awaitable, Callable, Optional

from bson import ObjectId
from motor.motor_asyncio import AsyncIOMotorClient

from .indexes import ensure_indexes
from .settings import HarnessSettings
from .settings import settings as default_settings

logger = logging.getLogger(__name__)

USERS = "users"


def id_filter(user_id: Any) -> dict:
    """Match a document id stored either as ObjectId or as a plain string."""
    if isinstance(user_id, str) and len(user_id) == 24 and ObjectId.is_valid(user_id):
        return {"_id": {"$in": [ObjectId(user_id), user_id]}}
    return {"_id": user_id}


class DatabaseHelper:
    """Async MongoDB helper. Operations connect on first use."""

    _instance: Optional["DatabaseHelper"] = None

    def __init__(
        self,
        uri: Optional[str] = None,
        db_name: Optional[str] = None,
        *,
        timeout_ms: Optional[int] = None,
        client_factory: Callable[..., Any] = AsyncIOMotorClient,
    ):
        self.uri = uri or default_settings.mongodb_uri
        self.db_name = db_name or default_settings.test_db_name
        self.timeout_ms = timeout_ms or default_settings.timeouts.db_ms
        self._client_factory = client_factory
        self._client = None
        self._db = None
        self._history: list[dict] = []

    @classmethod
    def from_settings(cls, current: HarnessSettings, **kwargs) -> "DatabaseHelper":
        return cls(current.mongodb_uri, current.test_db_name, timeout_ms=current.timeouts.db_ms, **kwargs)

    @classmethod
    def get_instance(cls, **kwargs) -> "DatabaseHelper":
        """Process-wide instance, built from settings on first call."""
        if cls._instance is None:
            cls._instance = cls(**kwargs)
        return cls._instance

    @classmethod
    def reset_instance(cls) -> None:
        cls._instance = None

    @property
    def is_connected(self) -> bool:
        return self._db is not None

    @property
    def cleanup_history(self) -> list[dict]:
        return list(self._history)

    def connection_info(self) -> dict:
        host = self.uri.split("@")[-1].split("/")[0]
        return {
            "is_connected": self.is_connected,
            "host": host,
            "database": self.db_name,
        }

    async def connect(self):
        """Open the client and ping the server. Idempotent."""
        if self._db is not None:
            return self._db

        client = self._client_factory(self.uri, serverSelectionTimeoutMS=self.timeout_ms)
        try:
            await client[self.db_name].command("ping")
        except Exception as e:
            client.close()
            logger.error("MongoDB connection to %s failed: %s", self.connection_info()["host"], e)
            raise

        self._client = client
        self._db = client[self.db_name]
        logger.info("Connected to test database %s", self.db_name)
        return self._db

    async def disconnect(self) -> None:
        if self._client is not None:
            self._client.close()
            self._client = None
            self._db = None
            logger.info("Disconnected from test database %s", self.db_name)

    async def _database(self):
        return await self.connect()

    # ─── Users ──────────────────────────────────────────────────────────────

    async def update_user(self, user_id: str, patch: dict) -> bool:
        """`$set` the given fields on a user. Returns False when no user matched."""
        db = await self._database()
        try:
            result = await db[USERS].update_one(id_filter(user_id), {"$set": patch})
        except Exception as e:
            logger.error("Failed to update user %s: %s", user_id, e, extra={"user_id": user_id})
            raise
        if result.matched_count == 0:
            logger.warning("update_user matched no user with id %s", user_id, extra={"user_id": user_id})
            return False
        logger.debug("Updated user %s: %s", user_id, sorted(patch), extra={"user_id": user_id})
        return True

    async def deactivate_user(self, user_id: str) -> bool:
        return await self.update_user(user_id, {"isActive": False})

    async def delete_user(self, user_id: str) -> bool:
        db = await self._database()
        try:
            result = await db[USERS].delete_one(id_filter(user_id))
        except Exception as e:
            logger.error("Failed to delete user %s: %s", user_id, e, extra={"user_id": user_id})
            raise
        return result.deleted_count > 0

    async def get_user(self, user_id: str) -> Optional[dict]:
        db = await self._database()
        return await db[USERS].find_one(id_filter(user_id))

    # ─── Collections ────────────────────────────────────────────────────────

    async def _user_collections(self) -> list[str]:
        db = await self._database()
        names = await db.list_collection_names()
        return [name for name in names if not name.startswith("system.")]

    async def cleanup_test_data(self, silent: bool = False) -> dict:
        """
        Empty every non-system collection and record it in the cleanup history.

        With `silent=True` a failure is logged and swallowed, for use in
        teardown paths that must not raise.
        """
        try:
            deleted = {}
            db = await self._database()
            for name in await self._user_collections():
                result = await db[name].delete_many({})
                deleted[name] = result.deleted_count
        except Exception as e:
            if not silent:
                logger.error("Test data cleanup failed: %s", e)
                raise
            logger.warning("Test data cleanup failed (ignored): %s", e)
            return {}

        entry = {
            "timestamp": datetime.now(timezone.utc).isoformat(),
            "collections": sorted(deleted),
            "deleted": sum(deleted.values()),
        }
        self._history.append(entry)
        log = logger.debug if silent else logger.info
        log("Cleaned %d document(s) from %d collection(s)", entry["deleted"], len(deleted))
        return deleted

    async def reset_database(self) -> list[str]:
        """Drop every non-system collection."""
        db = await self._database()
        dropped = []
        for name in await self._user_collections():
            await db[name].drop()
            dropped.append(name)
        logger.info("Dropped %d collection(s) from %s", len(dropped), self.db_name)
        return dropped

    async def create_test_indexes(self) -> list[str]:
        db = await self._database()
        return await ensure_indexes(db)

    async def get_collection_count(self, name: str) -> int:
        db = await self._database()
        return await db[name].count_documents({})

    async def execute_raw_operation(self, collection: str, operation: Callable[[Any], Awaitable[Any]]) -> Any:
        """Run `operation(collection)` against a raw Motor collection."""
        db = await self._database()
        return await operation(db[collection])

    async def verify_schema(self, required: tuple = (USERS,)) -> dict:
        """Check the database answers and that the `required` collections exist."""
        errors = []
        try:
            db = await self._database()
            await db.command("ping")
            names = await db.list_collection_names()
        except Exception as e:
            return {"valid": False, "errors": [str(e)], "collections": []}

        for name in required:
            if name not in names:
                errors.append(f"missing collection '{name}'")
        return {"valid": not errors, "errors": errors, "collections": sorted(names)}
