"""
Identity lifecycle for harness runs.

`AuthHelper` registers real users through the auth service, logs them in,
caches one token per user and hands out `ApiClient`s bearing that token for
any service. Everything it creates is recorded and deleted again by
`cleanup()`, which never raises.
"""
import asyncio
import logging
from datetime import datetime, timedelta, timezone
from typing import Optional, Union

import httpx
from jose import JWTError, jwt

from .client import ApiClient, create_api_client
from .errors import FixtureSetupError
from .factory import TestDataFactory
from .models import ROLES, AuthTokens, TestUser
from .responses import extract_id, unwrap_data
from .settings import HarnessSettings
from .settings import settings as default_settings

logger = logging.getLogger(__name__)

JWT_ALGORITHM = "HS256"

UserOrRole = Union[TestUser, str]


class AuthHelper:
    def __init__(
        self,
        settings: Optional[HarnessSettings] = None,
        *,
        transport: Optional[httpx.AsyncBaseTransport] = None,
        database=None,
        factory: Optional[TestDataFactory] = None,
    ):
        self.settings = settings or default_settings
        self.database = database
        self.factory = factory or TestDataFactory()
        self._transport = transport
        self._users: dict[str, TestUser] = {}
        self._tokens: dict[str, AuthTokens] = {}

    @property
    def created_users(self) -> list[TestUser]:
        return list(self._users.values())

    def client(self, service: str, token: Optional[str] = None) -> ApiClient:
        return create_api_client(service, token, settings=self.settings, transport=self._transport)

    def get_user(self, user_id: str) -> Optional[TestUser]:
        return self._users.get(user_id)

    def get_tokens(self, user_id: str) -> Optional[AuthTokens]:
        return self._tokens.get(user_id)

    def forget_token(self, user: TestUser) -> None:
        """Drop the cached token so the next call logs in again."""
        self._tokens.pop(user.id, None)

    # ─── Creation ───────────────────────────────────────────────────────────

    async def create_test_user(self, role: str = "student", overrides: Optional[dict] = None) -> TestUser:
        """
        Register a fresh user with a unique email.

        Raises:
            FixtureSetupError if the auth service refuses or cannot be reached.
        """
        if role not in ROLES:
            raise FixtureSetupError(f"Unknown role '{role}'")

        fixture = self.factory.create_user(role, overrides)
        result = await self.client("auth").send("POST", "/api/auth/register", fixture.to_payload())
        if not result.is_ok:
            raise FixtureSetupError(
                f"Registering a {role} user failed ({result.status or 'no reply'}): {result.message}"
            )

        data = unwrap_data(result.data)
        user_doc = data.get("user") if isinstance(data, dict) else None
        user_id = extract_id(user_doc)
        if not user_id:
            raise FixtureSetupError(f"Registration response carried no user id: {str(result.data)[:300]}")
        assigned_role = user_doc.get("role", role)
        if assigned_role != role:
            raise FixtureSetupError(f"Registered as '{role}' but the auth service assigned '{assigned_role}'")

        user = TestUser(id=user_id, **fixture.model_dump())
        self._users[user.id] = user

        tokens = data.get("tokens")
        if isinstance(tokens, dict) and tokens.get("accessToken"):
            self._tokens[user.id] = AuthTokens.model_validate(tokens)

        logger.info("Created %s user %s", role, user.email, extra={"user_id": user.id, "role": role})
        return user

    async def create_test_user_set(self) -> dict[str, TestUser]:
        """One user per role, registered concurrently."""
        users = await asyncio.gather(*(self.create_test_user(role) for role in ROLES))
        return dict(zip(ROLES, users))

    # ─── Tokens ─────────────────────────────────────────────────────────────

    async def login(self, user: TestUser) -> AuthTokens:
        """Log `user` in and cache the tokens under the user's id."""
        result = await self.client("auth").send(
            "POST", "/api/auth/login", {"email": user.email, "password": user.password}
        )
        if not result.is_ok:
            raise FixtureSetupError(
                f"Login for {user.email} failed ({result.status or 'no reply'}): {result.message}"
            )

        data = unwrap_data(result.data)
        tokens = data.get("tokens") if isinstance(data, dict) else None
        if not isinstance(tokens, dict) or not tokens.get("accessToken"):
            raise FixtureSetupError(f"Login response for {user.email} carried no access token")

        self._tokens[user.id] = AuthTokens.model_validate(tokens)
        return self._tokens[user.id]

    async def get_token(self, user: TestUser) -> str:
        """The cached access token for `user`, logging in on first use."""
        tokens = self._tokens.get(user.id)
        if tokens is None:
            tokens = await self.login(user)
        return tokens.access_token

    async def _resolve(self, user_or_role: UserOrRole) -> TestUser:
        if isinstance(user_or_role, TestUser):
            return user_or_role
        return await self.create_test_user(user_or_role)

    async def login_as(self, user_or_role: UserOrRole) -> AuthTokens:
        """Tokens for an existing user, or for a newly created user of the given role."""
        user = await self._resolve(user_or_role)
        await self.get_token(user)
        return self._tokens[user.id]

    async def create_authenticated_client(self, service: str, user_or_role: UserOrRole) -> ApiClient:
        """A client for `service` bearing the identity's token. The same token serves every service."""
        user = await self._resolve(user_or_role)
        return self.client(service, await self.get_token(user))

    async def refresh_tokens(self, refresh_token: str) -> AuthTokens:
        response = await self.client("auth").post("/api/auth/refresh-token", {"refreshToken": refresh_token})
        data = unwrap_data(response.data)
        tokens = data.get("tokens", data) if isinstance(data, dict) else {}
        return AuthTokens.model_validate(tokens)

    async def logout(self, access_token: str) -> bool:
        """Best-effort logout; a failure is logged, not raised."""
        result = await self.client("auth", access_token).send("POST", "/api/auth/logout")
        if not result.is_ok:
            logger.warning("Logout failed (%s): %s", result.status or "no reply", result.message)
        return result.is_ok

    # ─── Token inspection ───────────────────────────────────────────────────

    @staticmethod
    def _claims(token) -> Optional[dict]:
        if not isinstance(token, str) or token.count(".") != 2:
            return None
        try:
            return jwt.get_unverified_claims(token)
        except JWTError:
            return None

    @staticmethod
    def is_token_valid(token) -> bool:
        """
        Structural check only: three segments, decodable claims, not expired.

        The signature is not verified; only the services can say whether they
        accept a token.
        """
        claims = AuthHelper._claims(token)
        if claims is None:
            return False
        exp = claims.get("exp")
        if exp is None:
            return True
        try:
            return float(exp) > datetime.now(timezone.utc).timestamp()
        except (TypeError, ValueError):
            return False

    @staticmethod
    def get_role_from_token(token) -> Optional[str]:
        claims = AuthHelper._claims(token)
        if claims is None:
            return None
        role = claims.get("role")
        return role if role in ROLES else None

    def mint_token(
        self,
        claims: dict,
        secret: Optional[str] = None,
        expires_in: Optional[int] = None,
    ) -> str:
        """
        Sign a token locally, for negative probes (expired, forged, wrong role).

        `expires_in` is in seconds and may be negative to produce an expired token.
        """
        payload = dict(claims)
        lifetime = self.settings.token_expiry if expires_in is None else expires_in
        now = datetime.now(timezone.utc)
        payload.setdefault("iat", int(now.timestamp()))
        payload["exp"] = int((now + timedelta(seconds=lifetime)).timestamp())
        return jwt.encode(payload, secret or self.settings.jwt_secret, algorithm=JWT_ALGORITHM)

    # ─── Teardown ───────────────────────────────────────────────────────────

    async def _delete_via_api(self, user: TestUser, admins: list[TestUser]) -> bool:
        for admin in admins:
            if admin.id == user.id or admin.id not in self._tokens:
                continue
            client = self.client("user", self._tokens[admin.id].access_token)
            result = await client.send("DELETE", f"/api/users/{user.id}")
            if result.is_ok or result.status == 404:
                return True
        return False

    async def cleanup(self) -> None:
        """Delete every user this helper created. Never raises."""
        users = self.created_users
        if not users:
            return

        admins = [u for u in users if u.role == "admin"]
        # admins go last so they can still delete the others
        ordered = [u for u in users if u.role != "admin"] + admins
        removed = 0

        for user in ordered:
            try:
                if self.database is not None:
                    await self.database.delete_user(user.id)
                    removed += 1
                elif await self._delete_via_api(user, admins):
                    removed += 1
                else:
                    logger.warning("No admin identity left to delete user %s", user.id, extra={"user_id": user.id})
            except Exception as e:
                logger.warning("Cleanup of user %s failed (ignored): %s", user.id, e, extra={"user_id": user.id})

        logger.info("Cleanup removed %d of %d test user(s)", removed, len(users))
        self._users.clear()
        self._tokens.clear()
