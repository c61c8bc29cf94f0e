"""
Centralized settings for the authorization harness.

Reads from environment variables with local-development defaults and validates
them. `load_settings()` builds a fresh snapshot (tests pass their own mapping);
the module-level `settings` is the snapshot taken at import time.
"""
import logging
import os
from typing import Mapping, Optional
from urllib.parse import urlparse

from pydantic import BaseModel, ConfigDict, Field, ValidationError

from .errors import ConfigurationError

logger = logging.getLogger(__name__)

# ─── Services ───────────────────────────────────────────────────────────────
SERVICE_NAMES = (
    "auth",
    "user",
    "course",
    "planning",
    "news",
    "statistics",
    "notification",
)

DEFAULT_PORTS = {
    "auth": 3001,
    "user": 3002,
    "course": 3003,
    "planning": 3004,
    "news": 3005,
    "statistics": 3006,
    "notification": 3007,
}

SERVICE_ENV_VARS = {name: f"{name.upper()}_SERVICE_URL" for name in SERVICE_NAMES}

LOG_LEVELS = ("DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL")
INTEGRATION_TEST_TYPES = ("functional", "integration", "e2e")

_TRUTHY = ("1", "true", "yes", "on")


class RetryPolicy(BaseModel):
    """Retry budget for connection-level failures."""
    model_config = ConfigDict(frozen=True)

    attempts: int = Field(3, ge=0)
    delay_ms: int = Field(1000, ge=0)

    @property
    def delay_seconds(self) -> float:
        return self.delay_ms / 1000


class Timeouts(BaseModel):
    model_config = ConfigDict(frozen=True)

    api_ms: int = Field(30000, gt=0)
    db_ms: int = Field(30000, gt=0)
    browser_ms: int = Field(60000, gt=0)

    @property
    def api_seconds(self) -> float:
        return self.api_ms / 1000

    @property
    def db_seconds(self) -> float:
        return self.db_ms / 1000


class HarnessSettings(BaseModel):
    """Immutable view of the run environment."""
    model_config = ConfigDict(frozen=True)

    services: dict[str, str]
    frontend_url: str = "http://localhost:3000"
    gateway_url: str = "http://localhost:8080"

    mongodb_uri: str = "mongodb://localhost:27017"
    test_db_name: str = "yggdrasil-test"
    db_cleanup: bool = False

    jwt_secret: str = "test-secret-key-for-functional-tests"
    token_expiry: int = Field(3600, gt=0)
    refresh_token_expiry: int = Field(604800, gt=0)

    timeouts: Timeouts = Timeouts()
    retry: RetryPolicy = RetryPolicy()

    log_level: str = "INFO"
    log_console: bool = True
    log_file: Optional[str] = None

    environment: str = "test"
    ci: bool = False
    debug: bool = False
    test_type: str = "functional"

    def service_url(self, service: str) -> str:
        try:
            return self.services[service]
        except KeyError:
            raise ConfigurationError(
                f"Unknown service '{service}'. Known services: {', '.join(sorted(self.services))}"
            ) from None

    @property
    def is_integration(self) -> bool:
        """True when the run targets live services."""
        return self.test_type.lower() in INTEGRATION_TEST_TYPES

    @property
    def effective_log_level(self) -> str:
        return "DEBUG" if self.debug else self.log_level


def _flag(value: Optional[str], default: bool) -> bool:
    if value is None or value == "":
        return default
    return value.strip().lower() in _TRUTHY


def _integer(env: Mapping[str, str], key: str, default: int) -> int:
    raw = env.get(key)
    if raw is None or raw.strip() == "":
        return default
    try:
        return int(raw)
    except ValueError:
        raise ConfigurationError(f"{key} must be an integer, got '{raw}'") from None


def load_settings(environ: Optional[Mapping[str, str]] = None) -> HarnessSettings:
    """Build settings from `environ` (defaults to the process environment)."""
    env = os.environ if environ is None else environ

    services = {
        name: env.get(SERVICE_ENV_VARS[name]) or f"http://localhost:{DEFAULT_PORTS[name]}"
        for name in SERVICE_NAMES
    }

    try:
        return HarnessSettings(
            services={name: url.rstrip("/") for name, url in services.items()},
            frontend_url=env.get("FRONTEND_URL", "http://localhost:3000"),
            gateway_url=env.get("GATEWAY_URL", "http://localhost:8080"),
            mongodb_uri=env.get("MONGODB_URI", "mongodb://localhost:27017"),
            test_db_name=env.get("TEST_DB_NAME", "yggdrasil-test"),
            db_cleanup=_flag(env.get("TEST_DB_CLEANUP"), False),
            jwt_secret=env.get("JWT_SECRET", "test-secret-key-for-functional-tests"),
            token_expiry=_integer(env, "TEST_TOKEN_EXPIRY", 3600),
            refresh_token_expiry=_integer(env, "REFRESH_TOKEN_EXPIRY", 604800),
            timeouts=Timeouts(
                api_ms=_integer(env, "API_TIMEOUT", 30000),
                db_ms=_integer(env, "DB_TIMEOUT", 30000),
                browser_ms=_integer(env, "BROWSER_TIMEOUT", 60000),
            ),
            retry=RetryPolicy(
                attempts=_integer(env, "RETRY_ATTEMPTS", 3),
                delay_ms=_integer(env, "RETRY_DELAY", 1000),
            ),
            log_level=env.get("LOG_LEVEL", "INFO").upper(),
            log_console=_flag(env.get("LOG_CONSOLE"), True),
            log_file=env.get("LOG_FILE") or None,
            environment=env.get("NODE_ENV", "test"),
            ci=_flag(env.get("CI"), False),
            debug=_flag(env.get("DEBUG"), False),
            test_type=env.get("TEST_TYPE", "functional"),
        )
    except ValidationError as e:
        raise ConfigurationError(f"Invalid harness configuration: {e}") from e


def _is_http_url(url: str) -> bool:
    parsed = urlparse(url)
    return parsed.scheme in ("http", "https") and bool(parsed.netloc)


def validate_settings(current: Optional[HarnessSettings] = None) -> HarnessSettings:
    """Validate settings before a run. Exits with every problem listed."""
    current = current or settings
    errors = []

    for name, url in current.services.items():
        if not _is_http_url(url):
            errors.append(f"{SERVICE_ENV_VARS[name]} is not an http(s) URL: '{url}'")
    for key, url in (("FRONTEND_URL", current.frontend_url), ("GATEWAY_URL", current.gateway_url)):
        if not _is_http_url(url):
            errors.append(f"{key} is not an http(s) URL: '{url}'")
    if not current.mongodb_uri.startswith(("mongodb://", "mongodb+srv://")):
        errors.append("MONGODB_URI must start with mongodb:// or mongodb+srv://")
    if not current.test_db_name:
        errors.append("TEST_DB_NAME is empty")
    if not current.jwt_secret:
        errors.append("JWT_SECRET is empty")
    if current.log_level not in LOG_LEVELS:
        errors.append(f"LOG_LEVEL must be one of {', '.join(LOG_LEVELS)}")

    if errors:
        msg = "Configuration errors:\n  - " + "\n  - ".join(errors)
        logger.critical(msg)
        raise SystemExit(msg)

    logger.info(
        "Settings loaded: AUTH=%s, MONGODB_URI=%s, TEST_DB_NAME=%s, TEST_TYPE=%s, CI=%s",
        current.services["auth"],
        current.mongodb_uri[:30] + "..." if len(current.mongodb_uri) > 30 else current.mongodb_uri,
        current.test_db_name,
        current.test_type,
        current.ci,
    )
    return current


settings = load_settings()
