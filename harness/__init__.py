"""
Authorization harness for the Yggdrasil platform services.

Drives the auth, user, course, planning, news, statistics and notification
services over HTTP with real identities and checks the cross-service
role-based access contract.
"""
from .client import ApiClient, create_api_client
from .auth import AuthHelper
from .db import DatabaseHelper
from .context import HarnessContext
from .errors import (
    ApiError,
    AuthorizationViolation,
    FixtureSetupError,
    HarnessError,
    TransportError,
)
from .responses import ApiResponse, Err, Ok
from .settings import HarnessSettings, load_settings

__all__ = [
    "ApiClient",
    "ApiError",
    "ApiResponse",
    "AuthHelper",
    "AuthorizationViolation",
    "DatabaseHelper",
    "Err",
    "FixtureSetupError",
    "HarnessContext",
    "HarnessError",
    "HarnessSettings",
    "Ok",
    "TransportError",
    "create_api_client",
    "load_settings",
]

__version__ = "1.0.0"
