"""
Response decoding for platform services.

Every HTTP exchange is decoded once, at the client boundary, into a result:

    Ok(response)              2xx
    Err(kind, message, ...)   anything else, including no reply at all

Scenario code compares `result.status` or `result.kind` and never looks at
raw exceptions or envelope shapes. The assertion helpers at the bottom check
the `{success, data}` / `{success: false, error}` envelope the services share.
"""
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Optional, Union

import httpx

from .errors import ApiError, TransportError


class ErrorKind(str, Enum):
    BAD_REQUEST = "bad_request"
    UNAUTHENTICATED = "unauthenticated"
    FORBIDDEN = "forbidden"
    NOT_FOUND = "not_found"
    CONFLICT = "conflict"
    PAYLOAD_TOO_LARGE = "payload_too_large"
    VALIDATION = "validation"
    RATE_LIMITED = "rate_limited"
    SERVER_ERROR = "server_error"
    UNAVAILABLE = "unavailable"
    HTTP_ERROR = "http_error"
    TRANSPORT = "transport"


STATUS_KINDS = {
    400: ErrorKind.BAD_REQUEST,
    401: ErrorKind.UNAUTHENTICATED,
    403: ErrorKind.FORBIDDEN,
    404: ErrorKind.NOT_FOUND,
    409: ErrorKind.CONFLICT,
    413: ErrorKind.PAYLOAD_TOO_LARGE,
    422: ErrorKind.VALIDATION,
    429: ErrorKind.RATE_LIMITED,
    500: ErrorKind.SERVER_ERROR,
    503: ErrorKind.UNAVAILABLE,
}


def kind_for_status(status: int) -> ErrorKind:
    return STATUS_KINDS.get(status, ErrorKind.HTTP_ERROR)


@dataclass(frozen=True)
class ApiResponse:
    """What a service replied: status, decoded body and headers."""
    status: int
    data: Any
    headers: dict = field(default_factory=dict)

    @property
    def ok(self) -> bool:
        return 200 <= self.status < 300


@dataclass(frozen=True)
class Ok:
    response: ApiResponse

    is_ok = True

    @property
    def status(self) -> int:
        return self.response.status

    @property
    def data(self) -> Any:
        return self.response.data

    @property
    def kind(self) -> None:
        return None

    def unwrap(self) -> ApiResponse:
        return self.response


@dataclass(frozen=True)
class Err:
    kind: ErrorKind
    message: str
    response: Optional[ApiResponse] = None
    service: Optional[str] = None

    is_ok = False

    @property
    def status(self) -> Optional[int]:
        return self.response.status if self.response is not None else None

    @property
    def data(self) -> Any:
        return self.response.data if self.response is not None else None

    @property
    def is_transport(self) -> bool:
        return self.kind is ErrorKind.TRANSPORT

    def unwrap(self) -> ApiResponse:
        if self.response is None:
            raise TransportError(self.message, service=self.service)
        raise ApiError(self.message, self.response, kind=self.kind.value)


ApiResult = Union[Ok, Err]


def _decode_body(response: httpx.Response) -> Any:
    if not response.content:
        return None
    try:
        return response.json()
    except ValueError:
        return response.text


def error_message(data: Any, default: str) -> str:
    """Pull the human-readable message out of an error envelope."""
    if isinstance(data, dict):
        for key in ("error", "message", "detail"):
            value = data.get(key)
            if isinstance(value, str) and value:
                return value
            if isinstance(value, dict) and isinstance(value.get("message"), str):
                return value["message"]
    if isinstance(data, str) and data:
        return data[:300]
    return default


def decode_response(response: httpx.Response, service: Optional[str] = None) -> ApiResult:
    """Decode an httpx response into `Ok` or `Err`."""
    api_response = ApiResponse(
        status=response.status_code,
        data=_decode_body(response),
        headers=dict(response.headers),
    )
    if api_response.ok:
        return Ok(api_response)
    kind = kind_for_status(api_response.status)
    label = f"{response.request.method} {response.request.url.path}"
    message = error_message(api_response.data, f"{label} failed with status {api_response.status}")
    return Err(kind=kind, message=message, response=api_response, service=service)


def transport_failure(exc: Exception, method: str, url: str, service: Optional[str] = None) -> Err:
    reason = str(exc) or exc.__class__.__name__
    return Err(
        kind=ErrorKind.TRANSPORT,
        message=f"{method} {url} unreachable: {reason}",
        service=service,
    )


# ─── Envelope helpers ───────────────────────────────────────────────────────

def unwrap_data(body: Any) -> Any:
    """Return the `data` member of a success envelope, or the body itself."""
    if isinstance(body, dict) and "success" in body and "data" in body:
        return body["data"]
    return body


def extract_items(body: Any, key: Optional[str] = None) -> list:
    """
    Find the list of resources in a listing response.

    Services answer listings either as `{data: [...]}` or as
    `{data: {<key>: [...], pagination}}`; both shapes are accepted.
    """
    data = unwrap_data(body)
    if isinstance(data, list):
        return data
    if isinstance(data, dict):
        if key and isinstance(data.get(key), list):
            return data[key]
        for value in data.values():
            if isinstance(value, list):
                return value
    return []


def extract_id(resource: Any) -> Optional[str]:
    if not isinstance(resource, dict):
        return None
    value = resource.get("_id", resource.get("id"))
    return str(value) if value is not None else None


def assert_valid_envelope(body: Any) -> None:
    assert isinstance(body, dict), f"expected a JSON object envelope, got {type(body).__name__}"
    assert isinstance(body.get("success"), bool), f"envelope has no boolean 'success': {str(body)[:300]}"


def assert_success(body: Any) -> Any:
    """Assert a success envelope and return its data."""
    assert_valid_envelope(body)
    assert body["success"] is True, f"expected success envelope, got: {str(body)[:300]}"
    assert "data" in body, f"success envelope has no 'data': {str(body)[:300]}"
    return body["data"]


def assert_error(body: Any, contains: Optional[str] = None) -> str:
    """Assert a failure envelope, optionally containing `contains`; return the message."""
    assert_valid_envelope(body)
    assert body["success"] is False, f"expected error envelope, got: {str(body)[:300]}"
    message = error_message(body, "")
    assert message, f"error envelope has no message: {str(body)[:300]}"
    if contains is not None:
        assert contains.lower() in message.lower(), f"expected error containing '{contains}', got '{message}'"
    return message


def assert_valid_user(user: Any) -> None:
    assert isinstance(user, dict), f"expected a user object, got {type(user).__name__}"
    assert extract_id(user), f"user has no _id/id: {user}"
    assert isinstance(user.get("email"), str) and "@" in user["email"], f"user has no valid email: {user}"
    assert user.get("role") in ("admin", "staff", "teacher", "student"), f"user has unknown role: {user}"
    assert "password" not in user, "user payload leaks the password field"


def assert_valid_tokens(tokens: Any) -> None:
    assert isinstance(tokens, dict), f"expected a tokens object, got {type(tokens).__name__}"
    access = tokens.get("accessToken")
    assert isinstance(access, str) and access.count(".") == 2, f"accessToken is not a JWT: {access!r}"


def assert_status_in(status: Optional[int], allowed) -> None:
    assert status in allowed, f"expected status in {sorted(allowed)}, got {status}"
