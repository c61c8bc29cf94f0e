"""
Error taxonomy for the harness.

Four categories, each handled differently by the test run:

    AuthorizationViolation  a security invariant failed; blocking
    FixtureSetupError       the scenario could not be set up; aborts the scenario
    TransportError          the environment did not answer; advisory skip
    cleanup failures        logged and swallowed at the call site

`ApiError` is what a client raises when a service answered with a non-2xx
status; scenarios normally compare statuses instead of catching it.
"""
from typing import TYPE_CHECKING, Optional, Sequence

if TYPE_CHECKING:
    from .responses import ApiResponse
    from .scenarios import ProbeResult


class HarnessError(Exception):
    """Base class for harness errors."""

    error_type = "HarnessError"

    def __init__(self, message: str):
        self.message = message
        super().__init__(message)


class ConfigurationError(HarnessError):
    error_type = "ConfigurationError"


class ApiError(HarnessError):
    """A service replied with a non-2xx status."""

    error_type = "ApiError"

    def __init__(self, message: str, response: "ApiResponse", kind: str = "http_error"):
        super().__init__(message)
        self.response = response
        self.kind = kind

    @property
    def status(self) -> int:
        return self.response.status


class TransportError(HarnessError):
    """No reply at all: DNS failure, refused connection or timeout."""

    error_type = "TransportError"

    def __init__(self, message: str, service: Optional[str] = None):
        super().__init__(message)
        self.service = service
        self.response = None


class FixtureSetupError(HarnessError):
    """Creating a user, token or other precondition failed."""

    error_type = "FixtureSetupError"


class AuthorizationViolation(AssertionError):
    """One or more services broke an authorization invariant."""

    def __init__(self, scenario: str, violations: Sequence["ProbeResult"]):
        self.scenario = scenario
        self.violations = list(violations)
        super().__init__(self.report())

    def report(self) -> str:
        lines = [f"{self.scenario}: {len(self.violations)} authorization violation(s)"]
        for probe in self.violations:
            lines.append(
                f"  - [{probe.service}] {probe.method} {probe.path} as {probe.role or 'anonymous'}: "
                f"expected {probe.expected_label}, got {probe.status}"
                + (f" ({probe.note})" if probe.note else "")
            )
        return "\n".join(lines)
