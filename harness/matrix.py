"""
The platform's authorization contract, written down as data.

Each `AccessRule` names one endpoint and the single outcome every role must
get from it. Path templates may reference `{self_id}` (the caller),
`{other_id}` (a different user) and `{resource_id}` (a seeded resource).
"""
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Optional

from .models import ROLE_RANK, ROLES


class Outcome(str, Enum):
    ALLOW = "2xx"
    UNAUTHENTICATED = "401"
    DENY = "403"
    NOT_FOUND = "404"
    OTHER = "other"


def classify_status(status: Optional[int]) -> Optional[Outcome]:
    """Map an HTTP status to an outcome; None when there was no reply."""
    if status is None:
        return None
    if 200 <= status < 300:
        return Outcome.ALLOW
    return {
        401: Outcome.UNAUTHENTICATED,
        403: Outcome.DENY,
        404: Outcome.NOT_FOUND,
    }.get(status, Outcome.OTHER)


A = Outcome.ALLOW
D = Outcome.DENY


def _roles(admin: Outcome, staff: Outcome, teacher: Outcome, student: Outcome) -> dict[str, Outcome]:
    return {"admin": admin, "staff": staff, "teacher": teacher, "student": student}


EVERYONE = _roles(A, A, A, A)
ADMIN_ONLY = _roles(A, D, D, D)
ADMIN_AND_STAFF = _roles(A, A, D, D)
NOT_STUDENTS = _roles(A, A, A, D)


def _fill(value, **ids):
    if isinstance(value, str):
        return value.format(**ids) if "{" in value else value
    if isinstance(value, dict):
        return {key: _fill(item, **ids) for key, item in value.items()}
    if isinstance(value, list):
        return [_fill(item, **ids) for item in value]
    return value


@dataclass(frozen=True)
class AccessRule:
    """
    One endpoint and the outcome each role must get from it.

    `shared` rules are subject to the role hierarchy check; a rule that only
    makes sense for one role (a student enrolling, say) sets it to False.
    """
    service: str
    method: str
    path: str
    expected: dict = field(hash=False)
    description: str = ""
    body: Optional[Any] = field(default=None, hash=False)
    mutating: bool = False
    by_user_id: bool = False
    shared: bool = True

    def path_for(self, self_id: str = "", other_id: str = "", resource_id: str = "") -> str:
        return self.path.format(self_id=self_id, other_id=other_id, resource_id=resource_id)

    def body_for(self, self_id: str = "", other_id: str = "", resource_id: str = "") -> Any:
        """`body` with the path's placeholders filled in."""
        return _fill(self.body, self_id=self_id, other_id=other_id, resource_id=resource_id)

    def expected_for(self, role: str) -> Outcome:
        return self.expected[role]

    @property
    def key(self) -> str:
        return f"{self.service} {self.method} {self.path}"

    @property
    def needs_peer(self) -> bool:
        return "{other_id}" in self.path or "{other_id}" in str(self.body)


AUTHORIZATION_MATRIX: tuple[AccessRule, ...] = (
    # auth
    AccessRule("auth", "GET", "/api/auth/profile", EVERYONE, "read own profile"),
    AccessRule("auth", "GET", "/api/auth/users", ADMIN_AND_STAFF, "list all users"),
    AccessRule("auth", "GET", "/api/auth/users/students", NOT_STUDENTS, "list students"),
    AccessRule("auth", "GET", "/api/auth/users/{other_id}", ADMIN_ONLY, "read another user", by_user_id=True),
    AccessRule("auth", "GET", "/api/auth/admin/stats", ADMIN_ONLY, "system statistics"),
    AccessRule("auth", "GET", "/api/auth/admin/audit-logs", ADMIN_ONLY, "audit logs"),
    AccessRule("auth", "GET", "/api/auth/admin/users", ADMIN_ONLY, "admin user management"),
    AccessRule(
        "auth", "POST", "/api/auth/admin/create-user", ADMIN_ONLY, "create any user",
        body={"email": "matrix.probe@yggdrasil.test", "password": "TestPassword123!", "role": "staff",
              "profile": {"firstName": "Matrix", "lastName": "Probe"}},
        mutating=True,
    ),
    AccessRule(
        "auth", "POST", "/api/auth/staff/create-student", ADMIN_AND_STAFF, "create a student",
        body={"email": "matrix.student@yggdrasil.test", "password": "TestPassword123!",
              "profile": {"firstName": "Matrix", "lastName": "Student"}},
        mutating=True,
    ),
    AccessRule(
        "auth", "POST", "/api/auth/staff/create-user", ADMIN_ONLY, "create an admin through the staff route",
        body={"email": "matrix.admin@yggdrasil.test", "password": "TestPassword123!", "role": "admin",
              "profile": {"firstName": "Matrix", "lastName": "Admin"}},
        mutating=True,
    ),
    AccessRule(
        "auth", "POST", "/api/auth/staff/reset-password", ADMIN_AND_STAFF, "reset another user's password",
        body={"userId": "{other_id}", "newPassword": "StaffResetPassword123!"},
        mutating=True,
    ),
    # user
    AccessRule("user", "GET", "/api/users/{self_id}", EVERYONE, "read own user record", by_user_id=True),
    AccessRule("user", "GET", "/api/users/{other_id}", ADMIN_ONLY, "read another user record", by_user_id=True),
    AccessRule(
        "user", "PUT", "/api/users/{other_id}", ADMIN_ONLY, "update another user",
        body={"profile": {"bio": "changed by someone else"}}, mutating=True, by_user_id=True,
    ),
    AccessRule("user", "DELETE", "/api/users/{other_id}", ADMIN_ONLY, "delete another user",
               mutating=True, by_user_id=True),
    AccessRule("user", "PUT", "/api/users/{other_id}/deactivate", ADMIN_ONLY, "deactivate another user",
               mutating=True, by_user_id=True),
    # course
    AccessRule("course", "GET", "/api/courses", EVERYONE, "list courses"),
    AccessRule("course", "POST", "/api/courses", NOT_STUDENTS, "create a course", mutating=True),
    # news
    AccessRule("news", "GET", "/api/news", EVERYONE, "list articles"),
    AccessRule("news", "POST", "/api/news", NOT_STUDENTS, "publish an article", mutating=True),
    # planning
    AccessRule("planning", "GET", "/api/planning/events", EVERYONE, "list events"),
    # statistics
    AccessRule("statistics", "GET", "/api/statistics/users/{self_id}", EVERYONE, "own statistics", by_user_id=True),
    AccessRule("statistics", "GET", "/api/statistics/users/{other_id}", ADMIN_ONLY, "another user's statistics",
               by_user_id=True),
    AccessRule("statistics", "GET", "/api/statistics/system", ADMIN_AND_STAFF, "system statistics"),
)

# One authenticated read per service; every role may perform them.
BASELINE_READS: tuple[AccessRule, ...] = (
    AccessRule("auth", "GET", "/api/auth/profile", EVERYONE, "read own profile"),
    AccessRule("user", "GET", "/api/users/{self_id}", EVERYONE, "read own user record", by_user_id=True),
    AccessRule("course", "GET", "/api/courses", EVERYONE, "list courses"),
    AccessRule("news", "GET", "/api/news", EVERYONE, "list articles"),
    AccessRule("planning", "GET", "/api/planning/events", EVERYONE, "list events"),
    AccessRule("statistics", "GET", "/api/statistics/users/{self_id}", EVERYONE, "own statistics", by_user_id=True),
)

# Endpoints through which a user edits their own account.
SELF_UPDATE_ENDPOINTS: tuple[AccessRule, ...] = (
    AccessRule("auth", "PUT", "/api/auth/profile", EVERYONE, "update own profile", mutating=True),
    AccessRule("user", "PUT", "/api/users/{self_id}", EVERYONE, "update own user record",
               mutating=True, by_user_id=True),
)

# Endpoints addressed by another user's id; non-admins must get 403.
BY_ID_ENDPOINTS: tuple[AccessRule, ...] = tuple(
    rule for rule in AUTHORIZATION_MATRIX
    if rule.path.endswith("{other_id}") and rule.method in ("GET", "PUT")
)


@dataclass(frozen=True)
class Toggle:
    """
    An endpoint whose successive identical calls must alternate a piece of state.

    `read_path` fetches the resource before the first call; `read_state` locates
    the state in that reply (defaults to `state_path`) and `unset` stands in
    when the reply does not carry it yet.
    """
    service: str
    method: str
    path: str
    state_path: str
    read_path: Optional[str] = None
    read_state: Optional[str] = None
    unset: Any = False


TOGGLES = {
    "pin": Toggle("news", "PATCH", "/api/news/{resource_id}/pin", "data.isPinned",
                  "/api/news/{resource_id}"),
    "like": Toggle("news", "POST", "/api/news/articles/{resource_id}/like", "data.analytics.likes",
                   "/api/news/{resource_id}", unset=0),
    "attendance": Toggle("planning", "POST", "/api/planning/events/{resource_id}/attendance", "data.isAttending",
                         "/api/planning/events/{resource_id}"),
}


@dataclass(frozen=True)
class Listing:
    """A collection endpoint and the direct read of one of its items."""
    service: str
    path: str
    key: str
    item_path: Optional[str] = None


LISTINGS = {
    "news": Listing("news", "/api/news", "articles", "/api/news/{resource_id}"),
    "events": Listing("planning", "/api/planning/events", "events", "/api/planning/events/{resource_id}"),
    "courses": Listing("course", "/api/courses", "courses", "/api/courses/{resource_id}"),
}


def rules_for(service: Optional[str] = None, rules=AUTHORIZATION_MATRIX) -> list[AccessRule]:
    return [rule for rule in rules if service is None or rule.service == service]


def find_rule(service: str, method: str, path: str, rules=AUTHORIZATION_MATRIX) -> Optional[AccessRule]:
    for rule in rules:
        if rule.service == service and rule.method == method.upper() and rule.path == path:
            return rule
    return None


def authorize(role: str, service: str, method: str, path: str, rules=AUTHORIZATION_MATRIX) -> Outcome:
    """
    The outcome `role` must get for an endpoint.

    Raises:
        KeyError when the endpoint is not part of the contract.
    """
    rule = find_rule(service, method, path, rules)
    if rule is None:
        raise KeyError(f"No authorization rule for {service} {method.upper()} {path}")
    return rule.expected_for(role)


def outranks(role: str, other: str) -> bool:
    return ROLE_RANK[role] > ROLE_RANK[other]


def higher_roles(role: str) -> list[str]:
    return [r for r in ROLES if outranks(r, role)]


def check_monotonic(rules=AUTHORIZATION_MATRIX) -> list[str]:
    """
    Shared rules where a role may do something a higher role may not. Empty means consistent.

    Teacher and student are not ranked against each other, so a rule open to
    only one of them is fine as long as staff and admin are allowed too.
    """
    problems = []
    for rule in rules:
        if not rule.shared:
            continue
        for role in ROLES:
            if rule.expected_for(role) is not Outcome.ALLOW:
                continue
            for higher in higher_roles(role):
                if rule.expected_for(higher) is not Outcome.ALLOW:
                    problems.append(f"{rule.key}: {role} is allowed but {higher} is not")
    return problems
