"""
Reusable authorization scenarios.

Every check probes live endpoints and returns a `ScenarioReport`. The report
separates *violations* (a service replied with the wrong outcome) from
*unreachable* probes (no reply); `raise_for_outcome()` turns the first into
an `AuthorizationViolation` and the second into a `TransportError`, so a run
can tell a security regression from a flaky environment.

Scenarios raise `FixtureSetupError` when a precondition does not hold, e.g.
the baseline reads fail before a user is deactivated.
"""
import logging
from dataclasses import dataclass, field
from typing import Any, Iterable, Optional

from .auth import AuthHelper
from .client import ApiClient
from .errors import AuthorizationViolation, FixtureSetupError, TransportError
from .matrix import (
    AUTHORIZATION_MATRIX,
    BASELINE_READS,
    BY_ID_ENDPOINTS,
    SELF_UPDATE_ENDPOINTS,
    AccessRule,
    Listing,
    Outcome,
    Toggle,
    check_monotonic,
    classify_status,
    outranks,
)
from .models import ROLE_RANK, ROLES, TestUser
from .responses import extract_id, extract_items, unwrap_data
from .settings import SERVICE_NAMES

logger = logging.getLogger(__name__)


@dataclass
class ProbeResult:
    service: str
    method: str
    path: str
    role: Optional[str]
    expected: tuple
    status: Optional[int]
    note: str = ""
    failure: Optional[str] = None
    rule: Optional[str] = None
    data: Any = field(default=None, repr=False)

    @property
    def outcome(self) -> Optional[Outcome]:
        return classify_status(self.status)

    @property
    def reachable(self) -> bool:
        return self.status is not None

    @property
    def passed(self) -> bool:
        return self.reachable and self.failure is None and self.outcome in self.expected

    @property
    def expected_label(self) -> str:
        return " or ".join(outcome.value for outcome in self.expected)

    def fail(self, reason: str) -> None:
        self.failure = reason
        self.note = f"{self.note}; {reason}" if self.note else reason


@dataclass
class ScenarioReport:
    name: str
    probes: list = field(default_factory=list)

    def add(self, probe: ProbeResult) -> ProbeResult:
        self.probes.append(probe)
        return probe

    @property
    def violations(self) -> list[ProbeResult]:
        return [p for p in self.probes if p.reachable and not p.passed]

    @property
    def unreachable(self) -> list[ProbeResult]:
        return [p for p in self.probes if not p.reachable]

    @property
    def passed(self) -> bool:
        return not self.violations and not self.unreachable

    def summary(self) -> str:
        return (
            f"{self.name}: {len(self.probes)} probe(s), "
            f"{len(self.violations)} violation(s), {len(self.unreachable)} unreachable"
        )

    def raise_for_outcome(self) -> None:
        if self.violations:
            raise AuthorizationViolation(self.name, self.violations)
        if self.unreachable:
            services = sorted({p.service for p in self.unreachable})
            raise TransportError(
                f"{self.name}: no reply from {', '.join(services)}",
                service=services[0],
            )


async def probe(
    client: ApiClient,
    method: str,
    path: str,
    expected: Iterable[Outcome],
    *,
    role: Optional[str] = None,
    body: Any = None,
    headers: Optional[dict] = None,
    note: str = "",
) -> ProbeResult:
    """Send one request and record its status against the expected outcomes."""
    result = await client.send(method, path, body, headers=headers)
    if not result.is_ok and result.is_transport:
        note = result.message
    outcome = ProbeResult(
        service=client.service,
        method=method.upper(),
        path=path,
        role=role,
        expected=tuple(expected),
        status=result.status,
        note=note,
        data=result.data,
    )
    if outcome.reachable and not outcome.passed:
        logger.warning(
            "[%s] %s %s as %s: expected %s, got %s",
            client.service, method.upper(), path, role or "anonymous", outcome.expected_label, outcome.status,
            extra={"service": client.service, "method": method.upper(), "path": path,
                   "status_code": outcome.status, "role": role},
        )
    return outcome


def _dig(body: Any, dotted: str) -> Any:
    value = body
    for part in dotted.split("."):
        if not isinstance(value, dict):
            return None
        value = value.get(part)
    return value


def _stored_role(body: Any) -> Optional[str]:
    data = unwrap_data(body)
    if isinstance(data, dict) and isinstance(data.get("user"), dict):
        data = data["user"]
    return data.get("role") if isinstance(data, dict) else None


def _peer_for(actor: TestUser, users: dict) -> Optional[TestUser]:
    for role in ROLES:
        candidate = users.get(role)
        if candidate is not None and candidate.id != actor.id:
            return candidate
    return None


async def open_service_clients(
    helper: AuthHelper,
    user: TestUser,
    services: Iterable[str] = SERVICE_NAMES,
) -> dict[str, ApiClient]:
    """One client per service, all bearing `user`'s token."""
    token = await helper.get_token(user)
    return {service: helper.client(service, token) for service in services}


async def _baseline(helper: AuthHelper, user: TestUser, token: str, rules, report_name: str) -> None:
    failures = []
    for rule in rules:
        path = rule.path_for(self_id=user.id)
        result = await helper.client(rule.service, token).send(rule.method, path, rule.body_for(self_id=user.id))
        if not result.is_ok:
            failures.append(f"[{rule.service}] {rule.method} {path}: {result.status or 'no reply'} {result.message}")
    if failures:
        raise FixtureSetupError(
            f"{report_name}: baseline requests did not succeed before the state change:\n  - "
            + "\n  - ".join(failures)
        )


async def _admin_token(helper: AuthHelper, admin: Optional[TestUser]) -> Optional[str]:
    if admin is None:
        return None
    return await helper.get_token(admin)


# ─── Account state propagation ──────────────────────────────────────────────

async def check_deactivation_propagation(
    helper: AuthHelper,
    user: TestUser,
    *,
    database=None,
    admin: Optional[TestUser] = None,
    rules: Iterable[AccessRule] = BASELINE_READS,
) -> ScenarioReport:
    """
    Deactivate `user` and check every service rejects the old token with 401.

    The deactivation is written straight to the datastore when `database` is
    given, otherwise it goes through the auth service's admin API as `admin`.
    """
    rules = list(rules)
    report = ScenarioReport(f"deactivation propagation ({user.role})")
    token = await helper.get_token(user)

    await _baseline(helper, user, token, rules, report.name)

    if database is not None:
        if not await database.deactivate_user(user.id):
            raise FixtureSetupError(f"Deactivating user {user.id} in the datastore matched nothing")
    else:
        admin_token = await _admin_token(helper, admin)
        if admin_token is None:
            raise FixtureSetupError("Deactivation needs either a database handle or an admin identity")
        result = await helper.client("auth", admin_token).send(
            "POST", f"/api/auth/admin/users/{user.id}/deactivate"
        )
        if not result.is_ok:
            raise FixtureSetupError(f"Admin deactivation of {user.id} failed ({result.status}): {result.message}")
    logger.info("User %s deactivated", user.id, extra={"user_id": user.id, "scenario": report.name})

    for rule in rules:
        client = helper.client(rule.service, token)
        report.add(await probe(
            client, rule.method, rule.path_for(self_id=user.id), (Outcome.UNAUTHENTICATED,),
            role=user.role, body=rule.body_for(self_id=user.id), note="token of a deactivated user",
        ))
    return report


async def check_deletion_propagation(
    helper: AuthHelper,
    user: TestUser,
    *,
    database=None,
    admin: Optional[TestUser] = None,
    rules: Iterable[AccessRule] = BASELINE_READS,
) -> ScenarioReport:
    """
    Delete `user` and check every service rejects the old token.

    401 is required everywhere, except that lookups addressed by the deleted
    user's own id may answer 404.
    """
    rules = list(rules)
    report = ScenarioReport(f"deletion propagation ({user.role})")
    token = await helper.get_token(user)

    await _baseline(helper, user, token, rules, report.name)

    if database is not None:
        if not await database.delete_user(user.id):
            raise FixtureSetupError(f"Deleting user {user.id} from the datastore matched nothing")
    else:
        admin_token = await _admin_token(helper, admin)
        if admin_token is None:
            raise FixtureSetupError("Deletion needs either a database handle or an admin identity")
        result = await helper.client("user", admin_token).send("DELETE", f"/api/users/{user.id}")
        if not result.is_ok:
            raise FixtureSetupError(f"Admin deletion of {user.id} failed ({result.status}): {result.message}")
    logger.info("User %s deleted", user.id, extra={"user_id": user.id, "scenario": report.name})

    for rule in rules:
        expected = (Outcome.UNAUTHENTICATED, Outcome.NOT_FOUND) if rule.by_user_id else (Outcome.UNAUTHENTICATED,)
        client = helper.client(rule.service, token)
        report.add(await probe(
            client, rule.method, rule.path_for(self_id=user.id), expected,
            role=user.role, body=rule.body_for(self_id=user.id), note="token of a deleted user",
        ))
    return report


# ─── Privilege boundaries ───────────────────────────────────────────────────

async def check_no_self_escalation(
    helper: AuthHelper,
    user: TestUser,
    *,
    target_role: str = "admin",
    database=None,
    endpoints: Iterable[AccessRule] = SELF_UPDATE_ENDPOINTS,
) -> ScenarioReport:
    """
    A user setting their own role to one they do not hold gets 403 and the
    stored role stays put. The target may be higher or, for teacher and
    student, a sibling role.
    """
    if target_role == user.role or outranks(user.role, target_role):
        raise FixtureSetupError(f"'{target_role}' grants '{user.role}' nothing new; nothing to escalate to")

    report = ScenarioReport(f"self-escalation {user.role} -> {target_role}")
    token = await helper.get_token(user)

    for rule in endpoints:
        report.add(await probe(
            helper.client(rule.service, token), rule.method, rule.path_for(self_id=user.id), (Outcome.DENY,),
            role=user.role, body={"role": target_role}, note=f"set own role to {target_role}",
        ))

    reread = report.add(await probe(
        helper.client("auth", token), "GET", "/api/auth/profile", (Outcome.ALLOW,),
        role=user.role, note="re-read stored role",
    ))
    if reread.passed:
        stored = _stored_role(reread.data)
        if stored != user.role:
            reread.fail(f"stored role is now '{stored}'")

    if database is not None:
        doc = await database.get_user(user.id)
        if doc is not None and doc.get("role") != user.role:
            report.add(ProbeResult(
                service="database", method="READ", path=f"users/{user.id}", role=user.role,
                expected=(Outcome.ALLOW,), status=200,
                failure=f"stored role is now '{doc.get('role')}'", note="datastore role check",
            ))
    return report


async def check_horizontal_isolation(
    helper: AuthHelper,
    actor: TestUser,
    peer: TestUser,
    *,
    endpoints: Iterable[AccessRule] = BY_ID_ENDPOINTS,
) -> ScenarioReport:
    """A non-admin addressing another user's by-id resources gets 403, never the peer's data."""
    if actor.role == "admin":
        raise FixtureSetupError("Horizontal isolation applies to non-admin actors")

    report = ScenarioReport(f"horizontal isolation {actor.role} -> {peer.role}")
    token = await helper.get_token(actor)

    for rule in endpoints:
        result = report.add(await probe(
            helper.client(rule.service, token), rule.method,
            rule.path_for(self_id=actor.id, other_id=peer.id), (Outcome.DENY,),
            role=actor.role, body=rule.body_for(self_id=actor.id, other_id=peer.id), note=f"peer {peer.id}",
        ))
        if result.outcome is Outcome.ALLOW and peer.email in str(result.data):
            result.fail("response carried the peer's data")
    return report


async def check_matrix(
    helper: AuthHelper,
    users: dict[str, TestUser],
    rules: Iterable[AccessRule] = AUTHORIZATION_MATRIX,
    *,
    resource_id: str = "",
    include_mutating: bool = False,
    name: str = "authorization matrix",
) -> ScenarioReport:
    """
    Probe each rule as each role in `users`.

    Mutating rules are only probed where the role must be refused, unless
    `include_mutating` is set.
    """
    report = ScenarioReport(name)
    for rule in rules:
        for role, user in users.items():
            expected = rule.expected_for(role)
            if rule.mutating and expected is Outcome.ALLOW and not include_mutating:
                continue
            peer = _peer_for(user, users)
            if rule.needs_peer and peer is None:
                continue
            ids = {"self_id": user.id, "other_id": peer.id if peer else "", "resource_id": resource_id}
            token = await helper.get_token(user)
            result = report.add(await probe(
                helper.client(rule.service, token), rule.method, rule.path_for(**ids),
                (expected,), role=role, body=rule.body_for(**ids), note=rule.description,
            ))
            result.rule = rule.key
    return report


async def check_role_hierarchy(
    helper: AuthHelper,
    users: dict[str, TestUser],
    rules: Iterable[AccessRule] = AUTHORIZATION_MATRIX,
    *,
    resource_id: str = "",
) -> ScenarioReport:
    """
    Whatever a role may do, every higher role may do too.

    Probes the matrix, then flags any endpoint where an observed success for a
    lower role sits beside an observed refusal for a higher one.
    """
    rules = list(rules)
    problems = check_monotonic(rules)
    if problems:
        raise ValueError("Authorization matrix is not monotonic:\n  - " + "\n  - ".join(problems))

    report = await check_matrix(helper, users, rules, resource_id=resource_id, name="role hierarchy")

    shared = {rule.key for rule in rules if rule.shared}
    by_rule: dict[str, list] = {}
    for result in report.probes:
        if result.rule in shared:
            by_rule.setdefault(result.rule, []).append(result)
    for results in by_rule.values():
        allowed = [r for r in results if r.outcome is Outcome.ALLOW and r.passed]
        if not allowed:
            continue
        lowest = min(ROLE_RANK[r.role] for r in allowed)
        for result in results:
            if ROLE_RANK[result.role] > lowest and result.reachable and result.outcome is not Outcome.ALLOW:
                if result.failure is None:
                    result.fail("a lower role was allowed here")
    return report


async def check_unauthenticated_access(
    helper: AuthHelper,
    user: TestUser,
    *,
    rules: Iterable[AccessRule] = BASELINE_READS,
) -> ScenarioReport:
    """Missing, malformed, forged and expired tokens and spoofed identity headers all get 401."""
    report = ScenarioReport("unauthenticated access")
    claims = {"id": user.id, "userId": user.id, "email": user.email, "role": "admin"}
    forged = helper.mint_token(claims, secret="not-the-platform-secret")
    expired = helper.mint_token({**claims, "role": user.role}, expires_in=-3600)
    spoofed = {"x-user-id": user.id, "x-user-role": "admin", "x-user-email": user.email}

    attempts = (
        ("no token", None, None),
        ("malformed token", "not-a-jwt", None),
        ("forged signature", forged, None),
        ("expired token", expired, None),
        ("spoofed identity headers", None, spoofed),
    )
    for rule in rules:
        path = rule.path_for(self_id=user.id)
        for label, token, headers in attempts:
            report.add(await probe(
                helper.client(rule.service, token), rule.method, path, (Outcome.UNAUTHENTICATED,),
                headers=headers, note=label,
            ))
    return report


# ─── Behaviour ──────────────────────────────────────────────────────────────

async def check_toggle_idempotence(
    client: ApiClient,
    toggle: Toggle,
    resource_id: str,
    *,
    role: Optional[str] = None,
    calls: int = 3,
) -> ScenarioReport:
    """
    The first call flips the state, the second puts it back, and so on.

    The state before any call is read from `toggle.read_path`; the sequence
    initial, call 1, call 2, ... must alternate, so two calls always leave the
    resource as it was.
    """
    report = ScenarioReport(f"toggle {toggle.method} {toggle.path}")
    path = toggle.path.format(resource_id=resource_id)

    initial = toggle.unset
    if toggle.read_path:
        read = report.add(await probe(
            client, "GET", toggle.read_path.format(resource_id=resource_id), (Outcome.ALLOW,),
            role=role, note="state before the first call",
        ))
        if not read.passed:
            return report
        found = _dig(read.data, toggle.read_state or toggle.state_path)
        if found is not None:
            initial = found

    states = [initial]
    for _ in range(max(calls, 2)):
        result = report.add(await probe(client, toggle.method, path, (Outcome.ALLOW,), role=role))
        if not result.passed:
            return report
        states.append(_dig(result.data, toggle.state_path))

    last = report.probes[-1]
    if any(state is None for state in states):
        last.fail(f"response has no '{toggle.state_path}'")
        return report
    for i in range(1, len(states)):
        if states[i] == states[i - 1]:
            last.fail(f"call {i} did not change {toggle.state_path}: {states}")
            return report
        if i >= 2 and states[i] != states[i - 2]:
            last.fail(f"call {i} did not restore {toggle.state_path}: {states}")
            return report
    return report


async def check_visibility_filtering(
    client: ApiClient,
    listing: Listing,
    hidden_ids: Iterable[str],
    *,
    role: Optional[str] = None,
    visible_ids: Iterable[str] = (),
) -> ScenarioReport:
    """
    Hidden resources are absent from the listing and unreadable directly (403 or 404).

    With an anonymous client a 401 is also accepted, for the listing and the
    direct reads alike.
    """
    hidden_ids = [str(i) for i in hidden_ids]
    report = ScenarioReport(f"visibility of {listing.path} for {role or 'anonymous'}")
    anonymous = (Outcome.UNAUTHENTICATED,) if client.token is None else ()

    listed = report.add(await probe(client, "GET", listing.path, (Outcome.ALLOW, *anonymous), role=role))
    if listed.passed and listed.outcome is Outcome.ALLOW:
        present = {extract_id(item) for item in extract_items(listed.data, listing.key)}
        leaked = [i for i in hidden_ids if i in present]
        if leaked:
            listed.fail(f"hidden resource(s) listed: {', '.join(leaked)}")
        missing = [str(i) for i in visible_ids if str(i) not in present]
        if missing and listed.failure is None:
            listed.fail(f"visible resource(s) missing: {', '.join(missing)}")

    if listing.item_path:
        for resource_id in hidden_ids:
            report.add(await probe(
                client, "GET", listing.item_path.format(resource_id=resource_id),
                (Outcome.DENY, Outcome.NOT_FOUND, *anonymous), role=role, note="direct read of hidden resource",
            ))
    return report
