"""
Role-based access across the services: the matrix, its hierarchy, and the
boundaries between users.
"""
import pytest

from harness.matrix import rules_for
from harness.scenarios import (
    check_horizontal_isolation,
    check_matrix,
    check_no_self_escalation,
    check_role_hierarchy,
)

pytestmark = [pytest.mark.functional, pytest.mark.security]


@pytest.mark.asyncio
@pytest.mark.parametrize("service", ["auth", "user", "course", "news", "planning", "statistics"])
async def test_authorization_matrix(harness, users, service):
    report = await check_matrix(harness.auth, users, rules_for(service), name=f"{service} matrix")
    report.raise_for_outcome()


@pytest.mark.asyncio
async def test_higher_roles_keep_lower_roles_permissions(harness, users):
    report = await check_role_hierarchy(harness.auth, users)
    report.raise_for_outcome()


@pytest.mark.asyncio
@pytest.mark.parametrize("role, target", [
    ("student", "teacher"),
    ("student", "admin"),
    ("teacher", "staff"),
    ("staff", "admin"),
])
async def test_no_self_escalation(harness, users, role, target):
    report = await check_no_self_escalation(
        harness.auth, users[role], target_role=target, database=harness.database,
    )
    report.raise_for_outcome()


@pytest.mark.asyncio
@pytest.mark.parametrize("actor, peer", [
    ("student", "teacher"),
    ("teacher", "student"),
    ("staff", "admin"),
])
async def test_horizontal_isolation(harness, users, actor, peer):
    report = await check_horizontal_isolation(harness.auth, users[actor], users[peer])
    report.raise_for_outcome()


@pytest.mark.asyncio
@pytest.mark.parametrize("role", ["student", "teacher", "staff"])
async def test_same_role_isolation(harness, users, role):
    peer = await harness.create_user(role)

    report = await check_horizontal_isolation(harness.auth, users[role], peer)

    report.raise_for_outcome()
