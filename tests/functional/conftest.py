"""
Fixtures for the live suites.

These run against the services named by the *_SERVICE_URL variables; the
plugin skips them unless `--functional` is given or TEST_TYPE asks for them.
Pass `--harness-db` to also attach the MongoDB side channel.
"""
import pytest

from harness.errors import FixtureSetupError
from harness.responses import extract_id, unwrap_data


@pytest.fixture
async def users(harness):
    """One registered user per role, released with the harness."""
    return await harness.user_set()


async def create_resource(client, path: str, payload: dict, key: str) -> str:
    """POST a resource as a privileged user and return its id."""
    result = await client.send("POST", path, payload)
    if not result.is_ok:
        raise FixtureSetupError(f"Seeding {path} failed ({result.status or 'no reply'}): {result.message}")
    data = unwrap_data(result.data)
    if isinstance(data, dict) and isinstance(data.get(key), dict):
        data = data[key]
    resource_id = extract_id(data)
    if resource_id is None:
        raise FixtureSetupError(f"Seeding {path} returned no id")
    return resource_id


@pytest.fixture
async def staff_news(harness, users):
    return await harness.authenticated_client("news", users["staff"])


@pytest.fixture
async def published_article(harness, staff_news, users):
    article = harness.factory.create_article(users["staff"].id, {"status": "published", "visibility": "public"})
    return await create_resource(staff_news, "/api/news", article.to_payload(), "article")


@pytest.fixture
async def hidden_articles(harness, staff_news, users):
    """A draft and a staff-only article; neither may reach a student."""
    draft = harness.factory.create_article(users["staff"].id, {"status": "draft"})
    staff_only = harness.factory.create_article(users["staff"].id, {"visibility": "staff"})
    return [
        await create_resource(staff_news, "/api/news", draft.to_payload(), "article"),
        await create_resource(staff_news, "/api/news", staff_only.to_payload(), "article"),
    ]


@pytest.fixture
async def public_event(harness, users):
    client = await harness.authenticated_client("planning", users["teacher"])
    event = harness.factory.create_event(users["teacher"].id, {"visibility": "public"})
    return await create_resource(client, "/api/planning/events", event.to_payload(), "event")
