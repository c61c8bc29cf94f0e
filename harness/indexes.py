"""
MongoDB index definitions for the platform collections the harness seeds.

Mirrors the indexes the services create themselves, so data inserted directly
by the harness collides the same way (unique email, unique course code).
"""
import logging

logger = logging.getLogger(__name__)

# { "collection_name": [ (field_or_list, kwargs), ... ] }
INDEX_DEFINITIONS = {
    "users": [
        ("email", {"unique": True}),
        ("role", {}),
        ("isActive", {}),
    ],
    "courses": [
        ("code", {"unique": True}),
        ("instructor", {}),
        ("status", {}),
    ],
    "calendarevents": [
        ([("startDate", 1), ("endDate", 1)], {"name": "events_date_range_idx"}),
        ("organizer", {}),
    ],
}


async def ensure_indexes(db, collections=None) -> list[str]:
    """
    Create indexes for the given collections (all when None).

    Returns the names of the indexes that were created; failures are logged
    and skipped so one conflicting index does not block the others.
    """
    targets = collections or list(INDEX_DEFINITIONS.keys())
    created = []

    for coll_name in targets:
        definitions = INDEX_DEFINITIONS.get(coll_name, [])
        coll = db[coll_name]
        for keys, kwargs in definitions:
            try:
                name = await coll.create_index(keys, **kwargs)
                created.append(name)
            except Exception as e:
                logger.warning("Index on %s.%s skipped: %s", coll_name, keys, e)

    logger.info("Test indexes ensured for %d collection(s): %d created", len(targets), len(created))
    return created
