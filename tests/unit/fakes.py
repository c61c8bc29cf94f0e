"""
In-memory stand-ins for the Motor client, database and collection.

Only the calls the harness and the stub platform make are implemented. Query
documents support plain equality, `$in` and `$ne`; updates support `$set`,
`$unset` and `$inc`.
"""
import copy
from types import SimpleNamespace

from bson import ObjectId


def _matches(doc: dict, query: dict) -> bool:
    for key, condition in query.items():
        value = doc.get(key)
        if isinstance(condition, dict) and any(k.startswith("$") for k in condition):
            if "$in" in condition and value not in condition["$in"]:
                return False
            if "$ne" in condition and value == condition["$ne"]:
                return False
        elif value != condition:
            return False
    return True


class FakeCursor:
    def __init__(self, docs):
        self._docs = docs

    async def to_list(self, length=None):
        return self._docs if length is None else self._docs[:length]


class FakeCollection:
    def __init__(self, name: str):
        self.name = name
        self.docs: list[dict] = []
        self.indexes: list[tuple] = []
        self.fail_with: Exception | None = None

    def _check(self):
        if self.fail_with is not None:
            raise self.fail_with

    async def insert_one(self, doc: dict):
        self._check()
        doc = copy.deepcopy(doc)
        doc.setdefault("_id", ObjectId())
        self.docs.append(doc)
        return SimpleNamespace(inserted_id=doc["_id"])

    async def find_one(self, query: dict | None = None):
        self._check()
        for doc in self.docs:
            if _matches(doc, query or {}):
                return copy.deepcopy(doc)
        return None

    def find(self, query: dict | None = None):
        return FakeCursor([copy.deepcopy(d) for d in self.docs if _matches(d, query or {})])

    async def update_one(self, query: dict, update: dict):
        self._check()
        for doc in self.docs:
            if _matches(doc, query):
                for key, value in update.get("$set", {}).items():
                    doc[key] = value
                for key in update.get("$unset", {}):
                    doc.pop(key, None)
                for key, value in update.get("$inc", {}).items():
                    doc[key] = doc.get(key, 0) + value
                return SimpleNamespace(matched_count=1, modified_count=1)
        return SimpleNamespace(matched_count=0, modified_count=0)

    async def delete_one(self, query: dict):
        self._check()
        for i, doc in enumerate(self.docs):
            if _matches(doc, query):
                del self.docs[i]
                return SimpleNamespace(deleted_count=1)
        return SimpleNamespace(deleted_count=0)

    async def delete_many(self, query: dict):
        self._check()
        keep = [d for d in self.docs if not _matches(d, query)]
        deleted = len(self.docs) - len(keep)
        self.docs = keep
        return SimpleNamespace(deleted_count=deleted)

    async def count_documents(self, query: dict):
        self._check()
        return sum(1 for d in self.docs if _matches(d, query))

    async def create_index(self, keys, **kwargs):
        self._check()
        if isinstance(keys, str):
            name = f"{keys}_1"
        else:
            name = kwargs.get("name") or "_".join(f"{k}_{d}" for k, d in keys)
        self.indexes.append((keys, kwargs))
        return name

    async def drop(self):
        self.docs = []
        self.indexes = []


class FakeDatabase:
    def __init__(self, name: str):
        self.name = name
        self.collections: dict[str, FakeCollection] = {}
        self.ping_error: Exception | None = None

    def __getitem__(self, name: str) -> FakeCollection:
        if name not in self.collections:
            self.collections[name] = FakeCollection(name)
        return self.collections[name]

    async def list_collection_names(self):
        return list(self.collections)

    async def command(self, name: str):
        if self.ping_error is not None:
            raise self.ping_error
        return {"ok": 1}


class FakeMotorClient:
    def __init__(self):
        self.databases: dict[str, FakeDatabase] = {}
        self.closed = False
        self.connect_calls = 0

    def __getitem__(self, name: str) -> FakeDatabase:
        if name not in self.databases:
            self.databases[name] = FakeDatabase(name)
        return self.databases[name]

    def close(self):
        self.closed = True

    def factory(self, uri=None, **kwargs):
        """Stand-in for `AsyncIOMotorClient(uri, **kwargs)` returning this client."""
        self.connect_calls += 1
        self.closed = False
        return self
