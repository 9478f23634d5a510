"""
ENQUIRY CRM - Mongo Record Store Tests
Uses a stand-in motor collection; no database needed.
"""

import pytest
from pymongo import DESCENDING
from pymongo.errors import AutoReconnect

from enquiry_crm.services.record_store import MotorRecordStore, StoreError


class FakeResult:
    def __init__(self, matched_count=0, deleted_count=0):
        self.matched_count = matched_count
        self.deleted_count = deleted_count


class FakeCursor:
    def __init__(self, docs):
        self.docs = docs
        self.steps = []

    def sort(self, field, direction):
        self.steps.append(("sort", field, direction))
        self.docs = sorted(self.docs, key=lambda d: d.get(field, ""), reverse=direction == DESCENDING)
        return self

    def skip(self, count):
        self.steps.append(("skip", count))
        self.docs = self.docs[count:]
        return self

    def limit(self, count):
        self.steps.append(("limit", count))
        self.docs = self.docs[:count]
        return self

    async def to_list(self, length=None):
        return self.docs


class FakeCollection:
    """Just enough of AsyncIOMotorCollection for the adapter"""

    def __init__(self, name="enquiries"):
        self.name = name
        self.docs = []
        self.fail = set()
        self.deleted_filters = []
        self.cursors = []

    def _check(self, op):
        if op in self.fail:
            raise AutoReconnect("connection refused")

    def find(self, query, projection=None):
        self._check("find")
        matches = [d for d in self.docs if all(d.get(k) == v for k, v in query.items())]
        cursor = FakeCursor([{k: v for k, v in d.items() if k != "_id"} for d in matches])
        self.cursors.append(cursor)
        return cursor

    async def count_documents(self, query):
        self._check("count_documents")
        return sum(1 for d in self.docs if all(d.get(k) == v for k, v in query.items()))

    async def find_one(self, query, projection=None):
        self._check("find_one")
        for d in self.docs:
            if all(d.get(k) == v for k, v in query.items()):
                return {k: v for k, v in d.items() if k != "_id"}
        return None

    async def insert_one(self, doc):
        self._check("insert_one")
        doc["_id"] = object()
        self.docs.append(doc)

    async def insert_many(self, docs, ordered=True):
        # first document lands, then the connection drops
        self.docs.append(docs[0])
        self._check("insert_many")
        self.docs.extend(docs[1:])

    async def update_one(self, query, update):
        self._check("update_one")
        for d in self.docs:
            if d.get("id") == query["id"]:
                d.update(update["$set"])
                return FakeResult(matched_count=1)
        return FakeResult()

    async def delete_one(self, query):
        self._check("delete_one")
        before = len(self.docs)
        self.docs = [d for d in self.docs if d.get("id") != query["id"]]
        return FakeResult(deleted_count=before - len(self.docs))

    async def delete_many(self, query):
        self.deleted_filters.append(query)
        ids = set(query["id"]["$in"])
        self.docs = [d for d in self.docs if d.get("id") not in ids]


@pytest.fixture
def collection():
    return FakeCollection()


@pytest.fixture
def store(collection):
    return MotorRecordStore(collection)


class TestMotorRecordStore:
    @pytest.mark.asyncio
    async def test_add_assigns_id_without_leaking_object_id(self, store):
        record = {"fullName": "Asha"}
        result = await store.add(record)
        assert result.success and result.id
        assert "id" not in record

        fetched = await store.get(result.id)
        assert fetched == {"id": result.id, "fullName": "Asha"}

    @pytest.mark.asyncio
    async def test_update_missing_record(self, store):
        result = await store.update("nope", {"fullName": "X"})
        assert result.success is False
        assert result.error == "Record not found"

    @pytest.mark.asyncio
    async def test_empty_update_checks_existence(self, store):
        added = await store.add({"fullName": "Asha"})
        assert (await store.update(added.id, {"id": "ignored"})).success is True
        assert (await store.update("nope", {})).success is False

    @pytest.mark.asyncio
    async def test_delete(self, store):
        added = await store.add({"fullName": "Asha"})
        assert (await store.delete(added.id)).success is True
        assert (await store.delete(added.id)).success is False

    @pytest.mark.asyncio
    async def test_failures_raise_store_error(self, store, collection):
        collection.fail.add("find")
        with pytest.raises(StoreError) as exc:
            await store.get_all()
        assert exc.value.collection == "enquiries"
        assert exc.value.operation == "get_all"

    @pytest.mark.asyncio
    async def test_bulk_add_rolls_back_partial_batch(self, store, collection):
        collection.fail.add("insert_many")
        with pytest.raises(StoreError):
            await store.bulk_add([{"name": "a"}, {"name": "b"}, {"name": "c"}])
        assert collection.docs == []
        assert len(collection.deleted_filters[0]["id"]["$in"]) == 3

    @pytest.mark.asyncio
    async def test_bulk_add_empty(self, store, collection):
        assert (await store.bulk_add([])).success is True
        assert collection.docs == []

    @pytest.mark.asyncio
    async def test_find_page_sorts_and_pages_in_the_query(self, store, collection):
        for day in ("01", "03", "02"):
            collection.docs.append({"id": day, "action": "login", "createdAt": f"2025-01-{day}"})
        collection.docs.append({"id": "x", "action": "logout", "createdAt": "2025-01-04"})

        page = await store.find_page({"action": "login"}, "createdAt", skip=1, limit=1)

        assert [d["id"] for d in page] == ["02"]
        assert collection.cursors[-1].steps == [("sort", "createdAt", DESCENDING), ("skip", 1), ("limit", 1)]
        assert await store.count({"action": "login"}) == 3

    @pytest.mark.asyncio
    async def test_count_failure_raises_store_error(self, store, collection):
        collection.fail.add("count_documents")
        with pytest.raises(StoreError) as exc:
            await store.count({})
        assert exc.value.operation == "count"
