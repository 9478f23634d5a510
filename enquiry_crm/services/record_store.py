"""
╔══════════════════════════════════════════════════════════════════════════════╗
║  ENQUIRY CRM - Record Store Adapter                                          ║
║                                                                              ║
║  One adapter per collection (enquiries, payments, users, advertisements...)  ║
║                                                                              ║
║  Contract:                                                                   ║
║  - get_all / get / find     -> records without Mongo _id                     ║
║  - add / update / delete    -> StoreResult(success, id, error)               ║
║  - bulk_add                 -> all-or-nothing batch insert                   ║
║                                                                              ║
║  A missing record is a normal result (success=False).                        ║
║  A communication failure is ALWAYS raised as StoreError, never an empty      ║
║  list or a silent False.                                                     ║
╚══════════════════════════════════════════════════════════════════════════════╝
"""

import logging
import uuid
from typing import Any, Dict, List, Optional

from pymongo import ASCENDING, DESCENDING
from pymongo.errors import PyMongoError

logger = logging.getLogger("record_store")


class StoreError(Exception):
    """Raised when the document store cannot be reached or rejects an operation."""

    def __init__(self, collection: str, operation: str, cause: Exception = None):
        self.collection = collection
        self.operation = operation
        self.cause = cause
        super().__init__(f"{collection}.{operation} failed: {cause}")


class StoreResult:
    """Outcome of a write against a collection"""

    def __init__(self, success: bool, id: Optional[str] = None, error: Optional[str] = None):
        self.success = success
        self.id = id
        self.error = error

    def to_dict(self) -> Dict[str, Any]:
        return {"success": self.success, "id": self.id, "error": self.error}

    def __repr__(self):
        return f"StoreResult(success={self.success!r}, id={self.id!r}, error={self.error!r})"


class RecordStore:
    """Base class for a collection adapter."""

    name = "records"

    async def get_all(self) -> List[Dict]:
        raise NotImplementedError

    async def get(self, record_id: str) -> Optional[Dict]:
        raise NotImplementedError

    async def find(self, **equals) -> List[Dict]:
        raise NotImplementedError

    async def find_page(
        self, query: Dict, sort_by: str, skip: int = 0, limit: int = 100, descending: bool = True
    ) -> List[Dict]:
        raise NotImplementedError

    async def count(self, query: Dict) -> int:
        raise NotImplementedError

    async def add(self, record: Dict) -> StoreResult:
        raise NotImplementedError

    async def update(self, record_id: str, partial: Dict) -> StoreResult:
        raise NotImplementedError

    async def delete(self, record_id: str) -> StoreResult:
        raise NotImplementedError

    async def bulk_add(self, records: List[Dict]) -> StoreResult:
        raise NotImplementedError


def new_record_id() -> str:
    return str(uuid.uuid4())


class MotorRecordStore(RecordStore):
    """RecordStore backed by a motor collection. Records are keyed by a string ``id``."""

    def __init__(self, collection):
        self.collection = collection
        self.name = collection.name

    def _fail(self, operation: str, e: Exception) -> StoreError:
        logger.error(f"[STORE] {self.name}.{operation} failed: {e}")
        return StoreError(self.name, operation, e)

    async def get_all(self) -> List[Dict]:
        try:
            return await self.collection.find({}, {"_id": 0}).to_list(length=None)
        except PyMongoError as e:
            raise self._fail("get_all", e) from e

    async def get(self, record_id: str) -> Optional[Dict]:
        try:
            return await self.collection.find_one({"id": record_id}, {"_id": 0})
        except PyMongoError as e:
            raise self._fail("get", e) from e

    async def find(self, **equals) -> List[Dict]:
        try:
            return await self.collection.find(equals, {"_id": 0}).to_list(length=None)
        except PyMongoError as e:
            raise self._fail("find", e) from e

    async def find_page(
        self, query: Dict, sort_by: str, skip: int = 0, limit: int = 100, descending: bool = True
    ) -> List[Dict]:
        """One page of matching records, sorted server-side."""
        try:
            cursor = self.collection.find(query, {"_id": 0}) \
                .sort(sort_by, DESCENDING if descending else ASCENDING) \
                .skip(skip) \
                .limit(limit)
            return await cursor.to_list(length=limit or None)
        except PyMongoError as e:
            raise self._fail("find_page", e) from e

    async def count(self, query: Dict) -> int:
        try:
            return await self.collection.count_documents(query)
        except PyMongoError as e:
            raise self._fail("count", e) from e

    async def add(self, record: Dict) -> StoreResult:
        doc = dict(record)
        doc.setdefault("id", new_record_id())
        try:
            # insert_one mutates its argument with _id, hence the copy
            await self.collection.insert_one(dict(doc))
        except PyMongoError as e:
            raise self._fail("add", e) from e
        return StoreResult(True, id=doc["id"])

    async def update(self, record_id: str, partial: Dict) -> StoreResult:
        changes = {k: v for k, v in partial.items() if k not in ("id", "_id")}
        if not changes:
            found = await self.get(record_id)
            return StoreResult(found is not None, id=record_id, error=None if found else "Record not found")
        try:
            result = await self.collection.update_one({"id": record_id}, {"$set": changes})
        except PyMongoError as e:
            raise self._fail("update", e) from e
        if result.matched_count == 0:
            return StoreResult(False, id=record_id, error="Record not found")
        return StoreResult(True, id=record_id)

    async def delete(self, record_id: str) -> StoreResult:
        try:
            result = await self.collection.delete_one({"id": record_id})
        except PyMongoError as e:
            raise self._fail("delete", e) from e
        if result.deleted_count == 0:
            return StoreResult(False, id=record_id, error="Record not found")
        return StoreResult(True, id=record_id)

    async def bulk_add(self, records: List[Dict]) -> StoreResult:
        if not records:
            return StoreResult(True)
        docs = []
        for record in records:
            doc = dict(record)
            doc.setdefault("id", new_record_id())
            docs.append(doc)
        ids = [d["id"] for d in docs]
        try:
            await self.collection.insert_many([dict(d) for d in docs], ordered=True)
        except PyMongoError as e:
            # Roll back whatever part of the batch made it in
            try:
                await self.collection.delete_many({"id": {"$in": ids}})
            except PyMongoError as cleanup_error:
                logger.error(f"[STORE] {self.name}.bulk_add rollback failed: {cleanup_error}")
            raise self._fail("bulk_add", e) from e
        logger.info(f"[STORE] {self.name}.bulk_add inserted {len(docs)} records")
        return StoreResult(True)
