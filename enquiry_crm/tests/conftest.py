"""
ENQUIRY CRM - shared test fixtures
In-memory RecordStore double with call tracking and failure injection.
Run: pytest enquiry_crm/tests -v
"""

import asyncio
import copy
import uuid
from datetime import timedelta

import pytest

from enquiry_crm.config import today_local
from enquiry_crm.services.advertisement_import import AdvertisementImporter
from enquiry_crm.services.enquiry_engine import EnquiryEngine
from enquiry_crm.services.identity import IdentityService
from enquiry_crm.services.payment_ledger import PaymentLedger
from enquiry_crm.services.permissions import Session
from enquiry_crm.services.record_store import RecordStore, StoreError, StoreResult


class InMemoryStore(RecordStore):
    """Dict-backed store. ``calls`` lists every operation, ``fail_on`` makes one raise."""

    def __init__(self, name="records", records=None):
        self.name = name
        self.records = {}
        self.calls = []
        self.fail_on = set()
        self.bulk_batches = []
        for record in records or []:
            record = dict(record)
            record.setdefault("id", str(uuid.uuid4()))
            self.records[record["id"]] = record

    def _call(self, operation):
        self.calls.append(operation)
        if operation in self.fail_on:
            raise StoreError(self.name, operation, ConnectionError("connection lost"))

    async def get_all(self):
        self._call("get_all")
        return [copy.deepcopy(r) for r in self.records.values()]

    async def get(self, record_id):
        self._call("get")
        record = self.records.get(record_id)
        return copy.deepcopy(record) if record else None

    async def find(self, **equals):
        self._call("find")
        return [
            copy.deepcopy(r) for r in self.records.values()
            if all(r.get(k) == v for k, v in equals.items())
        ]

    async def find_page(self, query, sort_by, skip=0, limit=100, descending=True):
        self._call("find_page")
        matches = [r for r in self.records.values() if all(r.get(k) == v for k, v in query.items())]
        matches.sort(key=lambda r: r.get(sort_by, ""), reverse=descending)
        page = matches[skip:skip + limit] if limit else matches[skip:]
        return [copy.deepcopy(r) for r in page]

    async def count(self, query):
        self._call("count")
        return sum(1 for r in self.records.values() if all(r.get(k) == v for k, v in query.items()))

    async def add(self, record):
        self._call("add")
        doc = copy.deepcopy(record)
        doc.setdefault("id", str(uuid.uuid4()))
        self.records[doc["id"]] = doc
        return StoreResult(True, id=doc["id"])

    async def update(self, record_id, partial):
        self._call("update")
        if record_id not in self.records:
            return StoreResult(False, id=record_id, error="Record not found")
        self.records[record_id].update(copy.deepcopy({k: v for k, v in partial.items() if k != "id"}))
        return StoreResult(True, id=record_id)

    async def delete(self, record_id):
        self._call("delete")
        if self.records.pop(record_id, None) is None:
            return StoreResult(False, id=record_id, error="Record not found")
        return StoreResult(True, id=record_id)

    async def bulk_add(self, records):
        self._call("bulk_add")
        self.bulk_batches.append(copy.deepcopy(records))
        for record in records:
            doc = copy.deepcopy(record)
            doc.setdefault("id", str(uuid.uuid4()))
            self.records[doc["id"]] = doc
        return StoreResult(True)


def run(coro):
    """Run async setup code from a sync fixture."""
    loop = asyncio.new_event_loop()
    try:
        return loop.run_until_complete(coro)
    finally:
        loop.close()


def make_enquiry(**overrides):
    """A valid Pending enquiry with a call back tomorrow."""
    data = {
        "fullName": "Ravi Kumar",
        "mobile": "9876543210",
        "email": "ravi.kumar@example.com",
        "address": "12 MG Road, Bengaluru",
        "enquiryDistrict": "Bengaluru Urban",
        "education": "B.Tech",
        "interestedStatus": "25% Interested",
        "callBackDate": (today_local() + timedelta(days=1)).isoformat(),
        "totalFees": "5000",
    }
    data.update(overrides)
    return data


@pytest.fixture
def enquiry_store():
    return InMemoryStore("enquiries")


@pytest.fixture
def payment_store():
    return InMemoryStore("payments")


@pytest.fixture
def ledger(payment_store):
    return PaymentLedger(payment_store)


@pytest.fixture
def engine(enquiry_store, ledger):
    return EnquiryEngine(enquiry_store, ledger)


@pytest.fixture
def advertisement_store():
    return InMemoryStore("advertisements")


@pytest.fixture
def importer(advertisement_store):
    return AdvertisementImporter(advertisement_store)


@pytest.fixture
def identity():
    return IdentityService(InMemoryStore("users"), InMemoryStore("identities"), InMemoryStore("sessions"))


@pytest.fixture
def admin_session():
    return Session({"id": "u-admin", "email": "admin@example.com", "role": "admin", "permissions": []})


@pytest.fixture
def user_session():
    return Session({
        "id": "u-staff",
        "email": "staff@example.com",
        "role": "user",
        "permissions": ["Add Enquiry", "View Enquiry"],
    })
