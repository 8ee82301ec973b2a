"""
Shared fixtures: an in-memory stand-in for the Motor collections used by the
services, and httpx clients backed by MockTransport for the providers.
"""
import copy
import json
from datetime import datetime, timezone
from types import SimpleNamespace

import httpx
import pytest

from services.channel_service import DeliveryChannels, LineSender, SmsSender


# ── In-memory Mongo ──────────────────────────────────────────────────────────

def _match_condition(value, cond) -> bool:
    if isinstance(cond, dict) and any(k.startswith("$") for k in cond):
        for op, arg in cond.items():
            if op == "$ne":
                if value == arg:
                    return False
            elif op == "$in":
                if value not in arg:
                    return False
            elif op in ("$gte", "$lte", "$gt", "$lt"):
                if value is None:
                    return False
                if op == "$gte" and not value >= arg:
                    return False
                if op == "$lte" and not value <= arg:
                    return False
                if op == "$gt" and not value > arg:
                    return False
                if op == "$lt" and not value < arg:
                    return False
            else:
                raise NotImplementedError(op)
        return True
    return value == cond


def _matches(doc: dict, query: dict) -> bool:
    return all(_match_condition(doc.get(field), cond) for field, cond in query.items())


def _project(doc: dict, projection) -> dict:
    doc = copy.deepcopy(doc)
    if not projection:
        return doc
    included = [k for k, v in projection.items() if v and k != "_id"]
    if included:
        return {k: doc[k] for k in included if k in doc}
    return {k: v for k, v in doc.items() if projection.get(k, 1)}


class FakeCursor:
    def __init__(self, docs: list[dict]):
        self._docs = docs

    def sort(self, key: str, direction: int = 1):
        self._docs.sort(
            key=lambda d: (d.get(key) is not None, d.get(key)),
            reverse=direction < 0,
        )
        return self

    def skip(self, n: int):
        self._docs = self._docs[n:]
        return self

    def limit(self, n: int):
        if n:
            self._docs = self._docs[:n]
        return self

    async def to_list(self, length=None):
        return self._docs if length is None else self._docs[:length]


class FakeCollection:
    def __init__(self, name: str):
        self.name = name
        self.docs: list[dict] = []
        self.fail_on: set[str] = set()

    def _maybe_fail(self, op: str):
        if op in self.fail_on:
            raise RuntimeError(f"{self.name}.{op} unavailable")

    async def insert_one(self, doc: dict):
        self._maybe_fail("insert_one")
        self.docs.append(copy.deepcopy(doc))
        return SimpleNamespace(inserted_id=len(self.docs))

    def find(self, query: dict, projection=None) -> FakeCursor:
        self._maybe_fail("find")
        return FakeCursor([_project(d, projection) for d in self.docs if _matches(d, query)])

    async def find_one(self, query: dict, projection=None):
        self._maybe_fail("find_one")
        for d in self.docs:
            if _matches(d, query):
                return _project(d, projection)
        return None

    async def count_documents(self, query: dict) -> int:
        self._maybe_fail("count_documents")
        return sum(1 for d in self.docs if _matches(d, query))

    async def update_many(self, query: dict, update: dict):
        self._maybe_fail("update_many")
        modified = 0
        for d in self.docs:
            if _matches(d, query):
                d.update(update.get("$set", {}))
                modified += 1
        return SimpleNamespace(matched_count=modified, modified_count=modified)


class FakeDatabase:
    def __init__(self):
        self._collections: dict[str, FakeCollection] = {}

    def __getattr__(self, name: str) -> FakeCollection:
        if name.startswith("_"):
            raise AttributeError(name)
        if name not in self._collections:
            self._collections[name] = FakeCollection(name)
        return self._collections[name]

    def __getitem__(self, name: str) -> FakeCollection:
        return getattr(self, name)


@pytest.fixture
def db():
    return FakeDatabase()


@pytest.fixture
def now():
    return datetime.now(timezone.utc)


# ── Providers ────────────────────────────────────────────────────────────────

class ProviderStub:
    """Records every provider request; per-address failures are opt-in."""

    LINE_URL = "https://line.test/v2/bot/message/push"
    SMS_URL = "https://sms.test/v1/send"

    def __init__(self):
        self.requests: list[httpx.Request] = []
        self.fail_status: dict[str, int] = {}   # address → HTTP status
        self.timeout_for: set[str] = set()

    def __call__(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        payload = json.loads(request.content)
        address = payload.get("to")
        if address in self.timeout_for:
            raise httpx.ReadTimeout("provider hung", request=request)
        if address in self.fail_status:
            return httpx.Response(self.fail_status[address], text=f"rejected {address}")
        return httpx.Response(200, json={"ok": True})

    def sent_to(self, kind: str) -> list[str]:
        url = self.LINE_URL if kind == "line" else self.SMS_URL
        return [json.loads(r.content)["to"] for r in self.requests if str(r.url) == url]


@pytest.fixture
def provider():
    return ProviderStub()


@pytest.fixture
def make_channels(db, provider):
    """Builds a DeliveryChannels bundle; pass sms=False to leave SMS unconfigured."""
    def _make(line: bool = True, sms: bool = True, database=None) -> DeliveryChannels:
        http = httpx.AsyncClient(transport=httpx.MockTransport(provider), timeout=1.0)
        return DeliveryChannels(
            db=database or db,
            line=LineSender(http, "line-token" if line else None, provider.LINE_URL),
            sms=SmsSender(http, provider.SMS_URL if sms else None, "sms-key" if sms else None, "SSO"),
        )
    return _make
