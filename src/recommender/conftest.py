"""Shared fixtures: in-memory stand-ins for ``AsyncElasticsearch`` and Redis.

``FakeEs`` understands the subset of the query DSL the engine uses
(``bool`` with filter/must/must_not/should, ``term``, ``terms``, ``range``,
``exists``, ``match_all``), sorting, ``_source`` filtering, real-time
``get``, ``index`` with ``op_type="create"``, partial and scripted counter
``update``, and ``delete_by_query``. Redis is faked just far enough for the
recommendation cache.
"""

import copy
import uuid

import pytest
from elastic_transport import ApiResponseMeta, HttpHeaders, NodeConfig
from elasticsearch import ConflictError, NotFoundError
from fastapi.testclient import TestClient

from .config import Settings
from .main import app
from .services import build_services


def _meta(status: int) -> ApiResponseMeta:
    return ApiResponseMeta(
        status=status,
        http_version="1.1",
        headers=HttpHeaders(),
        duration=0.0,
        node=NodeConfig("http", "localhost", 9200),
    )


def _values(doc: dict, field: str) -> list:
    value = doc.get(field)
    if value is None:
        return []
    if isinstance(value, list):
        return value
    return [value]


def _in_range(value, bounds: dict) -> bool:
    if value is None:
        return False
    for op, bound in bounds.items():
        if op == "gte" and not value >= bound:
            return False
        if op == "gt" and not value > bound:
            return False
        if op == "lte" and not value <= bound:
            return False
        if op == "lt" and not value < bound:
            return False
    return True


def matches(query: dict | None, doc: dict) -> bool:
    if not query or "match_all" in query:
        return True
    if "term" in query:
        (field, expected), = query["term"].items()
        if isinstance(expected, dict):
            expected = expected["value"]
        return expected in _values(doc, field)
    if "terms" in query:
        (field, expected), = query["terms"].items()
        return any(v in expected for v in _values(doc, field))
    if "range" in query:
        (field, bounds), = query["range"].items()
        return any(_in_range(v, bounds) for v in _values(doc, field))
    if "exists" in query:
        return bool(_values(doc, query["exists"]["field"]))
    if "bool" in query:
        clause = query["bool"]
        required = list(clause.get("filter", [])) + list(clause.get("must", []))
        if isinstance(clause.get("filter"), dict):
            required = [clause["filter"]] + list(clause.get("must", []))
        if not all(matches(q, doc) for q in required):
            return False
        if any(matches(q, doc) for q in clause.get("must_not", [])):
            return False
        should = clause.get("should", [])
        if should:
            minimum = clause.get("minimum_should_match", 0 if required else 1)
            if sum(1 for q in should if matches(q, doc)) < minimum:
                return False
        return True
    raise NotImplementedError(f"FakeEs does not support query {query!r}")


class FakeEs:
    def __init__(self):
        self.indices: dict[str, dict[str, dict]] = {}
        self.calls: list[tuple[str, str]] = []

    # -- seeding helpers ----------------------------------------------------

    def add(self, index: str, doc: dict, id: str | None = None) -> str:
        doc_id = id or doc.get("id") or uuid.uuid4().hex
        self.indices.setdefault(index, {})[doc_id] = copy.deepcopy(doc)
        return doc_id

    def docs(self, index: str) -> list[dict]:
        return list(self.indices.get(index, {}).values())

    # -- client API ---------------------------------------------------------

    async def search(self, *, index, query=None, size=10, sort=None, _source=None, **kwargs):
        self.calls.append(("search", index))
        docs = [
            (doc_id, doc)
            for doc_id, doc in self.indices.get(index, {}).items()
            if matches(query, doc)
        ]
        for spec in reversed(sort or []):
            (field, order), = spec.items()
            if isinstance(order, dict):
                order = order.get("order", "asc")
            present = [d for d in docs if d[1].get(field) is not None]
            missing = [d for d in docs if d[1].get(field) is None]
            present.sort(key=lambda d: d[1][field], reverse=(order == "desc"))
            docs = present + missing

        hits = []
        for doc_id, doc in docs[:size]:
            src = copy.deepcopy(doc)
            if isinstance(_source, list):
                src = {k: v for k, v in src.items() if k in _source}
            hits.append({"_index": index, "_id": doc_id, "_source": src})
        return {"hits": {"total": {"value": len(docs)}, "hits": hits}}

    async def get(self, *, index, id, **kwargs):
        self.calls.append(("get", index))
        doc = self.indices.get(index, {}).get(id)
        if doc is None:
            raise NotFoundError(message="not_found", meta=_meta(404), body={"found": False})
        return {"_index": index, "_id": id, "found": True, "_source": copy.deepcopy(doc)}

    async def index(self, *, index, document, id=None, op_type=None, **kwargs):
        self.calls.append(("index", index))
        docs = self.indices.setdefault(index, {})
        doc_id = id or uuid.uuid4().hex
        if op_type == "create" and doc_id in docs:
            raise ConflictError(
                message="version_conflict_engine_exception", meta=_meta(409), body={}
            )
        docs[doc_id] = copy.deepcopy(document)
        return {"_index": index, "_id": doc_id, "result": "created"}

    async def update(self, *, index, id, script=None, doc=None, **kwargs):
        self.calls.append(("update", index))
        docs = self.indices.setdefault(index, {})
        current = docs.get(id)
        if current is None:
            raise NotFoundError(message="document_missing_exception", meta=_meta(404), body={})
        if doc:
            current.update(copy.deepcopy(doc))
        if script:
            for key, amount in script.get("params", {}).get("increments", {}).items():
                current[key] = current.get(key, 0) + amount
        return {"_id": id, "result": "updated"}

    async def delete_by_query(self, *, index, query, **kwargs):
        self.calls.append(("delete_by_query", index))
        docs = self.indices.get(index, {})
        doomed = [doc_id for doc_id, doc in docs.items() if matches(query, doc)]
        for doc_id in doomed:
            del docs[doc_id]
        return {"deleted": len(doomed)}

    async def ping(self):
        return True

    async def close(self):
        pass


class FakeRedis:
    """In-memory stand-in for ``redis.asyncio.Redis`` with ``decode_responses=True``.

    Expiry is recorded in ``ttls`` but never enforced; the cache's own clock
    check covers that in tests.
    """

    def __init__(self):
        self.values: dict[str, str] = {}
        self.ttls: dict[str, int] = {}

    async def get(self, key):
        return self.values.get(key)

    async def set(self, key, value, ex=None):
        self.values[key] = value
        if ex is not None:
            self.ttls[key] = ex
        return True

    async def delete(self, *keys):
        removed = 0
        for key in keys:
            if self.values.pop(key, None) is not None:
                removed += 1
            self.ttls.pop(key, None)
        return removed

    async def ping(self):
        return True

    async def aclose(self):
        pass


@pytest.fixture
def fake_es():
    return FakeEs()


@pytest.fixture
def fake_redis():
    return FakeRedis()


@pytest.fixture
def settings(monkeypatch):
    monkeypatch.setenv("AUTH_SECRET", "test-secret")
    monkeypatch.setenv("EMBEDDING_PROVIDER", "local")
    monkeypatch.setenv("API_KEY", "test-api-key-12345")
    return Settings()


@pytest.fixture
def services(fake_es, fake_redis, settings):
    return build_services(fake_es, settings, fake_redis)


@pytest.fixture
def client(services):
    """TestClient wired to the in-memory services (lifespan not run)."""
    app.state.services = services
    yield TestClient(app)
    del app.state.services


@pytest.fixture
def auth_headers(services):
    def _headers(user_id: str) -> dict[str, str]:
        return {"Authorization": f"Bearer {services.identity.issue(user_id)}"}

    return _headers
