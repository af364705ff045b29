import pytest
from fakeredis import FakeAsyncRedis, FakeServer
from httpx import ASGITransport, AsyncClient

from core.cache import ReadThroughCache, get_cache
from core.config import API_KEY_COLLECTION, COVID_COLLECTION
from core.database import get_db
from main import app


class FakeCursor:
    def __init__(self, docs):
        self.docs = docs

    async def to_list(self, length=None):
        return list(self.docs)


def _field(doc, ref):
    return doc.get(ref[1:]) if isinstance(ref, str) and ref.startswith("$") else ref


def _evaluate(doc, expr):
    """The handful of aggregation expressions the service builds."""
    if isinstance(expr, dict) and "$convert" in expr:
        spec = expr["$convert"]
        value = _field(doc, spec["input"])
        if value is None:
            return spec["onNull"]
        try:
            return float(value)
        except (TypeError, ValueError):
            return spec["onError"]
    return _field(doc, expr)


def _matches(doc, query):
    for key, cond in query.items():
        value = doc.get(key)
        if not isinstance(cond, dict):
            if value != cond:
                return False
            continue
        if "$in" in cond and value not in cond["$in"]:
            return False
        if "$gte" in cond and not (value is not None and value >= cond["$gte"]):
            return False
        if "$lte" in cond and not (value is not None and value <= cond["$lte"]):
            return False
    return True


def _group(docs, spec):
    groups = {}
    for doc in docs:
        groups.setdefault(_field(doc, spec["_id"]), []).append(doc)

    out = []
    for group_id, members in groups.items():
        row = {"_id": group_id}
        for name, acc in spec.items():
            if name == "_id":
                continue
            (op, expr), = acc.items()
            values = [v for v in (_evaluate(m, expr) for m in members) if isinstance(v, (int, float))]
            if op == "$sum":
                row[name] = sum(values)
            elif op == "$avg":
                row[name] = sum(values) / len(values) if values else None
        out.append(row)
    return out


def _project(doc, spec):
    row = {}
    for name, rule in spec.items():
        if rule == 0:
            continue
        if rule == 1:
            if name in doc:
                row[name] = doc[name]
        else:
            row[name] = _field(doc, rule)
    if spec.get("_id", 1) != 0 and "_id" in doc:
        row.setdefault("_id", doc["_id"])
    return row


def run_pipeline(records, pipeline):
    docs = [dict(r) for r in records]
    for stage in pipeline:
        (op, spec), = stage.items()
        if op == "$match":
            docs = [d for d in docs if _matches(d, spec)]
        elif op == "$sort":
            for key, direction in reversed(list(spec.items())):
                docs.sort(key=lambda d: (d.get(key) is not None, d.get(key)), reverse=direction < 0)
        elif op == "$limit":
            docs = docs[:spec]
        elif op == "$group":
            docs = _group(docs, spec)
        elif op == "$project":
            docs = [_project(d, spec) for d in docs]
        else:
            raise NotImplementedError(op)
    return docs


class FakeCollection:
    """Stand-in for an AsyncCollection.

    With ``records`` set, pipelines run over those raw documents; otherwise
    the canned ``rows`` are replayed as the aggregation result.
    """

    def __init__(self, rows=None, docs=None, records=None):
        self.rows = rows or []
        self.docs = docs or []
        self.records = records
        self.pipelines = []
        self.aggregate_kwargs = []

    async def aggregate(self, pipeline, **kwargs):
        self.pipelines.append(pipeline)
        self.aggregate_kwargs.append(kwargs)
        if self.records is not None:
            return FakeCursor(run_pipeline(self.records, pipeline))
        return FakeCursor(self.rows)

    async def find_one(self, query):
        for doc in self.docs:
            if all(doc.get(k) == v for k, v in query.items()):
                return doc
        return None


class FakeDatabase:
    def __init__(self):
        self.collections = {
            COVID_COLLECTION: FakeCollection(),
            API_KEY_COLLECTION: FakeCollection(),
        }

    def __getitem__(self, name):
        return self.collections[name]

    @property
    def covid(self) -> FakeCollection:
        return self.collections[COVID_COLLECTION]

    @property
    def api_keys(self) -> FakeCollection:
        return self.collections[API_KEY_COLLECTION]


@pytest.fixture
def db():
    return FakeDatabase()


@pytest.fixture
def redis_client():
    return FakeAsyncRedis(server=FakeServer(), decode_responses=True)


@pytest.fixture
def cache(redis_client):
    return ReadThroughCache(redis_client)


@pytest.fixture
async def client(db, cache):
    app.dependency_overrides[get_db] = lambda: db
    app.dependency_overrides[get_cache] = lambda: cache
    async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as ac:
        yield ac
    app.dependency_overrides.clear()
