"""
Shared fixtures: an in-memory stand-in for the Motor collections the app
touches, a scripted AI responder, and a TestClient wired to both.
"""
import copy
import itertools
import re
from types import SimpleNamespace

import pytest
from fastapi.testclient import TestClient

from chat_lifecycle import FallbackMonitor
from database import get_database
from models import User
from security import get_password_hash, issue_token_for
from server import app, get_ai_responder, get_fallback_monitor

_MISSING = object()
_ids = itertools.count(1)


def _get_path(doc, path):
    current = doc
    for part in path.split("."):
        if isinstance(current, dict) and part in current:
            current = current[part]
        else:
            return _MISSING
    return current


def _set_path(doc, path, value):
    parts = path.split(".")
    current = doc
    for part in parts[:-1]:
        current = current.setdefault(part, {})
    current[parts[-1]] = value


def _compare(op, value, arg):
    if value is _MISSING or value is None:
        return False
    return op(value, arg)


def _regex(value, pattern, options):
    if not isinstance(value, str):
        return False
    flags = re.IGNORECASE if "i" in (options or "") else 0
    return re.search(pattern, value, flags) is not None


def _matches(doc, query):
    for key, cond in query.items():
        if key == "$or":
            if not any(_matches(doc, sub) for sub in cond):
                return False
            continue
        value = _get_path(doc, key)
        if isinstance(cond, dict) and cond and all(k.startswith("$") for k in cond):
            for op, arg in cond.items():
                if op == "$gte" and not _compare(lambda a, b: a >= b, value, arg):
                    return False
                if op == "$gt" and not _compare(lambda a, b: a > b, value, arg):
                    return False
                if op == "$lt" and not _compare(lambda a, b: a < b, value, arg):
                    return False
                if op == "$lte" and not _compare(lambda a, b: a <= b, value, arg):
                    return False
                if op == "$ne" and (None if value is _MISSING else value) == arg:
                    return False
                if op == "$in" and (value is _MISSING or value not in arg):
                    return False
                if op == "$regex" and not _regex(value, arg, cond.get("$options")):
                    return False
        elif cond is None:
            if value is not _MISSING and value is not None:
                return False
        elif value is _MISSING or value != cond:
            return False
    return True


def _project(doc, projection):
    doc = copy.deepcopy(doc)
    if not projection:
        return doc
    include = [k for k, v in projection.items() if v and k != "_id"]
    if include:
        out = {k: doc[k] for k in include if k in doc}
        if projection.get("_id", 1) and "_id" in doc:
            out["_id"] = doc["_id"]
        return out
    for key, flag in projection.items():
        if not flag:
            doc.pop(key, None)
    return doc


def _sort_key(value):
    if value is _MISSING or value is None:
        return (0, 0)
    return (1, value)


class FakeCursor:
    def __init__(self, docs):
        self._docs = list(docs)
        self._skip = 0
        self._limit = 0

    def sort(self, key_or_list, direction=None):
        keys = key_or_list if isinstance(key_or_list, list) else [(key_or_list, direction or 1)]
        for key, order in reversed(keys):
            self._docs.sort(key=lambda d: _sort_key(_get_path(d, key)), reverse=order == -1)
        return self

    def skip(self, n):
        self._skip = n
        return self

    def limit(self, n):
        self._limit = n
        return self

    async def to_list(self, length=None):
        docs = self._docs[self._skip:]
        if self._limit:
            docs = docs[:self._limit]
        if length:
            docs = docs[:length]
        return docs


def _eval_expr(doc, expr):
    if isinstance(expr, str) and expr.startswith("$"):
        value = _get_path(doc, expr[1:])
        return None if value is _MISSING else value
    if isinstance(expr, dict) and "$dateToString" in expr:
        args = expr["$dateToString"]
        value = _eval_expr(doc, args["date"])
        return value.strftime(args["format"]) if value is not None else None
    return expr


def _group(docs, args):
    buckets = {}
    for doc in docs:
        key = _eval_expr(doc, args["_id"])
        buckets.setdefault(key, []).append(doc)

    rows = []
    for key, members in buckets.items():
        row = {"_id": key}
        for field, acc in args.items():
            if field == "_id":
                continue
            (op, arg), = acc.items()
            values = [_eval_expr(d, arg) for d in members]
            if op == "$sum":
                row[field] = sum(v for v in values if isinstance(v, (int, float)))
            elif op == "$avg":
                numbers = [v for v in values if isinstance(v, (int, float)) and not isinstance(v, bool)]
                row[field] = sum(numbers) / len(numbers) if numbers else None
        rows.append(row)
    return rows


class FakeCollection:
    def __init__(self):
        self.docs = []

    async def create_index(self, *args, **kwargs):
        return None

    async def insert_one(self, doc):
        doc.setdefault("_id", next(_ids))
        self.docs.append(copy.deepcopy(doc))
        return SimpleNamespace(inserted_id=doc["_id"])

    async def find_one(self, query=None, projection=None):
        for doc in self.docs:
            if _matches(doc, query or {}):
                return _project(doc, projection)
        return None

    def find(self, query=None, projection=None):
        return FakeCursor(_project(d, projection) for d in self.docs if _matches(d, query or {}))

    async def count_documents(self, query, **kwargs):
        return sum(1 for d in self.docs if _matches(d, query))

    async def _update(self, query, update, many):
        matched = modified = 0
        for doc in self.docs:
            if not _matches(doc, query):
                continue
            matched += 1
            for path, value in update.get("$set", {}).items():
                _set_path(doc, path, copy.deepcopy(value))
            modified += 1
            if not many:
                break
        return SimpleNamespace(matched_count=matched, modified_count=modified)

    async def update_one(self, query, update):
        return await self._update(query, update, many=False)

    async def update_many(self, query, update):
        return await self._update(query, update, many=True)

    async def delete_one(self, query):
        for index, doc in enumerate(self.docs):
            if _matches(doc, query):
                del self.docs[index]
                return SimpleNamespace(deleted_count=1)
        return SimpleNamespace(deleted_count=0)

    def aggregate(self, pipeline):
        docs = [copy.deepcopy(d) for d in self.docs]
        for stage in pipeline:
            (name, args), = stage.items()
            if name == "$match":
                docs = [d for d in docs if _matches(d, args)]
            elif name == "$group":
                docs = _group(docs, args)
            elif name == "$sort":
                docs = FakeCursor(docs).sort(list(args.items()))._docs
            else:
                raise NotImplementedError(name)
        return FakeCursor(docs)


class FakeDatabase:
    def __init__(self):
        self._collections = {}

    def __getattr__(self, name):
        if name.startswith("_"):
            raise AttributeError(name)
        return self[name]

    def __getitem__(self, name):
        return self._collections.setdefault(name, FakeCollection())


class StubResponder:
    """Scripted AI responder. Set ``reply`` to a value or an exception instance."""

    configured = True

    def __init__(self, reply="Take aspirin with food and water, as your doctor advised.", title="Aspirin Timing Help"):
        self.reply = reply
        self.title = title
        self.calls = []
        self.title_calls = []

    async def complete(self, history):
        self.calls.append([dict(m) for m in history])
        if isinstance(self.reply, BaseException):
            raise self.reply
        return self.reply

    async def title_for(self, user_message, ai_message, prior_titles):
        self.title_calls.append((user_message, ai_message, list(prior_titles)))
        if isinstance(self.title, BaseException):
            raise self.title
        return self.title

    async def close(self):
        return None


@pytest.fixture
def fake_db():
    return FakeDatabase()


@pytest.fixture
def responder():
    return StubResponder()


@pytest.fixture
def monitor():
    return FallbackMonitor()


@pytest.fixture
def client(fake_db, responder, monitor):
    app.dependency_overrides[get_database] = lambda: fake_db
    app.dependency_overrides[get_ai_responder] = lambda: responder
    app.dependency_overrides[get_fallback_monitor] = lambda: monitor
    try:
        yield TestClient(app)
    finally:
        app.dependency_overrides.clear()


async def insert_user(db, password=None, **overrides) -> User:
    fields = {
        "username": "margaret",
        "email": "margaret@example.com",
        "first_name": "Margaret",
        "last_name": "Jones",
    }
    fields.update(overrides)
    user = User(**fields)
    doc = user.model_dump()
    doc["hashed_password"] = get_password_hash(password) if password else ""
    await db.users.insert_one(doc)
    return user


def auth_headers(user: User) -> dict:
    return {"Authorization": f"Bearer {issue_token_for(user)}"}
