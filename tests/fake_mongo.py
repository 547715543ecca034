"""In-memory stand-in for the slice of PyMongo's async API the store uses.

Transactions snapshot every collection on start and restore it on abort.
They are not isolated from each other: an abort also undoes writes made by
other units since the snapshot.
Only the query and update operators the actions issue are understood.
"""

import asyncio
import copy
import re
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Tuple

from bson import ObjectId
from pymongo.errors import DuplicateKeyError, ServerSelectionTimeoutError

MISSING = object()


@dataclass
class InsertOneResult:
    inserted_id: Any


@dataclass
class InsertManyResult:
    inserted_ids: List[Any]


@dataclass
class UpdateResult:
    matched_count: int
    modified_count: int
    upserted_id: Any = None


@dataclass
class DeleteResult:
    deleted_count: int


@dataclass
class Index:
    keys: List[str]
    unique: bool
    case_insensitive: bool


def _eq(value: Any, expected: Any, ci: bool) -> bool:
    if isinstance(value, list) and not isinstance(expected, list):
        return any(_eq(v, expected, ci) for v in value)
    if ci and isinstance(value, str) and isinstance(expected, str):
        return value.casefold() == expected.casefold()
    return value == expected


def _is_operator(cond: Any) -> bool:
    return isinstance(cond, dict) and any(k.startswith("$") for k in cond)


def matches(doc: Dict[str, Any], query: Dict[str, Any], ci: bool = False) -> bool:
    for key, cond in query.items():
        if key == "$or":
            if not any(matches(doc, q, ci) for q in cond):
                return False
            continue
        value = doc.get(key, MISSING)
        if _is_operator(cond):
            for op, arg in cond.items():
                if op == "$in":
                    if not any(_eq(value, a, ci) for a in arg):
                        return False
                elif op == "$gt":
                    if value is MISSING or value is None or not value > arg:
                        return False
                elif op == "$regex":
                    flags = re.IGNORECASE if "i" in cond.get("$options", "") else 0
                    if not isinstance(value, str) or not re.search(arg, value, flags):
                        return False
                elif op == "$options":
                    continue
                else:
                    raise NotImplementedError(op)
        elif not _eq(value, cond, ci):
            return False
    return True


def apply_update(doc: Dict[str, Any], update: Dict[str, Any], inserting: bool = False) -> None:
    for op, fields in update.items():
        if op == "$set":
            doc.update(copy.deepcopy(fields))
        elif op == "$inc":
            for k, v in fields.items():
                doc[k] = doc.get(k, 0) + v
        elif op == "$setOnInsert":
            if inserting:
                doc.update(copy.deepcopy(fields))
        else:
            raise NotImplementedError(op)


class FakeCursor:
    def __init__(self, docs: List[Dict[str, Any]]):
        self._docs = docs
        self._skip = 0
        self._limit = 0

    def sort(self, keys: List[Tuple[str, int]]):
        for name, direction in reversed(keys):
            self._docs = sorted(
                self._docs,
                key=lambda d: (d.get(name) is not None, d.get(name)),
                reverse=direction < 0,
            )
        return self

    def skip(self, n: int):
        self._skip = n
        return self

    def limit(self, n: int):
        self._limit = n
        return self

    async def to_list(self, length: Optional[int] = None) -> List[Dict[str, Any]]:
        docs = self._docs[self._skip:]
        if self._limit:
            docs = docs[: self._limit]
        return [copy.deepcopy(d) for d in docs]


class FakeCollection:
    def __init__(self, client: "FakeClient", name: str):
        self.client = client
        self.name = name
        self.docs: List[Dict[str, Any]] = []
        self.indexes: List[Index] = []

    # Helpers

    async def _before(self, op: str, write: bool = False) -> None:
        # Every driver call is a suspension point, so concurrent units interleave
        await asyncio.sleep(0)
        self.client.calls.append((self.name, op))
        failure = self.client.failures.pop((self.name, op), None)
        if failure is not None:
            raise failure
        if write:
            self.client.writes += 1

    def _index_key(self, index: Index, doc: Dict[str, Any]) -> tuple:
        values = []
        for k in index.keys:
            v = doc.get(k)
            if index.case_insensitive and isinstance(v, str):
                v = v.casefold()
            values.append(v)
        return tuple(values)

    def _check_unique(self, doc: Dict[str, Any]) -> None:
        for index in self.indexes:
            if not index.unique:
                continue
            key = self._index_key(index, doc)
            for other in self.docs:
                if other is not doc and other["_id"] != doc["_id"] and self._index_key(index, other) == key:
                    raise DuplicateKeyError(f"E11000 duplicate key error collection: {self.name} index: {index.keys}", 11000)

    def _find(self, query: Optional[Dict[str, Any]], ci: bool = False) -> List[Dict[str, Any]]:
        return [d for d in self.docs if matches(d, query or {}, ci)]

    def _insert(self, doc: Dict[str, Any]) -> Any:
        doc.setdefault("_id", ObjectId())
        stored = copy.deepcopy(doc)
        self._check_unique(stored)
        self.docs.append(stored)
        return stored["_id"]

    def _update(self, doc: Dict[str, Any], update: Dict[str, Any]) -> bool:
        before = copy.deepcopy(doc)
        apply_update(doc, update)
        try:
            self._check_unique(doc)
        except DuplicateKeyError:
            doc.clear()
            doc.update(before)
            raise
        return doc != before

    # Driver surface

    async def create_index(self, keys, unique: bool = False, collation=None, **kwargs) -> str:
        names = [k for k, _ in keys]
        self.indexes.append(Index(keys=names, unique=unique, case_insensitive=collation is not None))
        return "_".join(names)

    async def insert_one(self, doc: Dict[str, Any], session=None) -> InsertOneResult:
        await self._before("insert_one", write=True)
        return InsertOneResult(self._insert(doc))

    async def insert_many(self, docs: List[Dict[str, Any]], session=None) -> InsertManyResult:
        await self._before("insert_many", write=True)
        return InsertManyResult([self._insert(d) for d in docs])

    async def find_one(self, query: Optional[Dict[str, Any]] = None, session=None, collation=None):
        await self._before("find_one")
        found = self._find(query, ci=collation is not None)
        return copy.deepcopy(found[0]) if found else None

    def find(self, query: Optional[Dict[str, Any]] = None, session=None) -> FakeCursor:
        self.client.calls.append((self.name, "find"))
        return FakeCursor(self._find(query))

    async def count_documents(self, query: Dict[str, Any], session=None) -> int:
        await self._before("count_documents")
        return len(self._find(query))

    async def find_one_and_update(
        self, query, update, upsert: bool = False, return_document: bool = False, collation=None, session=None
    ):
        await self._before("find_one_and_update", write=True)
        found = self._find(query, ci=collation is not None)
        if found:
            doc = found[0]
            before = copy.deepcopy(doc)
            self._update(doc, update)
            return copy.deepcopy(doc if return_document else before)
        if not upsert:
            return None
        doc = {k: copy.deepcopy(v) for k, v in query.items() if not k.startswith("$") and not _is_operator(v)}
        apply_update(doc, update, inserting=True)
        self._insert(doc)
        return copy.deepcopy(doc) if return_document else None

    async def update_one(self, query, update, session=None) -> UpdateResult:
        await self._before("update_one", write=True)
        found = self._find(query)
        if not found:
            return UpdateResult(0, 0)
        return UpdateResult(1, int(self._update(found[0], update)))

    async def update_many(self, query, update, session=None) -> UpdateResult:
        await self._before("update_many", write=True)
        found = self._find(query)
        modified = sum(int(self._update(doc, update)) for doc in found)
        return UpdateResult(len(found), modified)

    async def delete_one(self, query, session=None) -> DeleteResult:
        await self._before("delete_one", write=True)
        found = self._find(query)
        if found:
            self.docs.remove(found[0])
        return DeleteResult(len(found[:1]))

    async def delete_many(self, query, session=None) -> DeleteResult:
        await self._before("delete_many", write=True)
        found = self._find(query)
        self.docs = [d for d in self.docs if d not in found]
        return DeleteResult(len(found))

    async def find_one_and_delete(self, query, session=None):
        await self._before("find_one_and_delete", write=True)
        found = self._find(query)
        if not found:
            return None
        self.docs.remove(found[0])
        return copy.deepcopy(found[0])


class FakeDatabase:
    def __init__(self, client: "FakeClient", name: str):
        self.client = client
        self.name = name
        self.collections: Dict[str, FakeCollection] = {}

    def __getitem__(self, name: str) -> FakeCollection:
        if name not in self.collections:
            self.collections[name] = FakeCollection(self.client, name)
        return self.collections[name]

    async def list_collection_names(self) -> List[str]:
        return sorted(self.collections)


class FakeSession:
    def __init__(self, client: "FakeClient"):
        self.client = client
        self.in_transaction = False
        self.ended = False
        self._snapshot = None

    async def start_transaction(self) -> None:
        self._snapshot = self.client.snapshot()
        self.in_transaction = True

    async def commit_transaction(self) -> None:
        self.in_transaction = False
        self.client.commits += 1

    async def abort_transaction(self) -> None:
        self.client.restore(self._snapshot)
        self.in_transaction = False
        self.client.aborts += 1

    async def end_session(self) -> None:
        self.ended = True


class FakeAdmin:
    def __init__(self, client: "FakeClient"):
        self.client = client

    async def command(self, name: str) -> Dict[str, Any]:
        # Yield so that concurrent connects really overlap
        await asyncio.sleep(0)
        if self.client.unreachable:
            raise ServerSelectionTimeoutError("No servers found yet")
        return {"ok": 1.0}


@dataclass
class FakeClient:
    unreachable: bool = False
    writes: int = 0
    commits: int = 0
    aborts: int = 0
    closed: bool = False
    calls: List[Tuple[str, str]] = field(default_factory=list)
    failures: Dict[Tuple[str, str], Exception] = field(default_factory=dict)
    databases: Dict[str, FakeDatabase] = field(default_factory=dict)

    def __post_init__(self):
        self.admin = FakeAdmin(self)

    def __getitem__(self, name: str) -> FakeDatabase:
        if name not in self.databases:
            self.databases[name] = FakeDatabase(self, name)
        return self.databases[name]

    def start_session(self) -> FakeSession:
        return FakeSession(self)

    async def close(self) -> None:
        self.closed = True

    def fail_next(self, collection: str, op: str, error: Optional[Exception] = None) -> None:
        self.failures[(collection, op)] = error or RuntimeError(f"injected failure on {collection}.{op}")

    def snapshot(self):
        return {
            (db_name, coll_name): copy.deepcopy(coll.docs)
            for db_name, db in self.databases.items()
            for coll_name, coll in db.collections.items()
        }

    def restore(self, snapshot) -> None:
        for db_name, db in self.databases.items():
            for coll_name, coll in db.collections.items():
                coll.docs = copy.deepcopy(snapshot.get((db_name, coll_name), []))


class FakeClientFactory:
    """Stands in for AsyncMongoClient and counts how many clients were opened."""

    def __init__(self, client: Optional[FakeClient] = None):
        self.client = client or FakeClient()
        self.opened = 0

    def __call__(self, uri: str, **kwargs) -> FakeClient:
        self.opened += 1
        return self.client
