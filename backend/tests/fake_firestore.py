"""Small in-memory stand-in for the parts of the Firestore client the backend uses."""

from __future__ import annotations

from copy import deepcopy
from datetime import datetime, timezone
from typing import Any, Iterator, Optional

from google.api_core import exceptions as google_exceptions
from google.cloud import firestore as gcloud_firestore


def _parent(path: str) -> str:
    return path.rsplit("/", 1)[0]


def _resolve_sentinels(value: Any) -> Any:
    if value is gcloud_firestore.SERVER_TIMESTAMP:
        return datetime.now(timezone.utc)
    if isinstance(value, dict):
        return {
            key: _resolve_sentinels(item)
            for key, item in value.items()
            if item is not gcloud_firestore.DELETE_FIELD
        }
    return value


def _deep_merge(current: dict[str, Any], updates: dict[str, Any]) -> dict[str, Any]:
    merged = dict(current)
    for key, value in updates.items():
        if value is gcloud_firestore.DELETE_FIELD:
            merged.pop(key, None)
        elif isinstance(value, dict) and isinstance(merged.get(key), dict):
            merged[key] = _deep_merge(merged[key], value)
        else:
            merged[key] = _resolve_sentinels(value)
    return merged


class FakeSnapshot:
    def __init__(self, reference: "FakeDocumentRef", data: Optional[dict[str, Any]]):
        self.reference = reference
        self.id = reference.id
        self._data = data

    @property
    def exists(self) -> bool:
        return self._data is not None

    def to_dict(self) -> Optional[dict[str, Any]]:
        return deepcopy(self._data) if self._data is not None else None


class FakeDocumentRef:
    def __init__(self, db: "FakeFirestore", path: str):
        self._db = db
        self.path = path
        self.id = path.rsplit("/", 1)[-1]

    def get(self) -> FakeSnapshot:
        self._db.check("get")
        return FakeSnapshot(self, self._db.docs.get(self.path))

    def set(self, data: dict[str, Any], merge: bool = False) -> None:
        self._db.check("set")
        current = self._db.docs.get(self.path) if merge else None
        self._db.docs[self.path] = _deep_merge(current or {}, data)

    def update(self, data: dict[str, Any]) -> None:
        self._db.check("update")
        if self.path not in self._db.docs:
            raise google_exceptions.NotFound(f"No document to update: {self.path}")
        current = dict(self._db.docs[self.path])
        for key, value in data.items():
            if value is gcloud_firestore.DELETE_FIELD:
                current.pop(key, None)
            else:
                current[key] = _resolve_sentinels(value)
        self._db.docs[self.path] = current

    def delete(self) -> None:
        self._db.check("delete")
        self._db.docs.pop(self.path, None)

    def collection(self, name: str) -> "FakeCollection":
        return FakeCollection(self._db, f"{self.path}/{name}")


class FakeQuery:
    def __init__(self, db: "FakeFirestore", path: str, filters=(), order=None, limit=None):
        self._db = db
        self._path = path
        self._filters = tuple(filters)
        self._order = order
        self._limit = limit

    def where(self, field_path=None, op_string=None, value=None, *, filter=None) -> "FakeQuery":
        if filter is not None:
            field_path, op_string, value = filter.field_path, filter.op_string, filter.value
        assert op_string == "==", f"unsupported operator {op_string}"
        return FakeQuery(self._db, self._path, self._filters + ((field_path, value),), self._order, self._limit)

    def order_by(self, field_path: str, direction: str = "ASCENDING") -> "FakeQuery":
        return FakeQuery(self._db, self._path, self._filters, (field_path, direction), self._limit)

    def limit(self, count: int) -> "FakeQuery":
        return FakeQuery(self._db, self._path, self._filters, self._order, count)

    def stream(self) -> Iterator[FakeSnapshot]:
        self._db.check("stream")
        matches = [
            (path, data)
            for path, data in self._db.docs.items()
            if _parent(path) == self._path
            and all(data.get(field) == value for field, value in self._filters)
        ]
        if self._order:
            field, direction = self._order
            matches.sort(
                key=lambda item: (item[1].get(field) is None, item[1].get(field)),
                reverse=str(direction).upper() == "DESCENDING",
            )
        if self._limit is not None:
            matches = matches[: self._limit]
        return iter([FakeSnapshot(FakeDocumentRef(self._db, path), data) for path, data in matches])


class FakeCollection(FakeQuery):
    def __init__(self, db: "FakeFirestore", path: str):
        super().__init__(db, path)

    def document(self, doc_id: Optional[str] = None) -> FakeDocumentRef:
        return FakeDocumentRef(self._db, f"{self._path}/{doc_id or self._db.new_id()}")


class FakeBatch:
    def __init__(self, db: "FakeFirestore"):
        self._db = db
        self._ops: list[tuple[str, FakeDocumentRef, Any]] = []

    def delete(self, reference: FakeDocumentRef) -> None:
        self._ops.append(("delete", reference, None))

    def set(self, reference: FakeDocumentRef, data: dict[str, Any], merge: bool = False) -> None:
        self._ops.append(("set", reference, (data, merge)))

    def update(self, reference: FakeDocumentRef, data: dict[str, Any]) -> None:
        self._ops.append(("update", reference, data))

    def commit(self) -> None:
        self._db.check("commit")
        # all or nothing: a missing update target rejects the whole batch
        for op, reference, _ in self._ops:
            if op == "update" and reference.path not in self._db.docs:
                raise google_exceptions.NotFound(f"No document to update: {reference.path}")
        self._db.commits.append(len(self._ops))
        for op, reference, data in self._ops:
            if op == "delete":
                reference.delete()
            elif op == "set":
                reference.set(data[0], merge=data[1])
            else:
                reference.update(data)
        self._ops = []


class FakeFirestore:
    def __init__(self) -> None:
        self.docs: dict[str, dict[str, Any]] = {}
        self.commits: list[int] = []
        self.failing: set[str] = set()
        self._counter = 0

    def check(self, operation: str) -> None:
        if operation in self.failing:
            raise google_exceptions.ServiceUnavailable(f"{operation} unavailable")

    def new_id(self) -> str:
        self._counter += 1
        return f"doc{self._counter:04d}"

    def collection(self, name: str) -> FakeCollection:
        return FakeCollection(self, name)

    def batch(self) -> FakeBatch:
        return FakeBatch(self)

    def seed(self, path: str, data: dict[str, Any]) -> None:
        self.docs[path] = dict(data)

    def data(self, path: str) -> Optional[dict[str, Any]]:
        return self.docs.get(path)
