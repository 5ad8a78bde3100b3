"""
In-process document store.

Implements the subset of the pymongo collection API the repositories use,
so ``Repository`` runs unchanged against it. Used by the test suite and for
running the API without a database server.
"""
from __future__ import annotations

import copy
import threading
from typing import Any, Dict, Iterable, List, Mapping, NamedTuple, Optional, Sequence, Tuple

from pymongo import DESCENDING
from pymongo.errors import CollectionInvalid, DuplicateKeyError, OperationFailure

from .config import Settings, get_settings
from .database import Containers, build_containers


class WriteResult(NamedTuple):
    matched_count: int = 0
    deleted_count: int = 0


def _matches(doc: Mapping[str, Any], criteria: Optional[Mapping[str, Any]]) -> bool:
    if not criteria:
        return True
    return all(doc.get(k) == v for k, v in criteria.items())


def _sort_key(value: Any) -> Tuple[int, Any]:
    # Missing and null values order before everything else, as in MongoDB.
    if value is None:
        return (0, "")
    return (1, value)


def _project(doc: Dict[str, Any], projection: Optional[Mapping[str, Any]]) -> Dict[str, Any]:
    out = copy.deepcopy(doc)
    if projection is not None and not projection.get("_id", True):
        out.pop("_id", None)
    return out


class InMemoryCollection:
    def __init__(self, name: str):
        self.name = name
        self._docs: List[Dict[str, Any]] = []
        self._unique: Dict[str, Tuple[str, ...]] = {}
        self._next_id = 0
        self._lock = threading.Lock()

    def create_index(self, keys: Sequence[Tuple[str, int]], unique: bool = False, name: Optional[str] = None) -> str:
        fields = tuple(k for k, _ in keys)
        name = name or "_".join(f"{k}_{d}" for k, d in keys)
        with self._lock:
            existing = self._unique.get(name)
            if existing is not None and existing != fields:
                raise OperationFailure(f"Index with name {name} already exists with different keys", code=86)
            if unique:
                self._unique[name] = fields
        return name

    def _check_unique(self, doc: Mapping[str, Any], skip: Optional[int] = None) -> None:
        for name, fields in self._unique.items():
            wanted = tuple(doc.get(f) for f in fields)
            for i, other in enumerate(self._docs):
                if i != skip and tuple(other.get(f) for f in fields) == wanted:
                    raise DuplicateKeyError(f"E11000 duplicate key error collection: {self.name} index: {name}", 11000)

    def insert_one(self, document: Mapping[str, Any]) -> WriteResult:
        with self._lock:
            self._check_unique(document)
            doc = copy.deepcopy(dict(document))
            self._next_id += 1
            doc.setdefault("_id", self._next_id)
            self._docs.append(doc)
        return WriteResult()

    def find(
        self,
        filter: Optional[Mapping[str, Any]] = None,
        projection: Optional[Mapping[str, Any]] = None,
        sort: Optional[Sequence[Tuple[str, int]]] = None,
    ) -> Iterable[Dict[str, Any]]:
        with self._lock:
            docs = [d for d in self._docs if _matches(d, filter)]
        for key, direction in reversed(list(sort or [])):
            docs.sort(key=lambda d: _sort_key(d.get(key)), reverse=direction == DESCENDING)
        return [_project(d, projection) for d in docs]

    def find_one(
        self,
        filter: Optional[Mapping[str, Any]] = None,
        projection: Optional[Mapping[str, Any]] = None,
    ) -> Optional[Dict[str, Any]]:
        with self._lock:
            for d in self._docs:
                if _matches(d, filter):
                    return _project(d, projection)
        return None

    def replace_one(self, filter: Mapping[str, Any], replacement: Mapping[str, Any]) -> WriteResult:
        with self._lock:
            for i, d in enumerate(self._docs):
                if _matches(d, filter):
                    self._check_unique(replacement, skip=i)
                    doc = copy.deepcopy(dict(replacement))
                    doc["_id"] = d["_id"]
                    self._docs[i] = doc
                    return WriteResult(matched_count=1)
        return WriteResult(matched_count=0)

    def delete_one(self, filter: Mapping[str, Any]) -> WriteResult:
        with self._lock:
            for i, d in enumerate(self._docs):
                if _matches(d, filter):
                    del self._docs[i]
                    return WriteResult(deleted_count=1)
        return WriteResult(deleted_count=0)

    def count_documents(self, filter: Optional[Mapping[str, Any]] = None) -> int:
        with self._lock:
            return sum(1 for d in self._docs if _matches(d, filter))


class InMemoryDatabase:
    def __init__(self, name: str):
        self.name = name
        self._collections: Dict[str, InMemoryCollection] = {}

    def list_collection_names(self) -> List[str]:
        return list(self._collections)

    def create_collection(self, name: str) -> InMemoryCollection:
        if name in self._collections:
            raise CollectionInvalid(f"collection {name} already exists")
        self._collections[name] = InMemoryCollection(name)
        return self._collections[name]

    def __getitem__(self, name: str) -> InMemoryCollection:
        if name not in self._collections:
            self._collections[name] = InMemoryCollection(name)
        return self._collections[name]


class InMemoryStorageClient:
    """Drop-in replacement for ``StorageClient`` backed by ``InMemoryDatabase``."""

    def __init__(self, settings: Optional[Settings] = None):
        self.settings = settings or get_settings()
        self.database = InMemoryDatabase(self.settings.database_name)
        self._containers: Optional[Containers] = None

    def connect(self) -> Containers:
        if self._containers is None:
            self._containers = build_containers(self.database, self.settings)
        return self._containers

    def close(self) -> None:
        self._containers = None
