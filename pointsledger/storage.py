"""
Document storage for the points ledger.

Stores expose one primitive, ``run_transaction``, which calls a function with
a ``Transaction`` and commits its buffered writes atomically. Reads must come
before writes inside a transaction, mirroring Firestore.
"""

import copy
import logging
import threading
from abc import ABC, abstractmethod
from collections import defaultdict
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, Callable, Optional, TypeVar
from uuid import uuid4

from .errors import StorageError, TransactionAbortedError

logger = logging.getLogger(__name__)

T = TypeVar("T")


class _ServerTimestamp:
    def __repr__(self) -> str:
        return "SERVER_TIMESTAMP"

    # Writes are deep-copied when buffered; the sentinel must keep its identity.
    def __copy__(self) -> "_ServerTimestamp":
        return self

    def __deepcopy__(self, memo: dict) -> "_ServerTimestamp":
        return self


# Placeholder resolved to the commit time by the store.
SERVER_TIMESTAMP = _ServerTimestamp()


class Transaction(ABC):
    @abstractmethod
    def get(self, collection: str, doc_id: str) -> Optional[dict[str, Any]]:
        ...

    @abstractmethod
    def set(self, collection: str, doc_id: str, data: dict[str, Any]) -> None:
        ...

    @abstractmethod
    def update(self, collection: str, doc_id: str, fields: dict[str, Any]) -> None:
        ...

    @abstractmethod
    def new_document_id(self, collection: str) -> str:
        ...


class LedgerStore(ABC):
    @abstractmethod
    def run_transaction(self, fn: Callable[[Transaction], T]) -> T:
        ...

    @abstractmethod
    def find(self, collection: str, field: str, value: Any) -> list[tuple[str, dict[str, Any]]]:
        """Return ``(doc_id, data)`` pairs whose ``field`` equals ``value``."""


@dataclass
class _Document:
    data: dict[str, Any]
    version: int


@dataclass
class _Write:
    kind: str
    collection: str
    doc_id: str
    data: dict[str, Any]


class InMemoryTransaction(Transaction):
    def __init__(self, storage: "InMemoryStorage"):
        self._storage = storage
        self.reads: dict[tuple[str, str], int] = {}
        self.writes: list[_Write] = []

    def get(self, collection: str, doc_id: str) -> Optional[dict[str, Any]]:
        if self.writes:
            raise StorageError("Transactions require all reads to be executed before all writes.")
        version, data = self._storage._read(collection, doc_id)
        self.reads[(collection, doc_id)] = version
        return data

    def set(self, collection: str, doc_id: str, data: dict[str, Any]) -> None:
        self.writes.append(_Write("set", collection, doc_id, copy.deepcopy(data)))

    def update(self, collection: str, doc_id: str, fields: dict[str, Any]) -> None:
        self.writes.append(_Write("update", collection, doc_id, copy.deepcopy(fields)))

    def new_document_id(self, collection: str) -> str:
        return uuid4().hex


class InMemoryStorage(LedgerStore):
    """Thread-safe store with optimistic concurrency control.

    Every document carries a version. A transaction records the version of
    each document it reads and buffers its writes; commit checks the read
    versions under the store lock and applies all writes or none. On a
    version conflict the transaction function is re-run, up to
    ``max_attempts`` times.
    """

    def __init__(self, max_attempts: int = 5, clock: Optional[Callable[[], datetime]] = None):
        if max_attempts < 1:
            raise ValueError("max_attempts must be at least 1")
        self.max_attempts = max_attempts
        self._clock = clock or (lambda: datetime.now(timezone.utc))
        self._collections: dict[str, dict[str, _Document]] = defaultdict(dict)
        self._lock = threading.Lock()

    def put(self, collection: str, doc_id: str, data: dict[str, Any]) -> None:
        """Write a document outside any transaction (seeding, client writes)."""
        with self._lock:
            docs = self._collections[collection]
            current = docs.get(doc_id)
            version = current.version + 1 if current else 1
            docs[doc_id] = _Document(self._resolve(data), version)

    def snapshot(self, collection: str, doc_id: str) -> Optional[dict[str, Any]]:
        return self._read(collection, doc_id)[1]

    def find(self, collection: str, field: str, value: Any) -> list[tuple[str, dict[str, Any]]]:
        with self._lock:
            return [
                (doc_id, copy.deepcopy(doc.data))
                for doc_id, doc in self._collections[collection].items()
                if doc.data.get(field) == value
            ]

    def run_transaction(self, fn: Callable[[Transaction], T]) -> T:
        for attempt in range(1, self.max_attempts + 1):
            transaction = InMemoryTransaction(self)
            result = fn(transaction)
            if self._commit(transaction):
                return result
            logger.debug("Transaction conflict, retrying (attempt %d of %d)", attempt, self.max_attempts)
        raise TransactionAbortedError(f"Transaction aborted after {self.max_attempts} attempts")

    def _read(self, collection: str, doc_id: str) -> tuple[int, Optional[dict[str, Any]]]:
        with self._lock:
            doc = self._collections[collection].get(doc_id)
            if doc is None:
                return 0, None
            return doc.version, copy.deepcopy(doc.data)

    def _commit(self, transaction: InMemoryTransaction) -> bool:
        with self._lock:
            for (collection, doc_id), version in transaction.reads.items():
                doc = self._collections[collection].get(doc_id)
                if (doc.version if doc else 0) != version:
                    return False

            pending: dict[tuple[str, str], dict[str, Any]] = {}
            for write in transaction.writes:
                key = (write.collection, write.doc_id)
                if key in pending:
                    base = pending[key]
                else:
                    existing = self._collections[write.collection].get(write.doc_id)
                    base = copy.deepcopy(existing.data) if existing else None
                if write.kind == "set":
                    pending[key] = dict(write.data)
                elif base is None:
                    raise StorageError(f"No document to update: {write.collection}/{write.doc_id}")
                else:
                    base.update(write.data)
                    pending[key] = base

            for (collection, doc_id), data in pending.items():
                docs = self._collections[collection]
                current = docs.get(doc_id)
                docs[doc_id] = _Document(self._resolve(data), current.version + 1 if current else 1)
            return True

    def _resolve(self, data: dict[str, Any]) -> dict[str, Any]:
        now = self._clock()
        return {key: now if value is SERVER_TIMESTAMP else copy.deepcopy(value) for key, value in data.items()}
