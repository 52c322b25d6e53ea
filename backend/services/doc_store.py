"""
Transactional document store used for the shared aggregate documents.

Two implementations share one contract:
  - MemoryDocumentStore: versioned documents with compare-and-swap commits
  - FirestoreDocumentStore: google-cloud-firestore transactions

Paths are slash-separated, alternating collection/document segments,
e.g. "meetings/m1/participants/alice".
"""

from __future__ import annotations

import copy
import logging
import threading
from collections.abc import Callable, Mapping
from typing import Any, Protocol, TypeVar

from services.errors import TransientIOError, WriteConflict

logger = logging.getLogger(__name__)

T = TypeVar("T")

DEFAULT_MAX_ATTEMPTS = 5


class Transaction(Protocol):
    def read(self, path: str) -> dict[str, Any] | None: ...

    def write(self, path: str, data: Mapping[str, Any], *, merge: bool = False) -> None: ...

    def increment(
        self, path: str, fields: Mapping[str, Any], *, set_fields: Mapping[str, Any] | None = None
    ) -> None: ...


class TransactionalStore(Protocol):
    def run_transaction(self, fn: Callable[[Transaction], T]) -> T: ...

    def get(self, path: str) -> dict[str, Any] | None: ...

    def set(self, path: str, data: Mapping[str, Any], *, merge: bool = False) -> None: ...

    def delete(self, path: str) -> None: ...

    def atomic_increment(
        self, path: str, fields: Mapping[str, Any], *, set_fields: Mapping[str, Any] | None = None
    ) -> None: ...

    def list_documents(self, collection_path: str) -> list[tuple[str, dict[str, Any]]]: ...


def _deep_merge(target: dict[str, Any], updates: Mapping[str, Any]) -> None:
    for key, value in updates.items():
        if isinstance(value, Mapping) and isinstance(target.get(key), dict):
            _deep_merge(target[key], value)
        else:
            target[key] = copy.deepcopy(value)


def _apply_increments(target: dict[str, Any], fields: Mapping[str, Any]) -> None:
    for key, value in fields.items():
        if isinstance(value, Mapping):
            child = target.get(key)
            if not isinstance(child, dict):
                child = target[key] = {}
            _apply_increments(child, value)
        else:
            current = target.get(key)
            target[key] = (current if isinstance(current, (int, float)) else 0) + value


class _MemoryTransaction:
    def __init__(self, store: MemoryDocumentStore) -> None:
        self._store = store
        self.read_versions: dict[str, int] = {}
        self.ops: list[tuple[str, str, Any, bool]] = []

    def read(self, path: str) -> dict[str, Any] | None:
        if self.ops:
            raise ValueError("transaction reads must happen before writes")
        data, version = self._store._read_versioned(path)
        self.read_versions.setdefault(path, version)
        return data

    def write(self, path: str, data: Mapping[str, Any], *, merge: bool = False) -> None:
        self.ops.append(("set", path, copy.deepcopy(dict(data)), merge))

    def increment(
        self, path: str, fields: Mapping[str, Any], *, set_fields: Mapping[str, Any] | None = None
    ) -> None:
        self.ops.append(("increment", path, copy.deepcopy((dict(fields), dict(set_fields or {}))), True))


class MemoryDocumentStore:
    """
    In-process store with optimistic concurrency.

    A transaction records the version of every document it reads; its
    writes commit only if none of those versions moved, otherwise the
    whole function is re-run (up to max_attempts) and finally WriteConflict
    is raised.
    """

    def __init__(self, *, max_attempts: int = DEFAULT_MAX_ATTEMPTS) -> None:
        self._max_attempts = max_attempts
        self._docs: dict[str, dict[str, Any]] = {}
        self._versions: dict[str, int] = {}
        self._lock = threading.RLock()

    def _read_versioned(self, path: str) -> tuple[dict[str, Any] | None, int]:
        with self._lock:
            doc = self._docs.get(path)
            return (copy.deepcopy(doc) if doc is not None else None), self._versions.get(path, 0)

    def _bump(self, path: str) -> None:
        self._versions[path] = self._versions.get(path, 0) + 1

    def _apply(self, kind: str, path: str, payload: Any, merge: bool) -> None:
        if kind == "set":
            if merge and path in self._docs:
                _deep_merge(self._docs[path], payload)
            else:
                self._docs[path] = copy.deepcopy(payload)
        elif kind == "increment":
            fields, set_fields = payload
            doc = self._docs.setdefault(path, {})
            _deep_merge(doc, set_fields)
            _apply_increments(doc, fields)
        elif kind == "delete":
            self._docs.pop(path, None)
        self._bump(path)

    def _commit(self, txn: _MemoryTransaction) -> None:
        with self._lock:
            for path, version in txn.read_versions.items():
                if self._versions.get(path, 0) != version:
                    raise WriteConflict(f"document {path} changed during transaction")
            for kind, path, payload, merge in txn.ops:
                self._apply(kind, path, payload, merge)

    def run_transaction(self, fn: Callable[[Transaction], T]) -> T:
        for attempt in range(1, self._max_attempts + 1):
            txn = _MemoryTransaction(self)
            result = fn(txn)
            try:
                self._commit(txn)
            except WriteConflict:
                if attempt >= self._max_attempts:
                    raise
                logger.debug("[doc_store] Write conflict, retrying transaction (attempt %d)", attempt)
                continue
            return result
        raise WriteConflict("transaction never committed")

    def get(self, path: str) -> dict[str, Any] | None:
        return self._read_versioned(path)[0]

    def set(self, path: str, data: Mapping[str, Any], *, merge: bool = False) -> None:
        with self._lock:
            self._apply("set", path, dict(data), merge)

    def delete(self, path: str) -> None:
        with self._lock:
            self._apply("delete", path, None, False)

    def atomic_increment(
        self, path: str, fields: Mapping[str, Any], *, set_fields: Mapping[str, Any] | None = None
    ) -> None:
        with self._lock:
            self._apply("increment", path, copy.deepcopy((dict(fields), dict(set_fields or {}))), True)

    def list_documents(self, collection_path: str) -> list[tuple[str, dict[str, Any]]]:
        prefix = collection_path.rstrip("/") + "/"
        with self._lock:
            return [
                (path[len(prefix):], copy.deepcopy(doc))
                for path, doc in sorted(self._docs.items())
                if path.startswith(prefix) and "/" not in path[len(prefix):]
            ]


def _firestore_increments(fields: Mapping[str, Any]) -> dict[str, Any]:
    from google.cloud import firestore

    return {
        key: _firestore_increments(value) if isinstance(value, Mapping) else firestore.Increment(value)
        for key, value in fields.items()
    }


class _FirestoreTransaction:
    def __init__(self, client: Any, transaction: Any) -> None:
        self._client = client
        self._txn = transaction

    def read(self, path: str) -> dict[str, Any] | None:
        snapshot = self._client.document(path).get(transaction=self._txn)
        return snapshot.to_dict() if snapshot.exists else None

    def write(self, path: str, data: Mapping[str, Any], *, merge: bool = False) -> None:
        self._txn.set(self._client.document(path), dict(data), merge=merge)

    def increment(
        self, path: str, fields: Mapping[str, Any], *, set_fields: Mapping[str, Any] | None = None
    ) -> None:
        data = {**dict(set_fields or {}), **_firestore_increments(fields)}
        self._txn.set(self._client.document(path), data, merge=True)


class FirestoreDocumentStore:
    """TransactionalStore over google-cloud-firestore (default credentials / ADC)."""

    def __init__(self, client: Any | None = None, *, max_attempts: int = DEFAULT_MAX_ATTEMPTS) -> None:
        self._client = client
        self._max_attempts = max_attempts

    def _ensure_client(self) -> Any:
        if self._client is None:
            from google.cloud import firestore

            self._client = firestore.Client()
        return self._client

    def run_transaction(self, fn: Callable[[Transaction], T]) -> T:
        from google.api_core import exceptions as gexc
        from google.cloud import firestore

        client = self._ensure_client()

        @firestore.transactional
        def _run(transaction: Any) -> T:
            return fn(_FirestoreTransaction(client, transaction))

        try:
            return _run(client.transaction(max_attempts=self._max_attempts))
        except gexc.Aborted as exc:
            raise WriteConflict(str(exc)) from exc
        except gexc.GoogleAPIError as exc:
            raise TransientIOError(f"firestore transaction failed: {exc}") from exc

    def get(self, path: str) -> dict[str, Any] | None:
        from google.api_core import exceptions as gexc

        try:
            snapshot = self._ensure_client().document(path).get()
        except gexc.GoogleAPIError as exc:
            raise TransientIOError(f"firestore read of {path} failed: {exc}") from exc
        return snapshot.to_dict() if snapshot.exists else None

    def set(self, path: str, data: Mapping[str, Any], *, merge: bool = False) -> None:
        from google.api_core import exceptions as gexc

        try:
            self._ensure_client().document(path).set(dict(data), merge=merge)
        except gexc.GoogleAPIError as exc:
            raise TransientIOError(f"firestore write of {path} failed: {exc}") from exc

    def delete(self, path: str) -> None:
        from google.api_core import exceptions as gexc

        try:
            self._ensure_client().document(path).delete()
        except gexc.GoogleAPIError as exc:
            raise TransientIOError(f"firestore delete of {path} failed: {exc}") from exc

    def atomic_increment(
        self, path: str, fields: Mapping[str, Any], *, set_fields: Mapping[str, Any] | None = None
    ) -> None:
        self.set(path, {**dict(set_fields or {}), **_firestore_increments(fields)}, merge=True)

    def list_documents(self, collection_path: str) -> list[tuple[str, dict[str, Any]]]:
        from google.api_core import exceptions as gexc

        try:
            return [(snap.id, snap.to_dict()) for snap in self._ensure_client().collection(collection_path).stream()]
        except gexc.GoogleAPIError as exc:
            raise TransientIOError(f"firestore list of {collection_path} failed: {exc}") from exc


def create_store(kind: str, *, max_attempts: int = DEFAULT_MAX_ATTEMPTS) -> TransactionalStore:
    if kind == "firestore":
        return FirestoreDocumentStore(max_attempts=max_attempts)
    return MemoryDocumentStore(max_attempts=max_attempts)
