from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Callable

import pytest
from google.api_core import exceptions as gexc
from google.cloud import firestore

from tradelog.errors import (
    NotFoundError,
    StoreConfigurationError,
    StoreError,
    TransientStoreError,
    ValidationFailure,
)
from tradelog.persistence.firebase_client import is_local_execution, require_firestore_emulator_or_allow_prod
from tradelog.persistence.firestore_store import FirestoreStore
from tradelog.persistence.store import StoreSnapshot


class _FakeSnap:
    def __init__(self, doc_id: str, *, exists: bool, data: dict[str, Any] | None):
        self.id = doc_id
        self.exists = bool(exists)
        self._data = dict(data or {})

    def to_dict(self) -> dict[str, Any] | None:
        return dict(self._data) if self.exists else None


class _FakeWatch:
    def __init__(self) -> None:
        self.unsubscribed = False

    def unsubscribe(self) -> None:
        self.unsubscribed = True


@dataclass
class _FakeDocRef:
    db: "_FakeFirestore"
    path: str

    @property
    def id(self) -> str:
        return self.path.rsplit("/", 1)[-1]

    def _maybe_fail(self) -> None:
        err = self.db.fail_with.pop(self.path, None)
        if err is not None:
            raise err

    def set(self, data: dict[str, Any], merge: bool = False) -> None:  # noqa: FBT001,FBT002
        self._maybe_fail()
        self.db.calls.append(("set", self.path, dict(data), merge))
        if merge and self.path in self.db.docs:
            self.db.docs[self.path].update(data)
        else:
            self.db.docs[self.path] = dict(data)

    def update(self, data: dict[str, Any]) -> None:
        self._maybe_fail()
        if self.path not in self.db.docs:
            raise gexc.NotFound(f"No document to update: {self.path}")
        self.db.docs[self.path].update(data)

    def delete(self) -> None:
        self._maybe_fail()
        self.db.docs.pop(self.path, None)

    def get(self) -> _FakeSnap:
        self._maybe_fail()
        return _FakeSnap(self.id, exists=self.path in self.db.docs, data=self.db.docs.get(self.path))

    def on_snapshot(self, callback: Callable[..., None]) -> _FakeWatch:
        self.db.listeners.append(callback)
        return self.db.new_watch()


@dataclass
class _FakeQuery:
    db: "_FakeFirestore"
    path: str
    ordering: list[tuple[str, str]] = field(default_factory=list)

    def order_by(self, field_path: str, direction: str = "ASCENDING") -> "_FakeQuery":
        return _FakeQuery(db=self.db, path=self.path, ordering=[*self.ordering, (field_path, direction)])

    def on_snapshot(self, callback: Callable[..., None]) -> _FakeWatch:
        self.db.queries.append(self)
        self.db.listeners.append(callback)
        return self.db.new_watch()


class _FakeBatch:
    def __init__(self, db: "_FakeFirestore") -> None:
        self.db = db
        self.ops: list[tuple[str, dict[str, Any], bool]] = []

    def set(self, ref: _FakeDocRef, data: dict[str, Any], merge: bool = False) -> None:  # noqa: FBT001,FBT002
        self.ops.append((ref.path, dict(data), merge))

    def commit(self) -> None:
        if self.db.batch_error is not None:
            raise self.db.batch_error
        self.db.commits.append(list(self.ops))
        for path, data, _ in self.ops:
            self.db.docs.setdefault(path, {}).update(data)


class _FakeFirestore:
    def __init__(self) -> None:
        self.docs: dict[str, dict[str, Any]] = {}
        self.calls: list[tuple] = []
        self.commits: list[list[tuple[str, dict[str, Any], bool]]] = []
        self.fail_with: dict[str, BaseException] = {}
        self.batch_error: BaseException | None = None
        self.listeners: list[Callable[..., None]] = []
        self.queries: list[_FakeQuery] = []
        self.watches: list[_FakeWatch] = []

    def document(self, path: str) -> _FakeDocRef:
        return _FakeDocRef(db=self, path=path)

    def collection(self, path: str) -> _FakeQuery:
        return _FakeQuery(db=self, path=path)

    def batch(self) -> _FakeBatch:
        return _FakeBatch(self)

    def new_watch(self) -> _FakeWatch:
        w = _FakeWatch()
        self.watches.append(w)
        return w


@pytest.fixture
def fake_db() -> _FakeFirestore:
    return _FakeFirestore()


def test_set_uses_merge_and_get_reads_back(fake_db):
    store = FirestoreStore(fake_db)
    store.set("users/u1/trades/t1", {"symbol": "EURUSD"})
    assert fake_db.calls == [("set", "users/u1/trades/t1", {"symbol": "EURUSD"}, True)]

    doc = store.get("users/u1/trades/t1")
    assert doc.id == "t1"
    assert doc.to_record() == {"id": "t1", "symbol": "EURUSD"}
    assert store.get("users/u1/trades/nope") is None


def test_update_missing_document_maps_to_not_found(fake_db):
    store = FirestoreStore(fake_db)
    with pytest.raises(NotFoundError) as ei:
        store.update("users/u1/trades/missing", {"pnl": 1})
    assert ei.value.path == "users/u1/trades/missing"
    assert isinstance(ei.value.__cause__, gexc.NotFound)


@pytest.mark.parametrize(
    "raised,expected",
    [
        (gexc.ServiceUnavailable("down"), TransientStoreError),
        (gexc.DeadlineExceeded("slow"), TransientStoreError),
        (gexc.InvalidArgument("bad field"), ValidationFailure),
        (gexc.PermissionDenied("rules"), StoreError),
    ],
)
def test_errors_are_translated(fake_db, raised, expected):
    store = FirestoreStore(fake_db)
    fake_db.fail_with["users/u1/tags/t1"] = raised
    with pytest.raises(expected) as ei:
        store.set("users/u1/tags/t1", {"label": "x"})
    assert ei.value.operation == "set"
    assert ei.value.__cause__ is raised


def test_commit_batch_is_one_atomic_commit(fake_db):
    store = FirestoreStore(fake_db)
    writes = [(f"users/u1/tags/t{i}", {"label": str(i)}) for i in range(3)]
    store.commit_batch(writes)
    assert len(fake_db.commits) == 1
    assert [p for p, _, merge in fake_db.commits[0] if merge] == [p for p, _ in writes]


def test_commit_batch_failure_writes_nothing(fake_db):
    store = FirestoreStore(fake_db)
    fake_db.batch_error = gexc.Aborted("contention")
    with pytest.raises(TransientStoreError):
        store.commit_batch([("users/u1/tags/t1", {"label": "a"})])
    assert fake_db.docs == {}


def test_commit_batch_rejects_oversized_and_ignores_empty(fake_db):
    store = FirestoreStore(fake_db)
    store.commit_batch([])
    assert fake_db.commits == []
    with pytest.raises(ValidationFailure):
        store.commit_batch([(f"users/u1/tags/t{i}", {}) for i in range(501)])


def test_watch_collection_orders_and_maps_snapshots(fake_db):
    store = FirestoreStore(fake_db)
    seen: list[StoreSnapshot] = []
    unsubscribe = store.watch_collection("users/u1/trades", seen.append, order_by="timestamp", descending=True)

    assert fake_db.queries[0].ordering == [("timestamp", firestore.Query.DESCENDING)]
    fake_db.listeners[0](
        [_FakeSnap("t2", exists=True, data={"pnl": 2}), _FakeSnap("t1", exists=True, data={"pnl": 1})],
        [],
        None,
    )
    assert [d.id for d in seen[0].documents] == ["t2", "t1"]
    assert seen[0].has_pending_writes is False

    unsubscribe()
    assert fake_db.watches[0].unsubscribed is True


def test_watch_document_reports_missing_document_as_empty(fake_db):
    store = FirestoreStore(fake_db)
    seen: list[StoreSnapshot] = []
    store.watch_document("users/u1/settings/main", seen.append)
    fake_db.listeners[0]([_FakeSnap("main", exists=False, data=None)], [], None)
    fake_db.listeners[0]([_FakeSnap("main", exists=True, data={"theme": "dark"})], [], None)
    assert seen[0].documents == ()
    assert seen[1].documents[0].data == {"theme": "dark"}


@pytest.mark.parametrize(
    "environ,refused",
    [
        ({}, True),
        ({"FIRESTORE_EMULATOR_HOST": "127.0.0.1:8080"}, False),
        ({"ALLOW_PROD_FIRESTORE": "1"}, False),
        ({"K_SERVICE": "tradelog-sync"}, False),
        ({"GAE_ENV": "standard"}, False),
    ],
)
def test_local_runs_require_the_emulator(environ, refused):
    if refused:
        with pytest.raises(StoreConfigurationError):
            require_firestore_emulator_or_allow_prod(caller="test", environ=environ)
    else:
        require_firestore_emulator_or_allow_prod(caller="test", environ=environ)
    assert is_local_execution(environ) is not ("K_SERVICE" in environ or "GAE_ENV" in environ)
