from __future__ import annotations

import copy
import itertools
import logging
import threading
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Any, Callable, Iterable, Mapping, Optional, Sequence

from tradelog.errors import NotFoundError, ValidationFailure
from tradelog.persistence.store import (
    SERVER_TIMESTAMP,
    BatchWrite,
    SnapshotCallback,
    StoredDocument,
    StoreSnapshot,
    Unsubscribe,
)
from tradelog.schema import MAX_BATCH_SIZE

logger = logging.getLogger(__name__)


def _utc_now() -> datetime:
    return datetime.now(timezone.utc)


def _parent(path: str) -> str:
    return path.rsplit("/", 1)[0] if "/" in path else ""


def _check_doc_path(path: str) -> str:
    segments = str(path).split("/")
    if len(segments) < 2 or len(segments) % 2 != 0 or any(not s for s in segments):
        raise ValidationFailure(f"invalid document path: {path!r}", path=str(path))
    return str(path)


def _deep_merge(base: Mapping[str, Any], patch: Mapping[str, Any]) -> dict[str, Any]:
    merged = dict(base)
    for k, v in patch.items():
        existing = merged.get(k)
        if isinstance(v, Mapping) and isinstance(existing, Mapping):
            merged[k] = _deep_merge(existing, v)
        else:
            merged[k] = v
    return merged


def _order_key(value: Any) -> tuple[int, Any]:
    """Firestore cross-type ordering: null < bool < number < timestamp < string < bytes < other."""
    if value is None:
        return (0, 0)
    if isinstance(value, bool):
        return (1, value)
    if isinstance(value, (int, float)):
        return (2, value)
    if isinstance(value, datetime):
        return (3, value if value.tzinfo else value.replace(tzinfo=timezone.utc))
    if isinstance(value, str):
        return (4, value)
    if isinstance(value, bytes):
        return (5, value)
    return (9, repr(value))


@dataclass
class _Entry:
    seq: int
    data: dict[str, Any]


@dataclass
class _Watcher:
    path: str
    callback: SnapshotCallback
    is_collection: bool
    order_by: Optional[str] = None
    descending: bool = False


class MemoryStore:
    """
    In-process `DocumentStore` with Firestore write/watch semantics.

    - set(merge=True) deep-merges maps; update() requires an existing document
    - SERVER_TIMESTAMP resolves to a strictly increasing UTC clock
    - watches deliver the current state immediately, then once per change
    - ordered watches skip documents lacking the order field; ties keep
      storage (insertion) order

    Listeners run while the store lock is held, so every watcher sees
    snapshots in commit order. The lock is reentrant: a listener may write
    back to the store from the notifying thread.

    Offline mode models the client-side cache: writes apply locally at once
    and are delivered with has_pending_writes/from_cache set until
    `go_online()` acknowledges them.
    """

    def __init__(self, *, offline: bool = False, clock: Callable[[], datetime] | None = None) -> None:
        self._lock = threading.RLock()
        self._docs: dict[str, _Entry] = {}
        self._seq = itertools.count()
        self._watchers: dict[int, _Watcher] = {}
        self._watch_ids = itertools.count()
        self._clock = clock or _utc_now
        self._last_ts: Optional[datetime] = None
        self._offline = bool(offline)
        self._pending_paths: set[str] = set()
        self._failures: dict[str, list[list[Any]]] = {}

        self.write_count = 0
        self.batch_sizes: list[int] = []

    # ---- test hooks -------------------------------------------------------

    def inject_failure(self, operation: str, error: BaseException, *, after: int = 0) -> None:
        """
        Make the call number `after + 1` (counting from now) of `operation`
        raise `error` before touching any data. Operations: set, update,
        delete, get, commit_batch, watch.
        """
        with self._lock:
            self._failures.setdefault(operation, []).append([int(after), error])

    def _maybe_fail(self, operation: str) -> None:
        with self._lock:
            queue = self._failures.get(operation)
            if not queue:
                return
            entry = queue[0]
            if entry[0] > 0:
                entry[0] -= 1
                return
            queue.pop(0)
            error = entry[1]
        raise error

    @property
    def offline(self) -> bool:
        return self._offline

    def go_offline(self) -> None:
        with self._lock:
            self._offline = True

    def go_online(self) -> None:
        """Acknowledge every pending local write and re-deliver confirmed snapshots."""
        with self._lock:
            self._offline = False
            self._pending_paths.clear()
            self._deliver([(w.callback, self._snapshot_for(w)) for w in self._watchers.values()])

    def list_collection(self, path: str) -> list[StoredDocument]:
        with self._lock:
            return [self._stored(p, e) for p, e in self._children(path)]

    # ---- DocumentStore ----------------------------------------------------

    def set(self, path: str, data: Mapping[str, Any], *, merge: bool = True) -> None:
        self._maybe_fail("set")
        path = _check_doc_path(path)
        with self._lock:
            self._apply_set(path, data, merge=merge)
            self.write_count += 1
            self._deliver(self._affected([path]))

    def update(self, path: str, data: Mapping[str, Any]) -> None:
        self._maybe_fail("update")
        path = _check_doc_path(path)
        with self._lock:
            entry = self._docs.get(path)
            if entry is None:
                raise NotFoundError(f"no document to update at {path}", operation="update", path=path)
            entry.data.update(self._resolve(data))
            self._mark_written(path)
            self.write_count += 1
            self._deliver(self._affected([path]))

    def delete(self, path: str) -> None:
        self._maybe_fail("delete")
        path = _check_doc_path(path)
        with self._lock:
            self.write_count += 1
            if self._docs.pop(path, None) is None:
                return
            self._mark_written(path)
            self._deliver(self._affected([path]))

    def get(self, path: str) -> Optional[StoredDocument]:
        self._maybe_fail("get")
        path = _check_doc_path(path)
        with self._lock:
            entry = self._docs.get(path)
            return self._stored(path, entry) if entry is not None else None

    def commit_batch(self, writes: Sequence[BatchWrite]) -> None:
        self._maybe_fail("commit_batch")
        if not writes:
            return
        if len(writes) > MAX_BATCH_SIZE:
            raise ValidationFailure(f"batch of {len(writes)} writes exceeds the {MAX_BATCH_SIZE} limit")
        paths = [_check_doc_path(p) for p, _ in writes]
        with self._lock:
            for path, (_, data) in zip(paths, writes):
                self._apply_set(path, data, merge=True)
            self.write_count += len(writes)
            self.batch_sizes.append(len(writes))
            self._deliver(self._affected(paths))

    def watch_collection(
        self,
        path: str,
        callback: SnapshotCallback,
        *,
        order_by: Optional[str] = None,
        descending: bool = False,
    ) -> Unsubscribe:
        watcher = _Watcher(path=path, callback=callback, is_collection=True, order_by=order_by, descending=descending)
        return self._register(watcher)

    def watch_document(self, path: str, callback: SnapshotCallback) -> Unsubscribe:
        return self._register(_Watcher(path=_check_doc_path(path), callback=callback, is_collection=False))

    # ---- internals --------------------------------------------------------

    def _register(self, watcher: _Watcher) -> Unsubscribe:
        self._maybe_fail("watch")
        with self._lock:
            watch_id = next(self._watch_ids)
            self._watchers[watch_id] = watcher
            self._deliver([(watcher.callback, self._snapshot_for(watcher))])

        def _unsubscribe() -> None:
            with self._lock:
                self._watchers.pop(watch_id, None)

        return _unsubscribe

    def _server_now(self) -> datetime:
        now = self._clock()
        if self._last_ts is not None and now <= self._last_ts:
            now = self._last_ts + timedelta(microseconds=1)
        self._last_ts = now
        return now

    def _resolve(self, data: Mapping[str, Any]) -> dict[str, Any]:
        out: dict[str, Any] = {}
        for k, v in data.items():
            if v is SERVER_TIMESTAMP:
                out[k] = self._server_now()
            elif isinstance(v, Mapping):
                out[k] = self._resolve(v)
            else:
                out[k] = copy.deepcopy(v)
        return out

    def _apply_set(self, path: str, data: Mapping[str, Any], *, merge: bool) -> None:
        resolved = self._resolve(data)
        entry = self._docs.get(path)
        if entry is None:
            self._docs[path] = _Entry(seq=next(self._seq), data=resolved)
        elif merge:
            entry.data = _deep_merge(entry.data, resolved)
        else:
            entry.data = resolved
        self._mark_written(path)

    def _mark_written(self, path: str) -> None:
        if self._offline:
            self._pending_paths.add(path)

    def _children(self, path: str) -> list[tuple[str, _Entry]]:
        items = [(p, e) for p, e in self._docs.items() if _parent(p) == path]
        items.sort(key=lambda item: item[1].seq)
        return items

    @staticmethod
    def _stored(path: str, entry: _Entry) -> StoredDocument:
        return StoredDocument(id=path.rsplit("/", 1)[-1], data=copy.deepcopy(entry.data))

    def _snapshot_for(self, watcher: _Watcher) -> StoreSnapshot:
        if watcher.is_collection:
            items = self._children(watcher.path)
            if watcher.order_by:
                field = watcher.order_by
                items = [(p, e) for p, e in items if field in e.data]
                items = sorted(items, key=lambda item: _order_key(item[1].data[field]), reverse=watcher.descending)
            docs = tuple(self._stored(p, e) for p, e in items)
            pending = any(_parent(p) == watcher.path for p in self._pending_paths)
        else:
            entry = self._docs.get(watcher.path)
            docs = (self._stored(watcher.path, entry),) if entry is not None else ()
            pending = watcher.path in self._pending_paths
        return StoreSnapshot(documents=docs, has_pending_writes=pending, from_cache=self._offline)

    def _affected(self, paths: Iterable[str]) -> list[tuple[SnapshotCallback, StoreSnapshot]]:
        changed = set(paths)
        parents = {_parent(p) for p in changed}
        deliveries = []
        for watcher in self._watchers.values():
            hit = watcher.path in parents if watcher.is_collection else watcher.path in changed
            if hit:
                deliveries.append((watcher.callback, self._snapshot_for(watcher)))
        return deliveries

    @staticmethod
    def _deliver(deliveries: Sequence[tuple[SnapshotCallback, StoreSnapshot]]) -> None:
        for callback, snapshot in deliveries:
            try:
                callback(snapshot)
            except Exception:
                # A broken listener must not fail the write that triggered it.
                logger.exception("memory_store listener failed")
