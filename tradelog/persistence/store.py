"""
Remote document store boundary.

The sync layer only talks to a `DocumentStore`: a hierarchical document
database addressed by slash paths (`users/{owner}/{collection}/{doc}`).
Implementations:
- FirestoreStore (production, google-cloud-firestore)
- MemoryStore (offline-capable in-process store; tests and local runs)

Store methods are blocking; the service runs them off the event loop.
Adapters raise `tradelog.errors.SyncError` subclasses only.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Callable, Mapping, Optional, Protocol, Sequence, Tuple

from google.cloud.firestore import SERVER_TIMESTAMP

__all__ = [
    "SERVER_TIMESTAMP",
    "BatchWrite",
    "DocumentStore",
    "SnapshotCallback",
    "StoreSnapshot",
    "StoredDocument",
    "Unsubscribe",
]


@dataclass(frozen=True)
class StoredDocument:
    id: str
    data: Mapping[str, Any] = field(default_factory=dict)

    def to_record(self) -> dict[str, Any]:
        # Path id wins over any stale `id` field inside the document body.
        return {**dict(self.data), "id": self.id}


@dataclass(frozen=True)
class StoreSnapshot:
    """
    Full current state of a watched collection (0..n docs) or document (0..1).

    - has_pending_writes: includes local writes the server has not acknowledged
    - from_cache: served from the local cache, not a confirmed server round-trip
    """

    documents: Tuple[StoredDocument, ...] = ()
    has_pending_writes: bool = False
    from_cache: bool = False


# (document path, merge payload)
BatchWrite = Tuple[str, Mapping[str, Any]]
SnapshotCallback = Callable[[StoreSnapshot], None]
Unsubscribe = Callable[[], None]


class DocumentStore(Protocol):
    def set(self, path: str, data: Mapping[str, Any], *, merge: bool = True) -> None:
        ...

    def update(self, path: str, data: Mapping[str, Any]) -> None:
        """Field-level update; raises NotFoundError when the document is missing."""
        ...

    def delete(self, path: str) -> None:
        """Idempotent."""
        ...

    def get(self, path: str) -> Optional[StoredDocument]:
        ...

    def commit_batch(self, writes: Sequence[BatchWrite]) -> None:
        """Atomically merge-set every write: all commit or none do."""
        ...

    def watch_collection(
        self,
        path: str,
        callback: SnapshotCallback,
        *,
        order_by: Optional[str] = None,
        descending: bool = False,
    ) -> Unsubscribe:
        ...

    def watch_document(self, path: str, callback: SnapshotCallback) -> Unsubscribe:
        ...
