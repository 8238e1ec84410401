from __future__ import annotations

import logging
from contextlib import contextmanager
from typing import Any, Iterator, Mapping, Optional, Sequence

from google.api_core import exceptions as gexc
from google.cloud import firestore

from tradelog.common.config import SyncSettings
from tradelog.errors import NotFoundError, StoreError, TransientStoreError, ValidationFailure
from tradelog.persistence.firebase_client import get_firestore_client
from tradelog.persistence.store import (
    BatchWrite,
    SnapshotCallback,
    StoredDocument,
    StoreSnapshot,
    Unsubscribe,
)
from tradelog.schema import MAX_BATCH_SIZE

logger = logging.getLogger(__name__)

_TRANSIENT_EXCEPTIONS: tuple[type[BaseException], ...] = (
    gexc.Aborted,
    gexc.DeadlineExceeded,
    gexc.InternalServerError,
    gexc.ResourceExhausted,
    gexc.ServiceUnavailable,
    gexc.TooManyRequests,
)

_REJECTED_EXCEPTIONS: tuple[type[BaseException], ...] = (
    gexc.InvalidArgument,
    gexc.FailedPrecondition,
)


@contextmanager
def translate_store_errors(operation: str, path: str) -> Iterator[None]:
    """
    Map google-api-core failures onto the sync error taxonomy.

    The original exception is chained (`__cause__`) and never retried here.
    """
    try:
        yield
    except gexc.NotFound as e:
        raise NotFoundError(f"document not found: {e}", operation=operation, path=path) from e
    except _TRANSIENT_EXCEPTIONS as e:
        raise TransientStoreError(f"{type(e).__name__}: {e}", operation=operation, path=path) from e
    except _REJECTED_EXCEPTIONS as e:
        raise ValidationFailure(f"rejected by store: {e}", operation=operation, path=path) from e
    except gexc.GoogleAPIError as e:
        raise StoreError(f"{type(e).__name__}: {e}", operation=operation, path=path) from e


def _to_stored(snap: Any) -> StoredDocument:
    return StoredDocument(id=str(snap.id), data=dict(snap.to_dict() or {}))


class FirestoreStore:
    """
    `DocumentStore` over a google-cloud-firestore `Client`.

    The server SDK exposes no pending-write / from-cache metadata, so every
    snapshot it delivers is a confirmed server state.
    """

    def __init__(
        self,
        db: Any | None = None,
        *,
        project_id: str | None = None,
        settings: SyncSettings | None = None,
    ) -> None:
        # Any object with the Client surface (document/collection/batch) will do.
        self._db = db if db is not None else get_firestore_client(project_id=project_id, settings=settings)

    def set(self, path: str, data: Mapping[str, Any], *, merge: bool = True) -> None:
        ref = self._db.document(path)
        with translate_store_errors("set", path):
            ref.set(dict(data), merge=merge)

    def update(self, path: str, data: Mapping[str, Any]) -> None:
        ref = self._db.document(path)
        with translate_store_errors("update", path):
            ref.update(dict(data))

    def delete(self, path: str) -> None:
        ref = self._db.document(path)
        with translate_store_errors("delete", path):
            ref.delete()

    def get(self, path: str) -> Optional[StoredDocument]:
        ref = self._db.document(path)
        with translate_store_errors("get", path):
            snap = ref.get()
        return _to_stored(snap) if snap.exists else None

    def commit_batch(self, writes: Sequence[BatchWrite]) -> None:
        if not writes:
            return
        if len(writes) > MAX_BATCH_SIZE:
            raise ValidationFailure(f"batch of {len(writes)} writes exceeds the {MAX_BATCH_SIZE} limit")
        batch = self._db.batch()
        for path, data in writes:
            batch.set(self._db.document(path), dict(data), merge=True)
        first = writes[0][0]
        with translate_store_errors("commit_batch", first):
            batch.commit()

    def watch_collection(
        self,
        path: str,
        callback: SnapshotCallback,
        *,
        order_by: Optional[str] = None,
        descending: bool = False,
    ) -> Unsubscribe:
        query = self._db.collection(path)
        if order_by:
            direction = firestore.Query.DESCENDING if descending else firestore.Query.ASCENDING
            query = query.order_by(order_by, direction=direction)

        def _on_snapshot(docs, changes, read_time) -> None:  # noqa: ARG001
            callback(StoreSnapshot(documents=tuple(_to_stored(d) for d in docs)))

        with translate_store_errors("watch_collection", path):
            watch = query.on_snapshot(_on_snapshot)
        return watch.unsubscribe

    def watch_document(self, path: str, callback: SnapshotCallback) -> Unsubscribe:
        ref = self._db.document(path)

        def _on_snapshot(snaps, changes, read_time) -> None:  # noqa: ARG001
            docs = tuple(_to_stored(s) for s in snaps if getattr(s, "exists", False))
            callback(StoreSnapshot(documents=docs))

        with translate_store_errors("watch_document", path):
            watch = ref.on_snapshot(_on_snapshot)
        return watch.unsubscribe
