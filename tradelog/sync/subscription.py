from __future__ import annotations

import asyncio
import logging
import threading
from dataclasses import dataclass
from typing import Any, AsyncIterator, Callable, Generic, Optional, Tuple, TypeVar

from tradelog.common.logging import log_event
from tradelog.persistence.store import StoreSnapshot, Unsubscribe
from tradelog.schema import EntityKind

logger = logging.getLogger(__name__)

T = TypeVar("T")


@dataclass(frozen=True)
class CollectionSnapshot:
    """
    Full current contents of one owner's collection.

    Trades are ordered newest first by server write timestamp; other kinds
    come in storage order.
    """

    kind: EntityKind
    owner_id: str
    records: Tuple[dict[str, Any], ...]
    has_pending_writes: bool = False
    from_cache: bool = False

    @property
    def ids(self) -> list[str]:
        return [str(r["id"]) for r in self.records]

    def get(self, record_id: str) -> Optional[dict[str, Any]]:
        for r in self.records:
            if r.get("id") == record_id:
                return r
        return None

    def __len__(self) -> int:
        return len(self.records)


@dataclass(frozen=True)
class DocumentSnapshot:
    """Singleton document (settings/profile); `record` is None when absent."""

    kind: EntityKind
    owner_id: str
    record: Optional[dict[str, Any]]
    has_pending_writes: bool = False
    from_cache: bool = False

    @property
    def exists(self) -> bool:
        return self.record is not None


def collection_snapshot(kind: EntityKind, owner_id: str, snap: StoreSnapshot) -> CollectionSnapshot:
    return CollectionSnapshot(
        kind=kind,
        owner_id=owner_id,
        records=tuple(d.to_record() for d in snap.documents),
        has_pending_writes=snap.has_pending_writes,
        from_cache=snap.from_cache,
    )


def document_snapshot(kind: EntityKind, owner_id: str, snap: StoreSnapshot) -> DocumentSnapshot:
    record: Optional[dict[str, Any]] = None
    if snap.documents:
        # Singleton documents are delivered as their plain field map.
        record = dict(snap.documents[0].data)
    return DocumentSnapshot(
        kind=kind,
        owner_id=owner_id,
        record=record,
        has_pending_writes=snap.has_pending_writes,
        from_cache=snap.from_cache,
    )


class SubscriptionClosed(RuntimeError):
    """Raised by `Subscription.next()` once the subscription is cancelled."""


# Queued after the last snapshot when a subscription is cancelled.
_END: Any = object()


def _running_loop() -> Optional[asyncio.AbstractEventLoop]:
    try:
        return asyncio.get_running_loop()
    except RuntimeError:
        return None


class Subscription(Generic[T]):
    """
    Handle for one standing watch.

    Snapshots are delivered on the event loop that opened the subscription
    (or on the notifying thread when opened outside a loop). After
    `cancel()` nothing more is delivered and a pending `next()` raises
    `SubscriptionClosed`. Use as a context manager (`with` / `async with`)
    for scoped release.

    Without a handler every snapshot is queued for `next()` / `async for`.
    With a handler the queue only keeps the most recent undelivered one.
    """

    def __init__(
        self,
        *,
        kind: EntityKind,
        owner_id: str,
        convert: Callable[[StoreSnapshot], T],
        handler: Optional[Callable[[T], Any]] = None,
        loop: Optional[asyncio.AbstractEventLoop] = None,
    ) -> None:
        self.kind = kind
        self.owner_id = owner_id
        self._convert = convert
        self._handler = handler
        self._loop = loop if loop is not None else _running_loop()
        self._queue: Optional[asyncio.Queue[T]] = None
        if self._loop is not None:
            self._queue = asyncio.Queue(maxsize=1 if handler is not None else 0)
        self._lock = threading.Lock()
        self._unsubscribe: Optional[Unsubscribe] = None
        self._cancelled = False
        self._closed = False
        self._latest: Optional[T] = None
        self.delivered = 0

    # ---- lifecycle --------------------------------------------------------

    def _attach(self, unsubscribe: Unsubscribe) -> None:
        with self._lock:
            if not self._cancelled:
                self._unsubscribe = unsubscribe
                return
        # Cancelled while the watch was being opened.
        unsubscribe()

    @property
    def cancelled(self) -> bool:
        return self._cancelled

    @property
    def latest(self) -> Optional[T]:
        return self._latest

    @property
    def backlog(self) -> int:
        """Snapshots delivered but not yet taken with `next()`."""
        if self._queue is None:
            return 0
        n = self._queue.qsize()
        return n - 1 if self._closed and n else n

    def cancel(self) -> None:
        with self._lock:
            if self._cancelled:
                return
            self._cancelled = True
            unsubscribe, self._unsubscribe = self._unsubscribe, None
        if unsubscribe is not None:
            unsubscribe()
        if self._loop is not None and not self._loop.is_closed():
            self._loop.call_soon_threadsafe(self._close_queue)
        log_event(logger, "sync.unsubscribe", kind=self.kind.value, owner_id=self.owner_id, delivered=self.delivered)

    def _close_queue(self) -> None:
        queue = self._queue
        if queue is None:
            return
        if queue.full():
            queue.get_nowait()
        queue.put_nowait(_END)
        self._closed = True

    def __enter__(self) -> "Subscription[T]":
        return self

    def __exit__(self, *exc: Any) -> None:
        self.cancel()

    async def __aenter__(self) -> "Subscription[T]":
        return self

    async def __aexit__(self, *exc: Any) -> None:
        self.cancel()

    # ---- delivery ---------------------------------------------------------

    def on_store_snapshot(self, snap: StoreSnapshot) -> None:
        """Store callback; may run on any thread."""
        if self._cancelled:
            return
        value = self._convert(snap)
        if self._loop is None:
            self._dispatch(value)
            return
        try:
            self._loop.call_soon_threadsafe(self._dispatch, value)
        except RuntimeError:
            # Owning loop already closed: nobody is left to receive it.
            log_event(
                logger,
                "sync.snapshot_dropped",
                severity="WARNING",
                kind=self.kind.value,
                owner_id=self.owner_id,
            )

    def _dispatch(self, value: T) -> None:
        if self._cancelled:
            return
        self._latest = value
        self.delivered += 1
        queue = self._queue
        if queue is not None:
            if queue.full():
                # Handler mode: an older unread snapshot is superseded.
                queue.get_nowait()
            queue.put_nowait(value)
        if self._handler is None:
            return
        try:
            self._handler(value)
        except Exception:
            log_event(
                logger,
                "sync.handler_failed",
                severity="ERROR",
                exc_info=True,
                kind=self.kind.value,
                owner_id=self.owner_id,
            )

    async def next(self, timeout: Optional[float] = None) -> T:
        """
        Wait for the next delivered snapshot (in delivery order).

        Raises `SubscriptionClosed` once the subscription is cancelled and
        everything delivered before that has been taken.
        """
        queue = self._queue
        if queue is None:
            raise RuntimeError("Subscription was opened outside an event loop; use a handler instead")
        if self._cancelled and queue.empty():
            raise SubscriptionClosed(f"{self.kind.value} subscription for {self.owner_id} is cancelled")
        if timeout is None:
            value = await queue.get()
        else:
            value = await asyncio.wait_for(queue.get(), timeout=timeout)
        if value is _END:
            # Leave the marker for any other waiter.
            queue.put_nowait(_END)
            raise SubscriptionClosed(f"{self.kind.value} subscription for {self.owner_id} is cancelled")
        return value

    async def __aiter__(self) -> AsyncIterator[T]:
        while True:
            try:
                value = await self.next()
            except SubscriptionClosed:
                return
            yield value


CollectionSubscription = Subscription[CollectionSnapshot]
DocumentSubscription = Subscription[DocumentSnapshot]

__all__ = [
    "CollectionSnapshot",
    "CollectionSubscription",
    "DocumentSnapshot",
    "DocumentSubscription",
    "Subscription",
    "SubscriptionClosed",
    "collection_snapshot",
    "document_snapshot",
]
