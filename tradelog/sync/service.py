from __future__ import annotations

import asyncio
import logging
from contextlib import contextmanager
from functools import partial
from typing import Any, Callable, Iterator, Optional, Sequence

from tradelog.common.config import SyncSettings, get_settings
from tradelog.common.logging import log_event
from tradelog.errors import NotFoundError, SyncError
from tradelog.owner.paths import OwnerPaths
from tradelog.persistence.firestore_store import FirestoreStore
from tradelog.persistence.store import DocumentStore
from tradelog.schema import (
    FIELD_ID,
    EntityKind,
    require_collection_kind,
    require_singleton_kind,
)
from tradelog.sync.ids import resolve_record_id
from tradelog.sync.migration import migrate_local
from tradelog.sync.models import validate_record
from tradelog.sync.normalize import normalize_payload, stamp_update, strip_unset
from tradelog.sync.subscription import (
    CollectionSnapshot,
    DocumentSnapshot,
    Subscription,
    collection_snapshot,
    document_snapshot,
)

logger = logging.getLogger(__name__)

CollectionHandler = Callable[[CollectionSnapshot], Any]
DocumentHandler = Callable[[DocumentSnapshot], Any]


@contextmanager
def _annotated(kind: EntityKind, owner_id: Any, operation: str) -> Iterator[None]:
    try:
        yield
    except SyncError as e:
        e.annotate(kind=kind.value, owner_id=str(owner_id), operation=operation)
        log_event(logger, "sync.error", severity="WARNING", message=str(e), **e.context())
        raise


class SyncService:
    """
    Owner-scoped read/write surface over one `DocumentStore`.

    The store handle is passed in explicitly; there is no module-level
    client, so tests and multiple isolated instances can coexist.

    Writes are coroutines (blocking store calls run in a worker thread).
    Subscriptions return a `Subscription` handle immediately.
    Nothing is retried here: every store failure reaches the caller,
    annotated with kind/owner/operation.
    """

    def __init__(self, store: DocumentStore, *, settings: Optional[SyncSettings] = None) -> None:
        self._store = store
        self._settings = settings or get_settings()

    @property
    def store(self) -> DocumentStore:
        return self._store

    @property
    def settings(self) -> SyncSettings:
        return self._settings

    def paths(self, owner_id: str) -> OwnerPaths:
        return OwnerPaths(owner_id=owner_id, root=self._settings.root_collection)

    # ---- generic write path ----------------------------------------------

    async def save(self, kind: EntityKind | str, owner_id: str, record: Any) -> dict[str, Any]:
        """
        Create-or-replace with merge semantics: fields absent from `record`
        are left untouched remotely. Returns the written payload plus its id.
        """
        kind = require_collection_kind(kind)
        with _annotated(kind, owner_id, "save"):
            paths = self.paths(owner_id)
            raw = strip_unset(record)
            record_id = resolve_record_id(kind, raw.get(FIELD_ID))
            path = paths.document(kind, record_id)
            payload = normalize_payload(validate_record(kind, raw), paths.owner_id, kind)
            await asyncio.to_thread(self._store.set, path, payload, merge=True)
        log_event(logger, "sync.write", operation="save", kind=kind.value, owner_id=owner_id, record_id=record_id)
        return {"id": record_id, **payload}

    async def update(
        self,
        kind: EntityKind | str,
        owner_id: str,
        record_id: str,
        fields: Any,
    ) -> dict[str, Any]:
        """
        Field-level merge of `fields` plus `updatedAt`. Raises NotFoundError
        (from the store) when the record does not exist.
        """
        kind = require_collection_kind(kind)
        with _annotated(kind, owner_id, "update"):
            paths = self.paths(owner_id)
            path = paths.document(kind, record_id)
            wire = validate_record(kind, strip_unset(fields))
            patch = stamp_update(normalize_payload(wire, paths.owner_id, kind, creating=False))
            await asyncio.to_thread(self._store.update, path, patch)
        log_event(logger, "sync.write", operation="update", kind=kind.value, owner_id=owner_id, record_id=record_id)
        return patch

    async def delete(self, kind: EntityKind | str, owner_id: str, record_id: str) -> None:
        """Idempotent: deleting a missing record is not an error."""
        kind = require_collection_kind(kind)
        with _annotated(kind, owner_id, "delete"):
            path = self.paths(owner_id).document(kind, record_id)
            try:
                await asyncio.to_thread(self._store.delete, path)
            except NotFoundError:
                log_event(logger, "sync.delete_noop", kind=kind.value, owner_id=owner_id, record_id=record_id)
                return
        log_event(logger, "sync.delete", kind=kind.value, owner_id=owner_id, record_id=record_id)

    async def save_singleton(self, kind: EntityKind | str, owner_id: str, data: Any) -> dict[str, Any]:
        """Upsert-merge into the owner's fixed settings/profile document."""
        kind = require_singleton_kind(kind)
        with _annotated(kind, owner_id, "save"):
            paths = self.paths(owner_id)
            wire = validate_record(kind, strip_unset(data))
            payload = stamp_update(normalize_payload(wire, paths.owner_id, kind, creating=False))
            await asyncio.to_thread(self._store.set, paths.singleton(kind), payload, merge=True)
        log_event(logger, "sync.write", operation="save", kind=kind.value, owner_id=owner_id)
        return payload

    async def upload_local(
        self,
        kind: EntityKind | str,
        owner_id: str,
        records: Optional[Sequence[Any]],
    ) -> list[dict[str, Any]]:
        kind = require_collection_kind(kind)
        with _annotated(kind, owner_id, "migrate_local"):
            paths = self.paths(owner_id)
            uploaded = await migrate_local(
                self._store,
                paths.owner_id,
                kind,
                records,
                batch_size=self._settings.migration_batch_size,
                root=paths.root,
            )
        log_event(logger, "sync.migrated", kind=kind.value, owner_id=owner_id, records=len(uploaded))
        return uploaded

    # ---- generic subscription path ---------------------------------------

    def subscribe(
        self,
        kind: EntityKind | str,
        owner_id: str,
        handler: Optional[CollectionHandler] = None,
    ) -> Subscription[CollectionSnapshot]:
        kind = require_collection_kind(kind)
        with _annotated(kind, owner_id, "subscribe"):
            path = self.paths(owner_id).collection(kind)
            sub: Subscription[CollectionSnapshot] = Subscription(
                kind=kind,
                owner_id=owner_id,
                convert=partial(collection_snapshot, kind, owner_id),
                handler=handler,
            )
            unsubscribe = self._store.watch_collection(
                path,
                sub.on_store_snapshot,
                order_by=kind.order_by,
                descending=True,
            )
        sub._attach(unsubscribe)
        log_event(logger, "sync.subscribe", kind=kind.value, owner_id=owner_id)
        return sub

    def subscribe_singleton(
        self,
        kind: EntityKind | str,
        owner_id: str,
        handler: Optional[DocumentHandler] = None,
    ) -> Subscription[DocumentSnapshot]:
        kind = require_singleton_kind(kind)
        with _annotated(kind, owner_id, "subscribe"):
            path = self.paths(owner_id).singleton(kind)
            sub: Subscription[DocumentSnapshot] = Subscription(
                kind=kind,
                owner_id=owner_id,
                convert=partial(document_snapshot, kind, owner_id),
                handler=handler,
            )
            unsubscribe = self._store.watch_document(path, sub.on_store_snapshot)
        sub._attach(unsubscribe)
        log_event(logger, "sync.subscribe", kind=kind.value, owner_id=owner_id)
        return sub

    # ---- trades -------------------------------------------------------------

    async def save_trade(self, owner_id: str, trade: Any) -> dict[str, Any]:
        return await self.save(EntityKind.TRADE, owner_id, trade)

    async def update_trade(self, owner_id: str, trade_id: str, updates: Any) -> dict[str, Any]:
        return await self.update(EntityKind.TRADE, owner_id, trade_id, updates)

    async def delete_trade(self, owner_id: str, trade_id: str) -> None:
        await self.delete(EntityKind.TRADE, owner_id, trade_id)

    def subscribe_to_trades(
        self, owner_id: str, handler: Optional[CollectionHandler] = None
    ) -> Subscription[CollectionSnapshot]:
        return self.subscribe(EntityKind.TRADE, owner_id, handler)

    async def upload_local_trades(self, owner_id: str, trades: Optional[Sequence[Any]]) -> list[dict[str, Any]]:
        return await self.upload_local(EntityKind.TRADE, owner_id, trades)

    # ---- accounts -----------------------------------------------------------

    async def save_account(self, owner_id: str, account: Any) -> dict[str, Any]:
        return await self.save(EntityKind.ACCOUNT, owner_id, account)

    async def update_account(self, owner_id: str, account_id: str, updates: Any) -> dict[str, Any]:
        return await self.update(EntityKind.ACCOUNT, owner_id, account_id, updates)

    async def delete_account(self, owner_id: str, account_id: str) -> None:
        await self.delete(EntityKind.ACCOUNT, owner_id, account_id)

    def subscribe_to_accounts(
        self, owner_id: str, handler: Optional[CollectionHandler] = None
    ) -> Subscription[CollectionSnapshot]:
        return self.subscribe(EntityKind.ACCOUNT, owner_id, handler)

    async def upload_local_accounts(self, owner_id: str, accounts: Optional[Sequence[Any]]) -> list[dict[str, Any]]:
        return await self.upload_local(EntityKind.ACCOUNT, owner_id, accounts)

    # ---- strategies ---------------------------------------------------------

    async def save_strategy(self, owner_id: str, strategy: Any) -> dict[str, Any]:
        return await self.save(EntityKind.STRATEGY, owner_id, strategy)

    async def update_strategy(self, owner_id: str, strategy_id: str, updates: Any) -> dict[str, Any]:
        return await self.update(EntityKind.STRATEGY, owner_id, strategy_id, updates)

    async def delete_strategy(self, owner_id: str, strategy_id: str) -> None:
        await self.delete(EntityKind.STRATEGY, owner_id, strategy_id)

    def subscribe_to_strategies(
        self, owner_id: str, handler: Optional[CollectionHandler] = None
    ) -> Subscription[CollectionSnapshot]:
        return self.subscribe(EntityKind.STRATEGY, owner_id, handler)

    async def upload_local_strategies(
        self, owner_id: str, strategies: Optional[Sequence[Any]]
    ) -> list[dict[str, Any]]:
        return await self.upload_local(EntityKind.STRATEGY, owner_id, strategies)

    # ---- tags ---------------------------------------------------------------

    async def save_tag(self, owner_id: str, tag: Any) -> dict[str, Any]:
        return await self.save(EntityKind.TAG, owner_id, tag)

    async def update_tag(self, owner_id: str, tag_id: str, updates: Any) -> dict[str, Any]:
        return await self.update(EntityKind.TAG, owner_id, tag_id, updates)

    async def delete_tag(self, owner_id: str, tag_id: str) -> None:
        # Trades may keep referencing the id; readers tolerate dangling tags.
        await self.delete(EntityKind.TAG, owner_id, tag_id)

    def subscribe_to_tags(
        self, owner_id: str, handler: Optional[CollectionHandler] = None
    ) -> Subscription[CollectionSnapshot]:
        return self.subscribe(EntityKind.TAG, owner_id, handler)

    async def upload_local_tags(self, owner_id: str, tags: Optional[Sequence[Any]]) -> list[dict[str, Any]]:
        return await self.upload_local(EntityKind.TAG, owner_id, tags)

    # ---- settings / profile ---------------------------------------------

    async def save_settings(self, owner_id: str, settings: Any) -> dict[str, Any]:
        return await self.save_singleton(EntityKind.SETTINGS, owner_id, settings)

    def subscribe_to_settings(
        self, owner_id: str, handler: Optional[DocumentHandler] = None
    ) -> Subscription[DocumentSnapshot]:
        return self.subscribe_singleton(EntityKind.SETTINGS, owner_id, handler)

    async def save_profile(self, owner_id: str, profile: Any) -> dict[str, Any]:
        return await self.save_singleton(EntityKind.PROFILE, owner_id, profile)

    def subscribe_to_profile(
        self, owner_id: str, handler: Optional[DocumentHandler] = None
    ) -> Subscription[DocumentSnapshot]:
        return self.subscribe_singleton(EntityKind.PROFILE, owner_id, handler)


def create_firestore_service(settings: Optional[SyncSettings] = None) -> SyncService:
    """Production wiring: Firestore via Firebase Admin (ADC)."""
    resolved = settings or get_settings()
    return SyncService(FirestoreStore(project_id=resolved.firebase_project_id, settings=resolved), settings=resolved)
