"""
One-time upload of pre-existing offline records.

Every record keeps its id (or gets a generated one), is normalized and
stamped with `migratedAt`, and lands in atomic batch commits of at most
`batch_size` documents. A failed batch leaves earlier batches committed and
raises `PartialMigrationFailure` describing exactly what is left to upload.
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from typing import Any, Mapping, Sequence

from tradelog.common.logging import log_event
from tradelog.errors import PartialMigrationFailure, ValidationFailure
from tradelog.owner.paths import document_path
from tradelog.persistence.store import DocumentStore
from tradelog.schema import (
    DEFAULT_MIGRATION_BATCH_SIZE,
    DEFAULT_ROOT_COLLECTION,
    FIELD_ID,
    MAX_BATCH_SIZE,
    EntityKind,
)
from tradelog.sync.ids import resolve_record_id
from tradelog.sync.models import validate_record
from tradelog.sync.normalize import normalize_payload, stamp_migration, strip_unset

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class PreparedRecord:
    index: int
    record_id: str
    path: str
    payload: dict[str, Any]

    def to_record(self) -> dict[str, Any]:
        return {"id": self.record_id, **self.payload}


def prepare_records(
    owner_id: str,
    kind: EntityKind,
    records: Sequence[Any],
    *,
    root: str = DEFAULT_ROOT_COLLECTION,
) -> list[PreparedRecord]:
    """
    Validate and normalize every record up front, so a bad record fails the
    whole call before anything is written.
    """
    prepared: list[PreparedRecord] = []
    for i, record in enumerate(records):
        raw = strip_unset(record)
        try:
            record_id = resolve_record_id(kind, raw.get(FIELD_ID))
            wire = validate_record(kind, raw)
        except ValidationFailure as e:
            raise ValidationFailure(f"record {i}: {e.message}", kind=kind.value, owner_id=owner_id) from e
        payload = stamp_migration(normalize_payload(wire, owner_id, kind))
        path = document_path(owner_id, kind, record_id, root=root)
        prepared.append(PreparedRecord(index=i, record_id=record_id, path=path, payload=payload))
    return prepared


def _chunks(items: Sequence[PreparedRecord], size: int) -> list[Sequence[PreparedRecord]]:
    return [items[i : i + size] for i in range(0, len(items), size)]


async def migrate_local(
    store: DocumentStore,
    owner_id: str,
    kind: EntityKind,
    records: Sequence[Any] | None,
    *,
    batch_size: int = DEFAULT_MIGRATION_BATCH_SIZE,
    root: str = DEFAULT_ROOT_COLLECTION,
) -> list[dict[str, Any]]:
    """
    Upload `records` for one owner and kind; returns them with final ids.

    Empty input is a no-op: no store call at all.
    """
    if not 1 <= int(batch_size) <= MAX_BATCH_SIZE:
        raise ValidationFailure(f"batch_size must be within 1..{MAX_BATCH_SIZE}", kind=kind.value)
    records = list(records or ())
    if not records:
        return []

    prepared = prepare_records(owner_id, kind, records, root=root)
    batches = _chunks(prepared, int(batch_size))
    uploaded: list[dict[str, Any]] = []

    for batch_index, batch in enumerate(batches):
        writes: list[tuple[str, Mapping[str, Any]]] = [(p.path, p.payload) for p in batch]
        try:
            await asyncio.to_thread(store.commit_batch, writes)
        except Exception as e:
            first_remaining = batch[0].index
            log_event(
                logger,
                "sync.migration_failed",
                severity="ERROR",
                kind=kind.value,
                owner_id=owner_id,
                batch_index=batch_index,
                committed_batches=batch_index,
                total_batches=len(batches),
                remaining=len(records) - first_remaining,
                error=f"{type(e).__name__}: {e}",
            )
            raise PartialMigrationFailure(
                f"migration batch {batch_index + 1}/{len(batches)} failed",
                committed_batches=batch_index,
                total_batches=len(batches),
                committed=uploaded,
                remaining=records[first_remaining:],
                cause=e,
                kind=kind.value,
                owner_id=owner_id,
            ) from e

        uploaded.extend(p.to_record() for p in batch)
        log_event(
            logger,
            "sync.migration_batch",
            kind=kind.value,
            owner_id=owner_id,
            batch_index=batch_index,
            batch_records=len(batch),
            total_batches=len(batches),
            first_id=batch[0].record_id,
            last_id=batch[-1].record_id,
        )

    return uploaded
