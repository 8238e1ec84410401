from __future__ import annotations

import logging
from dataclasses import dataclass, field

from tradelog.common.logging import bind_operation_id, log_event
from tradelog.errors import PartialMigrationFailure
from tradelog.local.journal import LocalJournal
from tradelog.schema import EntityKind
from tradelog.sync.service import SyncService

logger = logging.getLogger(__name__)

# Tags and strategies first: trades reference them by id.
MIGRATION_ORDER: tuple[EntityKind, ...] = (
    EntityKind.TAG,
    EntityKind.STRATEGY,
    EntityKind.ACCOUNT,
    EntityKind.TRADE,
)


@dataclass
class MigrationReport:
    owner_id: str
    operation_id: str
    migrated: dict[str, int] = field(default_factory=dict)
    documents: list[str] = field(default_factory=list)

    @property
    def total(self) -> int:
        return sum(self.migrated.values())


class LocalMigrator:
    """
    Moves the offline journal into the owner's remote store.

    Committed records are removed from the journal as they land, so after a
    `PartialMigrationFailure` calling `run` again uploads only what is left.
    """

    def __init__(self, service: SyncService, journal: LocalJournal) -> None:
        self._service = service
        self._journal = journal

    async def run(self, owner_id: str) -> MigrationReport:
        with bind_operation_id() as operation_id:
            report = MigrationReport(owner_id=owner_id, operation_id=operation_id)
            for kind in MIGRATION_ORDER:
                report.migrated[kind.value] = await self._migrate_kind(owner_id, kind)
            for kind in (EntityKind.SETTINGS, EntityKind.PROFILE):
                if await self._migrate_document(owner_id, kind):
                    report.documents.append(kind.value)
            log_event(
                logger,
                "local_migration.completed",
                owner_id=owner_id,
                migrated=dict(report.migrated),
                documents=list(report.documents),
            )
            return report

    async def _migrate_kind(self, owner_id: str, kind: EntityKind) -> int:
        self._journal.assign_missing_ids(kind)
        records = self._journal.load(kind)
        if not records:
            return 0
        try:
            uploaded = await self._service.upload_local(kind, owner_id, records)
        except PartialMigrationFailure as e:
            removed = self._journal.remove(kind, e.committed_ids)
            log_event(
                logger,
                "local_migration.partial",
                severity="WARNING",
                kind=kind.value,
                owner_id=owner_id,
                committed=removed,
                remaining=len(e.remaining),
            )
            raise
        self._journal.remove(kind, [r["id"] for r in uploaded])
        return len(uploaded)

    async def _migrate_document(self, owner_id: str, kind: EntityKind) -> bool:
        data = self._journal.load_document(kind)
        if not data:
            return False
        await self._service.save_singleton(kind, owner_id, data)
        self._journal.clear(kind)
        return True
