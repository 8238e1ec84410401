from __future__ import annotations

from enum import Enum
from typing import Any, Mapping, Optional, Sequence


class SyncErrorCode(str, Enum):
    VALIDATION_FAILURE = "validation_failure"
    NOT_FOUND = "not_found"
    TRANSIENT = "transient_store_error"
    STORE = "store_error"
    PARTIAL_MIGRATION = "partial_migration_failure"
    AUTHENTICATION = "authentication_failure"
    CONFIGURATION = "store_configuration_error"


class SyncError(RuntimeError):
    """
    Base error for every sync-layer failure.

    Adapters construct the concrete subclass from whatever the underlying
    store reports; the service then annotates it with the entity kind, owner
    id and operation before re-raising it unchanged.
    """

    code: SyncErrorCode = SyncErrorCode.STORE

    def __init__(
        self,
        message: str,
        *,
        kind: Optional[str] = None,
        owner_id: Optional[str] = None,
        operation: Optional[str] = None,
        path: Optional[str] = None,
    ) -> None:
        super().__init__(message)
        self.message = str(message)
        self.kind = kind
        self.owner_id = owner_id
        self.operation = operation
        self.path = path

    def annotate(
        self,
        *,
        kind: Optional[str] = None,
        owner_id: Optional[str] = None,
        operation: Optional[str] = None,
    ) -> "SyncError":
        # First annotation wins; nested calls must not overwrite the origin.
        if self.kind is None and kind is not None:
            self.kind = str(kind)
        if self.owner_id is None and owner_id is not None:
            self.owner_id = str(owner_id)
        if self.operation is None and operation is not None:
            self.operation = str(operation)
        return self

    def context(self) -> dict[str, Any]:
        return {
            "code": self.code.value,
            "kind": self.kind,
            "owner_id": self.owner_id,
            "operation": self.operation,
            "path": self.path,
        }

    def __str__(self) -> str:
        parts = [f"{k}={v}" for k, v in self.context().items() if v is not None and k != "code"]
        if not parts:
            return self.message
        return f"{self.message} ({', '.join(parts)})"


class ValidationFailure(SyncError):
    """Payload or identifier rejected before any network call."""

    code = SyncErrorCode.VALIDATION_FAILURE


class NotFoundError(SyncError):
    code = SyncErrorCode.NOT_FOUND


class TransientStoreError(SyncError):
    """Network/availability failure; callers decide whether to re-issue."""

    code = SyncErrorCode.TRANSIENT


class StoreError(SyncError):
    code = SyncErrorCode.STORE


class StoreConfigurationError(SyncError):
    code = SyncErrorCode.CONFIGURATION


class AuthenticationError(SyncError):
    code = SyncErrorCode.AUTHENTICATION


class PartialMigrationFailure(SyncError):
    """
    A migration batch failed after `committed_batches` batches already committed.

    - committed: normalized records (with final ids) that are durably stored
    - remaining: the caller's original input records that were NOT committed,
      in input order, ready to be passed back to the same upload call
    """

    code = SyncErrorCode.PARTIAL_MIGRATION

    def __init__(
        self,
        message: str,
        *,
        committed_batches: int,
        total_batches: int,
        committed: Sequence[Mapping[str, Any]],
        remaining: Sequence[Any],
        cause: Optional[BaseException] = None,
        kind: Optional[str] = None,
        owner_id: Optional[str] = None,
    ) -> None:
        super().__init__(message, kind=kind, owner_id=owner_id, operation="migrate_local")
        self.committed_batches = int(committed_batches)
        self.total_batches = int(total_batches)
        self.committed = tuple(dict(r) for r in committed)
        self.remaining = tuple(remaining)
        self.cause = cause

    @property
    def committed_ids(self) -> tuple[str, ...]:
        return tuple(str(r["id"]) for r in self.committed)

    def context(self) -> dict[str, Any]:
        ctx = super().context()
        ctx.update(
            {
                "committed_batches": self.committed_batches,
                "total_batches": self.total_batches,
                "remaining": len(self.remaining),
            }
        )
        return ctx
