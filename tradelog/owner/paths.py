from __future__ import annotations

from dataclasses import dataclass

from tradelog.errors import ValidationFailure
from tradelog.schema import (
    DEFAULT_ROOT_COLLECTION,
    SINGLETON_DOC_ID,
    EntityKind,
    require_collection_kind,
    require_singleton_kind,
)


def _segment(value: object, *, what: str, kind: EntityKind | None = None) -> str:
    s = str(value if value is not None else "")
    if not s.strip():
        raise ValidationFailure(f"{what} is required", kind=kind.value if kind else None)
    if "/" in s:
        raise ValidationFailure(f"{what} must not contain '/'", kind=kind.value if kind else None)
    return s


def require_owner_id(owner_id: object) -> str:
    """
    Every path is owner-scoped; no path is ever built without an owner id.
    """
    return _segment(owner_id, what="owner_id")


def collection_path(owner_id: str, kind: EntityKind | str, *, root: str = DEFAULT_ROOT_COLLECTION) -> str:
    """
    Owner-scoped collection path.

    Example:
      collection_path("u1", EntityKind.TRADE)
      => users/u1/trades
    """
    k = require_collection_kind(kind)
    return f"{root}/{require_owner_id(owner_id)}/{k.value}"


def document_path(
    owner_id: str,
    kind: EntityKind | str,
    doc_id: str,
    *,
    root: str = DEFAULT_ROOT_COLLECTION,
) -> str:
    """
    Example:
      document_path("u1", "trades", "trade_1")
      => users/u1/trades/trade_1
    """
    k = require_collection_kind(kind)
    base = collection_path(owner_id, k, root=root)
    return f"{base}/{_segment(doc_id, what='record id', kind=k)}"


def singleton_path(owner_id: str, kind: EntityKind | str, *, root: str = DEFAULT_ROOT_COLLECTION) -> str:
    """
    Example:
      singleton_path("u1", EntityKind.SETTINGS)
      => users/u1/settings/main
    """
    k = require_singleton_kind(kind)
    return f"{root}/{require_owner_id(owner_id)}/{k.value}/{SINGLETON_DOC_ID}"


@dataclass(frozen=True)
class OwnerPaths:
    owner_id: str
    root: str = DEFAULT_ROOT_COLLECTION

    def __post_init__(self) -> None:
        object.__setattr__(self, "owner_id", require_owner_id(self.owner_id))

    @property
    def owner_doc(self) -> str:
        return f"{self.root}/{self.owner_id}"

    def collection(self, kind: EntityKind | str) -> str:
        return collection_path(self.owner_id, kind, root=self.root)

    def document(self, kind: EntityKind | str, doc_id: str) -> str:
        return document_path(self.owner_id, kind, doc_id, root=self.root)

    def singleton(self, kind: EntityKind | str) -> str:
        return singleton_path(self.owner_id, kind, root=self.root)
