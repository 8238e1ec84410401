"""
Firestore collection naming + field conventions for the trading journal.

Layout (one subtree per authenticated owner):
- users/{owner_id}/trades/{trade_id}
- users/{owner_id}/accounts/{account_id}
- users/{owner_id}/strategies/{strategy_id}
- users/{owner_id}/tags/{tag_id}
- users/{owner_id}/settings/main
- users/{owner_id}/profile/main

This file avoids Firestore reads/writes; it only names things.
"""

from __future__ import annotations

from enum import Enum
from typing import Optional

from tradelog.errors import ValidationFailure


DEFAULT_ROOT_COLLECTION = "users"
SINGLETON_DOC_ID = "main"

FIELD_ID = "id"
FIELD_USER_ID = "userId"
FIELD_TIMESTAMP = "timestamp"
FIELD_UPDATED_AT = "updatedAt"
FIELD_MIGRATED_AT = "migratedAt"

# Firestore caps a write batch at 500 operations.
MAX_BATCH_SIZE = 500
DEFAULT_MIGRATION_BATCH_SIZE = 400


class EntityKind(str, Enum):
    TRADE = "trades"
    ACCOUNT = "accounts"
    STRATEGY = "strategies"
    TAG = "tags"
    SETTINGS = "settings"
    PROFILE = "profile"

    @property
    def is_singleton(self) -> bool:
        return self in (EntityKind.SETTINGS, EntityKind.PROFILE)

    @property
    def id_prefix(self) -> str:
        try:
            return _ID_PREFIXES[self]
        except KeyError:
            raise ValidationFailure(f"{self.value} is a singleton and has no record ids", kind=self.value) from None

    @property
    def order_by(self) -> Optional[str]:
        """Field a collection snapshot is ordered by (descending), if any."""
        return FIELD_TIMESTAMP if self is EntityKind.TRADE else None

    @property
    def singular(self) -> str:
        return _SINGULAR[self]


_ID_PREFIXES = {
    EntityKind.TRADE: "trade",
    EntityKind.ACCOUNT: "acc",
    EntityKind.STRATEGY: "strategy",
    EntityKind.TAG: "tag",
}

_SINGULAR = {
    EntityKind.TRADE: "trade",
    EntityKind.ACCOUNT: "account",
    EntityKind.STRATEGY: "strategy",
    EntityKind.TAG: "tag",
    EntityKind.SETTINGS: "settings",
    EntityKind.PROFILE: "profile",
}

COLLECTION_KINDS: tuple[EntityKind, ...] = (
    EntityKind.TRADE,
    EntityKind.ACCOUNT,
    EntityKind.STRATEGY,
    EntityKind.TAG,
)

SINGLETON_KINDS: tuple[EntityKind, ...] = (EntityKind.SETTINGS, EntityKind.PROFILE)


def parse_kind(value: EntityKind | str) -> EntityKind:
    if isinstance(value, EntityKind):
        return value
    s = str(value or "").strip().lower()
    for kind in EntityKind:
        if s in (kind.value, kind.singular):
            return kind
    raise ValidationFailure(f"unknown entity kind: {value!r}")


def require_collection_kind(value: EntityKind | str) -> EntityKind:
    kind = parse_kind(value)
    if kind.is_singleton:
        raise ValidationFailure(f"{kind.value} is a singleton document, not a collection", kind=kind.value)
    return kind


def require_singleton_kind(value: EntityKind | str) -> EntityKind:
    kind = parse_kind(value)
    if not kind.is_singleton:
        raise ValidationFailure(f"{kind.value} is a collection, not a singleton document", kind=kind.value)
    return kind
