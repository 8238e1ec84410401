"""
Payload normalization applied before every write.

Pure and total: never raises for any mapping (or pydantic model) input and
never mutates its argument.
"""

from __future__ import annotations

from typing import Any, Mapping

from google.cloud.firestore import SERVER_TIMESTAMP

from tradelog.schema import (
    FIELD_ID,
    FIELD_MIGRATED_AT,
    FIELD_TIMESTAMP,
    FIELD_UPDATED_AT,
    FIELD_USER_ID,
    EntityKind,
)


class _Unset:
    """Marker for "no value supplied"; stripped from every payload."""

    _instance: "_Unset | None" = None

    def __new__(cls) -> "_Unset":
        if cls._instance is None:
            cls._instance = super().__new__(cls)
        return cls._instance

    def __repr__(self) -> str:
        return "UNSET"

    def __bool__(self) -> bool:
        return False

    def __copy__(self) -> "_Unset":
        return self

    def __deepcopy__(self, memo: Any) -> "_Unset":
        return self


UNSET: Any = _Unset()


def as_mapping(record: Any) -> dict[str, Any]:
    if record is None:
        return {}
    if isinstance(record, Mapping):
        return dict(record)
    # Entity models: wire aliases, only the fields actually set, plus extensions.
    fn = getattr(record, "to_wire", None)
    if callable(fn):
        return dict(fn())
    fn = getattr(record, "model_dump", None)
    if callable(fn):
        return dict(fn(by_alias=True, exclude_unset=True))
    return {}


def strip_unset(data: Any) -> dict[str, Any]:
    """Drop `UNSET` keys; explicit `None` stays."""
    return {k: v for k, v in as_mapping(data).items() if v is not UNSET}


def normalize_payload(record: Any, owner_id: str, kind: EntityKind, *, creating: bool = True) -> dict[str, Any]:
    """
    Stripped copy of `record` with the owner id injected. The document id
    lives in the path, so an `id` key is dropped. When `creating`, a trade
    without a write timestamp gets the server-assigned one; partial updates
    never touch it (it drives snapshot order).
    """
    payload = strip_unset(record)
    payload.pop(FIELD_ID, None)
    payload[FIELD_USER_ID] = owner_id
    if creating and kind is EntityKind.TRADE and not payload.get(FIELD_TIMESTAMP):
        payload[FIELD_TIMESTAMP] = SERVER_TIMESTAMP
    return payload


def stamp_update(payload: Mapping[str, Any]) -> dict[str, Any]:
    return {**payload, FIELD_UPDATED_AT: SERVER_TIMESTAMP}


def stamp_migration(payload: Mapping[str, Any]) -> dict[str, Any]:
    return {**payload, FIELD_MIGRATED_AT: SERVER_TIMESTAMP}
