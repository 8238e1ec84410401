"""
Offline journal: the records a user created before signing in.

One JSON file per storage key, named after the app's local-storage keys
(`velox_trades.json`, `velox_tags.json`, ...). Collection kinds hold a JSON
array of records; settings/profile hold one JSON object.
"""

from __future__ import annotations

import json
import logging
import os
import tempfile
from pathlib import Path
from typing import Any, Iterable, Mapping, Optional, Sequence

from tradelog.common.config import SyncSettings, get_settings
from tradelog.common.logging import log_event
from tradelog.schema import FIELD_ID, EntityKind, parse_kind
from tradelog.sync.ids import is_blank_id, new_record_id

logger = logging.getLogger(__name__)

STORAGE_KEYS: dict[EntityKind, str] = {
    EntityKind.TRADE: "velox_trades",
    EntityKind.STRATEGY: "velox_strategies",
    EntityKind.TAG: "velox_tags",
    EntityKind.ACCOUNT: "velox_accounts",
    EntityKind.PROFILE: "velox_user",
    EntityKind.SETTINGS: "velox_settings",
}


class LocalJournalError(RuntimeError):
    pass


def _write_json_atomic(path: Path, data: Any) -> None:
    path.parent.mkdir(parents=True, exist_ok=True)
    # Temp file in the same directory so the replace stays atomic.
    fd, tmp = tempfile.mkstemp(prefix=f"{path.stem}_", suffix=".json", dir=str(path.parent))
    try:
        with os.fdopen(fd, "w", encoding="utf-8") as f:
            json.dump(data, f, indent=2, sort_keys=True, default=str)
            f.flush()
            os.fsync(f.fileno())
        os.replace(tmp, path)
    finally:
        if os.path.exists(tmp):
            os.unlink(tmp)


class LocalJournal:
    def __init__(self, directory: Path | str) -> None:
        self._dir = Path(directory)

    @classmethod
    def from_settings(cls, settings: Optional[SyncSettings] = None) -> "LocalJournal":
        return cls((settings or get_settings()).local_data_dir)

    @property
    def directory(self) -> Path:
        return self._dir

    def path_for(self, kind: EntityKind | str) -> Path:
        return self._dir / f"{STORAGE_KEYS[parse_kind(kind)]}.json"

    def _read(self, kind: EntityKind) -> Any:
        path = self.path_for(kind)
        if not path.exists():
            return None
        try:
            with path.open("r", encoding="utf-8") as f:
                return json.load(f)
        except json.JSONDecodeError as e:
            log_event(logger, "local_journal.corrupt", severity="ERROR", kind=kind.value, file=str(path))
            raise LocalJournalError(f"failed to parse {path.name}: {e}") from e

    # ---- collection kinds -------------------------------------------------

    def load(self, kind: EntityKind | str) -> list[dict[str, Any]]:
        k = parse_kind(kind)
        data = self._read(k)
        if data is None:
            return []
        if not isinstance(data, list):
            raise LocalJournalError(f"{self.path_for(k).name} must hold a JSON array")
        return [dict(r) for r in data if isinstance(r, Mapping)]

    def save(self, kind: EntityKind | str, records: Sequence[Mapping[str, Any]]) -> None:
        k = parse_kind(kind)
        _write_json_atomic(self.path_for(k), [dict(r) for r in records])

    def remove(self, kind: EntityKind | str, ids: Iterable[str]) -> int:
        """Drop records by id; returns how many were removed."""
        k = parse_kind(kind)
        drop = set(ids)
        if not drop:
            return 0
        records = self.load(k)
        kept = [r for r in records if r.get(FIELD_ID) not in drop]
        removed = len(records) - len(kept)
        if removed:
            self.save(k, kept)
        return removed

    def assign_missing_ids(self, kind: EntityKind | str) -> int:
        """
        Give every id-less record a generated id and persist it, so that a
        retried upload reuses the same ids instead of creating duplicates.
        """
        k = parse_kind(kind)
        records = self.load(k)
        assigned = 0
        for r in records:
            if is_blank_id(r.get(FIELD_ID)):
                r[FIELD_ID] = new_record_id(k)
                assigned += 1
        if assigned:
            self.save(k, records)
        return assigned

    # ---- singleton kinds --------------------------------------------------

    def load_document(self, kind: EntityKind | str) -> Optional[dict[str, Any]]:
        k = parse_kind(kind)
        data = self._read(k)
        if data is None:
            return None
        if not isinstance(data, Mapping):
            raise LocalJournalError(f"{self.path_for(k).name} must hold a JSON object")
        return dict(data)

    def save_document(self, kind: EntityKind | str, data: Mapping[str, Any]) -> None:
        _write_json_atomic(self.path_for(kind), dict(data))

    def clear(self, kind: EntityKind | str) -> None:
        path = self.path_for(kind)
        if path.exists():
            path.unlink()
