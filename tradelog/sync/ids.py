from __future__ import annotations

import random
import re
import string
import time
from typing import Any, Pattern

from tradelog.errors import ValidationFailure
from tradelog.schema import EntityKind
from tradelog.sync.normalize import UNSET

_BASE36 = string.digits + string.ascii_lowercase
_SUFFIX_LEN = 6
_rng = random.SystemRandom()


def new_record_id(kind: EntityKind) -> str:
    """
    `{prefix}_{epoch_millis}_{6 base36 chars}`, e.g. `trade_1735689600000_k3x9qa`.

    Unique with overwhelming probability within one owner's collection;
    collisions are negligible, not impossible.
    """
    millis = time.time_ns() // 1_000_000
    suffix = "".join(_rng.choice(_BASE36) for _ in range(_SUFFIX_LEN))
    return f"{kind.id_prefix}_{millis}_{suffix}"


def id_pattern(kind: EntityKind) -> Pattern[str]:
    return re.compile(rf"^{re.escape(kind.id_prefix)}_\d+_[0-9a-z]{{{_SUFFIX_LEN}}}$")


def is_blank_id(value: Any) -> bool:
    """True when the record has no usable id yet (missing, or a blank string)."""
    if value is None or value is UNSET:
        return True
    return isinstance(value, str) and not value.strip()


def resolve_record_id(kind: EntityKind, supplied: Any) -> str:
    """
    Keep a caller-supplied id as-is; generate one only when absent.
    """
    if is_blank_id(supplied):
        return new_record_id(kind)
    if not isinstance(supplied, str):
        raise ValidationFailure(f"record id must be a string, got {type(supplied).__name__}", kind=kind.value)
    if "/" in supplied:
        raise ValidationFailure("record id must not contain '/'", kind=kind.value)
    return supplied
