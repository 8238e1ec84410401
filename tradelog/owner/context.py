from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Mapping


@dataclass(frozen=True, slots=True)
class OwnerContext:
    """
    Authenticated identity.

    - uid: Firebase Auth uid; scopes every storage path
    - claims: decoded token claims (never the raw token)
    """

    uid: str
    claims: Mapping[str, Any] = field(default_factory=dict)
