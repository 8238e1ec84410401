from __future__ import annotations

import logging
import threading
from dataclasses import dataclass
from typing import Any, Callable, Optional

from tradelog.common.logging import log_event
from tradelog.owner.session import OwnerSession
from tradelog.schema import EntityKind, parse_kind
from tradelog.sync.service import SyncService
from tradelog.sync.subscription import Subscription

logger = logging.getLogger(__name__)


@dataclass
class _Watch:
    kind: EntityKind
    handler: Callable[[Any], Any]
    subscription: Optional[Subscription[Any]] = None


class LiveJournal:
    """
    Subscriptions that follow the signed-in owner.

    Register what to watch once; on every login/logout all open
    subscriptions are cancelled and, if someone is signed in, reopened for
    the new owner. Nothing is delivered while signed out.
    """

    def __init__(self, service: SyncService, session: OwnerSession) -> None:
        self._service = service
        self._session = session
        self._lock = threading.RLock()
        self._watches: list[_Watch] = []
        self._closed = False
        self._detach = session.on_change(self._on_owner_change)

    @property
    def owner_id(self) -> Optional[str]:
        return self._session.owner_id

    def watch(self, kind: EntityKind | str, handler: Callable[[Any], Any]) -> None:
        k = parse_kind(kind)
        with self._lock:
            if self._closed:
                raise RuntimeError("LiveJournal is closed")
            w = _Watch(kind=k, handler=handler)
            self._watches.append(w)
            owner_id = self._session.owner_id
            if owner_id is not None:
                w.subscription = self._open(w, owner_id)

    def subscriptions(self) -> list[Subscription[Any]]:
        with self._lock:
            return [w.subscription for w in self._watches if w.subscription is not None]

    def close(self) -> None:
        with self._lock:
            if self._closed:
                return
            self._closed = True
            self._detach()
            self._cancel_all()

    def _open(self, w: _Watch, owner_id: str) -> Subscription[Any]:
        if w.kind.is_singleton:
            return self._service.subscribe_singleton(w.kind, owner_id, w.handler)
        return self._service.subscribe(w.kind, owner_id, w.handler)

    def _cancel_all(self) -> None:
        for w in self._watches:
            if w.subscription is not None:
                w.subscription.cancel()
                w.subscription = None

    def _on_owner_change(self, previous: Optional[str], current: Optional[str]) -> None:
        with self._lock:
            if self._closed:
                return
            self._cancel_all()
            if current is not None:
                for w in self._watches:
                    w.subscription = self._open(w, current)
        log_event(
            logger,
            "sync.resubscribed",
            previous_owner_id=previous,
            owner_id=current,
            watches=len(self._watches),
        )
