from __future__ import annotations

import itertools
import logging
import threading
from typing import Callable, Optional

from tradelog.common.logging import log_event
from tradelog.errors import ValidationFailure
from tradelog.owner.context import OwnerContext
from tradelog.owner.paths import require_owner_id

logger = logging.getLogger(__name__)

# (previous_owner_id, current_owner_id); either may be None
OwnerListener = Callable[[Optional[str], Optional[str]], None]


class OwnerSession:
    """
    Current authenticated owner plus a change stream (login/logout).

    The sync layer only reads `owner_id` / `require_owner()`; whoever runs
    the authentication flow calls `sign_in` / `sign_out`. Listeners are
    called synchronously, in registration order, on the thread that changed
    the owner.
    """

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._context: Optional[OwnerContext] = None
        self._listeners: dict[int, OwnerListener] = {}
        self._ids = itertools.count()

    @property
    def owner_id(self) -> Optional[str]:
        ctx = self._context
        return ctx.uid if ctx is not None else None

    @property
    def context(self) -> Optional[OwnerContext]:
        return self._context

    def require_owner(self) -> str:
        owner_id = self.owner_id
        if owner_id is None:
            raise ValidationFailure("no authenticated owner: sign in before using the sync layer")
        return owner_id

    def sign_in(self, owner: OwnerContext | str) -> None:
        ctx = owner if isinstance(owner, OwnerContext) else OwnerContext(uid=str(owner))
        require_owner_id(ctx.uid)
        self._switch(ctx)

    def sign_out(self) -> None:
        self._switch(None)

    def on_change(self, listener: OwnerListener) -> Callable[[], None]:
        with self._lock:
            listener_id = next(self._ids)
            self._listeners[listener_id] = listener

        def _remove() -> None:
            with self._lock:
                self._listeners.pop(listener_id, None)

        return _remove

    def _switch(self, ctx: Optional[OwnerContext]) -> None:
        with self._lock:
            previous = self.owner_id
            self._context = ctx
            current = self.owner_id
            listeners = list(self._listeners.values())
        if previous == current:
            return
        log_event(
            logger,
            "owner.changed",
            previous_owner_id=previous,
            owner_id=current,
            signed_in=current is not None,
        )
        for listener in listeners:
            listener(previous, current)
