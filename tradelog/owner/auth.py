from __future__ import annotations

import logging

from firebase_admin import auth as firebase_auth

from tradelog.common.logging import log_event
from tradelog.errors import AuthenticationError
from tradelog.owner.context import OwnerContext
from tradelog.persistence.firebase_client import init_firebase_admin

logger = logging.getLogger(__name__)

_VERIFY_ERRORS: tuple[type[BaseException], ...] = (
    ValueError,
    firebase_auth.InvalidIdTokenError,
    firebase_auth.RevokedIdTokenError,
    firebase_auth.UserDisabledError,
    firebase_auth.CertificateFetchError,
)


def owner_from_id_token(id_token: str, *, check_revoked: bool = False) -> OwnerContext:
    """
    Verify a Firebase ID token and return the owner it identifies.

    Never logs the token value, only presence/metadata.
    """
    token = (id_token or "").strip()
    if token.lower().startswith("bearer "):
        token = token[len("bearer ") :].strip()
    if not token:
        log_event(logger, "auth_failure", severity="WARNING", auth_provider="firebase", reason="missing_token")
        raise AuthenticationError("missing Firebase ID token")

    init_firebase_admin()
    try:
        decoded = firebase_auth.verify_id_token(token, check_revoked=check_revoked)
    except _VERIFY_ERRORS as e:
        log_event(
            logger,
            "auth_failure",
            severity="WARNING",
            auth_provider="firebase",
            reason="verify_id_token_failed",
            error=f"{type(e).__name__}: {e}",
        )
        raise AuthenticationError(f"invalid ID token: {type(e).__name__}") from e

    uid = str(decoded.get("uid") or decoded.get("sub") or "").strip()
    if not uid:
        log_event(logger, "auth_failure", severity="WARNING", auth_provider="firebase", reason="missing_uid")
        raise AuthenticationError("invalid ID token: missing uid")

    log_event(logger, "auth_success", auth_provider="firebase", owner_id=uid)
    return OwnerContext(uid=uid, claims=dict(decoded))
