"""
Firebase Admin / Firestore client bootstrap.

The Admin SDK keeps one default app per process; `init_firebase_admin`
creates it at most once. Local runs must point at the Firestore emulator
(FIRESTORE_EMULATOR_HOST) unless ALLOW_PROD_FIRESTORE=1 is set on purpose.
"""

from __future__ import annotations

import logging
import os
import threading
from typing import Any, Mapping, Optional

import firebase_admin
import google.auth
from firebase_admin import credentials, firestore
from google.auth.exceptions import DefaultCredentialsError

from tradelog.common.config import SyncSettings, get_settings
from tradelog.common.logging import log_event
from tradelog.errors import StoreConfigurationError

logger = logging.getLogger(__name__)

_CLOUD_PLATFORM_SCOPE = "https://www.googleapis.com/auth/cloud-platform"
_MANAGED_RUNTIME_VARS = ("K_SERVICE", "CLOUD_RUN_JOB", "FUNCTION_TARGET")

_init_lock = threading.Lock()


def is_local_execution(environ: Optional[Mapping[str, str]] = None) -> bool:
    """Local unless a managed GCP runtime (Cloud Run, Functions, App Engine) is visible."""
    env = os.environ if environ is None else environ
    if any((env.get(k) or "").strip() for k in _MANAGED_RUNTIME_VARS):
        return False
    return not any(str(k).startswith("GAE_") for k in env)


def require_firestore_emulator_or_allow_prod(
    *,
    caller: str,
    environ: Optional[Mapping[str, str]] = None,
) -> None:
    env = os.environ if environ is None else environ
    if not is_local_execution(env):
        return
    if (env.get("FIRESTORE_EMULATOR_HOST") or "").strip():
        return
    if (env.get("ALLOW_PROD_FIRESTORE") or "").strip() == "1":
        return

    log_event(logger, "firestore.prod_refused", severity="ERROR", caller=caller)
    raise StoreConfigurationError(
        "Refusing to use production Firestore from local execution. "
        "Set FIRESTORE_EMULATOR_HOST (e.g. '127.0.0.1:8080') or, intentionally, ALLOW_PROD_FIRESTORE=1."
    )


def _adc_project_id() -> Optional[str]:
    try:
        _, project_id = google.auth.default(scopes=[_CLOUD_PLATFORM_SCOPE])
    except DefaultCredentialsError:
        return None
    return project_id or None


def init_firebase_admin(*, project_id: Optional[str] = None, settings: Optional[SyncSettings] = None) -> None:
    """
    Initialize the default Firebase app with Application Default Credentials.

    Project id: explicit argument, then settings (TRADELOG_FIREBASE_PROJECT_ID /
    FIREBASE_PROJECT_ID / GOOGLE_CLOUD_PROJECT), then whatever ADC reports.
    """
    s = settings or get_settings()
    require_firestore_emulator_or_allow_prod(caller="init_firebase_admin")

    if firebase_admin._apps:
        return

    with _init_lock:
        if firebase_admin._apps:
            return

        try:
            cred = credentials.ApplicationDefault()
        except DefaultCredentialsError as e:
            raise StoreConfigurationError(
                "Application Default Credentials are not available. "
                "Locally: run `gcloud auth application-default login`."
            ) from e

        resolved = project_id or s.firebase_project_id or _adc_project_id()
        if not resolved:
            raise StoreConfigurationError(
                "Firebase project id could not be resolved; set FIREBASE_PROJECT_ID."
            )

        options: dict[str, Any] = {"projectId": resolved}
        try:
            firebase_admin.initialize_app(cred, options)
        except ValueError as e:
            raise StoreConfigurationError(f"Firebase Admin SDK initialization failed: {e}") from e

        log_event(
            logger,
            "firestore.initialized",
            project_id=resolved,
            emulator=bool((os.getenv("FIRESTORE_EMULATOR_HOST") or "").strip()),
        )


def get_firestore_client(*, project_id: Optional[str] = None, settings: Optional[SyncSettings] = None):
    init_firebase_admin(project_id=project_id, settings=settings)
    return firestore.client()
