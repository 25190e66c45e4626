"""HTTP client factory for the orchestration backend."""
from __future__ import annotations

import os
from pathlib import Path
from typing import Callable

import httpx

from council_client.config import settings

ClientFactory = Callable[[], httpx.AsyncClient]

STREAM_PATH = "/api/orchestrate/stream"
ORCHESTRATE_PATH = "/api/orchestrate"
SESSIONS_PATH = "/api/orchestrate/sessions"
COUNCIL_PATH = "/api/orchestrate/council"


def _drop_unusable_keylog_path() -> None:
    """Unset SSLKEYLOGFILE when it points somewhere unwritable.

    httpx builds its SSL context eagerly and fails outright on a bad keylog
    path inherited from a debugging environment.
    """
    keylog_path = os.getenv("SSLKEYLOGFILE", "").strip()
    if not keylog_path:
        return
    try:
        path = Path(keylog_path)
        if not path.parent.exists():
            os.environ.pop("SSLKEYLOGFILE", None)
            return
        with open(path, "a", encoding="utf-8"):
            pass
    except OSError:
        os.environ.pop("SSLKEYLOGFILE", None)


def auth_headers() -> dict[str, str]:
    headers = {"Accept": "application/json"}
    if settings.orchestrator_api_key:
        headers["X-API-Key"] = settings.orchestrator_api_key
    return headers


def get_client(timeout: float | None = None) -> httpx.AsyncClient:
    """Build an AsyncClient bound to the configured backend."""
    _drop_unusable_keylog_path()
    return httpx.AsyncClient(
        base_url=settings.api_base_url,
        headers=auth_headers(),
        timeout=timeout if timeout is not None else settings.request_timeout_seconds,
    )


def stream_client() -> httpx.AsyncClient:
    # Reads block until the next frame; the controller enforces its own idle timeout.
    _drop_unusable_keylog_path()
    return httpx.AsyncClient(
        base_url=settings.api_base_url,
        headers={**auth_headers(), "Accept": "text/event-stream"},
        timeout=httpx.Timeout(settings.request_timeout_seconds, read=None),
    )
