# src/taskwatch/connectors/matrix_client.py

from __future__ import annotations

import json
import logging
import os
from pathlib import Path
from typing import Any

from nio import AsyncClient, AsyncClientConfig, LoginResponse

logger = logging.getLogger(__name__)

try:
    import olm  # type: ignore  # noqa: F401

    OLM_AVAILABLE = True
except Exception:
    OLM_AVAILABLE = False

_SESSION_FIELDS = ("access_token", "user_id", "device_id")


def _read_session(path: Path) -> dict[str, str] | None:
    """Stored credentials, or None when the file is missing or incomplete."""
    if not path.exists():
        return None
    try:
        data: Any = json.loads(path.read_text("utf-8"))
    except Exception as e:
        logger.warning("Unreadable Matrix session file %s: %r", path, e)
        return None
    if not isinstance(data, dict) or not all(data.get(k) for k in _SESSION_FIELDS):
        logger.warning("Matrix session file %s is missing required fields", path)
        return None
    return {k: str(data[k]) for k in _SESSION_FIELDS}


def _write_session(path: Path, resp: LoginResponse) -> None:
    payload = {"access_token": resp.access_token, "user_id": resp.user_id, "device_id": resp.device_id}
    tmp = path.with_suffix(".tmp")
    tmp.write_text(json.dumps(payload, ensure_ascii=False), "utf-8")
    os.replace(tmp, path)
    try:
        os.chmod(path, 0o600)
    except Exception:
        pass


async def create_matrix_client(settings) -> AsyncClient | None:
    """
    Build an AsyncClient for the bot account.

    A saved session (<matrix_store_path>/session.json) is reused across restarts;
    the password is only needed once to create it. The file holds an access
    token and lives under the gitignored data dir.
    """
    homeserver = (getattr(settings, "matrix_homeserver", "") or "").strip()
    user_id = (getattr(settings, "matrix_user_id", "") or "").strip()
    password = (getattr(settings, "matrix_password", "") or "").strip()
    store_dir = Path(getattr(settings, "matrix_store_path", Path(".local/taskwatch/matrix_store")))

    if not homeserver or not user_id:
        logger.error("Matrix is not configured: set TASKWATCH_MATRIX_HOMESERVER and TASKWATCH_MATRIX_USER_ID")
        return None

    try:
        store_dir.mkdir(parents=True, exist_ok=True)
    except OSError as e:
        logger.warning("Failed to create Matrix store dir %s: %r", store_dir, e)
    session_file = store_dir / "session.json"

    if OLM_AVAILABLE:
        logger.info("python-olm detected: encrypted rooms supported")
    else:
        logger.warning("python-olm not installed: encrypted rooms unsupported")

    client = AsyncClient(
        homeserver,
        user_id,
        store_path=str(store_dir) if OLM_AVAILABLE else None,
        config=AsyncClientConfig(encryption_enabled=OLM_AVAILABLE, store_sync_tokens=True),
    )

    session = _read_session(session_file)
    if session is not None:
        client.access_token = session["access_token"]
        client.user_id = session["user_id"]
        client.device_id = session["device_id"]
        if OLM_AVAILABLE:
            try:
                client.load_store()
            except Exception as e:
                logger.warning("Failed to load the encryption store: %r", e)
        logger.info("Matrix session restored for %s", client.user_id)
        return client

    if not password:
        logger.error(
            "No Matrix session at %s and no password. Set TASKWATCH_MATRIX_PASSWORD once to create one.",
            session_file,
        )
        await client.close()
        return None

    device_name = f"{getattr(settings, 'app_name', 'taskwatch')} bot"
    logger.info("Logging in to Matrix (device_name=%r)...", device_name)
    resp = await client.login(password=password, device_name=device_name)
    if not isinstance(resp, LoginResponse):
        logger.error("Matrix login failed: %r", resp)
        await client.close()
        return None

    try:
        _write_session(session_file, resp)
        logger.info("Matrix session saved to %s (user=%s)", session_file, resp.user_id)
    except OSError:
        # The client is logged in; the next start will simply log in again.
        logger.exception("Failed to write Matrix session to %s", session_file)

    return client
