# src/taskwatch/tasks/identity.py

from __future__ import annotations

import json
import logging
import os
import threading
from pathlib import Path

logger = logging.getLogger(__name__)


def normalize_handle(handle: str | None) -> str:
    return (handle or "").strip().lstrip("@").lower()


class IdentityRegistry:
    """
    Handle -> private delivery address.

    Filled in by connectors when a party first talks to the bot (/start or a
    direct message). The core only reads it.
    """

    def __init__(self, path: str | Path = "identities.json") -> None:
        self._path = Path(path)
        self._lock = threading.Lock()
        self._addresses: dict[str, str] = {}
        self._load()

    def _load(self) -> None:
        if not self._path.exists():
            return
        try:
            data = json.loads(self._path.read_text("utf-8"))
            if not isinstance(data, dict):
                raise ValueError("Expected JSON object")
            self._addresses = {normalize_handle(k): str(v) for k, v in data.items() if normalize_handle(k)}
            logger.info("Loaded %d identities from %s", len(self._addresses), self._path)
        except Exception:
            logger.exception("Failed to load identities from %s", self._path)
            self._addresses = {}

    def _save(self) -> None:
        try:
            self._path.parent.mkdir(parents=True, exist_ok=True)
            tmp = self._path.with_suffix(".tmp")
            tmp.write_text(json.dumps(self._addresses, ensure_ascii=False, indent=2), "utf-8")
            os.replace(tmp, self._path)
        except OSError:
            logger.exception("Failed to save identities to %s", self._path)

    def resolve(self, handle: str | None) -> str | None:
        key = normalize_handle(handle)
        if not key:
            return None
        with self._lock:
            return self._addresses.get(key)

    def register(self, handle: str, address: str) -> bool:
        key = normalize_handle(handle)
        if not key or not address:
            return False
        with self._lock:
            if self._addresses.get(key) == address:
                return False
            self._addresses[key] = address
            self._save()
        logger.info("Registered identity %s -> %s", key, address)
        return True

    def __len__(self) -> int:
        with self._lock:
            return len(self._addresses)
