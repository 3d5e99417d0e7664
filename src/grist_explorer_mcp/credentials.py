# Grist Explorer MCP Server
# File: credentials.py
# Version: v1

"""Credential Holder: the single writer of the current Grist API key.

Readers take the token with ``get()``. A reader that sees an authorization
failure must call ``invalidate(token_it_used)`` instead of ``clear()`` so a
key refreshed in the meantime is not thrown away.
"""

from __future__ import annotations

import json
import logging
from pathlib import Path
from typing import Dict, Optional, Protocol

logger = logging.getLogger(__name__)

STORAGE_KEY = "gristApiKey"
MIN_API_KEY_LENGTH = 32


def looks_like_api_key(text: Optional[str]) -> bool:
    """Heuristic used before ``set``: non-empty, not HTML, long enough."""
    if not text:
        return False
    candidate = text.strip()
    return bool(candidate) and "<" not in candidate and len(candidate) >= MIN_API_KEY_LENGTH


class CredentialStore(Protocol):
    def load(self) -> Optional[str]: ...

    def save(self, token: str) -> None: ...

    def remove(self) -> None: ...


class MemoryCredentialStore:
    """Non-durable store, used for tests and when persistence is disabled."""

    def __init__(self, token: Optional[str] = None) -> None:
        self._data: Dict[str, str] = {}
        if token:
            self._data[STORAGE_KEY] = token

    def load(self) -> Optional[str]:
        return self._data.get(STORAGE_KEY)

    def save(self, token: str) -> None:
        self._data[STORAGE_KEY] = token

    def remove(self) -> None:
        self._data.pop(STORAGE_KEY, None)


class FileCredentialStore:
    """JSON file holding ``{"gristApiKey": "..."}`` (other keys are kept)."""

    def __init__(self, path: Path) -> None:
        self.path = Path(path)

    def _read(self) -> Dict[str, str]:
        try:
            text = self.path.read_text(encoding="utf-8")
        except FileNotFoundError:
            return {}

        try:
            data = json.loads(text)
        except json.JSONDecodeError:
            logger.warning("Ignoring unreadable credential file %s.", self.path)
            return {}
        return data if isinstance(data, dict) else {}

    def _write(self, data: Dict[str, str]) -> None:
        self.path.parent.mkdir(parents=True, exist_ok=True)
        self.path.write_text(json.dumps(data), encoding="utf-8")
        try:
            self.path.chmod(0o600)
        except OSError:
            logger.debug("Could not restrict permissions on %s.", self.path)

    def load(self) -> Optional[str]:
        value = self._read().get(STORAGE_KEY)
        return value if isinstance(value, str) and value else None

    def save(self, token: str) -> None:
        data = self._read()
        data[STORAGE_KEY] = token
        self._write(data)

    def remove(self) -> None:
        data = self._read()
        if STORAGE_KEY in data:
            data.pop(STORAGE_KEY)
            self._write(data)


class CredentialHolder:
    """Holds the current bearer token and mirrors it to durable storage."""

    def __init__(self, store: Optional[CredentialStore] = None) -> None:
        self._store: CredentialStore = store or MemoryCredentialStore()
        self._token: Optional[str] = self._store.load()

    def get(self) -> Optional[str]:
        return self._token

    def __bool__(self) -> bool:
        return bool(self._token)

    def set(self, token: str) -> None:
        token = (token or "").strip()
        if not token:
            raise ValueError("Refusing to store an empty API key.")
        self._token = token
        self._store.save(token)
        logger.info("API key updated (%d chars).", len(token))

    def clear(self) -> None:
        had_token = self._token is not None
        self._token = None
        self._store.remove()
        if had_token:
            logger.info("API key cleared.")

    def invalidate(self, observed_token: Optional[str]) -> bool:
        """Clear the key only if it is still the one that just failed.

        Returns True when the held key was cleared.
        """
        if self._token is None or self._token != observed_token:
            return False
        self.clear()
        return True
