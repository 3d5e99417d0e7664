# Grist Explorer MCP Server
# File: tests/test_credentials.py
# Version: v1

from __future__ import annotations

import json

import pytest

from grist_explorer_mcp.credentials import (
    STORAGE_KEY,
    CredentialHolder,
    FileCredentialStore,
    MemoryCredentialStore,
    looks_like_api_key,
)

KEY_A = "a" * 40
KEY_B = "b" * 40


def test_set_persists_and_clear_removes(tmp_path) -> None:
    path = tmp_path / "nested" / "credentials.json"
    holder = CredentialHolder(FileCredentialStore(path))
    assert holder.get() is None

    holder.set(KEY_A)
    assert holder.get() == KEY_A
    assert json.loads(path.read_text(encoding="utf-8")) == {STORAGE_KEY: KEY_A}

    # A new holder over the same file sees the stored key.
    assert CredentialHolder(FileCredentialStore(path)).get() == KEY_A

    holder.clear()
    assert holder.get() is None
    assert json.loads(path.read_text(encoding="utf-8")) == {}


def test_file_store_keeps_unrelated_keys(tmp_path) -> None:
    path = tmp_path / "credentials.json"
    path.write_text(json.dumps({"theme": "dark"}), encoding="utf-8")

    store = FileCredentialStore(path)
    store.save(KEY_A)
    store.remove()
    assert json.loads(path.read_text(encoding="utf-8")) == {"theme": "dark"}


def test_file_store_ignores_corrupt_file(tmp_path) -> None:
    path = tmp_path / "credentials.json"
    path.write_text("{not json", encoding="utf-8")
    assert FileCredentialStore(path).load() is None


def test_set_rejects_empty_token() -> None:
    holder = CredentialHolder(MemoryCredentialStore())
    with pytest.raises(ValueError):
        holder.set("   ")


def test_invalidate_only_clears_the_failed_key() -> None:
    holder = CredentialHolder(MemoryCredentialStore(KEY_A))

    # The key was refreshed after the request that failed was sent.
    holder.set(KEY_B)
    assert holder.invalidate(KEY_A) is False
    assert holder.get() == KEY_B

    assert holder.invalidate(KEY_B) is True
    assert holder.get() is None
    assert holder.invalidate(KEY_B) is False


@pytest.mark.parametrize(
    "text, expected",
    [
        (KEY_A, True),
        ("  " + KEY_A + "\n", True),
        ("short", False),
        ("", False),
        (None, False),
        ("<html><body>please log in to continue</body></html>", False),
    ],
)
def test_looks_like_api_key(text, expected) -> None:
    assert looks_like_api_key(text) is expected
