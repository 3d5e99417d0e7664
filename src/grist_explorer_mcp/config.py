# Grist Explorer MCP Server
# File: config.py
# Version: v1

"""Configuration loading for the Grist Explorer MCP Server."""

from __future__ import annotations

from dataclasses import dataclass
from datetime import tzinfo
from pathlib import Path
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError
import logging
import os
import sys

logger = logging.getLogger(__name__)

DEFAULT_BASE_URL = "https://tiss-grist.fcuai.tw"
DEFAULT_TARGET_ORG_DOMAIN = "fcuai.tw"
DEFAULT_CREDENTIAL_FILE = "~/.grist_explorer/credentials.json"

QUERY_MODE_LOCAL = "local"
QUERY_MODE_SERVER = "server"
_QUERY_MODES = {QUERY_MODE_LOCAL, QUERY_MODE_SERVER}


def _parse_bool_env(name: str, default: bool = False) -> bool:
    """Parse a boolean-like environment variable.

    Accepts 1/0, true/false, yes/no, on/off (case-insensitive).
    """
    val = os.getenv(name)
    if val is None:
        return default
    return str(val).strip().lower() in {"1", "true", "yes", "on"}


def _parse_int_env(
    name: str,
    default: int,
    min_value: int | None = None,
    max_value: int | None = None,
) -> int:
    """Parse an int environment variable with clamping and safe fallback."""
    raw = os.getenv(name)
    if raw is None or not str(raw).strip():
        value = int(default)
    else:
        try:
            value = int(str(raw).strip())
        except ValueError:
            value = int(default)

    if min_value is not None and value < min_value:
        value = min_value
    if max_value is not None and value > max_value:
        value = max_value

    return value


def _parse_float_env(name: str, default: float, min_value: float = 0.1) -> float:
    raw = os.getenv(name)
    try:
        value = float(str(raw).strip()) if raw and str(raw).strip() else float(default)
    except ValueError:
        value = float(default)
    return max(value, min_value)


def _parse_query_mode_env(name: str, default: str = QUERY_MODE_LOCAL) -> str:
    raw = (os.getenv(name) or "").strip().lower()
    if not raw:
        return default
    if raw not in _QUERY_MODES:
        logger.warning("Ignoring unknown %s=%r; using %r.", name, raw, default)
        return default
    return raw


def load_timezone(name: str | None) -> tzinfo | None:
    """Resolve an IANA zone name; None means host local time."""
    if not name:
        return None
    try:
        return ZoneInfo(name)
    except (ZoneInfoNotFoundError, ValueError):
        logger.warning("Unknown timezone %r; falling back to host local time.", name)
        return None


@dataclass
class GristConfig:
    """Configuration values required to talk to a Grist instance.

    The credential itself is not part of the config: it lives in the
    CredentialHolder, which may be seeded from ``initial_api_key``.
    """

    base_url: str = DEFAULT_BASE_URL
    target_org_domain: str = DEFAULT_TARGET_ORG_DOMAIN
    mock_mode: bool = False
    verify_tls: bool = True
    http_timeout_seconds: float = 30.0

    query_mode: str = QUERY_MODE_LOCAL
    record_limit: int = 500
    page_size: int = 10
    timezone_name: str | None = None

    credential_file: str | None = DEFAULT_CREDENTIAL_FILE
    session_cookie: str | None = None
    initial_api_key: str | None = None

    @property
    def timezone(self) -> tzinfo | None:
        return load_timezone(self.timezone_name)

    @property
    def credential_path(self) -> Path | None:
        if not self.credential_file:
            return None
        return Path(self.credential_file).expanduser()

    @classmethod
    def from_env(cls) -> "GristConfig":
        """Create configuration from environment variables."""
        base_url = os.getenv("GRIST_BASE_URL") or DEFAULT_BASE_URL
        target_org_domain = os.getenv("GRIST_TARGET_ORG_DOMAIN") or DEFAULT_TARGET_ORG_DOMAIN

        mock_mode = _parse_bool_env("GRIST_MOCK_MODE", default=False)
        verify_tls = _parse_bool_env("GRIST_VERIFY_TLS", default=True)
        http_timeout_seconds = _parse_float_env("GRIST_HTTP_TIMEOUT_SECONDS", default=30.0)

        query_mode = _parse_query_mode_env("GRIST_QUERY_MODE")
        record_limit = _parse_int_env(
            "GRIST_RECORD_LIMIT", default=500, min_value=1, max_value=100000
        )
        page_size = _parse_int_env("GRIST_PAGE_SIZE", default=10, min_value=1, max_value=1000)

        # An explicitly empty GRIST_CREDENTIAL_FILE disables persistence.
        credential_file = os.getenv("GRIST_CREDENTIAL_FILE", DEFAULT_CREDENTIAL_FILE)

        return cls(
            base_url=base_url,
            target_org_domain=target_org_domain,
            mock_mode=mock_mode,
            verify_tls=verify_tls,
            http_timeout_seconds=http_timeout_seconds,
            query_mode=query_mode,
            record_limit=record_limit,
            page_size=page_size,
            timezone_name=os.getenv("GRIST_TIMEZONE") or None,
            credential_file=credential_file.strip() or None,
            session_cookie=os.getenv("GRIST_SESSION_COOKIE") or None,
            initial_api_key=os.getenv("GRIST_API_KEY") or None,
        )


def configure_logging() -> None:
    """Root logging for console entrypoints; stdout is reserved for MCP stdio."""
    level_name = (os.getenv("GRIST_LOG_LEVEL") or "INFO").strip().upper()
    level = getattr(logging, level_name, logging.INFO)
    if not isinstance(level, int):
        level = logging.INFO
    logging.basicConfig(
        level=level,
        stream=sys.stderr,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )
