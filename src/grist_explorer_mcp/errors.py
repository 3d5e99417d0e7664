# Grist Explorer MCP Server
# File: errors.py
# Version: v1

"""Error taxonomy shared by the resolvers, the client and the orchestrator.

Everything derives from RuntimeError so callers written against plain
RuntimeError keep working.
"""

from __future__ import annotations

from typing import Any, Optional


class GristError(RuntimeError):
    """Base class for every error raised by this package."""


class ResolutionError(GristError):
    """No organization / document context could be determined."""


class RequestError(GristError):
    """A remote call failed (non-2xx status or transport failure)."""

    def __init__(
        self,
        message: str,
        status: Optional[int] = None,
        url: Optional[str] = None,
    ) -> None:
        super().__init__(message)
        self.status = status
        self.url = url


class AuthorizationFailure(RequestError):
    """HTTP 401/403: the credential is missing, expired or lacks access."""


class FormatError(GristError, ValueError):
    """A cell value violates its declared column type during formatting."""

    def __init__(self, message: str, value: Any = None) -> None:
        super().__init__(message)
        self.value = value


AUTH_FAILURE_STATUSES = frozenset({401, 403})


def is_auth_status(status: Optional[int]) -> bool:
    return status in AUTH_FAILURE_STATUSES
