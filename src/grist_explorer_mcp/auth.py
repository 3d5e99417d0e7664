# Grist Explorer MCP Server
# File: auth.py
# Version: v1

"""Login collaborator: fetch the user's Grist API key from the profile endpoint.

The profile endpoint is the only call that does not use the bearer token;
it relies on the ambient browser session cookie, passed in here through
GRIST_SESSION_COOKIE.
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from typing import Optional

import httpx

from .config import GristConfig
from .credentials import CredentialHolder, looks_like_api_key

logger = logging.getLogger(__name__)

POLLING_INTERVAL_SECONDS = 2.5


@dataclass
class ProfileKeyFetcher:
    """Retrieve the API key with the session cookie and hand it to the holder."""

    config: GristConfig
    holder: CredentialHolder
    transport: Optional[httpx.AsyncBaseTransport] = None

    async def fetch_key(self) -> Optional[str]:
        """Return the fetched key, or None when the session is not logged in."""
        base_url = self.config.base_url.rstrip("/")
        url = f"{base_url}/api/profile/apiKey"

        headers = {"Accept": "text/plain"}
        if self.config.session_cookie:
            headers["Cookie"] = self.config.session_cookie

        async with httpx.AsyncClient(
            timeout=self.config.http_timeout_seconds,
            verify=self.config.verify_tls,
            transport=self.transport,
        ) as http_client:
            try:
                response = await http_client.get(url, headers=headers)
            except httpx.RequestError as exc:
                logger.warning("Error calling Grist profile endpoint at '%s': %s", url, exc)
                return None

        body = response.text or ""
        if not response.is_success or not looks_like_api_key(body):
            logger.info(
                "Automatic API key retrieval failed (HTTP %s); "
                "make sure the session is logged in to Grist.",
                response.status_code,
            )
            return None

        key = body.strip()
        self.holder.set(key)
        return key

    async def poll_for_key(
        self,
        attempts: int = 10,
        interval_seconds: float = POLLING_INTERVAL_SECONDS,
    ) -> Optional[str]:
        """Call fetch_key until it succeeds or ``attempts`` run out."""
        for attempt in range(max(int(attempts), 1)):
            key = await self.fetch_key()
            if key:
                return key
            if attempt + 1 < attempts:
                await asyncio.sleep(interval_seconds)
        return None
