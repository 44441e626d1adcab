"""
raidkeeper.services.parser_client — /who Screenshot Parser Client
=================================================================

Async client for the external OCR service that reads player names out
of a ``/who`` screenshot.

Contract::

    POST {PARSER_URL}
    Authorization: Bearer {PARSER_API_KEY}      (optional)
    {"url": "<image url>"}

    200 → {"names": ["Foo", "Bar", ...]}

Any transport error, non-200 response or malformed body yields ``None``;
reconciliation treats that as an invalid parse.
"""

from __future__ import annotations

import logging
import os

import httpx

logger = logging.getLogger(__name__)


class ScreenshotParser:
    """Thin wrapper around one parser endpoint."""

    def __init__(self, url: str, *, api_key: str | None = None, timeout: float = 30.0) -> None:
        self.url = url
        self.api_key = api_key if api_key is not None else os.getenv("PARSER_API_KEY")
        self.timeout = timeout

    async def parse(self, image_url: str) -> list[str] | None:
        headers = {"Authorization": f"Bearer {self.api_key}"} if self.api_key else {}
        transport = httpx.AsyncHTTPTransport(retries=1)
        try:
            async with httpx.AsyncClient(timeout=self.timeout, transport=transport) as client:
                resp = await client.post(self.url, json={"url": image_url}, headers=headers)
        except httpx.HTTPError as exc:
            logger.warning("Screenshot parser unreachable: %s", exc)
            return None

        if resp.status_code != 200:
            logger.warning("Screenshot parser returned HTTP %d", resp.status_code)
            return None
        try:
            names = resp.json().get("names")
        except ValueError:
            logger.warning("Screenshot parser returned a non-JSON body")
            return None
        if not isinstance(names, list):
            return None
        return [str(n) for n in names if isinstance(n, str)]
