"""Jicofo rtcstats REST client.

Fetches the full conference snapshot from Jicofo's ``/rtcstats`` debug
endpoint using httpx.  Any failure to obtain a well-formed snapshot raises
:class:`SnapshotError`.
"""

from __future__ import annotations

import logging
from typing import Any

import httpx

logger = logging.getLogger(__name__)

RTCSTATS_PATH = "/rtcstats"


class SnapshotError(Exception):
    """Raised when a snapshot cannot be fetched or parsed."""


class FocusClient:
    """Async client for the Jicofo rtcstats endpoint.

    A single :class:`httpx.AsyncClient` is reused across polls.  Call
    :meth:`aclose` (or use as an async context manager) when done.
    """

    def __init__(
        self,
        base_url: str,
        path: str = RTCSTATS_PATH,
        timeout: float = 10.0,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self.base_url = base_url.rstrip("/")
        self.url = f"{self.base_url}{path}"
        self.timeout = timeout
        self._client = httpx.AsyncClient(timeout=timeout, transport=transport)

    async def aclose(self) -> None:
        await self._client.aclose()

    async def __aenter__(self) -> "FocusClient":
        return self

    async def __aexit__(self, *_: object) -> None:
        await self.aclose()

    async def fetch_snapshot(self) -> dict[str, dict[str, Any]]:
        """GET the current state of every conference, keyed by conference id."""
        try:
            response = await self._client.get(self.url)
            response.raise_for_status()
        except httpx.HTTPStatusError as exc:
            raise SnapshotError(
                f"Jicofo returned {exc.response.status_code} for {self.url}"
            ) from exc
        except httpx.HTTPError as exc:
            raise SnapshotError(f"Cannot reach Jicofo at {self.url}: {exc}") from exc

        try:
            body = response.json()
        except ValueError as exc:
            raise SnapshotError(f"Invalid JSON from {self.url}: {exc}") from exc

        if not isinstance(body, dict):
            raise SnapshotError(
                f"Expected a JSON object from {self.url}, got {type(body).__name__}"
            )
        for conf_id, conf_data in body.items():
            if not isinstance(conf_data, dict):
                raise SnapshotError(
                    f"Conference {conf_id!r} is {type(conf_data).__name__}, not an object"
                )
        logger.debug("Fetched %d conferences from %s", len(body), self.url)
        return body
