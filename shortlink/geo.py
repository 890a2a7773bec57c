"""Optional geo enrichment for click events.

A locator is called at most once per click with a strict timeout. Any failure
yields an empty dict; enrichment never blocks or fails a redirect.
"""

import asyncio
import logging
from typing import Any, Protocol

import httpx

__all__ = ["GeoLocator", "NullGeoLocator", "HttpGeoLocator"]


class GeoLocator(Protocol):
    async def locate(self, ip: str | None) -> dict[str, Any]: ...


class NullGeoLocator:
    async def locate(self, ip: str | None) -> dict[str, Any]:
        return {}


class HttpGeoLocator:
    """Looks an IP up with ``GET {base_url}/{ip}`` and expects a JSON object back."""

    def __init__(
        self,
        base_url: str,
        client: httpx.AsyncClient,
        timeout: float = 0.5,
        logger: logging.Logger | None = None,
    ) -> None:
        self._base_url = base_url.rstrip("/")
        self._client = client
        self._timeout = timeout
        self._logger = logger or logging.getLogger("shortlink.geo")

    async def locate(self, ip: str | None) -> dict[str, Any]:
        if not ip:
            return {}
        try:
            response = await asyncio.wait_for(
                self._client.get(f"{self._base_url}/{ip}", timeout=self._timeout),
                timeout=self._timeout,
            )
            response.raise_for_status()
            payload = response.json()
        except (TimeoutError, httpx.HTTPError, ValueError) as exc:
            self._logger.debug(f"Geo lookup failed for {ip}: {exc!r}")
            return {}
        return payload if isinstance(payload, dict) else {}
