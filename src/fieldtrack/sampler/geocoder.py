# src/fieldtrack/sampler/geocoder.py

from __future__ import annotations

import logging
from typing import Any

import httpx

logger = logging.getLogger(__name__)


def coordinate_label(latitude: float, longitude: float) -> str:
    """Fallback address: the coordinates themselves, 6 decimals."""
    return f"{latitude:.6f}, {longitude:.6f}"


def format_address(data: dict[str, Any]) -> str | None:
    """street, city, region, country; whatever parts are present."""
    addr = data.get("address")
    if not isinstance(addr, dict):
        name = data.get("display_name")
        return str(name) if name else None

    street = addr.get("road") or addr.get("pedestrian") or addr.get("footway")
    if street and addr.get("house_number"):
        street = f"{street} {addr['house_number']}"
    city = addr.get("city") or addr.get("town") or addr.get("village") or addr.get("municipality")
    region = addr.get("state") or addr.get("region") or addr.get("county")
    country = addr.get("country")

    parts = [p for p in (street, city, region, country) if p]
    if parts:
        return ", ".join(str(p) for p in parts)
    name = data.get("display_name")
    return str(name) if name else None


class NominatimGeocoder:
    """
    Reverse geocoding against a Nominatim-compatible endpoint.

    Returns None on any miss; the sampler falls back to coordinate_label().
    """

    def __init__(
        self,
        *,
        base_url: str = "https://nominatim.openstreetmap.org",
        user_agent: str = "fieldtrack/0.1",
        timeout_seconds: float = 5.0,
        client: httpx.AsyncClient | None = None,
    ) -> None:
        self._owns_client = client is None
        self._client = client or httpx.AsyncClient(
            base_url=base_url.rstrip("/"),
            headers={"User-Agent": user_agent},
            timeout=httpx.Timeout(timeout_seconds, connect=min(timeout_seconds, 3.0)),
        )

    async def reverse(self, latitude: float, longitude: float) -> str | None:
        try:
            r = await self._client.get(
                "/reverse",
                params={"format": "jsonv2", "lat": f"{latitude:.6f}", "lon": f"{longitude:.6f}"},
            )
            r.raise_for_status()
            data = r.json()
        except (httpx.HTTPError, ValueError):
            logger.warning("Reverse geocoding failed lat=%.6f lon=%.6f", latitude, longitude, exc_info=True)
            return None

        if not isinstance(data, dict) or data.get("error"):
            return None
        return format_address(data)

    async def aclose(self) -> None:
        if self._owns_client:
            await self._client.aclose()


class NullGeocoder:
    """Geocoding disabled: always a miss."""

    async def reverse(self, latitude: float, longitude: float) -> str | None:
        return None
