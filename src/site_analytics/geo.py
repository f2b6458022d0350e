"""IP geolocation over an ipapi.co-style JSON API."""

import logging
from dataclasses import dataclass

import httpx

from .config import DEFAULT_GEOLOCATION_URL
from .errors import UpstreamServiceError
from .fingerprint import is_private_ip

logger = logging.getLogger(__name__)

UNKNOWN = "Unknown"


@dataclass(frozen=True)
class LocationInfo:
    """Resolved location. Unresolvable fields are "Unknown", never None."""
    country: str = UNKNOWN
    region: str = UNKNOWN
    city: str = UNKNOWN
    timezone: str | None = None
    latitude: float | None = None
    longitude: float | None = None


def _coordinate(value) -> float | None:
    try:
        return float(value) if value not in (None, "") else None
    except (TypeError, ValueError):
        return None


class IPGeolocator:
    """Look up an IP address; degrade to "Unknown" fields on any failure."""

    def __init__(
        self,
        url_template: str = DEFAULT_GEOLOCATION_URL,
        timeout: float = 3.0,
        client: httpx.AsyncClient | None = None,
    ):
        self.url_template = url_template
        self.timeout = timeout
        self._client = client

    async def locate(self, ip_address: str) -> LocationInfo:
        """Resolve an IP to a location. Never raises."""
        if is_private_ip(ip_address):
            return LocationInfo()

        try:
            return await self._fetch(ip_address)
        except UpstreamServiceError as exc:
            logger.warning(f"Geolocation failed for {ip_address}: {exc}")
            return LocationInfo()

    async def _fetch(self, ip_address: str) -> LocationInfo:
        url = self.url_template.format(ip=ip_address)
        try:
            if self._client is not None:
                response = await self._client.get(url, headers={"User-Agent": "site-analytics/1.0"})
            else:
                async with httpx.AsyncClient(timeout=self.timeout) as client:
                    response = await client.get(url, headers={"User-Agent": "site-analytics/1.0"})
            response.raise_for_status()
            data = response.json()
        except (httpx.HTTPError, ValueError) as exc:
            raise UpstreamServiceError(str(exc)) from exc

        if not isinstance(data, dict):
            raise UpstreamServiceError("Unexpected geolocation payload")
        if data.get("error"):
            raise UpstreamServiceError(data.get("reason") or "API error")

        return LocationInfo(
            country=data.get("country_name") or UNKNOWN,
            region=data.get("region") or UNKNOWN,
            city=data.get("city") or UNKNOWN,
            timezone=data.get("timezone") or None,
            latitude=_coordinate(data.get("latitude")),
            longitude=_coordinate(data.get("longitude")),
        )
