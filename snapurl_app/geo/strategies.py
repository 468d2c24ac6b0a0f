"""
IP geolocation strategies using Strategy Pattern.

Lookups are best-effort: a strategy returns None instead of raising, and the
click recorder stores NULL country/city when nothing is known.
"""

import asyncio
import ipaddress
import logging
from abc import ABC, abstractmethod
from typing import Optional

import requests
from pydantic import BaseModel

logger = logging.getLogger(__name__)


class GeoLocation(BaseModel):
    country: Optional[str] = None  # ISO 3166-1 alpha-2 code
    city: Optional[str] = None


def is_public_ip(ip_address: Optional[str]) -> bool:
    """Private, loopback and malformed addresses are never looked up."""
    if not ip_address:
        return False
    try:
        ip = ipaddress.ip_address(ip_address)
    except ValueError:
        return False
    return ip.is_global


class GeoLookupStrategy(ABC):
    """Abstract base class for IP geolocation backends."""

    @abstractmethod
    async def lookup(self, ip_address: Optional[str]) -> Optional[GeoLocation]:
        """
        Resolve an IP address to a location.

        Returns:
            GeoLocation, or None when the address cannot be resolved
        """
        pass


class NullGeoLookup(GeoLookupStrategy):
    """Null Object Pattern - geolocation disabled."""

    async def lookup(self, ip_address: Optional[str]) -> Optional[GeoLocation]:
        return None


class IpApiGeoLookup(GeoLookupStrategy):
    """
    Geolocation through the ip-api.com JSON endpoint.

    requests is blocking, so the call runs in a worker thread to keep the
    event loop (and an embedded click worker) responsive.
    """

    def __init__(self, base_url: str = "http://ip-api.com/json", timeout: float = 1.5, session=None):
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout
        self.session = session or requests.Session()

    async def lookup(self, ip_address: Optional[str]) -> Optional[GeoLocation]:
        if not is_public_ip(ip_address):
            return None
        return await asyncio.to_thread(self._lookup_sync, ip_address)

    def _lookup_sync(self, ip_address: str) -> Optional[GeoLocation]:
        try:
            response = self.session.get(
                f"{self.base_url}/{ip_address}",
                params={"fields": "status,countryCode,city"},
                timeout=self.timeout,
            )
            response.raise_for_status()
            data = response.json()
        except (requests.RequestException, ValueError) as e:
            logger.warning(f"Geo lookup failed for {ip_address}: {e}")
            return None

        if data.get("status") != "success":
            return None

        return GeoLocation(
            country=data.get("countryCode") or None,
            city=data.get("city") or None,
        )
