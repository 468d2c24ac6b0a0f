"""
Factory for creating geolocation lookup instances.
"""

import logging
from enum import Enum

from .strategies import GeoLookupStrategy, NullGeoLookup, IpApiGeoLookup
from snapurl_app.config import settings

logger = logging.getLogger(__name__)


class GeoBackend(Enum):
    """Available geolocation backends"""
    NULL = "null"
    IP_API = "ip_api"


class GeoLookupFactory:
    """Creates the configured geolocation backend once and reuses it."""

    _instance: GeoLookupStrategy = None

    @classmethod
    def create(cls, backend: GeoBackend) -> GeoLookupStrategy:
        if cls._instance is not None:
            return cls._instance

        if backend == GeoBackend.NULL:
            cls._instance = NullGeoLookup()
        elif backend == GeoBackend.IP_API:
            cls._instance = IpApiGeoLookup(
                base_url=settings.geo_ip_api_url,
                timeout=settings.geo_timeout_seconds,
            )
        else:
            raise ValueError(f"Unknown geo backend: {backend}")

        logger.info(f"Geo lookup initialized: {backend.value}")
        return cls._instance

    @classmethod
    def clear_instance(cls):
        """Clear cached instance (for testing)"""
        cls._instance = None
