"""
IP geolocation module for click enrichment.
"""

from .strategies import GeoLocation, GeoLookupStrategy, NullGeoLookup, IpApiGeoLookup, is_public_ip
from .factory import GeoLookupFactory, GeoBackend

__all__ = [
    "GeoLocation",
    "GeoLookupStrategy",
    "NullGeoLookup",
    "IpApiGeoLookup",
    "is_public_ip",
    "GeoLookupFactory",
    "GeoBackend",
]
