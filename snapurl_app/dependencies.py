"""
FastAPI dependencies for dependency injection.

This module provides singleton instances of cache, queue and geo lookup
that are injected into services and routes, plus the caller identity.

Pattern: Dependency Injection
- Loose coupling between components
- Easy to test (override with app.dependency_overrides)
- Flexible (swap implementations via config)

Identity: an upstream auth gateway sets X-Owner-Id. Privileged endpoints
(platform analytics, cleanup) also need X-Admin-Token == settings.admin_token.
"""

import secrets
from functools import lru_cache
from typing import Optional

from fastapi import Depends, Header, HTTPException, status
from sqlalchemy.orm import Session

from snapurl_app.cache.factory import CacheFactory, CacheBackend
from snapurl_app.cache.strategies import CacheStrategy
from snapurl_app.config import settings
from snapurl_app.database.connection import get_db
from snapurl_app.geo.factory import GeoLookupFactory, GeoBackend
from snapurl_app.geo.strategies import GeoLookupStrategy
from snapurl_app.queue.factory import QueueFactory, QueueBackend
from snapurl_app.queue.strategies import QueueStrategy


@lru_cache()
def get_cache() -> CacheStrategy:
    """
    Get cache instance (singleton).

    Factory gets config from settings internally.
    @lru_cache ensures this is called only once.
    """
    backend = CacheBackend(settings.cache_backend)
    return CacheFactory.create(backend)


@lru_cache()
def get_queue() -> QueueStrategy:
    """Get queue instance (singleton)."""
    backend = QueueBackend(settings.queue_backend)
    return QueueFactory.create(backend)


@lru_cache()
def get_geo_lookup() -> GeoLookupStrategy:
    backend = GeoBackend(settings.geo_backend)
    return GeoLookupFactory.create(backend)


def get_link_service(
    db: Session = Depends(get_db),
    cache: CacheStrategy = Depends(get_cache),
):
    """
    Get LinkService with all dependencies injected.

    Controller depends on service; service depends on infrastructure.
    """
    from snapurl_app.services.link_service import LinkService
    return LinkService(db=db, cache=cache)


def get_analytics_service(db: Session = Depends(get_db)):
    from snapurl_app.services.analytics_service import AnalyticsService
    return AnalyticsService(db=db)


def get_user_stats(db: Session = Depends(get_db)):
    from snapurl_app.services.user_stats import UserStatsService
    return UserStatsService(db=db)


def get_owner_id(x_owner_id: Optional[str] = Header(None)) -> Optional[str]:
    """Caller identity; None for anonymous callers."""
    if x_owner_id is None:
        return None
    x_owner_id = x_owner_id.strip()
    return x_owner_id[:64] or None


def require_owner_id(owner_id: Optional[str] = Depends(get_owner_id)) -> str:
    if owner_id is None:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="X-Owner-Id header is required"
        )
    return owner_id


def is_admin(x_admin_token: Optional[str] = Header(None)) -> bool:
    if x_admin_token is None:
        return False
    # compare_digest only accepts ASCII str; headers may carry any latin-1 byte
    return secrets.compare_digest(x_admin_token.encode("utf-8"), settings.admin_token.encode("utf-8"))


def require_admin(admin: bool = Depends(is_admin)) -> None:
    if not admin:
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="Admin token required"
        )
