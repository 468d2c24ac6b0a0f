"""
Database models for SnapURL.

Links and users are transactional records; clicks are append-only events
that the analytics service aggregates. All three live in the same database
so analytics can join clicks to their links.
"""

from .link import Link
from .click import Click
from .user import User

__all__ = ["Link", "Click", "User"]
