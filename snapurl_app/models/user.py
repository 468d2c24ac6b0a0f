from sqlalchemy import Column, Integer, String, DateTime

from snapurl_app.database.connection import Base
from snapurl_app.timeutils import utcnow


class User(Base):
    """
    Link owner.

    Identity comes from the upstream auth layer; this table only carries the
    denormalized counters. url_count and total_clicks are caches that may
    drift, UserStatsService.reconcile() recomputes them from links and clicks.
    """
    __tablename__ = "users"

    id = Column(String(64), primary_key=True)
    url_count = Column(Integer, default=0, nullable=False)  # Active links
    total_clicks = Column(Integer, default=0, nullable=False)
    created_at = Column(DateTime, default=utcnow, nullable=False)
