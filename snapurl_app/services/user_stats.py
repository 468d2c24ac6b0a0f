"""
Owner counter caches.

users.url_count and users.total_clicks are updated with atomic increments next
to the link and click writes. Increments can be lost (e.g. a crash between a
hard delete and its decrement), so reconcile() recomputes both counters from
the live rows:

- url_count    = active links owned by the user
- total_clicks = clicks recorded while the user owned the link
"""

import logging
from typing import Dict, List

from sqlalchemy import func, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from snapurl_app.exceptions import NotFoundOrForbiddenError
from snapurl_app.models.click import Click
from snapurl_app.models.link import Link
from snapurl_app.models.user import User

logger = logging.getLogger(__name__)


class UserStatsService:

    def __init__(self, db: Session):
        self.db = db

    def ensure_user(self, owner_id: str) -> None:
        """Create the user row on first use; a concurrent creator wins silently."""
        if self.db.get(User, owner_id) is not None:
            return
        self.db.add(User(id=owner_id))
        try:
            self.db.commit()
        except IntegrityError:
            self.db.rollback()

    def increment(self, owner_id: str, url_count: int = 0, total_clicks: int = 0) -> None:
        """
        Atomically adjust counters. Does not commit: callers commit together
        with the link or click write the adjustment belongs to.
        """
        if not owner_id or (url_count == 0 and total_clicks == 0):
            return
        self.db.execute(
            update(User)
            .where(User.id == owner_id)
            .values(
                url_count=User.url_count + url_count,
                total_clicks=User.total_clicks + total_clicks,
            )
        )

    def get_counters(self, owner_id: str) -> Dict:
        user = self.db.get(User, owner_id)
        if user is None:
            raise NotFoundOrForbiddenError("User not found")
        return {"user_id": user.id, "url_count": user.url_count, "total_clicks": user.total_clicks}

    def live_counts(self, owner_id: str) -> Dict[str, int]:
        url_count = self.db.query(func.count(Link.id)).filter(
            Link.owner_id == owner_id,
            Link.is_active == True
        ).scalar() or 0
        total_clicks = self.db.query(func.count(Click.id)).filter(
            Click.owner_id == owner_id
        ).scalar() or 0
        return {"url_count": url_count, "total_clicks": total_clicks}

    def reconcile(self, owner_id: str) -> Dict:
        """Overwrite the cached counters with live counts; report the drift."""
        user = self.db.get(User, owner_id)
        if user is None:
            raise NotFoundOrForbiddenError("User not found")

        live = self.live_counts(owner_id)
        drift = {
            "url_count": live["url_count"] - user.url_count,
            "total_clicks": live["total_clicks"] - user.total_clicks,
        }
        user.url_count = live["url_count"]
        user.total_clicks = live["total_clicks"]
        self.db.commit()

        if drift["url_count"] or drift["total_clicks"]:
            logger.warning(f"Reconciled counters for user {owner_id}: drift={drift}")

        return {"user_id": owner_id, **live, "drift": drift}

    def reconcile_all(self) -> List[Dict]:
        owner_ids = [row[0] for row in self.db.query(User.id).order_by(User.id).all()]
        return [self.reconcile(owner_id) for owner_id in owner_ids]
