import logging
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Optional

from sqlalchemy import update
from sqlalchemy.orm import Session

from snapurl_app.config import settings
from snapurl_app.exceptions import LinkUnavailableError
from snapurl_app.geo.strategies import GeoLocation, GeoLookupStrategy, NullGeoLookup
from snapurl_app.models.click import Click
from snapurl_app.models.link import Link
from snapurl_app.queue.models import CampaignFields, ClickEvent
from snapurl_app.services import link_metrics
from snapurl_app.services.click_classifier import parse_user_agent, referrer_domain
from snapurl_app.services.user_stats import UserStatsService
from snapurl_app.timeutils import to_naive_utc, utcnow

logger = logging.getLogger(__name__)


@dataclass
class ClickResult:
    click_id: int
    link_id: int
    is_unique: bool
    is_bot: bool


class ClickRecorder:
    """
    Turns one redirect into one Click row plus counter updates.

    The link is re-validated at record time: a link deactivated or expired
    between the redirect and the worker picking up the event gets no click.
    Enrichment (user agent, referrer, geo) is best-effort and never blocks
    recording.
    """

    def __init__(self, db: Session, geo: Optional[GeoLookupStrategy] = None):
        self.db = db
        self.geo = geo or NullGeoLookup()
        self.user_stats = UserStatsService(db)

    async def record(
        self,
        link_id: int,
        ip_address: Optional[str] = None,
        user_agent: Optional[str] = None,
        referrer: Optional[str] = None,
        campaign: Optional[CampaignFields] = None,
        source: str = "redirect",
        clicked_at: Optional[datetime] = None,
    ) -> ClickResult:
        clicked_at = to_naive_utc(clicked_at) if clicked_at else utcnow()

        link = self.db.get(Link, link_id)
        if link is None or not link_metrics.is_accessible(link, clicked_at):
            raise LinkUnavailableError(link_id)

        agent = parse_user_agent(user_agent)
        location = await self._locate(ip_address)
        unique = not agent.is_bot and self._is_unique(link_id, ip_address, clicked_at)
        campaign = campaign or CampaignFields()

        click = Click(
            link_id=link.id,
            owner_id=link.owner_id,
            short_code=link.short_code,
            ip_address=ip_address,
            user_agent=user_agent[:512] if user_agent else None,
            referrer=referrer[:2048] if referrer else None,
            referrer_domain=referrer_domain(referrer),
            country=location.country if location else None,
            city=location.city if location else None,
            browser=agent.browser,
            os=agent.os,
            device_type=agent.device_type,
            is_bot=agent.is_bot,
            is_unique=unique,
            source=source,
            utm_source=campaign.utm_source,
            utm_medium=campaign.utm_medium,
            utm_campaign=campaign.utm_campaign,
            utm_term=campaign.utm_term,
            utm_content=campaign.utm_content,
            clicked_at=clicked_at,
        )
        self.db.add(click)

        self.db.execute(
            update(Link)
            .where(Link.id == link.id)
            .values(
                click_count=Link.click_count + 1,
                unique_clicks=Link.unique_clicks + (1 if unique else 0),
                last_clicked_at=clicked_at,
            )
        )
        self.user_stats.increment(link.owner_id, total_clicks=1)
        self.db.commit()

        return ClickResult(click_id=click.id, link_id=link.id, is_unique=unique, is_bot=agent.is_bot)

    async def record_event(self, event: ClickEvent) -> ClickResult:
        return await self.record(
            link_id=event.link_id,
            ip_address=event.ip_address,
            user_agent=event.user_agent,
            referrer=event.referrer,
            campaign=event.campaign,
            source=event.source,
            clicked_at=event.timestamp,
        )

    def _is_unique(self, link_id: int, ip_address: Optional[str], clicked_at: datetime) -> bool:
        """No earlier click from this IP on this link inside the window."""
        if not ip_address:
            return True

        query = self.db.query(Click.id).filter(
            Click.link_id == link_id,
            Click.ip_address == ip_address,
            Click.clicked_at <= clicked_at
        )
        if settings.unique_click_window_hours > 0:
            window_start = clicked_at - timedelta(hours=settings.unique_click_window_hours)
            query = query.filter(Click.clicked_at > window_start)

        return query.first() is None

    async def _locate(self, ip_address: Optional[str]) -> Optional[GeoLocation]:
        try:
            return await self.geo.lookup(ip_address)
        except Exception as e:
            logger.warning(f"Geo lookup error for {ip_address}: {e}")
            return None
