import logging
from typing import Optional
from urllib.parse import parse_qsl, urlencode, urlsplit, urlunsplit

from fastapi import APIRouter, Depends, HTTPException, Request, status
from fastapi.responses import RedirectResponse

from snapurl_app.config import settings
from snapurl_app.dependencies import get_link_service, get_queue
from snapurl_app.queue.models import CampaignFields, ClickEvent
from snapurl_app.queue.strategies import QueueStrategy
from snapurl_app.schemas.link import RedirectTarget
from snapurl_app.services.link_service import LinkService

logger = logging.getLogger(__name__)

router = APIRouter(tags=["redirect"])


def client_ip(request: Request) -> Optional[str]:
    forwarded = request.headers.get("x-forwarded-for")
    if forwarded:
        return forwarded.split(",")[0].strip() or None
    return request.client.host if request.client else None


def with_campaign(url: str, campaign: CampaignFields) -> str:
    """Append UTM parameters to the destination, keeping any it already has."""
    utm = {k: v for k, v in campaign.model_dump().items() if v}
    if not utm:
        return url
    parts = urlsplit(url)
    query = [(k, v) for k, v in parse_qsl(parts.query, keep_blank_values=True) if k not in utm]
    query.extend(utm.items())
    return urlunsplit(parts._replace(query=urlencode(query)))


async def resolve_or_404(code: str, link_service: LinkService) -> RedirectTarget:
    target = await link_service.get_redirect_target(code)
    if not target:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail="Short URL not found or inactive"
        )
    return target


async def publish_click(
    queue: QueueStrategy,
    request: Request,
    target: RedirectTarget,
    code: str,
    source: str = "redirect",
    campaign: Optional[CampaignFields] = None,
) -> None:
    """Hand the click to the worker. Never raises: the redirect must not fail on tracking."""
    event = ClickEvent(
        link_id=target.link_id,
        short_code=code,
        ip_address=client_ip(request),
        user_agent=request.headers.get("user-agent"),
        referrer=request.headers.get("referer"),
        source=source,
        campaign=campaign,
    )
    try:
        published = await queue.publish(settings.queue_name, event)
    except Exception as e:
        logger.error(f"Failed to publish click for {code}: {e}")
        return
    if not published:
        logger.warning(f"Click for {code} was not queued")


@router.get("/t/{code}")
async def tracked_redirect(
    code: str,
    request: Request,
    utm_source: Optional[str] = None,
    utm_medium: Optional[str] = None,
    utm_campaign: Optional[str] = None,
    utm_term: Optional[str] = None,
    utm_content: Optional[str] = None,
    link_service: LinkService = Depends(get_link_service),
    queue: QueueStrategy = Depends(get_queue)
):
    """Redirect that records UTM campaign fields and forwards them to the destination"""
    target = await resolve_or_404(code, link_service)
    campaign = CampaignFields(
        utm_source=utm_source,
        utm_medium=utm_medium,
        utm_campaign=utm_campaign,
        utm_term=utm_term,
        utm_content=utm_content,
    )
    await publish_click(queue, request, target, code, source="tracked", campaign=campaign)
    return RedirectResponse(url=with_campaign(target.original_url, campaign), status_code=status.HTTP_302_FOUND)


@router.get("/{code}/preview")
async def preview(
    code: str,
    link_service: LinkService = Depends(get_link_service)
):
    """Show where a code leads without redirecting or recording a click"""
    link = await link_service.resolve(code)
    if link is None:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail="Short URL not found or inactive"
        )
    return {
        "short_code": link.short_code,
        "original_url": link.original_url,
        "title": link.title,
        "description": link.description,
        "expires_at": link.expires_at,
        "created_at": link.created_at,
    }


@router.get("/{code}")
async def redirect_to_original_url(
    code: str,
    request: Request,
    link_service: LinkService = Depends(get_link_service),
    queue: QueueStrategy = Depends(get_queue)
):
    """
    Redirect to the original URL.

    Flow:
    1. Resolve the code using cache-aside (expiry re-checked on cache hits)
    2. Publish a click event to the queue (fire and forget)
    3. Redirect immediately; the worker records the click later
    """
    target = await resolve_or_404(code, link_service)
    await publish_click(queue, request, target, code)
    return RedirectResponse(url=target.original_url, status_code=status.HTTP_302_FOUND)
