from datetime import datetime
from typing import Literal, Optional

from fastapi import APIRouter, Depends, HTTPException, Query, status

from snapurl_app.dependencies import (
    get_analytics_service,
    get_link_service,
    get_user_stats,
    is_admin,
    require_admin,
    require_owner_id,
)
from snapurl_app.schemas.analytics import (
    AnalyticsSummaryRequest,
    CleanupRequest,
    PurgeExpiredRequest,
    ReportCriteria,
)
from snapurl_app.services.analytics_service import AnalyticsService
from snapurl_app.services.link_service import LinkService
from snapurl_app.services.user_stats import UserStatsService

router = APIRouter(prefix="/analytics", tags=["analytics"])


@router.get("/links/{link_id}")
async def link_analytics(
    link_id: int,
    start_date: Optional[datetime] = None,
    end_date: Optional[datetime] = None,
    exclude_bots: bool = True,
    include_cities: bool = False,
    granularity: Optional[Literal["hour", "day", "week", "month"]] = None,
    owner_id: str = Depends(require_owner_id),
    analytics: AnalyticsService = Depends(get_analytics_service)
):
    """Overview, geographic, technology, traffic, performance and real-time data for one link"""
    return await analytics.url_analytics(
        link_id,
        owner_id=owner_id,
        start_date=start_date,
        end_date=end_date,
        exclude_bots=exclude_bots,
        include_cities=include_cities,
        granularity=granularity,
    )


@router.get("/dashboard")
async def user_dashboard(
    start_date: Optional[datetime] = None,
    end_date: Optional[datetime] = None,
    limit: int = Query(10, ge=1, le=50),
    owner_id: str = Depends(require_owner_id),
    analytics: AnalyticsService = Depends(get_analytics_service)
):
    return await analytics.user_dashboard(owner_id, start_date=start_date, end_date=end_date, limit=limit)


@router.get("/platform", dependencies=[Depends(require_admin)])
async def platform_analytics(
    start_date: Optional[datetime] = None,
    end_date: Optional[datetime] = None,
    analytics: AnalyticsService = Depends(get_analytics_service)
):
    return await analytics.platform_analytics(start_date=start_date, end_date=end_date)


@router.get("/realtime")
async def real_time_analytics(
    minutes: int = Query(60, ge=1),
    owner_id: str = Depends(require_owner_id),
    admin: bool = Depends(is_admin),
    analytics: AnalyticsService = Depends(get_analytics_service)
):
    """Admins see every link; other callers only their own"""
    return await analytics.real_time_analytics(minutes=minutes, owner_id=None if admin else owner_id)


@router.get("/top")
async def top_content(
    metric: Literal["clicks", "unique_clicks", "ctr"] = "clicks",
    limit: int = Query(10, ge=1, le=50),
    days: Optional[int] = Query(None, ge=1),
    owner_id: str = Depends(require_owner_id),
    analytics: AnalyticsService = Depends(get_analytics_service)
):
    return await analytics.top_content(owner_id=owner_id, metric=metric, limit=limit, days=days)


@router.post("/summary")
async def analytics_summary(
    request: AnalyticsSummaryRequest,
    owner_id: str = Depends(require_owner_id),
    analytics: AnalyticsService = Depends(get_analytics_service)
):
    """Per-link results; ids that are missing or not yours fail individually"""
    return await analytics.analytics_summary(
        request.link_ids,
        owner_id=owner_id,
        start_date=request.start_date,
        end_date=request.end_date,
        metrics=request.metrics,
    )


@router.post("/reports")
async def generate_report(
    criteria: ReportCriteria,
    owner_id: str = Depends(require_owner_id),
    admin: bool = Depends(is_admin),
    analytics: AnalyticsService = Depends(get_analytics_service)
):
    if criteria.type == "platform" and not admin:
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="Admin token required for platform reports"
        )
    return await analytics.report(
        criteria.type,
        target_id=criteria.target_id,
        start_date=criteria.start_date,
        end_date=criteria.end_date,
        report_format=criteria.format,
        owner_id=None if admin else owner_id,
    )


@router.post("/cleanup", dependencies=[Depends(require_admin)])
async def cleanup_clicks(
    request: CleanupRequest,
    analytics: AnalyticsService = Depends(get_analytics_service)
):
    """Delete clicks past retention. Defaults to a dry run."""
    return await analytics.cleanup(retention_days=request.retention_days, dry_run=request.dry_run)


@router.post("/purge-expired", dependencies=[Depends(require_admin)])
async def purge_expired_links(
    request: PurgeExpiredRequest,
    link_service: LinkService = Depends(get_link_service)
):
    return await link_service.purge_expired(dry_run=request.dry_run)


@router.post("/reconcile", dependencies=[Depends(require_admin)])
async def reconcile_all_counters(user_stats: UserStatsService = Depends(get_user_stats)):
    return user_stats.reconcile_all()
