from typing import List, Optional

from fastapi import APIRouter, Depends, Query, Response, status

from snapurl_app.dependencies import get_link_service, get_owner_id, get_user_stats, require_owner_id
from snapurl_app.schemas.link import (
    AliasAvailability,
    BulkCreateRequest,
    BulkCreateResult,
    BulkDeleteRequest,
    BulkDeleteResult,
    LinkCreate,
    LinkCreateResponse,
    LinkPage,
    LinkResponse,
    LinkStats,
    LinkUpdate,
)
from snapurl_app.services.link_service import LinkService
from snapurl_app.services.user_stats import UserStatsService

router = APIRouter(prefix="/links", tags=["links"])


@router.post("/", response_model=LinkCreateResponse, status_code=status.HTTP_201_CREATED)
async def create_link(
    link_data: LinkCreate,
    response: Response,
    owner_id: Optional[str] = Depends(get_owner_id),
    link_service: LinkService = Depends(get_link_service)
):
    """Create a short link. An owner's existing active link for the same URL is returned with 200."""
    result = await link_service.create_link(
        original_url=link_data.original_url,
        owner_id=owner_id,
        custom_alias=link_data.custom_alias,
        expires_in_days=link_data.expires_in_days,
        title=link_data.title,
        description=link_data.description,
    )
    if not result.is_new:
        response.status_code = status.HTTP_200_OK
    return LinkCreateResponse(
        link=LinkResponse.model_validate(result.link),
        is_new=result.is_new,
        message=result.message,
    )


@router.get("/", response_model=LinkPage)
async def list_links(
    page: int = Query(1, ge=1),
    limit: int = Query(10, ge=1, le=100),
    sort_by: str = "created_at",
    sort_order: str = "desc",
    search: Optional[str] = Query(None, max_length=100),
    is_active: Optional[bool] = None,
    owner_id: str = Depends(require_owner_id),
    link_service: LinkService = Depends(get_link_service)
):
    return await link_service.list_links(
        owner_id,
        page=page,
        limit=limit,
        sort_by=sort_by,
        sort_order=sort_order,
        search=search,
        is_active=is_active,
    )


@router.get("/popular", response_model=List[LinkResponse])
async def popular_links(
    days: int = Query(30, ge=1, le=3650),
    min_clicks: int = Query(1, ge=0),
    limit: int = Query(10, ge=1, le=100),
    owner_id: str = Depends(require_owner_id),
    link_service: LinkService = Depends(get_link_service)
):
    """Most clicked active links clicked within the last `days` days"""
    return await link_service.popular(owner_id=owner_id, days=days, min_clicks=min_clicks, limit=limit)


@router.get("/recent", response_model=List[LinkResponse])
async def recent_links(
    limit: int = Query(10, ge=1, le=100),
    owner_id: str = Depends(require_owner_id),
    link_service: LinkService = Depends(get_link_service)
):
    return await link_service.recent(owner_id=owner_id, limit=limit)


@router.get("/alias/{alias}/availability", response_model=AliasAvailability)
async def alias_availability(
    alias: str,
    link_service: LinkService = Depends(get_link_service)
):
    """Advisory only: the alias can still be taken before it is used"""
    return AliasAvailability(alias=alias, available=await link_service.is_alias_available(alias))


@router.post("/bulk", response_model=BulkCreateResult)
async def bulk_create_links(
    request: BulkCreateRequest,
    owner_id: str = Depends(require_owner_id),
    link_service: LinkService = Depends(get_link_service)
):
    return await link_service.bulk_create(
        request.links,
        owner_id,
        skip_duplicates=request.skip_duplicates,
        stop_on_error=request.stop_on_error,
    )


@router.post("/bulk-delete", response_model=BulkDeleteResult)
async def bulk_delete_links(
    request: BulkDeleteRequest,
    owner_id: str = Depends(require_owner_id),
    link_service: LinkService = Depends(get_link_service)
):
    return await link_service.bulk_delete(request.ids, owner_id, hard=request.hard)


@router.post("/reconcile")
async def reconcile_counters(
    owner_id: str = Depends(require_owner_id),
    user_stats: UserStatsService = Depends(get_user_stats)
):
    """Recompute the caller's url_count and total_clicks from live rows"""
    return user_stats.reconcile(owner_id)


@router.get("/{link_id}", response_model=LinkResponse)
async def get_link(
    link_id: int,
    owner_id: str = Depends(require_owner_id),
    link_service: LinkService = Depends(get_link_service)
):
    return await link_service.get_link(link_id, owner_id)


@router.get("/{link_id}/stats", response_model=LinkStats)
async def get_link_stats(
    link_id: int,
    owner_id: str = Depends(require_owner_id),
    link_service: LinkService = Depends(get_link_service)
):
    return await link_service.link_stats(link_id, owner_id)


@router.patch("/{link_id}", response_model=LinkResponse)
async def update_link(
    link_id: int,
    link_data: LinkUpdate,
    owner_id: str = Depends(require_owner_id),
    link_service: LinkService = Depends(get_link_service)
):
    patch = link_data.model_dump(exclude_unset=True)
    return await link_service.update_link(link_id, owner_id, patch)


@router.post("/{link_id}/toggle", response_model=LinkResponse)
async def toggle_link_status(
    link_id: int,
    owner_id: str = Depends(require_owner_id),
    link_service: LinkService = Depends(get_link_service)
):
    return await link_service.toggle_status(link_id, owner_id)


@router.delete("/{link_id}", status_code=status.HTTP_204_NO_CONTENT)
async def delete_link(
    link_id: int,
    hard: bool = False,
    owner_id: str = Depends(require_owner_id),
    link_service: LinkService = Depends(get_link_service)
):
    """Soft delete by default; ?hard=true removes the row (clicks are kept)"""
    await link_service.delete_link(link_id, owner_id, hard=hard)
    return Response(status_code=status.HTTP_204_NO_CONTENT)
