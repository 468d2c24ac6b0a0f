import logging
import math
from dataclasses import dataclass
from datetime import timedelta
from typing import Dict, List, Optional, Sequence
from urllib.parse import urlsplit

from sqlalchemy import func, or_
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from snapurl_app.cache.strategies import CacheStrategy
from snapurl_app.config import settings
from snapurl_app.exceptions import (
    AliasTakenError,
    AllocationExhaustedError,
    InvalidInputError,
    NotFoundOrForbiddenError,
    QuotaExceededError,
    SnapURLError,
)
from snapurl_app.models.link import Link
from snapurl_app.schemas.link import (
    BulkCreateResult,
    BulkDeleteResult,
    BulkItemResult,
    LinkCreate,
    LinkPage,
    LinkResponse,
    LinkStats,
    Pagination,
    RedirectTarget,
)
from snapurl_app.services import link_metrics
from snapurl_app.services.short_code_allocator import ShortCodeAllocator
from snapurl_app.services.user_stats import UserStatsService
from snapurl_app.timeutils import utcnow

logger = logging.getLogger(__name__)

SORTABLE_FIELDS = {
    "created_at": Link.created_at,
    "updated_at": Link.updated_at,
    "click_count": Link.click_count,
    "unique_clicks": Link.unique_clicks,
    "last_clicked_at": Link.last_clicked_at,
    "title": Link.title,
    "original_url": Link.original_url,
    "expires_at": Link.expires_at,
}
UPDATABLE_FIELDS = {"original_url", "title", "description", "is_active", "expires_in_days"}
MAX_PAGE_SIZE = 100
MAX_BULK_ITEMS = 100


@dataclass
class LinkCreateResult:
    link: Link
    is_new: bool

    @property
    def message(self) -> str:
        return "Link created successfully" if self.is_new else "Link already exists in your account"


class LinkService:
    """
    Link registry: creation, resolution, ownership-checked mutation and listing.

    Follows the Dependency Injection pattern:
    - The database session and cache strategy are injected
    - The short code allocator is built on the same session

    Resolution uses cache-aside on the redirect path only. Every mutation that
    can change where (or whether) a code redirects invalidates the cache entry.
    """

    def __init__(
        self,
        db: Session,
        cache: Optional[CacheStrategy] = None,
        allocator: Optional[ShortCodeAllocator] = None,
    ):
        """
        Args:
            db: Database session
            cache: Cache strategy (optional, for redirect lookups)
            allocator: Short code allocator (defaults to the configured strategy)
        """
        self.db = db
        self.cache = cache
        self.allocator = allocator or ShortCodeAllocator(db)
        self.user_stats = UserStatsService(db)

    # ------------------------------------------------------------------ create

    async def create_link(
        self,
        original_url: str,
        owner_id: Optional[str] = None,
        custom_alias: Optional[str] = None,
        expires_in_days: Optional[int] = None,
        title: Optional[str] = None,
        description: Optional[str] = None,
    ) -> LinkCreateResult:
        """Create a short link

        For an owner, an active link to the same URL is returned instead of a
        new one (is_new=False); that path neither consumes quota nor checks the
        requested alias. Anonymous links are always new.

        Process:
        1. Validate URL and expiry
        2. Return the owner's existing active link, if any
        3. Enforce the owner's active-link quota
        4. Allocate a code and insert; the unique index settles races
        5. Warm the redirect cache
        """
        original_url = self.validate_url(original_url)
        if custom_alias is not None and not custom_alias.strip():
            custom_alias = None
        expires_at = self._expiry_from_days(expires_in_days)

        if owner_id:
            existing = self._find_active_duplicate(original_url, owner_id)
            if existing is not None:
                return LinkCreateResult(link=existing, is_new=False)
            self._check_quota(owner_id)
            self.user_stats.ensure_user(owner_id)

        link = self._insert_link(
            original_url=original_url,
            owner_id=owner_id,
            custom_alias=custom_alias,
            expires_at=expires_at,
            title=title.strip() if title else None,
            description=description.strip() if description else None,
        )

        await self._cache_target(link)
        logger.info(f"Created link {link.id} ({link.short_code}) for owner={owner_id}")
        return LinkCreateResult(link=link, is_new=True)

    def _insert_link(self, original_url, owner_id, custom_alias, expires_at, title, description) -> Link:
        # Generated codes get a few tries: the allocator's check is not a reservation
        insert_attempts = 1 if custom_alias else 3

        for _ in range(insert_attempts):
            code = self.allocator.allocate(custom_alias)
            link = Link(
                original_url=original_url,
                short_code=code,
                custom_alias=code if custom_alias else None,
                owner_id=owner_id,
                title=title,
                description=description,
                expires_at=expires_at,
                is_active=True,
                click_count=0,
                unique_clicks=0,
            )
            self.db.add(link)
            try:
                self.db.flush()
            except IntegrityError:
                self.db.rollback()
                if custom_alias:
                    raise AliasTakenError(code)
                logger.warning(f"Short code {code} was taken concurrently, allocating again")
                continue

            self.user_stats.increment(owner_id, url_count=1)
            self.db.commit()
            self.db.refresh(link)
            return link

        raise AllocationExhaustedError(insert_attempts)

    def validate_url(self, original_url: str) -> str:
        if not original_url or not isinstance(original_url, str):
            raise InvalidInputError("URL is required")

        original_url = original_url.strip()
        if len(original_url) > settings.max_url_length:
            raise InvalidInputError(
                f"URL too long. Maximum length is {settings.max_url_length} characters"
            )

        try:
            parts = urlsplit(original_url)
        except ValueError:
            raise InvalidInputError("Invalid URL format")
        if parts.scheme not in ("http", "https") or not parts.netloc:
            raise InvalidInputError("Invalid URL format. URL must start with http:// or https://")

        return original_url

    def _expiry_from_days(self, expires_in_days: Optional[int]):
        if expires_in_days is None:
            return None
        if expires_in_days <= 0:
            raise InvalidInputError("expires_in_days must be a positive number of days")
        return utcnow() + timedelta(days=expires_in_days)

    def _find_active_duplicate(self, original_url: str, owner_id: str) -> Optional[Link]:
        return self.db.query(Link).filter(
            Link.original_url == original_url,
            Link.owner_id == owner_id,
            Link.is_active == True
        ).order_by(Link.id).first()

    def _active_link_count(self, owner_id: str) -> int:
        return self.db.query(func.count(Link.id)).filter(
            Link.owner_id == owner_id,
            Link.is_active == True
        ).scalar() or 0

    def _check_quota(self, owner_id: str) -> None:
        if self._active_link_count(owner_id) >= settings.max_links_per_owner:
            raise QuotaExceededError(settings.max_links_per_owner)

    # ----------------------------------------------------------------- resolve

    async def resolve(self, code: str) -> Optional[Link]:
        """Find the link for a short code or custom alias

        Inactive and expired links both resolve to None.
        """
        link = self.db.query(Link).filter(
            or_(Link.short_code == code, Link.custom_alias == code),
            Link.is_active == True
        ).first()

        if link is None or link_metrics.is_expired(link.expires_at):
            return None
        return link

    async def get_redirect_target(self, code: str) -> Optional[RedirectTarget]:
        """
        Resolve a code for redirection using the Cache-Aside pattern.

        Flow:
        1. Check cache first; cached entries still honour expires_at
        2. If cache miss, resolve from the database
        3. Populate cache for next time (TTL never outlives the link)
        """
        cache_key = self._cache_key(code)

        if self.cache:
            cached = await self.cache.get(cache_key)
            if cached:
                target = RedirectTarget.model_validate_json(cached)
                if not link_metrics.is_expired(target.expires_at):
                    return target
                await self.cache.delete(cache_key)
                return None

        link = await self.resolve(code)
        if link is None:
            return None

        target = self._target_for(link)
        if self.cache:
            await self.cache.set(cache_key, target.model_dump_json(), ttl=self._cache_ttl(target))
        return target

    def _target_for(self, link: Link) -> RedirectTarget:
        return RedirectTarget(
            link_id=link.id,
            short_code=link.short_code,
            original_url=link.original_url,
            expires_at=link.expires_at,
        )

    def _cache_ttl(self, target: RedirectTarget) -> int:
        if target.expires_at is None:
            return settings.cache_ttl
        remaining = int((target.expires_at - utcnow()).total_seconds())
        return max(1, min(settings.cache_ttl, remaining))

    @staticmethod
    def _cache_key(code: str) -> str:
        return f"link:{code}"

    async def _cache_target(self, link: Link) -> None:
        if self.cache and link_metrics.is_accessible(link):
            target = self._target_for(link)
            await self.cache.set(self._cache_key(link.short_code), target.model_dump_json(), ttl=self._cache_ttl(target))

    async def _invalidate(self, code: str) -> None:
        # An alias is stored as the short code too, so one key covers both
        if self.cache:
            await self.cache.delete(self._cache_key(code))

    # ------------------------------------------------------- owner operations

    async def get_link(self, link_id: int, owner_id: Optional[str]) -> Link:
        """Owner-scoped lookup; a missing link and a foreign link look the same."""
        if not owner_id:
            raise NotFoundOrForbiddenError()
        link = self.db.query(Link).filter(
            Link.id == link_id,
            Link.owner_id == owner_id
        ).first()
        if link is None:
            raise NotFoundOrForbiddenError()
        return link

    async def update_link(self, link_id: int, owner_id: Optional[str], patch: Dict) -> Link:
        """
        Apply an owner's changes.

        Args:
            patch: Subset of original_url, title, description, is_active,
                   expires_in_days (0 clears the expiry)
        """
        unknown = set(patch) - UPDATABLE_FIELDS
        if unknown:
            raise InvalidInputError(f"Fields cannot be updated: {', '.join(sorted(unknown))}")

        link = await self.get_link(link_id, owner_id)
        was_active = link.is_active

        if "original_url" in patch and patch["original_url"] is not None:
            link.original_url = self.validate_url(str(patch["original_url"]))
        if "title" in patch:
            link.title = patch["title"].strip() if patch["title"] else None
        if "description" in patch:
            link.description = patch["description"].strip() if patch["description"] else None
        if "expires_in_days" in patch:
            days = patch["expires_in_days"]
            link.expires_at = None if not days else self._expiry_from_days(days)
        if "is_active" in patch and patch["is_active"] is not None:
            if patch["is_active"] and not was_active:
                self._check_quota(owner_id)
            link.is_active = bool(patch["is_active"])

        if was_active != link.is_active:
            self.user_stats.increment(owner_id, url_count=1 if link.is_active else -1)

        self.db.commit()
        self.db.refresh(link)
        await self._invalidate(link.short_code)
        return link

    async def toggle_status(self, link_id: int, owner_id: Optional[str]) -> Link:
        link = await self.get_link(link_id, owner_id)
        return await self.update_link(link_id, owner_id, {"is_active": not link.is_active})

    async def delete_link(self, link_id: int, owner_id: Optional[str], hard: bool = False) -> None:
        """
        Delete a link.

        Soft delete flips is_active; hard delete removes the row (its clicks
        stay). Either way the redirect cache entry is invalidated.
        """
        link = await self.get_link(link_id, owner_id)
        was_active = link.is_active
        code = link.short_code

        if hard:
            self.db.delete(link)
        else:
            link.is_active = False

        if was_active:
            self.user_stats.increment(owner_id, url_count=-1)

        self.db.commit()
        await self._invalidate(code)
        logger.info(f"{'Hard' if hard else 'Soft'} deleted link {link_id} for owner={owner_id}")

    async def list_links(
        self,
        owner_id: str,
        page: int = 1,
        limit: int = 10,
        sort_by: str = "created_at",
        sort_order: str = "desc",
        search: Optional[str] = None,
        is_active: Optional[bool] = None,
    ) -> LinkPage:
        """Paginated, searchable listing of an owner's links

        Ordering is deterministic: ties on the sort column are broken by id
        in the same direction.
        """
        if page < 1:
            raise InvalidInputError("page must be >= 1")
        if not 1 <= limit <= MAX_PAGE_SIZE:
            raise InvalidInputError(f"limit must be between 1 and {MAX_PAGE_SIZE}")
        if sort_by not in SORTABLE_FIELDS:
            raise InvalidInputError(f"sort_by must be one of: {', '.join(sorted(SORTABLE_FIELDS))}")
        if sort_order not in ("asc", "desc"):
            raise InvalidInputError("sort_order must be 'asc' or 'desc'")

        query = self.db.query(Link).filter(Link.owner_id == owner_id)
        if is_active is not None:
            query = query.filter(Link.is_active == is_active)
        if search:
            pattern = f"%{_escape_like(search.strip())}%"
            query = query.filter(or_(
                Link.title.ilike(pattern, escape="\\"),
                Link.description.ilike(pattern, escape="\\"),
                Link.original_url.ilike(pattern, escape="\\"),
                Link.short_code.ilike(pattern, escape="\\"),
                Link.custom_alias.ilike(pattern, escape="\\"),
            ))

        total = query.count()

        column = SORTABLE_FIELDS[sort_by]
        if sort_order == "desc":
            query = query.order_by(column.desc(), Link.id.desc())
        else:
            query = query.order_by(column.asc(), Link.id.asc())

        links = query.offset((page - 1) * limit).limit(limit).all()
        total_pages = math.ceil(total / limit) if total else 0

        return LinkPage(
            links=[LinkResponse.model_validate(link) for link in links],
            pagination=Pagination(
                current_page=page,
                total_pages=total_pages,
                total_links=total,
                has_next_page=page < total_pages,
                has_prev_page=page > 1,
            ),
        )

    async def popular(
        self,
        owner_id: Optional[str] = None,
        days: Optional[int] = 30,
        min_clicks: int = 1,
        limit: int = 10,
    ) -> List[Link]:
        """Active links clicked within `days` with at least `min_clicks` clicks"""
        if not 1 <= limit <= MAX_PAGE_SIZE:
            raise InvalidInputError(f"limit must be between 1 and {MAX_PAGE_SIZE}")

        query = self.db.query(Link).filter(
            Link.is_active == True,
            Link.click_count >= min_clicks
        )
        if owner_id:
            query = query.filter(Link.owner_id == owner_id)
        if days:
            query = query.filter(Link.last_clicked_at >= utcnow() - timedelta(days=days))

        return query.order_by(
            Link.click_count.desc(),
            Link.created_at.desc(),
            Link.id.desc()
        ).limit(limit).all()

    async def recent(
        self,
        owner_id: Optional[str] = None,
        limit: int = 10,
        is_active: Optional[bool] = True,
    ) -> List[Link]:
        query = self.db.query(Link)
        if owner_id:
            query = query.filter(Link.owner_id == owner_id)
        if is_active is not None:
            query = query.filter(Link.is_active == is_active)
        return query.order_by(Link.created_at.desc(), Link.id.desc()).limit(limit).all()

    async def link_stats(self, link_id: int, owner_id: Optional[str]) -> LinkStats:
        link = await self.get_link(link_id, owner_id)
        now = utcnow()
        return LinkStats(
            id=link.id,
            short_code=link.short_code,
            original_url=link.original_url,
            title=link.title,
            click_count=link.click_count,
            unique_clicks=link.unique_clicks,
            click_through_rate=link_metrics.click_through_rate(link.unique_clicks, link.click_count),
            average_clicks_per_day=link_metrics.average_clicks_per_day(link.click_count, link.created_at, now),
            age_in_days=link_metrics.age_in_days(link.created_at, now),
            created_at=link.created_at,
            last_clicked_at=link.last_clicked_at,
            is_active=link.is_active,
            is_expired=link_metrics.is_expired(link.expires_at, now),
        )

    async def is_alias_available(self, alias: str) -> bool:
        return self.allocator.is_alias_available(alias)

    # ------------------------------------------------------------------- bulk

    async def bulk_create(
        self,
        items: Sequence[LinkCreate],
        owner_id: Optional[str],
        skip_duplicates: bool = True,
        stop_on_error: bool = False,
    ) -> BulkCreateResult:
        """Create many links; each item succeeds or fails on its own"""
        if not items:
            raise InvalidInputError("At least one link is required")
        if len(items) > MAX_BULK_ITEMS:
            raise InvalidInputError(f"Maximum {MAX_BULK_ITEMS} links allowed per bulk request")

        results = []
        for index, item in enumerate(items):
            original_url = item.original_url.strip()

            if skip_duplicates and owner_id:
                existing = self.db.query(Link).filter(
                    Link.original_url == original_url,
                    Link.owner_id == owner_id
                ).order_by(Link.id).first()
                if existing is not None:
                    results.append(self._bulk_item(index, "skipped", original_url, existing, "duplicate"))
                    continue

            try:
                created = await self.create_link(
                    original_url=original_url,
                    owner_id=owner_id,
                    custom_alias=item.custom_alias,
                    expires_in_days=item.expires_in_days,
                    title=item.title,
                    description=item.description,
                )
            except SnapURLError as e:
                logger.info(f"Bulk item {index} failed: {e.message}")
                results.append(self._bulk_item(index, "failed", original_url, error=e.message))
                if stop_on_error:
                    break
                continue

            status = "created" if created.is_new else "skipped"
            reason = None if created.is_new else "duplicate"
            results.append(self._bulk_item(index, status, original_url, created.link, reason))

        return BulkCreateResult(
            results=results,
            total_processed=len(results),
            success_count=sum(1 for r in results if r.status == "created"),
            skipped_count=sum(1 for r in results if r.status == "skipped"),
            error_count=sum(1 for r in results if r.status == "failed"),
        )

    @staticmethod
    def _bulk_item(index, status, original_url, link=None, error=None) -> BulkItemResult:
        return BulkItemResult(
            index=index,
            status=status,
            original_url=original_url,
            short_code=link.short_code if link is not None else None,
            short_url=link_metrics.short_url(link) if link is not None else None,
            error=error,
        )

    async def bulk_delete(self, link_ids: Sequence[int], owner_id: Optional[str], hard: bool = False) -> BulkDeleteResult:
        if not link_ids:
            raise InvalidInputError("At least one link id is required")
        if len(link_ids) > MAX_BULK_ITEMS:
            raise InvalidInputError(f"Maximum {MAX_BULK_ITEMS} links allowed per bulk request")

        deleted = []
        for link_id in dict.fromkeys(link_ids):
            try:
                await self.delete_link(link_id, owner_id, hard=hard)
            except NotFoundOrForbiddenError:
                continue
            deleted.append(link_id)

        return BulkDeleteResult(
            requested_count=len(link_ids),
            deleted_count=len(deleted),
            deleted_ids=deleted,
        )

    # -------------------------------------------------------------- lifecycle

    async def purge_expired(self, dry_run: bool = True) -> Dict:
        """Hard-delete links whose expiry has passed. dry_run only counts them."""
        now = utcnow()
        expired = self.db.query(Link).filter(
            Link.expires_at.isnot(None),
            Link.expires_at < now
        )
        count = expired.count()
        if dry_run:
            return {"dry_run": True, "links_to_delete": count, "cutoff_date": now}

        active_per_owner = self.db.query(Link.owner_id, func.count(Link.id)).filter(
            Link.expires_at.isnot(None),
            Link.expires_at < now,
            Link.is_active == True,
            Link.owner_id.isnot(None)
        ).group_by(Link.owner_id).all()

        links = expired.all()
        codes = [link.short_code for link in links]
        for link in links:
            self.db.delete(link)
        for owner_id, active_count in active_per_owner:
            self.user_stats.increment(owner_id, url_count=-active_count)
        self.db.commit()

        for code in codes:
            await self._invalidate(code)

        logger.info(f"Purged {count} expired links")
        return {"dry_run": False, "deleted_count": count, "cutoff_date": now}


def _escape_like(term: str) -> str:
    return term.replace("\\", "\\\\").replace("%", "\\%").replace("_", "\\_")
