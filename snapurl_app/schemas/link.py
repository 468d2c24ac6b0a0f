from datetime import datetime
from typing import List, Literal, Optional

from pydantic import BaseModel, ConfigDict, Field, computed_field

from snapurl_app.services import link_metrics


class LinkCreate(BaseModel):
    original_url: str = Field(..., min_length=1, description="Absolute http(s) URL, stored exactly as given")
    custom_alias: Optional[str] = Field(None, min_length=3, max_length=30, description="User-chosen code")
    title: Optional[str] = Field(None, max_length=100)
    description: Optional[str] = Field(None, max_length=500)
    expires_in_days: Optional[int] = Field(None, ge=1, le=3650, description="Days until the link stops resolving")


class LinkUpdate(BaseModel):
    """Fields an owner may change. Unset fields are left untouched."""
    original_url: Optional[str] = None
    title: Optional[str] = Field(None, max_length=100)
    description: Optional[str] = Field(None, max_length=500)
    is_active: Optional[bool] = None
    expires_in_days: Optional[int] = Field(None, ge=0, le=3650, description="0 removes the expiry")


class LinkResponse(BaseModel):
    """Response schema that serializes the SQLAlchemy Link model

    - from_attributes=True enables ORM mode (reads from model attributes)
    - @computed_field adds the derived values from link_metrics
    """
    id: int
    original_url: str
    short_code: str
    custom_alias: Optional[str] = None
    owner_id: Optional[str] = None
    title: Optional[str] = None
    description: Optional[str] = None
    is_active: bool
    expires_at: Optional[datetime] = None
    click_count: int
    unique_clicks: int
    last_clicked_at: Optional[datetime] = None
    created_at: datetime
    updated_at: Optional[datetime] = None

    @computed_field
    @property
    def short_url(self) -> str:
        return link_metrics.short_url(self)

    @computed_field
    @property
    def click_through_rate(self) -> float:
        return link_metrics.click_through_rate(self.unique_clicks, self.click_count)

    @computed_field
    @property
    def age_in_days(self) -> int:
        return link_metrics.age_in_days(self.created_at)

    @computed_field
    @property
    def is_expired(self) -> bool:
        return link_metrics.is_expired(self.expires_at)

    model_config = ConfigDict(from_attributes=True)


class LinkCreateResponse(BaseModel):
    link: LinkResponse
    is_new: bool
    message: str


class Pagination(BaseModel):
    current_page: int
    total_pages: int
    total_links: int
    has_next_page: bool
    has_prev_page: bool


class LinkPage(BaseModel):
    links: List[LinkResponse]
    pagination: Pagination


class LinkStats(BaseModel):
    id: int
    short_code: str
    original_url: str
    title: Optional[str] = None
    click_count: int
    unique_clicks: int
    click_through_rate: float
    average_clicks_per_day: float
    age_in_days: int
    created_at: datetime
    last_clicked_at: Optional[datetime] = None
    is_active: bool
    is_expired: bool


class AliasAvailability(BaseModel):
    alias: str
    available: bool


class BulkCreateRequest(BaseModel):
    links: List[LinkCreate] = Field(..., min_length=1, max_length=100)
    skip_duplicates: bool = True
    stop_on_error: bool = False


class BulkDeleteRequest(BaseModel):
    ids: List[int] = Field(..., min_length=1, max_length=100)
    hard: bool = False


class BulkItemResult(BaseModel):
    index: int
    status: Literal["created", "skipped", "failed"]
    original_url: str
    short_code: Optional[str] = None
    short_url: Optional[str] = None
    error: Optional[str] = None


class BulkCreateResult(BaseModel):
    results: List[BulkItemResult]
    total_processed: int
    success_count: int
    skipped_count: int
    error_count: int


class BulkDeleteResult(BaseModel):
    requested_count: int
    deleted_count: int
    deleted_ids: List[int]


class RedirectTarget(BaseModel):
    """Cached redirect mapping. expires_at is re-checked on every cache hit."""
    link_id: int
    short_code: str
    original_url: str
    expires_at: Optional[datetime] = None
