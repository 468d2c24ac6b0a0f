from datetime import datetime
from typing import List, Literal, Optional

from pydantic import BaseModel, Field


class ReportCriteria(BaseModel):
    type: Literal["url", "user", "platform"]
    target_id: Optional[str] = Field(None, description="Link id for url reports, owner id for user reports")
    start_date: Optional[datetime] = None
    end_date: Optional[datetime] = None
    format: Literal["json", "csv"] = "json"


class AnalyticsSummaryRequest(BaseModel):
    link_ids: List[int] = Field(..., min_length=1, max_length=50)
    start_date: Optional[datetime] = None
    end_date: Optional[datetime] = None
    metrics: Optional[List[str]] = Field(None, description="Sections to include, default overview")


class CleanupRequest(BaseModel):
    """Clicks older than retention_days are deleted. dry_run only counts them."""
    retention_days: Optional[int] = Field(None, ge=1)
    dry_run: bool = True


class PurgeExpiredRequest(BaseModel):
    dry_run: bool = True
