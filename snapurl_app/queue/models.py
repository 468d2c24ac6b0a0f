"""
Data models for queue messages.
"""

from datetime import datetime
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field

from snapurl_app.timeutils import utcnow


class CampaignFields(BaseModel):
    """UTM parameters captured from a tracked redirect."""
    utm_source: Optional[str] = None
    utm_medium: Optional[str] = None
    utm_campaign: Optional[str] = None
    utm_term: Optional[str] = None
    utm_content: Optional[str] = None


class ClickEvent(BaseModel):
    """
    Event model for click tracking.

    Published to the queue when a short link is resolved for a redirect.
    The click worker turns it into a Click row via ClickRecorder; geo and
    user-agent enrichment happen there, not on the redirect path.
    """

    link_id: int = Field(..., description="ID of the resolved link")
    short_code: str = Field(..., description="The code that was requested")
    timestamp: datetime = Field(default_factory=utcnow, description="When the redirect happened (UTC)")

    # Request metadata
    ip_address: Optional[str] = Field(None, description="Client IP address")
    user_agent: Optional[str] = Field(None, description="User agent string")
    referrer: Optional[str] = Field(None, description="HTTP referer")

    source: str = Field("redirect", description="redirect, tracked or qr")
    campaign: Optional[CampaignFields] = None

    # Set by the queue backend on consume, never serialized
    message_id: Optional[str] = Field(None, exclude=True)

    model_config = ConfigDict(
        json_schema_extra={
            "example": {
                "link_id": 42,
                "short_code": "launch",
                "timestamp": "2025-10-29T10:30:00",
                "ip_address": "203.0.113.7",
                "user_agent": "Mozilla/5.0 (Windows NT 10.0; Win64; x64) Chrome/120.0",
                "referrer": "https://twitter.com/",
                "source": "redirect",
            }
        }
    )
