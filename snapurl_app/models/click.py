from sqlalchemy import Column, Integer, String, DateTime, Boolean, Index

from snapurl_app.database.connection import Base
from snapurl_app.timeutils import utcnow


class Click(Base):
    """
    One recorded redirect.

    Immutable once inserted; only retention cleanup deletes rows. link_id is
    intentionally not a foreign key: clicks of hard-deleted links stay for
    historical reporting. owner_id is the link owner at click time.
    """
    __tablename__ = "clicks"

    id = Column(Integer, primary_key=True, index=True, autoincrement=True)
    link_id = Column(Integer, nullable=False, index=True)
    owner_id = Column(String(64), nullable=True, index=True)
    short_code = Column(String(30), nullable=False)

    # Request metadata
    ip_address = Column(String(45), nullable=True)  # IPv4 or IPv6
    user_agent = Column(String(512), nullable=True)
    referrer = Column(String(2048), nullable=True)
    referrer_domain = Column(String(255), nullable=True)

    # Derived metadata (best-effort, nullable)
    country = Column(String(64), nullable=True, index=True)
    city = Column(String(128), nullable=True)
    browser = Column(String(64), nullable=True)
    os = Column(String(64), nullable=True)
    device_type = Column(String(16), nullable=True)
    is_bot = Column(Boolean, default=False, nullable=False)
    is_unique = Column(Boolean, default=False, nullable=False)

    # Campaign (UTM) metadata
    source = Column(String(32), default="redirect", nullable=False)
    utm_source = Column(String(255), nullable=True)
    utm_medium = Column(String(255), nullable=True)
    utm_campaign = Column(String(255), nullable=True)
    utm_term = Column(String(255), nullable=True)
    utm_content = Column(String(255), nullable=True)

    clicked_at = Column(DateTime, default=utcnow, nullable=False, index=True)

    __table_args__ = (
        Index("ix_clicks_link_clicked", "link_id", "clicked_at"),
        Index("ix_clicks_link_ip_clicked", "link_id", "ip_address", "clicked_at"),
        Index("ix_clicks_browser_device", "browser", "device_type"),
        {"sqlite_autoincrement": True},
    )

    def __repr__(self):
        return f"<Click {self.id} for link {self.link_id}>"
