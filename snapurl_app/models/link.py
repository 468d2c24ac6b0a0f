from sqlalchemy import Column, Integer, String, DateTime, Boolean, Index, Text

from snapurl_app.database.connection import Base
from snapurl_app.timeutils import utcnow


class Link(Base):
    """
    Short link record.

    short_code and custom_alias share one uniqueness namespace. A link created
    with a custom alias stores the alias in both columns, so the unique index on
    short_code alone rejects any collision between generated and custom codes.
    The index on custom_alias keeps aliases unique among themselves.

    Derived values (CTR, age, short URL) are not stored, see
    snapurl_app.services.link_metrics.
    """
    __tablename__ = "links"

    id = Column(Integer, primary_key=True, index=True, autoincrement=True)
    original_url = Column(String(2048), nullable=False)
    # Note: unique=True automatically creates an index in SQLAlchemy
    short_code = Column(String(30), unique=True, nullable=False, index=True)
    custom_alias = Column(String(30), unique=True, nullable=True)
    owner_id = Column(String(64), nullable=True, index=True)  # None = anonymous

    title = Column(String(100), nullable=True)
    description = Column(Text, nullable=True)

    is_active = Column(Boolean, default=True, nullable=False, index=True)
    expires_at = Column(DateTime, nullable=True)

    # Counters: only ever changed with atomic UPDATE ... SET col = col + 1
    click_count = Column(Integer, default=0, nullable=False)
    unique_clicks = Column(Integer, default=0, nullable=False)
    last_clicked_at = Column(DateTime, nullable=True)

    created_at = Column(DateTime, default=utcnow, nullable=False)
    updated_at = Column(DateTime, default=utcnow, onupdate=utcnow)

    __table_args__ = (
        Index("ix_links_owner_created", "owner_id", "created_at"),
        Index("ix_links_owner_url", "owner_id", "original_url"),
        # Ids are never reused: orphaned clicks still carry the old link_id
        {"sqlite_autoincrement": True},
    )

    def __repr__(self):
        return f"<Link {self.id} {self.short_code}>"
