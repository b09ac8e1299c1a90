"""Calendar account model definitions."""

from sqlalchemy import Boolean, Column, Index, Integer, String
from backend.database import Base, UTCDateTime, utc_now


class CalendarAccount(Base):
    """Represents a connected Google Calendar identity and its OAuth tokens."""
    __tablename__ = "calendar_accounts"

    id = Column(Integer, primary_key=True, index=True)
    email = Column(String, unique=True, nullable=False, index=True)
    access_token = Column(String, nullable=False)
    refresh_token = Column(String, nullable=False)
    token_expiry = Column(UTCDateTime, nullable=False)
    calendar_id = Column(String, nullable=False, default="primary")
    is_active = Column(Boolean, nullable=False, default=False)
    created_at = Column(UTCDateTime, nullable=False, default=utc_now)
    updated_at = Column(UTCDateTime, nullable=False, default=utc_now, onupdate=utc_now)

    # Only one row may carry is_active = true.
    __table_args__ = (
        Index(
            "uq_calendar_accounts_single_active",
            "is_active",
            unique=True,
            sqlite_where=is_active.is_(True),
            postgresql_where=is_active.is_(True),
        ),
    )
