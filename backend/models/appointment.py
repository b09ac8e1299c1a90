"""Appointment model definitions."""

from sqlalchemy import CheckConstraint, Column, Integer, String
from backend.database import Base, UTCDateTime, utc_now


class Appointment(Base):
    """Represents a booking confirmed on the connected calendar."""
    __tablename__ = "appointments"
    __table_args__ = (
        CheckConstraint("start_time < end_time", name="ck_appointments_time_order"),
    )

    id = Column(Integer, primary_key=True)
    external_event_id = Column(String, unique=True, nullable=True, index=True)
    caller_name = Column(String, nullable=False)
    phone_number = Column(String, nullable=False)
    email = Column(String, nullable=True)
    service_address = Column(String, nullable=True)
    issue_description = Column(String, nullable=True)
    start_time = Column(UTCDateTime, nullable=False, index=True)
    end_time = Column(UTCDateTime, nullable=False)
    account_email = Column(String, nullable=False)
    call_id = Column(String, nullable=True)
    created_at = Column(UTCDateTime, nullable=False, default=utc_now)
