"""Persistence for confirmed appointments."""

import logging
from datetime import datetime

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from backend.database import utc_now
from backend.models.appointment import Appointment

logger = logging.getLogger(__name__)


def create_appointment(
    db: Session,
    *,
    external_event_id: str | None,
    caller_name: str,
    phone_number: str,
    service_address: str | None,
    issue_description: str | None,
    start_time: datetime,
    end_time: datetime,
    account_email: str,
    email: str | None = None,
    call_id: str | None = None,
) -> Appointment:
    if start_time >= end_time:
        raise ValueError('Appointment start time must be before its end time.')

    appointment = Appointment(
        external_event_id=external_event_id,
        caller_name=caller_name,
        phone_number=phone_number,
        email=email or None,
        service_address=service_address or None,
        issue_description=issue_description or None,
        start_time=start_time,
        end_time=end_time,
        account_email=account_email,
        call_id=call_id or None,
    )

    try:
        db.add(appointment)
        db.commit()
        db.refresh(appointment)
    except SQLAlchemyError:
        db.rollback()
        raise

    logger.info(
        'Appointment created: id=%s event=%s start=%s',
        appointment.id,
        appointment.external_event_id,
        appointment.start_time.isoformat(),
    )
    return appointment


def list_appointments(
    db: Session,
    limit: int = 10,
    offset: int = 0,
    upcoming: bool = False,
) -> list[Appointment]:
    query = db.query(Appointment)
    if upcoming:
        query = query.filter(Appointment.start_time > utc_now())
    return query.order_by(Appointment.start_time.desc()).offset(offset).limit(limit).all()


def get_appointment_by_id(db: Session, appointment_id: int) -> Appointment | None:
    return db.query(Appointment).filter(Appointment.id == appointment_id).first()


def get_appointment_by_event_id(db: Session, external_event_id: str) -> Appointment | None:
    return db.query(Appointment).filter(Appointment.external_event_id == external_event_id).first()


def find_overlapping_appointment(
    db: Session,
    account_email: str,
    start_time: datetime,
    end_time: datetime,
) -> Appointment | None:
    return db.query(Appointment).filter(
        Appointment.account_email == account_email,
        Appointment.start_time < end_time,
        Appointment.end_time > start_time,
    ).first()
