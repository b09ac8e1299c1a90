"""Persistence for connected calendar accounts."""

import logging
from datetime import datetime

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from backend.database import utc_now
from backend.models.calendar_account import CalendarAccount

logger = logging.getLogger(__name__)

DEFAULT_CALENDAR_ID = 'primary'


def list_accounts(db: Session) -> list[CalendarAccount]:
    return db.query(CalendarAccount).order_by(
        CalendarAccount.is_active.desc(),
        CalendarAccount.created_at.desc(),
        CalendarAccount.id.desc(),
    ).all()


def get_active_account(db: Session) -> CalendarAccount | None:
    return db.query(CalendarAccount).filter(CalendarAccount.is_active.is_(True)).first()


def get_account_by_id(db: Session, account_id: int) -> CalendarAccount | None:
    return db.query(CalendarAccount).filter(CalendarAccount.id == account_id).first()


def get_account_by_email(db: Session, email: str) -> CalendarAccount | None:
    return db.query(CalendarAccount).filter(CalendarAccount.email == email.strip().lower()).first()


def upsert_account(
    db: Session,
    email: str,
    access_token: str,
    refresh_token: str | None,
    token_expiry: datetime,
    calendar_id: str | None = None,
) -> CalendarAccount:
    """Create or update the account for ``email``.

    A rotated refresh token replaces the stored one; a missing one keeps it.
    The account is activated when no other account is active.
    """
    normalized_email = email.strip().lower()

    try:
        account = get_account_by_email(db, normalized_email)
        if account is None:
            if not refresh_token:
                raise ValueError('A refresh token is required to connect a new calendar account.')
            account = CalendarAccount(
                email=normalized_email,
                access_token=access_token,
                refresh_token=refresh_token,
                token_expiry=token_expiry,
                calendar_id=calendar_id or DEFAULT_CALENDAR_ID,
                is_active=False,
            )
            db.add(account)
        else:
            account.access_token = access_token
            account.refresh_token = refresh_token or account.refresh_token
            account.token_expiry = token_expiry
            account.calendar_id = calendar_id or account.calendar_id or DEFAULT_CALENDAR_ID
            account.updated_at = utc_now()

        if get_active_account(db) is None:
            account.is_active = True

        db.commit()
        db.refresh(account)
    except SQLAlchemyError:
        db.rollback()
        raise

    logger.info('Calendar account upserted: %s (active=%s)', account.email, account.is_active)
    return account


def activate_account(db: Session, account_id: int) -> CalendarAccount | None:
    """Make ``account_id`` the single active account in one transaction.

    Returns None and leaves every flag untouched when the id is unknown.
    """
    try:
        account = get_account_by_id(db, account_id)
        if account is None:
            return None

        now = utc_now()
        db.query(CalendarAccount).filter(CalendarAccount.is_active.is_(True)).update(
            {CalendarAccount.is_active: False, CalendarAccount.updated_at: now},
            synchronize_session=False,
        )
        db.query(CalendarAccount).filter(CalendarAccount.id == account_id).update(
            {CalendarAccount.is_active: True, CalendarAccount.updated_at: now},
            synchronize_session=False,
        )
        db.commit()
    except SQLAlchemyError:
        db.rollback()
        raise

    db.refresh(account)
    logger.info('Calendar account activated: id=%s email=%s', account.id, account.email)
    return account


def update_tokens(
    db: Session,
    email: str,
    access_token: str,
    token_expiry: datetime,
    refresh_token: str | None = None,
) -> CalendarAccount | None:
    try:
        account = get_account_by_email(db, email)
        if account is None:
            return None

        account.access_token = access_token
        account.token_expiry = token_expiry
        if refresh_token:
            account.refresh_token = refresh_token
        account.updated_at = utc_now()
        db.commit()
        db.refresh(account)
    except SQLAlchemyError:
        db.rollback()
        raise

    return account


def delete_account(db: Session, account_id: int) -> bool:
    try:
        deleted = db.query(CalendarAccount).filter(CalendarAccount.id == account_id).delete(
            synchronize_session=False,
        )
        db.commit()
    except SQLAlchemyError:
        db.rollback()
        raise

    if deleted:
        logger.info('Calendar account deleted: id=%s', account_id)
        return True
    return False
