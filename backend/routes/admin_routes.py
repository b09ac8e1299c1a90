import logging
from datetime import datetime

from fastapi import APIRouter, Depends, HTTPException, Query, status
from pydantic import BaseModel
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from backend.auth.dependencies import require_admin
from backend.repositories import account_repository, appointment_repository
from backend.routes.dependencies import DATABASE_UNAVAILABLE_DETAIL, ensure_database_ready, get_db
from backend.scheduling.errors import SchedulingError
from backend.services.calendar_gateway import CalendarGateway
from backend.services.token_manager import token_manager

router = APIRouter(tags=['admin'], dependencies=[Depends(require_admin)])

logger = logging.getLogger(__name__)


class AccountResponse(BaseModel):
    id: int
    email: str
    calendar_id: str
    is_active: bool
    created_at: datetime

    class Config:
        from_attributes = True


class ActivateAccountResponse(BaseModel):
    success: bool
    active_account: AccountResponse


class AppointmentResponse(BaseModel):
    id: int
    external_event_id: str | None = None
    caller_name: str
    phone_number: str
    email: str | None = None
    service_address: str | None = None
    issue_description: str | None = None
    start_time: datetime
    end_time: datetime
    account_email: str
    call_id: str | None = None
    created_at: datetime

    class Config:
        from_attributes = True


def database_unavailable(exc: SQLAlchemyError) -> HTTPException:
    logger.error('Database error in admin route: %s', exc)
    return HTTPException(
        status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
        detail=DATABASE_UNAVAILABLE_DETAIL,
    )


@router.get('/accounts', response_model=list[AccountResponse])
def list_accounts(db: Session = Depends(get_db)):
    ensure_database_ready()

    try:
        return account_repository.list_accounts(db)
    except SQLAlchemyError as exc:
        raise database_unavailable(exc) from exc


@router.post('/accounts/{account_id}/activate', response_model=ActivateAccountResponse)
def activate_account(account_id: int, db: Session = Depends(get_db)):
    ensure_database_ready()

    try:
        account = account_repository.activate_account(db, account_id)
    except SQLAlchemyError as exc:
        raise database_unavailable(exc) from exc

    if account is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail='Account not found.')

    return ActivateAccountResponse(success=True, active_account=AccountResponse.model_validate(account))


@router.delete('/accounts/{account_id}')
def remove_account(account_id: int, db: Session = Depends(get_db)):
    ensure_database_ready()

    try:
        account = account_repository.get_account_by_id(db, account_id)
        if account is None:
            raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail='Account not found.')

        email = account.email
        revoked = token_manager.oauth_client.revoke_token(account.refresh_token or account.access_token)
        if not revoked:
            logger.warning('Could not revoke token during removal of %s; deleting locally anyway', email)

        token_manager.invalidate(account_id)
        account_repository.delete_account(db, account_id)
    except SQLAlchemyError as exc:
        raise database_unavailable(exc) from exc

    logger.info('Calendar account removed: id=%s email=%s', account_id, email)
    return {'success': True}


@router.get('/appointments', response_model=list[AppointmentResponse])
def list_appointments(
    limit: int = Query(default=10, ge=1, le=100),
    offset: int = Query(default=0, ge=0),
    upcoming: bool = Query(default=False),
    db: Session = Depends(get_db),
):
    ensure_database_ready()

    try:
        return appointment_repository.list_appointments(db, limit=limit, offset=offset, upcoming=upcoming)
    except SQLAlchemyError as exc:
        raise database_unavailable(exc) from exc


@router.get('/calendar/upcoming')
def list_upcoming_events(
    max_results: int = Query(default=10, ge=1, le=50),
    db: Session = Depends(get_db),
):
    ensure_database_ready()

    try:
        account = account_repository.get_active_account(db)
    except SQLAlchemyError as exc:
        raise database_unavailable(exc) from exc

    if account is None:
        return []

    try:
        return CalendarGateway(db).list_upcoming_events(account, max_results=max_results)
    except SchedulingError as exc:
        raise HTTPException(status_code=status.HTTP_502_BAD_GATEWAY, detail=str(exc)) from exc
