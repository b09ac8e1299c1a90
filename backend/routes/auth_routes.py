import logging
from urllib.parse import parse_qsl, urlencode, urlparse, urlunparse

import jwt
from fastapi import APIRouter, Depends
from fastapi.responses import RedirectResponse
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from backend.auth import jwt_handler
from backend.auth.google_oauth import GoogleOAuthClient, OAuthError
from backend.core import config
from backend.repositories import account_repository
from backend.routes.dependencies import get_db
from backend.services.token_manager import token_manager

router = APIRouter(tags=['google-oauth'])

logger = logging.getLogger(__name__)


def get_oauth_client() -> GoogleOAuthClient:
    return token_manager.oauth_client


def admin_redirect(**params: str) -> RedirectResponse:
    parsed = urlparse(config.ADMIN_REDIRECT_URL)
    query = dict(parse_qsl(parsed.query))
    query.update(params)
    return RedirectResponse(url=urlunparse(parsed._replace(query=urlencode(query))), status_code=302)


@router.get('/authorize')
def authorize(oauth_client: GoogleOAuthClient = Depends(get_oauth_client)):
    state = jwt_handler.create_oauth_state()
    logger.info('Google OAuth flow initiated')
    return RedirectResponse(url=oauth_client.build_authorization_url(state), status_code=302)


@router.get('/callback')
def callback(
    code: str | None = None,
    state: str | None = None,
    error: str | None = None,
    db: Session = Depends(get_db),
    oauth_client: GoogleOAuthClient = Depends(get_oauth_client),
):
    if error:
        logger.warning('OAuth error from Google: %s', error)
        return admin_redirect(error=error)

    if not state:
        logger.warning('OAuth callback without a state token')
        return admin_redirect(error='invalid_state')

    try:
        jwt_handler.verify_oauth_state(state)
    except jwt.ExpiredSignatureError:
        logger.warning('Expired OAuth state token')
        return admin_redirect(error='expired_state')
    except jwt.InvalidTokenError:
        logger.warning('Invalid OAuth state token')
        return admin_redirect(error='invalid_state')

    if not code:
        return admin_redirect(error='missing_code')

    try:
        tokens = oauth_client.exchange_code(code)
        email = oauth_client.fetch_user_email(tokens.access_token)
        account = account_repository.upsert_account(
            db,
            email=email,
            access_token=tokens.access_token,
            refresh_token=tokens.refresh_token,
            token_expiry=tokens.expires_at,
        )
    except (OAuthError, SQLAlchemyError, ValueError):
        logger.exception('Error handling OAuth callback')
        return admin_redirect(error='callback_failed')

    token_manager.invalidate(account.id)
    logger.info('Google account connected: %s (active=%s)', account.email, account.is_active)
    return admin_redirect(success='connected')
