"""OAuth credential lifecycle for the connected calendar accounts.

The manager keeps one cached credential per account and refreshes it when it
would expire inside the safety margin. Refreshes for the same account are
single-flight: concurrent callers wait on a per-account lock and reuse the
credential the first caller obtained.
"""

import logging
from datetime import datetime, timedelta, timezone
from threading import Lock
from typing import Any

from pydantic import BaseModel, ConfigDict
from sqlalchemy.orm import Session

from backend.auth.google_oauth import GoogleOAuthClient, OAuthError
from backend.core import config
from backend.repositories import account_repository
from backend.scheduling.errors import CalendarUnavailable, ReauthorizationRequired

logger = logging.getLogger(__name__)


class Credential(BaseModel):
    model_config = ConfigDict(frozen=True)

    access_token: str
    expires_at: datetime

    def expires_within(self, margin: timedelta, now: datetime) -> bool:
        return self.expires_at <= now + margin


class TokenManager:
    def __init__(
        self,
        oauth_client: GoogleOAuthClient | None = None,
        refresh_margin: timedelta | None = None,
        clock=None,
    ) -> None:
        self._oauth_client = oauth_client
        self.refresh_margin = refresh_margin or timedelta(seconds=config.TOKEN_REFRESH_MARGIN_SECONDS)
        self._clock = clock or (lambda: datetime.now(timezone.utc))
        self._credentials: dict[int, Credential] = {}
        self._rejected_tokens: dict[int, str] = {}
        self._locks: dict[int, Lock] = {}
        self._registry_lock = Lock()

    @property
    def oauth_client(self) -> GoogleOAuthClient:
        if self._oauth_client is None:
            self._oauth_client = GoogleOAuthClient()
        return self._oauth_client

    def close(self) -> None:
        if self._oauth_client is not None:
            self._oauth_client.close()

    def get_valid_credential(self, db: Session, account: Any) -> Credential:
        """Return a credential for ``account`` that outlives the refresh margin.

        Raises ReauthorizationRequired when Google rejects the refresh token
        and CalendarUnavailable when the refresh call itself fails.
        """
        fresh = self._fresh_credential(account)
        if fresh is not None:
            return fresh

        with self._lock_for(account.id):
            # Another caller may have refreshed while we waited.
            fresh = self._fresh_credential(account)
            if fresh is not None:
                return fresh

            return self._refresh(db, account)

    def invalidate(self, account_id: int, rejected_token: str | None = None) -> None:
        """Drop the cached credential for ``account_id``.

        When ``rejected_token`` is given the provider refused it, so it is not
        trusted again even though the account row still carries it; the next
        call refreshes.
        """
        with self._registry_lock:
            self._credentials.pop(account_id, None)
            if rejected_token:
                self._rejected_tokens[account_id] = rejected_token

    def _fresh_credential(self, account: Any) -> Credential | None:
        now = self._clock()
        cached = self._credentials.get(account.id)
        rejected = self._rejected_tokens.get(account.id)
        if (
            cached is not None
            and cached.access_token != rejected
            and not cached.expires_within(self.refresh_margin, now)
        ):
            return cached

        stored = Credential(access_token=account.access_token, expires_at=account.token_expiry)
        if stored.access_token != rejected and not stored.expires_within(self.refresh_margin, now):
            self._credentials[account.id] = stored
            return stored
        return None

    def _lock_for(self, account_id: int) -> Lock:
        with self._registry_lock:
            lock = self._locks.get(account_id)
            if lock is None:
                lock = Lock()
                self._locks[account_id] = lock
            return lock

    def _refresh(self, db: Session, account: Any) -> Credential:
        logger.info('Access token for %s expires within %s, refreshing', account.email, self.refresh_margin)

        try:
            token_set = self.oauth_client.refresh_access_token(account.refresh_token)
        except OAuthError as exc:
            self.invalidate(account.id)
            if exc.grant_rejected:
                logger.error('Refresh token rejected for %s: %s', account.email, exc)
                raise ReauthorizationRequired(
                    f'Google rejected the refresh token for {account.email}; reconnect the calendar account.'
                ) from exc
            logger.error('Token refresh failed for %s: %s', account.email, exc)
            raise CalendarUnavailable(f'Token refresh failed for {account.email}') from exc

        account_repository.update_tokens(
            db,
            account.email,
            access_token=token_set.access_token,
            token_expiry=token_set.expires_at,
            refresh_token=token_set.refresh_token,
        )

        credential = Credential(access_token=token_set.access_token, expires_at=token_set.expires_at)
        with self._registry_lock:
            self._credentials[account.id] = credential
            self._rejected_tokens.pop(account.id, None)
        logger.info('Access token refreshed for %s', account.email)
        return credential


token_manager = TokenManager()
