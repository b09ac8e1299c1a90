"""Google OAuth 2.0 helpers: consent URL, code exchange, refresh and revocation."""

import logging
from datetime import datetime, timedelta, timezone
from typing import Any
from urllib.parse import urlencode

import httpx
from pydantic import BaseModel

from backend.core import config

logger = logging.getLogger(__name__)

GOOGLE_AUTH_URL = "https://accounts.google.com/o/oauth2/v2/auth"
GOOGLE_OAUTH_TOKEN_URL = "https://oauth2.googleapis.com/token"
GOOGLE_REVOKE_URL = "https://oauth2.googleapis.com/revoke"
GOOGLE_USERINFO_URL = "https://www.googleapis.com/oauth2/v2/userinfo"

SCOPES = [
    "https://www.googleapis.com/auth/calendar.readonly",
    "https://www.googleapis.com/auth/calendar.events",
    "https://www.googleapis.com/auth/userinfo.email",
]

DEFAULT_EXPIRES_IN_SECONDS = 3600
# Error codes Google uses when the grant itself is dead rather than the network.
REAUTHORIZATION_ERROR_CODES = {"invalid_grant", "unauthorized_client", "invalid_client"}


class TokenSet(BaseModel):
    access_token: str
    refresh_token: str | None = None
    expires_at: datetime


class OAuthError(RuntimeError):
    """Raised when an OAuth endpoint call fails."""

    def __init__(self, message: str, *, status_code: int | None = None, error_code: str | None = None) -> None:
        self.status_code = status_code
        self.error_code = error_code
        super().__init__(message)

    @property
    def grant_rejected(self) -> bool:
        if self.error_code in REAUTHORIZATION_ERROR_CODES:
            return True
        return self.status_code in {400, 401}


def _coerce_expires_in_seconds(value: Any) -> int:
    if isinstance(value, bool):
        return DEFAULT_EXPIRES_IN_SECONDS
    if isinstance(value, int | float):
        return int(value) if value > 0 else DEFAULT_EXPIRES_IN_SECONDS
    return DEFAULT_EXPIRES_IN_SECONDS


def _error_details(response: httpx.Response) -> tuple[str | None, str]:
    try:
        payload = response.json()
    except ValueError:
        payload = None

    if isinstance(payload, dict):
        error_payload = payload.get("error")
        description = payload.get("error_description")
        if isinstance(error_payload, str):
            return error_payload, " ".join(str(description or error_payload).split())[:200]
        if isinstance(error_payload, dict):
            message = error_payload.get("message") or "Request failed"
            return error_payload.get("status"), " ".join(str(message).split())[:200]

    raw_text = response.text.strip()
    return None, " ".join(raw_text.split())[:200] or "Request failed without an error payload"


class GoogleOAuthClient:
    """Thin synchronous client for the Google OAuth endpoints."""

    def __init__(self, http_client: httpx.Client | None = None) -> None:
        self._http_client = http_client or httpx.Client(timeout=config.CALENDAR_REQUEST_TIMEOUT_SECONDS)

    def close(self) -> None:
        self._http_client.close()

    def build_authorization_url(self, state: str) -> str:
        query = {
            "client_id": config.GOOGLE_CLIENT_ID,
            "redirect_uri": config.GOOGLE_REDIRECT_URI,
            "response_type": "code",
            "scope": " ".join(SCOPES),
            "access_type": "offline",
            "prompt": "consent",
            "include_granted_scopes": "true",
            "state": state,
        }
        return f"{GOOGLE_AUTH_URL}?{urlencode(query)}"

    def exchange_code(self, code: str) -> TokenSet:
        token_set = self._request_tokens(
            {
                "code": code,
                "client_id": config.GOOGLE_CLIENT_ID,
                "client_secret": config.GOOGLE_CLIENT_SECRET,
                "redirect_uri": config.GOOGLE_REDIRECT_URI,
                "grant_type": "authorization_code",
            },
            operation="code exchange",
        )
        if not token_set.refresh_token:
            raise OAuthError("Google did not return a refresh token; consent must be granted again")
        logger.info("Exchanged Google authorization code for tokens")
        return token_set

    def refresh_access_token(self, refresh_token: str) -> TokenSet:
        return self._request_tokens(
            {
                "client_id": config.GOOGLE_CLIENT_ID,
                "client_secret": config.GOOGLE_CLIENT_SECRET,
                "refresh_token": refresh_token,
                "grant_type": "refresh_token",
            },
            operation="token refresh",
        )

    def fetch_user_email(self, access_token: str) -> str:
        try:
            response = self._http_client.get(
                GOOGLE_USERINFO_URL,
                headers={"Authorization": f"Bearer {access_token}"},
            )
        except httpx.HTTPError as exc:
            raise OAuthError(f"Google userinfo request failed: {exc}") from exc

        if response.status_code != 200:
            error_code, message = _error_details(response)
            raise OAuthError(
                f"Google userinfo request failed ({response.status_code}): {message}",
                status_code=response.status_code,
                error_code=error_code,
            )

        email = response.json().get("email")
        if not isinstance(email, str) or not email.strip():
            raise OAuthError("Google userinfo response is missing an email address")
        return email.strip().lower()

    def revoke_token(self, token: str) -> bool:
        """Revoke ``token`` at Google. Failures are logged and reported as False."""
        try:
            response = self._http_client.post(
                GOOGLE_REVOKE_URL,
                data={"token": token},
                headers={"Content-Type": "application/x-www-form-urlencoded"},
            )
        except httpx.HTTPError as exc:
            logger.warning("Failed to revoke Google token: %s", exc)
            return False

        if response.status_code != 200:
            _, message = _error_details(response)
            logger.warning("Failed to revoke Google token (%s): %s", response.status_code, message)
            return False

        logger.info("Google token revoked")
        return True

    def _request_tokens(self, data: dict[str, str], *, operation: str) -> TokenSet:
        try:
            response = self._http_client.post(
                GOOGLE_OAUTH_TOKEN_URL,
                data=data,
                headers={"Accept": "application/json"},
            )
        except httpx.HTTPError as exc:
            raise OAuthError(f"Google OAuth {operation} request failed: {exc}") from exc

        if response.status_code < 200 or response.status_code >= 300:
            error_code, message = _error_details(response)
            raise OAuthError(
                f"Google OAuth {operation} failed ({response.status_code}): {message}",
                status_code=response.status_code,
                error_code=error_code,
            )

        try:
            payload = response.json()
        except ValueError as exc:
            raise OAuthError(f"Google OAuth {operation} returned invalid JSON") from exc

        access_token = payload.get("access_token") if isinstance(payload, dict) else None
        if not isinstance(access_token, str) or not access_token.strip():
            raise OAuthError(f"Google OAuth {operation} response is missing an access_token")

        refresh_token = payload.get("refresh_token")
        expires_in = _coerce_expires_in_seconds(payload.get("expires_in"))
        return TokenSet(
            access_token=access_token.strip(),
            refresh_token=refresh_token if isinstance(refresh_token, str) and refresh_token else None,
            expires_at=datetime.now(timezone.utc) + timedelta(seconds=expires_in),
        )
