"""Google Calendar operations for the active calendar account.

Every request uses a credential from the token manager, runs under an
explicit timeout and is attempted once; retry policy belongs to callers.
Provider failures surface as CalendarUnavailable and never as an empty
result.
"""

import logging
from datetime import datetime, timezone
from typing import Any
from urllib.parse import quote

import httpx
from sqlalchemy.orm import Session

from backend.core import config
from backend.scheduling.errors import CalendarUnavailable
from backend.scheduling.slots import BusyPeriod
from backend.services.token_manager import TokenManager, token_manager as default_token_manager

logger = logging.getLogger(__name__)

GOOGLE_CALENDAR_API_BASE_URL = "https://www.googleapis.com/calendar/v3"
EVENT_REMINDERS = {
    "useDefault": False,
    "overrides": [
        {"method": "email", "minutes": 60},
        {"method": "popup", "minutes": 30},
    ],
}

# Shared by every gateway; closed on app shutdown.
calendar_http_client = httpx.Client(timeout=config.CALENDAR_REQUEST_TIMEOUT_SECONDS)


def to_rfc3339(moment: datetime) -> str:
    return moment.astimezone(timezone.utc).isoformat().replace("+00:00", "Z")


def parse_rfc3339(value: str) -> datetime:
    normalized = value.strip()
    if normalized.endswith("Z"):
        normalized = normalized[:-1] + "+00:00"
    parsed = datetime.fromisoformat(normalized)
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


def _error_message(response: httpx.Response) -> str:
    try:
        payload = response.json()
    except ValueError:
        payload = None

    if isinstance(payload, dict):
        error_payload = payload.get("error")
        if isinstance(error_payload, dict) and isinstance(error_payload.get("message"), str):
            return " ".join(error_payload["message"].split())[:200]
        if isinstance(error_payload, str) and error_payload.strip():
            return " ".join(error_payload.split())[:200]

    return " ".join(response.text.split())[:200] or "Request failed without an error payload"


class CalendarGateway:
    def __init__(
        self,
        db: Session,
        tokens: TokenManager | None = None,
        http_client: httpx.Client | None = None,
    ) -> None:
        self._db = db
        self._tokens = tokens or default_token_manager
        self._http_client = http_client or calendar_http_client

    def get_busy_periods(self, account: Any, start: datetime, end: datetime) -> list[BusyPeriod]:
        """Busy intervals on the account's calendar inside ``[start, end)``."""
        calendar_id = account.calendar_id or "primary"
        context = {"account": account.email, "operation": "freeBusy", "window": f"{to_rfc3339(start)}/{to_rfc3339(end)}"}

        payload = self._request(
            account,
            "POST",
            "/freeBusy",
            context,
            json_body={
                "timeMin": to_rfc3339(start),
                "timeMax": to_rfc3339(end),
                "timeZone": config.BUSINESS_TIMEZONE,
                "items": [{"id": calendar_id}],
            },
        )

        calendars = payload.get("calendars")
        calendar_payload = calendars.get(calendar_id) if isinstance(calendars, dict) else None
        if calendar_payload is None and isinstance(calendars, dict) and len(calendars) == 1:
            calendar_payload = next(iter(calendars.values()))
        if not isinstance(calendar_payload, dict):
            raise self._fail("freeBusy response is missing the requested calendar", context)

        if calendar_payload.get("errors"):
            raise self._fail(f"freeBusy reported errors: {calendar_payload['errors']}", context)

        busy_payload = calendar_payload.get("busy", [])
        if not isinstance(busy_payload, list):
            raise self._fail("freeBusy response has a malformed busy list", context)

        busy_periods: list[BusyPeriod] = []
        for window in busy_payload:
            try:
                period = BusyPeriod(start=parse_rfc3339(window["start"]), end=parse_rfc3339(window["end"]))
            except (KeyError, TypeError, ValueError) as exc:
                raise self._fail(f"freeBusy returned an unreadable busy window: {window!r}", context) from exc
            if period.end > period.start:
                busy_periods.append(period)

        logger.info(
            "Fetched %d busy periods for %s over %s",
            len(busy_periods),
            account.email,
            context["window"],
        )
        return busy_periods

    def create_event(
        self,
        account: Any,
        summary: str,
        description: str,
        start: datetime,
        end: datetime,
        location: str | None = None,
        attendee_email: str | None = None,
    ) -> str:
        """Insert an event and return its provider id."""
        context = {"account": account.email, "operation": "events.insert", "window": f"{to_rfc3339(start)}/{to_rfc3339(end)}"}
        calendar_id = quote(account.calendar_id or "primary", safe="")

        payload = self._request(
            account,
            "POST",
            f"/calendars/{calendar_id}/events",
            context,
            params={"sendUpdates": "all" if attendee_email else "none"},
            json_body={
                "summary": summary,
                "description": description,
                "location": location or "",
                "start": {"dateTime": start.isoformat(), "timeZone": config.BUSINESS_TIMEZONE},
                "end": {"dateTime": end.isoformat(), "timeZone": config.BUSINESS_TIMEZONE},
                "attendees": [{"email": attendee_email}] if attendee_email else [],
                "reminders": EVENT_REMINDERS,
            },
        )

        event_id = payload.get("id")
        if not isinstance(event_id, str) or not event_id:
            raise self._fail("events.insert response is missing an event id", context)

        logger.info("Calendar event %s created for %s at %s", event_id, account.email, start.isoformat())
        return event_id

    def update_event(self, account: Any, event_id: str, changes: dict[str, Any]) -> dict[str, Any]:
        context = {"account": account.email, "operation": "events.patch", "event": event_id}
        calendar_id = quote(account.calendar_id or "primary", safe="")
        payload = self._request(
            account,
            "PATCH",
            f"/calendars/{calendar_id}/events/{quote(event_id, safe='')}",
            context,
            json_body=changes,
        )
        logger.info("Calendar event %s updated", event_id)
        return payload

    def delete_event(self, account: Any, event_id: str) -> None:
        context = {"account": account.email, "operation": "events.delete", "event": event_id}
        calendar_id = quote(account.calendar_id or "primary", safe="")
        self._request(
            account,
            "DELETE",
            f"/calendars/{calendar_id}/events/{quote(event_id, safe='')}",
            context,
        )
        logger.info("Calendar event %s deleted", event_id)

    def list_upcoming_events(self, account: Any, max_results: int = 10) -> list[dict[str, Any]]:
        now = datetime.now(timezone.utc)
        context = {"account": account.email, "operation": "events.list", "window": f"{to_rfc3339(now)}/"}
        calendar_id = quote(account.calendar_id or "primary", safe="")
        payload = self._request(
            account,
            "GET",
            f"/calendars/{calendar_id}/events",
            context,
            params={
                "timeMin": to_rfc3339(now),
                "maxResults": max_results,
                "singleEvents": "true",
                "orderBy": "startTime",
            },
        )
        items = payload.get("items", [])
        return items if isinstance(items, list) else []

    def _request(
        self,
        account: Any,
        method: str,
        path: str,
        context: dict[str, str],
        *,
        params: dict[str, Any] | None = None,
        json_body: dict[str, Any] | None = None,
    ) -> dict[str, Any]:
        credential = self._tokens.get_valid_credential(self._db, account)

        try:
            response = self._http_client.request(
                method,
                f"{GOOGLE_CALENDAR_API_BASE_URL}{path}",
                params=params,
                json=json_body,
                headers={"Authorization": f"Bearer {credential.access_token}", "Accept": "application/json"},
            )
        except httpx.TimeoutException as exc:
            raise self._fail("request timed out", context) from exc
        except httpx.HTTPError as exc:
            raise self._fail(f"request failed: {exc}", context) from exc

        if response.status_code == 401:
            self._tokens.invalidate(account.id, rejected_token=credential.access_token)

        if response.status_code < 200 or response.status_code >= 300:
            raise self._fail(f"HTTP {response.status_code}: {_error_message(response)}", context)

        if response.status_code == 204 or not response.content:
            return {}

        try:
            payload = response.json()
        except ValueError as exc:
            raise self._fail("response was not valid JSON", context) from exc

        if not isinstance(payload, dict):
            raise self._fail("response had an unexpected JSON shape", context)
        return payload

    @staticmethod
    def _fail(reason: str, context: dict[str, str]) -> CalendarUnavailable:
        details = " ".join(f"{key}={value}" for key, value in context.items())
        logger.error("Google Calendar %s failed: %s (%s)", context.get("operation"), reason, details)
        return CalendarUnavailable(f"Google Calendar {context.get('operation')} failed: {reason}")
