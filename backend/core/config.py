import os
from datetime import time

from dotenv import load_dotenv


load_dotenv()


def _get_bool(value: str | None, default: bool = False) -> bool:
    if value is None:
        return default
    return value.strip().lower() in {"1", "true", "yes", "on"}


def _get_time(value: str) -> time:
    hour, minute = value.strip().split(":", 1)
    return time(int(hour), int(minute))


def _get_weekdays(value: str) -> frozenset[int]:
    days = {int(part) for part in value.split(",") if part.strip()}
    if not days or not days.issubset(range(1, 8)):
        raise ValueError("BUSINESS_DAYS must list ISO weekdays between 1 (Monday) and 7 (Sunday).")
    return frozenset(days)

APP_ENV = os.getenv("APP_ENV", "development")
SQL_ECHO = _get_bool(os.getenv("SQL_ECHO"), default=False)

DATABASE_URL = os.getenv("DATABASE_URL", "sqlite:///./scheduling.db")

GOOGLE_CLIENT_ID = os.getenv("GOOGLE_CLIENT_ID", "")
GOOGLE_CLIENT_SECRET = os.getenv("GOOGLE_CLIENT_SECRET", "")
GOOGLE_REDIRECT_URI = os.getenv("GOOGLE_REDIRECT_URI", "http://localhost:8000/auth/google/callback")
ADMIN_REDIRECT_URL = os.getenv("ADMIN_REDIRECT_URL", "/admin")

JWT_SECRET_KEY = os.getenv("JWT_SECRET_KEY", "change-me")
JWT_ALGORITHM = os.getenv("JWT_ALGORITHM", "HS256")
JWT_EXPIRES_MINUTES = int(os.getenv("JWT_EXPIRES_MINUTES", "60"))
OAUTH_STATE_EXPIRES_MINUTES = int(os.getenv("OAUTH_STATE_EXPIRES_MINUTES", "10"))

COMPANY_NAME = os.getenv("COMPANY_NAME", "ABC Plumbing")

APPOINTMENT_DURATION_MINUTES = int(os.getenv("APPOINTMENT_DURATION_MINUTES", "60"))
BUSINESS_HOURS_START = _get_time(os.getenv("BUSINESS_HOURS_START", "09:00"))
BUSINESS_HOURS_END = _get_time(os.getenv("BUSINESS_HOURS_END", "17:00"))
BUSINESS_DAYS = _get_weekdays(os.getenv("BUSINESS_DAYS", "1,2,3,4,5"))
BUSINESS_TIMEZONE = os.getenv("BUSINESS_TIMEZONE", "America/New_York")
DEFAULT_DAYS_AHEAD = int(os.getenv("DEFAULT_DAYS_AHEAD", "7"))

CALENDAR_REQUEST_TIMEOUT_SECONDS = float(os.getenv("CALENDAR_REQUEST_TIMEOUT_SECONDS", "10"))
TOKEN_REFRESH_MARGIN_SECONDS = int(os.getenv("TOKEN_REFRESH_MARGIN_SECONDS", "300"))


def validate_runtime_config() -> None:
    if APP_ENV.lower() != "production":
        return
    if JWT_SECRET_KEY == "change-me":
        raise RuntimeError("JWT_SECRET_KEY must be set in production.")
    if not GOOGLE_CLIENT_ID or not GOOGLE_CLIENT_SECRET:
        raise RuntimeError("GOOGLE_CLIENT_ID and GOOGLE_CLIENT_SECRET must be set in production.")
    if BUSINESS_HOURS_START >= BUSINESS_HOURS_END:
        raise RuntimeError("BUSINESS_HOURS_START must be earlier than BUSINESS_HOURS_END.")
