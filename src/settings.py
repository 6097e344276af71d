from __future__ import annotations
from dataclasses import dataclass
from datetime import date, datetime
import logging
import os
from dotenv import load_dotenv

load_dotenv()

BOOKINGS_KEY = "bookings_v2"
LEGACY_SLOTS_KEY = "booked_slots"
YOUTH_VOLUNTEERS_KEY = "youth_volunteers"
REMINDERS_SENT_KEY = "reminders_sent"

DEFAULT_ALLOWED_ORIGINS = (
    "https://azyouthcount.org",
    "https://www.azyouthcount.org",
    "http://localhost:5173",
)


def _env_date(name: str, default: str) -> date:
    raw = os.getenv(name, default)
    try:
        return datetime.strptime(raw, "%Y-%m-%d").date()
    except ValueError:
        raise ValueError(f"Invalid date for {name}: {raw!r} (expected YYYY-MM-DD)") from None


def _env_int(name: str, default: str) -> int:
    raw = os.getenv(name, default)
    try:
        return int(raw)
    except (TypeError, ValueError):
        raise ValueError(f"Invalid integer for {name}: {raw!r}") from None


def _env_float(name: str, default: str) -> float:
    raw = os.getenv(name, default)
    try:
        return float(raw)
    except (TypeError, ValueError):
        raise ValueError(f"Invalid float for {name}: {raw!r}") from None


def _env_list(name: str, default: tuple[str, ...] = ()) -> tuple[str, ...]:
    raw = os.getenv(name)
    if raw is None:
        return default
    return tuple(part.strip() for part in raw.split(",") if part.strip())


@dataclass(frozen=True)
class Settings:
    count_start: date = date(2026, 1, 28)
    count_end: date = date(2026, 2, 13)
    double_slots_start: date = date(2026, 2, 6)
    slots_before_cutover: int = 1
    slots_from_cutover: int = 2
    day_start_hour: int = 6
    day_end_hour: int = 18
    slot_minutes: int = 30
    timezone: str = "America/Phoenix"
    database_url: str | None = None
    roster_path: str | None = None
    recaptcha_secret: str | None = None
    recaptcha_v3_secret: str | None = None
    recaptcha_min_score: float = 0.5
    allowed_origins: tuple[str, ...] = DEFAULT_ALLOWED_ORIGINS
    admin_secret: str | None = None
    youth_password: str | None = None
    youth_admin_usernames: tuple[str, ...] = ()
    cron_secret: str | None = None
    resend_api_key: str | None = None
    from_email: str = "AZ Youth Count <noreply@azyouthcount.org>"
    rate_limit_max: int = 5
    rate_limit_window_seconds: int = 3600
    lock_ttl_seconds: int = 30
    booking_write_retries: int = 5
    log_level: str = "INFO"


def validate_settings(settings: Settings) -> None:
    if settings.count_end < settings.count_start:
        raise ValueError("COUNT_END must not be before COUNT_START")
    if not settings.count_start <= settings.double_slots_start:
        raise ValueError("DOUBLE_SLOTS_START must not be before COUNT_START")
    if settings.slots_before_cutover < 1 or settings.slots_from_cutover < 1:
        raise ValueError("slot capacities must be >= 1")
    if not 0 <= settings.day_start_hour < settings.day_end_hour <= 24:
        raise ValueError("DAY_START_HOUR/DAY_END_HOUR must satisfy 0 <= start < end <= 24")
    if settings.slot_minutes <= 0 or 60 % settings.slot_minutes != 0:
        raise ValueError(f"SLOT_MINUTES must divide an hour, got {settings.slot_minutes}")
    if not 0.0 <= settings.recaptcha_min_score <= 1.0:
        raise ValueError(f"RECAPTCHA_MIN_SCORE must be between 0.0 and 1.0, got {settings.recaptcha_min_score}")
    if settings.rate_limit_max < 1 or settings.rate_limit_window_seconds < 1:
        raise ValueError("RATE_LIMIT_MAX and RATE_LIMIT_WINDOW_SECONDS must be >= 1")
    if settings.booking_write_retries < 1:
        raise ValueError("BOOKING_WRITE_RETRIES must be >= 1")


def load_settings() -> Settings:
    settings = Settings(
        count_start=_env_date("COUNT_START", "2026-01-28"),
        count_end=_env_date("COUNT_END", "2026-02-13"),
        double_slots_start=_env_date("DOUBLE_SLOTS_START", "2026-02-06"),
        slots_before_cutover=_env_int("SLOTS_BEFORE_CUTOVER", "1"),
        slots_from_cutover=_env_int("SLOTS_FROM_CUTOVER", "2"),
        day_start_hour=_env_int("DAY_START_HOUR", "6"),
        day_end_hour=_env_int("DAY_END_HOUR", "18"),
        slot_minutes=_env_int("SLOT_MINUTES", "30"),
        timezone=os.getenv("TIMEZONE", "America/Phoenix"),
        database_url=os.getenv("DATABASE_URL") or os.getenv("DATABASE_URL_DEV"),
        roster_path=os.getenv("VOLUNTEER_ROSTER_PATH"),
        recaptcha_secret=os.getenv("RECAPTCHA_SECRET_KEY") or None,
        recaptcha_v3_secret=os.getenv("RECAPTCHA_V3_SECRET_KEY") or None,
        recaptcha_min_score=_env_float("RECAPTCHA_MIN_SCORE", "0.5"),
        allowed_origins=_env_list("ALLOWED_ORIGINS", DEFAULT_ALLOWED_ORIGINS),
        admin_secret=os.getenv("ADMIN_SECRET") or None,
        youth_password=os.getenv("YOUTH_VOLUNTEER_PASSWORD") or None,
        youth_admin_usernames=_env_list("YOUTH_ADMIN_USERNAMES"),
        cron_secret=os.getenv("CRON_SECRET") or None,
        resend_api_key=os.getenv("RESEND_API_KEY") or None,
        from_email=os.getenv("FROM_EMAIL", "AZ Youth Count <noreply@azyouthcount.org>"),
        rate_limit_max=_env_int("RATE_LIMIT_MAX", "5"),
        rate_limit_window_seconds=_env_int("RATE_LIMIT_WINDOW_SECONDS", "3600"),
        lock_ttl_seconds=_env_int("LOCK_TTL_SECONDS", "30"),
        booking_write_retries=_env_int("BOOKING_WRITE_RETRIES", "5"),
        log_level=os.getenv("LOG_LEVEL", "INFO"),
    )
    validate_settings(settings)
    return settings


def configure_logging(level: str = "INFO") -> None:
    if not logging.getLogger().handlers:
        logging.basicConfig(format="%(levelname)s %(name)s: %(message)s")
    logging.getLogger().setLevel(getattr(logging, level.upper(), logging.INFO))
