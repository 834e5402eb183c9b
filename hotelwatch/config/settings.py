# hotelwatch/config/settings.py

"""Central configuration for the hotelwatch price pipeline."""

import os
from pathlib import Path

from dotenv import load_dotenv

load_dotenv()


def _env_flag(name: str, default: bool) -> bool:
    """Read a boolean flag from the environment ("1", "true", "yes")."""
    raw = os.getenv(name)
    if raw is None:
        return default
    return raw.strip().lower() in {"1", "true", "yes", "on"}


class Settings:
    """Central configuration for the hotelwatch price pipeline."""

    # --- Price observations ---
    DEFAULT_CURRENCY: str = "USD"
    PRICE_SOURCE: str = os.getenv("HOTELWATCH_PRICE_SOURCE", "liteapi")
    # Skip ids that are neither integers nor UUIDs (integer-keyed tables)
    STRICT_HOTEL_IDS: bool = _env_flag("HOTELWATCH_STRICT_HOTEL_IDS", False)

    # --- Tables ---
    PRICE_HISTORY_TABLE: str = "hotel_price_history"
    DROP_EVENTS_TABLE: str = "hotel_price_drop_events"
    SAVED_HOTELS_TABLE: str = "user_saved_hotels"
    NOTIFICATION_SETTINGS_TABLE: str = "user_notification_settings"
    ALERT_QUEUE_TABLE: str = "user_price_alert_queue"
    EMAIL_SEND_LOG_TABLE: str = "user_email_send_log"
    JOB_RUNS_TABLE: str = "price_alert_job_runs"

    # --- Hosted storage (Supabase / PostgREST) ---
    SUPABASE_URL: str = os.getenv("SUPABASE_URL", "")
    SUPABASE_SERVICE_ROLE_KEY: str = os.getenv(
        "SUPABASE_SERVICE_ROLE_KEY", ""
    )
    REQUEST_TIMEOUT: int = 15           # Seconds before a request times out

    # --- Alert delivery ---
    RESEND_API_KEY: str = os.getenv("RESEND_API_KEY", "")
    RESEND_API_URL: str = "https://api.resend.com/emails"
    ALERT_FROM_ADDRESS: str = os.getenv(
        "HOTELWATCH_ALERT_FROM",
        "LuxeStay Alerts <onboarding@resend.dev>",
    )
    SITE_BASE_URL: str = os.getenv(
        "HOTELWATCH_SITE_URL", "https://luxestayhaven.com"
    )
    ALERT_BATCH_SIZE: int = 100         # Queue rows per processor run
    ALERT_MAX_RETRIES: int = 3          # Attempts before a row is dead
    ALERT_DAILY_EMAIL_CAP: int = 5      # Alert emails per user per day
    ALERT_FREQUENCIES: list[str] = ["instant", "daily", "weekly"]

    # --- Paths ---
    BASE_DIR: Path = Path(__file__).resolve().parent.parent.parent
    DATA_DIR: Path = BASE_DIR / "data"
    PRICE_DB_PATH: Path = DATA_DIR / "hotelwatch.db"
    LOGS_DIR: Path = BASE_DIR / "logs"

    # --- Logging ---
    CONSOLE_LOG_LEVEL: str = os.getenv("HOTELWATCH_LOG_LEVEL", "WARNING")
