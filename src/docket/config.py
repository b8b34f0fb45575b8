"""
Docket configuration.

Values are read once from the environment at import time. ``main.py`` loads
``.env`` (python-dotenv) before importing this module.

Environment Variables:
- DOCKET_DB_PATH: SQLite file (default: data/docket.db)
- REMINDER_TICK_INTERVAL_SECONDS: Seconds between reminder ticks (default: 60)
- REMINDER_MAX_WORKERS: Cases evaluated in parallel per tick (default: 4)
- NOTIFICATION_MAX_ATTEMPTS: Delivery attempts per notification (default: 3)
- NOTIFICATION_RETRY_BASE_DELAY: Backoff base in seconds (default: 1.0)
- NOTIFICATION_RETRY_MAX_DELAY: Backoff ceiling in seconds (default: 10.0)
- NOTIFICATION_WEBHOOK_URL: POST notifications here; log only when unset
- NOTIFICATION_TIMEOUT_SECONDS: Webhook request timeout (default: 30)
- WAR_ROOM_LEAD_MINUTES: Minutes before trial the war room opens (default: 60)
- DOCKET_AUTOSTART_REMINDERS: Start the reminder loop with the API (default: false)
- DOCKET_ADMIN_NOTIFY_IDS: Comma-separated admins told about new attorney
  reschedule requests (default: docket-admin)
"""

import logging
import os
from pathlib import Path

logger = logging.getLogger(__name__)


def _get_env_bool(key: str, default: bool = False) -> bool:
    """Get boolean value from environment variable."""
    val = os.getenv(key, "").lower()
    if val in ("true", "1", "yes", "on"):
        return True
    elif val in ("false", "0", "no", "off"):
        return False
    return default


def _get_env_int(key: str, default: int) -> int:
    """Get integer value from environment variable."""
    val = os.getenv(key)
    if val is not None:
        try:
            return int(val)
        except ValueError:
            logger.warning(f"[Config] Invalid integer for {key}: {val}, using default: {default}")
    return default


def _get_env_float(key: str, default: float) -> float:
    """Get float value from environment variable."""
    val = os.getenv(key)
    if val is not None:
        try:
            return float(val)
        except ValueError:
            logger.warning(f"[Config] Invalid number for {key}: {val}, using default: {default}")
    return default


def _get_env_list(key: str, default: str) -> list[str]:
    """Get comma-separated values from environment variable, blanks dropped."""
    return [item.strip() for item in os.getenv(key, default).split(",") if item.strip()]


def get_project_root() -> Path:
    """File is at src/docket/config.py, so project root is 3 levels up."""
    return Path(__file__).parent.parent.parent


def get_default_db_path() -> Path:
    return Path(os.getenv("DOCKET_DB_PATH", str(get_project_root() / "data" / "docket.db")))


# =============================================================================
# Reminder loop
# =============================================================================

REMINDER_TICK_INTERVAL_SECONDS = _get_env_float("REMINDER_TICK_INTERVAL_SECONDS", 60.0)
REMINDER_MAX_WORKERS = _get_env_int("REMINDER_MAX_WORKERS", 4)
WAR_ROOM_LEAD_MINUTES = _get_env_int("WAR_ROOM_LEAD_MINUTES", 60)
AUTOSTART_REMINDERS = _get_env_bool("DOCKET_AUTOSTART_REMINDERS", False)

# =============================================================================
# Notification delivery
# =============================================================================

NOTIFICATION_MAX_ATTEMPTS = _get_env_int("NOTIFICATION_MAX_ATTEMPTS", 3)
NOTIFICATION_RETRY_BASE_DELAY = _get_env_float("NOTIFICATION_RETRY_BASE_DELAY", 1.0)
NOTIFICATION_RETRY_MAX_DELAY = _get_env_float("NOTIFICATION_RETRY_MAX_DELAY", 10.0)
NOTIFICATION_TIMEOUT_SECONDS = _get_env_float("NOTIFICATION_TIMEOUT_SECONDS", 30.0)
NOTIFICATION_WEBHOOK_URL = os.getenv("NOTIFICATION_WEBHOOK_URL", "")

# =============================================================================
# Negotiation
# =============================================================================

ADMIN_NOTIFY_IDS = _get_env_list("DOCKET_ADMIN_NOTIFY_IDS", "docket-admin")
