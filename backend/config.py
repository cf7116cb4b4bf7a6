"""Runtime settings read from the environment."""
import os

POLL_INTERVAL_SECONDS = float(os.getenv("POLL_INTERVAL_SECONDS", "15"))
TICK_INTERVAL_SECONDS = float(os.getenv("TICK_INTERVAL_SECONDS", "1"))
STORAGE_TIMEOUT_SECONDS = float(os.getenv("STORAGE_TIMEOUT_SECONDS", "5"))

# Offset from UTC used when turning a timestamp into a calendar-day key
TZ_OFFSET_MINUTES = int(os.getenv("TRACKER_TZ_OFFSET_MINUTES", "0"))

DEFAULT_ADMIN_USERNAME = os.getenv("TRACKER_ADMIN_USERNAME", "Admin")
DEFAULT_ADMIN_PASSWORD = os.getenv("TRACKER_ADMIN_PASSWORD", "123456789")
