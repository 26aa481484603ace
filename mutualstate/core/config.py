"""
Runtime configuration for the mutual-state engine.
All values come from environment variables so deployments and tests can override them.
"""

import os
from pathlib import Path

# Database path configuration
DB_PATH = os.getenv("DB_PATH", "./data/mutualstate.db")
SQLITE_TIMEOUT_SEC = float(os.getenv("SQLITE_TIMEOUT_SEC", "5"))

# Value at import time; debug_enabled() re-reads the environment on every call
DEBUG = os.getenv("DEBUG", "false").lower() == "true"

# Daily reset clock: every Day Key, lock expiry and streak comparison uses this offset (PKT by default)
DAY_RESET_UTC_OFFSET_HOURS = int(os.getenv("DAY_RESET_UTC_OFFSET_HOURS", "5"))

# Transactions are retried from the read phase this many times before a conflict is surfaced
TRANSACTION_MAX_ATTEMPTS = int(os.getenv("TRANSACTION_MAX_ATTEMPTS", "5"))

# Rotating identifiers
DAILY_ID_MAX_ATTEMPTS = int(os.getenv("DAILY_ID_MAX_ATTEMPTS", "5"))

# Stories
STORY_VISIBILITY_HOURS = int(os.getenv("STORY_VISIBILITY_HOURS", "24"))
PUBLIC_STORIES_DEFAULT_LIMIT = int(os.getenv("PUBLIC_STORIES_DEFAULT_LIMIT", "50"))
DEFAULT_REJECTION_REASON = "Not approved for public feed"

# Post-commit notifications (fire-and-forget)
NOTIFICATIONS_ENABLED = os.getenv("NOTIFICATIONS_ENABLED", "true").lower() == "true"
NOTIFICATION_WORKERS = int(os.getenv("NOTIFICATION_WORKERS", "2"))

# Admin review endpoints require this token in X-Admin-Token when set
ADMIN_TOKEN = os.getenv("ADMIN_TOKEN")

# Version string
VERSION = "0.3.0"


def debug_enabled():
    """Check if debug mode is enabled."""
    return os.getenv("DEBUG", "false").lower() == "true"


def ensure_db_directory(db_path: str = None):
    """Ensure the database directory exists."""
    Path(db_path or DB_PATH).parent.mkdir(parents=True, exist_ok=True)


def validate_config():
    """Validate engine configuration and return any issues."""
    issues = []

    if not -12 <= DAY_RESET_UTC_OFFSET_HOURS <= 14:
        issues.append(f"Invalid DAY_RESET_UTC_OFFSET_HOURS: {DAY_RESET_UTC_OFFSET_HOURS}")

    if TRANSACTION_MAX_ATTEMPTS < 1:
        issues.append("TRANSACTION_MAX_ATTEMPTS must be >= 1")

    if DAILY_ID_MAX_ATTEMPTS < 1:
        issues.append("DAILY_ID_MAX_ATTEMPTS must be >= 1")

    if STORY_VISIBILITY_HOURS < 1:
        issues.append("STORY_VISIBILITY_HOURS must be >= 1")

    if PUBLIC_STORIES_DEFAULT_LIMIT < 1:
        issues.append("PUBLIC_STORIES_DEFAULT_LIMIT must be >= 1")

    if NOTIFICATION_WORKERS < 1:
        issues.append("NOTIFICATION_WORKERS must be >= 1")

    return issues
