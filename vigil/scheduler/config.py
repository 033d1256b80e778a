"""Configuration for the compliance scheduler."""

import os

from dotenv import load_dotenv

load_dotenv()

HOUR_MS = 60 * 60 * 1000


def _get_int(name: str, default: int) -> int:
    value = os.getenv(name)
    if not value:
        return default
    try:
        return int(value)
    except ValueError:
        return default


def _get_bool(name: str, default: bool) -> bool:
    value = os.getenv(name)
    if not value:
        return default
    return value.strip().lower() in ("1", "true", "yes", "on")


# Job intervals (milliseconds)
DAILY_COMPLIANCE_CHECK_INTERVAL_MS = _get_int("DAILY_COMPLIANCE_CHECK_INTERVAL_MS", 24 * HOUR_MS)
HOURLY_ALERT_CHECK_INTERVAL_MS = _get_int("HOURLY_ALERT_CHECK_INTERVAL_MS", HOUR_MS)
EVIDENCE_EXPIRATION_INTERVAL_MS = _get_int("EVIDENCE_EXPIRATION_INTERVAL_MS", 6 * HOUR_MS)
ALERT_CLEANUP_INTERVAL_MS = _get_int("ALERT_CLEANUP_INTERVAL_MS", 24 * HOUR_MS)
REMEDIATION_CHECK_INTERVAL_MS = _get_int("REMEDIATION_CHECK_INTERVAL_MS", 12 * HOUR_MS)
EVIDENCE_COLLECTION_INTERVAL_MS = _get_int("EVIDENCE_COLLECTION_INTERVAL_MS", 6 * HOUR_MS)

# Job enable flags
DAILY_COMPLIANCE_CHECK_ENABLED = _get_bool("DAILY_COMPLIANCE_CHECK_ENABLED", True)
HOURLY_ALERT_CHECK_ENABLED = _get_bool("HOURLY_ALERT_CHECK_ENABLED", True)
EVIDENCE_EXPIRATION_ENABLED = _get_bool("EVIDENCE_EXPIRATION_ENABLED", True)
ALERT_CLEANUP_ENABLED = _get_bool("ALERT_CLEANUP_ENABLED", True)
REMEDIATION_CHECK_ENABLED = _get_bool("REMEDIATION_CHECK_ENABLED", True)
EVIDENCE_COLLECTION_ENABLED = _get_bool("EVIDENCE_COLLECTION_ENABLED", True)

# Fan-out scopes
RECENT_ASSESSMENT_DAYS = _get_int("RECENT_ASSESSMENT_DAYS", 30)
REMEDIATION_DUE_SOON_DAYS = _get_int("REMEDIATION_DUE_SOON_DAYS", 7)
