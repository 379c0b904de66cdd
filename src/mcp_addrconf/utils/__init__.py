"""Utility modules for logging, auditing and retries."""
from .retry import with_retry, RETRYABLE_EXCEPTIONS
from .logging_config import (
    LogSettings,
    setup_logging,
    timed,
    timed_section,
    perf_logger,
)
from .audit_log import ChangeRecord, ChangeTracker, get_recent_changes, setup_audit_logging

__all__ = [
    "with_retry",
    "RETRYABLE_EXCEPTIONS",
    "LogSettings",
    "setup_logging",
    "timed",
    "timed_section",
    "perf_logger",
    "ChangeRecord",
    "ChangeTracker",
    "get_recent_changes",
    "setup_audit_logging",
]
