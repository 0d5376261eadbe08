"""
Error logging utility for the digest pipeline.

Logs digest processing errors to timestamped files for debugging.
"""

import os
from datetime import datetime
from typing import Any

LOG_DIR_ENV = "DIGEST_ERROR_LOG_DIR"


def _log_dir() -> str:
    return os.getenv(LOG_DIR_ENV) or os.path.join(os.path.dirname(__file__), "logs")


def log_notification_error(
    error_type: str, error_message: str, context: dict[str, Any] | None = None
) -> str:
    """
    Log a digest error to a timestamped file.

    Args:
        error_type: Type of error (e.g., 'window_query', 'recipients', 'sending', 'ledger')
        error_message: The error message
        context: Optional dictionary with additional context (kind, window_id, email, etc.)

    Returns:
        Path to the log file created
    """
    log_dir = _log_dir()
    os.makedirs(log_dir, exist_ok=True)

    # Microseconds keep per-recipient reports from the same second apart
    timestamp = datetime.now().strftime("%Y%m%d_%H%M%S_%f")
    filename = os.path.join(log_dir, f"digest_error_{error_type}_{timestamp}.txt")

    with open(filename, "w", encoding="utf-8") as f:
        f.write(f"Digest Error Report - {datetime.now()}\n")
        f.write("=" * 60 + "\n\n")
        f.write(f"Error Type: {error_type}\n")
        f.write(f"Error Message: {error_message}\n\n")

        if context:
            f.write("Context:\n")
            f.write("-" * 60 + "\n")
            for key, value in context.items():
                f.write(f"{key}: {value}\n")

    return filename
