#!/usr/bin/env python3
"""
Photobooth Utilities

Logging and crash protection for the photobooth assistant service.
"""

import os
import sys
import traceback
import threading
from datetime import datetime

# Global lock for stdout; handlers, the scheduler and upload workers log concurrently
_stdout_lock = threading.Lock()


def booth_log(tag: str, message: str, level: str = "INFO"):
    """
    Log a message with timestamp and tag.

    Format: [HH:MM:SS.mmm] [LEVEL] [TAG] message

    Args:
        tag: Component tag (e.g., "DIALOGUE", "CMD", "UPLOAD")
        message: Log message
        level: Log level (DEBUG, INFO, WARNING, ERROR)
    """
    timestamp = datetime.now().strftime("%H:%M:%S.%f")[:-3]

    # Format: [14:08:25.342] [INFO] [CMD] Sent 'capture' to io-photobooth
    log_line = f"[{timestamp}] [{level}] [{tag}] {message}"

    with _stdout_lock:
        print(log_line, flush=True)


def log_crash(exc_type, exc_value, exc_traceback):
    """
    Log crash information to file for debugging.

    Args:
        exc_type: Exception type
        exc_value: Exception value
        exc_traceback: Exception traceback
    """
    from photobooth import LOGS_DIR
    timestamp = datetime.now().strftime("%Y-%m-%d_%H-%M-%S")
    crash_file = os.path.join(LOGS_DIR, f"photobooth_crash_{timestamp}.log")

    try:
        with open(crash_file, 'w', encoding='utf-8') as f:
            f.write("Photobooth Crash Log\n")
            f.write(f"Timestamp: {timestamp}\n")
            f.write(f"Exception Type: {exc_type.__name__}\n")
            f.write(f"Exception Value: {exc_value}\n")
            f.write("\nTraceback:\n")
            traceback.print_exception(exc_type, exc_value, exc_traceback, file=f)
            f.write("\n\nThread Information:\n")
            for thread in threading.enumerate():
                f.write(f"  - {thread.name} (daemon={thread.daemon})\n")

        booth_log("CRASH", f"Crash log saved to {crash_file}", level="ERROR")
    except Exception as e:
        print(f"[CRITICAL] Failed to write crash log: {e}", file=sys.stderr)


def setup_crash_protection():
    """
    Install a global excepthook that writes a crash log before the default handler runs.

    Call once at the start of the application.
    """
    def custom_excepthook(exc_type, exc_value, exc_traceback):
        log_crash(exc_type, exc_value, exc_traceback)
        sys.__excepthook__(exc_type, exc_value, exc_traceback)

    sys.excepthook = custom_excepthook
    booth_log("INIT", "Crash protection enabled")


def parse_bool(value, default: bool = False) -> bool:
    """Interpret YAML/env style booleans ("true", "1", "yes")."""
    if value is None:
        return default
    if isinstance(value, str):
        return value.strip().lower() in ("true", "1", "yes")
    return bool(value)
