"""Utility functions for ACC Backup."""

import math
import re
import shutil
import sys
from datetime import datetime

# Characters that are invalid in a directory or file name on any of the
# platforms the backup is restored to. Path separators are included.
_INVALID_NAME_CHARS = re.compile(r'[<>:"/\\|?*\x00-\x1f]')

BACKUP_DIRECTORY_FORMAT = "%Y-%m-%d_%H-%M"
_BACKUP_DIRECTORY_PATTERN = re.compile(r"^\d{4}-\d{2}-\d{2}_\d{2}-\d{2}(?:_\d+)?$")


def human_size(num_bytes: int, precision: int = 2) -> str:
    """Convert bytes to human-readable string (e.g., '1.5 GB')."""
    num = float(num_bytes)
    for unit in ["B", "KB", "MB", "GB", "TB", "PB"]:
        if abs(num) < 1024.0:
            return f"{num:.{precision}f} {unit}"
        num /= 1024.0
    return f"{num:.{precision}f} EB"


def human_time(seconds: float | None) -> str:
    """Convert seconds to a fixed hh:mm:ss duration."""
    if seconds is None:
        return "--:--:--"
    if seconds < 0:
        return "unknown"

    seconds = int(seconds)
    h, remainder = divmod(seconds, 3600)
    m, s = divmod(remainder, 60)
    return f"{h:02d}:{m:02d}:{s:02d}"


def get_terminal_width() -> int:
    """Get terminal width, with a sensible default."""
    return shutil.get_terminal_size((80, 24)).columns


def is_tty() -> bool:
    """Check if stdout is a terminal (supports colors/cursor control)."""
    return sys.stdout.isatty()


def bytes_to_mb(num_bytes: int) -> float:
    """Convert bytes to megabytes rounded to two decimals."""
    return round(num_bytes / 1024 / 1024, 2)


def sanitize_name(name: str) -> str:
    """Replace characters that cannot appear in a directory name with '_'."""
    cleaned = _INVALID_NAME_CHARS.sub("_", name or "")
    # Windows silently drops trailing dots and spaces
    cleaned = cleaned.rstrip(". ")
    return cleaned or "_"


def backup_directory_name(when: datetime) -> str:
    """Name of the run directory created for a backup started at ``when``."""
    return when.strftime(BACKUP_DIRECTORY_FORMAT)


def is_backup_directory_name(name: str) -> bool:
    """Check if a directory name follows the run directory naming pattern."""
    return bool(_BACKUP_DIRECTORY_PATTERN.match(name))


def parse_backup_directory_name(name: str) -> datetime | None:
    """Recover the start time encoded in a run directory name."""
    if not is_backup_directory_name(name):
        return None
    try:
        return datetime.strptime(name[:16], BACKUP_DIRECTORY_FORMAT)
    except ValueError:
        return None


def normalize_relative_path(path: str) -> str:
    """Normalize a backup-relative path to forward slashes, no leading slash."""
    parts = [p for p in re.split(r"[\\/]+", path) if p]
    return "/".join(parts)


def parse_retry_after(value: object) -> float | None:
    """
    Parse a Retry-After value expressed in seconds.

    Returns None when the value is missing, negative or not a number.
    HTTP-date values are not used by the remote service and are treated
    as unparsable.
    """
    if value is None or isinstance(value, bool):
        return None
    try:
        seconds = float(str(value).strip())
    except ValueError:
        return None
    if not math.isfinite(seconds) or seconds < 0:
        return None
    return seconds


_FRACTION_PATTERN = re.compile(r"\.(\d+)")


def parse_timestamp(value: str | None) -> datetime | None:
    """
    Parse an ISO-8601 timestamp as returned by the remote service.

    The service reports up to seven fractional digits and a trailing 'Z';
    both are normalized before parsing.
    """
    if not value:
        return None
    text = value.strip()
    if text.endswith(("Z", "z")):
        text = text[:-1] + "+00:00"
    text = _FRACTION_PATTERN.sub(lambda m: "." + m.group(1)[:6].ljust(6, "0"), text, count=1)
    try:
        return datetime.fromisoformat(text)
    except ValueError:
        return None


def format_timestamp(value: datetime | None) -> str | None:
    """Inverse of parse_timestamp for manifest serialization."""
    if value is None:
        return None
    return value.isoformat()


def backup_directory_sort_key(name: str) -> tuple[datetime, int]:
    """Order run directory names by start time, then collision suffix."""
    stamp = parse_backup_directory_name(name) or datetime.min
    _, _, suffix = name[16:].partition("_")
    return stamp, int(suffix) if suffix.isdigit() else 0
