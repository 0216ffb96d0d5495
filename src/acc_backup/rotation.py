"""Bounded retention of previous backup run directories."""

import logging
import shutil
import sys
from pathlib import Path

from .utils import backup_directory_sort_key, is_backup_directory_name

logger = logging.getLogger(__name__)


def _age_key(path: Path) -> tuple:
    """
    Sort key putting the oldest run first.

    Creation time where the platform records it. Linux only has the inode
    change time, so the start time encoded in the name is used there.
    """
    birthtime = getattr(path.stat(), "st_birthtime", None)
    if birthtime is not None:
        return (birthtime,)
    return backup_directory_sort_key(path.name)


def protected_paths() -> list[Path]:
    """Locations of the running program, which rotation must never delete."""
    paths = [Path(sys.executable), Path(__file__)]
    if sys.argv and sys.argv[0]:
        paths.append(Path(sys.argv[0]))
    return [p.resolve() for p in paths]


def _is_protected(directory: Path, protected: list[Path]) -> bool:
    directory = directory.resolve()
    return any(p == directory or directory in p.parents for p in protected)


def rotation_candidates(
    backup_root: Path,
    active_directory: Path,
    protected: list[Path] | None = None,
) -> list[Path]:
    """
    Previous run directories eligible for deletion, oldest first.

    Only siblings named like a run directory are considered; the active run
    and any directory holding the running program are left out.
    """
    backup_root = Path(backup_root)
    if not backup_root.is_dir():
        return []

    protected = protected_paths() if protected is None else protected
    active = Path(active_directory).resolve()

    candidates = []
    for entry in backup_root.iterdir():
        if not entry.is_dir() or not is_backup_directory_name(entry.name):
            continue
        if entry.resolve() == active:
            continue
        if _is_protected(entry, protected):
            logger.warning("Not rotating %s: it contains the running program", entry)
            continue
        candidates.append(entry)

    return sorted(candidates, key=_age_key)


def rotate_backups(
    backup_root: Path,
    active_directory: Path,
    backups_to_rotate: int,
    protected: list[Path] | None = None,
) -> list[Path]:
    """
    Delete the oldest previous runs until at most ``backups_to_rotate`` remain.

    A retention below 1 is treated as 1 so the run the next backup compares
    against always survives.

    Returns:
        Directories that were deleted
    """
    keep = max(1, backups_to_rotate)
    candidates = rotation_candidates(backup_root, active_directory, protected)
    logger.debug(
        "Backup root %s holds %d previous backups, keeping %d",
        backup_root,
        len(candidates),
        keep,
    )

    deleted = []
    while len(candidates) > keep:
        oldest = candidates.pop(0)
        logger.info("Deleting oldest backup directory %s", oldest)
        try:
            shutil.rmtree(oldest)
        except OSError as e:
            logger.error("Failed to delete %s: %s", oldest, e)
            continue
        deleted.append(oldest)

    return deleted

