"""Incremental backup: reuse files from the previous run when unchanged."""

import logging
import random
import shutil
from dataclasses import dataclass, field
from datetime import datetime
from pathlib import Path
from threading import Lock

from .manifest import MANIFEST_FILE_NAME, BackupManifest, FileManifestEntry
from .models import File
from .utils import (
    backup_directory_sort_key,
    normalize_relative_path,
    parse_backup_directory_name,
    sanitize_name,
)

logger = logging.getLogger(__name__)

# Manifest entries checked on disk before a previous backup is trusted
VALIDATION_SAMPLE_SIZE = 10


@dataclass
class SyncStats:
    """Track copied versus downloaded files with thread safety."""

    files_copied: int = 0
    files_downloaded: int = 0
    bytes_copied: int = 0
    bytes_downloaded: int = 0

    _lock: Lock = field(default_factory=Lock, repr=False)

    def increment(self, attr: str, value: int = 1) -> None:
        """Thread-safe increment of a stat attribute."""
        with self._lock:
            current = getattr(self, attr)
            setattr(self, attr, current + value)

    @property
    def bytes_total(self) -> int:
        return self.bytes_copied + self.bytes_downloaded

    @property
    def efficiency_percent(self) -> float:
        """
        Share of bytes served from the previous backup.

        A run that downloaded anything never reports 100%, even when the
        downloaded share rounds away.
        """
        if self.bytes_total == 0:
            return 0.0
        percent = round(self.bytes_copied / self.bytes_total * 100, 2)
        if percent >= 100 and self.bytes_downloaded > 0:
            return 99.99
        return percent


def find_previous_backup(backup_root: Path, current_directory: Path | None = None) -> Path | None:
    """
    Find the newest earlier run directory that holds a manifest.

    Args:
        backup_root: Directory holding the timestamped run directories
        current_directory: The active run, never returned

    Returns:
        Path of the previous run directory, or None
    """
    backup_root = Path(backup_root)
    if not backup_root.is_dir():
        return None

    candidates = [
        d for d in backup_root.iterdir()
        if d.is_dir()
        and parse_backup_directory_name(d.name) is not None
        and (current_directory is None or d.resolve() != Path(current_directory).resolve())
        and (d / MANIFEST_FILE_NAME).is_file()
    ]
    if not candidates:
        return None
    return max(candidates, key=lambda d: backup_directory_sort_key(d.name))


def manifest_relative_path(project_name: str, file: File) -> str:
    """Manifest key of a file: sanitized project name plus its folder path."""
    parts = [sanitize_name(project_name), *(sanitize_name(p) for p in file.get_relative_parts())]
    return normalize_relative_path("/".join(parts))


def validate_manifest(
    manifest: BackupManifest,
    directory: Path,
    sample_size: int = VALIDATION_SAMPLE_SIZE,
) -> bool:
    """
    Check that a previous backup still holds the files its manifest lists.

    Up to ``sample_size`` entries are checked; one existing file is enough.
    """
    paths = list(manifest.files.keys())
    if not paths:
        logger.warning("Previous manifest in %s lists no files", directory)
        return False

    sample = random.sample(paths, min(sample_size, len(paths)))
    found = sum(1 for p in sample if (Path(directory) / p).is_file())
    logger.debug("Manifest validation: %d/%d sampled files present in %s", found, len(sample), directory)
    return found > 0


class IncrementalSync:
    """
    Decide per file between copying from the previous run and downloading.

    The engine reads the enumerated tree and the previous manifest only;
    the new manifest it accumulates is written once at the end of a run.
    """

    def __init__(
        self,
        current_directory: Path,
        previous_directory: Path | None = None,
        force_full_download: bool = False,
        dry_run: bool = False,
    ):
        self.current_directory = Path(current_directory)
        self.previous_directory = Path(previous_directory) if previous_directory else None
        self.force_full_download = force_full_download
        self.dry_run = dry_run

        self.previous_manifest: BackupManifest | None = None
        self.manifest = BackupManifest(backup_directory=str(self.current_directory))
        self.stats = SyncStats()
        self._lock = Lock()

    @property
    def incremental(self) -> bool:
        return self.previous_manifest is not None and not self.force_full_download and not self.dry_run

    def load_previous(self) -> bool:
        """
        Load and validate the previous run's manifest.

        Any failure is logged and leads to a full backup.

        Returns:
            True if the run can reuse files from the previous backup
        """
        if self.force_full_download:
            logger.info("Full download forced, previous backups are not consulted")
            return False
        if self.dry_run or self.previous_directory is None:
            logger.info("No previous backup found, performing full backup")
            return False

        manifest_path = self.previous_directory / MANIFEST_FILE_NAME
        try:
            manifest = BackupManifest.load(manifest_path)
            if manifest is None:
                logger.warning("No manifest at %s, performing full backup", manifest_path)
                return False
            if not validate_manifest(manifest, self.previous_directory):
                logger.warning(
                    "Files listed in %s are missing on disk, performing full backup",
                    manifest_path,
                )
                return False
        except Exception as e:
            logger.warning("Could not load previous manifest %s, performing full backup: %s", manifest_path, e)
            return False

        self.previous_manifest = manifest
        logger.info(
            "Incremental backup against %s (%d files in manifest)",
            self.previous_directory,
            len(manifest),
        )
        return True

    def should_reuse(self, file: File, relative_path: str) -> bool:
        """True when the previous backup holds an identical copy of ``file``."""
        if not self.incremental:
            return False
        previous = self.previous_manifest.get_file(relative_path)
        return FileManifestEntry.from_file(file).is_equivalent_to(previous)

    def copy_from_previous(self, file: File, relative_path: str, target: Path) -> bool:
        """
        Copy the previous run's copy of ``file`` to ``target`` and bind it.

        Returns:
            False if the source is gone or the copy failed; the caller
            downloads the file instead.
        """
        source = self.previous_directory / relative_path
        try:
            shutil.copy2(source, target)
            size = target.stat().st_size
        except OSError as e:
            logger.warning("Could not copy %s from previous backup, downloading instead: %s", relative_path, e)
            return False

        file.local_path = target
        file.size_on_disk = size
        logger.debug("Copied %s from previous backup", relative_path)
        return True

    def record(self, file: File, relative_path: str, copied: bool) -> None:
        """Add a processed file to the new manifest and the counters."""
        with self._lock:
            self.manifest.add_file(relative_path, FileManifestEntry.from_file(file))

        if copied:
            self.stats.increment("files_copied")
            self.stats.increment("bytes_copied", file.size_on_disk)
        else:
            self.stats.increment("files_downloaded")
            self.stats.increment("bytes_downloaded", file.size_on_disk)

    def save(self) -> Path | None:
        """Write the new manifest at the root of the current run directory."""
        if self.dry_run:
            logger.debug("Dry run, manifest not written")
            return None
        path = self.current_directory / MANIFEST_FILE_NAME
        with self._lock:
            self.manifest.backup_date = datetime.now()
            self.manifest.save(path)
        logger.info("Manifest written: %s (%d files)", path, len(self.manifest))
        return path
