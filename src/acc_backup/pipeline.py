"""
Backup orchestration.

Projects are enumerated concurrently and handed, fully enumerated, to a
single download stage over a queue. The download stage takes projects in
the order their enumeration finished.
"""

import logging
import queue
import time
from collections.abc import Callable
from concurrent.futures import ThreadPoolExecutor, as_completed
from dataclasses import dataclass, field
from datetime import datetime
from pathlib import Path
from threading import Event, Lock, Semaphore, Thread

from .client import ApiClient
from .config import Config
from .display import log_summary_line
from .downloader import ProjectDownloader
from .errors import BackupCancelled
from .filters import filter_projects
from .models import BackupStatus, ProjectBackup
from .rotation import rotate_backups
from .scanner import scan_project
from .sync import IncrementalSync, SyncStats, find_previous_backup
from .utils import backup_directory_name

logger = logging.getLogger(__name__)

# Upper bound on threads parked waiting for an enumeration slot
MAX_ENUMERATION_THREADS = 32


@dataclass
class PipelineStats:
    """Time the download stage spent transferring versus waiting for work."""

    active_seconds: float = 0.0
    idle_seconds: float = 0.0

    _lock: Lock = field(default_factory=Lock, repr=False)

    def add(self, attr: str, seconds: float) -> None:
        with self._lock:
            setattr(self, attr, getattr(self, attr) + seconds)

    @property
    def total_seconds(self) -> float:
        return self.active_seconds + self.idle_seconds

    @property
    def efficiency_percent(self) -> float:
        if self.total_seconds <= 0:
            return 0.0
        return round(self.active_seconds / self.total_seconds * 100, 2)


@dataclass
class BackupResult:
    """Everything a finished run reports."""

    run_directory: Path | None = None
    projects: list[ProjectBackup] = field(default_factory=list)
    sync_stats: SyncStats = field(default_factory=SyncStats)
    pipeline_stats: PipelineStats = field(default_factory=PipelineStats)
    cancelled: bool = False
    manifest_path: Path | None = None
    deleted_backups: list[Path] = field(default_factory=list)

    @property
    def failed_projects(self) -> list[ProjectBackup]:
        return [p for p in self.projects if p.status is not BackupStatus.SUCCESS]

    @property
    def exit_code(self) -> int:
        return 2 if self.failed_projects else 0


def create_run_directory(backup_root: Path, when: datetime) -> Path:
    """
    Create the timestamped directory of a run.

    A name already taken gets a ``_1``, ``_2``... suffix.
    """
    name = backup_directory_name(when)
    path = Path(backup_root) / name
    suffix = 1
    while path.exists():
        path = Path(backup_root) / f"{name}_{suffix}"
        suffix += 1
    path.mkdir(parents=True)
    return path


class BackupPipeline:
    """Runs one backup: select, enumerate, download, write manifest, rotate."""

    def __init__(
        self,
        config: Config,
        client: ApiClient,
        stop_event: Event | None = None,
        clock: Callable[[], datetime] = datetime.now,
    ):
        self.config = config
        self.client = client
        self.stop_event = stop_event or client.stop_event
        self.clock = clock

    def select_projects(self) -> list[ProjectBackup]:
        """
        List the hub's projects and apply the configured filters.

        Listing failures propagate: without a project list there is no run.
        """
        projects = filter_projects(
            self.client.list_projects(),
            self.config.projects_to_backup,
            self.config.projects_to_exclude,
        )
        return [ProjectBackup.from_project(p) for p in projects]

    def run(self) -> BackupResult:
        """Run the backup and return its outcome. Per-project failures are contained."""
        logger.info("=> Starting Autodesk Construction Cloud Backup")
        backups = self.select_projects()
        if not backups:
            logger.info("No projects found.")
            return BackupResult()

        self._log_selected(backups)

        backup_root = self.config.ensure_dest_exists()
        run_directory = create_run_directory(backup_root, self.clock())
        logger.info("Backing up to %s", run_directory)

        sync = IncrementalSync(
            run_directory,
            find_previous_backup(backup_root, run_directory),
            force_full_download=self.config.force_full_download,
            dry_run=self.config.dry_run,
        )
        sync.load_previous()

        result = BackupResult(run_directory=run_directory, sync_stats=sync.stats)
        downloader = ProjectDownloader(
            self.client,
            sync,
            self.stop_event,
            self.config.max_degree_of_parallelism,
        )

        work_queue: queue.Queue[ProjectBackup | None] = queue.Queue()
        consumer = Thread(
            target=self._download_stage,
            args=(work_queue, downloader, run_directory, result),
            name="download-stage",
            daemon=True,
        )
        consumer.start()

        self._enumeration_stage(backups, work_queue)

        # Producer side is done; the sentinel closes the queue
        work_queue.put(None)
        consumer.join()

        result.cancelled = self.stop_event.is_set()
        result.manifest_path = sync.save()

        if result.cancelled:
            logger.warning("Backup cancelled, skipping rotation of previous backups")
        elif self.config.dry_run:
            # Placeholder runs have no manifest and must not push out real backups
            logger.info("Dry run, skipping rotation of previous backups")
        else:
            result.deleted_backups = rotate_backups(backup_root, run_directory, self.config.backups_to_rotate)

        logger.info("=> Closing Autodesk Construction Cloud Backup")
        return result

    def _enumeration_stage(self, backups: list[ProjectBackup], work_queue: queue.Queue) -> None:
        semaphore = Semaphore(self.config.max_concurrent_enumerations)
        workers = max(1, min(len(backups), MAX_ENUMERATION_THREADS))

        with ThreadPoolExecutor(max_workers=workers, thread_name_prefix="enumerate") as executor:
            futures = [executor.submit(self._enumerate, b, semaphore, work_queue) for b in backups]
            for future in as_completed(futures):
                future.result()

    def _enumerate(self, backup: ProjectBackup, semaphore: Semaphore, work_queue: queue.Queue) -> None:
        """Enumerate one project and enqueue it, failed or not."""
        with semaphore:
            backup.started_at = self.clock()
            try:
                if self.stop_event.is_set():
                    raise BackupCancelled(f"Enumeration of {backup.name} cancelled")
                scan_project(self.client, backup.project, self.stop_event)
            except Exception as e:
                logger.error("Failed to enumerate %s (%s): %s", backup.name, backup.project_id, e)
                backup.mark_failed(e, self.clock())
            work_queue.put(backup)

    def _download_stage(
        self,
        work_queue: queue.Queue,
        downloader: ProjectDownloader,
        run_directory: Path,
        result: BackupResult,
    ) -> None:
        stats = result.pipeline_stats
        while True:
            wait_start = time.monotonic()
            backup = work_queue.get()
            stats.add("idle_seconds", time.monotonic() - wait_start)

            if backup is None:
                break

            result.projects.append(backup)
            active_start = time.monotonic()
            self._download_project(backup, downloader, run_directory)
            stats.add("active_seconds", time.monotonic() - active_start)

        logger.debug(
            "Download stage finished: %.1fs active, %.1fs idle",
            stats.active_seconds,
            stats.idle_seconds,
        )

    def _download_project(self, backup: ProjectBackup, downloader: ProjectDownloader, run_directory: Path) -> None:
        if backup.error is None:
            logger.info("=> Processing project %s (%s)", backup.name, backup.project_id)
            try:
                if self.stop_event.is_set():
                    raise BackupCancelled(f"Backup of {backup.name} cancelled")
                transfer = downloader.download_project(backup, run_directory)
                logger.info(
                    "%s: %d copied, %d downloaded, %d failed",
                    backup.name,
                    transfer.files_copied,
                    transfer.files_downloaded,
                    transfer.files_failed,
                )
            except Exception as e:
                logger.error("Failed to back up %s (%s): %s", backup.name, backup.project_id, e)
                backup.error = e
            backup.finished_at = self.clock()
            logger.info("=> Finished processing project %s (%s)", backup.name, backup.project_id)

        log_summary_line(backup)

    @staticmethod
    def _log_selected(backups: list[ProjectBackup]) -> None:
        logger.info("=" * 81)
        logger.info("=> Found %d projects to backup:", len(backups))
        for backup in backups:
            logger.info("    - %s (%s)", backup.name, backup.project_id)
        logger.info("=" * 81)
