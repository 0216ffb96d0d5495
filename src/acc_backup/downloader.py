"""Download stage: materialize one enumerated project on disk."""

import logging
from concurrent.futures import ThreadPoolExecutor, as_completed
from dataclasses import dataclass
from pathlib import Path
from threading import Event

from .client import ApiClient
from .errors import BackupCancelled
from .models import File, ProjectBackup
from .sync import IncrementalSync, manifest_relative_path
from .utils import human_size, sanitize_name

logger = logging.getLogger(__name__)


@dataclass
class TransferResult:
    """Per-project file counts of the download stage."""

    files_copied: int = 0
    files_downloaded: int = 0
    files_failed: int = 0
    files_skipped: int = 0


class ProjectDownloader:
    """Copies or downloads every file of a project with bounded parallelism."""

    def __init__(
        self,
        client: ApiClient,
        sync: IncrementalSync,
        stop_event: Event,
        max_degree_of_parallelism: int = 8,
    ):
        self.client = client
        self.sync = sync
        self.stop_event = stop_event
        self.max_degree_of_parallelism = max_degree_of_parallelism

    def backup_file(self, file: File, project_name: str, project_directory: Path) -> str:
        """
        Materialize a single file, reusing the previous backup when possible.

        Returns:
            "copied" or "downloaded"
        """
        relative_path = manifest_relative_path(project_name, file)

        if self.sync.should_reuse(file, relative_path):
            target = self.client.target_path(file, project_directory)
            if self.sync.copy_from_previous(file, relative_path, target):
                self.sync.record(file, relative_path, copied=True)
                return "copied"

        self.client.download_file(file, project_directory)
        self.sync.record(file, relative_path, copied=False)
        return "downloaded"

    def download_project(self, backup: ProjectBackup, run_directory: Path) -> TransferResult:
        """
        Create the project's directories, then transfer its files.

        Every folder directory exists before any file is written. A file
        that fails after its retries is logged and counted; the rest of the
        project continues.

        Raises:
            BackupCancelled: the cancellation signal was raised
        """
        project = backup.project
        project_directory = Path(run_directory) / sanitize_name(project.name)
        result = TransferResult()

        if project.root_folder is None:
            logger.warning("Project %s has no enumerated root folder, nothing to download", project.name)
            return result

        self.client.create_directory(project.root_folder, project_directory)
        self.client.create_directories(project.subfolders_recursive, project_directory)

        files = list(project.files_recursive)
        total_bytes = sum(f.storage_size for f in files)
        logger.info("Backing up %d files (%s) of %s", len(files), human_size(total_bytes), project.name)

        def process_file(file: File) -> tuple[File, str]:
            if self.stop_event.is_set():
                return file, "skip"
            return file, self.backup_file(file, project.name, project_directory)

        with ThreadPoolExecutor(max_workers=self.max_degree_of_parallelism) as executor:
            futures = {executor.submit(process_file, f): f for f in files}

            for future in as_completed(futures):
                file = futures[future]
                try:
                    _, outcome = future.result()
                except BackupCancelled:
                    for pending in futures:
                        pending.cancel()
                    raise
                except Exception as e:
                    logger.error(
                        "Failed to back up %s after %d attempts: %s",
                        file.get_path(),
                        file.download_attempts,
                        e,
                    )
                    result.files_failed += 1
                    continue

                if outcome == "copied":
                    result.files_copied += 1
                elif outcome == "downloaded":
                    result.files_downloaded += 1
                else:
                    result.files_skipped += 1

        if self.stop_event.is_set():
            raise BackupCancelled(f"Backup of {project.name} cancelled")

        return result
