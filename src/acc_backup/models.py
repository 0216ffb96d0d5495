"""Data models for the remote project tree and backup runs."""

from collections.abc import Iterator
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from pathlib import Path

from .utils import bytes_to_mb

PATH_DELIMITER = "/"

# Parent ids of project root folders end with this marker
ROOT_FOLDER_SUFFIX = "-g"


@dataclass(eq=False)
class File:
    """A versioned file (leaf) of a project folder tree."""

    file_id: str
    project_id: str
    name: str
    version_number: int = 1
    storage_size: int = 0
    file_type: str = ""
    type: str = "versions"
    display_name: str = ""
    create_time: datetime | None = None
    create_user_id: str = ""
    create_user_name: str = ""
    last_modified_time: datetime | None = None
    last_modified_user_id: str = ""
    last_modified_user_name: str = ""
    hidden: bool = False
    reserved: bool = False
    # Storage object urn used to mint a signed download URL
    storage_id: str = ""
    # Download reference supplied with the listing; short-lived
    download_url: str = ""
    parent: "Folder | None" = field(default=None, repr=False)

    # Local materialization state
    download_attempts: int = 0
    local_path: Path | None = None
    size_on_disk: int = 0

    @property
    def downloaded(self) -> bool:
        """A file is downloaded once a local file has been bound to it."""
        return self.local_path is not None

    @property
    def api_reported_size_mb(self) -> float:
        return bytes_to_mb(self.storage_size)

    @property
    def size_on_disk_mb(self) -> float:
        return bytes_to_mb(self.size_on_disk)

    def get_path(self, root_folder_id: str | None = None, delimiter: str = PATH_DELIMITER) -> str:
        """Path of this file made of its ancestor folder names."""
        if self.parent is None:
            return f"{delimiter}{self.name}"
        return f"{self.parent.get_path(root_folder_id, delimiter)}{delimiter}{self.name}"

    def get_relative_parts(self) -> list[str]:
        """Folder names below the project root followed by the file name."""
        if self.parent is None:
            return [self.name]
        return [*self.parent.get_relative_parts(), self.name]


@dataclass(eq=False)
class Folder:
    """A folder of a project tree, populated lazily by listing calls."""

    folder_id: str
    project_id: str
    parent_folder_id: str
    name: str
    display_name: str = ""
    type: str = "folders"
    create_time: datetime | None = None
    create_user_id: str = ""
    create_user_name: str = ""
    last_modified_time: datetime | None = None
    last_modified_time_rollup: datetime | None = None
    last_modified_user_id: str = ""
    last_modified_user_name: str = ""
    hidden: bool = False
    object_count: int = 0
    parent: "Folder | None" = field(default=None, repr=False)
    subfolders: list["Folder"] = field(default_factory=list, repr=False)
    files: list[File] = field(default_factory=list, repr=False)

    # Local materialization state
    directory: Path | None = None

    @property
    def is_root_folder(self) -> bool:
        return (self.parent_folder_id or "").endswith(ROOT_FOLDER_SUFFIX)

    @property
    def is_empty(self) -> bool:
        return not self.subfolders and not self.files

    @property
    def created(self) -> bool:
        """True once a local directory has been bound to this folder."""
        return self.directory is not None

    @property
    def subfolders_recursive(self) -> Iterator["Folder"]:
        """Depth-first walk over every folder currently below this one."""
        for subfolder in self.subfolders:
            yield subfolder
            yield from subfolder.subfolders_recursive

    @property
    def files_recursive(self) -> Iterator[File]:
        """This folder's files followed by the files of every subfolder."""
        yield from self.files
        for subfolder in self.subfolders_recursive:
            yield from subfolder.files

    def get_path(self, root_folder_id: str | None = None, delimiter: str = PATH_DELIMITER) -> str:
        """
        Build the path of this folder from its ancestors' names.

        Args:
            root_folder_id: Stop at this ancestor (inclusive) instead of
                walking up to the topmost enumerated folder.
            delimiter: Separator placed before every name.

        Returns:
            A path such as ``/Project Files/Drawings``.
        """
        names: list[str] = []
        folder: Folder | None = self
        while folder is not None:
            names.append(folder.name)
            if folder.folder_id == root_folder_id:
                break
            folder = folder.parent
        return "".join(f"{delimiter}{name}" for name in reversed(names))

    def get_relative_parts(self) -> list[str]:
        """
        Names of this folder and its ancestors below the topmost folder.

        The topmost enumerated folder (the project root) maps onto the
        project directory itself, so it contributes no name.
        """
        names: list[str] = []
        folder: Folder = self
        while folder.parent is not None:
            names.append(folder.name)
            folder = folder.parent
        return names[::-1]


@dataclass(eq=False)
class Project:
    """A top-level container of the remote service."""

    project_id: str
    account_id: str
    name: str
    root_folder_id: str = ""
    root_folder: Folder | None = field(default=None, repr=False)

    @property
    def subfolders_recursive(self) -> Iterator[Folder]:
        if self.root_folder is None:
            return iter(())
        return self.root_folder.subfolders_recursive

    @property
    def files_recursive(self) -> Iterator[File]:
        if self.root_folder is None:
            return iter(())
        return self.root_folder.files_recursive


class BackupStatus(Enum):
    """Outcome of one project in a run."""

    SUCCESS = "SUCCESS"
    PARTIAL_FAIL = "PARTIAL FAIL"
    ERROR = "ERROR"


@dataclass(eq=False)
class ProjectBackup:
    """A project taking part in a backup run, with its timing."""

    project: Project
    started_at: datetime | None = None
    finished_at: datetime | None = None
    error: BaseException | None = None

    @classmethod
    def from_project(cls, project: Project) -> "ProjectBackup":
        return cls(project=project)

    @property
    def name(self) -> str:
        return self.project.name

    @property
    def project_id(self) -> str:
        return self.project.project_id

    @property
    def duration_seconds(self) -> float:
        if self.started_at is None or self.finished_at is None:
            return 0.0
        return (self.finished_at - self.started_at).total_seconds()

    def mark_failed(self, error: BaseException, when: datetime) -> None:
        """Record an enumeration or download failure for this project."""
        self.error = error
        if self.started_at is None:
            self.started_at = when
        self.finished_at = when

    @property
    def status(self) -> BackupStatus:
        files = list(self.project.files_recursive)
        folders = list(self.project.subfolders_recursive)
        files_downloaded = sum(1 for f in files if f.downloaded)

        if self.error is None and files_downloaded == len(files) and all(f.created for f in folders):
            return BackupStatus.SUCCESS
        if files_downloaded > 0:
            return BackupStatus.PARTIAL_FAIL
        return BackupStatus.ERROR
