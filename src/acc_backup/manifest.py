"""Persisted record of the files written by a backup run."""

import json
import logging
from dataclasses import dataclass, field
from datetime import datetime
from pathlib import Path

from requests.structures import CaseInsensitiveDict

from .models import File
from .utils import format_timestamp, parse_timestamp

logger = logging.getLogger(__name__)

MANIFEST_FILE_NAME = "backup_manifest.json"


@dataclass
class FileManifestEntry:
    """What is known about one backed-up file."""

    file_id: str
    version_number: int
    last_modified_time: datetime | None
    storage_size: int
    name: str
    project_id: str

    @classmethod
    def from_file(cls, file: File) -> "FileManifestEntry":
        return cls(
            file_id=file.file_id,
            version_number=file.version_number,
            last_modified_time=file.last_modified_time,
            storage_size=file.storage_size,
            name=file.name,
            project_id=file.project_id,
        )

    @classmethod
    def from_dict(cls, data: dict) -> "FileManifestEntry":
        return cls(
            file_id=data.get("fileId") or "",
            version_number=int(data.get("versionNumber") or 0),
            last_modified_time=parse_timestamp(data.get("lastModifiedTime")),
            storage_size=int(data.get("storageSize") or 0),
            name=data.get("name") or "",
            project_id=data.get("projectId") or "",
        )

    def to_dict(self) -> dict:
        return {
            "fileId": self.file_id,
            "versionNumber": self.version_number,
            "lastModifiedTime": format_timestamp(self.last_modified_time),
            "storageSize": self.storage_size,
            "name": self.name,
            "projectId": self.project_id,
        }

    def is_equivalent_to(self, other: "FileManifestEntry | None") -> bool:
        """Same file, version, size and modification time. Names do not matter."""
        if other is None:
            return False
        return (
            self.file_id == other.file_id
            and self.version_number == other.version_number
            and self.storage_size == other.storage_size
            and self.last_modified_time == other.last_modified_time
        )


@dataclass
class BackupManifest:
    """
    Mapping of backup-relative paths to manifest entries.

    Keys are compared case-insensitively so a manifest written on one
    platform can be consulted on another.
    """

    backup_date: datetime = field(default_factory=datetime.now)
    backup_directory: str = ""
    files: CaseInsensitiveDict = field(default_factory=CaseInsensitiveDict)

    def add_file(self, relative_path: str, entry: FileManifestEntry) -> None:
        self.files[relative_path] = entry

    def get_file(self, relative_path: str) -> FileManifestEntry | None:
        return self.files.get(relative_path)

    def __len__(self) -> int:
        return len(self.files)

    def to_dict(self) -> dict:
        return {
            "backupDate": format_timestamp(self.backup_date),
            "backupDirectory": self.backup_directory,
            "files": {path: entry.to_dict() for path, entry in self.files.items()},
        }

    def save(self, path: Path) -> None:
        """Write the manifest as indented JSON."""
        path = Path(path)
        path.write_text(json.dumps(self.to_dict(), indent=2), encoding="utf-8")
        logger.debug("Wrote manifest with %d entries to %s", len(self.files), path)

    @classmethod
    def load(cls, path: Path) -> "BackupManifest | None":
        """
        Read a manifest written by ``save()``.

        Returns:
            The manifest, or None when the file does not exist

        Raises:
            OSError, ValueError: unreadable or malformed manifest
        """
        path = Path(path)
        if not path.exists():
            return None

        data = json.loads(path.read_text(encoding="utf-8"))
        if not isinstance(data, dict):
            raise ValueError(f"Manifest {path} is not a JSON object")

        files = CaseInsensitiveDict()
        for relative_path, entry in (data.get("files") or {}).items():
            files[relative_path] = FileManifestEntry.from_dict(entry)

        return cls(
            backup_date=parse_timestamp(data.get("backupDate")) or datetime.now(),
            backup_directory=data.get("backupDirectory") or "",
            files=files,
        )
