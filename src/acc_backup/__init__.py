"""
ACC Backup - Incremental backup of Autodesk Construction Cloud projects.

Features:
- Pipelined enumeration and download of many projects
- Retry with Retry-After aware backoff on every API call
- Incremental reuse of unchanged files from the previous backup
- Rotation of previous backup directories
"""

__version__ = "1.0.0"

from .client import ApiClient, client_from_config
from .config import Config
from .manifest import BackupManifest, FileManifestEntry
from .models import BackupStatus, File, Folder, Project, ProjectBackup
from .pipeline import BackupPipeline, BackupResult
from .retry import RetryPolicy
from .sync import IncrementalSync

__all__ = [
    "ApiClient",
    "client_from_config",
    "Config",
    "BackupManifest",
    "FileManifestEntry",
    "BackupStatus",
    "File",
    "Folder",
    "Project",
    "ProjectBackup",
    "BackupPipeline",
    "BackupResult",
    "RetryPolicy",
    "IncrementalSync",
    "__version__",
]
