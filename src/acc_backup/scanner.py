"""Project tree enumeration for ACC Backup."""

import logging
import time
from threading import Event

from .client import ApiClient
from .models import Project
from .utils import human_size, human_time

logger = logging.getLogger(__name__)


def scan_project(client: ApiClient, project: Project, stop_event: Event) -> tuple[int, int, int]:
    """
    Enumerate a project's whole folder tree.

    The root folder is fetched, bound to the project and walked depth
    first. Listing failures propagate to the caller.

    Args:
        client: Remote directory client
        project: Project to enumerate; its ``root_folder`` is replaced
        stop_event: Cancellation signal checked between listing calls

    Returns:
        Tuple of (file_count, subfolder_count, total_bytes)
    """
    logger.info(
        "Querying folders and files of %s (%s), this may take a while depending on project size.",
        project.name,
        project.project_id,
    )
    start_time = time.time()

    if not project.root_folder_id:
        project.root_folder_id = client.get_project(project.project_id).root_folder_id

    root = client.get_folder(project.project_id, project.root_folder_id)
    project.root_folder = root
    client.list_folder_contents_recursively(root, stop_event)

    files = list(project.files_recursive)
    folder_count = sum(1 for _ in project.subfolders_recursive)
    total_bytes = sum(f.storage_size for f in files)

    logger.info(
        "Scan of %s complete: %d files (%s) in %d folders, %s",
        project.name,
        len(files),
        human_size(total_bytes),
        folder_count,
        human_time(time.time() - start_time),
    )
    return len(files), folder_count, total_bytes
