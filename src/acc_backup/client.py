"""
Remote directory client for ACC Backup.

Handles every HTTP interaction with the document-management API: project
and folder listing, paginated folder contents, signed downloads. Every
request runs through the shared RetryPolicy and TokenManager.
"""

import logging
from pathlib import Path
from threading import Event
from typing import TYPE_CHECKING, Any
from urllib.parse import quote

import requests

from .auth import TokenManager
from .errors import AuthError, BackupCancelled, NotFoundError, error_for_status
from .models import File, Folder, Project
from .retry import RetryPolicy
from .utils import human_size, parse_timestamp, sanitize_name

if TYPE_CHECKING:
    from .config import Config

logger = logging.getLogger(__name__)

STORAGE_URN_PREFIX = "urn:adsk.objects:os.object:"


def parse_storage_urn(storage_id: str) -> tuple[str, str] | None:
    """
    Split a storage object urn into (bucket, object key).

    Returns None for anything that is not an object storage urn.
    """
    if not storage_id or not storage_id.startswith(STORAGE_URN_PREFIX):
        return None
    bucket, _, key = storage_id[len(STORAGE_URN_PREFIX):].partition("/")
    if not bucket or not key:
        return None
    return bucket, key


def _dig(payload: Any, *keys: str) -> Any:
    """Follow nested dict keys, returning None as soon as one is missing."""
    for key in keys:
        if not isinstance(payload, dict):
            return None
        payload = payload.get(key)
    return payload


class ApiClient:
    """
    Client for the project, folder and object storage endpoints.

    The tree it returns is populated lazily: ``list_projects()`` yields
    projects without folders, ``get_folder()`` a single folder and
    ``list_folder_contents()`` fills one level of children.
    """

    API_BASE = "https://developer.api.autodesk.com"
    API_PROJECTS = f"{API_BASE}/project/v1/hubs"
    API_DATA = f"{API_BASE}/data/v1/projects"
    API_OSS = f"{API_BASE}/oss/v2/buckets"

    def __init__(
        self,
        account_id: str,
        hub_id: str,
        tokens: TokenManager,
        retry_policy: RetryPolicy,
        session: requests.Session | None = None,
        timeout: float = 300,
        chunk_size: int = 1024 * 1024,
        dry_run: bool = False,
        stop_event: Event | None = None,
    ):
        self.account_id = account_id
        self.hub_id = hub_id
        self.tokens = tokens
        self.retry_policy = retry_policy
        self.session = session or tokens.session
        self.timeout = timeout
        self.chunk_size = chunk_size
        self.dry_run = dry_run
        self.stop_event = stop_event or Event()

    # ------------------------------------------------------------------
    # HTTP plumbing
    # ------------------------------------------------------------------

    def _send(self, method: str, url: str, **kwargs: Any) -> requests.Response:
        """Issue one authenticated request. Non-2xx responses raise ApiError."""
        token = self.tokens.ensure_valid()
        headers = {"Authorization": f"Bearer {token}"}
        logger.debug("%s %s", method, url)
        response = self.session.request(method, url, headers=headers, timeout=self.timeout, **kwargs)
        if not response.ok:
            raise self._error_for(response, url, token)
        return response

    def _error_for(self, response: requests.Response, url: str, token: str | None = None) -> Exception:
        error = error_for_status(
            response.status_code,
            response.text[:500],
            url,
            response.headers.get("Retry-After"),
        )
        if isinstance(error, AuthError):
            self.tokens.invalidate(token)
            logger.error(
                "Error %d from %s. This usually indicates an incorrect client id "
                "and/or client secret, or missing access to the project.",
                response.status_code,
                url,
            )
        elif isinstance(error, NotFoundError):
            logger.error("%s not found.", url)
        return error

    def _fetch_json(self, url: str) -> dict:
        return self._send("GET", url).json()

    def _get_json(self, url: str) -> dict:
        return self.retry_policy.execute(self._fetch_json, url)

    def _get_paged(self, url: str) -> tuple[list[dict], list[dict]]:
        """
        Fetch every page of a listing by following ``links.next.href``.

        Returns:
            Tuple of (data items, included items) accumulated over all pages
        """
        data: list[dict] = []
        included: list[dict] = []
        next_url: str | None = url

        while next_url:
            payload = self._get_json(next_url)
            data.extend(payload.get("data") or [])
            included.extend(payload.get("included") or [])
            next_url = _dig(payload, "links", "next", "href")

        return data, included

    # ------------------------------------------------------------------
    # Projects and folders
    # ------------------------------------------------------------------

    def list_projects(self) -> list[Project]:
        """List every project of the hub."""
        data, _ = self._get_paged(f"{self.API_PROJECTS}/{self.hub_id}/projects")
        projects = [self._map_project(item) for item in data]
        logger.debug("Returning %d projects", len(projects))
        return projects

    def get_project(self, project_id: str) -> Project:
        payload = self._get_json(f"{self.API_PROJECTS}/{self.hub_id}/projects/{project_id}")
        project = self._map_project(payload["data"])
        logger.debug("Returning project %s", project.name)
        return project

    def get_folder(self, project_id: str, folder_id: str) -> Folder:
        """Fetch a single folder. Its children are not listed."""
        payload = self._get_json(f"{self.API_DATA}/{project_id}/folders/{folder_id}")
        data = payload["data"]
        parent_folder_id = _dig(data, "relationships", "parent", "data", "id") or ""
        folder = self._map_folder(data, project_id, parent_folder_id)
        logger.debug("Returning folder %s (%s)", folder.name, folder.folder_id)
        return folder

    def list_folder_contents(self, folder: Folder) -> tuple[list[File], list[Folder]]:
        """
        Populate one level of a folder: its files and direct subfolders.

        Files are the ``included`` versions that reference a storage object,
        subfolders the ``data`` items of type ``folders``.
        """
        data, included = self._get_paged(
            f"{self.API_DATA}/{folder.project_id}/folders/{folder.folder_id}/contents"
        )

        folder.files = [
            self._map_file(item, folder)
            for item in included
            if _dig(item, "relationships", "storage", "meta", "link", "href")
            or _dig(item, "relationships", "storage", "data", "id")
        ]
        folder.subfolders = [
            self._map_folder(item, folder.project_id, folder.folder_id, parent=folder)
            for item in data
            if item.get("type") == "folders"
        ]
        logger.debug(
            "Folder %s: %d files, %d subfolders",
            folder.name,
            len(folder.files),
            len(folder.subfolders),
        )
        return folder.files, folder.subfolders

    def list_folder_contents_recursively(self, folder: Folder, stop_event: Event | None = None) -> None:
        """Populate the whole subtree below ``folder``, depth first."""
        stop_event = stop_event or self.stop_event
        pending = [folder]
        while pending:
            if stop_event.is_set():
                raise BackupCancelled(f"Enumeration of {folder.name} cancelled")
            current = pending.pop()
            _, subfolders = self.list_folder_contents(current)
            pending.extend(reversed(subfolders))

        logger.debug(
            "Enumerated %s: %d files, %d subfolders",
            folder.name,
            sum(1 for _ in folder.files_recursive),
            sum(1 for _ in folder.subfolders_recursive),
        )

    def _map_project(self, item: dict) -> Project:
        return Project(
            project_id=item["id"],
            account_id=self.account_id,
            name=_dig(item, "attributes", "name") or item["id"],
            root_folder_id=_dig(item, "relationships", "rootFolder", "data", "id") or "",
        )

    @staticmethod
    def _map_folder(
        item: dict,
        project_id: str,
        parent_folder_id: str,
        parent: Folder | None = None,
    ) -> Folder:
        attributes = item.get("attributes") or {}
        return Folder(
            folder_id=item["id"],
            project_id=project_id,
            parent_folder_id=parent_folder_id,
            name=attributes.get("name") or attributes.get("displayName") or item["id"],
            display_name=attributes.get("displayName") or "",
            type=item.get("type", "folders"),
            create_time=parse_timestamp(attributes.get("createTime")),
            create_user_id=attributes.get("createUserId") or "",
            create_user_name=attributes.get("createUserName") or "",
            last_modified_time=parse_timestamp(attributes.get("lastModifiedTime")),
            last_modified_time_rollup=parse_timestamp(attributes.get("lastModifiedTimeRollup")),
            last_modified_user_id=attributes.get("lastModifiedUserId") or "",
            last_modified_user_name=attributes.get("lastModifiedUserName") or "",
            hidden=bool(attributes.get("hidden", False)),
            object_count=int(attributes.get("objectCount") or 0),
            parent=parent,
        )

    @staticmethod
    def _map_file(item: dict, parent: Folder) -> File:
        attributes = item.get("attributes") or {}
        return File(
            file_id=item["id"],
            project_id=parent.project_id,
            name=attributes.get("name") or attributes.get("displayName") or item["id"],
            version_number=int(attributes.get("versionNumber") or 1),
            storage_size=int(attributes.get("storageSize") or 0),
            file_type=attributes.get("fileType") or "",
            type=item.get("type", "versions"),
            display_name=attributes.get("displayName") or "",
            create_time=parse_timestamp(attributes.get("createTime")),
            create_user_id=attributes.get("createUserId") or "",
            create_user_name=attributes.get("createUserName") or "",
            last_modified_time=parse_timestamp(attributes.get("lastModifiedTime")),
            last_modified_user_id=attributes.get("lastModifiedUserId") or "",
            last_modified_user_name=attributes.get("lastModifiedUserName") or "",
            hidden=bool(attributes.get("hidden", False)),
            reserved=bool(attributes.get("reserved", False)),
            storage_id=_dig(item, "relationships", "storage", "data", "id") or "",
            download_url=_dig(item, "relationships", "storage", "meta", "link", "href") or "",
            parent=parent,
        )

    # ------------------------------------------------------------------
    # Local materialization
    # ------------------------------------------------------------------

    @staticmethod
    def create_directory(folder: Folder, root_directory: Path) -> Path:
        """
        Bind a local directory to ``folder``, creating it on first use.

        The project root folder maps onto ``root_directory`` itself. A folder
        that is already bound is left untouched.
        """
        if folder.directory is not None:
            return folder.directory
        path = Path(root_directory).joinpath(*(sanitize_name(n) for n in folder.get_relative_parts()))
        path.mkdir(parents=True, exist_ok=True)
        folder.directory = path
        return path

    @classmethod
    def create_directories(cls, folders, root_directory: Path) -> None:
        for folder in folders:
            cls.create_directory(folder, root_directory)

    def target_path(self, file: File, root_directory: Path) -> Path:
        """Local path a file is written to, creating its directory if needed."""
        if file.parent is not None:
            directory = self.create_directory(file.parent, root_directory)
        else:
            directory = Path(root_directory)
            directory.mkdir(parents=True, exist_ok=True)
        return directory / sanitize_name(file.name)

    def get_download_url(self, file: File) -> str:
        """
        Mint a fresh signed download URL for a file's storage object.

        Files whose storage id is not an object storage urn fall back to
        the reference supplied with the folder listing.
        """
        location = parse_storage_urn(file.storage_id)
        if location is None:
            if not file.download_url:
                raise ValueError(f"No download location for {file.name}")
            return file.download_url

        bucket, key = location
        url = f"{self.API_OSS}/{bucket}/objects/{quote(key, safe='')}/signeds3download"
        return self._fetch_json(url)["url"]

    def download_file(self, file: File, root_directory: Path) -> Path:
        """
        Download a file below ``root_directory`` and bind it.

        A new signed URL is requested on every attempt. In dry-run mode a
        0-byte placeholder is written instead.

        Returns:
            Path of the local file
        """
        target = self.target_path(file, root_directory)

        if self.dry_run:
            target.write_bytes(b"")
            file.local_path = target
            file.size_on_disk = 0
            logger.info("%s (%.2f MB)", target, file.size_on_disk_mb)
            return target

        return self.retry_policy.execute(self._download_attempt, file, target)

    def _download_attempt(self, file: File, target: Path) -> Path:
        file.download_attempts += 1
        url = self.get_download_url(file)

        # Signed URLs carry their own credentials; no bearer header
        response = self.session.get(url, stream=True, timeout=self.timeout)
        try:
            if not response.ok:
                raise error_for_status(response.status_code, response.text[:500], url,
                                       response.headers.get("Retry-After"))

            written = 0
            with open(target, "wb") as f:
                for chunk in response.iter_content(self.chunk_size):
                    if self.stop_event.is_set():
                        raise BackupCancelled(f"Download of {file.name} cancelled")
                    if chunk:
                        f.write(chunk)
                        written += len(chunk)
        finally:
            response.close()

        file.size_on_disk = written
        file.local_path = target

        if written == file.storage_size:
            logger.debug("%s (%s)", target, human_size(written))
        else:
            logger.warning(
                "%s (%.2f/%.2f MB) (Mismatch between size reported by API and size downloaded to disk)",
                target,
                file.size_on_disk_mb,
                file.api_reported_size_mb,
            )
        return target


def client_from_config(
    config: "Config",
    stop_event: Event | None = None,
    session: requests.Session | None = None,
    sleep=None,
) -> ApiClient:
    """Wire a session, retry policy and token manager into an ApiClient."""
    session = session or requests.Session()
    stop_event = stop_event or Event()
    retry_policy = RetryPolicy(
        max_retries=config.retry_attempts,
        initial_delay=config.initial_retry_seconds,
        stop_event=stop_event,
        sleep=sleep,
    )
    tokens = TokenManager(
        session,
        config.client_id,
        config.client_secret,
        retry_policy,
        auth_url=config.auth_url,
        timeout=min(config.request_timeout, 60),
    )
    return ApiClient(
        account_id=config.account_id,
        hub_id=config.effective_hub_id,
        tokens=tokens,
        retry_policy=retry_policy,
        session=session,
        timeout=config.request_timeout,
        chunk_size=config.chunk_size,
        dry_run=config.dry_run,
        stop_event=stop_event,
    )
