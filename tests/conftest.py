"""Shared fixtures: an in-memory stand-in for the remote service."""

import json
from threading import Lock
from unittest.mock import MagicMock

import pytest

from acc_backup.auth import AUTHENTICATE_URL
from acc_backup.client import STORAGE_URN_PREFIX, ApiClient, client_from_config
from acc_backup.config import Config

HUB_ID = "b.acc"
BUCKET = "wip.dm.prod"
MODIFIED_TIME = "2024-03-01T12:30:00.0000000Z"


def make_response(status=200, payload=None, content=b"", headers=None):
    """A requests.Response look-alike."""
    response = MagicMock()
    response.status_code = status
    response.ok = 200 <= status < 300
    response.json.return_value = payload
    response.text = json.dumps(payload) if payload is not None else f"status {status}"
    response.headers = headers or {}
    response.iter_content.side_effect = lambda chunk_size=1: iter(
        [content[i:i + 4] for i in range(0, len(content), 4)]
    )
    return response


def projects_url(hub_id=HUB_ID):
    return f"{ApiClient.API_PROJECTS}/{hub_id}/projects"


def folder_url(project_id, folder_id):
    return f"{ApiClient.API_DATA}/{project_id}/folders/{folder_id}"


def contents_url(project_id, folder_id):
    return f"{folder_url(project_id, folder_id)}/contents"


def signed_url(file_id):
    return f"{ApiClient.API_OSS}/{BUCKET}/objects/{file_id}.bin/signeds3download"


def download_url(file_id):
    return f"https://downloads.example.com/{file_id}.bin"


def folder_item(folder_id, name, parent_id):
    return {
        "type": "folders",
        "id": folder_id,
        "attributes": {"name": name, "displayName": name, "objectCount": 1},
        "relationships": {"parent": {"data": {"type": "folders", "id": parent_id}}},
    }


def version_item(file_id, name, size):
    return {
        "type": "versions",
        "id": file_id,
        "attributes": {
            "name": name,
            "displayName": name,
            "versionNumber": 1,
            "storageSize": size,
            "fileType": name.rsplit(".", 1)[-1],
            "lastModifiedTime": MODIFIED_TIME,
        },
        "relationships": {
            "storage": {
                "data": {"type": "objects", "id": f"{STORAGE_URN_PREFIX}{BUCKET}/{file_id}.bin"},
                "meta": {"link": {"href": f"{ApiClient.API_OSS}/{BUCKET}/objects/{file_id}.bin"}},
            }
        },
    }


class FakeSession:
    """
    Routes requests by URL to canned responses.

    A route given several responses hands them out in order and then keeps
    repeating the last one. Unknown URLs answer 404.
    """

    def __init__(self):
        self.routes = {}
        self.hooks = {}
        self.calls = []
        self._lock = Lock()
        self.respond(
            AUTHENTICATE_URL,
            payload={"access_token": "token-1", "token_type": "Bearer", "expires_in": 3599},
        )

    def respond(self, url, *responses, **kwargs):
        self.routes[url] = list(responses) or [make_response(**kwargs)]

    def on(self, url, hook):
        """Call ``hook()`` before answering a request to ``url``."""
        self.hooks[url] = hook

    def request(self, method, url, **kwargs):
        with self._lock:
            self.calls.append((method, url, kwargs))
            queued = self.routes.get(url)
            if queued is None:
                response = make_response(404)
            elif len(queued) > 1:
                response = queued.pop(0)
            else:
                response = queued[0]
        hook = self.hooks.get(url)
        if hook is not None:
            hook()
        return response

    def get(self, url, **kwargs):
        return self.request("GET", url, **kwargs)

    def post(self, url, **kwargs):
        return self.request("POST", url, **kwargs)

    def calls_to(self, url):
        return [kwargs for _, called, kwargs in self.calls if called == url]

    # Canned tree -------------------------------------------------------

    def serve_projects(self, *projects):
        """Serve the project list; each project is a (project_id, name) pair."""
        self.respond(
            projects_url(),
            payload={
                "data": [
                    {
                        "type": "projects",
                        "id": project_id,
                        "attributes": {"name": name},
                        "relationships": {
                            "rootFolder": {"data": {"type": "folders", "id": f"{project_id}-root"}}
                        },
                    }
                    for project_id, name in projects
                ],
                "links": {"self": {"href": projects_url()}},
            },
        )

    def serve_contents(self, project_id, folder_id, folders=(), files=()):
        """
        Serve one folder level.

        ``folders`` are (folder_id, name) pairs, ``files`` are
        (file_id, name, content) triples; each file gets a signed URL and
        a download route.
        """
        self.respond(
            contents_url(project_id, folder_id),
            payload={
                "data": [folder_item(fid, name, folder_id) for fid, name in folders]
                + [{"type": "items", "id": f"item-{fid}"} for fid, _, _ in files],
                "included": [version_item(fid, name, len(content)) for fid, name, content in files],
            },
        )
        for file_id, _, content in files:
            self.respond(signed_url(file_id), payload={"status": "complete", "url": download_url(file_id)})
            self.respond(download_url(file_id), content=content)

    def serve_tower(self, project_id="b.p1"):
        """
        Serve a project whose root folder holds two files and one subfolder
        holding a third file.
        """
        root = f"{project_id}-root"
        sub = f"{project_id}-drawings"
        self.respond(
            folder_url(project_id, root),
            payload={"data": folder_item(root, "Project Files", f"urn:adsk.wipprod:fs.folder:{project_id}-g")},
        )
        self.serve_contents(
            project_id,
            root,
            folders=[(sub, "Drawings")],
            files=[(f"{project_id}-a", "a.pdf", b"0123456789"), (f"{project_id}-b", "b.pdf", b"b" * 20)],
        )
        self.serve_contents(project_id, sub, files=[(f"{project_id}-c", "c.dwg", b"c" * 30)])


@pytest.fixture
def session():
    return FakeSession()


@pytest.fixture
def config(tmp_path):
    return Config(
        client_id="client",
        client_secret="secret",
        account_id="acc",
        backup_directory=str(tmp_path / "backups"),
        max_degree_of_parallelism=2,
        retry_attempts=3,
    )


@pytest.fixture
def client(config, session):
    return client_from_config(config, session=session, sleep=lambda seconds: None)
