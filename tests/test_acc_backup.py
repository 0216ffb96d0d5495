"""Tests for acc_backup package."""

import json
import logging
import os
from datetime import datetime, timedelta, timezone
from threading import Event

import pytest
import requests

from acc_backup.config import Config, _load_env_file
from acc_backup.errors import (
    ApiError,
    AuthError,
    BackupCancelled,
    NotFoundError,
    RateLimitError,
    RetryKind,
    classify,
    error_for_status,
)
from acc_backup.filters import filter_projects, parse_project_list
from acc_backup.manifest import MANIFEST_FILE_NAME, BackupManifest, FileManifestEntry
from acc_backup.models import BackupStatus, File, Folder, Project, ProjectBackup
from acc_backup.retry import RetryPolicy
from acc_backup.rotation import rotate_backups, rotation_candidates
from acc_backup.sync import (
    IncrementalSync,
    SyncStats,
    find_previous_backup,
    manifest_relative_path,
    validate_manifest,
)
from acc_backup.utils import (
    backup_directory_name,
    backup_directory_sort_key,
    bytes_to_mb,
    human_size,
    human_time,
    is_backup_directory_name,
    normalize_relative_path,
    parse_retry_after,
    parse_timestamp,
    sanitize_name,
)

MODIFIED = datetime(2024, 3, 1, 12, 30, tzinfo=timezone.utc)


def make_tree() -> Project:
    """Project whose root holds 2 files and 1 subfolder with 1 file."""
    project = Project(project_id="b.p1", account_id="acc", name="Tower", root_folder_id="root")
    root = Folder(folder_id="root", project_id="b.p1", parent_folder_id="urn:hub-g", name="Project Files")
    sub = Folder(folder_id="sub", project_id="b.p1", parent_folder_id="root", name="Drawings", parent=root)
    root.subfolders = [sub]
    root.files = [
        File(file_id="f1", project_id="b.p1", name="a.pdf", storage_size=10, parent=root,
             last_modified_time=MODIFIED),
        File(file_id="f2", project_id="b.p1", name="b.pdf", storage_size=20, parent=root,
             last_modified_time=MODIFIED),
    ]
    sub.files = [
        File(file_id="f3", project_id="b.p1", name="c.dwg", storage_size=30, parent=sub,
             last_modified_time=MODIFIED),
    ]
    project.root_folder = root
    return project


class TestUtils:
    """Tests for utility functions."""

    def test_human_size(self):
        assert human_size(0) == "0.00 B"
        assert human_size(1536) == "1.50 KB"
        assert human_size(1024 ** 3) == "1.00 GB"

    def test_human_time(self):
        assert human_time(0) == "00:00:00"
        assert human_time(3661) == "01:01:01"
        assert human_time(59.9) == "00:00:59"

    def test_human_time_none_and_negative(self):
        assert human_time(None) == "--:--:--"
        assert human_time(-1) == "unknown"

    def test_bytes_to_mb(self):
        assert bytes_to_mb(1024 * 1024) == 1.0
        assert bytes_to_mb(1572864) == 1.5
        assert bytes_to_mb(0) == 0.0

    def test_sanitize_name(self):
        assert sanitize_name('a/b:c*d?"e') == "a_b_c_d__e"
        assert sanitize_name("back\\slash") == "back_slash"
        assert sanitize_name("Trailing. ") == "Trailing"
        assert sanitize_name("") == "_"

    def test_backup_directory_name(self):
        assert backup_directory_name(datetime(2024, 1, 2, 3, 4, 59)) == "2024-01-02_03-04"

    def test_is_backup_directory_name(self):
        assert is_backup_directory_name("2024-01-02_03-04")
        assert is_backup_directory_name("2024-01-02_03-04_2")
        assert not is_backup_directory_name("2024-01-02")
        assert not is_backup_directory_name("Logs")

    def test_backup_directory_sort_key(self):
        names = ["2024-01-02_03-04_2", "2023-12-31_23-59", "2024-01-02_03-04", "2024-01-02_03-04_10"]
        assert sorted(names, key=backup_directory_sort_key) == [
            "2023-12-31_23-59",
            "2024-01-02_03-04",
            "2024-01-02_03-04_2",
            "2024-01-02_03-04_10",
        ]

    def test_normalize_relative_path(self):
        assert normalize_relative_path("Tower\\Drawings//c.dwg") == "Tower/Drawings/c.dwg"
        assert normalize_relative_path("/Tower/a.pdf") == "Tower/a.pdf"

    def test_parse_retry_after(self):
        assert parse_retry_after("5") == 5.0
        assert parse_retry_after(" 2.5 ") == 2.5
        assert parse_retry_after(None) is None
        assert parse_retry_after("soon") is None
        assert parse_retry_after("-3") is None
        assert parse_retry_after("nan") is None

    def test_parse_timestamp(self):
        parsed = parse_timestamp("2023-02-01T10:20:30.1234567Z")
        assert parsed == datetime(2023, 2, 1, 10, 20, 30, 123456, tzinfo=timezone.utc)
        assert parse_timestamp("2023-02-01T10:20:30.1Z").microsecond == 100000
        assert parse_timestamp("") is None
        assert parse_timestamp("not a date") is None


class TestConfig:
    """Tests for configuration."""

    def test_default_config(self):
        config = Config()
        assert config.max_degree_of_parallelism == 8
        assert config.max_concurrent_enumerations == 4
        assert config.retry_attempts == 15
        assert config.initial_retry_seconds == 2.0
        assert config.backups_to_rotate == 1

    def test_validation_missing_credentials(self):
        errors = Config().validate()
        assert "ACC_CLIENT_ID is required" in errors
        assert "ACC_CLIENT_SECRET is required" in errors
        assert "ACC_ACCOUNT_ID is required" in errors
        assert "Backup directory is required" in errors

    def test_validation_destination_is_file(self, tmp_path):
        target = tmp_path / "file.txt"
        target.write_text("x")
        config = Config(client_id="id", client_secret="s", account_id="a", backup_directory=str(target))
        assert any("not a directory" in e for e in config.validate())

    def test_validation_limits(self, tmp_path):
        config = Config(
            client_id="id",
            client_secret="s",
            account_id="a",
            backup_directory=str(tmp_path),
            max_degree_of_parallelism=0,
            retry_attempts=-1,
            backups_to_rotate=-1,
        )
        errors = config.validate()
        assert len(errors) == 3

    def test_valid_config(self, tmp_path):
        config = Config(client_id="id", client_secret="s", account_id="a", backup_directory=str(tmp_path))
        assert config.validate() == []

    def test_effective_hub_id(self):
        assert Config(account_id="1234").effective_hub_id == "b.1234"
        assert Config(account_id="1234", hub_id="b.other").effective_hub_id == "b.other"
        assert Config().effective_hub_id == ""

    def test_from_env(self, monkeypatch, tmp_path):
        monkeypatch.chdir(tmp_path)
        monkeypatch.delenv("ACC_HUB_ID", raising=False)
        monkeypatch.setenv("ACC_CLIENT_ID", "cid")
        monkeypatch.setenv("ACC_ACCOUNT_ID", "acc")
        monkeypatch.setenv("ACC_MAX_DEGREE_OF_PARALLELISM", "3")
        monkeypatch.setenv("ACC_DRY_RUN", "true")
        monkeypatch.setenv("ACC_PROJECTS_TO_EXCLUDE", "Old, b.123")

        config = Config.from_env()

        assert config.client_id == "cid"
        assert config.effective_hub_id == "b.acc"
        assert config.max_degree_of_parallelism == 3
        assert config.dry_run is True
        assert config.projects_to_exclude == ["Old", "b.123"]

    def test_env_file_does_not_override(self, monkeypatch, tmp_path):
        env_file = tmp_path / ".env"
        env_file.write_text('# comment\nACC_CLIENT_ID=from-file\nACC_CLIENT_SECRET="quoted"\n')
        monkeypatch.setenv("ACC_CLIENT_ID", "from-env")
        # Registers the variable for removal at teardown
        monkeypatch.setenv("ACC_CLIENT_SECRET", "placeholder")
        monkeypatch.delenv("ACC_CLIENT_SECRET")

        _load_env_file(env_file)

        assert os.environ["ACC_CLIENT_ID"] == "from-env"
        assert os.environ["ACC_CLIENT_SECRET"] == "quoted"


class TestFilters:
    """Tests for project selection."""

    @staticmethod
    def projects():
        return [
            Project(project_id="b.aaa", account_id="acc", name="Tower"),
            Project(project_id="b.bbb", account_id="acc", name="Bridge"),
            Project(project_id="b.ccc", account_id="acc", name="Sample Project"),
        ]

    def test_parse_project_list(self):
        assert parse_project_list("") == []
        assert parse_project_list(None) == []
        assert parse_project_list(" Tower ,, b.123 ") == ["Tower", "b.123"]

    def test_sample_project_always_skipped(self):
        names = [p.name for p in filter_projects(self.projects())]
        assert names == ["Tower", "Bridge"]

    def test_include_by_name_case_insensitive(self):
        selected = filter_projects(self.projects(), ["tower"])
        assert [p.name for p in selected] == ["Tower"]

    def test_include_by_id_without_prefix(self):
        selected = filter_projects(self.projects(), ["BBB"])
        assert [p.name for p in selected] == ["Bridge"]

    def test_exclusion_wins(self):
        selected = filter_projects(self.projects(), ["Tower", "Bridge"], ["aaa"])
        assert [p.name for p in selected] == ["Bridge"]


class TestTreeModel:
    """Tests for the project tree."""

    def test_recursive_counts(self):
        project = make_tree()
        assert len(list(project.files_recursive)) == 3
        assert len(list(project.subfolders_recursive)) == 1

    def test_files_recursive_is_files_plus_subfolders(self):
        root = make_tree().root_folder
        expected = list(root.files) + list(root.subfolders[0].files_recursive)
        assert list(root.files_recursive) == expected

    def test_empty_before_enumeration(self):
        project = Project(project_id="b.p", account_id="a", name="Empty")
        assert list(project.files_recursive) == []
        assert list(project.subfolders_recursive) == []

        folder = Folder(folder_id="f", project_id="b.p", parent_folder_id="x-g", name="Root")
        assert list(folder.files_recursive) == []
        assert folder.is_empty

    def test_paths(self):
        root = make_tree().root_folder
        sub = root.subfolders[0]
        file = sub.files[0]
        assert file.get_path() == "/Project Files/Drawings/c.dwg"
        assert sub.get_path() == "/Project Files/Drawings"
        assert sub.get_path(root_folder_id="sub") == "/Drawings"
        assert file.get_path(delimiter="\\") == "\\Project Files\\Drawings\\c.dwg"

    def test_relative_parts_skip_project_root(self):
        root = make_tree().root_folder
        assert root.get_relative_parts() == []
        assert root.subfolders[0].files[0].get_relative_parts() == ["Drawings", "c.dwg"]

    def test_is_root_folder(self):
        root = make_tree().root_folder
        assert root.is_root_folder
        assert not root.subfolders[0].is_root_folder

    def test_downloaded_tracks_local_path(self, tmp_path):
        file = File(file_id="f", project_id="p", name="x")
        assert file.downloaded is False
        file.local_path = tmp_path / "x"
        assert file.downloaded is True

    def test_size_helpers(self):
        file = File(file_id="f", project_id="p", name="x", storage_size=1572864)
        file.size_on_disk = 1048576
        assert file.api_reported_size_mb == 1.5
        assert file.size_on_disk_mb == 1.0


class TestProjectBackup:
    """Tests for project run status."""

    def test_from_project_keeps_identity(self):
        project = make_tree()
        backup = ProjectBackup.from_project(project)
        assert backup.project is project
        assert backup.name == "Tower"
        assert backup.project_id == "b.p1"
        assert backup.started_at is None

    def test_success(self, tmp_path):
        backup = ProjectBackup.from_project(make_tree())
        for folder in backup.project.subfolders_recursive:
            folder.directory = tmp_path
        for file in backup.project.files_recursive:
            file.local_path = tmp_path / file.name
        assert backup.status is BackupStatus.SUCCESS

    def test_partial_fail(self, tmp_path):
        backup = ProjectBackup.from_project(make_tree())
        next(backup.project.files_recursive).local_path = tmp_path / "a.pdf"
        assert backup.status is BackupStatus.PARTIAL_FAIL

    def test_error_when_nothing_downloaded(self):
        backup = ProjectBackup.from_project(make_tree())
        backup.mark_failed(RuntimeError("boom"), datetime.now())
        assert backup.status is BackupStatus.ERROR
        assert backup.started_at == backup.finished_at

    def test_duration(self):
        backup = ProjectBackup.from_project(make_tree())
        backup.started_at = datetime(2024, 1, 1, 10, 0, 0)
        backup.finished_at = backup.started_at + timedelta(seconds=90)
        assert backup.duration_seconds == 90


class TestErrors:
    """Tests for failure classification."""

    def test_error_for_status(self):
        assert isinstance(error_for_status(401, "x"), AuthError)
        assert isinstance(error_for_status(403, "x"), AuthError)
        assert isinstance(error_for_status(404, "x"), NotFoundError)
        assert isinstance(error_for_status(429, "x", retry_after="3"), RateLimitError)
        assert type(error_for_status(500, "x")) is ApiError

    def test_classify(self):
        assert classify(error_for_status(429, "x")) is RetryKind.RATE_LIMITED
        assert classify(error_for_status(503, "x")) is RetryKind.TRANSIENT
        assert classify(error_for_status(401, "x")) is RetryKind.FATAL
        assert classify(error_for_status(404, "x")) is RetryKind.FATAL
        assert classify(error_for_status(400, "x")) is RetryKind.FATAL
        assert classify(requests.ConnectionError("reset")) is RetryKind.TRANSIENT
        assert classify(requests.Timeout("slow")) is RetryKind.TRANSIENT
        assert classify(BackupCancelled()) is RetryKind.FATAL

    def test_message(self):
        assert str(ApiError(500, "Internal")) == "API error 500: Internal"


class TestRetryPolicy:
    """Tests for the retry policy."""

    @staticmethod
    def policy(max_retries=3, initial_delay=2.0, **kwargs):
        sleeps = []
        return RetryPolicy(max_retries, initial_delay, sleep=sleeps.append, **kwargs), sleeps

    def test_success_first_try(self):
        policy, sleeps = self.policy()
        assert policy.execute(lambda: "ok") == "ok"
        assert sleeps == []

    def test_transient_attempts_capped(self):
        policy, sleeps = self.policy(max_retries=3)
        calls = []
        error = ApiError(503, "unavailable")

        def always_fails():
            calls.append(1)
            raise error

        with pytest.raises(ApiError) as exc_info:
            policy.execute(always_fails)

        assert exc_info.value is error
        assert len(calls) == 4
        assert sleeps == [2.0, 4.0, 6.0]
        assert policy.retries_total == 3

    def test_recovers_after_transient(self):
        policy, sleeps = self.policy()
        outcomes = [requests.ConnectionError("reset"), "done"]

        def flaky():
            outcome = outcomes.pop(0)
            if isinstance(outcome, Exception):
                raise outcome
            return outcome

        assert policy.execute(flaky) == "done"
        assert sleeps == [2.0]

    def test_fatal_not_retried(self):
        policy, sleeps = self.policy()
        calls = []

        def not_found():
            calls.append(1)
            raise NotFoundError(404, "missing")

        with pytest.raises(NotFoundError):
            policy.execute(not_found)
        assert len(calls) == 1
        assert sleeps == []

    def test_retry_after_honoured(self):
        policy, sleeps = self.policy(max_retries=1)
        with pytest.raises(RateLimitError):
            policy.execute(self._raise, RateLimitError(429, "slow down", retry_after="5"))
        assert sleeps == [6]
        assert sleeps[0] >= 5
        assert policy.rate_limit_hits == 1

    def test_retry_after_capped(self):
        policy, sleeps = self.policy(max_retries=1)
        with pytest.raises(RateLimitError):
            policy.execute(self._raise, RateLimitError(429, "slow down", retry_after="1200"))
        assert sleeps == [601]

    def test_rate_limit_without_header_backs_off(self):
        policy, sleeps = self.policy(max_retries=2, initial_delay=3.0)
        with pytest.raises(RateLimitError):
            policy.execute(self._raise, RateLimitError(429, "slow down"))
        assert sleeps == [3.0, 6.0]

    def test_unparsable_retry_after(self, caplog):
        policy, sleeps = self.policy(max_retries=1)
        with caplog.at_level(logging.DEBUG, logger="acc_backup.retry"):
            with pytest.raises(RateLimitError):
                policy.execute(self._raise, RateLimitError(429, "slow down", retry_after="later"))
        assert sleeps == [2.0]
        assert "Failed to parse RetryAfter" in caplog.text

    def test_retry_logged_with_delay_and_count(self, caplog):
        policy, _ = self.policy(max_retries=2)
        with caplog.at_level(logging.WARNING, logger="acc_backup.retry"):
            with pytest.raises(ApiError):
                policy.execute(self._raise, ApiError(500, "oops"))
        assert "Retry 1/2 in 2 seconds" in caplog.text
        assert "Retry 2/2 in 4 seconds" in caplog.text
        assert "transient error" in caplog.text

    def test_before_attempt_runs_every_attempt(self):
        policy, _ = self.policy(max_retries=2)
        refreshed = []
        with pytest.raises(ApiError):
            policy.execute(self._raise, ApiError(502, "bad gateway"), before_attempt=lambda: refreshed.append(1))
        assert len(refreshed) == 3

    def test_cancelled_before_attempt(self):
        stop = Event()
        stop.set()
        policy, _ = self.policy(stop_event=stop)
        with pytest.raises(BackupCancelled):
            policy.execute(lambda: "never")

    def test_cancellation_interrupts_backoff(self):
        stop = Event()
        policy = RetryPolicy(5, 100.0, stop_event=stop, sleep=lambda delay: stop.set())
        with pytest.raises(BackupCancelled):
            policy.execute(self._raise, ApiError(500, "oops"))

    @staticmethod
    def _raise(exc):
        raise exc


class TestManifest:
    """Tests for the backup manifest."""

    @staticmethod
    def entry(**overrides):
        values = dict(
            file_id="f1",
            version_number=2,
            last_modified_time=MODIFIED,
            storage_size=10,
            name="a.pdf",
            project_id="b.p1",
        )
        values.update(overrides)
        return FileManifestEntry(**values)

    def test_round_trip(self, tmp_path):
        manifest = BackupManifest(backup_directory=str(tmp_path))
        manifest.add_file("Tower/a.pdf", self.entry())
        manifest.add_file("Tower/Drawings/c.dwg", self.entry(file_id="f3", name="c.dwg"))
        path = tmp_path / MANIFEST_FILE_NAME

        manifest.save(path)
        loaded = BackupManifest.load(path)

        assert loaded.backup_directory == str(tmp_path)
        assert dict(loaded.files.items()) == dict(manifest.files.items())

    def test_json_layout(self, tmp_path):
        manifest = BackupManifest(backup_directory="/backups/run")
        manifest.add_file("Tower/a.pdf", self.entry())
        path = tmp_path / MANIFEST_FILE_NAME
        manifest.save(path)

        data = json.loads(path.read_text(encoding="utf-8"))
        assert set(data) == {"backupDate", "backupDirectory", "files"}
        assert data["files"]["Tower/a.pdf"] == {
            "fileId": "f1",
            "versionNumber": 2,
            "lastModifiedTime": "2024-03-01T12:30:00+00:00",
            "storageSize": 10,
            "name": "a.pdf",
            "projectId": "b.p1",
        }

    def test_case_insensitive_keys(self, tmp_path):
        manifest = BackupManifest()
        manifest.add_file("Tower/Drawings/C.dwg", self.entry())
        assert manifest.get_file("tower/drawings/c.DWG") is not None

        path = tmp_path / MANIFEST_FILE_NAME
        manifest.save(path)
        assert BackupManifest.load(path).get_file("TOWER/DRAWINGS/C.DWG") is not None

    def test_load_missing(self, tmp_path):
        assert BackupManifest.load(tmp_path / "nope.json") is None

    def test_load_malformed(self, tmp_path):
        path = tmp_path / MANIFEST_FILE_NAME
        path.write_text("{not json", encoding="utf-8")
        with pytest.raises(ValueError):
            BackupManifest.load(path)

    def test_equivalence_ignores_name(self):
        assert self.entry().is_equivalent_to(self.entry(name="renamed.pdf"))
        assert not self.entry().is_equivalent_to(None)


def write_previous_run(root, name="2024-03-01_10-00", files=None):
    """Create a finished run directory holding Tower/a.pdf and its manifest."""
    run = root / name
    project_dir = run / "Tower"
    project_dir.mkdir(parents=True)
    manifest = BackupManifest(backup_directory=str(run))
    for relative_path, (content, entry) in (files or {}).items():
        target = run / relative_path
        target.parent.mkdir(parents=True, exist_ok=True)
        target.write_bytes(content)
        manifest.add_file(relative_path, entry)
    manifest.save(run / MANIFEST_FILE_NAME)
    return run


class TestIncrementalSync:
    """Tests for reuse decisions against a previous backup."""

    @staticmethod
    def fresh_file():
        return make_tree().root_folder.files[0]

    def previous(self, tmp_path, **overrides):
        file = self.fresh_file()
        entry = FileManifestEntry.from_file(file)
        for key, value in overrides.items():
            setattr(entry, key, value)
        return write_previous_run(tmp_path, files={"Tower/a.pdf": (b"x" * 10, entry)})

    def sync_against(self, tmp_path, previous, **kwargs):
        current = tmp_path / "2024-03-02_10-00"
        current.mkdir()
        sync = IncrementalSync(current, previous, **kwargs)
        sync.load_previous()
        return sync

    def test_relative_path(self):
        file = make_tree().root_folder.subfolders[0].files[0]
        assert manifest_relative_path("Tower: East", file) == "Tower_ East/Drawings/c.dwg"

    def test_reuse_when_unchanged(self, tmp_path):
        sync = self.sync_against(tmp_path, self.previous(tmp_path))
        assert sync.incremental
        assert sync.should_reuse(self.fresh_file(), "Tower/a.pdf")
        assert sync.should_reuse(self.fresh_file(), "TOWER/A.PDF")

    @pytest.mark.parametrize(
        "field_name, value",
        [
            ("file_id", "other"),
            ("version_number", 7),
            ("storage_size", 11),
            ("last_modified_time", MODIFIED + timedelta(seconds=1)),
        ],
    )
    def test_any_change_forces_download(self, tmp_path, field_name, value):
        sync = self.sync_against(tmp_path, self.previous(tmp_path, **{field_name: value}))
        assert not sync.should_reuse(self.fresh_file(), "Tower/a.pdf")

    def test_absent_entry_forces_download(self, tmp_path):
        sync = self.sync_against(tmp_path, self.previous(tmp_path))
        assert not sync.should_reuse(self.fresh_file(), "Tower/unknown.pdf")

    def test_force_full_download(self, tmp_path):
        sync = self.sync_against(tmp_path, self.previous(tmp_path), force_full_download=True)
        assert not sync.incremental
        assert not sync.should_reuse(self.fresh_file(), "Tower/a.pdf")

    def test_all_sampled_files_missing(self, tmp_path):
        previous = self.previous(tmp_path)
        (previous / "Tower" / "a.pdf").unlink()
        sync = self.sync_against(tmp_path, previous)
        assert not sync.incremental

    def test_corrupt_manifest_falls_back(self, tmp_path, caplog):
        previous = self.previous(tmp_path)
        (previous / MANIFEST_FILE_NAME).write_text("[1, 2", encoding="utf-8")
        with caplog.at_level(logging.WARNING, logger="acc_backup.sync"):
            sync = self.sync_against(tmp_path, previous)
        assert not sync.incremental
        assert "performing full backup" in caplog.text

    def test_validate_manifest_samples(self, tmp_path):
        previous = self.previous(tmp_path)
        manifest = BackupManifest.load(previous / MANIFEST_FILE_NAME)
        for i in range(30):
            manifest.add_file(f"Tower/missing-{i}.pdf", FileManifestEntry.from_file(self.fresh_file()))
        # One present file is enough, however many are missing
        assert validate_manifest(manifest, previous, sample_size=len(manifest))
        assert not validate_manifest(BackupManifest(), previous)

    def test_copy_from_previous(self, tmp_path):
        sync = self.sync_against(tmp_path, self.previous(tmp_path))
        file = self.fresh_file()
        target = sync.current_directory / "Tower" / "a.pdf"
        target.parent.mkdir(parents=True)

        assert sync.copy_from_previous(file, "Tower/a.pdf", target)
        sync.record(file, "Tower/a.pdf", copied=True)

        assert target.read_bytes() == b"x" * 10
        assert file.downloaded
        assert sync.stats.files_copied == 1
        assert sync.stats.bytes_copied == 10
        assert sync.manifest.get_file("Tower/a.pdf") is not None

    def test_copy_of_vanished_source(self, tmp_path):
        previous = self.previous(tmp_path)
        sync = self.sync_against(tmp_path, previous)
        (previous / "Tower" / "a.pdf").unlink()
        file = self.fresh_file()
        assert not sync.copy_from_previous(file, "Tower/a.pdf", sync.current_directory / "a.pdf")
        assert not file.downloaded

    def test_save(self, tmp_path):
        sync = IncrementalSync(tmp_path)
        file = self.fresh_file()
        file.size_on_disk = 10
        sync.record(file, "Tower/a.pdf", copied=False)
        path = sync.save()
        assert path == tmp_path / MANIFEST_FILE_NAME
        assert len(BackupManifest.load(path)) == 1
        assert sync.stats.bytes_downloaded == 10

    def test_dry_run_writes_no_manifest(self, tmp_path):
        sync = IncrementalSync(tmp_path, dry_run=True)
        assert sync.save() is None
        assert not (tmp_path / MANIFEST_FILE_NAME).exists()

    def test_find_previous_backup(self, tmp_path):
        write_previous_run(tmp_path, "2024-03-01_10-00")
        newest = write_previous_run(tmp_path, "2024-03-01_10-00_1")
        (tmp_path / "2024-03-05_10-00").mkdir()  # no manifest
        (tmp_path / "Logs").mkdir()
        current = tmp_path / "2024-03-06_10-00"
        current.mkdir()

        assert find_previous_backup(tmp_path, current) == newest
        assert find_previous_backup(tmp_path / "absent") is None


class TestSyncStats:
    """Tests for incremental counters."""

    def test_efficiency(self):
        stats = SyncStats(bytes_copied=75, bytes_downloaded=25)
        assert stats.efficiency_percent == 75.0

    def test_efficiency_never_100_with_downloads(self):
        stats = SyncStats(bytes_copied=999_999, bytes_downloaded=1)
        assert stats.efficiency_percent == 99.99

    def test_efficiency_full_reuse(self):
        assert SyncStats(bytes_copied=10).efficiency_percent == 100.0
        assert SyncStats().efficiency_percent == 0.0

    def test_increment(self):
        stats = SyncStats()
        stats.increment("files_copied")
        stats.increment("bytes_copied", 512)
        assert stats.files_copied == 1
        assert stats.bytes_copied == 512


class TestRotation:
    """Tests for backup rotation."""

    @staticmethod
    def make_runs(root):
        names = ["2024-01-01_10-00", "2024-01-02_10-00", "2024-01-03_10-00", "2024-01-04_10-00"]
        runs = []
        for name in names:
            run = root / name
            run.mkdir()
            (run / "marker.txt").write_text(name)
            runs.append(run)
        return runs

    def test_keeps_one_previous(self, tmp_path):
        *previous, active = self.make_runs(tmp_path)

        deleted = rotate_backups(tmp_path, active, 1, protected=[])

        assert deleted == previous[:2]
        remaining = sorted(p.name for p in tmp_path.iterdir())
        assert remaining == [previous[2].name, active.name]

    def test_zero_retention_keeps_one(self, tmp_path):
        *previous, active = self.make_runs(tmp_path)
        rotate_backups(tmp_path, active, 0, protected=[])
        assert previous[2].exists()
        assert active.exists()

    def test_unrelated_directories_untouched(self, tmp_path):
        *_, active = self.make_runs(tmp_path)
        (tmp_path / "Logs").mkdir()
        rotate_backups(tmp_path, active, 1, protected=[])
        assert (tmp_path / "Logs").exists()

    def test_program_directory_protected(self, tmp_path):
        oldest, *_, active = self.make_runs(tmp_path)
        program = (oldest / "bin" / "acc-backup").resolve()

        candidates = rotation_candidates(tmp_path, active, protected=[program])
        deleted = rotate_backups(tmp_path, active, 1, protected=[program])

        assert oldest not in candidates
        assert active not in candidates
        assert oldest.exists()
        assert len(deleted) == 1

    def test_missing_root(self, tmp_path):
        assert rotate_backups(tmp_path / "none", tmp_path / "none" / "x", 1, protected=[]) == []
