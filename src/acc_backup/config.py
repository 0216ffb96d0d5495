"""Configuration management for ACC Backup."""

import os
from dataclasses import dataclass, field
from pathlib import Path

from .auth import AUTHENTICATE_URL
from .filters import parse_project_list

ENV_PREFIX = "ACC_"


def _load_env_file(path: Path | None = None) -> None:
    """Load environment variables from a .env file if present.

    This is a minimal loader that supports simple ``KEY=VALUE`` lines.
    Existing environment variables are not overridden.
    """

    try:
        env_path = path or (Path.cwd() / ".env")
        if not env_path.exists():
            return

        for raw_line in env_path.read_text(encoding="utf-8").splitlines():
            line = raw_line.strip()
            if not line or line.startswith("#") or "=" not in line:
                continue

            key, value = line.split("=", 1)
            key = key.strip()
            value = value.strip()

            # Strip optional quotes
            if (value.startswith("\"") and value.endswith("\"")) or (
                value.startswith("'") and value.endswith("'")
            ):
                value = value[1:-1]

            if key and key not in os.environ:
                os.environ[key] = value
    except OSError:
        # An unreadable .env file is the same as no .env file
        return


def _env(name: str, default: str = "") -> str:
    return os.getenv(ENV_PREFIX + name, default)


def _env_bool(name: str, default: bool = False) -> bool:
    value = _env(name)
    if not value:
        return default
    return value.strip().lower() in ("1", "true", "yes", "on")


@dataclass
class Config:
    """Application configuration."""

    # Credentials and account
    client_id: str = ""
    client_secret: str = ""
    account_id: str = ""
    hub_id: str = ""
    auth_url: str = AUTHENTICATE_URL

    # Local settings
    backup_directory: str = ""
    backups_to_rotate: int = 1

    # Performance tuning
    max_degree_of_parallelism: int = 8
    max_concurrent_enumerations: int = 4
    request_timeout: int = 300
    chunk_size: int = 1024 * 1024  # 1MB

    # Retry settings
    retry_attempts: int = 15
    initial_retry_seconds: float = 2.0

    # Behaviour
    dry_run: bool = False
    force_full_download: bool = False
    projects_to_backup: list[str] = field(default_factory=list)
    projects_to_exclude: list[str] = field(default_factory=list)

    # Logging
    debug_logging: bool = False
    trace_logging: bool = False

    # Summary e-mail (all optional)
    smtp_host: str = ""
    smtp_port: int = 587
    smtp_username: str = ""
    smtp_password: str = ""
    smtp_from_address: str = ""
    smtp_from_name: str = ""
    smtp_to_addresses: list[str] = field(default_factory=list)
    smtp_enable_ssl: bool = True

    @classmethod
    def from_env(cls) -> "Config":
        """Create config from ``ACC_*`` environment variables."""
        # Lazily load variables from a local .env file, if present.
        # Explicitly-set environment variables take precedence.
        _load_env_file()

        return cls(
            client_id=_env("CLIENT_ID"),
            client_secret=_env("CLIENT_SECRET"),
            account_id=_env("ACCOUNT_ID"),
            hub_id=_env("HUB_ID"),
            auth_url=_env("AUTH_URL", AUTHENTICATE_URL),
            backup_directory=_env("BACKUP_DIRECTORY"),
            backups_to_rotate=int(_env("BACKUPS_TO_ROTATE", "1")),
            max_degree_of_parallelism=int(_env("MAX_DEGREE_OF_PARALLELISM", "8")),
            max_concurrent_enumerations=int(_env("MAX_CONCURRENT_ENUMERATIONS", "4")),
            request_timeout=int(_env("REQUEST_TIMEOUT", "300")),
            retry_attempts=int(_env("RETRY_ATTEMPTS", "15")),
            initial_retry_seconds=float(_env("INITIAL_RETRY_IN_SECONDS", "2")),
            dry_run=_env_bool("DRY_RUN"),
            force_full_download=_env_bool("FORCE_FULL_DOWNLOAD"),
            projects_to_backup=parse_project_list(_env("PROJECTS_TO_BACKUP")),
            projects_to_exclude=parse_project_list(_env("PROJECTS_TO_EXCLUDE")),
            debug_logging=_env_bool("DEBUG_LOGGING"),
            trace_logging=_env_bool("TRACE_LOGGING"),
            smtp_host=_env("SMTP_HOST"),
            smtp_port=int(_env("SMTP_PORT", "587")),
            smtp_username=_env("SMTP_USERNAME"),
            smtp_password=_env("SMTP_PASSWORD"),
            smtp_from_address=_env("SMTP_FROM_ADDRESS"),
            smtp_from_name=_env("SMTP_FROM_NAME"),
            smtp_to_addresses=parse_project_list(_env("SMTP_TO_ADDRESSES")),
            smtp_enable_ssl=_env_bool("SMTP_ENABLE_SSL", True),
        )

    @property
    def effective_hub_id(self) -> str:
        """Hub id used by the project endpoints; derived from the account id when unset."""
        if self.hub_id:
            return self.hub_id
        return f"b.{self.account_id}" if self.account_id else ""

    @property
    def smtp_configured(self) -> bool:
        return bool(self.smtp_host and self.smtp_from_address and self.smtp_to_addresses)

    def validate(self) -> list[str]:
        """Validate configuration. Returns list of errors."""
        errors = []

        if not self.client_id:
            errors.append("ACC_CLIENT_ID is required")
        if not self.client_secret:
            errors.append("ACC_CLIENT_SECRET is required")
        if not self.account_id and not self.hub_id:
            errors.append("ACC_ACCOUNT_ID is required")

        if not self.backup_directory:
            errors.append("Backup directory is required")
        else:
            dest = Path(self.backup_directory)
            if dest.exists() and not dest.is_dir():
                errors.append(f"Backup directory exists but is not a directory: {dest}")

        if self.max_degree_of_parallelism < 1:
            errors.append("max_degree_of_parallelism must be at least 1")
        if self.max_concurrent_enumerations < 1:
            errors.append("max_concurrent_enumerations must be at least 1")
        if self.retry_attempts < 0:
            errors.append("retry_attempts cannot be negative")
        if self.initial_retry_seconds < 0:
            errors.append("initial_retry_seconds cannot be negative")
        if self.backups_to_rotate < 0:
            errors.append("backups_to_rotate cannot be negative")

        return errors

    def ensure_dest_exists(self) -> Path:
        """Ensure backup directory exists. Returns Path."""
        dest = Path(self.backup_directory)
        dest.mkdir(parents=True, exist_ok=True)
        return dest
