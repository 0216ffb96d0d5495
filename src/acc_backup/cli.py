"""Command-line interface for ACC Backup."""

import argparse
import logging
import signal
import sys
from pathlib import Path
from threading import Event
from typing import Any

from .config import Config
from .filters import parse_project_list

logger = logging.getLogger(__name__)

# More verbose than DEBUG; enabled by --trace-logging
TRACE = 5
logging.addLevelName(TRACE, "TRACE")

LOG_FILE = Path("Logs") / "acc_backup.log"


def setup_logging(log_file: Path, level: int = logging.INFO) -> None:
    """Configure logging to a file and the console."""
    # Clear any existing handlers to prevent duplicate output
    root_logger = logging.getLogger()
    root_logger.handlers.clear()

    log_file.parent.mkdir(parents=True, exist_ok=True)
    file_handler = logging.FileHandler(log_file, encoding="utf-8")
    file_handler.setFormatter(logging.Formatter("%(asctime)s [%(levelname)s] [%(name)s] %(message)s"))
    file_handler.setLevel(level)

    console_handler = logging.StreamHandler(sys.stdout)
    console_handler.setFormatter(logging.Formatter("[%(asctime)s %(levelname)s] %(message)s", "%H:%M:%S"))
    console_handler.setLevel(level)

    root_logger.setLevel(level)
    root_logger.addHandler(file_handler)
    root_logger.addHandler(console_handler)

    # HTTP connection chatter only when tracing
    logging.getLogger("urllib3").setLevel(logging.DEBUG if level <= TRACE else logging.WARNING)


def log_level(config: Config) -> int:
    if config.trace_logging:
        return TRACE
    if config.debug_logging:
        return logging.DEBUG
    return logging.INFO


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="acc-backup",
        description="Incremental backup of Autodesk Construction Cloud projects to local disk. "
                    "Options not given fall back to ACC_* environment variables (or a .env file).",
    )
    parser.add_argument("--backup-directory", help="Root directory of the timestamped backups")
    parser.add_argument("--client-id", help="Client ID of the Autodesk Platform Services app")
    parser.add_argument("--client-secret", help="Client secret of the Autodesk Platform Services app")
    parser.add_argument("--account-id", help="Autodesk Construction Cloud account ID")
    parser.add_argument("--hub-id", help="Hub ID, defaults to b.<account id>")
    parser.add_argument("--max-degree-of-parallelism", type=int,
                        help="Parallel file downloads within a project (default 8)")
    parser.add_argument("--max-concurrent-enumerations", type=int,
                        help="Projects enumerated at the same time (default 4)")
    parser.add_argument("--retry-attempts", type=int, help="Retries of a failed request (default 15)")
    parser.add_argument("--initial-retry-in-seconds", type=float,
                        help="Backoff unit, retry n waits n times this (default 2)")
    parser.add_argument("--dry-run", action="store_true", default=None,
                        help="Write empty placeholder files instead of downloading")
    parser.add_argument("--backups-to-rotate", type=int, help="Previous backups to keep (default 1)")
    parser.add_argument("--projects-to-backup", type=parse_project_list,
                        help="Comma separated project names or ids to back up (default all)")
    parser.add_argument("--projects-to-exclude", type=parse_project_list,
                        help="Comma separated project names or ids to leave out")
    parser.add_argument("--force-full-download", action="store_true", default=None,
                        help="Download everything even if the previous backup has it")
    parser.add_argument("--debug-logging", action="store_true", default=None, help="Enable debug logging")
    parser.add_argument("--trace-logging", action="store_true", default=None,
                        help="Enable trace logging. Extremely verbose.")

    smtp = parser.add_argument_group("summary e-mail")
    smtp.add_argument("--smtp-host", help="SMTP server name")
    smtp.add_argument("--smtp-port", type=int, help="SMTP port (default 587)")
    smtp.add_argument("--smtp-username", help="SMTP username")
    smtp.add_argument("--smtp-password", help="SMTP password")
    smtp.add_argument("--smtp-from-address", help="Sender address")
    smtp.add_argument("--smtp-from-name", help="Sender display name")
    smtp.add_argument("--smtp-to-addresses", type=parse_project_list, help="Comma separated recipients")
    smtp.add_argument("--smtp-no-ssl", dest="smtp_enable_ssl", action="store_false", default=None,
                      help="Do not upgrade the SMTP connection with STARTTLS")
    return parser


def config_from_args(args: argparse.Namespace, config: Config | None = None) -> Config:
    """Overlay command-line options on a config loaded from the environment."""
    config = config or Config.from_env()
    options = {
        "backup_directory": args.backup_directory,
        "client_id": args.client_id,
        "client_secret": args.client_secret,
        "account_id": args.account_id,
        "hub_id": args.hub_id,
        "max_degree_of_parallelism": args.max_degree_of_parallelism,
        "max_concurrent_enumerations": args.max_concurrent_enumerations,
        "retry_attempts": args.retry_attempts,
        "initial_retry_seconds": args.initial_retry_in_seconds,
        "dry_run": args.dry_run,
        "backups_to_rotate": args.backups_to_rotate,
        "projects_to_backup": args.projects_to_backup,
        "projects_to_exclude": args.projects_to_exclude,
        "force_full_download": args.force_full_download,
        "debug_logging": args.debug_logging,
        "trace_logging": args.trace_logging,
        "smtp_host": args.smtp_host,
        "smtp_port": args.smtp_port,
        "smtp_username": args.smtp_username,
        "smtp_password": args.smtp_password,
        "smtp_from_address": args.smtp_from_address,
        "smtp_from_name": args.smtp_from_name,
        "smtp_to_addresses": args.smtp_to_addresses,
        "smtp_enable_ssl": args.smtp_enable_ssl,
    }
    for name, value in options.items():
        if value is not None:
            setattr(config, name, value)
    return config


def main(argv: list[str] | None = None, config: Config | None = None) -> int:
    """
    Main entry point for the CLI.

    Args:
        argv: Command-line arguments, defaults to sys.argv[1:]
        config: Optional pre-configured Config. If None, loads from environment.

    Returns:
        Exit code: 0 success, 1 invalid configuration or failure to list
        projects, 2 when a project did not back up completely
    """
    from .client import client_from_config
    from .display import (
        build_summary,
        log_summary,
        print_banner,
        print_error,
        print_info,
        print_success,
        print_summary,
        print_warning,
        summary_header,
    )
    from .notify import send_summary
    from .pipeline import BackupPipeline

    args = build_parser().parse_args(argv)

    print_banner()

    try:
        config = config_from_args(args, config)
    except ValueError as e:
        # Non-numeric value in an ACC_* setting
        print_error(f"Invalid configuration: {e}")
        return 1

    errors = config.validate()
    if errors:
        for error in errors:
            print_error(error)
        return 1
    print_success("Configuration valid")

    log_file = Path.cwd() / LOG_FILE
    setup_logging(log_file, log_level(config))
    print_info(f"Log file: {log_file}")
    if config.dry_run:
        print_warning("DRY RUN MODE - empty placeholder files are written instead of downloads")

    # Set up signal handling
    stop_event = Event()
    interrupted = False

    def signal_handler(sig: int, frame: Any) -> None:
        nonlocal interrupted
        if not interrupted:
            interrupted = True
            stop_event.set()
            print_warning("Gracefully stopping... please wait.")

    signal.signal(signal.SIGINT, signal_handler)
    signal.signal(signal.SIGTERM, signal_handler)

    client = client_from_config(config, stop_event)
    pipeline = BackupPipeline(config, client, stop_event)

    try:
        result = pipeline.run()
    except Exception as e:
        # Only listing the projects can fail the run as a whole
        logger.error("Backup aborted: %s", e, exc_info=True)
        print_error(f"Backup aborted: {e}")
        return 1

    if not result.projects:
        return 0

    lines = build_summary(
        result.projects,
        result.sync_stats,
        result.pipeline_stats,
        str(result.run_directory),
    )
    log_summary(lines)
    send_summary(config, summary_header(result.projects), lines)
    print_summary(result.projects, result.cancelled)

    return result.exit_code


def cli_main() -> int:
    """CLI entry point."""
    return main()


if __name__ == "__main__":
    sys.exit(cli_main())
