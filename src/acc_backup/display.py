"""Terminal display and run summary for ACC Backup."""

import logging
from datetime import datetime
from typing import TYPE_CHECKING

from .models import BackupStatus, ProjectBackup
from .utils import get_terminal_width, human_size, human_time, is_tty

if TYPE_CHECKING:
    from .pipeline import PipelineStats
    from .sync import SyncStats

logger = logging.getLogger(__name__)

SUMMARY_RULE = "=" * 81


class Colors:
    """ANSI color codes for terminal output."""

    RED = "\033[91m"
    GREEN = "\033[92m"
    YELLOW = "\033[93m"
    BLUE = "\033[94m"
    MAGENTA = "\033[95m"
    CYAN = "\033[96m"
    WHITE = "\033[97m"
    BOLD = "\033[1m"
    DIM = "\033[2m"
    RESET = "\033[0m"

    _disabled = False

    @classmethod
    def disable(cls) -> None:
        """Disable all color codes (for non-TTY output)."""
        if cls._disabled:
            return
        cls._disabled = True
        for attr in dir(cls):
            if not attr.startswith("_") and attr.isupper():
                setattr(cls, attr, "")

    @classmethod
    def init(cls) -> None:
        """Initialize colors based on terminal capability."""
        if not is_tty():
            cls.disable()


# Initialize colors on module load
Colors.init()


def print_banner() -> None:
    """Print the application banner."""
    C = Colors.CYAN
    W = Colors.WHITE
    B = Colors.BOLD
    D = Colors.DIM
    R = Colors.RESET

    print()
    print(f"{C}╔══════════════════════════════════════════════════════════════════════╗{R}")
    print(f"{C}║{R}{B}{W}                  AUTODESK CONSTRUCTION CLOUD BACKUP                  {R}{C}║{R}")
    print(f"{C}╠══════════════════════════════════════════════════════════════════════╣{R}")
    print(f"{C}║{R} {D}Pipelined Enumeration  •  Incremental Reuse  •  Backup Rotation{R}      {C}║{R}")
    print(f"{C}╚══════════════════════════════════════════════════════════════════════╝{R}")
    print()


def print_header(text: str) -> None:
    """Print a section header."""
    width = min(get_terminal_width() - 4, 76)
    line_len = max(0, width - len(text) - 5)
    print(f"\n{Colors.MAGENTA}{Colors.BOLD}{'─' * 3} {text} {'─' * line_len}{Colors.RESET}")


def print_success(text: str) -> None:
    """Print a success message."""
    print(f"  {Colors.GREEN}✓{Colors.RESET} {text}")


def print_error(text: str) -> None:
    """Print an error message."""
    print(f"  {Colors.RED}✗{Colors.RESET} {text}")


def print_warning(text: str) -> None:
    """Print a warning message."""
    print(f"  {Colors.YELLOW}⚠{Colors.RESET} {text}")


def print_info(text: str) -> None:
    """Print an info message."""
    print(f"  {Colors.CYAN}ℹ{Colors.RESET} {text}")


# ----------------------------------------------------------------------
# Run summary
# ----------------------------------------------------------------------

def _mb(projects: list[ProjectBackup]) -> tuple[float, float]:
    """(size on disk, size reported by the API) in MB over all files."""
    files = [f for p in projects for f in p.project.files_recursive]
    on_disk = round(sum(f.size_on_disk_mb for f in files), 2)
    reported = round(sum(f.api_reported_size_mb for f in files), 2)
    return on_disk, reported


def _run_duration(projects: list[ProjectBackup]) -> float:
    started = [p.started_at for p in projects if p.started_at is not None]
    finished = [p.finished_at for p in projects if p.finished_at is not None]
    if not started or not finished:
        return 0.0
    return (max(finished) - min(started)).total_seconds()


def summary_line(backup: ProjectBackup) -> str:
    """One line per project: status, sizes, duration, file and folder counts."""
    project = backup.project
    files = list(project.files_recursive)
    folders = list(project.subfolders_recursive)
    on_disk, reported = _mb([backup])

    return (
        f"  + [{backup.status.value}] {backup.name} ({backup.project_id}) - "
        f"{on_disk}/{reported} MB in {human_time(backup.duration_seconds)} - "
        f"{sum(1 for f in files if f.downloaded)}/{len(files)} files backed up in "
        f"{sum(1 for f in folders if f.created)}/{len(folders)} folders"
    )


def summary_header(projects: list[ProjectBackup]) -> str:
    statuses = [p.status for p in projects]
    on_disk, reported = _mb(projects)
    return (
        f"ACCBackup: {len(projects)} projects "
        f"({statuses.count(BackupStatus.SUCCESS)} success, "
        f"{statuses.count(BackupStatus.PARTIAL_FAIL)} partial fail, "
        f"{statuses.count(BackupStatus.ERROR)} error) - "
        f"{on_disk}/{reported} MB in {human_time(_run_duration(projects))}"
    )


def build_summary(
    projects: list[ProjectBackup],
    sync_stats: "SyncStats | None" = None,
    pipeline_stats: "PipelineStats | None" = None,
    directory: str = "",
) -> list[str]:
    """
    Build the end-of-run summary as plain lines.

    Returns an empty list when no project took part in the run.
    """
    if not projects:
        return []

    on_disk, reported = _mb(projects)
    lines = [f"  => {summary_header(projects)}"]
    lines.extend(summary_line(p) for p in projects)
    lines.append(
        f"  => Backed up {on_disk}/{reported} MB in {human_time(_run_duration(projects))} to {directory}"
    )

    if sync_stats is not None:
        lines.append(
            f"  => Incremental: {sync_stats.files_copied} files copied "
            f"({human_size(sync_stats.bytes_copied)}), {sync_stats.files_downloaded} files downloaded "
            f"({human_size(sync_stats.bytes_downloaded)}), {sync_stats.efficiency_percent}% reused"
        )

    if pipeline_stats is not None:
        lines.append(
            f"  => Pipeline: {human_time(pipeline_stats.active_seconds)} active, "
            f"{human_time(pipeline_stats.idle_seconds)} idle, "
            f"{pipeline_stats.efficiency_percent}% efficiency"
        )

    return lines


def log_summary_line(backup: ProjectBackup) -> None:
    """Log a project's summary line at a level matching its status."""
    line = summary_line(backup)
    if backup.status is BackupStatus.SUCCESS:
        logger.info(line)
    elif backup.status is BackupStatus.PARTIAL_FAIL:
        logger.warning(line)
    else:
        logger.error(line)


def log_summary(lines: list[str]) -> None:
    """Log a summary built by ``build_summary()`` inside a frame."""
    logger.info(SUMMARY_RULE)
    logger.info(" => BACKUP SUMMARY")
    logger.info(SUMMARY_RULE)
    for line in lines:
        logger.info(line)
    logger.info(SUMMARY_RULE)


def print_summary(projects: list[ProjectBackup], cancelled: bool = False) -> None:
    """Print the closing status of a run."""
    if cancelled:
        print_header(f"{Colors.YELLOW}BACKUP INTERRUPTED{Colors.RESET}")
    else:
        print_header(f"{Colors.GREEN}BACKUP COMPLETE{Colors.RESET}")

    print()
    print(f"    Completed:    {datetime.now().strftime('%Y-%m-%d %H:%M:%S')}")
    for backup in projects:
        color = {
            BackupStatus.SUCCESS: Colors.GREEN,
            BackupStatus.PARTIAL_FAIL: Colors.YELLOW,
            BackupStatus.ERROR: Colors.RED,
        }[backup.status]
        print(f"    {color}[{backup.status.value}]{Colors.RESET} {backup.name}")
    print()

    failed = [p for p in projects if p.status is not BackupStatus.SUCCESS]
    print(f"  {'─' * 60}")
    if cancelled:
        print(f"  {Colors.YELLOW}⚠{Colors.RESET} Interrupted. Run again to continue.")
    elif failed:
        print(f"  {Colors.YELLOW}⚠{Colors.RESET} Completed with {len(failed)} failed projects. Check log.")
    else:
        print(f"  {Colors.GREEN}✓{Colors.RESET} {Colors.BOLD}All done!{Colors.RESET} Projects safely backed up.")
    print(f"  {'─' * 60}")
    print()
