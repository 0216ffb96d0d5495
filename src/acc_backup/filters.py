"""Project selection logic for ACC Backup."""

from collections.abc import Iterable

from .models import Project

# Demo project every account is provisioned with
SAMPLE_PROJECT_NAME = "Sample Project"

# Project ids returned by the API carry this prefix even though the web UI
# shows the bare GUID
PROJECT_ID_PREFIX = "b."


def parse_project_list(value: str | None) -> list[str]:
    """
    Parse a comma-separated list of project names or ids.

    Args:
        value: String like "Tower A, 1234-abcd"

    Returns:
        List of trimmed, non-empty entries in their original order
    """
    if not value:
        return []
    return [item.strip() for item in value.split(",") if item.strip()]


def _match_keys(entries: Iterable[str]) -> set[str]:
    """Lowercase every entry and add its ``b.``-prefixed form."""
    keys = set()
    for entry in entries:
        key = entry.strip().lower()
        if key:
            keys.add(key)
            keys.add(f"{PROJECT_ID_PREFIX}{key}")
    return keys


def should_skip_project(
    project: Project,
    include: set[str],
    exclude: set[str],
) -> tuple[bool, str]:
    """
    Determine if a project should be left out of the backup.

    Args:
        project: Candidate project
        include: Match keys of projects to back up (empty means all)
        exclude: Match keys of projects to leave out

    Returns:
        Tuple of (should_skip: bool, reason: str)
        Reason is empty string if not skipping.
    """
    if project.name == SAMPLE_PROJECT_NAME:
        return True, "sample"

    candidates = {project.name.lower(), project.project_id.lower()}

    # Exclusions win over inclusions
    if exclude and candidates & exclude:
        return True, "excluded"

    if include and not candidates & include:
        return True, "not selected"

    return False, ""


def filter_projects(
    projects: Iterable[Project],
    projects_to_backup: Iterable[str] = (),
    projects_to_exclude: Iterable[str] = (),
) -> list[Project]:
    """
    Select the projects of a run by name or id, case-insensitively.

    Ids match with or without the ``b.`` prefix.
    """
    include = _match_keys(projects_to_backup)
    exclude = _match_keys(projects_to_exclude)
    return [p for p in projects if not should_skip_project(p, include, exclude)[0]]
