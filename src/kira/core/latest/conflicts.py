"""Conflict extraction and display.

Reads files git reports as unmerged and renders every `<<<<<<<` / `=======` /
`>>>>>>>` region with a few lines of surrounding context, as plain text that
can be copied straight out of the terminal.
"""

import logging
from collections.abc import Sequence
from dataclasses import dataclass
from pathlib import Path

from kira.core.git.abc import Git
from kira.core.latest.classifier import extract_conflicting_files
from kira.core.latest.errors import ConflictFileError
from kira.core.latest.reporting import RULE, Emit
from kira.core.latest.types import (
    ConflictRegion,
    FileConflict,
    RepositoryConflicts,
    RepositoryInfo,
    RepositoryState,
    RepositoryStateInfo,
)
from kira.core.subprocess import GitCommandError

logger = logging.getLogger(__name__)

CONFLICT_MARKER_START = "<<<<<<<"
CONFLICT_MARKER_SEPARATOR = "======="
CONFLICT_MARKER_END = ">>>>>>>"

CONTEXT_SIZE = 3
MAX_CONFLICT_FILE_SIZE = 1024 * 1024

BANNER = "═" * 63


@dataclass(frozen=True)
class ConflictMarker:
    line_index: int
    marker: str
    content: str  # Full line, including any branch label


def read_conflicting_file(repo: RepositoryInfo, file_path: str) -> bytes:
    """Read a conflicting file relative to the repository.

    Raises:
        ConflictFileError: If the file is missing, unreadable, binary or over 1 MiB
    """
    path = Path(file_path)
    if not path.is_absolute():
        path = repo.path / path

    if not path.exists():
        raise ConflictFileError(f"file does not exist: {path}")

    try:
        content = path.read_bytes()
    except OSError as e:
        raise ConflictFileError(f"failed to read file {path}: {e}") from e

    if b"\x00" in content:
        raise ConflictFileError(f"file appears to be binary: {path}")

    if len(content) > MAX_CONFLICT_FILE_SIZE:
        raise ConflictFileError(
            f"file is too large ({len(content)} bytes, max {MAX_CONFLICT_FILE_SIZE}): {path}"
        )

    return content


def extract_context_lines(
    lines: Sequence[str], start: int, end: int, size: int
) -> tuple[list[str], list[str]]:
    """Up to `size` lines before index `start` and from index `end` onwards."""
    before = list(lines[max(start - size, 0) : start])
    after = list(lines[end : min(end + size, len(lines))])
    return before, after


def find_conflict_markers(content: str) -> list[ConflictMarker]:
    markers: list[ConflictMarker] = []
    for index, line in enumerate(content.splitlines()):
        trimmed = line.strip()
        if trimmed.startswith(CONFLICT_MARKER_START):
            markers.append(ConflictMarker(index, CONFLICT_MARKER_START, line))
        elif trimmed == CONFLICT_MARKER_SEPARATOR:
            # Only the exact separator; longer runs of "=" are ordinary content
            markers.append(ConflictMarker(index, CONFLICT_MARKER_SEPARATOR, line))
        elif trimmed.startswith(CONFLICT_MARKER_END):
            markers.append(ConflictMarker(index, CONFLICT_MARKER_END, line))
    return markers


def parse_conflict_markers(file_path: str, content: str) -> list[ConflictRegion]:
    """Extract well-formed conflict regions in file order.

    A start marker not followed by a separator and then an end marker is
    skipped, along with everything up to the next start marker.
    """
    lines = content.splitlines()
    markers = find_conflict_markers(content)
    regions: list[ConflictRegion] = []

    i = 0
    while i < len(markers):
        if markers[i].marker != CONFLICT_MARKER_START:
            i += 1
            continue
        start = markers[i]
        i += 1

        if i >= len(markers) or markers[i].marker != CONFLICT_MARKER_SEPARATOR:
            i = _skip_to_next_start(markers, i)
            continue
        separator = markers[i]
        i += 1

        if i >= len(markers) or markers[i].marker != CONFLICT_MARKER_END:
            i = _skip_to_next_start(markers, i)
            continue
        end = markers[i]
        i += 1

        before, after = extract_context_lines(
            lines, start.line_index, end.line_index + 1, CONTEXT_SIZE
        )
        regions.append(
            ConflictRegion(
                start_marker=start.content,
                our_content="\n".join(lines[start.line_index + 1 : separator.line_index]),
                separator=separator.content,
                their_content="\n".join(lines[separator.line_index + 1 : end.line_index]),
                end_marker=end.content,
                context_before=tuple(before),
                context_after=tuple(after),
            )
        )

    if not regions and markers:
        logger.debug("No well-formed conflict regions in %s", file_path)
    return regions


def _skip_to_next_start(markers: Sequence[ConflictMarker], i: int) -> int:
    while i < len(markers) and markers[i].marker != CONFLICT_MARKER_START:
        i += 1
    return i


def parse_conflicts_from_repository(
    git: Git, repo: RepositoryInfo, state_info: RepositoryStateInfo
) -> RepositoryConflicts | None:
    """Parse every unmerged file of a repository in CONFLICTS_EXIST state.

    Files that cannot be read are kept with their error so they still show up
    in the report.

    Raises:
        GitCommandError: If `git status` fails
    """
    if state_info.state is not RepositoryState.CONFLICTS_EXIST:
        return None

    files: list[FileConflict] = []
    for file_path in extract_conflicting_files(git.get_status_porcelain(repo.path)):
        try:
            content = read_conflicting_file(repo, file_path)
        except ConflictFileError as e:
            files.append(FileConflict(repo_name=repo.name, file_path=file_path, error=e))
            continue

        text = content.decode("utf-8", errors="replace")
        files.append(
            FileConflict(
                repo_name=repo.name,
                file_path=file_path,
                regions=tuple(parse_conflict_markers(file_path, text)),
            )
        )

    return RepositoryConflicts(repo=repo, files=tuple(files))


def format_conflict_for_display(conflict: ConflictRegion, file_path: str) -> str:
    parts = [f"File: {file_path}\n\n"]

    if conflict.context_before:
        parts.append(f"Context ({CONTEXT_SIZE} lines before):\n")
        parts.extend(f"  {line}\n" for line in conflict.context_before)
        parts.append("\n")

    # Markers and content are printed unindented so they can be pasted back as-is
    parts.append(f"{conflict.start_marker}\n")
    if conflict.our_content:
        parts.append(conflict.our_content.rstrip("\n") + "\n")
    parts.append(f"{conflict.separator}\n")
    if conflict.their_content:
        parts.append(conflict.their_content.rstrip("\n") + "\n")
    parts.append(f"{conflict.end_marker}\n")

    if conflict.context_after:
        parts.append(f"\nContext ({CONTEXT_SIZE} lines after):\n")
        parts.extend(f"  {line}\n" for line in conflict.context_after)

    return "".join(parts)


def format_file_conflicts(file_conflict: FileConflict) -> str:
    if file_conflict.error is not None:
        return f"File: {file_conflict.file_path}\n  [Error: {file_conflict.error}]\n\n"

    if not file_conflict.regions:
        return (
            f"File: {file_conflict.file_path}\n"
            "  [No conflict regions found - file may have been resolved]\n\n"
        )

    sections = [
        format_conflict_for_display(region, file_conflict.file_path)
        for region in file_conflict.regions
    ]
    return f"File: {file_conflict.file_path}\n\n" + f"\n{RULE}\n\n".join(sections)


def format_repository_conflicts(repo_conflicts: RepositoryConflicts) -> str:
    if not repo_conflicts.files:
        return ""
    body = "\n\n".join(format_file_conflicts(f) for f in repo_conflicts.files)
    return f"Repository: {repo_conflicts.repo.name}\n{RULE}\n\n{body}"


def format_all_conflicts(all_conflicts: Sequence[RepositoryConflicts]) -> str:
    """Full conflict report followed by resolution instructions."""
    if not all_conflicts:
        return ""

    parts = [f"{BANNER}\nMerge Conflicts Detected\n{BANNER}\n\n"]
    parts.append("\n\n".join(format_repository_conflicts(rc) for rc in all_conflicts))
    parts.append(
        f"\n\n{RULE}\n"
        "To resolve conflicts:\n"
        "1. Edit each file above and resolve the marked regions\n"
        "2. Stage the resolved files with 'git add'\n"
        "3. Run 'git rebase --continue' in that repository\n"
        "4. Run 'kira latest' again to continue\n\n"
        "To abort an in-progress rebase in a repository, "
        "run 'git rebase --abort' in that repository.\n"
    )
    return "".join(parts)


def display_all_conflicts(
    git: Git, state_infos: Sequence[RepositoryStateInfo], emit: Emit
) -> list[RepositoryConflicts]:
    """Parse and print conflicts of every CONFLICTS_EXIST repository.

    A repository whose status cannot be read is reported as a warning and
    skipped.

    Returns:
        The parsed conflicts that were displayed
    """
    all_conflicts: list[RepositoryConflicts] = []
    for state_info in state_infos:
        if state_info.state is not RepositoryState.CONFLICTS_EXIST:
            continue
        try:
            repo_conflicts = parse_conflicts_from_repository(git, state_info.repo, state_info)
        except GitCommandError as e:
            emit(
                f"Warning: Failed to parse conflicts from repository "
                f"{state_info.repo.name}: {e}"
            )
            continue
        if repo_conflicts is not None and repo_conflicts.files:
            all_conflicts.append(repo_conflicts)

    if all_conflicts:
        emit("")
        emit(format_all_conflicts(all_conflicts).rstrip("\n"))
    return all_conflicts
