"""Core types for the `kira latest` synchronization engine."""

from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path


class WorkspaceBehavior(Enum):
    """Inferred workspace topology."""

    STANDALONE = "standalone"
    MONOREPO = "monorepo"
    POLYREPO = "polyrepo"


class RepositoryState(Enum):
    """Health of one repository at classification time."""

    READY_FOR_UPDATE = "ready_for_update"
    DIRTY_WORKING_DIR = "dirty_working_directory"
    CONFLICTS_EXIST = "conflicts_exist"
    IN_REBASE = "in_rebase"
    IN_MERGE = "in_merge"
    ERROR = "error"

    @property
    def is_in_operation(self) -> bool:
        return self in (RepositoryState.IN_REBASE, RepositoryState.IN_MERGE)


class ExitCondition(Enum):
    """Overall outcome of a `kira latest` run."""

    SUCCESS = "success"
    PARTIAL_FAILURE = "partial_failure"
    PREFLIGHT_BLOCKED = "preflight_blocked"


@dataclass(frozen=True)
class RepositoryInfo:
    """A repository to synchronize.

    Fields:
        name: Project name (polyrepo) or directory base name
        path: Absolute path to the repository
        trunk_branch: Resolved trunk branch
        remote: Resolved remote name
        repo_root: Shared physical root for grouped checkouts, if any
    """

    name: str
    path: Path
    trunk_branch: str
    remote: str
    repo_root: str | None = None

    @property
    def remote_trunk_ref(self) -> str:
        return f"{self.remote}/{self.trunk_branch}"


@dataclass(frozen=True)
class RepositoryStateInfo:
    """Classified state of one repository."""

    repo: RepositoryInfo
    state: RepositoryState
    details: str = ""
    error: Exception | None = None


@dataclass(frozen=True)
class AggregatedState:
    """Worst-case state across repositories plus per-state name lists."""

    overall_state: RepositoryState
    state_infos: tuple[RepositoryStateInfo, ...] = ()
    ready_repos: tuple[str, ...] = ()
    dirty_repos: tuple[str, ...] = ()
    conflicting_repos: tuple[str, ...] = ()
    in_operation_repos: tuple[str, ...] = ()
    error_repos: tuple[str, ...] = ()


@dataclass(frozen=True)
class RepositoryOperationResult:
    """What happened to one repository during an update run.

    `steps` is the ordered log of actions; failed actions carry a " (failed)"
    suffix and a preserved stash is logged as "stash (kept)".
    """

    repo: RepositoryInfo
    steps: tuple[str, ...] = ()
    error: Exception | None = None
    had_stash: bool = False
    stash_popped: bool = False
    rebase_attempted: bool = False
    rebase_had_conflicts: bool = False
    rebase_aborted: bool = False

    @property
    def succeeded(self) -> bool:
        return self.error is None


@dataclass(frozen=True)
class ConflictRegion:
    """One `<<<<<<<` / `=======` / `>>>>>>>` region of a conflicted file."""

    start_marker: str
    our_content: str
    separator: str
    their_content: str
    end_marker: str
    context_before: tuple[str, ...] = ()
    context_after: tuple[str, ...] = ()


@dataclass(frozen=True)
class FileConflict:
    """All conflict regions found in a single file."""

    repo_name: str
    file_path: str
    regions: tuple[ConflictRegion, ...] = ()
    error: Exception | None = None


@dataclass(frozen=True)
class RepositoryConflicts:
    """Conflicted files of one repository."""

    repo: RepositoryInfo
    files: tuple[FileConflict, ...] = ()


@dataclass(frozen=True)
class LatestOutcome:
    """Result of `run_latest`, consumed by the CLI layer."""

    condition: ExitCondition
    results: tuple[RepositoryOperationResult, ...] = field(default_factory=tuple)
    message: str | None = None
