"""Error taxonomy for the synchronization engine.

Resolver and pre-flight errors are raised before anything is mutated.
Per-repository update errors are stored on `RepositoryOperationResult.error`
and never cross repository boundaries.
"""

from enum import Enum

from kira.core.errors import KiraError


class RepositoryValidationError(KiraError):
    """One or more resolved repositories are missing or not git repositories."""

    def __init__(self, problems: list[str]) -> None:
        self.problems = list(problems)
        super().__init__("repository validation failed:\n  " + "\n  ".join(self.problems))


class TrunkDetectionError(KiraError):
    """The trunk branch is not configured and cannot be auto-detected."""


class PreflightBlockedError(KiraError):
    """Some repositories are in a state that forbids starting an update."""

    def __init__(self, message: str, blocking_repos: list[str]) -> None:
        self.blocking_repos = list(blocking_repos)
        super().__init__(message)


class FetchErrorKind(Enum):
    NETWORK = "network"
    PERMISSION = "permission"
    MISSING_BRANCH = "missing_branch"
    MISSING_REMOTE = "missing_remote"
    OTHER = "other"


class FetchError(KiraError):
    """Fetching the trunk branch failed."""

    def __init__(self, message: str, kind: FetchErrorKind) -> None:
        self.kind = kind
        super().__init__(message)


class RebaseConflictError(KiraError):
    """A rebase or trunk update stopped on conflicts."""


class RebaseError(KiraError):
    """A rebase failed for a reason other than conflicts."""


class TrunkUpdateError(KiraError):
    """Fast-forwarding local trunk from the remote failed."""


class StashError(KiraError):
    """Stashing or restoring uncommitted changes failed."""


class ClassifierError(KiraError):
    """Git could not report the state of a repository."""


class OperationCancelledError(KiraError):
    """The batch was cancelled before this repository was started."""


class ConflictFileError(KiraError):
    """A conflicting file could not be read for display."""
