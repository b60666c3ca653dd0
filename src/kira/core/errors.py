"""Base exception types shared across kira."""


class KiraError(Exception):
    """Base class for errors that the CLI reports as `Error: <message>`."""


class ConfigError(KiraError):
    """Raised when kira.yml cannot be read or is malformed."""


class WorkItemError(KiraError):
    """Raised when the current work item cannot be located or parsed."""


class WorkspaceNotInitializedError(KiraError):
    """Raised when a command runs outside an initialized kira workspace."""
