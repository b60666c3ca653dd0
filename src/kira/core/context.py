"""Application context with dependency injection."""

from dataclasses import dataclass
from pathlib import Path

from kira.core.config import KiraConfig, find_config_path, load_config
from kira.core.git.abc import Git
from kira.core.git.real import RealGit


@dataclass(frozen=True)
class KiraContext:
    """Immutable context holding all dependencies for kira operations.

    Created at CLI entry point and threaded through the application.
    Frozen to prevent accidental modification at runtime.
    """

    git: Git
    cwd: Path  # Current working directory at CLI invocation
    config: KiraConfig

    @staticmethod
    def for_test(
        git: Git | None = None,
        cwd: Path | None = None,
        config: KiraConfig | None = None,
    ) -> "KiraContext":
        """Create test context with optional pre-configured dependencies.

        Args:
            git: Optional Git implementation. If None, creates empty FakeGit.
            cwd: Optional current working directory. If None, uses Path("/test/default/cwd").
            config: Optional KiraConfig. If None, uses defaults rooted at `cwd`.

        Returns:
            KiraContext configured with provided values and test defaults
        """
        from tests.fakes.git import FakeGit

        resolved_cwd = cwd if cwd is not None else Path("/test/default/cwd")
        return KiraContext(
            git=git if git is not None else FakeGit(),
            cwd=resolved_cwd,
            config=config if config is not None else KiraConfig(config_dir=resolved_cwd),
        )


def discover_config_dir(cwd: Path) -> Path:
    """Walk up from `cwd` to the directory holding kira.yml.

    Falls back to `cwd` itself when no configuration file is found, so a bare
    repository still resolves to defaults.
    """
    start = cwd.resolve()
    for parent in [start, *start.parents]:
        if find_config_path(parent) is not None:
            return parent
    return start


def create_context() -> KiraContext:
    """Create production context with real implementations.

    Called at CLI entry point to create the context for the entire
    command execution.
    """
    cwd = Path.cwd()
    config = load_config(discover_config_dir(cwd))
    return KiraContext(git=RealGit(), cwd=cwd, config=config)
