"""Repository discovery for `kira latest`.

Determines the workspace topology and produces a validated, ordered list of
repositories. Nothing here mutates a repository.
"""

import logging
from collections.abc import Sequence
from pathlib import Path

from kira.core.config import KiraConfig, ProjectConfig
from kira.core.context import KiraContext
from kira.core.git.abc import Git
from kira.core.latest.errors import RepositoryValidationError, TrunkDetectionError
from kira.core.latest.types import RepositoryInfo, WorkspaceBehavior
from kira.core.subprocess import GitCommandError
from kira.core.work_item import extract_work_item_metadata, find_current_work_item

logger = logging.getLogger(__name__)

# Local branch names tried, in order, when no trunk branch is configured.
TRUNK_CANDIDATES: tuple[str, ...] = ("main", "master")


def find_repo_root(start: Path) -> Path | None:
    """Walk up from `start` to the nearest directory containing `.git`."""
    cur = start.resolve()
    for parent in [cur, *cur.parents]:
        if (parent / ".git").exists():
            return parent
    return None


def is_git_repository(path: Path) -> bool:
    """True if `path` has a `.git` directory, or a `.git` file for worktrees."""
    git_path = path / ".git"
    return git_path.is_dir() or git_path.is_file()


def resolve_project_path(project: ProjectConfig, repo_root: Path) -> Path | None:
    """Absolute path of a project; relative paths are taken from the repository root."""
    if project.path is None:
        return None
    path = Path(project.path).expanduser()
    if not path.is_absolute():
        path = repo_root / path
    return path.resolve()


def detect_workspace_behavior(config: KiraConfig, repo_root: Path) -> WorkspaceBehavior:
    """Determine the workspace type from configuration.

    - No workspace config or no projects: standalone
    - Any project with `repo_root`, an absolute path, or a path that is its own
      git repository: polyrepo
    - Otherwise the projects live inside this repository: monorepo
    """
    if config.workspace is None or not config.workspace.projects:
        return WorkspaceBehavior.STANDALONE

    for project in config.workspace.projects:
        if project.repo_root is not None:
            return WorkspaceBehavior.POLYREPO

    for project in config.workspace.projects:
        if project.path is None:
            continue
        if Path(project.path).expanduser().is_absolute():
            return WorkspaceBehavior.POLYREPO
        resolved = resolve_project_path(project, repo_root)
        if resolved is not None and resolved != repo_root and is_git_repository(resolved):
            return WorkspaceBehavior.POLYREPO

    return WorkspaceBehavior.MONOREPO


def autodetect_trunk_branch(
    git: Git,
    repo_path: Path,
    remote: str,
    candidates: Sequence[str] = TRUNK_CANDIDATES,
) -> str:
    """Detect the trunk branch of a repository without configuration.

    Policy:
    1. Exactly one candidate exists locally: use it.
    2. Several candidates exist: use the one the remote's HEAD points to.
    3. None exist: use the remote's HEAD branch.

    Raises:
        TrunkDetectionError: If the policy does not yield a single branch
    """
    try:
        existing = [name for name in candidates if git.branch_exists(repo_path, name)]
        remote_head = git.get_remote_default_branch(repo_path, remote)
    except GitCommandError as e:
        raise TrunkDetectionError(f"failed to detect trunk branch in {repo_path}: {e}") from e

    logger.debug(
        "Trunk detection in %s: local candidates=%s remote HEAD=%s",
        repo_path,
        existing,
        remote_head,
    )

    if len(existing) == 1:
        return existing[0]

    if len(existing) > 1:
        if remote_head in existing:
            return remote_head
        names = " and ".join(f"'{name}'" for name in existing)
        raise TrunkDetectionError(
            f"both {names} branches exist in {repo_path}: cannot auto-detect trunk branch. "
            "Configure `git.trunk_branch` explicitly in kira.yml to specify which branch to use"
        )

    if remote_head is not None:
        return remote_head

    names = " nor ".join(f"'{name}'" for name in candidates)
    raise TrunkDetectionError(
        f"trunk branch not found in {repo_path}: neither {names} branch exists and "
        f"remote '{remote}' has no default branch. "
        "Create a trunk branch or configure `git.trunk_branch` in kira.yml"
    )


def resolve_remote(config: KiraConfig, project: ProjectConfig | None) -> str:
    """Resolve remote with priority: project override > git.remote > "origin"."""
    if project is not None and project.remote is not None:
        return project.remote
    return config.default_remote


def resolve_trunk_branch(
    git: Git,
    config: KiraConfig,
    project: ProjectConfig | None,
    repo_path: Path,
) -> str:
    """Resolve trunk with priority: project override > git.trunk_branch > auto-detect."""
    if project is not None and project.trunk_branch is not None:
        return project.trunk_branch
    if config.git.trunk_branch is not None:
        return config.git.trunk_branch
    return autodetect_trunk_branch(git, repo_path, resolve_remote(config, project))


def resolve_repositories(
    git: Git,
    config: KiraConfig,
    behavior: WorkspaceBehavior,
    repo_root: Path,
) -> list[RepositoryInfo]:
    """Build the repository list for the given workspace behavior.

    Standalone and monorepo workspaces are a single unit: the enclosing
    repository. Polyrepo workspaces yield one repository per project with a path,
    in declaration order.
    """
    if behavior in (WorkspaceBehavior.STANDALONE, WorkspaceBehavior.MONOREPO):
        return [
            RepositoryInfo(
                # Directory name, not the branch name, identifies the repository
                name=repo_root.name,
                path=repo_root,
                trunk_branch=resolve_trunk_branch(git, config, None, repo_root),
                remote=resolve_remote(config, None),
            )
        ]

    projects = config.workspace.projects if config.workspace is not None else ()
    repos: list[RepositoryInfo] = []
    for project in projects:
        path = resolve_project_path(project, repo_root)
        if path is None:
            logger.debug("Skipping project %s: no path configured", project.name)
            continue

        # Missing paths surface in validate_repositories with every other failure.
        if is_git_repository(path):
            trunk_branch = resolve_trunk_branch(git, config, project, path)
        else:
            trunk_branch = project.trunk_branch or config.git.trunk_branch or ""

        repos.append(
            RepositoryInfo(
                name=project.name or path.name,
                path=path,
                trunk_branch=trunk_branch,
                remote=resolve_remote(config, project),
                repo_root=project.repo_root,
            )
        )
    return repos


def validate_repositories(repos: Sequence[RepositoryInfo]) -> None:
    """Check that every repository exists and is a git repository.

    Raises:
        RepositoryValidationError: Listing every failing repository, not just the first
    """
    problems: list[str] = []
    for repo in repos:
        if not repo.path.exists():
            problems.append(f"repository path does not exist: {repo.path} (for {repo.name})")
            continue
        if not is_git_repository(repo.path):
            problems.append(f"path is not a git repository: {repo.path} (for {repo.name})")

    if problems:
        raise RepositoryValidationError(problems)


def order_repositories_by_dependencies(repos: Sequence[RepositoryInfo]) -> list[RepositoryInfo]:
    """Order repositories so that members of a shared root are contiguous.

    Groups appear in order of their first member; members keep declaration
    order. Repositories without a shared root follow, in declaration order.
    """
    grouped: dict[str, list[RepositoryInfo]] = {}
    standalone: list[RepositoryInfo] = []
    for repo in repos:
        if repo.repo_root:
            grouped.setdefault(repo.repo_root, []).append(repo)
        else:
            standalone.append(repo)

    ordered: list[RepositoryInfo] = []
    for group in grouped.values():
        ordered.extend(group)
    ordered.extend(standalone)
    return ordered


def group_indices_by_root(repos: Sequence[RepositoryInfo]) -> list[list[int]]:
    """Positions of `repos` split into scheduling groups.

    Repositories sharing a root form one group, in list order, and so do
    repositories that resolve to the same working tree. Every other repository
    is a group of its own. Groups are ordered by first member.
    """
    groups: list[list[int]] = []
    by_key: dict[tuple[str, str], list[int]] = {}
    for index, repo in enumerate(repos):
        keys = [("path", str(repo.path.resolve()))]
        if repo.repo_root:
            keys.append(("root", repo.repo_root))

        group = next((by_key[key] for key in keys if key in by_key), None)
        if group is None:
            group = []
            groups.append(group)
        group.append(index)
        for key in keys:
            by_key.setdefault(key, group)
    return groups


def discover_repositories(ctx: KiraContext) -> tuple[str, list[RepositoryInfo]]:
    """Find the current work item and resolve the repositories it spans.

    Returns:
        Tuple of (work item ID, validated repositories in declaration order)

    Raises:
        WorkItemError: If no work item is in progress
        RepositoryValidationError: If the cwd or any repository is not a git repository
        TrunkDetectionError: If a trunk branch cannot be resolved
    """
    work_item_path = find_current_work_item(ctx.config)
    metadata = extract_work_item_metadata(work_item_path)
    logger.debug("Current work item: %s (%s)", metadata.id, work_item_path)

    repo_root = find_repo_root(ctx.cwd)
    if repo_root is None:
        raise RepositoryValidationError([f"not a git repository: {ctx.cwd}"])

    behavior = detect_workspace_behavior(ctx.config, repo_root)
    logger.debug("Workspace behavior: %s", behavior.value)

    repos = resolve_repositories(ctx.git, ctx.config, behavior, repo_root)
    validate_repositories(repos)
    return metadata.id, repos
