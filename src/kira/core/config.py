"""Workspace configuration data structures and loading.

Provides immutable configuration loaded from `kira.yml` at the workspace root
(or the legacy `.work/kira.yml`). Only the settings the synchronization engine
consumes are modelled; unknown keys are ignored.
"""

from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

import yaml

from kira.core.errors import ConfigError

CONFIG_FILENAME = "kira.yml"
DEFAULT_WORK_FOLDER = ".work"
DEFAULT_REMOTE = "origin"
DEFAULT_DOING_FOLDER = "2_doing"


@dataclass(frozen=True)
class GitConfig:
    """Global git defaults (`git:` section)."""

    trunk_branch: str | None = None
    remote: str | None = None


@dataclass(frozen=True)
class ProjectConfig:
    """One entry of `workspace.projects`."""

    name: str
    path: str | None = None
    repo_root: str | None = None
    remote: str | None = None
    trunk_branch: str | None = None


@dataclass(frozen=True)
class WorkspaceConfig:
    """The `workspace:` section."""

    work_folder: str = DEFAULT_WORK_FOLDER
    projects: tuple[ProjectConfig, ...] = ()


@dataclass(frozen=True)
class KiraConfig:
    """Immutable kira configuration.

    Loaded once at CLI entry point and stored in KiraContext.
    `workspace` is None when kira.yml has no `workspace:` section.
    """

    config_dir: Path
    git: GitConfig = field(default_factory=GitConfig)
    workspace: WorkspaceConfig | None = None
    status_folders: dict[str, str] = field(default_factory=dict)

    @property
    def default_remote(self) -> str:
        return self.git.remote or DEFAULT_REMOTE

    @property
    def work_folder_path(self) -> Path:
        work_folder = DEFAULT_WORK_FOLDER
        if self.workspace is not None and self.workspace.work_folder.strip():
            work_folder = self.workspace.work_folder.strip()
        return (self.config_dir / work_folder).resolve()

    @property
    def doing_folder(self) -> str:
        return self.status_folders.get("doing") or DEFAULT_DOING_FOLDER
        for project in self.workspace.projects:
            if project.name == name:
                return project
        return None


def find_config_path(config_dir: Path) -> Path | None:
    """Locate kira.yml, preferring the root file over the legacy location."""
    candidates = (config_dir / CONFIG_FILENAME, config_dir / DEFAULT_WORK_FOLDER / CONFIG_FILENAME)
    for candidate in candidates:
        if candidate.is_file():
            return candidate
    return None


def load_config(config_dir: Path) -> KiraConfig:
    """Load kira.yml from the given directory if present; otherwise return defaults.

    Example config:
      git:
        trunk_branch: main
        remote: origin
      workspace:
        projects:
          - name: api
            path: ../api
            trunk_branch: develop
          - name: web
            path: ../web
            repo_root: ../

    Raises:
        ConfigError: If the file cannot be parsed or has invalid structure
    """
    config_dir = config_dir.resolve()
    cfg_path = find_config_path(config_dir)
    if cfg_path is None:
        return KiraConfig(config_dir=config_dir)

    try:
        data = yaml.safe_load(cfg_path.read_text(encoding="utf-8"))
    except yaml.YAMLError as e:
        raise ConfigError(f"failed to parse config file {cfg_path}: {e}") from e
    except OSError as e:
        raise ConfigError(f"failed to read config file {cfg_path}: {e}") from e

    if data is None:
        data = {}
    if not isinstance(data, dict):
        raise ConfigError(f"invalid config file {cfg_path}: expected a mapping at top level")

    return KiraConfig(
        config_dir=config_dir,
        git=_parse_git(_section(data, "git", cfg_path)),
        workspace=_parse_workspace(data.get("workspace"), cfg_path),
        status_folders={
            str(k): str(v) for k, v in _section(data, "status_folders", cfg_path).items()
        },
    )


def _section(data: dict[str, Any], key: str, cfg_path: Path) -> dict[str, Any]:
    value = data.get(key)
    if value is None:
        return {}
    if not isinstance(value, dict):
        raise ConfigError(f"invalid config file {cfg_path}: '{key}' must be a mapping")
    return value


def _optional_str(value: Any) -> str | None:
    if value is None:
        return None
    text = str(value).strip()
    return text or None


def _parse_git(section: dict[str, Any]) -> GitConfig:
    return GitConfig(
        trunk_branch=_optional_str(section.get("trunk_branch")),
        remote=_optional_str(section.get("remote")),
    )


def _parse_workspace(section: Any, cfg_path: Path) -> WorkspaceConfig | None:
    if section is None:
        return None
    if not isinstance(section, dict):
        raise ConfigError(f"invalid config file {cfg_path}: 'workspace' must be a mapping")

    raw_projects = section.get("projects") or []
    if not isinstance(raw_projects, list):
        raise ConfigError(f"invalid config file {cfg_path}: 'workspace.projects' must be a list")

    projects: list[ProjectConfig] = []
    seen: set[str] = set()
    for index, raw in enumerate(raw_projects):
        if not isinstance(raw, dict):
            raise ConfigError(
                f"invalid config file {cfg_path}: workspace.projects[{index}] must be a mapping"
            )
        name = _optional_str(raw.get("name"))
        if name is None:
            raise ConfigError(
                f"invalid config file {cfg_path}: workspace.projects[{index}] is missing 'name'"
            )
        if name in seen:
            raise ConfigError(f"invalid config file {cfg_path}: duplicate project name '{name}'")
        seen.add(name)
        projects.append(
            ProjectConfig(
                name=name,
                path=_optional_str(raw.get("path")),
                repo_root=_optional_str(raw.get("repo_root")),
                remote=_optional_str(raw.get("remote")),
                trunk_branch=_optional_str(raw.get("trunk_branch")),
            )
        )

    return WorkspaceConfig(
        work_folder=_optional_str(section.get("work_folder")) or DEFAULT_WORK_FOLDER,
        projects=tuple(projects),
    )
