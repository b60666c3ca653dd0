"""Lookup of the work item currently in progress.

Work items are markdown files with YAML front matter that move between status
folders under the work folder. `kira latest` only needs to know which item is
in the "doing" folder.
"""

from dataclasses import dataclass
from pathlib import Path

import frontmatter
import yaml

from kira.core.config import KiraConfig
from kira.core.errors import WorkItemError, WorkspaceNotInitializedError


@dataclass(frozen=True)
class WorkItemMetadata:
    """Front matter fields of a work item."""

    id: str
    title: str
    status: str
    kind: str
    filepath: Path


def ensure_work_dir(config: KiraConfig) -> Path:
    """Return the work folder, raising if the workspace was never initialized."""
    work_dir = config.work_folder_path
    if not work_dir.is_dir():
        raise WorkspaceNotInitializedError(
            f"not a kira workspace (no {work_dir.name} directory found at {work_dir}). "
            "Run 'kira init' first"
        )
    return work_dir


def find_current_work_item(config: KiraConfig) -> Path:
    """Locate the work item file in the doing folder.

    When several items are in progress the first one by file name is used.

    Raises:
        WorkItemError: If the doing folder is missing or holds no markdown files
    """
    doing_path = config.work_folder_path / config.doing_folder
    if not doing_path.is_dir():
        raise WorkItemError(f"doing folder not found at {doing_path}: no work item in progress")

    work_items = sorted(p for p in doing_path.iterdir() if p.is_file() and p.suffix == ".md")
    if not work_items:
        raise WorkItemError(
            f"no work item found in doing folder ({doing_path}): start a work item first"
        )
    return work_items[0]


def extract_work_item_metadata(path: Path) -> WorkItemMetadata:
    """Parse the YAML front matter of a work item file.

    Missing fields default to empty strings.

    Raises:
        WorkItemError: If the file cannot be read or its front matter is invalid
    """
    try:
        post = frontmatter.load(str(path))
    except OSError as e:
        raise WorkItemError(f"failed to read work item file {path}: {e}") from e
    except yaml.YAMLError as e:
        raise WorkItemError(f"failed to parse front matter of {path}: {e}") from e

    def _field(key: str) -> str:
        value = post.metadata.get(key)
        return "" if value is None else str(value)

    return WorkItemMetadata(
        id=_field("id"),
        title=_field("title"),
        status=_field("status"),
        kind=_field("kind"),
        filepath=path,
    )
