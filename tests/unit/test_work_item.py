"""Tests for current work item lookup."""

from pathlib import Path

import pytest

from kira.core.config import KiraConfig
from kira.core.errors import WorkItemError, WorkspaceNotInitializedError
from kira.core.work_item import (
    ensure_work_dir,
    extract_work_item_metadata,
    find_current_work_item,
)
from tests.test_utils.workspace import build_workspace


def test_ensure_work_dir_requires_work_folder(tmp_path: Path) -> None:
    with pytest.raises(WorkspaceNotInitializedError, match="Run 'kira init' first"):
        ensure_work_dir(KiraConfig(config_dir=tmp_path))


def test_find_current_work_item_picks_first_by_name(tmp_path: Path) -> None:
    workspace = build_workspace(tmp_path)
    doing = workspace.work_item.parent
    (doing / "000-earlier.prd.md").write_text("---\nid: '000'\n---\n", encoding="utf-8")
    (doing / "notes.txt").write_text("not a work item", encoding="utf-8")

    found = find_current_work_item(KiraConfig(config_dir=workspace.root))

    assert found.name == "000-earlier.prd.md"


def test_find_current_work_item_without_items(tmp_path: Path) -> None:
    workspace = build_workspace(tmp_path, work_item=None)

    with pytest.raises(WorkItemError, match="no work item found"):
        find_current_work_item(KiraConfig(config_dir=workspace.root))


def test_find_current_work_item_without_doing_folder(tmp_path: Path) -> None:
    (tmp_path / ".work").mkdir()

    with pytest.raises(WorkItemError, match="doing folder not found"):
        find_current_work_item(KiraConfig(config_dir=tmp_path))


def test_custom_doing_folder(tmp_path: Path) -> None:
    workspace = build_workspace(tmp_path, doing_folder="active")
    config = KiraConfig(config_dir=workspace.root, status_folders={"doing": "active"})

    assert find_current_work_item(config) == workspace.work_item


def test_extract_metadata(tmp_path: Path) -> None:
    workspace = build_workspace(tmp_path)

    metadata = extract_work_item_metadata(workspace.work_item)

    assert metadata.id == "001"
    assert metadata.title == "Keep repositories in sync"
    assert metadata.status == "doing"
    assert metadata.kind == "prd"
    assert metadata.filepath == workspace.work_item


def test_extract_metadata_without_front_matter(tmp_path: Path) -> None:
    path = tmp_path / "plain.md"
    path.write_text("# Just a heading\n", encoding="utf-8")

    metadata = extract_work_item_metadata(path)

    assert metadata.id == ""
    assert metadata.title == ""


def test_extract_metadata_with_invalid_front_matter(tmp_path: Path) -> None:
    path = tmp_path / "broken.md"
    path.write_text("---\nid: [unclosed\n---\nbody\n", encoding="utf-8")

    with pytest.raises(WorkItemError, match="failed to parse front matter"):
        extract_work_item_metadata(path)
