import asyncio
import subprocess
from pathlib import Path

import pytest

from snap.snapshot import SnapshotError, Snapshotter


def _run(cmd: list[str], cwd: Path) -> str:
    return subprocess.run(cmd, cwd=cwd, check=True, text=True, capture_output=True).stdout


def _init_git_repo(repo_path: Path) -> None:
    _run(["git", "init"], cwd=repo_path)
    _run(["git", "config", "user.email", "test@example.com"], cwd=repo_path)
    _run(["git", "config", "user.name", "Test User"], cwd=repo_path)
    (repo_path / "seed.txt").write_text("seed\n", encoding="utf-8")
    _run(["git", "add", "seed.txt"], cwd=repo_path)
    _run(["git", "commit", "-m", "seed"], cwd=repo_path)


def test_clean_tree_creates_no_snapshot(tmp_path: Path) -> None:
    _init_git_repo(tmp_path)

    created = asyncio.run(Snapshotter(tmp_path).capture("snap: TASK1 step 1/10 — Implement"))

    assert created is False
    assert _run(["git", "stash", "list"], cwd=tmp_path) == ""


def test_snapshot_leaves_tree_and_index_untouched(tmp_path: Path) -> None:
    _init_git_repo(tmp_path)
    (tmp_path / "seed.txt").write_text("changed\n", encoding="utf-8")
    (tmp_path / "staged.txt").write_text("staged\n", encoding="utf-8")
    _run(["git", "add", "staged.txt"], cwd=tmp_path)
    (tmp_path / "new.txt").write_text("untracked\n", encoding="utf-8")
    status_before = _run(["git", "status", "--porcelain"], cwd=tmp_path)

    created = asyncio.run(Snapshotter(tmp_path).capture("snap: TASK1 step 2/10 — Ensure completeness"))

    assert created is True
    assert _run(["git", "status", "--porcelain"], cwd=tmp_path) == status_before
    assert (tmp_path / "seed.txt").read_text(encoding="utf-8") == "changed\n"
    stash = _run(["git", "stash", "list"], cwd=tmp_path)
    assert "snap: TASK1 step 2/10 — Ensure completeness" in stash
    snapshot_files = _run(["git", "ls-tree", "-r", "--name-only", "stash@{0}"], cwd=tmp_path)
    assert "new.txt" in snapshot_files


def test_is_git_repo(tmp_path: Path) -> None:
    assert Snapshotter.is_git_repo(tmp_path) is False
    _init_git_repo(tmp_path)
    assert Snapshotter.is_git_repo(tmp_path) is True


def test_capture_outside_repo_raises(tmp_path: Path) -> None:
    with pytest.raises(SnapshotError):
        Snapshotter(tmp_path).capture_sync("snap: TASK1 step 1/10 — Implement")
