from __future__ import annotations

import asyncio
import logging
import subprocess
from pathlib import Path

logger = logging.getLogger(__name__)


class SnapshotError(RuntimeError):
    """Raised when a git command used for snapshots fails."""


class Snapshotter:
    """Records the working tree as a stash entry without touching it.

    The index is written to a tree first, everything is staged so untracked
    files are captured, ``git stash create`` builds the commit object, and
    the original index is restored before the object is published to the
    stash reflog.
    """

    def __init__(self, repo_root: Path) -> None:
        self.repo_root = repo_root

    @staticmethod
    def is_git_repo(path: Path) -> bool:
        proc = subprocess.run(
            ["git", "--no-pager", "rev-parse", "--is-inside-work-tree"],
            cwd=path,
            text=True,
            capture_output=True,
        )
        return proc.returncode == 0 and proc.stdout.strip() == "true"

    def _run_git(self, args: list[str]) -> str:
        proc = subprocess.run(
            ["git", "--no-pager", *args],
            cwd=self.repo_root,
            text=True,
            capture_output=True,
        )
        if proc.returncode != 0:
            detail = (proc.stderr or proc.stdout).strip()
            raise SnapshotError(f"{' '.join(args)}: {detail}")
        return proc.stdout.strip()

    def _restore_index(self, tree_id: str) -> None:
        if not tree_id:
            self._run_git(["reset"])
            return
        self._run_git(["read-tree", tree_id])

    def capture_sync(self, message: str) -> bool:
        try:
            index_tree = self._run_git(["write-tree"])
        except SnapshotError as exc:
            raise SnapshotError(f"save index: {exc}") from exc
        try:
            self._run_git(["add", "."])
        except SnapshotError as exc:
            raise SnapshotError(f"stage: {exc}") from exc

        try:
            stash_id = self._run_git(["stash", "create", message])
        except SnapshotError as exc:
            try:
                self._restore_index(index_tree)
            except SnapshotError as restore_exc:
                logger.warning("index restore after failed stash create: %s", restore_exc)
            raise SnapshotError(f"stash create: {exc}") from exc

        try:
            self._restore_index(index_tree)
        except SnapshotError as exc:
            raise SnapshotError(f"restore index: {exc}") from exc

        if not stash_id:
            return False
        try:
            self._run_git(["stash", "store", "-m", message, stash_id])
        except SnapshotError as exc:
            raise SnapshotError(f"stash store: {exc}") from exc
        return True

    async def capture(self, message: str) -> bool:
        """Snapshot the tree; ``False`` means it was clean.

        The git sequence runs in a worker thread, so a cancelled caller
        still leaves the index restored.
        """
        return await asyncio.to_thread(self.capture_sync, message)
