import logging
import os
from pathlib import Path

from git_workers.errors import Collision, NotFound
from git_workers.models import WorktreeEntry, WorktreeRecord
from git_workers.services.vcs import GitDriver

logger = logging.getLogger(__name__)


def _realpath(path: Path | str) -> Path:
    return Path(os.path.realpath(path))


def _is_within(child: Path, parent: Path) -> bool:
    return child == parent or parent in child.parents


class WorktreeRegistry:
    """Live view of the repository's worktrees.

    Nothing is cached: every call re-reads git's administrative storage and
    each worktree's status.
    """

    def __init__(self, vcs: GitDriver, cwd: Path | str | None = None) -> None:
        self.vcs = vcs
        self._cwd = cwd

    def _current_dir(self) -> Path | None:
        try:
            return _realpath(self._cwd if self._cwd is not None else os.getcwd())
        except OSError:
            return None

    def _current_id(self, entries: list[WorktreeEntry]) -> str | None:
        # Worktrees can nest (a subdirectory layout lives inside the main
        # worktree), so the deepest containing path wins.
        cwd = self._current_dir()
        if cwd is None:
            return None
        best: WorktreeEntry | None = None
        for entry in entries:
            path = _realpath(entry.path)
            if _is_within(cwd, path) and (best is None or len(path.parts) > len(_realpath(best.path).parts)):
                best = entry
        return best.internal_id if best else None

    def list(self) -> list[WorktreeRecord]:
        entries = self.vcs.worktree_entries()
        current_id = self._current_id(entries)
        records = []
        for entry in entries:
            exists = entry.path.exists()
            records.append(
                WorktreeRecord(
                    internal_id=entry.internal_id,
                    path=entry.path,
                    branch=entry.branch,
                    is_main=entry.is_main,
                    is_current=entry.internal_id == current_id,
                    is_locked=entry.locked,
                    is_prunable=not exists,
                    has_uncommitted_changes=self.vcs.is_dirty(entry.path) if exists else False,
                )
            )
        logger.debug("Listed worktrees", extra={"count": len(records)})
        return records

    def find(self, internal_id: str) -> WorktreeRecord | None:
        for record in self.list():
            if record.internal_id == internal_id:
                return record
        return None

    def get(self, internal_id: str) -> WorktreeRecord:
        record = self.find(internal_id)
        if record is None:
            raise NotFound(internal_id)
        return record

    def find_by_display_name(self, name: str) -> WorktreeRecord | None:
        for record in self.list():
            if record.display_name == name:
                return record
        return None

    def current(self) -> WorktreeRecord | None:
        for record in self.list():
            if record.is_current:
                return record
        return None

    def ensure_available(self, name: str, exclude_id: str | None = None) -> None:
        """Raise Collision if ``name`` is used by any worktree other than ``exclude_id``.

        Both display names and internal ids count, as does a leftover
        administrative directory with that name.
        """
        for record in self.list():
            if record.internal_id == exclude_id:
                continue
            if name in (record.display_name, record.internal_id):
                raise Collision(name, f"Worktree name '{name}' is already used by '{record.internal_id}'")
        if name != exclude_id and self.vcs.has_admin_dir(name):
            raise Collision(name, f"Worktree id '{name}' is still reserved by git; run 'git worktree prune'")
