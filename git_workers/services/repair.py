"""Move a worktree directory and repair git's links to it.

git has no way to rename a worktree's administrative record, so a rename
only moves the working directory and points the record's ``gitdir`` file at
the new location. The admin directory keeps its original name (the
worktree's internal id).
"""

import errno
import logging
import os
import shutil
from pathlib import Path
from typing import NoReturn

from git_workers.errors import GitOperationError, RepairFailed, Unrecoverable
from git_workers.services.vcs import GitDriver

logger = logging.getLogger(__name__)


def move_directory(src: Path, dst: Path) -> None:
    """Rename ``src`` to ``dst``, copying across filesystems when needed.

    A failed cross-device copy removes the partial destination and leaves
    ``src`` untouched.
    """
    try:
        os.rename(src, dst)
        return
    except OSError as e:
        if e.errno != errno.EXDEV:
            raise

    logger.debug("Cross-device move, copying tree", extra={"src": str(src), "dst": str(dst)})
    try:
        shutil.copytree(src, dst, symlinks=True)
    except Exception:
        shutil.rmtree(dst, ignore_errors=True)
        raise
    shutil.rmtree(src)


class MetadataRepairer:
    def __init__(self, vcs: GitDriver) -> None:
        self.vcs = vcs

    def repair(self, internal_id: str, old_path: Path, new_path: Path) -> None:
        """Move the worktree ``internal_id`` from ``old_path`` to ``new_path``.

        On success both link files agree with ``new_path``. If either link
        cannot be written, the directory is moved back and RepairFailed is
        raised; if that move back fails too, Unrecoverable is raised.
        """
        admin_dir = self.vcs.admin_dir(internal_id)
        log_extra = {"internal_id": internal_id, "old_path": str(old_path), "new_path": str(new_path)}

        try:
            move_directory(old_path, new_path)
        except OSError as e:
            raise RepairFailed(internal_id, old_path, new_path, e) from e
        logger.debug("Moved worktree directory", extra=log_extra)

        try:
            if not admin_dir.is_dir():
                raise FileNotFoundError(f"administrative record missing: {admin_dir}")
            self.vcs.write_gitdir_link(internal_id, new_path)
        except Exception as e:
            self._roll_back(internal_id, old_path, new_path, admin_dir, e, restore_gitdir=False)

        try:
            self._verify_dotgit(internal_id, admin_dir, new_path)
        except OSError as e:
            self._roll_back(internal_id, old_path, new_path, admin_dir, e, restore_gitdir=True)

        try:
            self.vcs.repair(new_path)
        except GitOperationError as e:
            logger.warning("git worktree repair failed", extra={"internal_id": internal_id, "error": str(e)})

    def _roll_back(
        self,
        internal_id: str,
        old_path: Path,
        new_path: Path,
        admin_dir: Path,
        cause: Exception,
        restore_gitdir: bool,
    ) -> NoReturn:
        log_extra = {"internal_id": internal_id, "old_path": str(old_path), "new_path": str(new_path)}
        logger.warning("Updating worktree metadata failed, rolling back", extra={**log_extra, "error": str(cause)})
        try:
            if restore_gitdir:
                self.vcs.write_gitdir_link(internal_id, old_path)
            move_directory(new_path, old_path)
        except Exception as rollback_error:
            logger.error("Rollback failed", extra=log_extra)
            raise Unrecoverable(internal_id, old_path, new_path, admin_dir, cause, rollback_error) from cause
        raise RepairFailed(internal_id, old_path, new_path, cause) from cause

    def _verify_dotgit(self, internal_id: str, admin_dir: Path, new_path: Path) -> None:
        expected = Path(os.path.realpath(admin_dir))
        try:
            actual = self.vcs.read_dotgit_link(new_path)
        except (OSError, GitOperationError):
            actual = None
        if actual != expected:
            logger.warning(
                "Worktree .git file did not point at its admin record; rewriting",
                extra={"internal_id": internal_id, "found": str(actual), "expected": str(expected)},
            )
            self.vcs.write_dotgit_link(new_path, expected)
