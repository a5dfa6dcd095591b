"""Create, rename and remove worktrees safely.

Every mutating operation runs through the same frame::

    Idle -> LockAcquired -> Validated -> Mutated -> MetadataConsistent -> LockReleased

and a failure after validation passes through RollingBack before the lock
is released. Worktrees are always addressed by internal id here; mapping a
display name typed by a user to an id is the caller's job (via the registry).
"""

from __future__ import annotations

import logging
import shutil
from contextlib import contextmanager
from enum import Enum
from pathlib import Path
from typing import Iterator

from git_workers.constants import STALE_LOCK_TIMEOUT_SECS
from git_workers.errors import (
    BranchExistsError,
    BranchInUse,
    Collision,
    CurrentWorktreeProtected,
    GitOperationError,
    MainWorktreeProtected,
    NotFound,
    WorktreeError,
)
from git_workers.models import BranchSource, PlacementPattern, RemoveResult, WorktreeRecord
from git_workers.services.lock import repository_lock
from git_workers.services.placement import resolve_placement
from git_workers.services.registry import WorktreeRegistry
from git_workers.services.repair import MetadataRepairer
from git_workers.services.validation import has_path_separator, validate_custom_path, validate_worktree_name
from git_workers.services.vcs import GitDriver

logger = logging.getLogger(__name__)


class OperationState(str, Enum):
    IDLE = "idle"
    LOCK_ACQUIRED = "lock_acquired"
    VALIDATED = "validated"
    MUTATED = "mutated"
    METADATA_CONSISTENT = "metadata_consistent"
    ROLLING_BACK = "rolling_back"
    LOCK_RELEASED = "lock_released"


def _transition(operation: str, state: OperationState, **extra: object) -> None:
    logger.debug("%s: %s", operation, state.value, extra={"operation": operation, "state": state.value, **extra})


class WorktreeManager:
    def __init__(
        self,
        vcs: GitDriver,
        registry: WorktreeRegistry | None = None,
        repairer: MetadataRepairer | None = None,
        stale_after: float = STALE_LOCK_TIMEOUT_SECS,
    ) -> None:
        self.vcs = vcs
        self.registry = registry or WorktreeRegistry(vcs)
        self.repairer = repairer or MetadataRepairer(vcs)
        self.stale_after = stale_after

    @classmethod
    def open(
        cls,
        repo_path: Path | str | None = None,
        stale_after: float = STALE_LOCK_TIMEOUT_SECS,
        cwd: Path | str | None = None,
    ) -> "WorktreeManager":
        vcs = GitDriver(repo_path)
        return cls(vcs, WorktreeRegistry(vcs, cwd=cwd), stale_after=stale_after)

    def list(self) -> list[WorktreeRecord]:
        return self.registry.list()

    @contextmanager
    def _locked(self, operation: str) -> Iterator[None]:
        ok = False
        with repository_lock(self.vcs.common_dir, self.stale_after):
            _transition(operation, OperationState.LOCK_ACQUIRED)
            try:
                yield
                ok = True
            finally:
                _transition(operation, OperationState.LOCK_RELEASED, success=ok)

    @staticmethod
    def _protect(record: WorktreeRecord) -> None:
        if record.is_current:
            raise CurrentWorktreeProtected(record.internal_id)
        if record.is_main:
            raise MainWorktreeProtected(record.internal_id)

    def _get_protected(self, internal_id: str) -> WorktreeRecord:
        record = self.registry.get(internal_id)
        self._protect(record)
        return record

    # -- create ------------------------------------------------------------

    def create(
        self,
        name_or_path: str,
        source: BranchSource | None = None,
        explicit: bool = False,
        pattern: PlacementPattern | None = None,
    ) -> WorktreeRecord:
        """Create a worktree and return its record.

        The basename used here becomes the worktree's permanent internal id.
        """
        op = "create"
        source = source or BranchSource.head()

        if explicit or has_path_separator(name_or_path):
            requested = validate_custom_path(name_or_path)
            name = Path(requested.replace("\\", "/")).name
        else:
            requested = name = validate_worktree_name(name_or_path)

        if source.kind != "head" and not source.name:
            raise GitOperationError("worktree add", f"branch source '{source.kind}' requires a name")
        if source.kind == "new_branch" and self.vcs.branch_exists(source.name):
            raise BranchExistsError(source.name)
        if source.kind == "tag" and not self.vcs.tag_exists(source.name):
            raise GitOperationError("worktree add", f"tag '{source.name}' does not exist")
        if source.kind == "commit" and not self.vcs.rev_exists(source.name):
            raise GitOperationError("worktree add", f"'{source.name}' is not a valid commit")
        self.registry.ensure_available(name)

        target = resolve_placement(self.registry.list(), requested, self.vcs.main_path, explicit, pattern)

        with self._locked(op):
            self.registry.ensure_available(name)
            if target.exists():
                raise Collision(name, f"Target path already exists: {target}")
            _transition(op, OperationState.VALIDATED, path=str(target))

            try:
                internal_id = self.vcs.worktree_add(target, source)
            except WorktreeError:
                _transition(op, OperationState.ROLLING_BACK, path=str(target))
                if target.exists():
                    shutil.rmtree(target, ignore_errors=True)
                raise
            _transition(op, OperationState.MUTATED, internal_id=internal_id)

            record = self.registry.find(internal_id)
            if record is None:
                _transition(op, OperationState.ROLLING_BACK, internal_id=internal_id)
                self._discard(internal_id, target)
                raise GitOperationError("worktree add", f"new worktree '{internal_id}' is not registered")
            if internal_id != name:
                logger.warning(
                    "git assigned a different internal id",
                    extra={"requested": name, "internal_id": internal_id},
                )
            _transition(op, OperationState.METADATA_CONSISTENT, internal_id=internal_id)

        logger.info("Created worktree", extra={"internal_id": internal_id, "path": str(record.path)})
        return record

    def _discard(self, internal_id: str, target: Path) -> None:
        try:
            self.vcs.worktree_remove(internal_id, force=True)
        except WorktreeError as e:
            logger.warning(
                "Could not remove half-created worktree",
                extra={"internal_id": internal_id, "path": str(target), "error": str(e)},
            )
        if target.exists():
            shutil.rmtree(target, ignore_errors=True)

    # -- rename ------------------------------------------------------------

    def rename(self, internal_id: str, new_display_name: str) -> WorktreeRecord:
        """Move worktree ``internal_id`` to a sibling directory named ``new_display_name``.

        The branch and the internal id are left untouched.
        """
        op = "rename"
        new_name = validate_worktree_name(new_display_name)
        record = self._get_protected(internal_id)

        if record.display_name == new_name:
            logger.debug("Rename is a no-op", extra={"internal_id": internal_id, "new_name": new_name})
            return record
        self.registry.ensure_available(new_name, exclude_id=internal_id)

        with self._locked(op):
            record = self._get_protected(internal_id)
            old_path = record.path
            new_path = old_path.parent / new_name
            self.registry.ensure_available(new_name, exclude_id=internal_id)
            if new_path.exists():
                raise Collision(new_name, f"Target path already exists: {new_path}")
            if not old_path.exists():
                raise GitOperationError(
                    "rename", f"worktree directory {old_path} is missing; prune it with 'git worktree prune'"
                )
            _transition(op, OperationState.VALIDATED, internal_id=internal_id, new_path=str(new_path))

            self.repairer.repair(internal_id, old_path, new_path)
            _transition(op, OperationState.MUTATED, internal_id=internal_id)

            renamed = self.registry.get(internal_id)
            if renamed.path != new_path:
                logger.warning(
                    "Renamed worktree reports an unexpected path",
                    extra={"internal_id": internal_id, "expected": str(new_path), "actual": str(renamed.path)},
                )
            _transition(op, OperationState.METADATA_CONSISTENT, internal_id=internal_id)

        logger.info(
            "Renamed worktree",
            extra={"internal_id": internal_id, "old_path": str(old_path), "new_path": str(new_path)},
        )
        return renamed

    # -- remove ------------------------------------------------------------

    def remove(self, internal_id: str, delete_branch: bool = False, force: bool = False) -> RemoveResult:
        """Remove worktree ``internal_id`` and optionally the branch it had checked out.

        Branch problems never fail the removal; they are returned as warnings.
        """
        op = "remove"
        self._get_protected(internal_id)

        with self._locked(op):
            records = self.registry.list()
            record = next((r for r in records if r.internal_id == internal_id), None)
            if record is None:
                raise NotFound(internal_id)
            self._protect(record)
            holders = [
                r.display_name for r in records if r.internal_id != internal_id and r.branch == record.branch
            ]
            _transition(op, OperationState.VALIDATED, internal_id=internal_id)

            self.vcs.worktree_remove(internal_id, force=force)
            _transition(op, OperationState.MUTATED, internal_id=internal_id)

            result = RemoveResult(record=record)
            if delete_branch:
                self._delete_branch(record, holders, result)
            _transition(op, OperationState.METADATA_CONSISTENT, internal_id=internal_id)

        logger.info("Removed worktree", extra={"internal_id": internal_id, "branch_deleted": result.branch_deleted})
        return result

    def _delete_branch(self, record: WorktreeRecord, holders: list[str], result: RemoveResult) -> None:
        branch = record.branch
        if record.is_detached:
            result.warnings.append("Worktree had a detached HEAD; no branch to delete")
        elif holders:
            warning = BranchInUse(branch, holders)
            logger.warning(str(warning), extra={"branch": branch})
            result.warnings.append(warning)
        elif not self.vcs.branch_exists(branch):
            result.warnings.append(f"Branch '{branch}' no longer exists")
        else:
            try:
                self.vcs.branch_delete(branch)
                result.branch_deleted = True
            except GitOperationError as e:
                logger.warning("Branch deletion failed", extra={"branch": branch, "error": str(e)})
                result.warnings.append(str(e))
