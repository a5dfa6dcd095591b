"""Error taxonomy for worktree lifecycle operations.

Every error raised by the services derives from ``WorktreeError``. Callers
that need to tell a half-finished rename apart from everything else catch
``Unrecoverable`` first: it deliberately shares no base with ``RepairFailed``.
"""

from pathlib import Path


class WorktreeError(Exception):
    """Base class for all git-workers errors."""


class InvalidName(WorktreeError, ValueError):
    """A worktree name failed validation."""

    def __init__(self, name: str, reason: str) -> None:
        self.name = name
        self.reason = reason
        super().__init__(f"Invalid worktree name '{name}': {reason}")


class InvalidPath(WorktreeError, ValueError):
    """A custom worktree path failed validation."""

    def __init__(self, path: str, reason: str) -> None:
        self.path = path
        self.reason = reason
        super().__init__(f"Invalid worktree path '{path}': {reason}")


class Busy(WorktreeError):
    """Another process holds the repository lock."""

    def __init__(self, lock_path: Path, holder: dict | None = None) -> None:
        self.lock_path = lock_path
        self.holder = holder or {}
        msg = "Another process is using this repository"
        pid = self.holder.get("pid")
        if pid is not None:
            msg += f" (pid {pid})"
        super().__init__(f"{msg}; lock file: {lock_path}")


class NotFound(WorktreeError, LookupError):
    """No worktree has the given internal id."""

    def __init__(self, internal_id: str) -> None:
        self.internal_id = internal_id
        super().__init__(f"Worktree not found: {internal_id}")


class Collision(WorktreeError):
    """A requested name or target path is already in use."""

    def __init__(self, name: str, message: str | None = None) -> None:
        self.name = name
        super().__init__(message or f"Worktree name already in use: {name}")


class BranchExistsError(Collision):
    """Raised when a new branch was requested but the branch already exists."""

    def __init__(self, branch: str) -> None:
        self.branch = branch
        super().__init__(branch, f"Branch '{branch}' already exists")


class CurrentWorktreeProtected(WorktreeError):
    """The active worktree cannot be renamed or removed."""

    def __init__(self, internal_id: str, message: str | None = None) -> None:
        self.internal_id = internal_id
        super().__init__(message or f"Cannot modify the current worktree: {internal_id}")


class MainWorktreeProtected(CurrentWorktreeProtected):
    """The main worktree cannot be renamed or removed."""

    def __init__(self, internal_id: str) -> None:
        super().__init__(internal_id, "Cannot modify the main worktree")


class RepairFailed(WorktreeError):
    """A rename could not be completed; the worktree was left as it was."""

    def __init__(self, internal_id: str, old_path: Path, new_path: Path, cause: BaseException) -> None:
        self.internal_id = internal_id
        self.old_path = old_path
        self.new_path = new_path
        self.cause = cause
        super().__init__(
            f"Failed to rename worktree '{internal_id}' from {old_path} to {new_path}: {cause}"
        )


class Unrecoverable(WorktreeError):
    """A rename failed and so did the rollback. Manual repair is required."""

    def __init__(
        self,
        internal_id: str,
        old_path: Path,
        new_path: Path,
        admin_dir: Path,
        cause: BaseException,
        rollback_error: BaseException,
    ) -> None:
        self.internal_id = internal_id
        self.old_path = old_path
        self.new_path = new_path
        self.admin_dir = admin_dir
        self.cause = cause
        self.rollback_error = rollback_error
        super().__init__(
            f"Worktree '{internal_id}' is in an inconsistent state: directory is at {new_path} "
            f"but its metadata could not be updated ({cause}), and moving it back to "
            f"{old_path} failed ({rollback_error})"
        )

    def recovery_steps(self) -> list[str]:
        """Shell commands that finish the rename by hand."""
        return [
            f"echo '{self.new_path / '.git'}' > '{self.admin_dir / 'gitdir'}'",
            f"echo 'gitdir: {self.admin_dir}' > '{self.new_path / '.git'}'",
            f"git worktree repair '{self.new_path}'",
        ]


class BranchInUse(WorktreeError):
    """Branch deletion skipped because another worktree has it checked out."""

    def __init__(self, branch: str, holders: list[str]) -> None:
        self.branch = branch
        self.holders = holders
        super().__init__(
            f"Branch '{branch}' is checked out in other worktrees ({', '.join(holders)}); not deleted"
        )


class GitOperationError(WorktreeError):
    """A git command failed."""

    def __init__(self, operation: str, message: str | None = None) -> None:
        self.operation = operation
        self.message = message

        error_msg = f"Git operation '{operation}' failed"
        if message:
            error_msg += f": {message}"

        super().__init__(error_msg)


class ConfigError(WorktreeError):
    """A configuration file could not be parsed."""

    def __init__(self, path: Path, message: str) -> None:
        self.path = path
        super().__init__(f"Invalid configuration in {path}: {message}")
