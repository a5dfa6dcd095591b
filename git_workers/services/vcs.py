"""GitPython-backed driver for the git primitives worktree management needs.

git keeps one administrative directory per linked worktree under
``<common-dir>/worktrees/<internal_id>``. Two small files bind it to the
working directory:

* ``<admin>/gitdir`` holds ``<worktree>/.git`` (breaks when the worktree moves)
* ``<worktree>/.git`` holds ``gitdir: <admin>`` (survives a move)
"""

import logging
import os
from functools import cached_property
from pathlib import Path

import git as gitpython

from git_workers.constants import (
    DETACHED_BRANCH,
    GITDIR_FILE,
    GITDIR_PREFIX,
    LOCKED_FILE,
    UNKNOWN_BRANCH,
    WORKTREES_SUBDIR,
)
from git_workers.errors import BranchExistsError, GitOperationError, NotFound
from git_workers.models import BranchSource, WorktreeEntry

logger = logging.getLogger(__name__)

_HEADS_PREFIX = "refs/heads/"


def _stderr(e: gitpython.GitCommandError) -> str:
    return str(e.stderr or e).strip()


def atomic_write(path: Path, content: str) -> None:
    """Write via a temp file and rename so readers never see a partial file."""
    tmp = path.with_name(f".{path.name}.tmp")
    tmp.write_text(content)
    os.replace(tmp, path)


class GitDriver:
    """Wraps a repository; every call reads live git state."""

    def __init__(self, repo_path: Path | str | None = None) -> None:
        try:
            self.repo = gitpython.Repo(repo_path or ".", search_parent_directories=True)
        except (gitpython.InvalidGitRepositoryError, gitpython.NoSuchPathError) as e:
            raise GitOperationError("open repository", f"not inside a git repository: {repo_path or '.'}") from e

    @cached_property
    def common_dir(self) -> Path:
        """The repository's shared git directory, absolute."""
        try:
            raw = self.repo.git.rev_parse("--git-common-dir")
        except gitpython.GitCommandError as e:
            raise GitOperationError("rev-parse --git-common-dir", _stderr(e)) from e
        common = Path(raw)
        if not common.is_absolute():
            common = Path(self.repo.working_dir) / common
        return Path(os.path.realpath(common))

    @property
    def worktrees_dir(self) -> Path:
        return self.common_dir / WORKTREES_SUBDIR

    def admin_dir(self, internal_id: str) -> Path:
        return self.worktrees_dir / internal_id

    def has_admin_dir(self, internal_id: str) -> bool:
        return self.admin_dir(internal_id).is_dir()

    # -- main worktree -----------------------------------------------------

    def main_entry(self) -> WorktreeEntry | None:
        """The main worktree, or None for a bare repository."""
        try:
            output = self.repo.git.worktree("list", "--porcelain")
        except gitpython.GitCommandError as e:
            raise GitOperationError("worktree list", _stderr(e)) from e

        path = ""
        branch = UNKNOWN_BRANCH
        for line in output.splitlines():
            if not line:
                break
            if line.startswith("worktree "):
                path = line[len("worktree "):]
            elif line.startswith("branch "):
                ref = line[len("branch "):]
                branch = ref[len(_HEADS_PREFIX):] if ref.startswith(_HEADS_PREFIX) else ref
            elif line == "detached":
                branch = DETACHED_BRANCH
            elif line == "bare":
                return None
        if not path:
            return None
        return WorktreeEntry.main(Path(path), branch)

    @cached_property
    def main_path(self) -> Path:
        """Directory new worktree placement is relative to.

        For a bare repository this is the repository directory itself.
        """
        entry = self.main_entry()
        if entry is not None:
            return entry.path
        return self.common_dir

    # -- link files --------------------------------------------------------

    def read_gitdir_link(self, internal_id: str) -> Path:
        """Return the worktree path recorded in the admin record (link 1)."""
        gitdir_file = self.admin_dir(internal_id) / GITDIR_FILE
        try:
            raw = gitdir_file.read_text().strip()
        except FileNotFoundError as e:
            raise NotFound(internal_id) from e
        dotgit = Path(raw)
        if not dotgit.is_absolute():
            dotgit = Path(os.path.normpath(self.admin_dir(internal_id) / dotgit))
        return dotgit.parent

    def write_gitdir_link(self, internal_id: str, worktree_path: Path) -> None:
        gitdir_file = self.admin_dir(internal_id) / GITDIR_FILE
        atomic_write(gitdir_file, f"{worktree_path / '.git'}\n")

    def read_dotgit_link(self, worktree_path: Path) -> Path:
        """Return the admin directory the worktree's ``.git`` file points at (link 2)."""
        dotgit = worktree_path / ".git"
        raw = dotgit.read_text().strip()
        if not raw.startswith(GITDIR_PREFIX):
            raise GitOperationError("read .git file", f"unexpected content in {dotgit}")
        admin = Path(raw[len(GITDIR_PREFIX):])
        if not admin.is_absolute():
            admin = worktree_path / admin
        return Path(os.path.realpath(admin))

    def write_dotgit_link(self, worktree_path: Path, admin_dir: Path) -> None:
        atomic_write(worktree_path / ".git", f"{GITDIR_PREFIX}{admin_dir}\n")

    # -- enumeration -------------------------------------------------------

    def _entry_branch(self, internal_id: str) -> str:
        try:
            head = (self.admin_dir(internal_id) / "HEAD").read_text().strip()
        except OSError:
            return UNKNOWN_BRANCH
        if head.startswith("ref: "):
            ref = head[len("ref: "):]
            return ref[len(_HEADS_PREFIX):] if ref.startswith(_HEADS_PREFIX) else ref
        return DETACHED_BRANCH

    def worktree_entries(self) -> list[WorktreeEntry]:
        """Main worktree (if any) followed by every linked worktree, sorted by id."""
        entries: list[WorktreeEntry] = []
        main = self.main_entry()
        if main is not None:
            entries.append(main)

        if not self.worktrees_dir.is_dir():
            return entries

        for admin in sorted(self.worktrees_dir.iterdir()):
            if not admin.is_dir():
                continue
            internal_id = admin.name
            try:
                path = self.read_gitdir_link(internal_id)
            except NotFound:
                logger.debug("Skipping admin entry without gitdir", extra={"internal_id": internal_id})
                continue
            entries.append(
                WorktreeEntry(
                    internal_id=internal_id,
                    path=path,
                    branch=self._entry_branch(internal_id),
                    locked=(admin / LOCKED_FILE).exists(),
                )
            )
        return entries

    def is_dirty(self, path: Path) -> bool:
        try:
            return gitpython.Repo(path).is_dirty(untracked_files=True)
        except (gitpython.InvalidGitRepositoryError, gitpython.NoSuchPathError, gitpython.GitCommandError):
            return False

    # -- refs --------------------------------------------------------------

    def _ref_exists(self, ref: str) -> bool:
        try:
            self.repo.git.rev_parse("--verify", "--quiet", ref)
            return True
        except gitpython.GitCommandError:
            return False

    def branch_exists(self, name: str) -> bool:
        return self._ref_exists(f"refs/heads/{name}")

    def tag_exists(self, name: str) -> bool:
        return self._ref_exists(f"refs/tags/{name}")

    def remote_branch_exists(self, ref: str) -> bool:
        return self._ref_exists(f"refs/remotes/{ref}")

    def rev_exists(self, rev: str) -> bool:
        return self._ref_exists(f"{rev}^{{commit}}")

    def remote_names(self) -> list[str]:
        return [r.name for r in self.repo.remotes]

    def branch_delete(self, name: str) -> None:
        try:
            self.repo.git.branch("-D", name)
        except gitpython.GitCommandError as e:
            raise GitOperationError("branch delete", _stderr(e)) from e
        logger.info("Deleted branch", extra={"branch": name})

    # -- worktree mutations ------------------------------------------------

    def _add_args(self, path: Path, source: BranchSource) -> list[str]:
        if source.kind == "head":
            return [str(path)]
        if source.kind in ("tag", "commit"):
            return ["--detach", str(path), source.name or "HEAD"]
        if source.kind == "new_branch":
            if self.branch_exists(source.name):
                raise BranchExistsError(source.name)
            args = ["-b", source.name, str(path)]
            if source.base:
                args.append(source.base)
            return args

        # kind == "branch"
        name = source.name
        if self.branch_exists(name):
            return [str(path), name]
        remote, _, local = name.partition("/")
        if local and remote in self.remote_names() and self.remote_branch_exists(name):
            if self.branch_exists(local):
                raise BranchExistsError(local)
            return ["--track", "-b", local, str(path), name]
        return ["-b", name, str(path)]

    def worktree_add(self, path: Path, source: BranchSource) -> str:
        """Create a worktree at ``path`` and return the internal id git assigned."""
        args = self._add_args(path, source)
        try:
            self.repo.git.worktree("add", *args)
        except gitpython.GitCommandError as e:
            raise GitOperationError("worktree add", _stderr(e)) from e
        internal_id = self.read_dotgit_link(path).name
        logger.info("Added worktree", extra={"path": str(path), "internal_id": internal_id})
        return internal_id

    def worktree_remove(self, internal_id: str, force: bool = False) -> None:
        """Remove the worktree whose admin record is ``internal_id``."""
        if not self.has_admin_dir(internal_id):
            raise NotFound(internal_id)
        path = self.read_gitdir_link(internal_id)

        if path.exists():
            args = ["remove"]
            if force:
                args.append("--force")
            args.append(str(path))
            try:
                self.repo.git.worktree(*args)
            except gitpython.GitCommandError as e:
                stderr = _stderr(e)
                if not force and "contains modified or untracked files" in stderr:
                    raise GitOperationError(
                        "worktree remove",
                        f"worktree has uncommitted changes; use --force to remove anyway ({stderr})",
                    ) from e
                raise GitOperationError("worktree remove", stderr) from e
        else:
            self.prune()

        if self.has_admin_dir(internal_id):
            raise GitOperationError("worktree remove", f"administrative record '{internal_id}' still present")
        logger.info("Removed worktree", extra={"internal_id": internal_id, "path": str(path)})

    def prune(self) -> None:
        try:
            self.repo.git.worktree("prune")
        except gitpython.GitCommandError as e:
            raise GitOperationError("worktree prune", _stderr(e)) from e

    def repair(self, path: Path) -> None:
        try:
            self.repo.git.worktree("repair", str(path))
        except gitpython.GitCommandError as e:
            raise GitOperationError("worktree repair", _stderr(e)) from e
