from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import Literal

from pydantic import BaseModel, ConfigDict, computed_field

from git_workers.constants import DETACHED_BRANCH, MAIN_WORKTREE_ID


class CommitInfo(BaseModel):
    model_config = ConfigDict(extra="ignore")

    id: str
    message: str
    author: str
    time: str


class WorktreeRecord(BaseModel):
    """A worktree as git currently knows it.

    ``internal_id`` names the administrative directory git created for the
    worktree and never changes. ``display_name`` follows the directory on
    disk, so after a rename the two differ.
    """

    model_config = ConfigDict(extra="ignore")

    internal_id: str
    path: Path
    branch: str
    is_main: bool = False
    is_current: bool = False
    is_locked: bool = False
    is_prunable: bool = False
    has_uncommitted_changes: bool = False
    last_commit: CommitInfo | None = None
    ahead_behind: tuple[int, int] | None = None

    @computed_field  # type: ignore[prop-decorator]
    @property
    def display_name(self) -> str:
        return self.path.name

    @property
    def is_detached(self) -> bool:
        return self.branch == DETACHED_BRANCH

    @property
    def is_renamed(self) -> bool:
        return not self.is_main and self.display_name != self.internal_id


class WorktreeEntry(BaseModel):
    """Raw worktree entry as read from git's administrative storage."""

    internal_id: str
    path: Path
    branch: str
    locked: bool = False
    is_main: bool = False

    @classmethod
    def main(cls, path: Path, branch: str) -> "WorktreeEntry":
        return cls(internal_id=MAIN_WORKTREE_ID, path=path, branch=branch, is_main=True)


class PlacementKind(str, Enum):
    SIBLING = "sibling"
    SUBDIRECTORY = "subdirectory"
    EXPLICIT = "explicit"


class PlacementPattern(BaseModel):
    kind: PlacementKind
    # Relative to the main worktree's parent directory.
    subdirectory: str | None = None

    @classmethod
    def sibling(cls) -> "PlacementPattern":
        return cls(kind=PlacementKind.SIBLING)

    @classmethod
    def nested(cls, subdirectory: str) -> "PlacementPattern":
        return cls(kind=PlacementKind.SUBDIRECTORY, subdirectory=subdirectory)

    @classmethod
    def explicit(cls) -> "PlacementPattern":
        return cls(kind=PlacementKind.EXPLICIT)


BranchSourceKind = Literal["head", "branch", "new_branch", "tag", "commit"]


class BranchSource(BaseModel):
    """Where a new worktree's HEAD comes from."""

    kind: BranchSourceKind = "head"
    name: str | None = None
    base: str | None = None

    @classmethod
    def head(cls) -> "BranchSource":
        return cls(kind="head")

    @classmethod
    def branch(cls, name: str) -> "BranchSource":
        return cls(kind="branch", name=name)

    @classmethod
    def new_branch(cls, name: str, base: str | None = None) -> "BranchSource":
        return cls(kind="new_branch", name=name, base=base)

    @classmethod
    def tag(cls, name: str) -> "BranchSource":
        return cls(kind="tag", name=name)

    @classmethod
    def commit(cls, rev: str) -> "BranchSource":
        return cls(kind="commit", name=rev)

    @property
    def is_detached(self) -> bool:
        return self.kind in ("tag", "commit")


@dataclass
class RemoveResult:
    record: WorktreeRecord
    branch_deleted: bool = False
    warnings: list[Exception | str] = field(default_factory=list)
