from pathlib import Path

import git as gitpython
import pytest

from git_workers.services.lifecycle import WorktreeManager
from git_workers.services.registry import WorktreeRegistry
from git_workers.services.vcs import GitDriver


@pytest.fixture(autouse=True)
def _isolate_global_config(tmp_path: Path, monkeypatch):
    """Keep the user's ~/.config/git-workers out of tests."""
    monkeypatch.setattr("git_workers.config.GLOBAL_CONFIG_PATH", tmp_path / "global-config.toml")


@pytest.fixture()
def git_repo(tmp_path: Path) -> Path:
    """A real repository at <tmp>/repo on branch main with one commit."""
    root = (tmp_path / "repo").resolve()
    root.mkdir()
    repo = gitpython.Repo.init(root)
    repo.git.symbolic_ref("HEAD", "refs/heads/main")
    with repo.config_writer() as cw:
        cw.set_value("user", "name", "Test User")
        cw.set_value("user", "email", "test@example.com")
    (root / "README.md").write_text("hello\n")
    repo.index.add(["README.md"])
    repo.index.commit("initial commit")
    repo.close()
    return root


@pytest.fixture()
def vcs(git_repo: Path) -> GitDriver:
    return GitDriver(git_repo)


@pytest.fixture()
def manager(vcs: GitDriver, git_repo: Path) -> WorktreeManager:
    return WorktreeManager(vcs, WorktreeRegistry(vcs, cwd=git_repo))
