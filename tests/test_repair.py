import errno
import os
from pathlib import Path

import pytest

import git_workers.services.repair as repair_mod
from git_workers.errors import GitOperationError, RepairFailed, Unrecoverable
from git_workers.services.repair import MetadataRepairer, move_directory


@pytest.fixture()
def worktree(manager, tmp_path):
    """A linked worktree created at <tmp>/feat."""
    return manager.create("feat")


def _snapshot(vcs, internal_id: str, path: Path) -> dict:
    admin = vcs.admin_dir(internal_id)
    return {
        "exists": path.exists(),
        "gitdir": (admin / "gitdir").read_bytes(),
        "dotgit": (path / ".git").read_bytes() if path.exists() else None,
    }


class TestMoveDirectory:
    def test_same_filesystem(self, tmp_path):
        src = tmp_path / "src"
        src.mkdir()
        (src / "f.txt").write_text("x")

        move_directory(src, tmp_path / "dst")

        assert not src.exists()
        assert (tmp_path / "dst" / "f.txt").read_text() == "x"

    def test_cross_device_falls_back_to_copy(self, tmp_path, monkeypatch):
        src = tmp_path / "src"
        (src / "sub").mkdir(parents=True)
        (src / "sub" / "f.txt").write_text("x")

        def exdev(a, b):
            raise OSError(errno.EXDEV, "Invalid cross-device link")

        monkeypatch.setattr(repair_mod.os, "rename", exdev)

        move_directory(src, tmp_path / "dst")

        assert not src.exists()
        assert (tmp_path / "dst" / "sub" / "f.txt").read_text() == "x"

    def test_other_errors_propagate(self, tmp_path):
        with pytest.raises(FileNotFoundError):
            move_directory(tmp_path / "missing", tmp_path / "dst")


class TestMetadataRepairer:
    def test_repair_updates_both_links(self, vcs, worktree, tmp_path):
        new_path = tmp_path / "renamed"

        MetadataRepairer(vcs).repair("feat", worktree.path, new_path)

        assert not worktree.path.exists()
        assert vcs.read_gitdir_link("feat") == new_path
        assert vcs.read_dotgit_link(new_path) == Path(os.path.realpath(vcs.admin_dir("feat")))
        paths = {e.internal_id: e.path for e in vcs.worktree_entries()}
        assert paths["feat"] == new_path

    def test_metadata_failure_rolls_back(self, vcs, worktree, tmp_path, monkeypatch):
        new_path = tmp_path / "renamed"
        before = _snapshot(vcs, "feat", worktree.path)

        def failing_write(internal_id, path):
            raise OSError("disk full")

        monkeypatch.setattr(vcs, "write_gitdir_link", failing_write)

        with pytest.raises(RepairFailed) as exc_info:
            MetadataRepairer(vcs).repair("feat", worktree.path, new_path)

        assert exc_info.value.old_path == worktree.path
        assert not new_path.exists()
        assert _snapshot(vcs, "feat", worktree.path) == before

    def test_move_failure_changes_nothing(self, vcs, worktree, tmp_path, monkeypatch):
        before = _snapshot(vcs, "feat", worktree.path)

        def failing_move(src, dst):
            raise PermissionError("denied")

        monkeypatch.setattr(repair_mod, "move_directory", failing_move)

        with pytest.raises(RepairFailed):
            MetadataRepairer(vcs).repair("feat", worktree.path, tmp_path / "renamed")
        assert _snapshot(vcs, "feat", worktree.path) == before

    def test_failed_rollback_is_unrecoverable(self, vcs, worktree, tmp_path, monkeypatch):
        new_path = tmp_path / "renamed"
        real_move = repair_mod.move_directory
        calls = []

        def move_once(src, dst):
            calls.append((src, dst))
            if len(calls) > 1:
                raise PermissionError("rollback denied")
            real_move(src, dst)

        def failing_write(internal_id, path):
            raise OSError("disk full")

        monkeypatch.setattr(repair_mod, "move_directory", move_once)
        monkeypatch.setattr(vcs, "write_gitdir_link", failing_write)

        with pytest.raises(Unrecoverable) as exc_info:
            MetadataRepairer(vcs).repair("feat", worktree.path, new_path)

        err = exc_info.value
        assert not isinstance(err, RepairFailed)
        assert err.new_path == new_path
        assert err.old_path == worktree.path
        assert isinstance(err.rollback_error, PermissionError)
        steps = err.recovery_steps()
        assert any(str(new_path) in s for s in steps)
        assert steps[-1].startswith("git worktree repair")

    def test_rewrites_mismatched_dotgit(self, vcs, worktree, tmp_path, monkeypatch):
        new_path = tmp_path / "renamed"
        real_move = repair_mod.move_directory

        def move_and_corrupt(src, dst):
            real_move(src, dst)
            (dst / ".git").write_text("gitdir: /nowhere\n")

        monkeypatch.setattr(repair_mod, "move_directory", move_and_corrupt)

        MetadataRepairer(vcs).repair("feat", worktree.path, new_path)

        assert vcs.read_dotgit_link(new_path) == Path(os.path.realpath(vcs.admin_dir("feat")))

    def test_dotgit_rewrite_failure_rolls_back(self, vcs, worktree, tmp_path, monkeypatch):
        new_path = tmp_path / "renamed"
        real_move = repair_mod.move_directory
        moves = []

        def move_and_corrupt(src, dst):
            real_move(src, dst)
            if not moves:
                (dst / ".git").write_text("gitdir: /nowhere\n")
            moves.append((src, dst))

        def failing_dotgit_write(path, admin_dir):
            raise PermissionError("read-only")

        monkeypatch.setattr(repair_mod, "move_directory", move_and_corrupt)
        monkeypatch.setattr(vcs, "write_dotgit_link", failing_dotgit_write)

        with pytest.raises(RepairFailed) as exc_info:
            MetadataRepairer(vcs).repair("feat", worktree.path, new_path)

        assert isinstance(exc_info.value.cause, PermissionError)
        assert worktree.path.exists()
        assert not new_path.exists()
        assert vcs.read_gitdir_link("feat") == worktree.path

    def test_dotgit_failure_with_failed_rollback_is_unrecoverable(self, vcs, worktree, tmp_path, monkeypatch):
        new_path = tmp_path / "renamed"
        real_move = repair_mod.move_directory
        moves = []

        def move_once_and_corrupt(src, dst):
            moves.append((src, dst))
            if len(moves) > 1:
                raise PermissionError("rollback denied")
            real_move(src, dst)
            (dst / ".git").write_text("gitdir: /nowhere\n")

        def failing_dotgit_write(path, admin_dir):
            raise PermissionError("read-only")

        monkeypatch.setattr(repair_mod, "move_directory", move_once_and_corrupt)
        monkeypatch.setattr(vcs, "write_dotgit_link", failing_dotgit_write)

        with pytest.raises(Unrecoverable) as exc_info:
            MetadataRepairer(vcs).repair("feat", worktree.path, new_path)

        assert exc_info.value.new_path == new_path
        assert new_path.exists()

    def test_git_repair_failure_is_not_fatal(self, vcs, worktree, tmp_path, monkeypatch):
        new_path = tmp_path / "renamed"

        def failing_repair(path):
            raise GitOperationError("worktree repair", "unsupported")

        monkeypatch.setattr(vcs, "repair", failing_repair)

        MetadataRepairer(vcs).repair("feat", worktree.path, new_path)

        assert vcs.read_gitdir_link("feat") == new_path
