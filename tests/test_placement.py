from pathlib import Path

from git_workers.constants import MAIN_WORKTREE_ID
from git_workers.models import PlacementKind, PlacementPattern, WorktreeRecord
from git_workers.services.placement import infer_pattern, resolve_placement

MAIN = Path("/projects/repo")


def _main() -> WorktreeRecord:
    return WorktreeRecord(internal_id=MAIN_WORKTREE_ID, path=MAIN, branch="main", is_main=True)


def _wt(path: str) -> WorktreeRecord:
    p = Path(path)
    return WorktreeRecord(internal_id=p.name, path=p, branch=p.name)


class TestInferPattern:
    def test_no_worktrees_is_sibling(self):
        assert infer_pattern([_main()], MAIN).kind == PlacementKind.SIBLING

    def test_siblings(self):
        records = [_main(), _wt("/projects/a"), _wt("/projects/b")]
        assert infer_pattern(records, MAIN).kind == PlacementKind.SIBLING

    def test_shared_subdirectory(self):
        records = [_main(), _wt("/projects/repo/worktrees/a"), _wt("/projects/repo/worktrees/b")]

        pattern = infer_pattern(records, MAIN)

        assert pattern.kind == PlacementKind.SUBDIRECTORY
        assert pattern.subdirectory == "repo/worktrees"

    def test_subdirectory_outside_main(self):
        records = [_main(), _wt("/projects/repo-worktrees/a")]

        pattern = infer_pattern(records, MAIN)

        assert pattern.subdirectory == "repo-worktrees"

    def test_disagreeing_parents_fall_back_to_sibling(self):
        records = [_main(), _wt("/projects/repo/worktrees/a"), _wt("/elsewhere/b")]
        assert infer_pattern(records, MAIN).kind == PlacementKind.SIBLING


class TestResolvePlacement:
    def test_sibling_by_default(self):
        assert resolve_placement([_main()], "feat", MAIN) == Path("/projects/feat")

    def test_follows_existing_subdirectory(self):
        records = [_main(), _wt("/projects/repo/worktrees/a")]
        assert resolve_placement(records, "feat", MAIN) == Path("/projects/repo/worktrees/feat")

    def test_explicit_pattern_overrides_inference(self):
        records = [_main(), _wt("/projects/repo/worktrees/a")]

        path = resolve_placement(records, "feat", MAIN, pattern=PlacementPattern.sibling())

        assert path == Path("/projects/feat")

    def test_nested_pattern_without_existing_worktrees(self):
        path = resolve_placement([_main()], "feat", MAIN, pattern=PlacementPattern.nested("repo/worktrees"))
        assert path == Path("/projects/repo/worktrees/feat")

    def test_path_with_separator_is_literal(self):
        assert resolve_placement([_main()], "../other/feat", MAIN) == Path("/projects/other/feat")

    def test_explicit_flag_anchors_bare_name_at_main(self):
        assert resolve_placement([_main()], "feat", MAIN, explicit=True) == Path("/projects/repo/feat")

    def test_absolute_path(self):
        assert resolve_placement([_main()], "/tmp/wt/feat", MAIN) == Path("/tmp/wt/feat")

    def test_backslashes_are_separators(self):
        assert resolve_placement([_main()], "..\\other\\feat", MAIN) == Path("/projects/other/feat")
