"""Decide where a new worktree goes on disk."""

import logging
import os
from pathlib import Path
from typing import Iterable

from git_workers.models import PlacementKind, PlacementPattern, WorktreeRecord
from git_workers.services.validation import has_path_separator

logger = logging.getLogger(__name__)


def _normalize(path: Path) -> Path:
    return Path(os.path.normpath(path))


def infer_pattern(records: Iterable[WorktreeRecord], main_path: Path) -> PlacementPattern:
    """Infer how existing worktrees are laid out relative to the main worktree.

    All non-main worktrees must share one parent directory for a
    subdirectory layout to be reused; anything else is treated as sibling.
    """
    base = main_path.parent
    parents = {_normalize(r.path.parent) for r in records if not r.is_main}

    if len(parents) != 1:
        if len(parents) > 1:
            logger.debug(
                "Existing worktrees disagree on location; using sibling layout",
                extra={"parents": sorted(str(p) for p in parents)},
            )
        return PlacementPattern.sibling()

    (parent,) = parents
    if parent == _normalize(base):
        return PlacementPattern.sibling()
    return PlacementPattern.nested(os.path.relpath(parent, base))


def resolve_placement(
    records: Iterable[WorktreeRecord],
    requested: str,
    main_path: Path,
    explicit: bool = False,
    pattern: PlacementPattern | None = None,
) -> Path:
    """Return the absolute path for a new worktree.

    ``requested`` is a bare name or, when ``explicit`` is set or it contains a
    separator, a path (relative ones are anchored at the main worktree).
    ``pattern`` is a layout the caller already chose; when omitted the layout
    is inferred from ``records``.
    """
    if explicit or has_path_separator(requested):
        literal = Path(requested.replace("\\", "/"))
        if not literal.is_absolute():
            literal = main_path / literal
        return _normalize(literal)

    if pattern is None or pattern.kind == PlacementKind.EXPLICIT:
        pattern = infer_pattern(records, main_path)

    base = main_path.parent
    if pattern.kind == PlacementKind.SUBDIRECTORY and pattern.subdirectory:
        return _normalize(base / pattern.subdirectory / requested)
    return _normalize(base / requested)
